"""HTTP collaborator for the spider.

Request/response records, an httpx-backed client with a middleware chain,
and a factory building httpx clients with:
- HTTP/2 and connection pooling
- Retries with exponential backoff (httpx-retries)
- Optional HTTP caching (hishel)

Transport failures never raise out of Client.do(); they are stored on
Response.err so the spider can route them to its error hooks.
"""

from __future__ import annotations

import json
import logging
import urllib.parse
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeAlias

import httpx
import lxml.html
from hishel import AsyncSqliteStorage
from hishel.httpx import AsyncCacheClient
from httpx_retries import Retry, RetryTransport

from skitter.config import DEFAULT_USER_AGENT
from skitter.exceptions import HTTPStatusError, RequestError

if TYPE_CHECKING:
    from skitter.config import CacheConfig, HTTPConfig
    from skitter.types import LxmlDocument

logger = logging.getLogger(__name__)

_UNSET: Any = object()


def _validate_url(url: str) -> RequestError | None:
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError) as e:
        return RequestError(f"Invalid URL {url!r}: {e}")

    if parsed.scheme not in ("http", "https"):
        return RequestError(f"Unsupported URL scheme in {url!r} (expected http or https)")
    if not parsed.host:
        return RequestError(f"URL has no host: {url!r}")
    return None


@dataclass(slots=True)
class Request:
    """An HTTP request to be executed by a Client.

    Construction never raises for a bad URL: the failure is kept in ``err``
    and reported through the spider's ``on_req_error`` hooks when the task runs.
    """

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | None = None
    timeout: float | None = None
    err: BaseException | None = None

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        if isinstance(self.body, str):
            self.body = self.body.encode("utf-8")
        if self.err is None:
            self.err = _validate_url(self.url)

    @property
    def origin(self) -> str:
        """``scheme://host[:port]`` of the request URL."""
        parsed = urllib.parse.urlparse(self.url)
        return f"{parsed.scheme}://{parsed.netloc}"

    @property
    def path(self) -> str:
        """URL path (``/`` when empty)."""
        return urllib.parse.urlparse(self.url).path or "/"

    def __str__(self) -> str:
        return f"{self.method} {self.url}"


def get(url: str, **kwargs: Any) -> Request:
    """Build a GET request."""
    return Request("GET", url, **kwargs)


def post(url: str, body: bytes | str | None = None, **kwargs: Any) -> Request:
    """Build a POST request."""
    return Request("POST", url, body=body, **kwargs)  # type: ignore[arg-type]


@dataclass(slots=True)
class Response:
    """Response to a Request, or the transport failure that replaced it."""

    request: Request
    status_code: int = 0
    headers: dict[str, str] = field(default_factory=dict)
    content: bytes = b""
    url: str = ""
    err: BaseException | None = None
    _text: str | None = field(default=None, init=False, repr=False)
    _html: Any = field(default=_UNSET, init=False, repr=False)
    _json: Any = field(default=_UNSET, init=False, repr=False)

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value
        return ""

    @property
    def encoding(self) -> str:
        """Charset declared in the content type, UTF-8 otherwise."""
        for param in self.content_type.split(";")[1:]:
            name, _, value = param.strip().partition("=")
            if name.lower() == "charset" and value:
                return value.strip("\"'")
        return "utf-8"

    @property
    def text(self) -> str:
        """Decode content using the declared charset."""
        if self._text is None:
            try:
                self._text = self.content.decode(self.encoding, errors="replace")
            except LookupError:
                self._text = self.content.decode("utf-8", errors="replace")
        return self._text

    def is_html(self) -> bool:
        content_type = self.content_type.lower()
        if content_type:
            return "text/html" in content_type or "application/xhtml+xml" in content_type
        head = self.content.lstrip()[:15].lower()
        return head.startswith((b"<!doctype html", b"<html"))

    def is_json(self) -> bool:
        content_type = self.content_type.lower()
        if content_type:
            return "json" in content_type
        return self.content.lstrip()[:1] in (b"{", b"[")

    def html(self) -> LxmlDocument:
        """Parse content as HTML (cached), with links made absolute.

        Raises:
            lxml.etree.ParserError: If the document is empty or unparseable
        """
        if self._html is _UNSET:
            doc = lxml.html.fromstring(self.content)
            doc.make_links_absolute(self.url or self.request.url)
            self._html = doc
        return self._html  # type: ignore[no-any-return]

    def json(self) -> Any:
        """Parse content as JSON (cached).

        Raises:
            json.JSONDecodeError: If the body is not valid JSON
        """
        if self._json is _UNSET:
            self._json = json.loads(self.text)
        return self._json

    def raise_for_status(self) -> None:
        """Raise an exception for 4xx/5xx responses."""
        if 400 <= self.status_code < 600:
            raise HTTPStatusError(self.status_code, self.url or self.request.url)


Fetch: TypeAlias = Callable[[Request], Awaitable[Response]]
MiddlewareFunc: TypeAlias = Callable[["Client", Fetch], Fetch]


@dataclass(frozen=True, slots=True)
class Middleware:
    """HTTP client middleware: wraps the next fetch function with its own.

    Can be used as a decorator::

        @Middleware
        def log_requests(client, next_fetch):
            async def fetch(request):
                logger.info(f"-> {request}")
                return await next_fetch(request)
            return fetch
    """

    func: MiddlewareFunc

    def __call__(self, client: Client, next_fetch: Fetch) -> Fetch:
        return self.func(client, next_fetch)


class Client:
    """httpx-backed client executing Requests through a middleware chain.

    Middlewares wrap the send function in registration order: the first
    registered middleware is the outermost one.

    Example:
        >>> client = Client()
        >>> response = await client.do(get("https://example.com/"))
        >>> response.err is None
    """

    def __init__(self, http: httpx.AsyncClient | AsyncCacheClient | None = None) -> None:
        """Initialize client.

        Args:
            http: Optional httpx client (for testing with mocks or custom transports)
        """
        if http is None:
            http = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, connect=10.0),
                follow_redirects=True,
                headers={"User-Agent": DEFAULT_USER_AGENT},
            )
        self.http = http
        self.middlewares: list[Middleware] = []
        self._fetch: Fetch | None = None

    def use(self, *middlewares: Middleware) -> None:
        """Append middlewares to the chain."""
        self.middlewares.extend(middlewares)
        self._fetch = None

    async def do(self, request: Request) -> Response:
        """Execute a request through the middleware chain."""
        if self._fetch is None:
            fetch: Fetch = self._send
            for middleware in reversed(self.middlewares):
                fetch = middleware(self, fetch)
            self._fetch = fetch
        return await self._fetch(request)

    async def _send(self, request: Request) -> Response:
        if request.err is not None:
            return Response(request=request, url=request.url, err=request.err)

        kwargs: dict[str, Any] = {}
        if request.headers:
            kwargs["headers"] = request.headers
        if request.body is not None:
            kwargs["content"] = request.body
        if request.timeout:
            kwargs["timeout"] = request.timeout

        try:
            response = await self.http.request(request.method, request.url, **kwargs)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug(f"HTTP error fetching {request.url}: {type(e).__name__}")
            return Response(request=request, url=request.url, err=e)

        return Response(
            request=request,
            status_code=response.status_code,
            headers=dict(response.headers),
            content=response.content,
            url=str(response.url),
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        await self.http.aclose()


def with_status_check() -> Middleware:
    """Middleware turning 4xx/5xx responses into response errors."""

    def middleware(client: Client, next_fetch: Fetch) -> Fetch:
        async def fetch(request: Request) -> Response:
            response = await next_fetch(request)
            if response.err is None:
                try:
                    response.raise_for_status()
                except HTTPStatusError as e:
                    response.err = e
            return response

        return fetch

    return Middleware(middleware)


def with_headers(headers: dict[str, str]) -> Middleware:
    """Middleware setting default headers; headers already on the request win."""

    def middleware(client: Client, next_fetch: Fetch) -> Fetch:
        async def fetch(request: Request) -> Response:
            for name, value in headers.items():
                request.headers.setdefault(name, value)
            return await next_fetch(request)

        return fetch

    return Middleware(middleware)


def create_cache_storage(config: CacheConfig) -> AsyncSqliteStorage | None:
    """Create cache storage based on configuration.

    Args:
        config: Cache configuration

    Returns:
        Cache storage instance or None if disabled or using memory backend
    """
    if not config.enabled:
        return None

    if config.backend == "sqlite":
        cache_db = Path(config.cache_dir) / "http_cache.db"
        cache_db.parent.mkdir(parents=True, exist_ok=True)
        return AsyncSqliteStorage(
            database_path=str(cache_db),
            default_ttl=float(config.ttl_seconds) if config.ttl_seconds else None,
        )
    return None


def create_httpx_client(
    config: HTTPConfig,
    *,
    max_keepalive_connections: int = 20,
    keepalive_expiry: float = 60.0,
) -> httpx.AsyncClient | AsyncCacheClient:
    """Create httpx client with HTTP/2, retry logic, and optional caching.

    Args:
        config: HTTP configuration
        max_keepalive_connections: Maximum keepalive connections (default: 20)
        keepalive_expiry: Keepalive expiry in seconds (default: 60.0)

    Returns:
        Configured httpx AsyncClient or Hishel AsyncCacheClient
    """
    retry_policy = Retry(
        total=config.max_retries,
        backoff_factor=config.retry_backoff - 1.0,
        backoff_jitter=config.retry_jitter,
        status_forcelist=[429, 500, 502, 503, 504],
        respect_retry_after_header=True,
        allowed_methods=["HEAD", "GET", "PUT", "DELETE", "OPTIONS", "TRACE"],
    )

    base_transport = httpx.AsyncHTTPTransport(
        http2=True,
        limits=httpx.Limits(
            max_connections=config.max_connections,
            max_keepalive_connections=min(max_keepalive_connections, config.max_connections),
            keepalive_expiry=keepalive_expiry,
        ),
        retries=0,
    )

    transport = RetryTransport(transport=base_transport, retry=retry_policy)
    timeout = httpx.Timeout(config.timeout, connect=config.connect_timeout)
    headers = {"User-Agent": config.user_agent}

    if config.cache.enabled:
        storage = create_cache_storage(config.cache)
        return AsyncCacheClient(
            storage=storage,
            transport=transport,
            timeout=timeout,
            follow_redirects=config.follow_redirects,
            max_redirects=config.max_redirects,
            headers=headers,
        )

    return httpx.AsyncClient(
        transport=transport,
        timeout=timeout,
        follow_redirects=config.follow_redirects,
        max_redirects=config.max_redirects,
        headers=headers,
    )


def create_client(config: HTTPConfig) -> Client:
    """Create a spider Client from configuration."""
    return Client(create_httpx_client(config))
