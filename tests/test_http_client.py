"""Tests for the HTTP collaborator: requests, responses, client and middlewares."""

import json
from pathlib import Path

import httpx
import pytest
import pytest_httpx
from hishel.httpx import AsyncCacheClient

from skitter.config import CacheConfig, HTTPConfig
from skitter.exceptions import HTTPStatusError, RequestError
from skitter.http_client import (
    Client,
    Middleware,
    Request,
    Response,
    create_cache_storage,
    create_client,
    create_httpx_client,
    get,
    post,
    with_headers,
    with_status_check,
)
from tests.conftest import make_client


class TestRequest:
    """Tests for Request construction."""

    def test_normalizes_method_and_body(self) -> None:
        request = Request("post", "https://example.com/submit", body="payload")  # type: ignore[arg-type]

        assert request.method == "POST"
        assert request.body == b"payload"
        assert request.err is None
        assert str(request) == "POST https://example.com/submit"

    def test_helpers(self) -> None:
        assert get("https://example.com/").method == "GET"
        assert post("https://example.com/", body="x").body == b"x"

    @pytest.mark.parametrize(
        "url",
        ["ftp://example.com/file", "not a url", "/relative/path", "mailto:user@example.com"],
    )
    def test_invalid_url_is_kept_as_error(self, url: str) -> None:
        """Test bad URLs never raise; the error is stored on the request."""
        request = get(url)

        assert isinstance(request.err, RequestError)

    def test_origin_and_path(self) -> None:
        request = get("https://example.com:8443/a/b?x=1")

        assert request.origin == "https://example.com:8443"
        assert request.path == "/a/b"
        assert get("https://example.com").path == "/"


class TestResponse:
    """Tests for Response accessors."""

    def test_text_uses_declared_charset(self) -> None:
        response = Response(
            request=get("https://example.com/"),
            headers={"Content-Type": "text/html; charset=ISO-8859-1"},
            content="café".encode("latin-1"),
        )

        assert response.encoding == "ISO-8859-1"
        assert response.text == "café"

    def test_unknown_charset_falls_back_to_utf8(self) -> None:
        response = Response(
            request=get("https://example.com/"),
            headers={"content-type": "text/plain; charset=bogus"},
            content="café".encode(),
        )

        assert response.text == "café"

    def test_content_sniffing_without_header(self) -> None:
        html = Response(request=get("https://example.com/"), content=b"  <!DOCTYPE html><p>x")
        data = Response(request=get("https://example.com/"), content=b'  {"a": 1}')

        assert html.is_html() and not html.is_json()
        assert data.is_json() and not data.is_html()

    def test_header_wins_over_sniffing(self) -> None:
        response = Response(
            request=get("https://example.com/"),
            headers={"Content-Type": "text/plain"},
            content=b"<html></html>",
        )

        assert not response.is_html()

    def test_html_makes_links_absolute(self) -> None:
        response = Response(
            request=get("https://example.com/docs/"),
            content=b'<html><body><a href="page">x</a></body></html>',
            url="https://example.com/docs/",
        )

        doc = response.html()

        assert doc.cssselect("a")[0].get("href") == "https://example.com/docs/page"
        assert response.html() is doc

    def test_json_is_cached_and_validated(self) -> None:
        response = Response(request=get("https://example.com/"), content=b'{"a": [1, 2]}')

        assert response.json() == {"a": [1, 2]}
        assert response.json() is response.json()

        broken = Response(request=get("https://example.com/"), content=b"{oops")
        with pytest.raises(json.JSONDecodeError):
            broken.json()

    def test_raise_for_status(self) -> None:
        ok = Response(request=get("https://example.com/"), status_code=200)
        ok.raise_for_status()

        missing = Response(
            request=get("https://example.com/missing"),
            status_code=404,
            url="https://example.com/missing",
        )
        with pytest.raises(HTTPStatusError) as exc_info:
            missing.raise_for_status()

        assert exc_info.value.status_code == 404
        assert exc_info.value.url == "https://example.com/missing"


class TestClient:
    """Tests for Client.do() and the middleware chain."""

    @pytest.mark.asyncio
    async def test_do_returns_response(self, httpx_mock: pytest_httpx.HTTPXMock) -> None:
        httpx_mock.add_response(
            url="https://example.com/", html="<html>hi</html>", headers={"X-Test": "yes"}
        )
        client = make_client()

        response = await client.do(get("https://example.com/"))
        await client.close()

        assert response.err is None
        assert response.status_code == 200
        assert response.content == b"<html>hi</html>"
        assert response.url == "https://example.com/"
        assert response.is_html()
        assert response.headers["x-test"] == "yes"

    @pytest.mark.asyncio
    async def test_do_sends_method_headers_and_body(
        self, httpx_mock: pytest_httpx.HTTPXMock
    ) -> None:
        httpx_mock.add_response(url="https://example.com/submit", method="POST", json={})
        client = make_client()

        await client.do(post("https://example.com/submit", body="a=1", headers={"X-Key": "k"}))
        await client.close()

        sent = httpx_mock.get_request()
        assert sent is not None
        assert sent.method == "POST"
        assert sent.content == b"a=1"
        assert sent.headers["X-Key"] == "k"

    @pytest.mark.asyncio
    async def test_transport_error_is_stored(self, httpx_mock: pytest_httpx.HTTPXMock) -> None:
        httpx_mock.add_exception(httpx.ReadTimeout("slow"), url="https://example.com/")
        client = make_client()

        response = await client.do(get("https://example.com/"))
        await client.close()

        assert isinstance(response.err, httpx.ReadTimeout)
        assert response.status_code == 0

    @pytest.mark.asyncio
    async def test_request_error_skips_network(self) -> None:
        client = make_client()
        request = get("ftp://example.com/file")

        response = await client.do(request)
        await client.close()

        assert response.err is request.err
        assert response.request is request

    @pytest.mark.asyncio
    async def test_middlewares_wrap_in_registration_order(
        self, httpx_mock: pytest_httpx.HTTPXMock
    ) -> None:
        httpx_mock.add_response(url="https://example.com/", text="ok")
        calls: list[str] = []

        def tracing(label: str) -> Middleware:
            def middleware(client: Client, next_fetch):  # type: ignore[no-untyped-def]
                async def fetch(request: Request) -> Response:
                    calls.append(f"{label}>")
                    response = await next_fetch(request)
                    calls.append(f"<{label}")
                    return response

                return fetch

            return Middleware(middleware)

        client = make_client()
        client.use(tracing("a"), tracing("b"))

        await client.do(get("https://example.com/"))
        await client.close()

        assert calls == ["a>", "b>", "<b", "<a"]

    @pytest.mark.asyncio
    async def test_use_after_do_rebuilds_chain(self, httpx_mock: pytest_httpx.HTTPXMock) -> None:
        httpx_mock.add_response(url="https://example.com/", text="ok")
        httpx_mock.add_response(url="https://example.com/", status_code=503)
        client = make_client()

        first = await client.do(get("https://example.com/"))
        client.use(with_status_check())
        second = await client.do(get("https://example.com/"))
        await client.close()

        assert first.err is None
        assert isinstance(second.err, HTTPStatusError)
        assert second.err.status_code == 503

    @pytest.mark.asyncio
    async def test_with_headers_keeps_request_headers(
        self, httpx_mock: pytest_httpx.HTTPXMock
    ) -> None:
        httpx_mock.add_response(url="https://example.com/", text="ok")
        client = make_client()
        client.use(with_headers({"Accept": "text/html", "X-Default": "d"}))

        await client.do(get("https://example.com/", headers={"Accept": "application/json"}))
        await client.close()

        sent = httpx_mock.get_request()
        assert sent is not None
        assert sent.headers["Accept"] == "application/json"
        assert sent.headers["X-Default"] == "d"

    @pytest.mark.asyncio
    async def test_middleware_decorator(self, httpx_mock: pytest_httpx.HTTPXMock) -> None:
        httpx_mock.add_response(url="https://example.com/", text="ok")
        seen: list[str] = []

        @Middleware
        def record(client: Client, next_fetch):  # type: ignore[no-untyped-def]
            async def fetch(request: Request) -> Response:
                seen.append(str(request))
                return await next_fetch(request)

            return fetch

        client = make_client()
        client.use(record)
        await client.do(get("https://example.com/"))
        await client.close()

        assert seen == ["GET https://example.com/"]


class TestFactories:
    """Tests for client factories."""

    @pytest.mark.asyncio
    async def test_create_httpx_client_without_cache(self) -> None:
        config = HTTPConfig(user_agent="TestBot/1.0", timeout=5.0, connect_timeout=2.0)

        http = create_httpx_client(config)

        assert isinstance(http, httpx.AsyncClient)
        assert not isinstance(http, AsyncCacheClient)
        assert http.headers["User-Agent"] == "TestBot/1.0"
        assert http.timeout.connect == 2.0
        assert http.follow_redirects is True
        await http.aclose()

    @pytest.mark.asyncio
    async def test_create_httpx_client_with_cache(self, tmp_path: Path) -> None:
        config = HTTPConfig(cache=CacheConfig(enabled=True, cache_dir=str(tmp_path / "cache")))

        http = create_httpx_client(config)

        assert isinstance(http, AsyncCacheClient)
        assert (tmp_path / "cache").is_dir()
        await http.aclose()

    def test_cache_storage_disabled_or_memory(self) -> None:
        assert create_cache_storage(CacheConfig(enabled=False)) is None
        assert create_cache_storage(CacheConfig(enabled=True, backend="memory")) is None

    @pytest.mark.asyncio
    async def test_create_client_wraps_httpx_client(self) -> None:
        client = create_client(HTTPConfig(user_agent="TestBot/1.0"))

        assert isinstance(client, Client)
        assert client.http.headers["User-Agent"] == "TestBot/1.0"
        assert client.middlewares == []
        await client.close()
