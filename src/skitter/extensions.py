"""Built-in spider extensions.

Each factory returns an Extension that registers closures into the spider's
hook chains when applied with Spider.use(). State lives in the closure for
the spider's lifetime; every read-then-write on shared state happens inside
one critical section so concurrent tasks cannot both be admitted.

Example:
    >>> spider = Spider(
    ...     with_deduplicate(),
    ...     with_depth_limit(3),
    ...     with_robots_txt("MyBot/1.0"),
    ...     with_max_request_limit(1000),
    ... )
"""

import asyncio
import contextlib
import csv
import hashlib
import json
import logging
import threading
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TextIO

from robotexclusionrulesparser import RobotFileParserLookalike

from skitter.config import SpiderConfig
from skitter.context import Context, Task
from skitter.http_client import Request, get
from skitter.spider import Extension, Spider
from skitter.utils import format_stack

logger = logging.getLogger(__name__)


def request_fingerprint(request: Request) -> str:
    """Compute SHA-256 hash over the fields defining a request (method, URL, body).

    Examples:
        >>> request_fingerprint(get("https://example.com/")) == request_fingerprint(
        ...     get("https://example.com/")
        ... )
        True
    """
    digest = hashlib.sha256()
    digest.update(request.method.encode("utf-8"))
    digest.update(b"\0")
    digest.update(request.url.encode("utf-8"))
    digest.update(b"\0")
    digest.update(request.body or b"")
    return digest.hexdigest()


def with_deduplicate() -> Extension:
    """Veto every task whose request fingerprint has been seen before."""

    def extension(spider: Spider) -> None:
        seen: set[str] = set()
        lock = threading.Lock()

        def deduplicate(ctx: Context, task: Task) -> Task | None:
            fingerprint = request_fingerprint(task.request)
            with lock:
                if fingerprint in seen:
                    return None
                seen.add(fingerprint)
            return task

        spider.on_task(deduplicate)

    return Extension(extension)


def with_robots_txt(user_agent: str) -> Extension:
    """Veto tasks disallowed by the target host's robots.txt.

    robots.txt is fetched through the spider's client on the first task for
    each scheme and host, then cached. A failed fetch or a non-200 status
    allows everything for that host.

    Args:
        user_agent: User agent matched against robots.txt rules
    """

    def extension(spider: Spider) -> None:
        parsers: dict[str, RobotFileParserLookalike | None] = {}  # origin -> parser
        locks: dict[str, asyncio.Lock] = {}

        async def load(origin: str) -> RobotFileParserLookalike | None:
            response = await spider.client.do(get(f"{origin}/robots.txt"))
            if response.err is not None:
                logger.warning(
                    f"Failed to fetch robots.txt for {origin}: {response.err}. "
                    f"Proceeding without it."
                )
                return None
            if response.status_code != 200:
                logger.debug(f"No robots.txt for {origin} (status {response.status_code})")
                return None

            parser = RobotFileParserLookalike()
            parser.parse(response.text.splitlines())
            logger.debug(f"Loaded robots.txt for {origin}")
            return parser

        async def check_robots(ctx: Context, task: Task) -> Task | None:
            request = task.request
            if request.err is not None:
                return task

            origin = request.origin
            if origin not in parsers:
                lock = locks.setdefault(origin, asyncio.Lock())
                async with lock:
                    if origin not in parsers:
                        parsers[origin] = await load(origin)

            parser = parsers[origin]
            if parser is not None and not parser.is_allowed(user_agent, request.url):
                logger.info(f"URL disallowed by robots.txt: {request.url}")
                return None
            return task

        spider.on_task(check_robots)

    return Extension(extension)


def with_depth_limit(max_depth: int) -> Extension:
    """Veto tasks deeper than ``max_depth``.

    Tasks originating from a context without depth (the seed context) get
    depth 1; each child gets its originating context's depth plus one.

    Args:
        max_depth: Deepest depth still dispatched
    """
    if max_depth < 1:
        raise ValueError(f"max_depth must be at least 1, got {max_depth}")

    def extension(spider: Spider) -> None:
        def limit_depth(ctx: Context, task: Task) -> Task | None:
            if ctx.depth is None:
                task.depth = 1
                return task
            if ctx.depth < max_depth:
                task.depth = ctx.depth + 1
                return task
            return None

        spider.on_task(limit_depth)

    return Extension(extension)


def with_max_request_limit(max_requests: int) -> Extension:
    """Admit at most ``max_requests`` tasks for the spider's lifetime.

    The budget is never given back, even when an admitted task fails.
    """
    if max_requests < 0:
        raise ValueError(f"max_requests cannot be negative, got {max_requests}")

    def extension(spider: Spider) -> None:
        count = 0
        lock = threading.Lock()

        def cap_requests(ctx: Context, task: Task) -> Task | None:
            nonlocal count
            with lock:
                if count < max_requests:
                    count += 1
                    return task
            return None

        spider.on_task(cap_requests)

    return Extension(extension)


class JSONLineFormatter(logging.Formatter):
    """Format records as one JSON object per line, merging ``record.fields``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname.lower(),
            "message": record.getMessage(),
        }
        payload.update(getattr(record, "fields", {}))
        return json.dumps(payload, ensure_ascii=False, default=str)


def _describe(err: BaseException | None) -> str | None:
    return None if err is None else f"{type(err).__name__}: {err}"


def with_error_log(stream: TextIO) -> Extension:
    """Write one JSON line to ``stream`` per fault.

    Covers handler faults (on_recover), request and response faults, and
    diagnostic items whose data is an exception (passed through unchanged).
    """

    def extension(spider: Spider) -> None:
        error_logger = logging.getLogger(f"{__name__}.error_log.{spider.name}.{id(stream):x}")
        error_logger.handlers.clear()
        error_logger.propagate = False
        error_logger.setLevel(logging.ERROR)
        handler = logging.StreamHandler(stream)
        handler.setFormatter(JSONLineFormatter())
        error_logger.addHandler(handler)

        def send(ctx: Context, err: BaseException, kind: str) -> None:
            request, response = ctx.request, ctx.response
            fields: dict[str, Any] = {
                "spider": spider.name,
                "type": kind,
                "error": _describe(err),
                "ctx": str(ctx),
                "url": request.url if request is not None else None,
                "req_err": _describe(request.err) if request is not None else None,
                "resp_err": _describe(response.err) if response is not None else None,
            }
            if response is not None:
                fields["resp_code"] = response.status_code
                if response.text:
                    fields["text"] = response.text
            fields["stack"] = format_stack(err)
            error_logger.error(str(err), extra={"fields": fields})

        def log_error_item(ctx: Context, data: Any) -> Any:
            if isinstance(data, BaseException):
                send(ctx, data, "item")
            return data

        spider.on_item(log_error_item)
        spider.on_recover(lambda ctx, err: send(ctx, err, "on_recover"))
        spider.on_req_error(lambda ctx, err: send(ctx, err, "on_req_error"))
        spider.on_resp_error(lambda ctx, err: send(ctx, err, "on_resp_error"))

    return Extension(extension)


class CsvItem(list[str]):
    """Item data saved as one CSV row by with_csv_item_saver()."""


def with_csv_item_saver(stream: TextIO) -> Extension:
    """Write every CsvItem as one CSV row to ``stream``, flushing after each row.

    Open file streams with ``newline=""``. Other items pass through unchanged.
    """
    lock = threading.Lock()
    writer = csv.writer(stream)

    def extension(spider: Spider) -> None:
        def save_csv_item(ctx: Context, data: Any) -> Any:
            if isinstance(data, CsvItem):
                with lock:
                    try:
                        writer.writerow(data)
                        stream.flush()
                    except (OSError, csv.Error) as e:
                        logger.error(f"CSV item saver failed: {e}")
            return data

        spider.on_item(save_csv_item)

    return Extension(extension)


def extensions_from_config(
    config: SpiderConfig,
    *,
    error_stream: TextIO | None = None,
    csv_stream: TextIO | None = None,
) -> list[Extension]:
    """Build the extensions enabled in configuration.

    Order: deduplication, depth limit, robots.txt, request cap, error log,
    CSV output. Vetoing filters run before the request cap so vetoed tasks
    never consume the budget.

    Args:
        config: Validated configuration
        error_stream: Stream for the error log (skipped when None)
        csv_stream: Stream for CSV items (skipped when None)
    """
    settings = config.extensions
    extensions: list[Extension] = []

    if settings.deduplicate:
        extensions.append(with_deduplicate())
    if settings.depth_limit is not None:
        extensions.append(with_depth_limit(settings.depth_limit))
    if settings.robots_txt:
        extensions.append(with_robots_txt(settings.robots_user_agent or config.http.user_agent))
    if settings.max_requests is not None:
        extensions.append(with_max_request_limit(settings.max_requests))
    if error_stream is not None:
        extensions.append(with_error_log(error_stream))
    if csv_stream is not None:
        extensions.append(with_csv_item_saver(csv_stream))

    return extensions


@contextlib.contextmanager
def open_output_streams(config: SpiderConfig) -> Iterator[tuple[TextIO | None, TextIO | None]]:
    """Open the error log and CSV files named in configuration.

    Yields:
        ``(error_stream, csv_stream)``, each None when not configured
    """
    settings = config.extensions
    with contextlib.ExitStack() as stack:
        error_stream: TextIO | None = None
        csv_stream: TextIO | None = None
        if settings.error_log:
            path = Path(settings.error_log)
            path.parent.mkdir(parents=True, exist_ok=True)
            error_stream = stack.enter_context(path.open("a", encoding="utf-8"))
        if settings.csv_output:
            path = Path(settings.csv_output)
            path.parent.mkdir(parents=True, exist_ok=True)
            csv_stream = stack.enter_context(path.open("w", encoding="utf-8", newline=""))
        yield error_stream, csv_stream
