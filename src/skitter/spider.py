"""Spider orchestrator.

Owns the HTTP client, the status counters and six hook chains, and runs each
accepted task as an asyncio task bounded by a semaphore:

- on_task: filter/rewrite tasks before dispatch (first None vetoes)
- on_resp: run against every fetched response (on_html / on_json build on it)
- on_item: transform items (first None drops the item)
- on_recover: handler faults caught at the task/item boundary
- on_req_error: requests that failed before any network activity
- on_resp_error: fetches that failed

No fault escapes the unit that raised it; errors are only observable
through the three error chains and the log.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TextIO

from lxml import etree

from skitter.context import Context, Item, Task
from skitter.exceptions import UnknownExtensionError
from skitter.http_client import Client, Middleware, Request, create_client
from skitter.query import resolve
from skitter.status import SpiderStatus

if TYPE_CHECKING:
    from skitter.config import SpiderConfig
    from skitter.types import (
        ErrorHook,
        Handler,
        HTMLHandler,
        ItemHook,
        JSONHandler,
        TaskHook,
    )

logger = logging.getLogger(__name__)


async def _invoke(fn: Callable[..., Any], *args: Any) -> Any:
    """Call a hook that may be a plain or a coroutine function."""
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


@dataclass(frozen=True, slots=True)
class Extension:
    """Setup-time function registering behavior into a spider's hook chains."""

    func: Callable[[Spider], None]

    def __call__(self, spider: Spider) -> None:
        self.func(spider)


class Spider:
    """Hook-driven async crawler.

    Example:
        >>> spider = Spider(with_deduplicate(), with_depth_limit(3))
        >>> @spider.on_html("a[href]")
        ... def follow(ctx, element):
        ...     ctx.add_task(get(element.get("href")))
        >>> spider.seed_task(get("https://example.com/"))
        >>> await spider.wait()
        >>> await spider.close()
    """

    def __init__(
        self,
        *extensions: Extension | Middleware | Callable[[Spider], None],
        name: str = "spider",
        logging: bool = True,
        client: Client | None = None,
        concurrency: int = 16,
        status_interval: float = 5.0,
    ) -> None:
        """Initialize spider.

        Args:
            *extensions: Extensions and client middlewares, applied via use()
            name: Spider name used in logs and fault records
            logging: Log task lifecycle and faults
            client: Optional HTTP client (for testing with mocks)
            concurrency: Maximum number of tasks fetched and handled at once
            status_interval: Seconds between throughput estimates
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")

        self.name = name
        self.logging = logging
        self.client = client if client is not None else Client()
        self.status = SpiderStatus(interval=status_interval)
        self.concurrency = concurrency

        self.on_task_handlers: list[TaskHook] = []
        self.on_resp_handlers: list[Handler] = []
        self.on_item_handlers: list[ItemHook] = []
        self.on_recover_handlers: list[ErrorHook] = []
        self.on_req_error_handlers: list[ErrorHook] = []
        self.on_resp_error_handlers: list[ErrorHook] = []

        self._semaphore = asyncio.Semaphore(concurrency)
        self._pending: set[asyncio.Task[None]] = set()
        self._closed = asyncio.Event()

        self.use(*extensions)

    @classmethod
    def from_config(
        cls,
        config: SpiderConfig,
        *extensions: Extension | Middleware | Callable[[Spider], None],
        error_stream: TextIO | None = None,
        csv_stream: TextIO | None = None,
    ) -> Spider:
        """Build a spider, its HTTP client and its built-in extensions from configuration.

        Args:
            config: Validated configuration
            *extensions: Additional extensions applied after the configured ones
            error_stream: Stream for the error log extension (if enabled in config)
            csv_stream: Stream for the CSV item saver (if enabled in config)
        """
        from skitter.extensions import extensions_from_config

        spider = cls(
            name=config.name,
            logging=config.logging,
            client=create_client(config.http),
            concurrency=config.concurrency,
            status_interval=config.status_interval,
        )
        spider.use(
            *extensions_from_config(config, error_stream=error_stream, csv_stream=csv_stream),
            *extensions,
        )
        return spider

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def use(self, *extensions: Extension | Middleware | Callable[[Spider], None]) -> None:
        """Apply extensions and client middlewares.

        Raises:
            UnknownExtensionError: For a value that is neither
        """
        for ext in extensions:
            if isinstance(ext, Middleware):
                self.client.use(ext)
            elif callable(ext):
                ext(self)
            else:
                raise UnknownExtensionError(f"Unknown extension: {ext!r}")

    def on_task(self, fn: TaskHook) -> TaskHook:
        self.on_task_handlers.append(fn)
        return fn

    def on_resp(self, fn: Handler) -> Handler:
        self.on_resp_handlers.append(fn)
        return fn

    def on_item(self, fn: ItemHook) -> ItemHook:
        self.on_item_handlers.append(fn)
        return fn

    def on_recover(self, fn: ErrorHook) -> ErrorHook:
        self.on_recover_handlers.append(fn)
        return fn

    def on_req_error(self, fn: ErrorHook) -> ErrorHook:
        self.on_req_error_handlers.append(fn)
        return fn

    def on_resp_error(self, fn: ErrorHook) -> ErrorHook:
        self.on_resp_error_handlers.append(fn)
        return fn

    def on_html(self, selector: str, fn: HTMLHandler | None = None) -> Any:
        """Call ``fn(ctx, element)`` for each element of an HTML response matching ``selector``.

        Usable directly or as a decorator: ``@spider.on_html("a[href]")``.
        Responses that are not HTML or fail to parse are skipped.
        """

        def register(fn: HTMLHandler) -> HTMLHandler:
            async def handler(ctx: Context) -> None:
                response = ctx.response
                if response is None or not response.is_html():
                    return
                try:
                    doc = response.html()
                except (etree.ParserError, ValueError):
                    return
                for element in doc.cssselect(selector):
                    await _invoke(fn, ctx, element)
                    if ctx.is_aborted:
                        return

            self.on_resp(handler)
            return fn

        return register if fn is None else register(fn)

    def on_json(self, query: str, fn: JSONHandler | None = None) -> Any:
        """Call ``fn(ctx, value)`` once when ``query`` resolves in a JSON response.

        Usable directly or as a decorator: ``@spider.on_json("data.items")``.
        """

        def register(fn: JSONHandler) -> JSONHandler:
            async def handler(ctx: Context) -> None:
                response = ctx.response
                if response is None or not response.is_json():
                    return
                try:
                    data = response.json()
                except json.JSONDecodeError:
                    return
                found, value = resolve(data, query)
                if found:
                    await _invoke(fn, ctx, value)

            self.on_resp(handler)
            return fn

        return register if fn is None else register(fn)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def seed_task(self, request: Request, *handlers: Handler) -> None:
        """Submit a request from a fresh seed context. Must run inside the event loop."""
        Context(self, meta={}).add_task(request, *handlers)

    async def wait(self) -> None:
        """Block until every in-flight task and item has completed.

        Units spawned while waiting are waited for as well. Must not be
        awaited from inside a handler.
        """
        while self._pending:
            await asyncio.wait(list(self._pending))

    async def forever(self, stop: asyncio.Event | None = None) -> None:
        """Block until ``stop`` is set or the spider is closed."""
        waiters = [asyncio.ensure_future(self._closed.wait())]
        if stop is not None:
            waiters.append(asyncio.ensure_future(stop.wait()))
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def close(self) -> None:
        """Cancel outstanding work, stop the status estimator and close the client."""
        if self._closed.is_set():
            return
        self._closed.set()

        pending = list(self._pending)
        for unit in pending:
            unit.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        await self.status.stop()
        await self.client.close()
        if self.logging:
            self.status.print_signal_line(self.name)

    async def __aenter__(self) -> Spider:
        self.status.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        if self._closed.is_set():
            coro.close()
            logger.debug(f"Spider {self.name} is closed, dropping {name}")
            return

        unit = asyncio.get_running_loop().create_task(coro, name=name)
        self._pending.add(unit)
        unit.add_done_callback(self._pending.discard)
        self.status.start()

    def submit_task(self, origin: Context, task: Task) -> None:
        """Run the on_task chain for ``task`` and dispatch it if accepted."""
        self._spawn(self._run_task(origin, task), name=f"skitter-task {task.request}")

    def submit_item(self, item: Item) -> None:
        """Count ``item`` and run the on_item chain for it."""
        self.status.add_item()
        self._spawn(self._run_item(item), name="skitter-item")

    async def _run_task(self, origin: Context, task: Task) -> None:
        try:
            accepted = await self._handle_on_task(origin, task)
        except Exception as e:
            self._log_fault("on_task handler failed", origin, e)
            await self._run_error_hooks(self.on_recover_handlers, origin, e)
            return

        if accepted is None:
            return

        self.status.add_task()
        async with self._semaphore:
            await self._handle_task(accepted)

    async def _handle_on_task(self, ctx: Context, task: Task) -> Task | None:
        result: Task | None = task
        for fn in self.on_task_handlers:
            result = await _invoke(fn, ctx, result)
            if result is None or result.request is None:
                return None
        return result

    async def _handle_task(self, task: Task) -> None:
        # Counted on entry: "accounted for", not "completed".
        self.status.finish_task()
        ctx = Context(self, request=task.request, meta=task.meta, depth=task.depth)

        try:
            if task.request.err is not None:
                self._log_fault("req error", ctx, task.request.err, traceback=False)
                await self._run_error_hooks(self.on_req_error_handlers, ctx, task.request.err)
                return

            ctx.response = await self.client.do(task.request)
            if ctx.response.err is not None:
                self._log_fault("resp error", ctx, ctx.response.err, traceback=False)
                await self._run_error_hooks(self.on_resp_error_handlers, ctx, ctx.response.err)
                return

            if self.logging:
                logger.debug(f"Finish spider={self.name} context={ctx}")

            await self._handle_on_resp(ctx)
            if ctx.is_aborted:
                return

            for handler in task.handlers:
                await _invoke(handler, ctx)
                if ctx.is_aborted:
                    return

        except Exception as e:
            self._log_fault("handler recover from exception", ctx, e)
            await self._run_error_hooks(self.on_recover_handlers, ctx, e)

    async def _handle_on_resp(self, ctx: Context) -> None:
        for fn in self.on_resp_handlers:
            if ctx.is_aborted:
                return
            await _invoke(fn, ctx)

    async def _run_item(self, item: Item) -> None:
        try:
            for fn in self.on_item_handlers:
                item.data = await _invoke(fn, item.ctx, item.data)
                if item.data is None:
                    return
        except Exception as e:
            self._log_fault("on_item recover from exception", item.ctx, e)
            await self._run_error_hooks(self.on_recover_handlers, item.ctx, e)

    async def _run_error_hooks(
        self, hooks: list[ErrorHook], ctx: Context, err: BaseException
    ) -> None:
        for fn in hooks:
            try:
                await _invoke(fn, ctx, err)
            except Exception:
                logger.exception(f"Error hook {fn!r} failed in spider {self.name}")

    def _log_fault(
        self, message: str, ctx: Context, err: BaseException, *, traceback: bool = True
    ) -> None:
        if not self.logging:
            return
        logger.error(
            f"{message}: {type(err).__name__}: {err} spider={self.name} context={ctx}",
            exc_info=err if traceback else None,
            stack_info=not traceback,
        )

    def __repr__(self) -> str:
        return f"<Spider name={self.name!r} status={self.status!r}>"
