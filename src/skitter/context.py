"""Task, Item and per-task execution Context."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from skitter.http_client import Request, Response
    from skitter.spider import Spider
    from skitter.types import Handler


@dataclass(slots=True)
class Task:
    """A request paired with the handlers to run against its response.

    ``depth`` is the crawl depth stamped by the depth-limit extension
    (None when no extension tracks depth).
    """

    request: Request
    handlers: list[Handler] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)
    depth: int | None = None


@dataclass(slots=True)
class Item:
    """Extracted data paired with the context that produced it."""

    ctx: Context
    data: Any


class Context:
    """Mutable execution record threaded through one task's handler chain.

    The spider creates one Context per task execution, plus a seed context
    (no request, no response) used by Spider.seed_task() to originate tasks.
    """

    __slots__ = ("spider", "request", "response", "meta", "depth", "_aborted")

    def __init__(
        self,
        spider: Spider,
        request: Request | None = None,
        response: Response | None = None,
        meta: dict[str, Any] | None = None,
        depth: int | None = None,
    ) -> None:
        self.spider = spider
        self.request = request
        self.response = response
        self.meta: dict[str, Any] = meta if meta is not None else {}
        self.depth = depth
        self._aborted = False

    def abort(self) -> None:
        """Stop the remaining handlers of the current chain for this task."""
        self._aborted = True

    @property
    def is_aborted(self) -> bool:
        return self._aborted

    def add_task(
        self,
        request: Request,
        *handlers: Handler,
        meta: dict[str, Any] | None = None,
    ) -> None:
        """Submit a new task originating from this context.

        The task is a fresh record: it inherits neither meta nor depth.
        Extensions registered with on_task see this context as the
        originating one and may veto or rewrite the task.
        """
        task = Task(request=request, handlers=list(handlers), meta=dict(meta or {}))
        self.spider.submit_task(self, task)

    def add_item(self, data: Any) -> None:
        """Emit an item through the spider's on_item chain."""
        self.spider.submit_item(Item(ctx=self, data=data))

    def __str__(self) -> str:
        status = self.response.status_code if self.response is not None else None
        return (
            f"Context(request={self.request}, status={status}, depth={self.depth}, "
            f"meta={self.meta!r}, aborted={self._aborted})"
        )

    __repr__ = __str__
