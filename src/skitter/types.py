"""Type definitions and protocols for skitter.

Handler signatures for the hook chains, plus protocols for lxml types
which have incomplete type stubs.
"""

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol, TypeAlias

if TYPE_CHECKING:
    from skitter.context import Context, Task


# Protocols for lxml type safety (lxml has incomplete type stubs)
class LxmlElement(Protocol):
    """Protocol for lxml Element objects."""

    def get(self, key: str, default: str | None = None) -> str | None:
        """Get attribute value."""
        ...

    def text_content(self) -> str:
        """Text of the element and its descendants."""
        ...


class LxmlDocument(Protocol):
    """Protocol for lxml document objects (HtmlElement)."""

    def make_links_absolute(self, base_url: str) -> None:
        """Convert all relative URLs to absolute."""
        ...

    def cssselect(self, expr: str) -> list[Any]:
        """Execute a CSS selector query."""
        ...

    def xpath(self, expr: str) -> list[Any]:
        """Execute XPath query."""
        ...

    def findtext(self, path: str, default: str | None = None) -> str | None:
        """Text of the first element matching an ElementPath."""
        ...


# Every hook may be a plain function or a coroutine function.
Handler: TypeAlias = Callable[["Context"], Awaitable[None] | None]
TaskHook: TypeAlias = Callable[["Context", "Task"], "Awaitable[Task | None] | Task | None"]
ItemHook: TypeAlias = Callable[["Context", Any], Any]
ErrorHook: TypeAlias = Callable[["Context", BaseException], Awaitable[None] | None]
HTMLHandler: TypeAlias = Callable[["Context", LxmlElement], Awaitable[None] | None]
JSONHandler: TypeAlias = Callable[["Context", Any], Awaitable[None] | None]
