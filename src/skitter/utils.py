"""Utility functions."""

import logging
import traceback

from rich.logging import RichHandler


def setup_logging(verbose: bool = False) -> None:
    """Setup logging with RichHandler for console output.

    Args:
        verbose: If True, sets logging to DEBUG level and shows file paths.
                If False, sets logging to INFO level and suppresses noisy loggers.
    """
    level = logging.DEBUG if verbose else logging.INFO

    handler = RichHandler(
        rich_tracebacks=True,
        markup=False,
        show_time=True,
        show_path=verbose,  # Only show file path in verbose mode
    )

    formatter = logging.Formatter(
        "%(message)s",
        datefmt="[%X]",
    )
    handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
        force=True,  # Override any existing config
    )

    # Suppress noisy loggers unless verbose
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("hishel").setLevel(logging.WARNING)


def format_stack(err: BaseException | None = None) -> str:
    """Format the traceback of ``err``, or the current call stack when it has none."""
    if err is not None and err.__traceback__ is not None:
        return "".join(traceback.format_exception(err))
    return "".join(traceback.format_stack()[:-1])
