"""skitter - hook-driven async crawling pipeline."""

from importlib.metadata import PackageNotFoundError, version

from skitter.context import Context, Item, Task
from skitter.exceptions import (
    ConfigError,
    HTTPStatusError,
    RequestError,
    SkitterError,
    UnknownExtensionError,
)
from skitter.extensions import (
    CsvItem,
    with_csv_item_saver,
    with_deduplicate,
    with_depth_limit,
    with_error_log,
    with_max_request_limit,
    with_robots_txt,
)
from skitter.http_client import (
    Client,
    Middleware,
    Request,
    Response,
    get,
    post,
    with_headers,
    with_status_check,
)
from skitter.spider import Extension, Spider

try:
    __version__ = version("skitter")
except PackageNotFoundError:
    __version__ = "dev"

__all__ = [
    "Client",
    "ConfigError",
    "Context",
    "CsvItem",
    "Extension",
    "HTTPStatusError",
    "Item",
    "Middleware",
    "Request",
    "RequestError",
    "Response",
    "SkitterError",
    "Spider",
    "Task",
    "UnknownExtensionError",
    "get",
    "post",
    "with_csv_item_saver",
    "with_deduplicate",
    "with_depth_limit",
    "with_error_log",
    "with_headers",
    "with_max_request_limit",
    "with_robots_txt",
    "with_status_check",
]
