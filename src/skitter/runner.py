"""Config-driven crawl: follow in-scope links and record one CSV row per HTML page."""

import logging
from urllib.parse import urldefrag, urlparse

from lxml import etree

from skitter.config import SpiderConfig
from skitter.context import Context
from skitter.extensions import CsvItem, open_output_streams
from skitter.http_client import get
from skitter.spider import Spider
from skitter.types import LxmlElement

logger = logging.getLogger(__name__)


def allowed_hosts(config: SpiderConfig) -> set[str]:
    """Hosts links may be followed into (allowed_domains, else the seed hosts)."""
    if config.allowed_domains:
        return {domain.lower() for domain in config.allowed_domains}
    return {urlparse(url).hostname or "" for url in config.start_urls} - {""}


def in_scope(url: str, hosts: set[str]) -> bool:
    """Return True for http(s) URLs on one of ``hosts`` or their subdomains."""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return False
    host = parsed.hostname.lower()
    return any(host == allowed or host.endswith(f".{allowed}") for allowed in hosts)


def page_title(ctx: Context) -> str:
    assert ctx.response is not None
    try:
        title = ctx.response.html().findtext(".//title")
    except (etree.ParserError, ValueError):
        return ""
    return " ".join((title or "").split())


def record_page(ctx: Context) -> None:
    """Emit ``CsvItem([url, status, title])`` for HTML responses."""
    response = ctx.response
    if response is not None and response.is_html():
        ctx.add_item(CsvItem([response.url, str(response.status_code), page_title(ctx)]))


async def run_crawl(config: SpiderConfig) -> dict[str, float]:
    """Crawl from ``config.start_urls`` until no task is left.

    Args:
        config: Validated configuration

    Returns:
        Final status counters (see SpiderStatus.snapshot())
    """
    hosts = allowed_hosts(config)

    with open_output_streams(config) as (error_stream, csv_stream):
        async with Spider.from_config(
            config, error_stream=error_stream, csv_stream=csv_stream
        ) as spider:

            @spider.on_html("a[href]")
            def follow_link(ctx: Context, element: LxmlElement) -> None:
                href = element.get("href")
                if not href:
                    return
                url, _fragment = urldefrag(href)
                if in_scope(url, hosts):
                    ctx.add_task(get(url), record_page)

            for url in config.start_urls:
                spider.seed_task(get(url), record_page)

            await spider.wait()
            logger.info(f"Crawl {config.name} finished")
            return spider.status.snapshot()
