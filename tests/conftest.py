"""Pytest fixtures for skitter tests."""

from pathlib import Path
from typing import Any

import httpx
import pytest

from skitter.config import ExtensionsConfig, HTTPConfig, SpiderConfig
from skitter.http_client import Client
from skitter.spider import Spider


def make_client() -> Client:
    """Create a Client over a plain httpx client (no retries, no cache)."""
    return Client(httpx.AsyncClient())


def make_spider(*extensions: Any, **kwargs: Any) -> Spider:
    """Create a Spider wired to a plain httpx client.

    Every request goes through pytest-httpx when the httpx_mock fixture is active.
    """
    kwargs.setdefault("client", make_client())
    kwargs.setdefault("name", "test-spider")
    return Spider(*extensions, **kwargs)


@pytest.fixture
def sample_config() -> SpiderConfig:
    """Create a sample SpiderConfig for testing.

    Retries are disabled and robots.txt is skipped so each test mocks only
    the pages it crawls.
    """
    return SpiderConfig(
        name="test-spider",
        description="Test configuration",
        concurrency=4,
        status_interval=0.05,
        start_urls=["https://example.com/"],
        allowed_domains=["example.com"],
        http=HTTPConfig(max_retries=0),
        extensions=ExtensionsConfig(
            deduplicate=True,
            robots_txt=False,
        ),
    )


@pytest.fixture
def write_config(tmp_path: Path) -> Any:
    """Return a function writing a YAML config file into tmp_path."""
    import yaml

    def write(config: dict[str, Any], name: str = "config.yaml") -> Path:
        path = tmp_path / name
        path.write_text(yaml.dump(config))
        return path

    return write


@pytest.fixture
def sample_html() -> str:
    """Return sample HTML content for testing.

    Contains a title, internal links (relative and absolute), an external
    link, a fragment link and a mailto link.
    """
    return """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>Sample   Page</title>
</head>
<body>
    <h1>Welcome to Sample Page</h1>
    <ul>
        <li><a href="/docs/guide">Guide</a></li>
        <li><a href="https://example.com/docs/api#section">API Reference</a></li>
        <li><a href="https://external.com/page">External Link</a></li>
        <li><a href="mailto:user@example.com">Email</a></li>
    </ul>
    <p class="price">10</p>
    <p class="price">20</p>
</body>
</html>"""


@pytest.fixture
def sample_html_minimal() -> str:
    """Return minimal HTML for basic testing."""
    return """<!DOCTYPE html>
<html>
<head><title>Minimal Page</title></head>
<body><p>Hello World</p></body>
</html>"""
