"""Configuration system.

YAML configuration files validated by Pydantic models with type-safe schemas, validation,
sensible defaults, and clear error messages. Entry point: load_config().
"""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from skitter.exceptions import ConfigError

DEFAULT_USER_AGENT = "skitter/0.1.0 (+https://pypi.org/project/skitter/)"


class CacheConfig(BaseModel):
    """HTTP caching configuration for development and repeated crawls.

    Uses Hishel library for RFC 9111 compliant HTTP caching.
    """

    enabled: bool = Field(
        default=False,
        description="Enable HTTP caching (opt-in for development/testing)",
    )
    backend: Literal["sqlite", "memory"] = Field(
        default="sqlite",
        description=(
            "Cache backend: sqlite (persistent), memory (no cache storage, hishel defaults)"
        ),
    )
    cache_dir: str = Field(
        default=".skitter_cache",
        description="Directory holding the cache database",
    )
    ttl_seconds: int | None = Field(
        default=3600,
        ge=60,
        description="Cache TTL in seconds (None = respect server headers only)",
    )


class HTTPConfig(BaseModel):
    """HTTP client configuration."""

    user_agent: str = Field(default=DEFAULT_USER_AGENT, min_length=1)
    timeout: float = Field(default=30.0, gt=0, description="Total request timeout in seconds")
    connect_timeout: float = Field(default=10.0, gt=0, description="Connect timeout in seconds")
    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries for 429/5xx responses and transport errors (0 disables retries)",
    )
    retry_backoff: float = Field(
        default=2.0,
        ge=1.0,
        le=10.0,
        description="Exponential backoff multiplier between retries",
    )
    retry_jitter: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Random jitter applied to backoff delays",
    )
    follow_redirects: bool = Field(default=True)
    max_redirects: int = Field(default=10, ge=0, le=50)
    max_connections: int = Field(default=100, ge=1, le=1000)
    cache: CacheConfig = Field(default_factory=CacheConfig)


class ExtensionsConfig(BaseModel):
    """Built-in extensions enabled for a spider.

    Extensions are applied in a fixed order: deduplication, depth limit,
    robots.txt, request cap, error log, CSV output. Filters that can
    veto a task run before the request cap so vetoed tasks never
    consume the budget.
    """

    deduplicate: bool = Field(default=True, description="Drop requests already seen")
    robots_txt: bool = Field(default=True, description="Respect robots.txt rules")
    robots_user_agent: str | None = Field(
        default=None,
        description="User agent matched against robots.txt (default: http.user_agent)",
    )
    depth_limit: int | None = Field(
        default=None,
        ge=1,
        description="Maximum crawl depth (seed requests have depth 1, None = unlimited)",
    )
    max_requests: int | None = Field(
        default=None,
        ge=1,
        description="Maximum number of requests admitted for the whole crawl",
    )
    error_log: str | None = Field(
        default=None,
        description="Path of a JSON-lines file receiving one record per fault",
    )
    csv_output: str | None = Field(
        default=None,
        description="Path of a CSV file receiving tabular items",
    )


class SpiderConfig(BaseModel):
    """Complete spider configuration."""

    name: str = Field(..., description="Spider name used in logs and fault records")
    description: str = Field(default="")
    logging: bool = Field(default=True, description="Log task lifecycle and faults")
    concurrency: int = Field(
        default=16,
        ge=1,
        le=1000,
        description="Maximum number of tasks fetched and handled at the same time",
    )
    status_interval: float = Field(
        default=5.0,
        gt=0,
        description="Seconds between throughput estimates",
    )
    start_urls: list[str] = Field(default_factory=list, description="Seed URLs")
    allowed_domains: list[str] = Field(
        default_factory=list,
        description="Domains the CLI crawler follows links into (empty = seed domains)",
    )
    http: HTTPConfig = Field(default_factory=HTTPConfig)
    extensions: ExtensionsConfig = Field(default_factory=ExtensionsConfig)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Reject empty names and names with leading/trailing whitespace."""
        if not v:
            raise ValueError(
                "name cannot be empty. Add 'name: my-spider' at the top of your config file."
            )

        if v != v.strip():
            raise ValueError(
                f"name cannot have leading/trailing whitespace: {v!r}. Use '{v.strip()}' instead."
            )

        return v

    @model_validator(mode="after")
    def validate_start_urls(self) -> "SpiderConfig":
        for url in self.start_urls:
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"start_urls must be absolute http(s) URLs, got {url!r}")
        return self


def load_config(path: Path) -> SpiderConfig:
    """Load and validate YAML configuration file.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated SpiderConfig instance

    Raises:
        ConfigError: If config file is not found, invalid YAML, or validation fails
    """
    try:
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        if not path.is_file():
            raise ValueError(f"Configuration path is not a file: {path}")

        with path.open("r", encoding="utf-8") as f:
            config_dict = yaml.safe_load(f)

        if config_dict is None:
            raise ValueError(f"Configuration file is empty: {path}")

        if not isinstance(config_dict, dict):
            raise ValueError(
                f"Configuration file must contain a YAML object/dict, "
                f"got {type(config_dict).__name__}"
            )

        return SpiderConfig(**config_dict)
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed for {path}:\n{e}") from e
    except ValueError as e:
        raise ConfigError(str(e)) from e
