"""Command line interface.

CLI module using Typer with Rich-formatted output for crawl, validate and init commands.
"""

# ruff: noqa: B008

import asyncio
from pathlib import Path

import typer
import yaml
from rich.console import Console
from rich.table import Table
from rich.traceback import install as install_rich_traceback

from skitter import __version__
from skitter.config import load_config
from skitter.exceptions import ConfigError, SkitterError

install_rich_traceback(show_locals=False)

console = Console()

app = typer.Typer(
    name="skitter",
    help="skitter - hook-driven async crawler",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"skitter version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """skitter - hook-driven async crawler."""
    pass


@app.command()
def crawl(
    config: Path = typer.Option(
        ...,
        "--config",
        "-c",
        help="Path to YAML config file",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Verbose logging",
    ),
    max_requests: int | None = typer.Option(
        None,
        "--max-requests",
        help="Limit number of requests admitted",
        min=1,
    ),
    depth_limit: int | None = typer.Option(
        None,
        "--depth-limit",
        help="Limit crawl depth (seed pages have depth 1)",
        min=1,
    ),
) -> None:
    """Crawl from the start URLs in a config file.

    Follows links inside the allowed domains and writes one CSV row
    (url, status, title) per HTML page when extensions.csv_output is set.
    """
    try:
        console.print(f"[cyan]Loading configuration from:[/cyan] {config}")
        spider_config = load_config(config)

        if max_requests:
            spider_config.extensions.max_requests = max_requests
            console.print(f"[yellow]Max requests limit set:[/yellow] {max_requests}")

        if depth_limit:
            spider_config.extensions.depth_limit = depth_limit
            console.print(f"[yellow]Depth limit set:[/yellow] {depth_limit}")

        if not spider_config.start_urls:
            console.print("[red]Error:[/red] No start_urls in configuration")
            raise typer.Exit(code=1)

        from skitter.runner import run_crawl
        from skitter.utils import setup_logging

        setup_logging(verbose=verbose)

        console.print(f"[green]Starting spider:[/green] {spider_config.name}")
        console.print(f"[cyan]Start URLs:[/cyan] {', '.join(spider_config.start_urls)}")

        stats = asyncio.run(run_crawl(spider_config))

        table = Table(title="Crawl Summary")
        table.add_column("Counter", style="cyan")
        table.add_column("Value", style="white")
        table.add_row("Tasks admitted", str(stats["total_task"]))
        table.add_row("Tasks finished", str(stats["finished_task"]))
        table.add_row("Items", str(stats["total_item"]))
        console.print(table)

        console.print("[green]Crawl completed successfully![/green]")

    except typer.Exit:
        raise

    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        if verbose:
            console.print_exception()
        raise typer.Exit(code=1) from None

    except SkitterError as e:
        console.print(f"[red]Crawl failed:[/red] {e}")
        if verbose:
            console.print_exception()
        raise typer.Exit(code=1) from None

    except KeyboardInterrupt:
        console.print("\n[yellow]Crawl interrupted by user[/yellow]")
        raise typer.Exit(code=130) from None

    except Exception as e:
        console.print(f"[red]Unexpected error:[/red] {e}")
        if verbose:
            console.print_exception()
        else:
            console.print("[dim]Use --verbose to see full traceback[/dim]")
        raise typer.Exit(code=1) from None


@app.command()
def validate(
    config_path: Path = typer.Argument(
        ...,
        help="Path to YAML config file to validate",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
) -> None:
    """Validate a skitter configuration file.

    Checks YAML syntax and validates all configuration fields against
    the schema. Displays detailed error messages if validation fails.
    """
    try:
        console.print(f"[cyan]Validating configuration:[/cyan] {config_path}")

        spider_config = load_config(config_path)

        console.print("[green][OK] Configuration is valid![/green]\n")

        ext = spider_config.extensions
        table = Table(title="Configuration Summary")
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="white")

        table.add_row("Name", spider_config.name)
        table.add_row("Start URLs", str(len(spider_config.start_urls)))
        table.add_row("Concurrency", str(spider_config.concurrency))
        table.add_row("Deduplicate", "Yes" if ext.deduplicate else "No")
        table.add_row("Respect robots.txt", "Yes" if ext.robots_txt else "No")
        table.add_row("Depth Limit", str(ext.depth_limit or "unlimited"))
        table.add_row("Max Requests", str(ext.max_requests or "unlimited"))
        table.add_row("Error Log", ext.error_log or "[dim]none[/dim]")
        table.add_row("CSV Output", ext.csv_output or "[dim]none[/dim]")

        console.print(table)

    except ConfigError as e:
        console.print("[red][FAIL] Configuration validation failed:[/red]\n")
        console.print(str(e), markup=False)
        raise typer.Exit(code=1) from None


@app.command()
def init(
    output_path: Path | None = typer.Argument(
        None,
        help="Output path for generated config file (default: skitter.yaml)",
    ),
    start_url: str = typer.Option(
        ...,
        "--start-url",
        "-u",
        prompt="Start URL (e.g., 'https://example.com/')",
        help="First URL to crawl",
    ),
    name: str | None = typer.Option(
        None,
        "--name",
        "-n",
        help="Spider name (default: the start URL's host)",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing file",
    ),
) -> None:
    """Create a starter skitter configuration file."""
    if output_path is None:
        output_path = Path("skitter.yaml")

    if output_path.exists() and not force:
        console.print(f"[red]Error:[/red] File already exists: {output_path}")
        console.print("[dim]Use --force to overwrite[/dim]")
        raise typer.Exit(code=1)

    from urllib.parse import urlparse

    domain = urlparse(start_url).hostname
    if not domain:
        console.print("[red]Error:[/red] Invalid URL format")
        raise typer.Exit(code=1)

    config_template = {
        "name": name or domain,
        "concurrency": 8,
        "start_urls": [start_url],
        "allowed_domains": [domain],
        "http": {
            "timeout": 30.0,
            "max_retries": 3,
        },
        "extensions": {
            "deduplicate": True,
            "robots_txt": True,
            "depth_limit": 3,
            "max_requests": 500,
            "error_log": "output/errors.jsonl",
            "csv_output": "output/pages.csv",
        },
    }

    with output_path.open("w", encoding="utf-8") as f:
        f.write("# skitter configuration\n")
        f.write(f"# Generated for: {config_template['name']}\n\n")
        yaml.dump(config_template, f, default_flow_style=False, sort_keys=False)

    console.print(f"\n[green][OK] Configuration created:[/green] {output_path}")
    console.print("\n[dim]Next steps:[/dim]")
    console.print(f"  1. Edit {output_path} to customize settings")
    console.print(f"  2. Run: skitter validate {output_path}")
    console.print(f"  3. Run: skitter crawl --config {output_path}")


if __name__ == "__main__":
    app()
