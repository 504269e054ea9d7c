"""
Command-line interface for the SiteFetch cache.

Uses Typer to expose the stdio tool server plus direct cache commands.
Supports loading .env files for crawler credentials.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from dotenv import load_dotenv
import typer
from rich.console import Console
from rich.table import Table

from .config import AppConfig, get_cache_dir, load_config
from .logging_utils import setup_logging
from .operations import SiteFetchOperations, build_operations
from .server import SiteFetchServer
from .types import OperationResult

app = typer.Typer(add_completion=False, help="Cache website text for LLM tool calls.")
console = Console()
err_console = Console(stderr=True)


def _load(
    config: Path | None,
    cache_dir: Path | None,
    crawler: str | None,
    timeout: float | None,
    log_level: str | None,
) -> AppConfig:
    # Load environment variables from .env if available
    load_dotenv()
    cfg = load_config(str(config) if config else None)

    # Override with CLI options
    if cache_dir is not None:
        cfg.cache.dir = str(cache_dir)
    if crawler:
        cfg.crawler.backend = crawler
    if timeout is not None:
        cfg.crawler.timeout_seconds = timeout
    if log_level:
        cfg.logging.level = log_level
    setup_logging(cfg.logging, get_cache_dir(cfg.cache))
    return cfg


def _operations(cfg: AppConfig) -> SiteFetchOperations:
    try:
        return build_operations(cfg)
    except ValueError as exc:
        err_console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=2) from exc


def _report(result: OperationResult) -> None:
    if result.ok:
        console.print(result.text, markup=False, highlight=False)
        return
    err_console.print(f"[red]{result.kind}[/red]: ", end="")
    err_console.print(result.text, markup=False, highlight=False)
    raise typer.Exit(code=1)


ConfigOption = typer.Option(None, "--config", "-c", exists=True, help="YAML config file.")
CacheDirOption = typer.Option(None, "--cache-dir", help="Cache root directory.")
CrawlerOption = typer.Option(None, "--crawler", help="Crawler backend: sitefetch, crawl4ai_api or httpx.")
TimeoutOption = typer.Option(None, "--timeout", help="Capture timeout in seconds.")
LogLevelOption = typer.Option(None, "--log-level", help="Logging level.")


@app.command()
def serve(
    config: Path | None = ConfigOption,
    cache_dir: Path | None = CacheDirOption,
    crawler: str | None = CrawlerOption,
    timeout: float | None = TimeoutOption,
    log_level: str | None = LogLevelOption,
):
    """Run the MCP tool server over stdio."""
    cfg = _load(config, cache_dir, crawler, timeout, log_level)
    server = SiteFetchServer(_operations(cfg), name=cfg.server.name, version=cfg.server.version)
    try:
        asyncio.run(server.serve())
    except KeyboardInterrupt:
        pass


@app.command()
def fetch(
    url: str = typer.Argument(..., help="Site URL to fetch."),
    force_refresh: bool = typer.Option(False, "--force-refresh/--use-cache", help="Capture again even if cached."),
    print_content: bool = typer.Option(False, "--print", help="Print the captured text instead of a summary."),
    config: Path | None = ConfigOption,
    cache_dir: Path | None = CacheDirOption,
    crawler: str | None = CrawlerOption,
    timeout: float | None = TimeoutOption,
    log_level: str | None = LogLevelOption,
):
    """Fetch a site into the cache (or serve it from the cache)."""
    cfg = _load(config, cache_dir, crawler, timeout, log_level)
    ops = _operations(cfg)

    async def _run() -> OperationResult:
        result = await ops.fetch_site(url, force_refresh=force_refresh, add_to_context=False)
        if print_content and result.ok:
            return await ops.read_resource(result.data["identifier"])
        return result

    _report(asyncio.run(_run()))


@app.command("list")
def list_sites(
    config: Path | None = ConfigOption,
    cache_dir: Path | None = CacheDirOption,
    log_level: str | None = LogLevelOption,
):
    """List cached sites."""
    cfg = _load(config, cache_dir, None, None, log_level)
    result = asyncio.run(_operations(cfg).list_sites())
    if not result.ok or not result.data.get("sites"):
        _report(result)
        return

    table = Table(title="Fetched sites")
    table.add_column("#", justify="right")
    table.add_column("Site")
    table.add_column("Resource", overflow="fold")
    table.add_column("Fetched")
    table.add_column("Size", justify="right")
    for position, item in enumerate(result.data["sites"], start=1):
        size = f"{item.size_bytes:,} B" if item.size_bytes is not None else "-"
        table.add_row(str(position), item.display_name, item.identifier, item.description, size)
    console.print(table)


@app.command()
def clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
    config: Path | None = ConfigOption,
    cache_dir: Path | None = CacheDirOption,
    log_level: str | None = LogLevelOption,
):
    """Delete every cached site."""
    cfg = _load(config, cache_dir, None, None, log_level)
    if not yes:
        typer.confirm(f"Delete every cached site under {get_cache_dir(cfg.cache)}?", abort=True)
    _report(asyncio.run(_operations(cfg).clear_cache()))


@app.command()
def remove(
    url: str = typer.Argument(..., help="Cached URL to remove."),
    config: Path | None = ConfigOption,
    cache_dir: Path | None = CacheDirOption,
    log_level: str | None = LogLevelOption,
):
    """Remove one site from the cache."""
    cfg = _load(config, cache_dir, None, None, log_level)
    _report(asyncio.run(_operations(cfg).remove_site(url)))


@app.command()
def reconcile(
    config: Path | None = ConfigOption,
    cache_dir: Path | None = CacheDirOption,
    log_level: str | None = LogLevelOption,
):
    """Repair the cache: drop dangling index entries and orphan files."""
    cfg = _load(config, cache_dir, None, None, log_level)
    _report(asyncio.run(_operations(cfg).reconcile_cache()))


if __name__ == "__main__":
    app()
