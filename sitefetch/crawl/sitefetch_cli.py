"""
Crawler backed by the external ``sitefetch`` command-line tool.

The tool is launched as ``npx sitefetch <url> -o <file> --concurrency <n>``.
Its output file lives in the cache's staging directory and is read back only
after the process exits successfully; the staging file is always removed
afterwards, so a failed or cancelled crawl never leaves text where the cache
could serve it.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
import uuid

from ..errors import FetchFailure
from ..logging_utils import get_logger, log_event, truncate_text
from .base import Crawler


class SitefetchCliCrawler(Crawler):
    """Runs the sitefetch CLI in a subprocess and returns the file it wrote.

    Attributes:
        command: Argument vector prefix, e.g. ["npx", "sitefetch"]
        staging_dir: Directory for the tool's raw output
        concurrency: Parallelism hint passed via --concurrency
    """

    name = "sitefetch"

    def __init__(
        self,
        staging_dir: Path,
        command: list[str] | None = None,
        concurrency: int = 10,
        logger: logging.Logger | None = None,
    ):
        self.command = list(command or ["npx", "sitefetch"])
        self.staging_dir = staging_dir
        self.concurrency = concurrency
        self.logger = logger or get_logger("crawl")

    def build_argv(self, url: str, output_path: Path) -> list[str]:
        return [
            *self.command,
            url,
            "-o",
            str(output_path),
            "--concurrency",
            str(self.concurrency),
        ]

    async def capture(self, url: str) -> str:
        self.staging_dir.mkdir(parents=True, exist_ok=True)
        output_path = self.staging_dir / f"{uuid.uuid4().hex}.txt"
        argv = self.build_argv(url, output_path)
        log_event(self.logger, "Running sitefetch", event="crawler_exec", url=url, argv=argv)

        try:
            try:
                process = await asyncio.create_subprocess_exec(
                    *argv,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                raise FetchFailure(f"Could not start {argv[0]}: {exc}") from exc

            try:
                _, stderr = await process.communicate()
            except asyncio.CancelledError:
                _kill(process)
                await process.wait()
                raise

            if process.returncode != 0:
                detail = truncate_text(stderr.decode("utf-8", errors="replace").strip(), 500)
                raise FetchFailure(
                    f"sitefetch exited with status {process.returncode} for {url}: {detail or 'no output'}"
                )

            try:
                return output_path.read_text(encoding="utf-8")
            except FileNotFoundError as exc:
                raise FetchFailure(f"sitefetch produced no output file for {url}") from exc
            except (OSError, UnicodeDecodeError) as exc:
                raise FetchFailure(f"Could not read sitefetch output for {url}: {exc}") from exc
        finally:
            output_path.unlink(missing_ok=True)


def _kill(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        pass
