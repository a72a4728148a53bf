"""Capture several titles in sequence and assemble each one in a worker."""

from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import ProcessPoolExecutor
from pathlib import Path
from typing import Callable, List, Sequence, Tuple

from .assemble import assemble_document
from .capture import PageCaptureDriver
from .config import CaptureConfig
from .errors import CaptureError
from .models import AssemblyResult, RunSummary
from .session import BrowserSession
from .utils import output_filename, safe_title

logger = logging.getLogger("svgbook.orchestrator")

Assembler = Callable[[Path], AssemblyResult]


def already_assembled(config: CaptureConfig, title: str) -> bool:
    directory = config.output_root / safe_title(title)
    return (directory / output_filename(directory.name)).exists()


async def assemble_in_worker(
    directory: Path, assemble: Assembler = assemble_document
) -> AssemblyResult:
    """Run ``assemble(directory)`` in a fresh single-use process.

    Each document gets its own pool, so a worker that dies hard (segfault,
    OOM kill) breaks only that pool and never a sibling's assembly.
    """
    loop = asyncio.get_running_loop()
    worker = ProcessPoolExecutor(max_workers=1)
    try:
        return await loop.run_in_executor(worker, assemble, directory)
    finally:
        worker.shutdown(wait=False)


class BookOrchestrator:
    """Sequential capture with a cooldown, concurrent isolated assembly."""

    def __init__(
        self,
        driver: PageCaptureDriver,
        config: CaptureConfig,
        max_workers: int = 2,
        assemble: Assembler = assemble_document,
    ) -> None:
        self.driver = driver
        self.config = config
        self.assemble = assemble
        self.max_workers = max(1, max_workers)

    async def _assemble(self, directory: Path, slots: asyncio.Semaphore) -> AssemblyResult:
        async with slots:
            return await assemble_in_worker(directory, self.assemble)

    async def run(self, titles: Sequence[str], skip_existing: bool = False) -> RunSummary:
        summary = RunSummary()
        slots = asyncio.Semaphore(self.max_workers)
        assemblies: List[Tuple[Path, asyncio.Future]] = []
        processed = 0
        for title in titles:
            if skip_existing and already_assembled(self.config, title):
                logger.info("Skipping %s: already assembled", title)
                summary.skipped_titles.append(title)
                continue
            if processed and self.config.cooldown > 0:
                logger.info("Cooling down for %.0fs before %s", self.config.cooldown, title)
                await asyncio.sleep(self.config.cooldown)
            processed += 1

            logger.info("Capturing %s", title)
            try:
                result = await self.driver.capture(title)
            except CaptureError as exc:
                logger.error("Capture of %s failed: %s", title, exc)
                summary.failed_titles.append(title)
                continue
            except Exception:  # pylint: disable=broad-except
                logger.exception("Unexpected error capturing %s", title)
                summary.failed_titles.append(title)
                continue
            summary.captured.append(result)
            assemblies.append(
                (
                    result.directory,
                    asyncio.ensure_future(self._assemble(result.directory, slots)),
                )
            )

        outcomes = await asyncio.gather(
            *(future for _, future in assemblies), return_exceptions=True
        )
        for (directory, _), outcome in zip(assemblies, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Assembly of %s failed: %s", directory, outcome)
                summary.failed_assemblies.append(directory)
            else:
                summary.assembled.append(outcome)
        return summary


async def run_books(
    titles: Sequence[str],
    config: CaptureConfig,
    skip_existing: bool = False,
    max_workers: int = 2,
) -> RunSummary:
    """Log in once, capture every title and wait for all PDFs."""
    start = time.perf_counter()
    async with BrowserSession(config) as session:
        await session.login()
        driver = PageCaptureDriver(session.view(), await session.http_session(), config)
        orchestrator = BookOrchestrator(driver, config, max_workers=max_workers)
        summary = await orchestrator.run(titles, skip_existing=skip_existing)
    logger.info(
        "Run finished in %.1fs (%d captured, %d assembled, %d failed)",
        time.perf_counter() - start,
        len(summary.captured),
        len(summary.assembled),
        len(summary.failed_titles) + len(summary.failed_assemblies),
    )
    return summary
