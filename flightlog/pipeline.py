# pipeline.py
from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence, Tuple, Union

from .logging_utils import log_event
from .models import PageExtractionResult

logger = logging.getLogger("flightlog.pipeline")

PageJob = Tuple[Union[str, Path], int]
ProgressCallback = Callable[[PageExtractionResult], None]


class PageExtractor(Protocol):
    async def extract(self, image_path: Union[str, Path], page_number: int) -> PageExtractionResult:
        ...


def number_pages(paths: Sequence[Union[str, Path]], start_page: int = 1) -> List[PageJob]:
    return [(p, start_page + i) for i, p in enumerate(paths)]


class ExtractionPipeline:
    """
    Fixed-size worker pool over an intake queue.

    Workers share nothing but the queue; each keeps its own result list and
    the lists are merged once all workers finish. Every submitted page gets
    exactly one PageExtractionResult, failed or not.
    """

    def __init__(self, extractor: PageExtractor, concurrency: int = 10) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be a positive integer, got {concurrency}")
        self.extractor = extractor
        self.concurrency = concurrency

    async def _run_one(self, image_path: Union[str, Path], page_number: int) -> PageExtractionResult:
        try:
            return await self.extractor.extract(image_path, page_number)
        except Exception as e:
            # extractors are expected to return errors as data; this is the backstop
            log_event(logger, "page_worker_exception", level=logging.ERROR, page=page_number, error=str(e))
            return PageExtractionResult(
                page_number=page_number,
                image_path=str(image_path),
                error=f"{type(e).__name__}: {e}",
            )

    async def _worker(
        self,
        queue: "asyncio.Queue[PageJob]",
        on_result: Optional[ProgressCallback],
    ) -> List[PageExtractionResult]:
        done: List[PageExtractionResult] = []
        while True:
            try:
                image_path, page_number = queue.get_nowait()
            except asyncio.QueueEmpty:
                return done
            try:
                result = await self._run_one(image_path, page_number)
                done.append(result)
                if on_result is not None:
                    try:
                        on_result(result)
                    except Exception as e:
                        log_event(logger, "progress_callback_failed", level=logging.WARNING, page=page_number, error=str(e))
            finally:
                queue.task_done()

    async def process_pages(
        self,
        pages: Sequence[PageJob],
        on_result: Optional[ProgressCallback] = None,
    ) -> List[PageExtractionResult]:
        queue: "asyncio.Queue[PageJob]" = asyncio.Queue()
        for job in pages:
            queue.put_nowait(job)

        workers = min(self.concurrency, len(pages))
        log_event(logger, "extraction_batch_started", pages=len(pages), workers=workers)
        start = time.time()

        per_worker = await asyncio.gather(*(self._worker(queue, on_result) for _ in range(workers)))

        results = [r for batch in per_worker for r in batch]
        # completion order is arbitrary; page order is restored here
        results.sort(key=lambda r: r.page_number)

        log_event(
            logger,
            "extraction_batch_completed",
            pages=len(results),
            pages_with_errors=sum(1 for r in results if r.error),
            entries=sum(len(r.entries) for r in results),
            duration_ms=int((time.time() - start) * 1000),
        )
        return results


async def process_images_concurrent(
    extractor: PageExtractor,
    pages: Sequence[PageJob],
    concurrency: int,
    on_result: Optional[ProgressCallback] = None,
) -> List[PageExtractionResult]:
    return await ExtractionPipeline(extractor, concurrency).process_pages(pages, on_result)
