"""Batch scrape orchestration over a list of candidate listing URLs."""

from __future__ import annotations

import asyncio
import inspect
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, Union

from .fetcher import INVALID_URL_REASON, ListingScraper, validate_url
from .logging_config import get_logger
from .models import (
    STATUS_ERROR,
    STATUS_INVALID,
    FailedUrl,
    FetchStats,
    ListingRecord,
    ScrapeBatchResult,
)
from .parser_utils import extract_domain

logger = get_logger("scrape_manager")

DEFAULT_CONCURRENCY = 3
DEFAULT_BATCH_DELAY_SECONDS = 1.0

ProgressCallback = Callable[[int, int], Union[None, Awaitable[None]]]


def partition_urls(urls: Sequence[str]) -> Tuple[List[str], List[str]]:
    """Split raw input into valid and invalid URLs, dropping blank entries."""
    valid: List[str] = []
    invalid: List[str] = []
    for raw in urls:
        if raw is None or not str(raw).strip():
            continue
        url = str(raw).strip()
        if validate_url(url) is None:
            valid.append(url)
        else:
            invalid.append(url)
    return valid, invalid


class ScrapeManager:
    """Runs a :class:`ListingScraper` over URLs in fixed-size sequential batches.

    All scrapes inside a batch run concurrently; a batch only starts once the
    previous one has fully finished, with a fixed pause in between. This bounds
    the number of simultaneous connections without per-host bookkeeping. A
    failing URL never aborts the batch.
    """

    def __init__(
        self,
        scraper: ListingScraper,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        batch_delay: float = DEFAULT_BATCH_DELAY_SECONDS,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.scraper = scraper
        self.concurrency = concurrency
        self.batch_delay = batch_delay

    async def scrape_all(
        self,
        urls: Sequence[str],
        *,
        concurrency: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        stats: Optional[FetchStats] = None,
    ) -> ScrapeBatchResult:
        """Scrape every URL and merge the outcomes.

        Args:
            urls: Candidate listing URLs, in priority order
            concurrency: Batch size override for this call
            on_progress: Called with (completed, total) after each batch
            stats: Optional counters updated by the fetcher

        Returns:
            ScrapeBatchResult with successes and failures in input order
        """
        batch_size = concurrency or self.concurrency
        if batch_size < 1:
            raise ValueError("concurrency must be at least 1")

        valid_urls, invalid_urls = partition_urls(urls)
        result = ScrapeBatchResult()

        if valid_urls:
            logger.info(
                f"Scraping {len(valid_urls)} URLs in batches of {batch_size} "
                f"({len(invalid_urls)} invalid skipped)"
            )

        total = len(valid_urls)
        for start in range(0, total, batch_size):
            batch = valid_urls[start:start + batch_size]
            records = await self._scrape_batch(batch, stats)

            for record in records:
                if record.is_success:
                    result.listings.append(record)
                else:
                    result.failed_urls.append(
                        FailedUrl(url=record.url, error=record.error or "Unknown error", status=record.status)
                    )

            completed = min(start + batch_size, total)
            await self._report_progress(on_progress, completed, total)

            if completed < total:
                await asyncio.sleep(self.batch_delay)

        for url in invalid_urls:
            result.failed_urls.append(FailedUrl(url=url, error=INVALID_URL_REASON, status=STATUS_INVALID))

        logger.info(
            f"Scrape completed: {result.total_scraped} scraped, "
            f"{result.total_failed} failed ({result.blocked_count} blocked)"
        )
        return result

    async def _scrape_batch(self, batch: List[str], stats: Optional[FetchStats]) -> List[ListingRecord]:
        """Scrape one batch concurrently, keeping the batch order."""
        tasks = [self.scraper.scrape(url, stats) for url in batch]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        records: List[ListingRecord] = []
        for url, outcome in zip(batch, results):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(f"Scrape of {url} raised {type(outcome).__name__}: {outcome}")
                outcome = ListingRecord.failure(
                    url,
                    extract_domain(url),
                    STATUS_ERROR,
                    str(outcome) or type(outcome).__name__,
                )
            records.append(outcome)
        return records

    @staticmethod
    async def _report_progress(on_progress: Optional[ProgressCallback], completed: int, total: int) -> None:
        if on_progress is None:
            return
        try:
            maybe_awaitable = on_progress(completed, total)
            if inspect.isawaitable(maybe_awaitable):
                await maybe_awaitable
        except Exception as exc:
            logger.warning(f"Progress callback failed: {exc}")
