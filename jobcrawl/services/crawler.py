"""Crawl execution: fetch from one or all sources, reconcile, record the outcome."""
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Mapping

from pydantic import ValidationError

from ..errors import AllSourcesFailedError, PersistenceItemError, SourceFetchError, UnknownSourceError
from ..models import ALL_SOURCES
from ..providers.base import JobSource
from ..schemas import CrawlErrorInfo, CrawlEvent, CrawlJob, CrawlResult, RawJob, SearchParams, utcnow
from ..storage import Storage
from .dedup import Deduplicator
from .notify import NotificationSink
from .rate_limit import RateLimiter
from .registry import CrawlRegistry

logger = logging.getLogger(__name__)

AfterRun = Callable[[CrawlJob], Any]


def new_run_id(now: datetime) -> str:
    return f"crawl-{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:8]}"


def finish_crawl(
    crawl: CrawlJob,
    now: datetime,
    *,
    result: CrawlResult | None = None,
    error: str | None = None,
    source_errors: dict[str, str] | None = None,
) -> CrawlJob:
    """Return ``crawl`` moved to its terminal state.

    A run with an error is failed, otherwise completed.
    """
    if crawl.status != "running":
        return crawl
    return crawl.model_copy(update={
        "status": "failed" if error is not None else "completed",
        "end_time": now,
        "duration": int((now - crawl.start_time).total_seconds() * 1000),
        "result": result,
        "error": CrawlErrorInfo(message=error) if error is not None else None,
        "source_errors": source_errors if source_errors is not None else crawl.source_errors,
    })


class CrawlExecutor:
    def __init__(
        self,
        storage: Storage,
        sources: Mapping[str, JobSource],
        rate_limiter: RateLimiter,
        deduplicator: Deduplicator,
        registry: CrawlRegistry,
        notifier: NotificationSink | None = None,
        *,
        max_concurrency: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.sources = dict(sources)
        self.rate_limiter = rate_limiter
        self.deduplicator = deduplicator
        self.registry = registry
        self.notifier = notifier
        self._clock = clock
        self._semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None
        self._tasks: set[asyncio.Task] = set()
        self._unrecorded: dict[str, CrawlJob] = {}

    @property
    def available_sources(self) -> list[str]:
        return list(self.sources)

    def validate_source(self, source: str) -> None:
        if source != ALL_SOURCES and source not in self.sources:
            raise UnknownSourceError(
                f"Invalid source {source!r}. Available sources: "
                f"{', '.join(self.sources) or 'none'} or 'all'"
            )

    # ---- lifecycle -------------------------------------------------------

    def begin(
        self,
        source: str,
        search_params: SearchParams | dict | None = None,
        *,
        schedule_id: str | None = None,
        created_by: str | None = None,
    ) -> CrawlJob:
        """Validate the request and record a running CrawlJob."""
        self.validate_source(source)
        params = SearchParams.model_validate(search_params or {})
        now = self._clock()
        crawl = CrawlJob(
            job_id=new_run_id(now),
            source=source,
            status="running",
            search_params=params.model_dump(exclude_none=True),
            start_time=now,
            is_scheduled=schedule_id is not None,
            schedule_id=schedule_id,
            created_by=created_by,
        )
        logger.info("[crawl] starting %s for source: %s", crawl.job_id, source)
        self.registry.track(crawl)
        try:
            crawl = self.storage.insert_crawl_job(crawl)
        except Exception as e:
            logger.error("[crawl] could not record %s: %s", crawl.job_id, e, exc_info=True)
            crawl = finish_crawl(crawl, self._clock(), error=f"Could not record crawl job: {e}")
            self.registry.track(crawl)
        return crawl

    async def execute(self, crawl: CrawlJob, persist: bool = True, after_run: AfterRun | None = None) -> CrawlJob:
        if crawl.status == "running":
            crawl = await self._execute(crawl, persist)

        if after_run is not None:
            try:
                after_run(crawl)
            except Exception as e:
                logger.error("[crawl] post-run hook failed for %s: %s", crawl.job_id, e, exc_info=True)

        self._notify(crawl)
        return crawl

    async def _execute(self, crawl: CrawlJob, persist: bool) -> CrawlJob:
        params = SearchParams.model_validate(crawl.search_params)
        try:
            raw_jobs, source_errors, rejected = await self.fetch(crawl.source, params)
        except AllSourcesFailedError as e:
            logger.error("[crawl] %s failed: %s", crawl.job_id, e)
            failed = finish_crawl(
                crawl, self._clock(),
                error=str(e),
                source_errors={f.source: str(f.cause) for f in e.failures},
            )
            return self._record(failed)
        except Exception as e:
            logger.error("[crawl] %s failed: %s", crawl.job_id, e, exc_info=True)
            return self._record(finish_crawl(crawl, self._clock(), error=str(e) or type(e).__name__))

        if persist and raw_jobs:
            tally = self.save_jobs(raw_jobs, rejected)
        else:
            tally = CrawlResult(total=len(raw_jobs) + rejected, errors=rejected)

        done = finish_crawl(crawl, self._clock(), result=tally, source_errors=source_errors)
        logger.info(
            "[crawl] %s completed: total=%d saved=%d duplicates=%d errors=%d",
            crawl.job_id, tally.total, tally.saved, tally.duplicates, tally.errors,
        )
        return self._record(done)

    def _record(self, crawl: CrawlJob) -> CrawlJob:
        self._retry_unrecorded()
        self.registry.track(crawl)
        try:
            return self.storage.save_crawl_job(crawl)
        except Exception as e:
            logger.error("[crawl] could not save outcome of %s: %s", crawl.job_id, e, exc_info=True)
            failed = crawl
            if crawl.status != "failed":
                failed = crawl.model_copy(update={
                    "status": "failed",
                    "error": CrawlErrorInfo(message=f"Could not record crawl outcome: {e}"),
                })
                self.registry.track(failed)
            # stored row is still "running" until a later write succeeds
            self._unrecorded[failed.job_id] = failed
            return failed

    def _retry_unrecorded(self) -> None:
        for run_id, crawl in list(self._unrecorded.items()):
            try:
                self.storage.save_crawl_job(crawl)
            except Exception as e:
                logger.warning("[crawl] outcome of %s still not recorded: %s", run_id, e)
                return
            del self._unrecorded[run_id]
            logger.info("[crawl] recorded deferred outcome of %s", run_id)

    def _notify(self, crawl: CrawlJob) -> None:
        if self.notifier is None or crawl.status not in ("completed", "failed"):
            return
        try:
            self.notifier.notify(CrawlEvent(kind=crawl.status, crawl=crawl))
        except Exception as e:
            logger.error("[crawl] notification failed for %s: %s", crawl.job_id, e)

    async def run(
        self,
        source: str = ALL_SOURCES,
        search_params: SearchParams | dict | None = None,
        persist: bool = True,
        *,
        schedule_id: str | None = None,
        created_by: str | None = None,
        after_run: AfterRun | None = None,
    ) -> CrawlJob:
        crawl = self.begin(source, search_params, schedule_id=schedule_id, created_by=created_by)
        return await self.execute(crawl, persist, after_run)

    def launch(
        self,
        source: str = ALL_SOURCES,
        search_params: SearchParams | dict | None = None,
        persist: bool = True,
        *,
        schedule_id: str | None = None,
        created_by: str | None = None,
        after_run: AfterRun | None = None,
    ) -> CrawlJob:
        """Start a run in the background and return its running snapshot.

        Must be called from inside a running event loop.
        """
        crawl = self.begin(source, search_params, schedule_id=schedule_id, created_by=created_by)
        task = asyncio.get_running_loop().create_task(self.execute(crawl, persist, after_run))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return crawl

    async def drain(self) -> None:
        """Wait for every background run started by ``launch``."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ---- fetching --------------------------------------------------------

    async def fetch(self, source: str, params: SearchParams) -> tuple[list[RawJob], dict[str, str], int]:
        """Fetch from ``source`` (or every configured source for ``all``).

        Returns the concatenated jobs, the per-source failures and the number
        of records dropped as malformed. Raises ``AllSourcesFailedError`` when
        nothing succeeded.
        """
        if source == ALL_SOURCES:
            names = [n for n, s in self.sources.items() if self._configured(s)]
        else:
            self.validate_source(source)
            names = [source]

        outcomes = await asyncio.gather(
            *(self._fetch_one(name, params) for name in names),
            return_exceptions=True,
        )

        jobs: list[RawJob] = []
        rejected = 0
        failures: list[SourceFetchError] = []
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, SourceFetchError):
                    outcome = SourceFetchError(name, outcome)
                logger.error("[crawl] failed to fetch jobs from %s: %s", name, outcome.cause)
                failures.append(outcome)
            else:
                good, bad = outcome
                jobs.extend(good)
                rejected += bad

        if not names or len(failures) == len(names):
            raise AllSourcesFailedError(failures)
        logger.info("[crawl] fetched a total of %d jobs from %d source(s)", len(jobs), len(names) - len(failures))
        return jobs, {f.source: str(f.cause) for f in failures}, rejected

    @staticmethod
    def _configured(source: JobSource) -> bool:
        try:
            return bool(source.is_configured())
        except Exception as e:
            logger.warning("[crawl] %s configuration check failed: %s", getattr(source, "name", source), e)
            return False

    async def _fetch_one(self, name: str, params: SearchParams) -> tuple[list[RawJob], int]:
        source = self.sources[name]
        if not self._configured(source):
            raise SourceFetchError(name, RuntimeError("source is not configured"))
        try:
            if self._semaphore is not None:
                async with self._semaphore:
                    items = await self.rate_limiter.execute(name, lambda: source.fetch_jobs(params))
            else:
                items = await self.rate_limiter.execute(name, lambda: source.fetch_jobs(params))
        except Exception as e:
            raise SourceFetchError(name, e) from e

        jobs: list[RawJob] = []
        rejected = 0
        for index, it in enumerate(items):
            if isinstance(it, RawJob):
                jobs.append(it)
                continue
            try:
                jobs.append(RawJob.model_validate(it))
            except ValidationError as e:
                rejected += 1
                logger.error("[crawl] dropping malformed record %d from %s: %s", index, name, e)
        logger.info("[crawl] fetched %d jobs from %s", len(jobs), name)
        return jobs, rejected

    # ---- persisting ------------------------------------------------------

    def save_jobs(self, raw_jobs: list[RawJob], rejected: int = 0) -> CrawlResult:
        """Reconcile every job; one bad item never stops the rest.

        ``rejected`` counts records already dropped as malformed; they are
        reported as errors.
        """
        saved = duplicates = 0
        errors = rejected
        for index, raw in enumerate(raw_jobs):
            try:
                outcome = self.deduplicator.reconcile(raw)
            except Exception as e:
                errors += 1
                logger.error("[crawl] error saving job: %s", PersistenceItemError(index, e))
                continue
            if outcome.created:
                saved += 1
            else:
                duplicates += 1
        return CrawlResult(total=len(raw_jobs) + rejected, saved=saved, duplicates=duplicates, errors=errors)
