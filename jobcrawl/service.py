"""Plain-call surface of the crawl subsystem, consumed by the HTTP layer."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from sqlalchemy.orm import sessionmaker

from .config import Settings, settings as default_settings
from .models import ALL_SOURCES
from .providers.base import JobSource
from .providers.registry import build_sources
from .schemas import CrawlJob, CrawlStats, ScheduleDefinition, ScheduledCrawl, SearchParams
from .services.crawler import CrawlExecutor
from .services.dedup import Deduplicator
from .services.notify import LogNotifier, NotificationSink
from .services.rate_limit import RateLimiter
from .services.registry import ActiveCrawlCache, CrawlRegistry
from .services.scheduler import Scheduler
from .storage import SqlStorage, Storage


@dataclass
class CrawlService:
    storage: Storage
    executor: CrawlExecutor
    registry: CrawlRegistry
    scheduler: Scheduler

    async def start_crawl(
        self,
        source: str = ALL_SOURCES,
        search_params: SearchParams | dict | None = None,
        save_jobs: bool = True,
        *,
        wait: bool = True,
        created_by: str | None = None,
    ) -> CrawlJob:
        if wait:
            return await self.executor.run(source, search_params, save_jobs, created_by=created_by)
        return self.executor.launch(source, search_params, save_jobs, created_by=created_by)

    def get_crawl_status(self, run_id: str) -> CrawlJob:
        return self.registry.get_status(run_id)

    def list_active_crawls(self) -> list[CrawlJob]:
        return self.registry.list_active()

    def list_crawl_history(self, limit: int = 10, offset: int = 0) -> list[CrawlJob]:
        return self.registry.list_history(limit, offset)

    def get_stats(self) -> CrawlStats:
        return self.registry.stats()

    def create_schedule(self, definition: ScheduleDefinition | dict) -> ScheduledCrawl:
        return self.scheduler.create(definition)

    def cancel_schedule(self, schedule_id: str) -> bool:
        return self.scheduler.cancel(schedule_id)

    def list_schedules(self) -> list[ScheduledCrawl]:
        return self.scheduler.list()


def build_service(
    settings: Settings = default_settings,
    session_factory: sessionmaker | None = None,
    *,
    storage: Storage | None = None,
    sources: Mapping[str, JobSource] | None = None,
    notifier: NotificationSink | None = None,
    rate_limiter: RateLimiter | None = None,
) -> CrawlService:
    if storage is None:
        if session_factory is None:
            from .db import SessionLocal
            session_factory = SessionLocal
        storage = SqlStorage(session_factory)

    if sources is None:
        sources = build_sources(settings)
    if rate_limiter is None:
        rate_limiter = RateLimiter(
            settings.RATE_LIMITS,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
            default_limit=settings.DEFAULT_RATE_LIMIT,
        )

    registry = CrawlRegistry(storage, ActiveCrawlCache(settings.ACTIVE_CACHE_SIZE))
    executor = CrawlExecutor(
        storage,
        sources,
        rate_limiter,
        Deduplicator(storage),
        registry,
        notifier if notifier is not None else LogNotifier(),
    )
    scheduler = Scheduler(
        storage,
        executor,
        min_interval=settings.MIN_INTERVAL_MINUTES,
        fallback_minutes=settings.ADVANCED_FALLBACK_MINUTES,
        history_limit=settings.SCHEDULE_HISTORY_LIMIT,
    )
    return CrawlService(storage=storage, executor=executor, registry=registry, scheduler=scheduler)
