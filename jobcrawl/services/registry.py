"""Read side for crawl runs: status, active runs, history and statistics.

Storage is the source of truth. ``ActiveCrawlCache`` only keeps recent
snapshots written by the executor in this process, so that status reads for
in-flight runs do not hit the database and so that a run whose final write
failed still reports its real outcome.
"""
from __future__ import annotations

from collections import OrderedDict

from ..errors import CrawlNotFoundError
from ..models import TERMINAL_STATUSES
from ..schemas import CrawlJob, CrawlStats
from ..storage import Storage


class ActiveCrawlCache:
    def __init__(self, max_size: int = 200):
        self.max_size = max_size
        self._items: OrderedDict[str, CrawlJob] = OrderedDict()

    def put(self, crawl: CrawlJob) -> None:
        self._items[crawl.job_id] = crawl
        self._items.move_to_end(crawl.job_id)
        self._evict()

    def _evict(self) -> None:
        # finished runs go first, running ones are kept while possible
        while len(self._items) > self.max_size:
            victim = next((k for k, v in self._items.items() if v.status != "running"), None)
            if victim is None:
                victim = next(iter(self._items))
            del self._items[victim]

    def get(self, run_id: str) -> CrawlJob | None:
        return self._items.get(run_id)

    def values(self) -> list[CrawlJob]:
        return list(self._items.values())

    def __len__(self) -> int:
        return len(self._items)


class CrawlRegistry:
    def __init__(self, storage: Storage, cache: ActiveCrawlCache | None = None):
        self.storage = storage
        self.cache = cache if cache is not None else ActiveCrawlCache()

    def track(self, crawl: CrawlJob) -> None:
        self.cache.put(crawl)

    def get_status(self, run_id: str) -> CrawlJob:
        crawl = self.cache.get(run_id) or self.storage.get_crawl_job(run_id)
        if crawl is None:
            raise CrawlNotFoundError(f"Crawl job {run_id} not found")
        return crawl

    def list_active(self) -> list[CrawlJob]:
        merged = {c.job_id: c for c in self.storage.list_crawl_jobs(["running"])}
        for crawl in self.cache.values():
            merged[crawl.job_id] = crawl
        active = [c for c in merged.values() if c.status == "running"]
        return sorted(active, key=lambda c: c.start_time, reverse=True)

    def list_history(self, limit: int = 10, offset: int = 0) -> list[CrawlJob]:
        return self.storage.list_crawl_jobs(TERMINAL_STATUSES, limit=limit, offset=offset)

    def stats(self) -> CrawlStats:
        return self.storage.crawl_stats()
