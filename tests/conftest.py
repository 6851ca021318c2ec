import asyncio
from datetime import datetime, timezone

import pytest

from jobcrawl.db import make_engine, make_session_factory
from jobcrawl.schemas import RawJob
from jobcrawl.services.crawler import CrawlExecutor
from jobcrawl.services.dedup import Deduplicator
from jobcrawl.services.rate_limit import RateLimiter
from jobcrawl.services.registry import CrawlRegistry
from jobcrawl.storage import SqlStorage


def raw_job(n: int = 1, **overrides) -> RawJob:
    data = dict(
        title=f"Backend Engineer {n}",
        company="Acme",
        location="Remote",
        description=f"Build APIs ({n})",
        url=f"https://jobs.example.com/acme/{n}",
        source="remotive",
        source_id=f"remotive-{n}",
    )
    data.update(overrides)
    return RawJob(**data)


class FakeSource:
    def __init__(self, name, jobs=(), error=None, configured=True, gate=None):
        self.name = name
        self.jobs = list(jobs)
        self.error = error
        self.configured = configured
        self.gate = gate
        self.calls = 0

    def is_configured(self):
        return self.configured

    async def fetch_jobs(self, options):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.jobs)


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)


class FakeClock:
    """Monotonic clock whose sleep advances time instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds
        await asyncio.sleep(0)


class FixedNow:
    def __init__(self, value: datetime):
        self.value = value

    def __call__(self) -> datetime:
        return self.value


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    factory = make_session_factory(engine)
    yield factory
    engine.dispose()


@pytest.fixture
def storage(session_factory):
    s = SqlStorage(session_factory)
    s.create_all()
    return s


@pytest.fixture
def make_executor(storage):
    def _make(sources, *, notifier=None, deduplicator=None, store=None, registry=None):
        store = store or storage
        registry = registry or CrawlRegistry(store)
        return CrawlExecutor(
            store,
            {s.name: s for s in sources},
            RateLimiter(default_limit=1000),
            deduplicator or Deduplicator(store),
            registry,
            notifier,
        )

    return _make


@pytest.fixture
def utc():
    def _at(*args) -> datetime:
        return datetime(*args, tzinfo=timezone.utc)

    return _at
