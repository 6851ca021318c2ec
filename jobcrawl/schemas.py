from datetime import datetime, timezone
from typing import Annotated, Any, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field


def _as_utc(value: datetime) -> datetime:
    # sqlite hands back naive datetimes; everything we store is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UTCDateTime = Annotated[datetime, AfterValidator(_as_utc)]

CrawlStatus = Literal["pending", "running", "completed", "failed", "cancelled"]
ScheduleStatus = Literal["active", "paused", "cancelled"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Snapshot(BaseModel):
    """Immutable view of a persisted row."""

    model_config = ConfigDict(frozen=True, from_attributes=True)


class SearchParams(BaseModel):
    keywords: str | None = None
    location: str | None = None
    limit: int | None = Field(default=None, ge=1)
    job_type: str | None = None
    remote: bool | None = None

    # source-specific options pass through untouched
    model_config = ConfigDict(extra="allow")


class RawJob(BaseModel):
    """A job record as returned by a JobSource, before deduplication."""

    title: str
    company: str
    location: str = ""
    description: str = ""
    url: str | None = None
    salary: str | None = None
    source: str = "other"
    source_id: str | None = None
    posted_date: Optional[UTCDateTime] = None
    skills: List[str] = []
    job_type: str | None = None
    remote: bool = False

    model_config = ConfigDict(extra="ignore")


class Job(Snapshot):
    id: int
    title: str
    company: str
    location: str | None = None
    description: str | None = None
    skills: List[str] = []
    salary: str | None = None
    job_type: str | None = None
    remote: bool = False
    source: str
    source_id: str | None = None
    url: str | None = None
    normalized_url: str | None = None
    fingerprint: str
    posted_date: Optional[UTCDateTime] = None
    crawled_date: Optional[UTCDateTime] = None
    is_active: bool = True
    created_at: Optional[UTCDateTime] = None
    updated_at: Optional[UTCDateTime] = None


class CrawlResult(BaseModel):
    total: int = 0
    saved: int = 0
    duplicates: int = 0
    errors: int = 0


class CrawlErrorInfo(BaseModel):
    message: str


class CrawlJob(Snapshot):
    job_id: str
    source: str
    status: CrawlStatus = "pending"
    search_params: dict[str, Any] = {}
    start_time: UTCDateTime
    end_time: Optional[UTCDateTime] = None
    duration: int | None = None
    result: CrawlResult | None = None
    error: CrawlErrorInfo | None = None
    source_errors: dict[str, str] = {}
    is_scheduled: bool = False
    schedule_id: str | None = None
    created_by: str | None = None


class ScheduleSpec(BaseModel):
    type: Literal["simple", "advanced"] = "simple"
    days: List[int] = []
    times: List[str] = []
    timezone: str = "UTC"


class HistoryEntry(BaseModel):
    run_id: str
    start_time: UTCDateTime
    end_time: Optional[UTCDateTime] = None
    status: CrawlStatus
    result: CrawlResult | None = None


class ScheduledCrawl(Snapshot):
    schedule_id: str
    name: str | None = None
    source: str
    status: ScheduleStatus = "active"
    search_params: dict[str, Any] = {}
    interval_minutes: int
    schedule: ScheduleSpec | None = None
    last_run_time: Optional[UTCDateTime] = None
    next_run_time: UTCDateTime
    crawl_history: List[HistoryEntry] = []
    created_by: str | None = None
    created_at: Optional[UTCDateTime] = None


class ScheduleDefinition(BaseModel):
    name: str | None = None
    source: str = "all"
    search_params: SearchParams = SearchParams()
    interval_minutes: int = 60 * 24
    schedule: ScheduleSpec | None = None
    created_by: str | None = None


class SourceStats(BaseModel):
    source: str | None = None
    total_jobs: int = 0
    saved_jobs: int = 0
    duplicate_jobs: int = 0
    error_jobs: int = 0
    avg_duration: float = 0
    count: int = 0


class CrawlStats(BaseModel):
    by_source: List[SourceStats] = []
    total: SourceStats = SourceStats()


class CrawlEvent(BaseModel):
    kind: Literal["completed", "failed"]
    crawl: CrawlJob


class CrawlRequest(BaseModel):
    source: str = "all"
    search_params: SearchParams = SearchParams()
    save_jobs: bool = True
    wait: bool = False
    created_by: str | None = None
