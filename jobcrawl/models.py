from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.sql import func
from .db import Base

SOURCES = ("linkedin", "indeed", "glassdoor", "googleJobs", "remotive")
JOB_SOURCES = SOURCES + ("manual", "other")
ALL_SOURCES = "all"

CRAWL_STATUSES = ("pending", "running", "completed", "failed", "cancelled")
TERMINAL_STATUSES = ("completed", "failed", "cancelled")
SCHEDULE_STATUSES = ("active", "paused", "cancelled")


class Job(Base):
    __tablename__ = "jobs"
    id = Column(Integer, primary_key=True)
    title = Column(String(300), nullable=False, index=True)
    company = Column(String(300), nullable=False, index=True)
    location = Column(String(300), index=True)
    description = Column(Text)
    skills = Column(JSON, default=list)
    salary = Column(String(200))
    job_type = Column(String(50))
    remote = Column(Boolean, default=False, index=True)
    source = Column(String(50), nullable=False, default="manual", index=True)
    source_id = Column(String(200))
    url = Column(String(1000))
    normalized_url = Column(String(1000), unique=True)
    fingerprint = Column(String(1000), nullable=False, unique=True)
    posted_date = Column(DateTime(timezone=True), index=True)
    crawled_date = Column(DateTime(timezone=True))
    is_active = Column(Boolean, default=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("source", "source_id", name="uq_job_source_id"),
    )


class CrawlJob(Base):
    __tablename__ = "crawl_jobs"
    id = Column(Integer, primary_key=True)
    job_id = Column(String(100), nullable=False, unique=True, index=True)
    source = Column(String(50), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    search_params = Column(JSON, default=dict)
    start_time = Column(DateTime(timezone=True), index=True)
    end_time = Column(DateTime(timezone=True))
    duration = Column(Integer)  # milliseconds

    result_total = Column(Integer)
    result_saved = Column(Integer)
    result_duplicates = Column(Integer)
    result_errors = Column(Integer)
    error_message = Column(Text)
    source_errors = Column(JSON, default=dict)

    is_scheduled = Column(Boolean, default=False, index=True)
    schedule_id = Column(String(100), index=True)
    created_by = Column(String(100), index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ScheduledCrawl(Base):
    __tablename__ = "scheduled_crawls"
    id = Column(Integer, primary_key=True)
    schedule_id = Column(String(100), nullable=False, unique=True, index=True)
    name = Column(String(300))
    source = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default="active", index=True)
    search_params = Column(JSON, default=dict)
    interval_minutes = Column(Integer, nullable=False)
    schedule = Column(JSON)
    last_run_time = Column(DateTime(timezone=True))
    next_run_time = Column(DateTime(timezone=True), nullable=False, index=True)
    crawl_history = Column(JSON, default=list)
    created_by = Column(String(100), index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
