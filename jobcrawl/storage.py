"""Persistence for jobs, crawl runs and schedules.

Components only see immutable snapshots (``schemas.Job``, ``schemas.CrawlJob``,
``schemas.ScheduledCrawl``); they persist changes by handing an updated
snapshot (or a dict of fields) back to the storage.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Protocol, Sequence

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from . import models
from .errors import DuplicateJobError
from .schemas import (
    CrawlErrorInfo,
    CrawlJob,
    CrawlResult,
    CrawlStats,
    Job,
    ScheduledCrawl,
    SourceStats,
)


class Storage(Protocol):
    # jobs
    def find_job_by_source_id(self, source: str, source_id: str) -> Job | None: ...
    def find_job_by_normalized_url(self, normalized_url: str) -> Job | None: ...
    def find_job_by_fingerprint(self, fingerprint: str) -> Job | None: ...
    def insert_job(self, fields: dict[str, Any]) -> Job: ...
    def update_job(self, job_id: int, fields: dict[str, Any]) -> Job: ...
    def count_jobs(self) -> int: ...

    # crawl runs
    def insert_crawl_job(self, crawl: CrawlJob) -> CrawlJob: ...
    def save_crawl_job(self, crawl: CrawlJob) -> CrawlJob: ...
    def get_crawl_job(self, run_id: str) -> CrawlJob | None: ...
    def list_crawl_jobs(self, statuses: Iterable[str], limit: int | None = None, offset: int = 0) -> list[CrawlJob]: ...
    def crawl_stats(self) -> CrawlStats: ...

    # schedules
    def insert_schedule(self, schedule: ScheduledCrawl) -> ScheduledCrawl: ...
    def save_schedule(self, schedule: ScheduledCrawl) -> ScheduledCrawl: ...
    def get_schedule(self, schedule_id: str) -> ScheduledCrawl | None: ...
    def list_schedules(self, statuses: Iterable[str]) -> list[ScheduledCrawl]: ...
    def due_schedules(self, now: datetime) -> list[ScheduledCrawl]: ...


def _crawl_snapshot(row: models.CrawlJob) -> CrawlJob:
    result = None
    if row.result_total is not None:
        result = CrawlResult(
            total=row.result_total or 0,
            saved=row.result_saved or 0,
            duplicates=row.result_duplicates or 0,
            errors=row.result_errors or 0,
        )
    return CrawlJob(
        job_id=row.job_id,
        source=row.source,
        status=row.status,
        search_params=row.search_params or {},
        start_time=row.start_time,
        end_time=row.end_time,
        duration=row.duration,
        result=result,
        error=CrawlErrorInfo(message=row.error_message) if row.error_message else None,
        source_errors=row.source_errors or {},
        is_scheduled=bool(row.is_scheduled),
        schedule_id=row.schedule_id,
        created_by=row.created_by,
    )


def _crawl_columns(crawl: CrawlJob) -> dict[str, Any]:
    result = crawl.result
    return dict(
        job_id=crawl.job_id,
        source=crawl.source,
        status=crawl.status,
        search_params=crawl.search_params,
        start_time=crawl.start_time,
        end_time=crawl.end_time,
        duration=crawl.duration,
        result_total=result.total if result else None,
        result_saved=result.saved if result else None,
        result_duplicates=result.duplicates if result else None,
        result_errors=result.errors if result else None,
        error_message=crawl.error.message if crawl.error else None,
        source_errors=crawl.source_errors,
        is_scheduled=crawl.is_scheduled,
        schedule_id=crawl.schedule_id,
        created_by=crawl.created_by,
    )


def _schedule_columns(schedule: ScheduledCrawl) -> dict[str, Any]:
    data = schedule.model_dump(mode="json", exclude={"created_at"})
    # datetimes go to DateTime columns as objects, not ISO strings
    data["last_run_time"] = schedule.last_run_time
    data["next_run_time"] = schedule.next_run_time
    return data


class SqlStorage:
    """Storage backed by SQLAlchemy. One short session per operation."""

    def __init__(self, session_factory: sessionmaker):
        self._session = session_factory

    def create_all(self) -> None:
        with self._session() as db:
            models.Base.metadata.create_all(bind=db.get_bind())

    # ---- jobs ------------------------------------------------------------

    def _find_job(self, **criteria) -> Job | None:
        with self._session() as db:
            row = db.query(models.Job).filter_by(**criteria).first()
            return Job.model_validate(row) if row else None

    def find_job_by_source_id(self, source: str, source_id: str) -> Job | None:
        return self._find_job(source=source, source_id=source_id)

    def find_job_by_normalized_url(self, normalized_url: str) -> Job | None:
        return self._find_job(normalized_url=normalized_url)

    def find_job_by_fingerprint(self, fingerprint: str) -> Job | None:
        return self._find_job(fingerprint=fingerprint)

    def insert_job(self, fields: dict[str, Any]) -> Job:
        with self._session() as db:
            row = models.Job(**fields)
            db.add(row)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise DuplicateJobError(str(e.orig)) from e
            db.refresh(row)
            return Job.model_validate(row)

    def update_job(self, job_id: int, fields: dict[str, Any]) -> Job:
        with self._session() as db:
            row = db.get(models.Job, job_id)
            if row is None:
                raise LookupError(f"job {job_id} not found")
            for key, value in fields.items():
                setattr(row, key, value)
            try:
                db.commit()
            except Exception:
                db.rollback()
                raise
            db.refresh(row)
            return Job.model_validate(row)

    def count_jobs(self) -> int:
        with self._session() as db:
            return db.query(func.count(models.Job.id)).scalar() or 0

    # ---- crawl runs ------------------------------------------------------

    def insert_crawl_job(self, crawl: CrawlJob) -> CrawlJob:
        with self._session() as db:
            row = models.CrawlJob(**_crawl_columns(crawl))
            db.add(row)
            try:
                db.commit()
            except Exception:
                db.rollback()
                raise
            return _crawl_snapshot(row)

    def save_crawl_job(self, crawl: CrawlJob) -> CrawlJob:
        with self._session() as db:
            row = db.query(models.CrawlJob).filter_by(job_id=crawl.job_id).first()
            if row is None:
                row = models.CrawlJob()
                db.add(row)
            for key, value in _crawl_columns(crawl).items():
                setattr(row, key, value)
            try:
                db.commit()
            except Exception:
                db.rollback()
                raise
            return _crawl_snapshot(row)

    def get_crawl_job(self, run_id: str) -> CrawlJob | None:
        with self._session() as db:
            row = db.query(models.CrawlJob).filter_by(job_id=run_id).first()
            return _crawl_snapshot(row) if row else None

    def list_crawl_jobs(self, statuses: Iterable[str], limit: int | None = None, offset: int = 0) -> list[CrawlJob]:
        with self._session() as db:
            q = (
                db.query(models.CrawlJob)
                .filter(models.CrawlJob.status.in_(list(statuses)))
                .order_by(models.CrawlJob.start_time.desc(), models.CrawlJob.id.desc())
            )
            if offset:
                q = q.offset(offset)
            if limit is not None:
                q = q.limit(limit)
            return [_crawl_snapshot(r) for r in q.all()]

    def crawl_stats(self) -> CrawlStats:
        C = models.CrawlJob
        columns = (
            func.coalesce(func.sum(C.result_total), 0),
            func.coalesce(func.sum(C.result_saved), 0),
            func.coalesce(func.sum(C.result_duplicates), 0),
            func.coalesce(func.sum(C.result_errors), 0),
            func.coalesce(func.avg(C.duration), 0),
            func.count(C.id),
        )

        def _stats(source, values: Sequence) -> SourceStats:
            total, saved, dups, errors, avg, count = values
            return SourceStats(
                source=source,
                total_jobs=int(total),
                saved_jobs=int(saved),
                duplicate_jobs=int(dups),
                error_jobs=int(errors),
                avg_duration=float(avg),
                count=int(count),
            )

        with self._session() as db:
            rows = (
                db.query(C.source, *columns)
                .filter(C.status == "completed")
                .group_by(C.source)
                .order_by(C.source)
                .all()
            )
            overall = db.query(*columns).filter(C.status == "completed").one()
        return CrawlStats(
            by_source=[_stats(r[0], r[1:]) for r in rows],
            total=_stats(None, overall),
        )

    # ---- schedules -------------------------------------------------------

    def insert_schedule(self, schedule: ScheduledCrawl) -> ScheduledCrawl:
        with self._session() as db:
            row = models.ScheduledCrawl(**_schedule_columns(schedule))
            db.add(row)
            try:
                db.commit()
            except Exception:
                db.rollback()
                raise
            db.refresh(row)
            return ScheduledCrawl.model_validate(row)

    def save_schedule(self, schedule: ScheduledCrawl) -> ScheduledCrawl:
        with self._session() as db:
            row = db.query(models.ScheduledCrawl).filter_by(schedule_id=schedule.schedule_id).first()
            if row is None:
                raise LookupError(f"schedule {schedule.schedule_id} not found")
            for key, value in _schedule_columns(schedule).items():
                setattr(row, key, value)
            try:
                db.commit()
            except Exception:
                db.rollback()
                raise
            db.refresh(row)
            return ScheduledCrawl.model_validate(row)

    def get_schedule(self, schedule_id: str) -> ScheduledCrawl | None:
        with self._session() as db:
            row = db.query(models.ScheduledCrawl).filter_by(schedule_id=schedule_id).first()
            return ScheduledCrawl.model_validate(row) if row else None

    def list_schedules(self, statuses: Iterable[str]) -> list[ScheduledCrawl]:
        with self._session() as db:
            rows = (
                db.query(models.ScheduledCrawl)
                .filter(models.ScheduledCrawl.status.in_(list(statuses)))
                .order_by(models.ScheduledCrawl.next_run_time.asc())
                .all()
            )
            return [ScheduledCrawl.model_validate(r) for r in rows]

    def due_schedules(self, now: datetime) -> list[ScheduledCrawl]:
        with self._session() as db:
            rows = (
                db.query(models.ScheduledCrawl)
                .filter(
                    models.ScheduledCrawl.status == "active",
                    models.ScheduledCrawl.next_run_time <= now,
                )
                .order_by(models.ScheduledCrawl.next_run_time.asc())
                .all()
            )
            return [ScheduledCrawl.model_validate(r) for r in rows]
