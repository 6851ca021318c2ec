from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Literal
from urllib.parse import urlsplit, urlunsplit

from ..errors import DuplicateJobError
from ..models import JOB_SOURCES
from ..schemas import Job, RawJob, utcnow
from ..storage import Storage

logger = logging.getLogger(__name__)


def normalize_url(url: str | None) -> str:
    """Drop query and fragment, strip trailing slashes, lowercase."""
    if not url:
        return ""
    url = url.strip()
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return url.lower()
    normalized = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
    return normalized.rstrip("/").lower()


def _norm(value: str | None) -> str:
    return " ".join((value or "").split()).lower()


def make_fingerprint(company: str | None, title: str | None, location: str | None) -> str:
    return f"{_norm(company)}|{_norm(title)}|{_norm(location)}"


def canonical_source(source: str | None) -> str:
    if source in JOB_SOURCES:
        return source
    if source == "google":
        return "googleJobs"
    return "other"


@dataclass(frozen=True)
class ReconcileResult:
    action: Literal["created", "updated"]
    job: Job

    @property
    def created(self) -> bool:
        return self.action == "created"


class Deduplicator:
    """Matches raw jobs against stored ones by source id, URL, then fingerprint.

    A failed lookup counts as "not a duplicate": we would rather risk storing
    a duplicate listing than silently drop a new one when storage is flaky.
    """

    def __init__(self, storage: Storage, clock: Callable[[], datetime] = utcnow):
        self.storage = storage
        self._clock = clock

    def find_existing(self, raw: RawJob) -> Job | None:
        source = canonical_source(raw.source)
        if raw.source and raw.source_id:
            job = self.storage.find_job_by_source_id(source, raw.source_id)
            if job:
                logger.debug("[dedup] match by source id %s/%s", source, raw.source_id)
                return job

        if raw.url:
            normalized = normalize_url(raw.url)
            job = self.storage.find_job_by_normalized_url(normalized)
            if job:
                logger.debug("[dedup] match by url %s", normalized)
                return job

        fingerprint = make_fingerprint(raw.company, raw.title, raw.location)
        job = self.storage.find_job_by_fingerprint(fingerprint)
        if job:
            logger.debug("[dedup] match by fingerprint %s", fingerprint)
        return job

    def _lookup(self, raw: RawJob) -> Job | None:
        try:
            return self.find_existing(raw)
        except Exception as e:
            logger.error("[dedup] lookup failed, treating %r as new: %s", raw.title, e)
            return None

    def is_duplicate(self, raw: RawJob) -> bool:
        return self._lookup(raw) is not None

    def reconcile(self, raw: RawJob) -> ReconcileResult:
        existing = self._lookup(raw)
        if existing is not None:
            return ReconcileResult("updated", self._refresh(existing, raw))

        try:
            job = self.storage.insert_job(self._new_job_fields(raw))
        except DuplicateJobError:
            # a concurrent run created the same listing first
            existing = self.find_existing(raw)
            if existing is None:
                raise
            logger.debug("[dedup] lost insert race for %r, updating", raw.title)
            return ReconcileResult("updated", self._refresh(existing, raw))
        return ReconcileResult("created", job)

    def _refresh(self, job: Job, raw: RawJob) -> Job:
        now = self._clock()
        fields: dict[str, Any] = {"is_active": True, "crawled_date": now, "updated_at": now}
        # never blank out a known value
        if raw.description and raw.description.strip():
            fields["description"] = raw.description
        if raw.salary and raw.salary.strip():
            fields["salary"] = raw.salary
        return self.storage.update_job(job.id, fields)

    def _new_job_fields(self, raw: RawJob) -> dict[str, Any]:
        now = self._clock()
        return dict(
            title=raw.title.strip(),
            company=raw.company.strip(),
            location=raw.location.strip(),
            description=raw.description,
            skills=list(dict.fromkeys(raw.skills)),
            salary=raw.salary or None,
            job_type=raw.job_type,
            remote=raw.remote,
            source=canonical_source(raw.source),
            source_id=raw.source_id or None,
            url=raw.url or None,
            normalized_url=normalize_url(raw.url) or None,
            fingerprint=make_fingerprint(raw.company, raw.title, raw.location),
            posted_date=raw.posted_date or now,
            crawled_date=now,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
