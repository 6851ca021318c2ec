"""Recurring crawl schedules.

A single external ticker calls ``Scheduler.tick()``; each tick launches every
due active schedule in the background and immediately moves its
``next_run_time`` forward so a run that outlives the tick is not triggered
twice.
"""
from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Callable, Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ValidationError

from ..errors import InvalidScheduleDefinitionError, ScheduleNotFoundError
from ..models import ALL_SOURCES
from ..schemas import CrawlJob, HistoryEntry, ScheduleDefinition, ScheduledCrawl, ScheduleSpec, utcnow
from ..storage import Storage
from .crawler import CrawlExecutor

logger = logging.getLogger(__name__)

TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
FIRST_RUN_DELAY = timedelta(seconds=1)


def resolve_timezone(name: str | None) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def _weekday(d) -> int:
    # 0 = Sunday
    return (d.weekday() + 1) % 7


def next_advanced_run(now: datetime, spec: ScheduleSpec, fallback_minutes: int) -> datetime:
    """Earliest configured day/time strictly after ``now``'s minute in ``spec.timezone``.

    A slot equal to the current local minute counts as already passed. Missing
    days or times fall back to ``now + fallback_minutes``.
    """
    if not spec.days or not spec.times:
        return now + timedelta(minutes=fallback_minutes)

    tz = resolve_timezone(spec.timezone)
    local = now.astimezone(tz)
    current = local.strftime("%H:%M")
    days = set(spec.days)
    times = sorted(set(spec.times))

    for offset in range(8):
        day = local.date() + timedelta(days=offset)
        if _weekday(day) not in days:
            continue
        for hhmm in times:
            if offset == 0 and hhmm <= current:
                continue
            hours, minutes = (int(x) for x in hhmm.split(":"))
            candidate = datetime.combine(day, time(hours, minutes), tzinfo=tz).astimezone(timezone.utc)
            if candidate > now:
                return candidate

    return now + timedelta(minutes=fallback_minutes)


def compute_next_run(schedule: ScheduledCrawl, now: datetime, fallback_minutes: int) -> datetime:
    spec = schedule.schedule
    if spec is not None and spec.type == "advanced":
        return next_advanced_run(now, spec, fallback_minutes)
    base = schedule.last_run_time or now
    return base + timedelta(minutes=schedule.interval_minutes)


def advance(schedule: ScheduledCrawl, now: datetime, fallback_minutes: int) -> ScheduledCrawl:
    """Mark ``schedule`` as run at ``now`` and compute its next run."""
    ran = schedule.model_copy(update={"last_run_time": now})
    return ran.model_copy(update={"next_run_time": compute_next_run(ran, now, fallback_minutes)})


def append_history(schedule: ScheduledCrawl, crawl: CrawlJob, limit: int = 10) -> ScheduledCrawl:
    entry = HistoryEntry(
        run_id=crawl.job_id,
        start_time=crawl.start_time,
        end_time=crawl.end_time,
        status=crawl.status,
        result=crawl.result,
    )
    history = [*schedule.crawl_history, entry][-limit:]
    return schedule.model_copy(update={"crawl_history": history})


def validate_definition(
    definition: ScheduleDefinition | dict,
    sources: Iterable[str],
    min_interval: int = 15,
) -> ScheduleDefinition:
    try:
        defn = ScheduleDefinition.model_validate(definition)
    except ValidationError as e:
        raise InvalidScheduleDefinitionError(str(e)) from e

    known = list(sources)
    if defn.source != ALL_SOURCES and defn.source not in known:
        raise InvalidScheduleDefinitionError(
            f"Invalid source. Available sources: {', '.join(known)} or 'all'"
        )
    if defn.interval_minutes < min_interval:
        raise InvalidScheduleDefinitionError(
            f"Interval must be at least {min_interval} minutes"
        )

    spec = defn.schedule
    if spec is None:
        return defn
    if spec.type == "advanced":
        if not spec.days:
            raise InvalidScheduleDefinitionError(
                "Advanced schedule must include at least one day (0-6, where 0 is Sunday)"
            )
        if not spec.times:
            raise InvalidScheduleDefinitionError(
                "Advanced schedule must include at least one time in HH:MM format"
            )
    if not all(0 <= d <= 6 for d in spec.days):
        raise InvalidScheduleDefinitionError("Days must be integers between 0 and 6 (0 is Sunday)")
    if not all(TIME_RE.match(t) for t in spec.times):
        raise InvalidScheduleDefinitionError("Times must be in HH:MM format (24-hour)")
    try:
        resolve_timezone(spec.timezone)
    except (ZoneInfoNotFoundError, ValueError, OSError) as e:
        # bare region names like "America" resolve to a directory
        raise InvalidScheduleDefinitionError(f"Unknown timezone: {spec.timezone}") from e

    normalized = spec.model_copy(update={
        "days": sorted(set(spec.days)),
        "times": sorted(set(spec.times)),
    })
    return defn.model_copy(update={"schedule": normalized})


class Scheduler:
    def __init__(
        self,
        storage: Storage,
        executor: CrawlExecutor,
        *,
        min_interval: int = 15,
        fallback_minutes: int = 60 * 24,
        history_limit: int = 10,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.executor = executor
        self.min_interval = min_interval
        self.fallback_minutes = fallback_minutes
        self.history_limit = history_limit
        self._clock = clock

    def create(self, definition: ScheduleDefinition | dict) -> ScheduledCrawl:
        defn = validate_definition(definition, self.executor.available_sources, self.min_interval)
        now = self._clock()
        spec = defn.schedule
        if spec is not None and spec.type == "advanced":
            next_run = next_advanced_run(now, spec, self.fallback_minutes)
        else:
            # new interval schedules run on the next tick
            next_run = now + FIRST_RUN_DELAY

        schedule = ScheduledCrawl(
            schedule_id=f"schedule-{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:8]}",
            name=defn.name or f"{defn.source} Job Crawl",
            source=defn.source,
            status="active",
            search_params=defn.search_params.model_dump(exclude_none=True),
            interval_minutes=defn.interval_minutes,
            schedule=spec,
            next_run_time=next_run,
            created_by=defn.created_by,
        )
        schedule = self.storage.insert_schedule(schedule)
        logger.info(
            "[schedule] created %s for source %s, next run at %s",
            schedule.schedule_id, schedule.source, schedule.next_run_time.isoformat(),
        )
        return schedule

    def get(self, schedule_id: str) -> ScheduledCrawl:
        schedule = self.storage.get_schedule(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(f"Scheduled crawl {schedule_id} not found")
        return schedule

    def cancel(self, schedule_id: str) -> bool:
        """Cancel permanently. False when unknown or already cancelled."""
        try:
            schedule = self.storage.get_schedule(schedule_id)
            if schedule is None or schedule.status == "cancelled":
                return False
            self.storage.save_schedule(schedule.model_copy(update={"status": "cancelled"}))
        except Exception as e:
            logger.error("[schedule] error cancelling %s: %s", schedule_id, e, exc_info=True)
            return False
        logger.info("[schedule] cancelled %s", schedule_id)
        return True

    def list(self) -> list[ScheduledCrawl]:
        return self.storage.list_schedules(["active", "paused"])

    async def tick(self) -> list[CrawlJob]:
        """Launch every due active schedule; returns the runs started."""
        now = self._clock()
        try:
            due = self.storage.due_schedules(now)
        except Exception as e:
            logger.error("[schedule] could not load due schedules: %s", e, exc_info=True)
            return []

        launched = []
        for schedule in due:
            if schedule.status != "active" or schedule.next_run_time > now:
                continue
            try:
                self.storage.save_schedule(advance(schedule, now, self.fallback_minutes))
            except Exception as e:
                # not advanced, so not launched; the next tick retries it
                logger.error("[schedule] could not advance %s: %s", schedule.schedule_id, e, exc_info=True)
                continue

            logger.info("[schedule] running %s for source: %s", schedule.schedule_id, schedule.source)
            try:
                crawl = self.executor.launch(
                    schedule.source,
                    schedule.search_params,
                    schedule_id=schedule.schedule_id,
                    created_by=schedule.created_by,
                    after_run=self.record_run,
                )
            except Exception as e:
                logger.error("[schedule] error starting %s: %s", schedule.schedule_id, e, exc_info=True)
                continue
            launched.append(crawl)
        return launched

    def record_run(self, crawl: CrawlJob) -> ScheduledCrawl | None:
        """Append a finished run to its schedule and recompute the next run."""
        if crawl.schedule_id is None:
            return None
        schedule = self.storage.get_schedule(crawl.schedule_id)
        if schedule is None:
            logger.warning("[schedule] run %s references unknown schedule %s", crawl.job_id, crawl.schedule_id)
            return None

        updated = append_history(schedule, crawl, self.history_limit)
        if updated.status != "cancelled":
            now = crawl.end_time or self._clock()
            ran = updated.model_copy(update={"last_run_time": crawl.start_time})
            next_run = max(
                compute_next_run(ran.model_copy(update={"last_run_time": now}), now, self.fallback_minutes),
                schedule.next_run_time,
            )
            updated = ran.model_copy(update={"next_run_time": next_run})
        return self.storage.save_schedule(updated)
