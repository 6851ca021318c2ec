# jobcrawl/main.py
from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Query, Request

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .config import settings
from .db import SessionLocal
from .errors import CrawlNotFoundError, InvalidScheduleDefinitionError, UnknownSourceError
from .schemas import CrawlJob, CrawlRequest, CrawlStats, ScheduleDefinition, ScheduledCrawl
from .service import CrawlService, build_service
from .storage import SqlStorage

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


app = FastAPI(title="Job Crawler")


def get_service(req: Request) -> CrawlService:
    return req.app.state.service


@app.on_event("startup")
async def on_start():
    configure_logging(settings.LOG_LEVEL)

    storage = SqlStorage(SessionLocal)
    storage.create_all()
    service = build_service(settings, storage=storage)
    app.state.service = service

    sched = AsyncIOScheduler()
    sched.add_job(
        service.scheduler.tick, "interval",
        seconds=settings.TICK_SECONDS, max_instances=1, coalesce=True,
    )
    sched.start()
    app.state.ticker = sched
    logger.info("[app] schedule ticker running every %ss", settings.TICK_SECONDS)


@app.on_event("shutdown")
async def on_stop():
    ticker = getattr(app.state, "ticker", None)
    if ticker is not None:
        ticker.shutdown(wait=False)


@app.post("/api/crawls", response_model=CrawlJob)
async def start_crawl(payload: CrawlRequest, req: Request):
    service = get_service(req)
    try:
        return await service.start_crawl(
            payload.source,
            payload.search_params,
            payload.save_jobs,
            wait=payload.wait,
            created_by=payload.created_by,
        )
    except UnknownSourceError as e:
        raise HTTPException(400, str(e))


@app.get("/api/crawls/active", response_model=list[CrawlJob])
def active_crawls(req: Request):
    return get_service(req).list_active_crawls()


@app.get("/api/crawls/history", response_model=list[CrawlJob])
def crawl_history(
    req: Request,
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    return get_service(req).list_crawl_history(limit, offset)


@app.get("/api/crawls/stats", response_model=CrawlStats)
def crawl_stats(req: Request):
    return get_service(req).get_stats()


@app.get("/api/crawls/{run_id}", response_model=CrawlJob)
def crawl_status(run_id: str, req: Request):
    try:
        return get_service(req).get_crawl_status(run_id)
    except CrawlNotFoundError:
        raise HTTPException(404, "crawl job not found")


@app.post("/api/schedules", response_model=ScheduledCrawl)
def create_schedule(payload: ScheduleDefinition, req: Request):
    try:
        return get_service(req).create_schedule(payload)
    except InvalidScheduleDefinitionError as e:
        raise HTTPException(400, str(e))


@app.get("/api/schedules", response_model=list[ScheduledCrawl])
def list_schedules(req: Request):
    return get_service(req).list_schedules()


@app.delete("/api/schedules/{schedule_id}")
def cancel_schedule(schedule_id: str, req: Request):
    if not get_service(req).cancel_schedule(schedule_id):
        raise HTTPException(404, "scheduled crawl not found")
    return {"success": True, "message": "Scheduled crawl cancelled successfully"}
