from __future__ import annotations

import logging
from typing import Protocol

from ..schemas import CrawlEvent

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def notify(self, event: CrawlEvent) -> None:
        ...


class LogNotifier:
    """Default sink: writes crawl outcomes to the log."""

    def notify(self, event: CrawlEvent) -> None:
        crawl = event.crawl
        if event.kind == "failed":
            msg = crawl.error.message if crawl.error else "unknown error"
            logger.warning("[notify] crawl %s (%s) failed: %s", crawl.job_id, crawl.source, msg)
            return
        result = crawl.result
        logger.info(
            "[notify] crawl %s (%s) completed: total=%s saved=%s duplicates=%s errors=%s",
            crawl.job_id,
            crawl.source,
            result.total if result else 0,
            result.saved if result else 0,
            result.duplicates if result else 0,
            result.errors if result else 0,
        )
