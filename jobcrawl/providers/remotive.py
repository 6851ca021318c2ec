# jobcrawl/providers/remotive.py
import logging
import re
import httpx
from datetime import datetime, timezone
from tenacity import retry, wait_exponential, stop_after_attempt
from .base import JobSource
from ..config import settings
from ..schemas import RawJob, SearchParams

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20

_SKILLS = [
    "JavaScript", "Python", "Java", "C#", "C++", "Ruby", "PHP", "Swift", "TypeScript",
    "React", "Angular", "Vue", "Node.js", "Express", "Django", "Flask", "Spring",
    "AWS", "Azure", "GCP", "Docker", "Kubernetes", "CI/CD", "Git",
    "SQL", "NoSQL", "MongoDB", "PostgreSQL", "MySQL", "Oracle",
    "HTML", "CSS", "GraphQL", "REST", "Microservices", "Linux",
]


def _skill_regex(term: str) -> re.Pattern:
    return re.compile(rf"(?<![A-Za-z0-9]){re.escape(term)}(?![A-Za-z0-9])", re.I)


_SKILL_PATS = [(s, _skill_regex(s)) for s in _SKILLS]


def extract_skills(text: str | None, limit: int = 10) -> list[str]:
    if not text:
        return []
    return [s for s, pat in _SKILL_PATS if pat.search(text)][:limit]


def _parse_published(val):
    if isinstance(val, str) and val:
        try:
            dt = datetime.fromisoformat(val.replace("Z", "+00:00"))
        except ValueError:
            return None
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    return None


def _job_type(val: str | None) -> str | None:
    t = (val or "").lower().replace("_", "-")
    return t or None


def to_raw_job(it: dict) -> RawJob:
    location = it.get("candidate_required_location") or "Remote"
    return RawJob(
        title=it.get("title") or "",
        company=it.get("company_name") or "",
        location=location,
        description=it.get("description") or "",
        url=it.get("url") or None,
        salary=it.get("salary") or None,
        source="remotive",
        source_id=f"remotive-{it.get('id')}",
        posted_date=_parse_published(it.get("publication_date")),
        skills=extract_skills(it.get("description")),
        job_type=_job_type(it.get("job_type")),
        remote=True,
    )


class RemotiveSource(JobSource):
    name = "remotive"

    def __init__(self, api_url: str | None = None, timeout: float | None = None):
        self.api_url = api_url or settings.REMOTIVE_API_URL
        self.timeout = timeout or settings.REQUEST_TIMEOUT

    def is_configured(self) -> bool:
        # public API, no credentials
        return True

    @retry(wait=wait_exponential(min=1, max=8), stop=stop_after_attempt(3), reraise=True)
    async def _fetch(self, params: dict) -> dict:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            r = await client.get(self.api_url, params=params)
            r.raise_for_status()
            return r.json()

    async def fetch_jobs(self, options: SearchParams) -> list[RawJob]:
        limit = options.limit or DEFAULT_LIMIT
        params = {"limit": limit}
        if options.keywords:
            params["search"] = options.keywords

        data = await self._fetch(params)
        items = data.get("jobs") if isinstance(data, dict) else None
        if not isinstance(items, list):
            logger.warning("[remotive] unexpected response shape")
            return []

        where = (options.location or "").strip().lower()
        if where and where != "remote":
            items = [
                it for it in items
                if where in (it.get("candidate_required_location") or "").lower()
            ]

        results = []
        for it in items[:limit]:
            job = to_raw_job(it)
            if job.title and job.company:
                results.append(job)
        logger.info("[remotive] fetched %d jobs", len(results))
        return results
