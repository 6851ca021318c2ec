import httpx
import pytest

from jobcrawl.providers.registry import build_sources
from jobcrawl.providers.remotive import RemotiveSource, extract_skills, to_raw_job
from jobcrawl.schemas import SearchParams


def listing(n, **overrides):
    data = {
        "id": n,
        "url": f"https://remotive.com/remote-jobs/software-dev/job-{n}",
        "title": f"Python Developer {n}",
        "company_name": "Initech",
        "job_type": "full_time",
        "publication_date": "2026-02-27T10:15:00",
        "candidate_required_location": "Europe",
        "salary": "$90k - $110k",
        "description": "<p>We use Python, Django and PostgreSQL on AWS.</p>",
    }
    data.update(overrides)
    return data


def test_to_raw_job_maps_fields():
    job = to_raw_job(listing(7))
    assert job.title == "Python Developer 7"
    assert job.company == "Initech"
    assert job.location == "Europe"
    assert job.source == "remotive"
    assert job.source_id == "remotive-7"
    assert job.job_type == "full-time"
    assert job.remote is True
    assert job.posted_date.year == 2026
    assert job.posted_date.tzinfo is not None
    assert job.skills == ["Python", "Django", "AWS", "PostgreSQL"]


def test_to_raw_job_defaults():
    job = to_raw_job(listing(1, candidate_required_location="", publication_date="yesterday", salary=""))
    assert job.location == "Remote"
    assert job.posted_date is None
    assert job.salary is None


class TestSkills:
    def test_whole_word_matches_only(self):
        assert extract_skills("JavaScript and TypeScript") == ["JavaScript", "TypeScript"]

    def test_symbols_in_names(self):
        assert extract_skills("C++ and C# with Node.js") == ["C#", "C++", "Node.js"]

    def test_limit(self):
        text = " ".join(["Python", "Java", "Ruby", "PHP", "Swift", "React", "Vue", "Docker", "Git", "SQL", "CSS", "Linux"])
        assert len(extract_skills(text)) == 10

    def test_empty(self):
        assert extract_skills(None) == []


@pytest.fixture
def source(monkeypatch):
    src = RemotiveSource(api_url="https://remotive.example.com/api/remote-jobs", timeout=5)
    src.sent = []
    payload = {"jobs": [
        listing(1, candidate_required_location="USA Only"),
        listing(2),
        listing(3, candidate_required_location="Europe, UK"),
        listing(4, title=""),
    ]}

    async def fake_fetch(params):
        src.sent.append(params)
        return payload

    monkeypatch.setattr(src, "_fetch", fake_fetch)
    return src


class TestFetchJobs:
    @pytest.mark.asyncio
    async def test_sends_keywords_and_limit(self, source):
        await source.fetch_jobs(SearchParams(keywords="python", limit=5))
        assert source.sent == [{"limit": 5, "search": "python"}]

    @pytest.mark.asyncio
    async def test_skips_listings_without_title(self, source):
        jobs = await source.fetch_jobs(SearchParams())
        assert [j.source_id for j in jobs] == ["remotive-1", "remotive-2", "remotive-3"]
        assert source.sent == [{"limit": 20}]

    @pytest.mark.asyncio
    async def test_filters_by_location(self, source):
        jobs = await source.fetch_jobs(SearchParams(location="europe"))
        assert [j.source_id for j in jobs] == ["remotive-2", "remotive-3"]

    @pytest.mark.asyncio
    async def test_remote_location_is_not_a_filter(self, source):
        jobs = await source.fetch_jobs(SearchParams(location="Remote"))
        assert len(jobs) == 3

    @pytest.mark.asyncio
    async def test_result_is_capped_at_limit(self, source):
        jobs = await source.fetch_jobs(SearchParams(limit=2))
        assert len(jobs) == 2

    @pytest.mark.asyncio
    async def test_unexpected_payload(self, monkeypatch):
        src = RemotiveSource(api_url="https://remotive.example.com/api/remote-jobs")

        async def fake_fetch(params):
            return {"error": "maintenance"}

        monkeypatch.setattr(src, "_fetch", fake_fetch)
        assert await src.fetch_jobs(SearchParams()) == []

    @pytest.mark.asyncio
    async def test_http_errors_propagate(self, monkeypatch):
        src = RemotiveSource(api_url="https://remotive.example.com/api/remote-jobs")

        async def fake_fetch(params):
            raise httpx.ConnectError("connection refused")

        monkeypatch.setattr(src, "_fetch", fake_fetch)
        with pytest.raises(httpx.ConnectError):
            await src.fetch_jobs(SearchParams())


def test_build_sources_registers_remotive():
    sources = build_sources()
    assert list(sources) == ["remotive"]
    assert sources["remotive"].is_configured()
