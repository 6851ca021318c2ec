from ..config import Settings, settings as default_settings
from .base import JobSource
from .remotive import RemotiveSource


def build_sources(settings: Settings = default_settings) -> dict[str, JobSource]:
    """Static source registry, resolved once at startup.

    Boards that need credentials (linkedin, indeed, glassdoor, googleJobs)
    are registered by the deployment that owns those clients.
    """
    sources: list[JobSource] = [
        RemotiveSource(api_url=settings.REMOTIVE_API_URL, timeout=settings.REQUEST_TIMEOUT),
    ]
    return {s.name: s for s in sources}
