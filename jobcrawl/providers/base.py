from typing import Protocol

from ..schemas import RawJob, SearchParams


class JobSource(Protocol):
    """A job board integration. Rate limiting is applied by the caller."""

    name: str

    def is_configured(self) -> bool:
        ...

    async def fetch_jobs(self, options: SearchParams) -> list[RawJob]:
        ...
