from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DB_URL: str = "sqlite:///./jobcrawl.db"
    LOG_LEVEL: str = "INFO"

    # scheduler
    TICK_SECONDS: int = 60
    MIN_INTERVAL_MINUTES: int = 15
    ADVANCED_FALLBACK_MINUTES: int = 60 * 24
    SCHEDULE_HISTORY_LIMIT: int = 10

    # registry
    ACTIVE_CACHE_SIZE: int = 200

    # rate limiting: calls per window, per source
    RATE_LIMIT_WINDOW_SECONDS: float = 60 * 60
    DEFAULT_RATE_LIMIT: int = 50
    RATE_LIMITS: dict[str, int] = {
        "linkedin": 100,
        "indeed": 50,
        "glassdoor": 30,
        "googleJobs": 100,
        "remotive": 50,
    }

    # sources
    REMOTIVE_API_URL: str = "https://remotive.com/api/remote-jobs"
    REQUEST_TIMEOUT: float = 30

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
