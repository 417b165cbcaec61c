from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "postgresql+asyncpg://localhost:5432/dreamtrack"
    default_tz: str = "UTC"
    scheduler_api_key: str | None = None
    log_level: str = "INFO"
    auto_create_schema: bool = False
    # Boards roll a stale latest week forward to the current week on mount
    auto_rollover: bool = True

    # Calendar: ~52 weeks / 12 months, rounded up when converting
    weeks_per_month: float = 4.33

    # Instance builder defaults when a recurring goal has no frequency
    default_weekly_frequency: int = 1
    default_monthly_frequency: int = 2

    # Weekly rollover scoring (points per completed instance)
    score_weekly: int = 3
    score_monthly: int = 5
    score_deadline: int = 5

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
