"""Application configuration using pydantic-settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_url: str = "postgresql://localhost:5432/pipeyard"

    # Redis (for Celery)
    redis_url: str = "redis://localhost:6379/0"

    # Operators allowed to run mutating operations (default authorizer)
    operator_ids: list[str] = []

    # Yard defaults
    default_joint_length_m: float = 12.0  # ~40 ft range 3 joint

    # Reconciliation check
    reconciliation_schedule_minutes: int = 60

    # Application
    debug: bool = False
    api_host: str = "0.0.0.0"
    api_port: int = 8000


settings = Settings()
