import functools
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    api_title: str = "Skill Swap Trades API"
    api_version: str = "0.1.0"
    api_debug: bool = False
    api_docs_url: Optional[str] = "/docs"

    redis_url: str = Field(..., alias="REDIS_URL")
    database_url: str = Field(..., alias="DATABASE_URL")

    queue_namespace: str = "swap"
    notification_queue_name: str = "notifications:dispatch"
    reward_queue_name: str = "rewards:award"

    reward_service_url: Optional[str] = Field(default=None, alias="REWARD_SERVICE_URL")
    reward_service_token: Optional[str] = Field(default=None, alias="REWARD_SERVICE_TOKEN")
    http_timeout_seconds: int = 15

    reminder_after_days: list[int] = Field(default_factory=lambda: [7], alias="REMINDER_AFTER_DAYS")
    auto_complete_after_days: int = Field(default=14, alias="AUTO_COMPLETE_AFTER_DAYS")
    scheduler_batch_size: int = 500

    transaction_retry_budget: int = 3
    outbox_max_attempts: int = 5
    outbox_batch_size: int = 200
    outbox_retention_days: int = 30

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"
        populate_by_name = True


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]
