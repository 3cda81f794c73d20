"""Shared configuration for all services."""
from typing import List
from pydantic_settings import BaseSettings


DEFAULT_FEED_SOURCES = [
    "https://jobicy.com/?feed=job_feed",
    "https://jobicy.com/?feed=job_feed&job_categories=smm&job_types=full-time",
    "https://jobicy.com/?feed=job_feed&job_categories=seller&job_types=full-time&search_region=france",
    "https://jobicy.com/?feed=job_feed&job_categories=design-multimedia",
    "https://jobicy.com/?feed=job_feed&job_categories=data-science",
    "https://jobicy.com/?feed=job_feed&job_categories=copywriting",
    "https://jobicy.com/?feed=job_feed&job_categories=business",
    "https://jobicy.com/?feed=job_feed&job_categories=management",
    "https://www.higheredjobs.com/rss/articleFeed.cfm",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    environment: str = "development"
    log_level: str = "INFO"

    # Redis Configuration
    redis_url: str = "redis://localhost:6379"
    queue_key_prefix: str = "job_import"

    # MongoDB Configuration
    mongo_url: str = "mongodb://localhost:27017"
    mongo_db_name: str = "job_importer"

    # Worker Pool Configuration
    worker_concurrency: int = 5
    worker_poll_interval: float = 1.0
    max_attempts: int = 3
    retry_base_delay: float = 2.0
    retry_max_delay: float = 300.0
    stalled_task_timeout: int = 600  # seconds

    # Queue retention
    keep_completed_tasks: int = 100
    keep_failed_tasks: int = 50

    # Feed fetching
    fetch_timeout: int = 30
    fetch_user_agent: str = "Mozilla/5.0 (compatible; JobImporter/1.0)"
    feed_sources: List[str] = DEFAULT_FEED_SOURCES

    # Import bookkeeping
    checkpoint_interval: int = 5
    max_error_details: int = 10
    description_max_length: int = 1000
    import_log_retention_days: int = 30

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


settings = Settings()
