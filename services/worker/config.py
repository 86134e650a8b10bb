"""Worker configuration using pydantic-settings."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class WorkerSettings(BaseSettings):
    """Crawl worker settings loaded from ``WORKER_``-prefixed environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="WORKER_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    service_name: str = "crawl-worker"

    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_client_id: str = "crawl-worker"
    kafka_group_id: str = "crawl-workers"
    kafka_request_topic: str = "crawl-requests"
    kafka_response_topic: str = "crawl-responses"
    kafka_poll_timeout_ms: int = 500

    http_timeout_seconds: float = 15.0
    user_agent: str = "crawl-worker/1.0 (+https://example.com/bot)"
    max_snippets: int = 10

    log_level: str = "INFO"
    log_format: str = "text"
    log_file: str = "data/logs/worker.log"


@lru_cache
def get_worker_settings() -> WorkerSettings:
    return WorkerSettings()
