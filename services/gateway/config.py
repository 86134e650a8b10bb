"""Configuration using pydantic-settings."""
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Gateway settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_name: str = "crawl-gateway"
    app_version: str = "1.0.0"

    # Redis (correlation store)
    redis_url: str = "redis://localhost:6379/0"
    correlation_key_prefix: str = "crawl-state:"
    correlation_ttl_seconds: int = 86400

    # Kafka
    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_client_id: str = "crawl-gateway"
    kafka_group_id: str = "crawl-gateway"
    kafka_request_topic: str = "crawl-requests"
    kafka_response_topic: str = "crawl-responses"
    kafka_extra_topics: List[str] = []
    kafka_poll_timeout_ms: int = 500

    # CORS
    cors_origins: List[str] = ["http://localhost:3000"]

    # Auth
    admin_token: str = "dev-admin-token"

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"
    log_file: str = "data/logs/gateway.log"

    @property
    def configured_topics(self) -> List[str]:
        """Request topic, response topic, then extras; duplicates dropped."""
        return list(
            dict.fromkeys([self.kafka_request_topic, self.kafka_response_topic, *self.kafka_extra_topics])
        )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Gateway settings
    """
    return Settings()
