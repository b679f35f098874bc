"""Application configuration using pydantic-settings with grouped env prefixes."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class DynamoDBConfig(BaseSettings):
    """DynamoDB row-store configuration."""

    model_config = {"env_prefix": "SENTINEL_DYNAMO_"}

    table_suffix: str = ""  # "-dev", "-uat", or "" for prod
    region: str = "us-east-1"
    endpoint_url: str | None = None  # LocalStack override


class RedisConfig(BaseSettings):
    """Redis cache configuration."""

    model_config = {"env_prefix": "SENTINEL_REDIS_"}

    enabled: bool = False
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    key_prefix: str = "sentinel:"


class EscalationConfig(BaseSettings):
    """Escalation sweep limits and rule fallbacks."""

    model_config = {"env_prefix": "SENTINEL_ESCALATION_"}

    max_level: int = 4
    batch_size: int = 100
    default_delay_hours: int = 24
    default_channels: list[str] = ["telegram", "whatsapp"]
    handoff_grace_minutes: int = 15  # claimed hand-offs younger than this are left alone
    job_type: str = "process_escalations"


class NotificationConfig(BaseSettings):
    """Dispatcher behaviour."""

    model_config = {"env_prefix": "SENTINEL_NOTIFY_"}

    max_concurrency: int = 4
    day_bucket_timezone: str = "UTC"
    completion_channels: list[str] = ["telegram", "whatsapp"]
    app_base_url: str = "http://localhost:8000"


class TelegramConfig(BaseSettings):
    """Telegram Bot API integration."""

    model_config = {"env_prefix": "SENTINEL_TELEGRAM_"}

    enabled: bool = False
    bot_token: str = ""
    api_base_url: str = "https://api.telegram.org"
    timeout: float = 10.0


class WhatsAppConfig(BaseSettings):
    """WhatsApp messaging gateway integration."""

    model_config = {"env_prefix": "SENTINEL_WHATSAPP_"}

    enabled: bool = False
    api_base_url: str = ""
    api_key: str = ""
    instance_name: str = ""
    default_country_code: str = "966"
    timeout: float = 10.0


class ApiConfig(BaseSettings):
    """HTTP trigger endpoint configuration."""

    model_config = {"env_prefix": "SENTINEL_API_"}

    trigger_token: str = ""


class AppSettings(BaseSettings):
    """Root application settings aggregating all sub-configs."""

    model_config = {"env_prefix": "SENTINEL_"}

    environment: Literal["dev", "uat", "prod"] = "dev"
    log_level: str = "INFO"
    backend: Literal["memory", "dynamodb"] = "memory"

    dynamodb: DynamoDBConfig = DynamoDBConfig()
    redis: RedisConfig = RedisConfig()
    escalation: EscalationConfig = EscalationConfig()
    notifications: NotificationConfig = NotificationConfig()
    telegram: TelegramConfig = TelegramConfig()
    whatsapp: WhatsAppConfig = WhatsAppConfig()
    api: ApiConfig = ApiConfig()
