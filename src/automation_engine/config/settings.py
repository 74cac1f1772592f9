"""Strongly typed engine configuration."""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Runtime configuration loaded from environment variables and `.env` files."""

    model_config = SettingsConfigDict(
        env_prefix="AUTOMATION_", env_file=".env", extra="ignore"
    )

    service_name: str = Field(default="rules-engine", description="Service identifier")
    environment: str = Field(default="local", description="Deployment environment name")
    log_level: str = Field(default="INFO", description="Application log level")

    # Connections
    rabbitmq_url: str = Field(
        default="amqp://localhost:5672", description="AMQP broker connection string"
    )
    mongodb_url: str = Field(
        default="mongodb://localhost:27017", description="MongoDB connection string"
    )
    mongodb_database: str = Field(default="FunnelsEye", description="Database name")

    # Broker topology
    events_exchange: str = Field(default="funnelseye_events")
    actions_exchange: str = Field(default="funnelseye_actions")
    delayed_exchange: str = Field(default="delayed_actions_exchange")
    scheduled_actions_queue: str = Field(default="funnelseye_scheduled_actions")
    dead_letter_exchange: str = Field(default="funnelseye_events.dlx")
    dead_letter_queue: str = Field(default="funnelseye_events.dead_letter")
    prefetch_count: int = Field(
        default=1, ge=1, description="Unacknowledged events in flight per worker"
    )

    # Collections
    rules_collection: str = Field(default="automationrules")
    leads_collection: str = Field(default="leads")
    appointments_collection: str = Field(default="appointments")
    payments_collection: str = Field(default="payments")
    coaches_collection: str = Field(default="coaches")

    # Processing behaviour
    reconnect_delay: float = Field(
        default=5.0, gt=0, description="Seconds between initialization attempts"
    )
    max_redeliveries: int = Field(
        default=5,
        ge=0,
        description="Failed attempts before an event is dead-lettered (0 = unbounded)",
    )
    evaluate_trigger_conditions: bool = Field(
        default=False, description="Filter matched rules by their trigger conditions"
    )
    parallel_dispatch: bool = Field(
        default=False, description="Publish the actions of one event concurrently"
    )
    schema_delay_fallback: bool = Field(
        default=False,
        description="Delay actions lacking config.delayMinutes by their `delay` field (seconds)",
    )
    metrics_port: int | None = Field(
        default=None, description="Expose Prometheus metrics on this port"
    )

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        allowed = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
        upper_value = value.upper()
        if upper_value not in allowed:
            msg = f"Invalid log level '{value}'. Choose one of: {', '.join(sorted(allowed))}."
            raise ValueError(msg)
        return upper_value
