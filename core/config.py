"""Runtime settings, read from the environment (and a local .env file)."""

from __future__ import annotations

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Managed-scheduler group every compliance schedule lives in.
SCHEDULE_GROUP = "compliance-schedules"

# /tmp is the only writable path on the function runtime.
DEFAULT_EVENT_STORE_URL = "sqlite+aiosqlite:////tmp/compliance_events.db"


class Settings(BaseModel):
    aws_region: str = "us-east-1"
    aws_partition: str = "aws"
    account_id: str | None = None          # skips the STS lookup when set
    scheduler_kms_key_arn: str | None = None
    scheduler_role_name: str = "EventBridgeSchedulerRole"
    notification_topic: str = "compliance-notifications"
    event_source: str = "compliance.automation"
    compliance_check_function: str = "scan-environment"
    event_store_url: str = DEFAULT_EVENT_STORE_URL

    call_timeout_seconds: float = Field(10.0, gt=0)
    retry_max_attempts: int = Field(3, ge=1)
    retry_base_delay: float = Field(1.0, ge=0)
    retry_max_delay: float = Field(30.0, ge=0)
    breaker_failure_threshold: int = Field(5, ge=1)
    breaker_recovery_seconds: float = Field(60.0, ge=0)
    list_concurrency: int = Field(5, ge=1)

    allowed_origin: str = "*"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from environment variables, loading .env first."""
        load_dotenv()
        mapping = {
            "AWS_REGION": "aws_region",
            "AWS_PARTITION": "aws_partition",
            "COMPLIANCE_ACCOUNT_ID": "account_id",
            "SCHEDULER_KMS_KEY_ARN": "scheduler_kms_key_arn",
            "SCHEDULER_ROLE_NAME": "scheduler_role_name",
            "NOTIFICATION_TOPIC": "notification_topic",
            "EVENT_SOURCE": "event_source",
            "COMPLIANCE_CHECK_FUNCTION": "compliance_check_function",
            "EVENT_STORE_URL": "event_store_url",
            "CALL_TIMEOUT_SECONDS": "call_timeout_seconds",
            "RETRY_MAX_ATTEMPTS": "retry_max_attempts",
            "RETRY_BASE_DELAY": "retry_base_delay",
            "RETRY_MAX_DELAY": "retry_max_delay",
            "BREAKER_FAILURE_THRESHOLD": "breaker_failure_threshold",
            "BREAKER_RECOVERY_SECONDS": "breaker_recovery_seconds",
            "LIST_CONCURRENCY": "list_concurrency",
            "ALLOWED_ORIGIN": "allowed_origin",
            "LOG_LEVEL": "log_level",
        }
        values = {
            field: os.environ[env]
            for env, field in mapping.items()
            if os.environ.get(env)
        }
        return cls(**values)
