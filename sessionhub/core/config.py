# sessionhub/core/config.py
import logging
import os
from pathlib import Path
from typing import List, Tuple

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = _PROJECT_ROOT / ".env"
    logger.debug("[CONFIG] Looking for .env at: %s (exists=%s)", env_path, env_path.exists())
    load_dotenv(env_path)


class Settings(BaseSettings):
    # Runtime
    environment: str = Field(default="development", description="development|staging|production")
    database_url: str = Field(default=f"sqlite:///{_PROJECT_ROOT / 'sessionhub.db'}")
    redis_url: str = Field(default="redis://localhost:6379/0")
    frontend_url: str = Field(default="http://localhost:4200")
    log_level: str = Field(default="INFO")

    # Payments - card network provider (Stripe)
    stripe_secret_key: SecretStr = Field(
        default=SecretStr(""),
        description="Stripe secret key for backend API calls",
    )
    stripe_webhook_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Stripe webhook signing secret",
    )
    stripe_currency_divisor: float = Field(
        default=50,
        description="Local session price divided by this gives the USD amount charged",
    )

    # Payments - regional gateway (Paymob)
    paymob_api_key: SecretStr = Field(default=SecretStr(""))
    paymob_hmac_secret: SecretStr = Field(default=SecretStr(""))
    paymob_base_url: str = Field(default="https://accept.paymob.com/api/")
    paymob_card_integration_id: int = Field(default=0)
    paymob_wallet_integration_id: int = Field(default=0)
    paymob_iframe_id: str = Field(default="")
    allow_unsigned_payment_callbacks: bool = Field(
        default=False,
        description=(
            "Accept regional-gateway callbacks that carry no signature at all. "
            "Honoured only outside production; every use is logged."
        ),
    )

    # Payments - shared policy
    payment_expiration_minutes: int = Field(default=60, ge=1)
    platform_commission_rate: float = Field(default=0.15, ge=0, lt=1)
    payment_release_hours: int = Field(default=72, ge=0)
    payout_min_amount: float = Field(default=250, ge=0)
    payout_max_amount: float = Field(default=100000, gt=0)

    # Video (Zoom)
    zoom_account_id: str = Field(default="")
    zoom_client_id: str = Field(default="")
    zoom_client_secret: SecretStr = Field(default=SecretStr(""))
    zoom_webhook_secret_token: SecretStr = Field(default=SecretStr(""))
    zoom_api_base_url: str = Field(default="https://api.zoom.us/v2/")
    zoom_oauth_url: str = Field(default="https://zoom.us/oauth/token")
    zoom_token_ttl_minutes: int = Field(default=55, ge=1)
    zoom_retry_base_delay_ms: int = Field(default=1000, ge=0)
    zoom_retry_max_delay_ms: int = Field(default=32000, ge=0)
    zoom_rate_limit_max_retries: int = Field(default=5, ge=0)
    zoom_server_error_max_retries: int = Field(default=3, ge=0)
    zoom_request_timeout_seconds: float = Field(default=30.0)
    zoom_download_timeout_seconds: float = Field(default=1800.0)

    # Transcription (Deepgram)
    deepgram_api_key: SecretStr = Field(default=SecretStr(""))
    deepgram_base_url: str = Field(default="https://api.deepgram.com/v1/listen")
    deepgram_model: str = Field(default="whisper-large")
    deepgram_timeout_seconds: float = Field(default=300.0)

    # Recording storage (Cloudflare R2)
    r2_account_id: str = Field(default="")
    r2_access_key_id: str = Field(default="")
    r2_secret_access_key: SecretStr = Field(
        default=SecretStr(""), description="R2 secret access key"
    )
    r2_bucket_name: str = Field(default="")
    recording_url_ttl_minutes: int = Field(default=60, ge=1)

    # Session policy
    booking_min_notice_hours: int = Field(default=24, ge=0)
    booking_period_minutes: int = Field(default=15, ge=1)
    reminder_offset_minutes: int = Field(default=15, ge=1)
    reschedule_approval_hours: int = Field(default=24, ge=1)
    dispute_window_days: int = Field(default=3, ge=0)
    meeting_termination_grace_minutes: int = Field(default=2, ge=0)

    # Cancellation refund schedule (hours before start -> percentage refunded)
    refund_full_hours: float = Field(default=48)
    refund_full_percentage: float = Field(default=100)
    refund_partial_hours: float = Field(default=24)
    refund_partial_percentage: float = Field(default=50)
    refund_late_percentage: float = Field(default=0)

    # Transcript reconciliation
    transcript_retry_interval_minutes: int = Field(default=30, ge=1)
    transcript_retry_window_hours: int = Field(default=24, ge=1)
    summary_task_name: str = Field(
        default="sessionhub.tasks.summary.generate_session_summary",
        description="Downstream task that turns a stored transcript into a summary",
    )

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator(
        "refund_full_percentage", "refund_partial_percentage", "refund_late_percentage"
    )
    @classmethod
    def _validate_percentage(cls, value: float) -> float:
        if value < 0 or value > 100:
            raise ValueError("refund percentages must be between 0 and 100")
        return value

    @model_validator(mode="after")
    def _validate_refund_schedule(self) -> "Settings":
        if self.refund_full_hours < self.refund_partial_hours:
            raise ValueError("refund_full_hours must be >= refund_partial_hours")
        if not (
            self.refund_full_percentage
            >= self.refund_partial_percentage
            >= self.refund_late_percentage
        ):
            raise ValueError("refund percentages must not grow as the session approaches")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def transcript_max_attempts(self) -> int:
        """Attempt ceiling for the transcript sweep (retry window / sweep interval)."""
        return (self.transcript_retry_window_hours * 60) // self.transcript_retry_interval_minutes

    @property
    def refund_tiers(self) -> List[Tuple[float, float]]:
        """Ordered (min_hours_before_start, percentage) pairs, most generous first."""
        return [
            (self.refund_full_hours, self.refund_full_percentage),
            (self.refund_partial_hours, self.refund_partial_percentage),
        ]


settings = Settings()
