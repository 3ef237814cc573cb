"""Application settings loaded from environment variables."""

import json
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Reporting agent configuration. All values come from environment variables."""

    # Database
    database_path: Path = Field(default=Path("data/reporting_agent.db"))

    # Scheduler
    scheduler_timezone: str = Field(default="Asia/Kolkata")
    alert_check_cron: str = Field(default="0 * * * *")
    alert_cooldown_hours: float = Field(default=24.0, ge=0)
    shutdown_grace_seconds: float = Field(default=10.0, ge=0)

    # SMTP (email channel)
    smtp_host: str = Field(default="smtp.gmail.com")
    smtp_port: int = Field(default=587)
    smtp_user: str = Field(default="")
    smtp_password: str = Field(default="")
    smtp_from: str = Field(default="")
    smtp_starttls: bool = Field(default=True)

    # Telegram
    telegram_bot_token: str = Field(default="")

    # Slack
    slack_bot_token: str = Field(default="")

    # Static metric values for alert checks, as a JSON object
    metric_values: str = Field(default="")

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def get_metric_values(self) -> dict[str, float]:
        """Parse METRIC_VALUES into a metric name -> value mapping."""
        if not self.metric_values.strip():
            return {}
        raw = json.loads(self.metric_values)
        if not isinstance(raw, dict):
            msg = "METRIC_VALUES must be a JSON object"
            raise ValueError(msg)
        return {str(name): float(value) for name, value in raw.items()}

    @property
    def email_sender(self) -> str:
        """The From address for outgoing mail (falls back to the SMTP user)."""
        return self.smtp_from or self.smtp_user or "noreply@reporting-agent.local"


settings = Settings()
