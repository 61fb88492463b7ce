from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sfdeploy.deployment.polling import PollOptions

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class Settings(BaseSettings):
    """Deployment settings loaded from ``SFDEPLOY_*`` environment variables.

    The session is supplied by the caller (an access token obtained elsewhere);
    this library never performs a login flow itself.
    """

    model_config = SettingsConfigDict(
        env_prefix="SFDEPLOY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Org session
    instance_url: str = ""
    session_id: str = ""
    api_version: str = "59.0"

    # Safety timeout for every single HTTP/SOAP round-trip, in seconds.
    request_timeout: float = 60.0

    # Poll loop
    poll_max_attempts: int = 60
    poll_initial_interval: float = 1.0
    poll_initial_attempts: int = 5
    poll_interval_step: float = 0.5
    poll_max_interval: float = 4.0

    # Post-exhaustion re-checks
    fallback_attempts: int = 3
    fallback_delay: float = 5.0
    timeout_grace_period: float = 3.0

    log_level: str = "INFO"

    @field_validator("api_version", mode="before")
    @classmethod
    def strip_version_prefix(cls, v) -> str:
        # Accept "v59.0" as well as "59.0"
        return str(v).lstrip("vV")

    @field_validator("instance_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v) -> str:
        return str(v).rstrip("/")

    @field_validator("log_level", mode="before")
    @classmethod
    def known_log_level(cls, v) -> str:
        level = str(v).strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {v!r}")
        return level

    def poll_options(self) -> PollOptions:
        return PollOptions(
            max_attempts=self.poll_max_attempts,
            initial_interval=self.poll_initial_interval,
            initial_attempts=self.poll_initial_attempts,
            interval_step=self.poll_interval_step,
            max_interval=self.poll_max_interval,
            fallback_attempts=self.fallback_attempts,
            fallback_delay=self.fallback_delay,
            timeout_grace_period=self.timeout_grace_period,
        )


def get_settings() -> Settings:
    return Settings()
