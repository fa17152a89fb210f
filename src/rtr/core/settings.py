# Logging adapter for application-wide logging
from rtr.adapters.logging_adapter import LoggingAdapter

from pydantic import HttpUrl, SecretStr, field_validator
from pydantic_settings import BaseSettings
from rich import print

from rtr.core.constants import (
    DEFAULT_API_VERSION,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_STREAMING_API_VERSION,
    DEFAULT_WAIT_TIMEOUT,
    QUERY_CHAR_LIMIT,
    QUERY_RECORD_LIMIT,
)
from rtr.core.interfaces.logging import LoggingPort

# using pydantic_settings to manage environment variables
# and do automatic type casting in a central place
class RtrSettings(BaseSettings):
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore"
    }
    RTR_LOG_LEVEL: str = "INFO"
    RTR_INSTANCE_URL: HttpUrl | None = None
    RTR_ACCESS_TOKEN: SecretStr | None = None
    RTR_API_VERSION: str = DEFAULT_API_VERSION
    RTR_STREAMING_API_VERSION: str = DEFAULT_STREAMING_API_VERSION
    # seconds between queue snapshot polls while waiting for a run
    RTR_POLL_INTERVAL: float = DEFAULT_POLL_INTERVAL
    # seconds before a wait resolves as timed out (default 4 hours)
    RTR_WAIT_TIMEOUT: float = DEFAULT_WAIT_TIMEOUT
    RTR_QUERY_CHAR_LIMIT: int = QUERY_CHAR_LIMIT
    RTR_QUERY_RECORD_LIMIT: int = QUERY_RECORD_LIMIT
    RTR_SUBMIT_MAX_RETRIES: int = 3
    # exponential backoff between submission attempts (seconds)
    RTR_SUBMIT_RETRY_BASE_WAIT: float = 1.0
    RTR_SUBMIT_RETRY_MAX_WAIT: float = 5.0
    # per-request timeout of the tooling http client
    RTR_HTTP_TIMEOUT: float = 30.0

    def print_settings(self, logger: LoggingPort):
        """Prints the settings for debugging purposes"""
        logger.info("RTR Settings:")
        print(self)

    @field_validator("RTR_API_VERSION", "RTR_STREAMING_API_VERSION", mode="before")
    def strip_version_prefix(cls, value: str) -> str:
        """Accept both '58.0' and 'v58.0'."""
        if isinstance(value, str) and value.lower().startswith("v"):
            value = value[1:]
        return value


app_settings = RtrSettings()

logger = LoggingAdapter("rtr", app_settings.RTR_LOG_LEVEL)
