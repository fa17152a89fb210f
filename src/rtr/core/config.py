"""Configuration models for core domain components.

This module provides Pydantic-based configuration classes that consolidate
settings for the coordinator, the query chunker and the run manager,
enabling dependency injection and testability.
"""

from typing import Optional
from pydantic import BaseModel, Field, model_validator

from rtr.core.constants import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_STREAMING_API_VERSION,
    DEFAULT_WAIT_TIMEOUT,
    QUERY_CHAR_LIMIT,
    QUERY_RECORD_LIMIT,
)


class QueryLimits(BaseModel):
    """Size limits applied to every id-driven query.

    Attributes:
        char_limit: Maximum rendered query length in characters
        record_limit: Maximum number of ids rendered into one query
    """

    char_limit: int = Field(
        default=QUERY_CHAR_LIMIT,
        gt=0,
        description="Maximum rendered query length (empirical, below the documented platform limit)"
    )

    record_limit: int = Field(
        default=QUERY_RECORD_LIMIT,
        gt=0,
        description="Maximum number of ids per query"
    )

    model_config = {
        "frozen": True,
        "extra": "forbid",
    }

    @classmethod
    def from_app_settings(cls, settings) -> "QueryLimits":
        return cls(
            char_limit=settings.RTR_QUERY_CHAR_LIMIT,
            record_limit=settings.RTR_QUERY_RECORD_LIMIT,
        )


class CoordinatorConfig(BaseModel):
    """Configuration for CompletionCoordinator behavior.

    Attributes:
        poll_interval: Seconds between queue snapshot polls (float for test flexibility)
        wait_timeout: Seconds to wait for completion before resolving as timed out
        streaming_api_version: API version used to build the push endpoint url
    """

    poll_interval: float = Field(
        default=DEFAULT_POLL_INTERVAL,
        gt=0,
        description="Interval in seconds between queue snapshot polls"
    )

    wait_timeout: float = Field(
        default=DEFAULT_WAIT_TIMEOUT,
        gt=0,
        description="Maximum time in seconds to wait for a test run to finish"
    )

    streaming_api_version: str = Field(
        default=DEFAULT_STREAMING_API_VERSION,
        description="API version of the push endpoint"
    )

    model_config = {
        "frozen": True,
        "extra": "forbid",
    }

    @classmethod
    def from_app_settings(cls, settings) -> "CoordinatorConfig":
        return cls(
            poll_interval=settings.RTR_POLL_INTERVAL,
            wait_timeout=settings.RTR_WAIT_TIMEOUT,
            streaming_api_version=settings.RTR_STREAMING_API_VERSION,
        )


class TestRunManagerConfig(BaseModel):
    """Configuration for TestRunManager behavior.

    Consolidates all run orchestration settings in one place:
    - coordinator timing
    - query limits used for result and coverage retrieval
    - retry policy for the submission request

    Attributes:
        coordinator: Completion coordinator settings
        query_limits: Limits applied to chunked result queries
        submit_max_retries: Attempts for transient errors when submitting a run
        submit_retry_base_wait: Base wait for exponential backoff between attempts
        submit_retry_max_wait: Maximum wait between attempts
    """

    __test__ = False

    coordinator: CoordinatorConfig = Field(default_factory=CoordinatorConfig)
    query_limits: QueryLimits = Field(default_factory=QueryLimits)

    submit_max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum retry attempts for transient errors when submitting a test run"
    )

    submit_retry_base_wait: float = Field(
        default=1.0,
        gt=0,
        description="Base wait time in seconds for exponential backoff between retries"
    )

    submit_retry_max_wait: Optional[float] = Field(
        default=5.0,
        gt=0,
        description="Maximum wait time in seconds between retry attempts"
    )

    model_config = {
        "frozen": True,
        "extra": "forbid",
    }

    @model_validator(mode="after")
    def check_retry_waits(self) -> "TestRunManagerConfig":
        if self.submit_retry_max_wait is not None and self.submit_retry_max_wait < self.submit_retry_base_wait:
            raise ValueError("submit_retry_max_wait must not be smaller than submit_retry_base_wait")
        return self

    @classmethod
    def from_app_settings(cls, settings) -> "TestRunManagerConfig":
        """Factory method to construct config from RtrSettings instance.

        Args:
            settings: RtrSettings instance from core.settings

        Returns:
            TestRunManagerConfig with values from app settings
        """
        return cls(
            coordinator=CoordinatorConfig.from_app_settings(settings),
            query_limits=QueryLimits.from_app_settings(settings),
            submit_max_retries=settings.RTR_SUBMIT_MAX_RETRIES,
            submit_retry_base_wait=settings.RTR_SUBMIT_RETRY_BASE_WAIT,
            submit_retry_max_wait=settings.RTR_SUBMIT_RETRY_MAX_WAIT,
        )
