from typing import Optional

from rtr.core.models.platform_error import PlatformErrorResponse


class PlatformRequestError(Exception):
    """Base exception for failed requests against the platform API."""
    def __init__(self, response: PlatformErrorResponse):
        self.response = response
        super().__init__(f"{response.title}: {response.detail}")


class TransientPlatformError(PlatformRequestError):
    """Wrapper for platform errors that are worth retrying.

    Used to distinguish retryable errors (502, 503, 504, connection errors)
    from non-retryable client errors (4xx) in retry logic.
    """

    pass


# Domain-specific test run exceptions

class TestRunError(Exception):
    """Base exception for test run failures.

    Attributes:
        message: Human-readable error description
        diagnostic: Technical diagnostic information for debugging
        run_id: Optional test run identifier
    """
    __test__ = False  # keep pytest from collecting this as a test class

    def __init__(
        self,
        message: str,
        diagnostic: Optional[str] = None,
        run_id: Optional[str] = None
    ):
        self.message = message
        self.diagnostic = diagnostic
        self.run_id = run_id
        super().__init__(message)


class HandshakeError(TestRunError):
    """Raised when the push transport reports an error on the handshake channel."""
    def __init__(self, error: str):
        self.error = error
        super().__init__(message=f"Test run handshake failed: {error}")


class StreamingError(TestRunError):
    """Raised for push protocol errors the transport cannot recover from.

    Attributes:
        error: Error string reported by the protocol message
        channel: Channel the failing message arrived on
    """
    def __init__(self, error: str, channel: Optional[str] = None):
        self.error = error
        self.channel = channel
        super().__init__(
            message=f"Streaming error on channel {channel}: {error}",
            diagnostic=error,
        )


class AuthRefreshError(TestRunError):
    """Raised when no live credential can be obtained for the push transport."""
    pass


class InvalidTestRunIdError(TestRunError):
    """Raised when a run id does not have the expected prefix and length."""
    def __init__(self, run_id: str):
        super().__init__(
            message=f"Invalid test run id: {run_id}",
            run_id=run_id,
        )


class TestRunVanishedError(TestRunError):
    """Raised when a known run id returns zero queue items.

    A known job with no queue items is treated as gone, not as pending.
    """
    def __init__(self, run_id: str):
        super().__init__(
            message=f"No test queue items found for test run {run_id}",
            run_id=run_id,
        )


class TestRunSummaryNotFoundError(TestRunError):
    """Raised when no run summary record exists for a run id."""
    def __init__(self, run_id: str):
        super().__init__(
            message=f"No test run summary found for test run {run_id}",
            run_id=run_id,
        )


class QueryFetchError(TestRunError):
    """Raised when a (chunked) query fails.

    Attributes:
        record_shape: Platform object being fetched (e.g. ApexTestResult)
        cause: Message of the underlying failure
    """
    def __init__(self, record_shape: str, cause: str, run_id: Optional[str] = None):
        self.record_shape = record_shape
        self.cause = cause
        super().__init__(
            message=f"Failed to fetch {record_shape} records: {cause}",
            diagnostic=cause,
            run_id=run_id,
        )


class QueryTooLongError(TestRunError):
    """Raised when a single id cannot be rendered under the query char limit."""
    def __init__(self, record_id: str, char_limit: int):
        self.record_id = record_id
        self.char_limit = char_limit
        super().__init__(
            message=f"Query for id {record_id} exceeds the {char_limit} character limit"
        )
