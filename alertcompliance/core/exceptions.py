"""
Error taxonomy for the compliance tester.

Setup errors abort the run before any traffic is sent, transient I/O errors
are retried or skipped, check failures end a single rule group's checking,
and run errors end the whole run.
"""
from enum import Enum
from typing import Iterable, List, Optional


class ComplianceErrorCode(str, Enum):
    """Error codes used in logs and in the final report."""
    SETUP = "SETUP_ERROR"
    TIMELINE_NOTATION = "TIMELINE_NOTATION"
    REMOTE_WRITE = "REMOTE_WRITE_FAILED"
    FETCH = "FETCH_FAILED"
    RESPONSE_PARSE = "RESPONSE_PARSE_FAILED"
    CHECK_FAILED = "CHECK_FAILED"
    ALERT_MISMATCH = "ALERT_MISMATCH"
    MESSAGE_PARSE = "MESSAGE_PARSE_FAILED"
    RECEIVER = "RECEIVER_FAILED"
    TASK = "TASK_FAILED"
    MULTIPLE = "MULTIPLE_ERRORS"


class ComplianceError(Exception):
    """
    Base exception for the compliance tester.

    Attributes:
        error_code: Stable code for logging
        message: Human readable description
    """

    def __init__(
        self,
        error_code: ComplianceErrorCode,
        message: str = "Compliance test error"
    ):
        self.error_code = error_code
        self.message = message
        super().__init__(message)


class SetupError(ComplianceError):
    """Raised when the suite cannot be built from the given cases or config."""

    def __init__(self, reason: str):
        super().__init__(
            error_code=ComplianceErrorCode.SETUP,
            message=reason
        )


class TimelineNotationError(SetupError):
    """Raised for a malformed sample value token."""

    def __init__(self, token: str, reason: str = ""):
        message = f"invalid values notation {token}"
        if reason:
            message += f", err: {reason}"
        super().__init__(message)
        self.error_code = ComplianceErrorCode.TIMELINE_NOTATION
        self.token = token


class RemoteWriteError(ComplianceError):
    """Raised when a remote-write batch could not be delivered."""

    def __init__(self, reason: str, status_code: Optional[int] = None):
        super().__init__(
            error_code=ComplianceErrorCode.REMOTE_WRITE,
            message=reason
        )
        self.status_code = status_code


class FetchError(ComplianceError):
    """Raised when a read API could not be fetched."""

    def __init__(self, url: str, reason: str):
        super().__init__(
            error_code=ComplianceErrorCode.FETCH,
            message=f"get request {url}: {reason}"
        )
        self.url = url


class ResponseParseError(ComplianceError):
    """Raised when a read API response is malformed or not successful."""

    def __init__(self, reason: str):
        super().__init__(
            error_code=ComplianceErrorCode.RESPONSE_PARSE,
            message=reason
        )


class CheckFailedError(ComplianceError):
    """Raised when an observed state is outside every acceptable expectation."""

    def __init__(self, reason: str):
        super().__init__(
            error_code=ComplianceErrorCode.CHECK_FAILED,
            message=reason
        )


class AlertMismatchError(ComplianceError):
    """Raised when a received notification does not match an expected one."""

    def __init__(self, reason: str):
        super().__init__(
            error_code=ComplianceErrorCode.ALERT_MISMATCH,
            message=reason
        )


class MessageParseError(ComplianceError):
    """Raised when a notification payload cannot be parsed."""

    def __init__(self, parser: str, reason: str):
        super().__init__(
            error_code=ComplianceErrorCode.MESSAGE_PARSE,
            message=f"parser {parser!r}: {reason}"
        )


class ReceiverError(ComplianceError):
    """Raised when the notification receiving server stops unexpectedly."""

    def __init__(self, reason: str):
        super().__init__(
            error_code=ComplianceErrorCode.RECEIVER,
            message=reason
        )


class TaskError(ComplianceError):
    """Raised when a background task of the run dies on an unexpected error."""

    def __init__(self, task: str, cause: BaseException):
        super().__init__(
            error_code=ComplianceErrorCode.TASK,
            message=f"{task}: {cause!r}"
        )
        self.cause = cause


class MultiError(ComplianceError):
    """Several run errors combined into one."""

    def __init__(self, errors: List[Exception]):
        self.errors = errors
        parts = "; ".join(str(e) for e in errors)
        if len(errors) > 1:
            parts = f"{len(errors)} errors: {parts}"
        super().__init__(
            error_code=ComplianceErrorCode.MULTIPLE,
            message=parts
        )

    @classmethod
    def combine(cls, errors: Iterable[Optional[Exception]]) -> Optional[Exception]:
        """Return None, the single error, or a MultiError for the non-None errors."""
        flat: List[Exception] = []
        for err in errors:
            if err is None:
                continue
            if isinstance(err, MultiError):
                flat.extend(err.errors)
            else:
                flat.append(err)
        if not flat:
            return None
        if len(flat) == 1:
            return flat[0]
        return cls(flat)
