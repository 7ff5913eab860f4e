"""Exception hierarchy for the Roe client.

HTTP failures are mapped onto one ``APIError`` subclass per status family.
Every API error exposes the same attributes (``status_code``, ``message``,
``body``, ``request_id``, ``details``) plus a ``kind`` discriminator, so
callers can branch either with ``except`` clauses or by comparing kinds.
Only ``RateLimitError`` adds a variant-specific attribute (``retry_after``).
"""

import json
import time
from dataclasses import dataclass, field, fields
from datetime import timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, Dict, List, Mapping, Optional, Tuple, Union

import httpx

if TYPE_CHECKING:
    from roe.models import AgentJobResult, JobStatus


HeadersLike = Union[httpx.Headers, Mapping[str, str], None]


# ============================================================================
# Base
# ============================================================================


class RoeError(Exception):
    """Base class for every error raised by the Roe client."""


def _init_args(err: BaseException) -> None:
    # args mirror the fields in order; pickle and copy rebuild errors from them.
    BaseException.__init__(err, *(getattr(err, f.name) for f in fields(err)))


class ConfigurationError(RoeError, ValueError):
    """Raised when client configuration is missing or invalid."""


class InputFileError(RoeError, ValueError):
    """Raised when a dynamic input references a local file that cannot be used."""


# ============================================================================
# API errors
# ============================================================================


class ErrorKind(Enum):
    """Discriminator for API error variants."""

    BAD_REQUEST = "bad_request"
    AUTHENTICATION = "authentication"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    API = "api"


@dataclass(eq=False)
class APIError(RoeError):
    """Non-2xx response from the Roe API."""

    status_code: int
    message: str
    body: bytes = b""
    request_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    kind: ClassVar[ErrorKind] = ErrorKind.API

    def __post_init__(self) -> None:
        _init_args(self)

    def __str__(self) -> str:
        if self.request_id:
            return f"api error ({self.status_code}): {self.message} (request_id={self.request_id})"
        return f"api error ({self.status_code}): {self.message}"


@dataclass(eq=False)
class BadRequestError(APIError):
    kind: ClassVar[ErrorKind] = ErrorKind.BAD_REQUEST


@dataclass(eq=False)
class AuthenticationError(APIError):
    kind: ClassVar[ErrorKind] = ErrorKind.AUTHENTICATION


@dataclass(eq=False)
class InsufficientCreditsError(APIError):
    kind: ClassVar[ErrorKind] = ErrorKind.INSUFFICIENT_CREDITS


@dataclass(eq=False)
class ForbiddenError(APIError):
    kind: ClassVar[ErrorKind] = ErrorKind.FORBIDDEN


@dataclass(eq=False)
class NotFoundError(APIError):
    kind: ClassVar[ErrorKind] = ErrorKind.NOT_FOUND


@dataclass(eq=False)
class RateLimitError(APIError):
    """429 response. ``retry_after`` is in seconds, None when the server gave no usable hint."""

    retry_after: Optional[float] = None

    kind: ClassVar[ErrorKind] = ErrorKind.RATE_LIMIT


@dataclass(eq=False)
class ServerError(APIError):
    kind: ClassVar[ErrorKind] = ErrorKind.SERVER


_STATUS_ERRORS = {
    400: BadRequestError,
    401: AuthenticationError,
    402: InsufficientCreditsError,
    403: ForbiddenError,
    404: NotFoundError,
}


def parse_retry_after(headers: HeadersLike) -> Optional[float]:
    """Parse a Retry-After header into seconds.

    Integer seconds are tried first, then an HTTP-date (converted to the time
    remaining until that date).

    Args:
        headers: Response headers

    Returns:
        Seconds to wait, or None when the header is absent or unparseable
    """
    if not headers:
        return None
    value = httpx.Headers(headers).get("Retry-After", "").strip()
    if not value:
        return None
    try:
        return float(int(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.timestamp() - time.time()


def _extract_message(status_code: int, body: bytes) -> Tuple[str, Dict[str, Any]]:
    fallback = f"HTTP {status_code}"
    if not body:
        return fallback, {}

    details: Dict[str, Any] = {}
    try:
        decoded = json.loads(body)
    except ValueError:
        decoded = None
    if isinstance(decoded, dict):
        details = decoded
        for key in ("detail", "message", "error"):
            value = decoded.get(key)
            if isinstance(value, str) and value:
                return value, details

    text = body.decode("utf-8", errors="replace").strip()
    return (text or fallback), details


def api_error_from_response(
    status_code: int,
    body: bytes,
    headers: HeadersLike = None,
    request_id_header: Optional[str] = "X-Request-ID",
) -> APIError:
    """Build the typed API error for a non-2xx response.

    Args:
        status_code: HTTP status code
        body: Raw response body
        headers: Response headers
        request_id_header: Header carrying the request id (None to skip)

    Returns:
        Exactly one APIError instance matching the status code

    Example:
        >>> err = api_error_from_response(404, b'{"detail": "Agent not found"}')
        >>> str(err)
        'api error (404): Agent not found'
    """
    message, details = _extract_message(status_code, body or b"")

    request_id = None
    if request_id_header and headers:
        request_id = httpx.Headers(headers).get(request_id_header) or None

    common = dict(
        status_code=status_code,
        message=message,
        body=body or b"",
        request_id=request_id,
        details=details,
    )

    if status_code == 429:
        return RateLimitError(retry_after=parse_retry_after(headers), **common)
    if status_code >= 500:
        return ServerError(**common)
    return _STATUS_ERRORS.get(status_code, APIError)(**common)


def format_error(err: Optional[BaseException]) -> str:
    """Render an error for display; None renders as an empty string."""
    if err is None:
        return ""
    return str(err)


# ============================================================================
# Cancellation
# ============================================================================


class CancelledError(RoeError):
    """Raised when a blocking operation observes a cancelled token."""

    def __init__(self, message: str = "operation cancelled"):
        super().__init__(message)


class DeadlineExceededError(CancelledError):
    """Raised when a token's deadline passes."""

    def __init__(self, message: str = "deadline exceeded"):
        super().__init__(message)


# ============================================================================
# Job polling
# ============================================================================


class JobWaitCancelledError(RoeError):
    """Waiting for a job or job batch stopped because of cancellation or timeout.

    For a batch, ``job_id`` is None and ``job_ids`` lists the jobs that were
    still pending. The underlying CancelledError is available as ``__cause__``.
    """

    def __init__(self, job_id: Optional[str] = None, job_ids: Optional[List[str]] = None):
        self.job_id = job_id
        self.job_ids = list(job_ids) if job_ids is not None else ([job_id] if job_id else [])
        if job_id is None:
            super().__init__("job batch wait cancelled")
        else:
            super().__init__(f"job {job_id} wait cancelled")


@dataclass(eq=False)
class JobFailedError(RoeError):
    """A job reached the failure or cancelled status.

    ``result`` holds whatever the API returned for the job, which may be
    partial or empty.
    """

    job_id: str
    status: "JobStatus"
    result: Optional["AgentJobResult"] = None

    def __post_init__(self) -> None:
        _init_args(self)

    def __str__(self) -> str:
        return f"job {self.job_id} ended with status {self.status.value}"


@dataclass(eq=False)
class JobBatchFailedError(RoeError):
    """One or more jobs in a batch failed or were cancelled.

    ``results`` holds every job's result in submission order.
    """

    job_ids: List[str]
    results: List["AgentJobResult"] = field(default_factory=list)

    def __post_init__(self) -> None:
        _init_args(self)

    def __str__(self) -> str:
        return f"one or more jobs failed or were cancelled: [{', '.join(self.job_ids)}]"


class BatchResponseError(RoeError):
    """A batch status/result response was incomplete or malformed."""
