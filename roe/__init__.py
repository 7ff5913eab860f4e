"""Roe AI - Python client for the Roe AI agent execution API.

This package runs agents, polls their jobs and fetches results, with
retries, cancellation and structured errors built in.
"""

from roe.models import (
    JobStatus,
    AgentDatum,
    AgentJobStatus,
    AgentJobResult,
    AgentJobStatusBatch,
    AgentJobResultBatch,
    JobDataDeleteResponse,
    Reference,
    PaginatedResponse,
    UserInfo,
    AgentInputDefinition,
    BaseAgent,
    AgentVersion,
)
from roe.errors import (
    RoeError,
    ConfigurationError,
    InputFileError,
    ErrorKind,
    APIError,
    BadRequestError,
    AuthenticationError,
    InsufficientCreditsError,
    ForbiddenError,
    NotFoundError,
    RateLimitError,
    ServerError,
    CancelledError,
    DeadlineExceededError,
    JobWaitCancelledError,
    JobFailedError,
    JobBatchFailedError,
    BatchResponseError,
    format_error,
)
from roe.config import (
    RoeConfig,
    RoeProfile,
    RoeConfigManager,
    load_config,
)
from roe.cancellation import CancellationToken
from roe.uploads import FileUpload
from roe.jobs import Job, JobBatch
from roe.agents import AgentsAPI, AgentVersionsAPI, AgentJobsAPI
from roe.client import RoeClient

__version__ = "0.1.0"

__all__ = [
    # Client
    "RoeClient",
    # Models
    "JobStatus",
    "AgentDatum",
    "AgentJobStatus",
    "AgentJobResult",
    "AgentJobStatusBatch",
    "AgentJobResultBatch",
    "JobDataDeleteResponse",
    "Reference",
    "PaginatedResponse",
    "UserInfo",
    "AgentInputDefinition",
    "BaseAgent",
    "AgentVersion",
    # Errors
    "RoeError",
    "ConfigurationError",
    "InputFileError",
    "ErrorKind",
    "APIError",
    "BadRequestError",
    "AuthenticationError",
    "InsufficientCreditsError",
    "ForbiddenError",
    "NotFoundError",
    "RateLimitError",
    "ServerError",
    "CancelledError",
    "DeadlineExceededError",
    "JobWaitCancelledError",
    "JobFailedError",
    "JobBatchFailedError",
    "BatchResponseError",
    "format_error",
    # Config
    "RoeConfig",
    "RoeProfile",
    "RoeConfigManager",
    "load_config",
    # Cancellation
    "CancellationToken",
    # Uploads
    "FileUpload",
    # Jobs
    "Job",
    "JobBatch",
    # Resources
    "AgentsAPI",
    "AgentVersionsAPI",
    "AgentJobsAPI",
]
