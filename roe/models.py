"""Data models for the Roe agent API.

Provides Enums and Pydantic models for agents, versions, jobs and their
results.
"""

import json
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from roe.errors import RoeError

if TYPE_CHECKING:
    from roe.agents import AgentsAPI
    from roe.jobs import Job

T = TypeVar("T")


# ============================================================================
# Enums
# ============================================================================


class JobStatus(Enum):
    """Lifecycle status of an agent job.

    The API has served statuses both by name and by ordinal index, so both
    forms are accepted when decoding.
    """

    PENDING = "pending"
    STARTED = "started"
    RETRY = "retry"
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"
    CACHED = "cached"

    @classmethod
    def _missing_(cls, value: object) -> Optional["JobStatus"]:
        members = list(cls)
        if isinstance(value, int) and not isinstance(value, bool):
            if 0 <= value < len(members):
                return members[value]
            return None
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in members:
                if member.value == lowered:
                    return member
            if lowered.isdigit():
                return cls._missing_(int(lowered))
        return None

    @property
    def is_terminal(self) -> bool:
        """True once no further transition can happen."""
        return self in _TERMINAL_STATUSES

    @property
    def is_failed(self) -> bool:
        return self in (JobStatus.FAILURE, JobStatus.CANCELLED)


_TERMINAL_STATUSES = frozenset(
    {JobStatus.SUCCESS, JobStatus.FAILURE, JobStatus.CANCELLED, JobStatus.CACHED}
)


# ============================================================================
# Job payloads
# ============================================================================


class AgentDatum(BaseModel):
    """One named, typed output value produced by a job."""

    key: str = Field(..., description="Output key")
    description: str = Field(default="", description="Human description of the output")
    data_type: str = Field(default="", description="Declared data type")
    value: str = Field(default="", description="String-encoded value")
    cost: Optional[float] = Field(None, description="Cost attributed to this output")


class AgentJobStatus(BaseModel):
    """Single job status response."""

    status: JobStatus
    timestamp: float = 0.0
    error_message: Optional[str] = None


class Reference(BaseModel):
    """Downloadable artifact linked from a job output."""

    url: str
    resource_id: str


class AgentJobResult(BaseModel):
    """Final payload for a completed job."""

    agent_id: str = ""
    agent_version_id: str = ""
    inputs: List[Any] = Field(default_factory=list)
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    outputs: List[AgentDatum] = Field(default_factory=list)

    def get_references(self) -> List[Reference]:
        """Extract reference links from the outputs.

        Each output value is parsed as JSON and its ``references`` array is
        scanned for ``.../references/<id>`` URLs. Values that are not JSON
        objects are skipped.

        Returns:
            References in output order

        Example:
            >>> result.outputs[0].value
            '{"references": ["https://api.roe-ai.com/v1/agents/jobs/j/references/abc123/"]}'
            >>> [r.resource_id for r in result.get_references()]
            ['abc123']
        """
        refs: List[Reference] = []
        for output in self.outputs:
            try:
                parsed = json.loads(output.value)
            except ValueError:
                continue
            if not isinstance(parsed, dict):
                continue
            items = parsed.get("references")
            if not isinstance(items, list):
                continue
            for item in items:
                if not isinstance(item, str) or "/references/" not in item:
                    continue
                resource_id = item.split("/references/")[-1]
                if resource_id.endswith("/"):
                    resource_id = resource_id[:-1]
                refs.append(Reference(url=item, resource_id=resource_id))
        return refs


class AgentJobStatusBatch(BaseModel):
    """Entry of a batch status response."""

    id: str
    status: Optional[JobStatus] = None
    created_at: Any = None
    last_updated_at: Any = None


class AgentJobResultBatch(BaseModel):
    """Entry of a batch result response.

    ``result`` is kept raw; ``roe.jobs.convert_batch_result`` decodes it.
    """

    id: str
    status: Optional[JobStatus] = None
    result: Any = None
    corrected_outputs: List[AgentDatum] = Field(default_factory=list)
    agent_id: Optional[str] = None
    agent_version_id: Optional[str] = None
    cost: Optional[float] = None
    inputs: List[Any] = Field(default_factory=list)
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


class JobDataDeleteResponse(BaseModel):
    """Response of the delete-data endpoint."""

    status: str = ""
    deleted_count: int = 0
    failed_count: int = 0
    outputs_sanitized: bool = False
    errors: List[str] = Field(default_factory=list)


class PaginatedResponse(BaseModel, Generic[T]):
    """One page of a list endpoint."""

    count: int = 0
    next: Optional[str] = None
    previous: Optional[str] = None
    results: List[T] = Field(default_factory=list)

    @property
    def has_next(self) -> bool:
        return self.next is not None

    @property
    def has_previous(self) -> bool:
        return self.previous is not None


# ============================================================================
# Agents
# ============================================================================


class UserInfo(BaseModel):
    """Creator of an agent or version."""

    id: int
    email: str = ""
    first_name: str = ""
    last_name: str = ""


class AgentInputDefinition(BaseModel):
    """Declared input of an agent version."""

    key: str
    data_type: str
    description: str = ""
    example: Optional[str] = None
    accepts_multiple_files: bool = False


class _BoundModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    _agents: Any = PrivateAttr(default=None)

    def bind(self, agents: "AgentsAPI") -> "_BoundModel":
        self._agents = agents
        return self

    def _require_api(self) -> "AgentsAPI":
        if self._agents is None:
            raise RoeError("agents API not set; use client.agents instead")
        return self._agents


class BaseAgent(_BoundModel):
    """Agent definition.

    Instances returned by the client are bound to it, so ``run`` and the
    version helpers can be called directly.
    """

    id: str
    name: str = ""
    creator: Optional[UserInfo] = None
    created_at: Optional[datetime] = None
    disable_cache: bool = False
    cache_failed_jobs: bool = False
    organization_id: str = ""
    engine_class_id: str = ""
    current_version_id: Optional[str] = None
    job_count: int = 0
    most_recent_job: Optional[datetime] = None
    engine_name: str = ""

    def run(self, inputs: Optional[Dict[str, Any]] = None, **kwargs: Any) -> "Job":
        """Run the agent's current version asynchronously.

        Args:
            inputs: Dynamic inputs keyed by input name
            **kwargs: Forwarded to ``AgentsAPI.run`` (timeout, cancel)
        """
        return self._require_api().run(self.id, inputs or {}, **kwargs)

    def list_versions(self, **kwargs: Any) -> List["AgentVersion"]:
        return self._require_api().versions.list(self.id, **kwargs)

    def get_current_version(self, **kwargs: Any) -> Optional["AgentVersion"]:
        """Fetch the current version, or None if the agent has none."""
        api = self._require_api()
        if self.current_version_id is None:
            return None
        return api.versions.retrieve(self.id, self.current_version_id, **kwargs)


class AgentVersion(_BoundModel):
    """Specific version of an agent."""

    id: str
    name: str = ""
    version_name: str = ""
    creator: Optional[UserInfo] = None
    created_at: Optional[datetime] = None
    description: Optional[str] = None
    engine_class_id: str = ""
    engine_name: str = ""
    input_definitions: List[AgentInputDefinition] = Field(default_factory=list)
    engine_config: Dict[str, Any] = Field(default_factory=dict)
    organization_id: str = ""
    readonly: bool = False
    base_agent: Optional[BaseAgent] = None

    def bind(self, agents: "AgentsAPI") -> "AgentVersion":
        super().bind(agents)
        if self.base_agent is not None:
            self.base_agent.bind(agents)
        return self

    def run(self, inputs: Optional[Dict[str, Any]] = None, **kwargs: Any) -> "Job":
        """Run this exact version asynchronously."""
        api = self._require_api()
        if self.base_agent is None:
            raise RoeError(f"version {self.id} has no base agent")
        return api.run_version(self.base_agent.id, self.id, inputs or {}, **kwargs)
