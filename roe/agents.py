"""Resource clients for agents, agent versions and jobs.

``AgentsAPI`` is reached as ``client.agents``; versions and jobs hang off it
as ``client.agents.versions`` and ``client.agents.jobs``.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from roe.cancellation import CancellationToken
from roe.errors import BatchResponseError, RoeError
from roe.jobs import Job, JobBatch
from roe.models import (
    AgentDatum,
    AgentJobResult,
    AgentJobResultBatch,
    AgentJobStatus,
    AgentJobStatusBatch,
    AgentVersion,
    BaseAgent,
    JobDataDeleteResponse,
    PaginatedResponse,
)
from roe.transport import HTTPTransport
from roe.utils import chunked

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 1000


def _require(value: str, name: str) -> None:
    if not value:
        raise ValueError(f"{name} cannot be empty")


class AgentsAPI:
    """Agent CRUD and execution.

    Example:
        >>> job = client.agents.run(agent_id, {"text": "Summarize this"})
        >>> result = job.wait()
        >>> batch = client.agents.run_many(agent_id, [{"text": "a"}, {"text": "b"}])
        >>> results = batch.wait(interval=5)
    """

    def __init__(self, transport: HTTPTransport):
        self.transport = transport
        self.versions = AgentVersionsAPI(self)
        self.jobs = AgentJobsAPI(self)

    @property
    def organization_id(self) -> str:
        return self.transport.config.organization_id

    def _bind(self, item):
        return item.bind(self)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def list(
        self,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> PaginatedResponse[BaseAgent]:
        """List agents in the configured organization.

        Args:
            page: 1-based page number (server default when None)
            page_size: Items per page (server default when None)

        Returns:
            One page of agents
        """
        query: Dict[str, Any] = {"organization_id": self.organization_id}
        if page and page > 0:
            query["page"] = page
        if page_size and page_size > 0:
            query["page_size"] = page_size
        resp = self.transport.get_json(
            "/v1/agents/", query=query, out=PaginatedResponse[BaseAgent], cancel=cancel
        )
        for agent in resp.results:
            self._bind(agent)
        return resp

    def retrieve(self, agent_id: str, cancel: Optional[CancellationToken] = None) -> BaseAgent:
        _require(agent_id, "agent_id")
        agent = self.transport.get_json(f"/v1/agents/{agent_id}/", out=BaseAgent, cancel=cancel)
        return self._bind(agent)

    def create(
        self,
        name: str,
        engine_class_id: str,
        input_definitions: Optional[Sequence[Mapping[str, Any]]] = None,
        engine_config: Optional[Mapping[str, Any]] = None,
        version_name: Optional[str] = None,
        description: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> BaseAgent:
        """Create an agent together with its first version.

        Args:
            name: Agent name
            engine_class_id: Engine that runs the agent
            input_definitions: Input declarations (key, data_type, description, ...)
            engine_config: Engine-specific configuration
            version_name: Name of the first version
            description: Description of the first version
        """
        payload: Dict[str, Any] = {
            "name": name,
            "engine_class_id": engine_class_id,
            "organization_id": self.organization_id,
            "input_definitions": list(input_definitions or []),
            "engine_config": dict(engine_config or {}),
        }
        if version_name:
            payload["version_name"] = version_name
        if description:
            payload["description"] = description
        agent = self.transport.post_json("/v1/agents/", payload, out=BaseAgent, cancel=cancel)
        return self._bind(agent)

    def update(
        self,
        agent_id: str,
        name: Optional[str] = None,
        disable_cache: Optional[bool] = None,
        cache_failed_jobs: Optional[bool] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> BaseAgent:
        """Update agent settings. Only the given fields are sent."""
        _require(agent_id, "agent_id")
        payload: Dict[str, Any] = {}
        if name:
            payload["name"] = name
        if disable_cache is not None:
            payload["disable_cache"] = disable_cache
        if cache_failed_jobs is not None:
            payload["cache_failed_jobs"] = cache_failed_jobs
        agent = self.transport.put_json(
            f"/v1/agents/{agent_id}/", payload, out=BaseAgent, cancel=cancel
        )
        return self._bind(agent)

    def delete(self, agent_id: str, cancel: Optional[CancellationToken] = None) -> None:
        _require(agent_id, "agent_id")
        self.transport.delete(f"/v1/agents/{agent_id}/", cancel=cancel)

    def duplicate(self, agent_id: str, cancel: Optional[CancellationToken] = None) -> BaseAgent:
        """Copy an agent; returns the new agent."""
        _require(agent_id, "agent_id")
        resp = self.transport.post_json(
            f"/v1/agents/{agent_id}/duplicate/", out=Dict[str, Any], cancel=cancel
        )
        return self._bind(BaseAgent.model_validate(resp.get("base_agent") or {}))

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(
        self,
        agent_id: str,
        inputs: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Job:
        """Submit one asynchronous run of the agent's current version.

        Args:
            agent_id: Agent to run
            inputs: Dynamic inputs; see ``HTTPTransport.encode_dynamic_inputs``
            timeout: Default wait timeout of the returned job, in seconds

        Returns:
            Job handle for polling
        """
        _require(agent_id, "agent_id")
        job_id = self.transport.post_dynamic_inputs(
            f"/v1/agents/run/{agent_id}/async/", inputs or {}, out=str, cancel=cancel
        )
        logger.debug(f"Submitted job {job_id} for agent {agent_id}")
        return Job(self, job_id, timeout)

    def run_many(
        self,
        agent_id: str,
        batch_inputs: Sequence[Mapping[str, Any]],
        timeout: Optional[float] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> JobBatch:
        """Submit many runs in chunks of at most ``MAX_BATCH_SIZE``.

        Inputs are JSON-encoded, so file uploads are not supported here.

        Returns:
            JobBatch whose job order matches ``batch_inputs``
        """
        _require(agent_id, "agent_id")
        if not batch_inputs:
            raise ValueError("batch_inputs cannot be empty")

        job_ids: List[str] = []
        for chunk in chunked(list(batch_inputs), MAX_BATCH_SIZE):
            if cancel is not None:
                cancel.raise_if_cancelled()
            ids = self.transport.post_json(
                f"/v1/agents/run/{agent_id}/async/many/",
                {"inputs": [dict(item) for item in chunk]},
                out=List[str],
                cancel=cancel,
            )
            job_ids.extend(ids)
        logger.debug(f"Submitted {len(job_ids)} jobs for agent {agent_id}")
        return JobBatch(self, job_ids, timeout)

    def run_sync(
        self,
        agent_id: str,
        inputs: Optional[Mapping[str, Any]] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[AgentDatum]:
        """Run the agent and block until the server returns its outputs."""
        _require(agent_id, "agent_id")
        return self.transport.post_dynamic_inputs(
            f"/v1/agents/run/{agent_id}/", inputs or {}, out=List[AgentDatum], cancel=cancel
        )

    def run_version(
        self,
        agent_id: str,
        version_id: str,
        inputs: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Job:
        """Submit one asynchronous run of a specific version."""
        _require(agent_id, "agent_id")
        _require(version_id, "version_id")
        job_id = self.transport.post_dynamic_inputs(
            f"/v1/agents/run/{agent_id}/versions/{version_id}/async/",
            inputs or {},
            out=str,
            cancel=cancel,
        )
        return Job(self, job_id, timeout)

    def run_version_sync(
        self,
        agent_id: str,
        version_id: str,
        inputs: Optional[Mapping[str, Any]] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[AgentDatum]:
        _require(agent_id, "agent_id")
        _require(version_id, "version_id")
        return self.transport.post_dynamic_inputs(
            f"/v1/agents/run/{agent_id}/versions/{version_id}/",
            inputs or {},
            out=List[AgentDatum],
            cancel=cancel,
        )


class AgentVersionsAPI:
    """Manage versions of an agent."""

    def __init__(self, agents: AgentsAPI):
        self.agents = agents

    @property
    def transport(self) -> HTTPTransport:
        return self.agents.transport

    def list(self, agent_id: str, cancel: Optional[CancellationToken] = None) -> List[AgentVersion]:
        """List every version of an agent."""
        _require(agent_id, "agent_id")
        versions = self.transport.get_json(
            f"/v1/agents/{agent_id}/versions/", out=List[AgentVersion], cancel=cancel
        )
        return [v.bind(self.agents) for v in versions]

    def list_paginated(
        self,
        agent_id: str,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
        get_supports_eval: Optional[bool] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> PaginatedResponse[AgentVersion]:
        _require(agent_id, "agent_id")
        query: Dict[str, Any] = {}
        if page and page > 0:
            query["page"] = page
        if page_size and page_size > 0:
            query["page_size"] = page_size
        if get_supports_eval is not None:
            query["get_supports_eval"] = get_supports_eval
        resp = self.transport.get_json(
            f"/v1/agents/{agent_id}/versions/",
            query=query,
            out=PaginatedResponse[AgentVersion],
            cancel=cancel,
        )
        for version in resp.results:
            version.bind(self.agents)
        return resp

    def retrieve(
        self,
        agent_id: str,
        version_id: str,
        get_supports_eval: Optional[bool] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> AgentVersion:
        _require(agent_id, "agent_id")
        _require(version_id, "version_id")
        query = {} if get_supports_eval is None else {"get_supports_eval": get_supports_eval}
        version = self.transport.get_json(
            f"/v1/agents/{agent_id}/versions/{version_id}/",
            query=query,
            out=AgentVersion,
            cancel=cancel,
        )
        return version.bind(self.agents)

    def retrieve_current(
        self,
        agent_id: str,
        get_supports_eval: Optional[bool] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> AgentVersion:
        return self.retrieve(agent_id, "current", get_supports_eval=get_supports_eval, cancel=cancel)

    def create(
        self,
        agent_id: str,
        input_definitions: Optional[Sequence[Mapping[str, Any]]] = None,
        engine_config: Optional[Mapping[str, Any]] = None,
        version_name: Optional[str] = None,
        description: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> AgentVersion:
        """Create a version and return it as stored by the server.

        The create endpoint only returns the new id, so the version is fetched
        afterwards.
        """
        _require(agent_id, "agent_id")
        payload: Dict[str, Any] = {
            "input_definitions": list(input_definitions or []),
            "engine_config": dict(engine_config or {}),
        }
        if version_name:
            payload["version_name"] = version_name
        if description:
            payload["description"] = description
        created = self.transport.post_json(
            f"/v1/agents/{agent_id}/versions/", payload, out=Dict[str, Any], cancel=cancel
        )
        version_id = created.get("id")
        if not version_id:
            raise RoeError(f"create version for agent {agent_id}: response has no id")
        return self.retrieve(agent_id, str(version_id), cancel=cancel)

    def update(
        self,
        agent_id: str,
        version_id: str,
        version_name: Optional[str] = None,
        description: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        _require(agent_id, "agent_id")
        _require(version_id, "version_id")
        payload: Dict[str, Any] = {}
        if version_name:
            payload["version_name"] = version_name
        if description:
            payload["description"] = description
        self.transport.put_json(
            f"/v1/agents/{agent_id}/versions/{version_id}/", payload, cancel=cancel
        )

    def delete(
        self, agent_id: str, version_id: str, cancel: Optional[CancellationToken] = None
    ) -> None:
        _require(agent_id, "agent_id")
        _require(version_id, "version_id")
        self.transport.delete(f"/v1/agents/{agent_id}/versions/{version_id}/", cancel=cancel)


class AgentJobsAPI:
    """Status, results and data of agent jobs."""

    def __init__(self, agents: AgentsAPI):
        self.agents = agents

    @property
    def transport(self) -> HTTPTransport:
        return self.agents.transport

    def retrieve_status(
        self, job_id: str, cancel: Optional[CancellationToken] = None
    ) -> AgentJobStatus:
        _require(job_id, "job_id")
        return self.transport.get_json(
            f"/v1/agents/jobs/{job_id}/status/", out=AgentJobStatus, cancel=cancel
        )

    def retrieve_result(
        self, job_id: str, cancel: Optional[CancellationToken] = None
    ) -> AgentJobResult:
        _require(job_id, "job_id")
        return self.transport.get_json(
            f"/v1/agents/jobs/{job_id}/result/", out=AgentJobResult, cancel=cancel
        )

    def _fetch_many(self, path: str, job_ids: Sequence[str], out: Any, label: str, cancel):
        if not job_ids:
            return []
        ordered: Dict[str, Any] = {}
        for chunk in chunked(list(job_ids), MAX_BATCH_SIZE):
            entries = self.transport.post_json(path, {"job_ids": chunk}, out=out, cancel=cancel)
            for entry in entries:
                ordered[entry.id] = entry
        missing = [job_id for job_id in job_ids if job_id not in ordered]
        if missing:
            raise BatchResponseError(f"{label} missing in batch response for jobs: {missing}")
        return [ordered[job_id] for job_id in job_ids]

    def retrieve_status_many(
        self, job_ids: Sequence[str], cancel: Optional[CancellationToken] = None
    ) -> List[AgentJobStatusBatch]:
        """Fetch statuses for many jobs.

        Returns:
            One entry per requested id, in request order

        Raises:
            BatchResponseError: If any requested id is missing from the response
        """
        return self._fetch_many(
            "/v1/agents/jobs/statuses/", job_ids, List[AgentJobStatusBatch], "status", cancel
        )

    def retrieve_result_many(
        self, job_ids: Sequence[str], cancel: Optional[CancellationToken] = None
    ) -> List[AgentJobResultBatch]:
        """Fetch raw results for many jobs, in request order."""
        return self._fetch_many(
            "/v1/agents/jobs/results/", job_ids, List[AgentJobResultBatch], "result", cancel
        )

    def download_reference(
        self,
        job_id: str,
        resource_id: str,
        as_attachment: bool = False,
        cancel: Optional[CancellationToken] = None,
    ) -> bytes:
        """Download a reference (screenshot, HTML, ...) produced by a job.

        Args:
            job_id: Job that produced the reference
            resource_id: ``Reference.resource_id`` from ``AgentJobResult.get_references()``
            as_attachment: Ask the server for a download response
        """
        _require(job_id, "job_id")
        _require(resource_id, "resource_id")
        query = {"download": "true"} if as_attachment else None
        return self.transport.get_bytes(
            f"/v1/agents/jobs/{job_id}/references/{resource_id}/", query=query, cancel=cancel
        )

    def delete_data(
        self, job_id: str, cancel: Optional[CancellationToken] = None
    ) -> JobDataDeleteResponse:
        """Delete stored inputs and outputs of a job."""
        _require(job_id, "job_id")
        return self.transport.post_json(
            f"/v1/agents/jobs/{job_id}/delete-data/", out=JobDataDeleteResponse, cancel=cancel
        )
