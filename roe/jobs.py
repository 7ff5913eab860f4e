"""Polling of asynchronous agent jobs.

A ``Job`` is returned by ``AgentsAPI.run``; a ``JobBatch`` by
``AgentsAPI.run_many``. Both poll on the caller's thread, sleeping between
polls on a ``CancellationToken`` so a caller token or the wait timeout can
interrupt them.
"""

import logging
import time
from typing import TYPE_CHECKING, Dict, List, Optional

from pydantic import TypeAdapter, ValidationError

from roe.cancellation import CancellationToken
from roe.errors import (
    BatchResponseError,
    CancelledError,
    JobBatchFailedError,
    JobFailedError,
    JobWaitCancelledError,
)
from roe.models import AgentDatum, AgentJobResult, AgentJobResultBatch, AgentJobStatus, JobStatus

if TYPE_CHECKING:
    from roe.agents import AgentsAPI

logger = logging.getLogger(__name__)

DEFAULT_JOB_TIMEOUT = 7200.0
DEFAULT_POLL_INTERVAL = 2.0

_DATUM_LIST = TypeAdapter(List[AgentDatum])


def convert_batch_result(entry: AgentJobResultBatch) -> AgentJobResult:
    """Convert a batch result entry into an AgentJobResult.

    A list result is decoded element by element. A ``str`` or ``bytes``
    result is treated as a JSON-encoded output list, and any other value is
    validated as an output list directly.

    Args:
        entry: One entry of the batch results response

    Returns:
        The converted result; empty outputs fall back to ``corrected_outputs``

    Raises:
        BatchResponseError: The entry carries neither agent id nor version id,
            or its result cannot be decoded as output data
    """
    if entry.agent_id is None and entry.agent_version_id is None:
        raise BatchResponseError(f"job {entry.id} not found or deleted")

    outputs: List[AgentDatum] = []
    raw = entry.result
    if isinstance(raw, list):
        for i, item in enumerate(raw):
            try:
                outputs.append(AgentDatum.model_validate(item))
            except ValidationError as e:
                raise BatchResponseError(f"job {entry.id}: decode output[{i}]: {e}") from e
    elif raw is not None:
        try:
            if isinstance(raw, (str, bytes)):
                outputs = _DATUM_LIST.validate_json(raw)
            else:
                outputs = _DATUM_LIST.validate_python(raw)
        except ValidationError as e:
            raise BatchResponseError(f"job {entry.id}: decode result as output list: {e}") from e

    if not outputs and entry.corrected_outputs:
        outputs = list(entry.corrected_outputs)

    return AgentJobResult(
        agent_id=entry.agent_id or "",
        agent_version_id=entry.agent_version_id or "",
        inputs=entry.inputs,
        input_tokens=entry.input_tokens,
        output_tokens=entry.output_tokens,
        outputs=outputs,
    )


def _resolve_timeout(timeout: Optional[float]) -> float:
    if timeout is None or timeout <= 0:
        return DEFAULT_JOB_TIMEOUT
    return float(timeout)


class _Ticker:
    """Fixed-rate schedule of poll times, anchored at creation."""

    def __init__(self, interval: float, token: CancellationToken):
        self._clock = time.monotonic
        self.interval = interval
        self.token = token
        self._next = self._clock() + interval

    def wait(self) -> None:
        """Sleep until the next tick; raises CancelledError on cancellation."""
        now = self._clock()
        self.token.sleep(max(self._next - now, 0.0))
        # Skip ticks missed while a poll was running.
        now = self._clock()
        while self._next <= now:
            self._next += self.interval


class Job:
    """Handle to one asynchronous agent job.

    Example:
        >>> job = client.agents.run(agent_id, {"url": "https://example.com"})
        >>> try:
        ...     result = job.wait(interval=5, timeout=600)
        ... except JobFailedError as e:
        ...     partial = e.result
    """

    def __init__(self, agents: "AgentsAPI", job_id: str, timeout: Optional[float] = None):
        """Initialize a job handle.

        Args:
            agents: Agents API used for polling
            job_id: Job id returned by the run endpoint
            timeout: Default wait timeout in seconds (7200 when unset or non-positive)
        """
        self._agents = agents
        self.id = job_id
        self.timeout = _resolve_timeout(timeout)

    def __repr__(self) -> str:
        return f"Job(id={self.id!r})"

    def retrieve_status(self, cancel: Optional[CancellationToken] = None) -> AgentJobStatus:
        return self._agents.jobs.retrieve_status(self.id, cancel=cancel)

    def retrieve_result(self, cancel: Optional[CancellationToken] = None) -> AgentJobResult:
        return self._agents.jobs.retrieve_result(self.id, cancel=cancel)

    def wait(
        self,
        interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = 0,
        cancel: Optional[CancellationToken] = None,
    ) -> AgentJobResult:
        """Poll until the job reaches a terminal status.

        Args:
            interval: Seconds between polls (2 when non-positive)
            timeout: Overall limit in seconds (the job's timeout when non-positive)
            cancel: Caller token; cancelling it stops the wait

        Returns:
            The job result for ``success`` and ``cached`` jobs

        Raises:
            JobFailedError: The job ended ``failure`` or ``cancelled``; carries the result
            JobWaitCancelledError: The token was cancelled or the timeout passed
        """
        if interval <= 0:
            interval = DEFAULT_POLL_INTERVAL
        if timeout <= 0:
            timeout = self.timeout

        with CancellationToken.with_timeout(timeout, parent=cancel) as token:
            ticker = _Ticker(interval, token)
            try:
                while True:
                    token.raise_if_cancelled()
                    status = self.retrieve_status(cancel=token)
                    if status.status.is_terminal:
                        result = self.retrieve_result(cancel=token)
                        if status.status.is_failed:
                            raise JobFailedError(self.id, status.status, result)
                        return result
                    logger.debug(f"Job {self.id} is {status.status.value}")
                    ticker.wait()
            except CancelledError as e:
                raise JobWaitCancelledError(self.id) from e


class JobBatch:
    """Tracks many jobs submitted together.

    Results are always returned in submission order, whatever order the
    jobs finish or the API lists them in. Not safe for concurrent use.
    """

    def __init__(self, agents: "AgentsAPI", job_ids: List[str], timeout: Optional[float] = None):
        self._agents = agents
        self.job_ids = list(job_ids)
        self.timeout = _resolve_timeout(timeout)
        self.statuses: Dict[str, JobStatus] = {}
        self.completed: Dict[str, AgentJobResult] = {}

    def __len__(self) -> int:
        return len(self.job_ids)

    def __repr__(self) -> str:
        return f"JobBatch(jobs={len(self.job_ids)}, completed={len(self.completed)})"

    def jobs(self) -> List[Job]:
        """Individual handles for every job in the batch."""
        return [Job(self._agents, job_id, self.timeout) for job_id in self.job_ids]

    def _collect(
        self,
        pending: List[str],
        failures: Dict[str, JobStatus],
        token: CancellationToken,
    ) -> List[str]:
        """Run one poll round and return the ids that are still pending."""
        ready: List[str] = []
        for entry in self._agents.jobs.retrieve_status_many(pending, cancel=token):
            if entry.status is None:
                continue
            self.statuses[entry.id] = entry.status
            if entry.status.is_terminal:
                ready.append(entry.id)

        if not ready:
            return pending

        # Entries come back one per id, in request order.
        entries = self._agents.jobs.retrieve_result_many(ready, cancel=token)
        for job_id, entry in zip(ready, entries):
            self.completed[job_id] = convert_batch_result(entry)
            if self.statuses[job_id].is_failed:
                failures[job_id] = self.statuses[job_id]

        done = set(ready)
        return [job_id for job_id in pending if job_id not in done]

    def wait(
        self,
        interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = 0,
        cancel: Optional[CancellationToken] = None,
    ) -> List[AgentJobResult]:
        """Poll until every job reaches a terminal status.

        Args:
            interval: Seconds between poll rounds (2 when non-positive)
            timeout: Overall limit in seconds (the batch timeout when non-positive)
            cancel: Caller token; cancelling it stops the wait

        Returns:
            Results in submission order

        Raises:
            JobBatchFailedError: Some jobs ended ``failure`` or ``cancelled``;
                carries every result in submission order
            JobWaitCancelledError: The token was cancelled or the timeout passed
            BatchResponseError: The API omitted a job or returned undecodable data
        """
        if interval <= 0:
            interval = DEFAULT_POLL_INTERVAL
        if timeout <= 0:
            timeout = self.timeout

        pending = [job_id for job_id in self.job_ids if job_id not in self.completed]
        failures: Dict[str, JobStatus] = {
            job_id: status
            for job_id, status in self.statuses.items()
            if job_id in self.completed and status.is_failed
        }

        with CancellationToken.with_timeout(timeout, parent=cancel) as token:
            ticker = _Ticker(interval, token)
            try:
                while pending:
                    token.raise_if_cancelled()
                    pending = self._collect(pending, failures, token)
                    if not pending:
                        break
                    logger.debug(f"Job batch waiting on {len(pending)}/{len(self.job_ids)} jobs")
                    ticker.wait()
            except CancelledError as e:
                raise JobWaitCancelledError(job_ids=pending) from e

        results = [self.completed[job_id] for job_id in self.job_ids if job_id in self.completed]
        if failures:
            failed = [job_id for job_id in self.job_ids if job_id in failures]
            raise JobBatchFailedError(failed, results)
        return results

    def retrieve_status(self, cancel: Optional[CancellationToken] = None) -> Dict[str, JobStatus]:
        """Best-known status of every job.

        Only jobs without a known terminal status are queried.
        """
        snapshot: Dict[str, JobStatus] = {}
        to_query: List[str] = []
        for job_id in self.job_ids:
            status = self.statuses.get(job_id)
            if status is not None and status.is_terminal:
                snapshot[job_id] = status
            else:
                to_query.append(job_id)

        if to_query:
            for entry in self._agents.jobs.retrieve_status_many(to_query, cancel=cancel):
                if entry.status is not None:
                    self.statuses[entry.id] = entry.status
                    snapshot[entry.id] = entry.status
                elif entry.id in self.statuses:
                    snapshot[entry.id] = self.statuses[entry.id]
        return {job_id: snapshot[job_id] for job_id in self.job_ids if job_id in snapshot}
