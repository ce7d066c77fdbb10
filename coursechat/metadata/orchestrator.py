"""
Metadata run orchestrator.

Drives one metadata-generation run through

    idle -> submitted -> polling -> completed | failed

Intent:
    - `start()` submits (prompt, document_ids) and spawns the poll task.
    - The task re-reads the document statuses for the run every
      `poll_interval` seconds while any selected document is `running` (or has
      no status row yet).
    - When none is: any failed document fails the run and the
      fields are never read; otherwise the fields are read exactly once.
    - Backend errors fail the run immediately (single attempt, no retry).

Cancellation:
    `cancel()` cancels the task, which cancels the in-flight request, and bumps
    the generation counter so a response that still resolves for an old run
    is dropped instead of being written into the snapshot.

Only one run is in flight per orchestrator; `start()` raises RunInFlightError
until the current run resolves. There is no poll ceiling unless `max_polls`
is configured.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError

from .backend import MetadataBackendProtocol, first_error
from .schemas import DocumentStatus, Err, GenerateMetadataRequest, MetadataField

logger = logging.getLogger("coursechat.metadata.orchestrator")

DEFAULT_POLL_INTERVAL_SECONDS = 5.0


class RunState(str, Enum):
    IDLE = "idle"
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"


class RunInFlightError(Exception):
    code = "run_in_flight"


class InvalidRunRequestError(ValueError):
    code = "invalid_run_request"


@dataclass
class RunSnapshot:
    state: RunState = RunState.IDLE
    run_id: Optional[int] = None
    prompt: str = ""
    document_ids: List[int] = field(default_factory=list)
    statuses: List[DocumentStatus] = field(default_factory=list)
    fields: List[MetadataField] = field(default_factory=list)
    error: Optional[str] = None
    polls: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "run_id": self.run_id,
            "prompt": self.prompt,
            "document_ids": list(self.document_ids),
            "statuses": [s.model_dump() for s in self.statuses],
            "fields": [f.model_dump() for f in self.fields],
            "error": self.error,
            "polls": self.polls,
        }


def still_running(document_ids: Sequence[int], statuses: Sequence[DocumentStatus]) -> List[int]:
    """Documents the run is still working on.

    A document is running when its row says so, or when it has no row yet
    (the service has not registered it for the run). Any other status, null
    included, ends polling for that document.
    """
    seen = {s.document_id for s in statuses}
    running = {s.document_id for s in statuses if s.is_running}
    return [doc_id for doc_id in document_ids if doc_id in running or doc_id not in seen]


class MetadataRunOrchestrator:
    def __init__(
        self,
        backend: MetadataBackendProtocol,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_polls: Optional[int] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._backend = backend
        self._poll_interval = poll_interval
        self._max_polls = max_polls
        self._sleep = sleep
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self.snapshot = RunSnapshot()

    @property
    def state(self) -> RunState:
        return self.snapshot.state

    @property
    def in_flight(self) -> bool:
        return self.snapshot.state in (RunState.SUBMITTED, RunState.POLLING)

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    def start(self, prompt: str, document_ids: Sequence[int]) -> asyncio.Task:
        """Submit a run and return the task driving it (requires a running loop)."""
        if self.in_flight:
            raise RunInFlightError("a metadata run is already in flight")
        try:
            request = GenerateMetadataRequest(prompt=prompt, document_ids=list(document_ids))
        except ValidationError as exc:
            raise InvalidRunRequestError("prompt and at least one document are required") from exc

        self._generation += 1
        self.snapshot = RunSnapshot(state=RunState.SUBMITTED, prompt=request.prompt, document_ids=request.document_ids)
        generation = self._generation
        self._task = asyncio.create_task(self._drive(generation, request))
        self._task.add_done_callback(lambda task: self._on_done(generation, task))
        return self._task

    async def cancel(self) -> None:
        """Stop the current run; late responses for it are ignored."""
        self._generation += 1
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self.in_flight:
            self.snapshot = RunSnapshot()

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _on_done(self, generation: int, task: asyncio.Task) -> None:
        if task.cancelled() or not self._is_current(generation):
            return
        exc = task.exception()
        if exc is not None and self.in_flight:
            logger.error("Metadata run crashed: %s", exc.__class__.__name__)
            self._fail("internal_error")

    def _fail(self, error: str) -> None:
        self.snapshot.state = RunState.FAILED
        self.snapshot.error = error
        logger.info("Metadata run failed run_id=%s error=%s", self.snapshot.run_id, error)

    async def _drive(self, generation: int, request: GenerateMetadataRequest) -> None:
        submitted = await self._backend.generate(request.prompt, request.document_ids)
        if not self._is_current(generation):
            return
        if isinstance(submitted, Err):
            self._fail(submitted.code)
            return

        run_id = submitted.value.run_id
        self.snapshot.run_id = run_id
        self.snapshot.state = RunState.POLLING
        logger.info("Metadata run submitted run_id=%s documents=%s", run_id, len(request.document_ids))

        while True:
            batch = await self._backend.statuses(request.document_ids, run_id)
            if not self._is_current(generation):
                return
            if isinstance(batch, Err):
                self._fail(batch.code)
                return
            self.snapshot.statuses = batch.value
            self.snapshot.polls += 1
            if not still_running(request.document_ids, batch.value):
                break
            if self._max_polls is not None and self.snapshot.polls >= self._max_polls:
                self._fail("poll_limit_reached")
                return
            await self._sleep(self._poll_interval)
            if not self._is_current(generation):
                return

        error = first_error(self.snapshot.statuses)
        if error is not None:
            self._fail(error)
            return

        fields = await self._backend.fields(run_id)
        if not self._is_current(generation):
            return
        if isinstance(fields, Err):
            self._fail(fields.code)
            return
        self.snapshot.fields = fields.value
        self.snapshot.state = RunState.COMPLETED
        logger.info("Metadata run completed run_id=%s fields=%s", run_id, len(fields.value))
