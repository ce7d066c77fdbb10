"""
Registry of metadata run orchestrators, one per (session, course).

A browser tab used to own its run; on the server the session id takes that
role, so two sessions working on the same course never share a run.
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Tuple

from .orchestrator import MetadataRunOrchestrator

logger = logging.getLogger("coursechat.metadata.runs")

RunKey = Tuple[str, str]


class RunRegistry:
    def __init__(self, factory: Callable[[], MetadataRunOrchestrator]) -> None:
        self._factory = factory
        self._runs: Dict[RunKey, MetadataRunOrchestrator] = {}

    def get(self, session_id: str, course_name: str) -> Optional[MetadataRunOrchestrator]:
        return self._runs.get((session_id, course_name))

    def get_or_create(self, session_id: str, course_name: str) -> MetadataRunOrchestrator:
        key = (session_id, course_name)
        orch = self._runs.get(key)
        if orch is None:
            orch = self._factory()
            self._runs[key] = orch
        return orch

    async def discard(self, session_id: str, course_name: str) -> bool:
        """Cancel and forget the run for (session, course); False when there was none."""
        orch = self._runs.pop((session_id, course_name), None)
        if orch is None:
            return False
        await orch.cancel()
        return True

    async def discard_session(self, session_id: str) -> None:
        for key in [k for k in self._runs if k[0] == session_id]:
            await self._runs.pop(key).cancel()

    async def aclose(self) -> None:
        runs, self._runs = self._runs, {}
        for orch in runs.values():
            await orch.cancel()
        if runs:
            logger.info("Cancelled %s metadata run(s) on shutdown", len(runs))
