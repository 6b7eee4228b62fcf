"""Debounced re-translation of the staged input."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from models import InputState, Job, JobStatus, StartResult
from orchestrator import JobOrchestrator


logger = logging.getLogger(__name__)

AUTO_TRIGGER_DELAY = 1.0  # Seconds of quiet before an edit is translated.


def make_signature(source_language: Optional[str], target_language: str, text: str) -> str:
    return f"{source_language or 'auto'}|{target_language}|{text.strip()}"


class AutoTriggerController:
    """Turn a burst of input edits into at most one translation.

    Every change re-arms a single timer. When it fires, the staged input is
    translated unless a job is still running or the same
    ``(source, target, text)`` signature was the last one started. A job that
    ends without a result forgets its signature again.
    """

    def __init__(
        self,
        orchestrator: JobOrchestrator,
        input_state: InputState,
        *,
        delay: float = AUTO_TRIGGER_DELAY,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._input = input_state
        self._delay = delay
        self._loop = loop
        self._timer: Optional[asyncio.TimerHandle] = None
        self._fire_task: Optional["asyncio.Task[StartResult | None]"] = None
        self.last_executed_signature: Optional[str] = None
        self._previous_signature: Optional[str] = None
        self._started_job_id: Optional[str] = None
        orchestrator.add_finish_listener(self._on_job_finished)

    @property
    def armed(self) -> bool:
        return self._timer is not None

    def attach(self) -> None:
        """Start listening for changes of the staged input."""

        self._input.add_listener(lambda _state: self.notify_change())

    def notify_change(self) -> None:
        self._disarm()
        if not self._input.text.strip():
            return
        loop = self._loop or asyncio.get_running_loop()
        self._timer = loop.call_later(self._delay, self._on_timer)

    def close(self) -> None:
        self._disarm()
        if self._fire_task is not None and not self._fire_task.done():
            self._fire_task.cancel()
        self._fire_task = None

    async def run_now(self) -> StartResult:
        """Translate the staged input immediately (manual trigger)."""

        self._disarm()
        if not self._input.text.strip():
            return StartResult.REJECTED
        return await self._start(self._current_signature())

    def _disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _current_signature(self) -> str:
        return make_signature(self._input.source_language, self._input.target_language, self._input.text)

    def _on_timer(self) -> None:
        self._timer = None
        loop = self._loop or asyncio.get_running_loop()
        self._fire_task = loop.create_task(self._fire())

    async def _fire(self) -> Optional[StartResult]:
        if self._orchestrator.busy:
            logger.debug("Auto-translate skipped; a job is already running")
            return None
        if not self._input.text.strip():
            return None
        signature = self._current_signature()
        if signature == self.last_executed_signature:
            logger.debug("Auto-translate skipped; input unchanged since last run")
            return None
        return await self._start(signature)

    async def _start(self, signature: str) -> StartResult:
        result = await self._orchestrator.start(
            self._input.text,
            self._input.source_language,
            self._input.target_language,
        )
        if result is not StartResult.STARTED:
            return result
        job = self._orchestrator.last_job
        if job is not None and not job.active and job.status is not JobStatus.DONE:
            return result
        self._previous_signature = self.last_executed_signature
        self.last_executed_signature = signature
        self._started_job_id = job.id if job is not None and job.active else None
        return result

    def _on_job_finished(self, job: Job) -> None:
        if job.id != self._started_job_id:
            return
        self._started_job_id = None
        if job.status is not JobStatus.DONE:
            # Only a committed translation counts as executed.
            self.last_executed_signature = self._previous_signature
