"""Single-flight orchestration of streamed translation jobs."""

from __future__ import annotations

import asyncio
import logging
import numbers
import uuid
from collections.abc import Mapping
from typing import Any, Callable, List, Optional, Protocol

from event_channel import ChannelKey, EventChannel, Topic
from history_store import HistorySink
from models import (
    PASTE_MODE_CLIPBOARD,
    PASTE_MODE_POPUP,
    HistoryItem,
    Job,
    JobStatus,
    Settings,
    StartResult,
    TranslationRequest,
)
from translation_service import StartRequest


logger = logging.getLogger(__name__)


class EngineGateway(Protocol):  # pragma: no cover - protocol is for type checking only
    async def start(self, request: StartRequest) -> None:
        """Dispatch a translation; results arrive on the event channel."""

    async def abort(self, job_id: str) -> None:
        """Ask the engine to stop working on ``job_id``."""


class ClipboardProtocol(Protocol):  # pragma: no cover - protocol is for type checking only
    def copy(self, text: str) -> None:
        ...

    def paste(self) -> str:
        ...


class PreviewSurface(Protocol):  # pragma: no cover - protocol is for type checking only
    def show(self, original: str, translated: str) -> None:
        ...

    def close(self) -> None:
        ...


class JobObserver(Protocol):  # pragma: no cover - protocol is for type checking only
    def job_updated(self, job: Job) -> None:
        ...

    def job_finished(self, job: Job) -> None:
        ...

    def job_failed(self, job: Job, message: str) -> None:
        ...


class JobOrchestrator:
    """Own the single active translation job and its event subscriptions.

    ``start`` arms the job's subscriptions on the channel before the engine is
    invoked, so events published by a fast engine are never missed. Only a
    successful ``done`` event commits side effects (history, clipboard and the
    preview surface); cancellation and in-band failures return silently to idle.
    """

    def __init__(
        self,
        channel: EventChannel,
        gateway: EngineGateway,
        history: HistorySink,
        settings_provider: Callable[[], Settings],
        *,
        clipboard: Optional[ClipboardProtocol] = None,
        preview: Optional[PreviewSurface] = None,
        observer: Optional[JobObserver] = None,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self._channel = channel
        self._gateway = gateway
        self._history = history
        self._settings_provider = settings_provider
        self._clipboard = clipboard
        self.preview = preview
        self.observer = observer
        self._id_factory = id_factory
        self._job: Optional[Job] = None
        self._last_job: Optional[Job] = None
        self._status = JobStatus.IDLE
        self.error: Optional[str] = None
        self._finish_listeners: List[Callable[[Job], None]] = []

    @property
    def active_job(self) -> Optional[Job]:
        return self._job

    @property
    def last_job(self) -> Optional[Job]:
        """The most recent job, active or finished."""

        return self._job or self._last_job

    @property
    def busy(self) -> bool:
        return self._job is not None and self._job.active

    @property
    def status(self) -> JobStatus:
        if self._job is not None:
            return self._job.status
        if self.error is not None:
            return JobStatus.FAILED
        return self._status

    def add_finish_listener(self, listener: Callable[[Job], None]) -> None:
        """Call ``listener`` whenever a started job reaches a terminal state."""

        self._finish_listeners.append(listener)

    def acknowledge_error(self) -> None:
        self.error = None
        if self._status is JobStatus.FAILED:
            self._status = JobStatus.IDLE

    async def start(
        self,
        text: str,
        source_language: Optional[str],
        target_language: str,
    ) -> StartResult:
        if self._job is not None:
            logger.debug("Start ignored; job %s is still running", self._job.id)
            return StartResult.REJECTED

        settings = self._settings_provider()
        request = TranslationRequest(
            source_text=text,
            source_language=source_language,
            target_language=target_language,
            precision=settings.precision,
            style_preset=settings.style_preset,
            glossary_path=settings.glossary_path,
        )
        job_id = self._id_factory()
        job = Job(id=job_id, request=request, settings=settings, key=ChannelKey(job_id))
        self._job = job
        self._last_job = None

        handlers = {
            Topic.CHUNK: lambda payload: self._on_chunk(job, payload),
            Topic.PROGRESS: lambda payload: self._on_progress(job, payload),
            Topic.FINAL: lambda payload: self._on_final(job, payload),
            Topic.DONE: lambda payload: self._on_done(job, payload),
        }
        for topic, handler in handlers.items():
            subscription = await self._channel.subscribe(job.key, topic, handler)
            job.subscriptions.append(subscription)
            if self._job is not job:
                logger.info("Job %s was cancelled while subscribing", job.id)
                job.release()
                return StartResult.ABANDONED

        job.status = JobStatus.STREAMING
        job.output = ""
        job.progress = None
        self._notify_updated(job)

        try:
            await self._gateway.start(StartRequest.from_job(job))
        except Exception as exc:
            job.release()
            if self._job is not job:
                logger.info("Job %s was cancelled before the engine accepted it: %s", job.id, exc)
                return StartResult.ABANDONED
            logger.error("Failed to invoke translation engine for job %s: %s", job.id, exc)
            self._job = None
            job.status = JobStatus.FAILED
            job.reason = "invocation error"
            self._last_job = job
            self._status = JobStatus.FAILED
            self.error = f"invocation error: {exc}"
            if self.observer is not None:
                self.observer.job_failed(job, self.error)
            return StartResult.INVOCATION_FAILED

        logger.info("Started job %s", job.id)
        return StartResult.STARTED

    async def cancel(self) -> None:
        job = self._job
        if job is None:
            return
        self._job = None
        self._last_job = job
        self._status = JobStatus.IDLE
        job.status = JobStatus.CANCELLED
        job.reason = "cancelled"
        try:
            await self._gateway.abort(job.id)
        except Exception as exc:
            logger.warning("Abort request for job %s failed: %s", job.id, exc)
        finally:
            job.release()
        logger.info("Cancelled job %s", job.id)
        self._notify_finished(job)

    def _on_chunk(self, job: Job, payload: Any) -> None:
        if job.status is not JobStatus.STREAMING:
            return
        if not isinstance(payload, str):
            logger.debug("Ignoring chunk payload of type %s", type(payload).__name__)
            return
        job.output += payload
        self._notify_updated(job)

    def _on_progress(self, job: Job, payload: Any) -> None:
        if job.status is not JobStatus.STREAMING:
            return
        if isinstance(payload, bool) or not isinstance(payload, numbers.Real):
            logger.debug("Ignoring progress payload %r", payload)
            return
        job.progress = float(payload)
        self._notify_updated(job)

    def _on_final(self, job: Job, payload: Any) -> None:
        if job.status is not JobStatus.STREAMING:
            return
        if not isinstance(payload, str):
            logger.debug("Ignoring final payload of type %s", type(payload).__name__)
            return
        if job.output:
            return
        job.output = payload
        self._notify_updated(job)

    async def _on_done(self, job: Job, payload: Any) -> None:
        if job.status is not JobStatus.STREAMING or self._job is not job:
            return
        if not isinstance(payload, Mapping) or not isinstance(payload.get("ok"), bool):
            logger.warning("Ignoring malformed completion payload for job %s: %r", job.id, payload)
            return

        job.release()
        self._job = None
        self._last_job = job

        if not payload["ok"]:
            job.status = JobStatus.CANCELLED
            reason = payload.get("reason")
            job.reason = reason if isinstance(reason, str) else "unknown"
            self._status = JobStatus.IDLE
            logger.info("Job %s ended without result (%s)", job.id, job.reason)
            self._notify_finished(job)
            return

        job.status = JobStatus.DONE
        job.progress = 1.0
        self._status = JobStatus.DONE
        logger.info("Job %s completed (%d chars)", job.id, len(job.output))
        try:
            self._history.append(HistoryItem.from_job(job))
        except OSError as exc:
            logger.error("Failed to record history for job %s: %s", job.id, exc)
        await self._apply_completion_policy(job)
        self._notify_finished(job)

    async def _apply_completion_policy(self, job: Job) -> None:
        double_copy = job.settings.double_copy
        if double_copy.auto_copy or double_copy.paste_mode == PASTE_MODE_CLIPBOARD:
            await self._copy_to_clipboard(job.output)

        if self.preview is None:
            return
        if double_copy.paste_mode == PASTE_MODE_POPUP:
            self.preview.show(job.request.source_text, job.output)
        else:
            self.preview.close()

    async def _copy_to_clipboard(self, text: str) -> None:
        if self._clipboard is None:
            logger.warning("No clipboard available; translation was not copied")
            return
        try:
            await asyncio.to_thread(self._clipboard.copy, text)
        except Exception as exc:
            logger.warning("Failed to write translation to clipboard: %s", exc)

    def _notify_updated(self, job: Job) -> None:
        if self.observer is not None:
            self.observer.job_updated(job)

    def _notify_finished(self, job: Job) -> None:
        for listener in list(self._finish_listeners):
            listener(job)
        if self.observer is not None:
            self.observer.job_finished(job)
