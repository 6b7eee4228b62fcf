"""Translation engine access for the double-copy translator.

``GoogleTranslateClient`` is a small blocking client for the unofficial Google
Translate web API. ``TranslatorGateway`` adapts any such client to the
asynchronous, event-driven contract the job orchestrator expects: a call to
:meth:`TranslatorGateway.start` returns as soon as the work is dispatched and
results arrive later on the :class:`~event_channel.EventChannel` for the job id.
"""

from __future__ import annotations

import asyncio
import json
import logging
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

from event_channel import ChannelKey, EventChannel, Topic
from models import Job


logger = logging.getLogger(__name__)


class TranslationError(RuntimeError):
    """Raised when the translation service cannot complete a request."""


class GatewayError(TranslationError):
    """Raised when a translation could not even be dispatched to the engine."""


@dataclass
class TranslationResult:
    text: str
    detected_source: Optional[str]
    segments: List[str]


class GoogleTranslateClient:
    """Minimal client for the unofficial Google Translate web API."""

    endpoint = "https://translate.googleapis.com/translate_a/single"

    def __init__(self, timeout: float = 5.0) -> None:
        self.timeout = timeout

    def translate(self, text: str, src: Optional[str], dest: str) -> TranslationResult:
        if not text:
            raise TranslationError("Cannot translate empty text")

        params = {
            "client": "gtx",
            "dt": "t",
            "sl": (src or "auto"),
            "tl": dest,
            "q": text,
        }
        url = f"{self.endpoint}?{urllib.parse.urlencode(params)}"
        request = urllib.request.Request(url, headers={"User-Agent": "Mozilla/5.0"})

        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                payload = response.read()
        except (socket.timeout, TimeoutError) as exc:
            raise TranslationError("Request to Google Translate timed out") from exc
        except urllib.error.URLError as exc:  # pragma: no cover - network errors are runtime issues
            if isinstance(exc.reason, (socket.timeout, TimeoutError)):
                raise TranslationError("Request to Google Translate timed out") from exc
            raise TranslationError("Network error while contacting Google Translate") from exc

        try:
            data = json.loads(payload.decode("utf-8"))
        except json.JSONDecodeError as exc:  # pragma: no cover - unexpected response is rare
            raise TranslationError("Invalid response from Google Translate") from exc

        try:
            parts = data[0]
        except (IndexError, TypeError) as exc:  # pragma: no cover - guards against API changes
            raise TranslationError("Unexpected translation response structure") from exc

        segments = [part[0] for part in parts if part and part[0]]
        detected_source = None
        if len(data) > 2:
            detected_source = data[2]

        return TranslationResult(
            text="".join(segments),
            detected_source=detected_source,
            segments=segments,
        )


class TranslatorProtocol(Protocol):  # pragma: no cover - protocol is for type checking only
    def translate(self, text: str, src: Optional[str], dest: str) -> Any:
        """Translate text and return a result object."""


@dataclass(frozen=True)
class StartRequest:
    """Payload handed to the engine for one job."""

    id: str
    input: str
    source: Optional[str]
    target: str
    precision: Optional[str] = None
    style: Optional[str] = None
    glossary: Optional[str] = None
    timeout_ms: Optional[int] = None

    @classmethod
    def from_job(cls, job: Job) -> "StartRequest":
        request = job.request
        return cls(
            id=job.id,
            input=request.source_text,
            source=request.source_language,
            target=request.target_language,
            precision=request.precision,
            style=request.style_preset,
            glossary=request.glossary_path,
            timeout_ms=job.settings.timeout_ms,
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "input": self.input,
            "from": self.source,
            "to": self.target,
            "precision": self.precision,
            "style": self.style,
            "glossary": self.glossary,
        }


class TranslatorGateway:
    """Run a blocking translator in the background and publish its results.

    Every job ends with exactly one ``done`` event: ``{"ok": True}`` after the
    output was published, ``{"ok": False, "reason": ...}`` on engine errors,
    timeouts and aborts.
    """

    def __init__(
        self,
        channel: EventChannel,
        translator_factory: Callable[[], TranslatorProtocol] = GoogleTranslateClient,
        *,
        default_timeout: float = 60.0,
    ) -> None:
        self._channel = channel
        self._translator_factory = translator_factory
        self._translator: Optional[TranslatorProtocol] = None
        self._default_timeout = default_timeout
        self._tasks: Dict[str, "asyncio.Task[None]"] = {}

    @property
    def running_jobs(self) -> List[str]:
        return list(self._tasks)

    def _get_translator(self) -> TranslatorProtocol:
        if self._translator is None:
            try:
                self._translator = self._translator_factory()
            except Exception as exc:
                raise GatewayError(f"Translation engine is unavailable: {exc}") from exc
        return self._translator

    async def start(self, request: StartRequest) -> None:
        if not request.input:
            raise GatewayError("Cannot translate empty text")
        if request.id in self._tasks:
            raise GatewayError(f"Job {request.id} is already running")

        translator = self._get_translator()
        if request.precision or request.style or request.glossary:
            logger.debug(
                "Engine ignores precision=%s style=%s glossary=%s",
                request.precision,
                request.style,
                request.glossary,
            )

        task = asyncio.get_running_loop().create_task(self._run(request, translator))
        self._tasks[request.id] = task
        task.add_done_callback(lambda _task, job_id=request.id: self._forget(job_id, _task))
        logger.info("Dispatched job %s (%s -> %s)", request.id, request.source or "auto", request.target)

    async def abort(self, job_id: str) -> None:
        task = self._tasks.pop(job_id, None)
        if task is None:
            logger.debug("Abort requested for unknown job %s", job_id)
            return
        task.cancel()
        logger.info("Abort requested for job %s", job_id)

    async def close(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _forget(self, job_id: str, task: "asyncio.Task[None]") -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]

    @staticmethod
    def _translate(translator: TranslatorProtocol, request: StartRequest) -> List[str]:
        result = translator.translate(request.input, src=request.source, dest=request.target)
        segments = getattr(result, "segments", None)
        if segments:
            return [str(segment) for segment in segments]
        return [getattr(result, "text", str(result))]

    async def _run(self, request: StartRequest, translator: TranslatorProtocol) -> None:
        key = ChannelKey(request.id)
        timeout = request.timeout_ms / 1000 if request.timeout_ms else self._default_timeout
        try:
            try:
                segments = await asyncio.wait_for(
                    asyncio.to_thread(self._translate, translator, request), timeout
                )
            except asyncio.TimeoutError:
                logger.warning("Job %s timed out after %.1fs", request.id, timeout)
                await self._channel.emit(key, Topic.DONE, {"ok": False, "reason": "timeout"})
                return
            except TranslationError as exc:
                logger.warning("Job %s failed: %s", request.id, exc)
                await self._channel.emit(key, Topic.DONE, {"ok": False, "reason": str(exc)})
                return
            except Exception as exc:
                logger.exception("Unexpected engine error in job %s", request.id)
                await self._channel.emit(key, Topic.DONE, {"ok": False, "reason": f"engine error: {exc}"})
                return

            total = len(segments)
            for index, segment in enumerate(segments, start=1):
                await self._channel.emit(key, Topic.CHUNK, segment)
                await self._channel.emit(key, Topic.PROGRESS, index / total)
            await self._channel.emit(key, Topic.FINAL, "".join(segments))
            await self._channel.emit(key, Topic.DONE, {"ok": True})
        except asyncio.CancelledError:
            await self._channel.emit(key, Topic.DONE, {"ok": False, "reason": "aborted"})
            raise
