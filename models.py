"""Shared request and state types for the double-copy translator."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from event_channel import ChannelKey, Subscription


HISTORY_LIMIT = 200

PASTE_MODE_POPUP = "popup"
PASTE_MODE_CLIPBOARD = "clipboard"


class JobStatus(enum.Enum):
    IDLE = "idle"
    PENDING = "pending"
    STREAMING = "streaming"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StartResult(enum.Enum):
    STARTED = "started"
    REJECTED = "rejected"
    INVOCATION_FAILED = "invocation_failed"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class DoubleCopySettings:
    enabled: bool = True
    paste_mode: str = PASTE_MODE_POPUP
    auto_copy: bool = False
    shortcut: str = "cmd-shift-c"


@dataclass(frozen=True)
class Settings:
    precision: Optional[str] = "4bit"
    style_preset: Optional[str] = "business"
    glossary_path: Optional[str] = None
    timeout_ms: int = 60_000
    double_copy: DoubleCopySettings = field(default_factory=DoubleCopySettings)


@dataclass(frozen=True)
class TranslationRequest:
    """Snapshot of everything needed to translate one text."""

    source_text: str
    source_language: Optional[str]
    target_language: str
    precision: Optional[str] = None
    style_preset: Optional[str] = None
    glossary_path: Optional[str] = None


@dataclass
class Job:
    """One translation attempt owned by the orchestrator.

    The subscriptions armed for the job live on the job itself and are
    released exactly once by :meth:`release`.
    """

    id: str
    request: TranslationRequest
    settings: Settings
    key: "ChannelKey"
    status: JobStatus = JobStatus.PENDING
    output: str = ""
    progress: Optional[float] = None
    reason: Optional[str] = None
    subscriptions: List["Subscription"] = field(default_factory=list)

    @property
    def active(self) -> bool:
        return self.status in (JobStatus.PENDING, JobStatus.STREAMING)

    def release(self) -> None:
        subscriptions, self.subscriptions = self.subscriptions, []
        for subscription in subscriptions:
            subscription.release()


@dataclass(frozen=True)
class HistoryItem:
    id: str
    input: str
    output: str
    source_language: Optional[str]
    target_language: str
    created_at: int

    @classmethod
    def from_job(cls, job: Job, *, now: Callable[[], float] = time.time) -> "HistoryItem":
        return cls(
            id=job.id,
            input=job.request.source_text,
            output=job.output,
            source_language=job.request.source_language,
            target_language=job.request.target_language,
            created_at=int(now() * 1000),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id, "input": self.input, "output": self.output}
        if self.source_language is not None:
            data["from"] = self.source_language
        data["to"] = self.target_language
        data["created_at"] = self.created_at
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryItem":
        source = data.get("from")
        return cls(
            id=str(data["id"]),
            input=str(data["input"]),
            output=str(data["output"]),
            source_language=source if isinstance(source, str) else None,
            target_language=str(data["to"]),
            created_at=int(data.get("created_at", 0)),
        )


@dataclass(frozen=True)
class DoubleCopySignal:
    text: Optional[str] = None


InputListener = Callable[["InputState"], None]


class InputState:
    """Text and languages currently staged for translation."""

    def __init__(
        self,
        text: str = "",
        source_language: Optional[str] = None,
        target_language: str = "ja",
    ) -> None:
        self._text = text
        self._source_language = source_language
        self._target_language = target_language
        self._listeners: List[InputListener] = []

    @property
    def text(self) -> str:
        return self._text

    @property
    def source_language(self) -> Optional[str]:
        return self._source_language

    @property
    def target_language(self) -> str:
        return self._target_language

    def add_listener(self, listener: InputListener) -> None:
        self._listeners.append(listener)

    def set_text(self, text: str) -> None:
        if text == self._text:
            return
        self._text = text
        self._notify()

    def set_source_language(self, language: Optional[str]) -> None:
        if language in ("", "auto"):
            language = None
        if language == self._source_language:
            return
        self._source_language = language
        self._notify()

    def set_target_language(self, language: str) -> None:
        if language == self._target_language:
            return
        self._target_language = language
        self._notify()

    def swap_languages(self) -> None:
        """Swap source and target; an auto-detect source cannot be swapped."""

        if self._source_language is None:
            return
        self._source_language, self._target_language = self._target_language, self._source_language
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)
