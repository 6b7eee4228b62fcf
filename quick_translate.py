"""Hands-free translation triggered by the double-copy gesture."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Protocol

from models import DoubleCopySignal, InputState, Settings, StartResult
from orchestrator import ClipboardProtocol, PreviewSurface


logger = logging.getLogger(__name__)


class ManualTrigger(Protocol):  # pragma: no cover - protocol is for type checking only
    async def run_now(self) -> StartResult:
        """Translate the staged input immediately."""


class QuickTranslateBridge:
    """Resolve the text for a double-copy signal and start translating it.

    The text comes from the first non-empty source among the signal payload,
    the system clipboard and the currently staged input. Missing text or a
    disabled feature is a normal outcome and is not reported.
    """

    def __init__(
        self,
        trigger: ManualTrigger,
        input_state: InputState,
        settings_provider: Callable[[], Settings],
        clipboard: Optional[ClipboardProtocol],
        *,
        preview: Optional[PreviewSurface] = None,
    ) -> None:
        self._trigger = trigger
        self._input = input_state
        self._settings_provider = settings_provider
        self._clipboard = clipboard
        self.preview = preview

    async def handle_signal(self, signal: DoubleCopySignal) -> bool:
        if not self._settings_provider().double_copy.enabled:
            logger.debug("Double-copy signal ignored; quick translate is disabled")
            return False

        text = await self.resolve_text(signal)
        if not text:
            logger.debug("Double-copy signal ignored; no text to translate")
            return False

        self._input.set_text(text)
        if self.preview is not None:
            self.preview.close()
        result = await self._trigger.run_now()
        logger.info("Quick translate of %d chars: %s", len(text), result.value)
        return result is StartResult.STARTED

    async def resolve_text(self, signal: DoubleCopySignal) -> str:
        text = (signal.text or "").strip()
        if text:
            return text
        text = await self._read_clipboard()
        if text:
            return text
        return self._input.text.strip()

    async def _read_clipboard(self) -> str:
        if self._clipboard is None:
            return ""
        try:
            value = await asyncio.to_thread(self._clipboard.paste)
        except Exception as exc:
            logger.warning("Failed to read clipboard: %s", exc)
            return ""
        return value.strip() if isinstance(value, str) else ""
