"""Global hotkeys that raise the double-copy signal, based on ``keyboard``."""

from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

try:  # pragma: no cover - executed during module import
    import keyboard  # type: ignore
except ImportError:  # pragma: no cover - handled when the service starts
    keyboard = None  # type: ignore


logger = logging.getLogger(__name__)

DOUBLE_COPY_INTERVAL = 0.5  # Seconds allowed between two copy presses.

QUICK_BINDING = "quick"
COPY_BINDING = "copy"

_PRESETS = {
    "cmd-shift-c": ("shift", "c"),
    "cmd-alt-c": ("alt", "c"),
    "cmd-k": ("k",),
}

_MODIFIER_ALIASES = {
    "control": "ctrl",
    "ctl": "ctrl",
    "option": "alt",
    "opt": "alt",
}

_SUPER_ALIASES = {"super", "win", "windows", "meta", "cmd", "command", "cmdorctrl", "commandorcontrol"}


@dataclass(frozen=True)
class HotkeyBinding:
    """Represents a single hotkey registration."""

    name: str
    combo: str


@dataclass(frozen=True)
class HotkeyEvent:
    """Event generated when a registered hotkey is triggered."""

    name: str
    timestamp: float


def _primary_modifier(platform: str) -> str:
    return "command" if platform == "darwin" else "ctrl"


def normalize_shortcut(shortcut: str, platform: str = sys.platform) -> str:
    """Translate a settings shortcut into a ``keyboard`` hotkey string.

    Presets such as ``cmd-shift-c`` use the platform's primary modifier
    (Command on macOS, Ctrl elsewhere). Explicit combinations such as
    ``Super+Shift+C`` are lower-cased and their modifier names normalised.
    """

    cleaned = shortcut.strip().lower()
    if not cleaned:
        raise ValueError("Empty shortcut")

    preset = _PRESETS.get(cleaned)
    if preset is not None:
        return "+".join((_primary_modifier(platform),) + preset)

    if "+" not in cleaned:
        raise ValueError(f"Unknown shortcut: {shortcut!r}")

    tokens: List[str] = []
    for part in cleaned.split("+"):
        token = part.strip()
        if not token:
            raise ValueError(f"Invalid shortcut: {shortcut!r}")
        if token in ("cmdorctrl", "commandorcontrol"):
            token = _primary_modifier(platform)
        elif token in _SUPER_ALIASES:
            token = "command" if platform == "darwin" else "windows"
        token = _MODIFIER_ALIASES.get(token, token)
        tokens.append(token)
    return "+".join(tokens)


def build_bindings(shortcut: str, *, watch_copy: bool = True, platform: str = sys.platform) -> List[HotkeyBinding]:
    """Create the bindings for the quick-translate shortcut and Ctrl+C."""

    bindings: List[HotkeyBinding] = []
    try:
        bindings.append(HotkeyBinding(QUICK_BINDING, normalize_shortcut(shortcut, platform)))
    except ValueError as exc:
        logger.error("Ignoring quick translate shortcut: %s", exc)
    if watch_copy:
        bindings.append(HotkeyBinding(COPY_BINDING, f"{_primary_modifier(platform)}+c"))
    return bindings


@dataclass
class DoubleCopyDetector:
    """Utility that tracks consecutive copy events within a time window."""

    interval: float
    now: Callable[[], float]
    required_count: int = 2
    _last_time: Optional[float] = field(default=None, init=False)
    _count: int = field(default=0, init=False)

    def register(self, *, timestamp: Optional[float] = None) -> bool:
        """Register a copy event.

        Returns ``True`` if the event completes a "double copy" sequence.
        """

        current = self.now() if timestamp is None else timestamp
        if self._last_time is not None and current - self._last_time <= self.interval:
            self._count += 1
        else:
            self._count = 1
        self._last_time = current

        if self._count >= self.required_count:
            self._count = 0
            return True
        return False

    def reset(self) -> None:
        """Reset the detector state so future copies restart the sequence."""

        self._last_time = None
        self._count = 0


class KeyboardHotkeyService:
    """Register hotkeys with the ``keyboard`` package.

    ``dispatch`` is called from the keyboard hook thread; it must hand the
    event over to the thread that owns the application state.
    """

    def __init__(
        self,
        bindings: Sequence[HotkeyBinding],
        dispatch: Callable[[HotkeyEvent], None],
        *,
        keyboard_module: Any = None,
        time_provider: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._bindings = list(bindings)
        self._dispatch = dispatch
        self._keyboard = keyboard_module if keyboard_module is not None else keyboard
        self._time_provider = time_provider
        self._handles: Dict[str, Any] = {}

    @property
    def active(self) -> bool:
        return bool(self._handles)

    def describe_bindings(self) -> Sequence[str]:
        return [f"{binding.name}: {binding.combo}" for binding in self._bindings]

    def start(self) -> None:
        if self._keyboard is None:
            raise RuntimeError(
                "The 'keyboard' package is required for global hotkeys. Install it with 'pip install keyboard'."
            )
        if self._handles:
            return
        for binding in self._bindings:
            try:
                handle = self._keyboard.add_hotkey(
                    binding.combo,
                    lambda name=binding.name: self._on_hotkey(name),
                    suppress=False,
                )
            except (ValueError, ImportError, OSError) as exc:
                logger.error("Failed to register hotkey %s (%s): %s", binding.name, binding.combo, exc)
                continue
            self._handles[binding.name] = handle
            logger.info("Registered hotkey '%s' as %s", binding.name, binding.combo)

    def stop(self) -> None:
        handles, self._handles = self._handles, {}
        for name, handle in handles.items():
            try:
                self._keyboard.remove_hotkey(handle)
            except (KeyError, ValueError) as exc:
                logger.debug("Hotkey %s was already removed: %s", name, exc)

    def _on_hotkey(self, name: str) -> None:
        self._dispatch(HotkeyEvent(name, self._time_provider()))
