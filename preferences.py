"""Settings persistence for the double-copy translator."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any, Dict, Optional

from models import PASTE_MODE_CLIPBOARD, PASTE_MODE_POPUP, DoubleCopySettings, Settings


logger = logging.getLogger(__name__)

APP_DIR = Path.home() / ".doublecopy_translator"
SETTINGS_FILE_NAME = "settings.json"
HISTORY_FILE_NAME = "history.jsonl"

PRECISIONS = ("4bit", "8bit", "bf16")
STYLE_PRESETS = ("business", "tech", "casual")


def _load_json(path: Path) -> dict:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def _merge_double_copy(source: Any, default: DoubleCopySettings) -> DoubleCopySettings:
    if not isinstance(source, dict):
        return default
    result = default
    enabled = source.get("enabled")
    if isinstance(enabled, bool):
        result = replace(result, enabled=enabled)
    paste_mode = source.get("paste_mode")
    if paste_mode in (PASTE_MODE_POPUP, PASTE_MODE_CLIPBOARD):
        result = replace(result, paste_mode=paste_mode)
    auto_copy = source.get("auto_copy")
    if isinstance(auto_copy, bool):
        result = replace(result, auto_copy=auto_copy)
    shortcut = source.get("shortcut")
    if isinstance(shortcut, str) and shortcut.strip():
        result = replace(result, shortcut=shortcut.strip())
    return result


def settings_from_dict(data: Dict[str, Any]) -> Settings:
    """Merge a raw settings mapping over the defaults, ignoring bad values."""

    result = Settings()
    precision = data.get("precision")
    if precision is None and isinstance(data.get("plamo"), dict):
        precision = data["plamo"].get("precision")
    if precision in PRECISIONS:
        result = replace(result, precision=precision)
    style = data.get("style_preset")
    if style in STYLE_PRESETS:
        result = replace(result, style_preset=style)
    glossary = data.get("glossary_path")
    if isinstance(glossary, str) and glossary.strip():
        result = replace(result, glossary_path=glossary.strip())
    timeout_ms = data.get("timeout_ms")
    if isinstance(timeout_ms, int) and not isinstance(timeout_ms, bool) and timeout_ms > 0:
        result = replace(result, timeout_ms=timeout_ms)
    return replace(result, double_copy=_merge_double_copy(data.get("double_copy"), result.double_copy))


class SettingsStore:
    """Load, hold and save the user's settings."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = path
        self._settings = Settings()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def snapshot(self) -> Settings:
        return self._settings

    def load(self) -> Settings:
        if self._path is not None:
            self._settings = settings_from_dict(_load_json(self._path))
        return self._settings

    def update(self, settings: Settings, *, persist: bool = True) -> None:
        self._settings = settings
        if persist:
            self.save()

    def save(self) -> None:
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(
                json.dumps(asdict(self._settings), indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
        except OSError as exc:
            logger.error("Failed to save settings to %s: %s", self._path, exc)
