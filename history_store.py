"""Bounded, newest-first translation history backed by a JSON Lines file."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional, Protocol

from models import HISTORY_LIMIT, HistoryItem


logger = logging.getLogger(__name__)


class HistorySink(Protocol):  # pragma: no cover - protocol is for type checking only
    def append(self, item: HistoryItem) -> None:
        """Record one successful translation."""


class HistoryStore:
    """Keep the most recent translations in memory and on disk.

    Items are appended to the file as they arrive; the file is rewritten with
    only the retained items once it grows past twice the limit.
    """

    def __init__(self, path: Optional[Path] = None, *, limit: int = HISTORY_LIMIT) -> None:
        self._path = path
        self._limit = limit
        self._items: List[HistoryItem] = []
        self._lines_on_disk = 0

    @property
    def items(self) -> List[HistoryItem]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def load(self) -> List[HistoryItem]:
        if self._path is None:
            return self.items
        try:
            lines = self._path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return self.items
        except OSError as exc:
            logger.error("Failed to read history file %s: %s", self._path, exc)
            return self.items

        loaded: List[HistoryItem] = []
        for line in lines:
            if not line.strip():
                continue
            try:
                loaded.append(HistoryItem.from_dict(json.loads(line)))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                logger.debug("Skipping unreadable history line: %r", line[:80])
        self._lines_on_disk = len(lines)
        loaded.reverse()
        self._items = loaded[: self._limit]
        return self.items

    def append(self, item: HistoryItem) -> None:
        self._items.insert(0, item)
        del self._items[self._limit :]
        if self._path is None:
            return
        if self._lines_on_disk >= self._limit * 2:
            self._rewrite()
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(item.to_dict(), ensure_ascii=False) + "\n")
        self._lines_on_disk += 1

    def _rewrite(self) -> None:
        assert self._path is not None
        lines = [json.dumps(item.to_dict(), ensure_ascii=False) for item in reversed(self._items)]
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
        self._lines_on_disk = len(lines)
        logger.debug("Compacted history file to %d entries", len(lines))
