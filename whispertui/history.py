"""Transcription history: one text file per transcription.

Files are named ``YYYY-MM-DD_HH-MM-SS-mmm-nnn.txt`` (local time, with a
counter for entries created in the same millisecond), so sorting by filename
is sorting by age.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .config import HistoryConfig
from .paths import ensure_dir, get_history_dir

logger = logging.getLogger(__name__)

FILENAME_PATTERN = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})_(\d{2})-(\d{2})-(\d{2})-(\d{3})-(\d{3})\.txt$"
)


@dataclass(frozen=True)
class HistoryEntry:
    id: str
    timestamp: datetime
    text: str
    path: Path


def parse_history_filename(filename: str) -> datetime | None:
    match = FILENAME_PATTERN.match(filename)
    if not match:
        return None
    year, month, day, hour, minute, second, millis, _counter = (int(g) for g in match.groups())
    try:
        return datetime(year, month, day, hour, minute, second, millis * 1000)
    except ValueError:
        return None


class HistoryStore:
    """Flat-file history in a single directory."""

    def __init__(self, history_dir: Path | None = None) -> None:
        self.history_dir = history_dir or get_history_dir()
        self._last_stamp = ""
        self._counter = 0

    def _new_path(self, now: datetime) -> Path:
        stamp = now.strftime("%Y-%m-%d_%H-%M-%S-") + f"{now.microsecond // 1000:03d}"
        if stamp == self._last_stamp:
            self._counter += 1
        else:
            self._last_stamp = stamp
            self._counter = 0

        path = self.history_dir / f"{stamp}-{self._counter:03d}.txt"
        while path.exists():
            self._counter += 1
            path = self.history_dir / f"{stamp}-{self._counter:03d}.txt"
        return path

    def _files(self) -> list[Path]:
        """History files sorted oldest first."""
        if not self.history_dir.exists():
            return []
        return sorted(
            (p for p in self.history_dir.iterdir() if parse_history_filename(p.name)),
            key=lambda p: p.name,
        )

    def _load(self, path: Path) -> HistoryEntry | None:
        timestamp = parse_history_filename(path.name)
        if timestamp is None:
            return None
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            logger.debug(f"Skipping unreadable history entry {path}: {e}")
            return None
        return HistoryEntry(id=path.stem, timestamp=timestamp, text=text, path=path)

    def _path_for(self, entry_id: str) -> Path | None:
        if not parse_history_filename(f"{entry_id}.txt"):
            return None
        return self.history_dir / f"{entry_id}.txt"

    def save(self, text: str) -> HistoryEntry:
        ensure_dir(self.history_dir)
        now = datetime.now()
        path = self._new_path(now)
        path.write_text(text, encoding="utf-8")
        logger.debug(f"Saved transcription to {path}")
        return HistoryEntry(id=path.stem, timestamp=parse_history_filename(path.name), text=text, path=path)

    def list(self, limit: int | None = None, offset: int = 0) -> list[HistoryEntry]:
        """Entries newest first."""
        files = list(reversed(self._files()))
        end = None if limit is None else offset + limit
        entries = []
        for path in files[offset:end]:
            entry = self._load(path)
            if entry is not None:
                entries.append(entry)
        return entries

    def count(self) -> int:
        return len(self._files())

    def get(self, entry_id: str) -> HistoryEntry | None:
        path = self._path_for(entry_id)
        if path is None or not path.exists():
            return None
        return self._load(path)

    def delete(self, entry_id: str) -> bool:
        path = self._path_for(entry_id)
        if path is None:
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to delete history entry {entry_id}: {e}")
            return False
        return True

    def _remove(self, paths: list[Path]) -> int:
        removed = 0
        for path in paths:
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                logger.warning(f"Failed to delete history entry {path.name}: {e}")
        return removed

    def clear(self) -> int:
        return self._remove(self._files())

    def prune(self, max_entries: int) -> int:
        """Delete the oldest entries beyond ``max_entries``."""
        files = self._files()
        excess = len(files) - max_entries
        if excess <= 0:
            return 0
        return self._remove(files[:excess])


class HistoryManager(HistoryStore):
    """History honouring the ``[history]`` config section."""

    def __init__(self, config: HistoryConfig | None = None, history_dir: Path | None = None) -> None:
        super().__init__(history_dir)
        self.config = config or HistoryConfig()

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def save(self, text: str) -> HistoryEntry | None:
        if not self.config.enabled:
            return None
        entry = super().save(text)
        if self.config.max_entries > 0:
            pruned = self.prune(self.config.max_entries)
            if pruned:
                logger.info(f"Pruned {pruned} old history entries")
        return entry
