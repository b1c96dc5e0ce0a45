"""File-backed queue of keyword ids whose last scrape failed."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Iterable, Union

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_FILE = "failed_queue.json"


def _valid_id(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


class RetryQueue:
    """Deduplicated list of positive keyword ids stored as one JSON array.

    Reads treat a missing file as an empty queue.  Writes go to a temp file
    in the same directory followed by an atomic rename, so readers never see
    a partial file.  I/O failures are logged, never raised; the queue is a
    best-effort hint for the hourly retry job.

    Concurrent writers are not coordinated; callers run one refresh at a
    time.
    """

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> list[int]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except (OSError, UnicodeDecodeError) as exc:
            logger.error("Failed to read retry queue %s: %s", self._path, exc)
            return []
        try:
            decoded = json.loads(raw) if raw.strip() else []
        except ValueError as exc:
            logger.error("Retry queue %s is not valid JSON: %s", self._path, exc)
            return []
        if not isinstance(decoded, list):
            return []
        return list(dict.fromkeys(v for v in decoded if _valid_id(v)))

    def _write(self, ids: list[int]) -> bool:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(dir=self._path.parent, prefix=".failed_queue_", suffix=".tmp")
        except OSError as exc:
            logger.error("Failed to update retry queue %s: %s", self._path, exc)
            return False
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(ids, fh)
            os.replace(temp_path, self._path)
        except OSError as exc:
            logger.error("Failed to update retry queue %s: %s", self._path, exc)
            try:
                os.unlink(temp_path)
            except FileNotFoundError:
                pass
            return False
        return True

    def add(self, keyword_id: Any) -> bool:
        """Queue ``keyword_id`` for retry; ``True`` if it was newly added."""
        if not _valid_id(keyword_id):
            return False
        current = self.read()
        if keyword_id in current:
            return False
        current.append(keyword_id)
        return self._write(current)

    def remove(self, keyword_id: Any) -> bool:
        return self.remove_many([keyword_id]) > 0

    def remove_many(self, keyword_ids: Iterable[Any]) -> int:
        """Drop every id in ``keyword_ids``; returns how many were removed.

        The file is left untouched when nothing changes (including when it
        does not exist).
        """
        targets = {v for v in keyword_ids if _valid_id(v)}
        if not targets or not self._path.exists():
            return 0
        current = self.read()
        remaining = [v for v in current if v not in targets]
        removed = len(current) - len(remaining)
        if removed and self._write(remaining):
            logger.debug("Removed %d keyword(s) from retry queue", removed)
            return removed
        return 0

    def clear(self) -> None:
        self._write([])

    def __len__(self) -> int:
        return len(self.read())

    def __contains__(self, keyword_id: object) -> bool:
        return keyword_id in self.read()
