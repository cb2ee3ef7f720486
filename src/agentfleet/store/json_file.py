"""A single JSON document on disk."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class JsonFile:
    """Load tolerates a missing or corrupt file; save never leaves it half written.

    Saves go to a temporary sibling that is synced and then renamed over the
    target, so readers see either the old document or the new one.
    """

    def __init__(self, path: str | Path, *, pretty: bool = True) -> None:
        self.path = Path(path)
        self._indent = 2 if pretty else None

    def load(self, default: Any = None) -> Any:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return default
        except OSError as exc:
            logger.warning("Cannot read %s: %s", self.path, exc)
            return default
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Ignoring corrupt JSON in %s", self.path)
            return default

    def save(self, data: Any) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=self._indent)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def delete(self) -> None:
        self.path.unlink(missing_ok=True)
