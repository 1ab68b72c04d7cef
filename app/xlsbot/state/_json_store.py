"""Small JSON-file persistence helper shared by file-backed stores."""

from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class JsonStore:
    """Loads and saves one JSON document, falling back to *default*."""

    def __init__(self, path: Path, default: Any = None) -> None:
        self._path = path
        self._default = {} if default is None else default

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Any:
        if not self._path.exists():
            return copy.deepcopy(self._default)
        try:
            return json.loads(self._path.read_text())
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.warning("Ignoring unreadable JSON store %s: %s", self._path, exc)
            return copy.deepcopy(self._default)

    def save(self, data: Any) -> None:
        """Write *data* atomically (temp file + rename)."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(f".{self._path.name}.tmp")
        tmp.write_text(json.dumps(data, indent=2, default=str) + "\n")
        os.replace(tmp, self._path)
