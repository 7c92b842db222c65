from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any

_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


class KeyValueStore:
    """Small named values stored as one JSON file per key."""

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def get_value(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        if not path.exists():
            return default
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def set_value(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(value, f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)

    def _path(self, key: str) -> Path:
        if not _KEY.match(key):
            raise ValueError(f"Invalid key {key!r}; use letters, digits, '.', '_' or '-'.")
        return self.directory / f"{key}.json"
