from __future__ import annotations

import json
import os
from typing import IO, Any, Dict, Optional
from pathlib import Path


class JSONLinesExporter:
    """Appends one JSON object per line; every record is flushed to disk before returning."""

    def __init__(self) -> None:
        self._f: Optional[IO[str]] = None

    def open(self, path: str) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._f = open(path, "a", encoding="utf-8")

    def write(self, record: Dict[str, Any]) -> None:
        if self._f is None:
            raise RuntimeError("exporter is not open")
        self._f.write(json.dumps(record, ensure_ascii=False) + "\n")
        self._f.flush()
        os.fsync(self._f.fileno())

    def close(self) -> None:
        if self._f is not None:
            self._f.close()
            self._f = None
