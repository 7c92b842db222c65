from __future__ import annotations

import csv
import json
import os
from typing import IO, Any, Dict, Optional
from pathlib import Path


class CSVExporter:
    """
    Appends per-item rows. Sizes are joined with ``|``; fields added by the
    output extension land in a JSON ``extra`` column.
    """

    _headers = [
        "url",
        "name",
        "itemId",
        "color",
        "sizes",
        "price",
        "extra",
    ]

    def __init__(self) -> None:
        self._f: Optional[IO[str]] = None
        self._writer: Any = None

    def open(self, path: str) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        fresh = not os.path.exists(path) or os.path.getsize(path) == 0
        self._f = open(path, "a", encoding="utf-8", newline="")
        self._writer = csv.writer(self._f)
        if fresh:
            self._writer.writerow(self._headers)

    def write(self, record: Dict[str, Any]) -> None:
        if self._f is None:
            raise RuntimeError("exporter is not open")
        base = set(self._headers) | {"#debug"}
        extra = {k: v for k, v in record.items() if k not in base}
        self._writer.writerow(
            [
                record.get("url") or "",
                record.get("name") or "",
                record.get("itemId") or "",
                record.get("color") or "",
                "|".join(str(s) for s in record.get("sizes") or []),
                record.get("price") or "",
                json.dumps(extra, ensure_ascii=False) if extra else "",
            ]
        )
        self._f.flush()
        os.fsync(self._f.fileno())

    def close(self) -> None:
        if self._f is not None:
            self._f.close()
            self._f = None
            self._writer = None
