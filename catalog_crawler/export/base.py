from __future__ import annotations

from typing import Any, Dict, Protocol


class RecordSink(Protocol):
    """Durable, append-only destination for output records."""

    def open(self, path: str) -> None:
        ...

    def write(self, record: Dict[str, Any]) -> None:
        ...

    def close(self) -> None:
        ...
