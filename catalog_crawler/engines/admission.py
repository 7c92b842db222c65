from __future__ import annotations

import logging
import threading
from typing import Any, Optional, Protocol

from ..version import CHECKPOINT_KEY

logger = logging.getLogger(__name__)


class CheckpointStore(Protocol):
    def get_value(self, key: str, default: Any = None) -> Any:
        ...

    def set_value(self, key: str, value: Any) -> None:
        ...


class AdmissionGate:
    """
    Owns the count of item-detail tasks admitted so far, across resumed runs.

    Callers check ``admitted()`` and, once the enqueue has been issued,
    ``record_admission()``. The counter only ever goes up.
    """

    def __init__(self, max_items: Optional[int] = None, initial: int = 0) -> None:
        self.max_items = max_items
        self._count = initial
        self._lock = threading.Lock()

    @classmethod
    def restore(cls, store: CheckpointStore, max_items: Optional[int] = None) -> "AdmissionGate":
        """Seed the counter from the checkpoint store; zero when nothing was saved."""
        saved = store.get_value(CHECKPOINT_KEY)
        initial = int(saved) if saved else 0
        if initial:
            logger.info("Resuming with %s items already enqueued", initial)
        return cls(max_items=max_items, initial=initial)

    @property
    def items_enqueued(self) -> int:
        return self._count

    def admitted(self) -> bool:
        return self.max_items is None or self._count < self.max_items

    def record_admission(self) -> int:
        with self._lock:
            self._count += 1
            return self._count

    def persist(self, store: CheckpointStore) -> None:
        with self._lock:
            value = self._count
        store.set_value(CHECKPOINT_KEY, value)
        logger.info("Checkpointed %s=%s", CHECKPOINT_KEY, value)
