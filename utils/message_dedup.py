# utils/message_dedup.py
from __future__ import annotations

import threading
from typing import Set


class BoundedSeenSet:
    """
    In-process set of recently seen inbound message ids.

    Approximate only: the set is cleared wholesale once it grows past ``capacity``, and it
    is neither shared between workers nor kept across restarts. A redelivered message can
    therefore be processed twice. Use it to drop the common burst of webhook retries, not
    as an exactly-once guarantee.
    """

    def __init__(self, capacity: int = 5000):
        self.capacity = max(1, int(capacity))
        self._ids: Set[str] = set()
        self._lock = threading.Lock()

    def seen_before(self, msg_id: str) -> bool:
        if not msg_id:
            return False
        with self._lock:
            if msg_id in self._ids:
                return True
            self._ids.add(msg_id)
            if len(self._ids) > self.capacity:
                self._ids.clear()
            return False

    def forget(self, msg_id: str) -> None:
        """Drop an id whose processing failed, so a redelivery is handled again."""
        if not msg_id:
            return
        with self._lock:
            self._ids.discard(msg_id)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, msg_id: object) -> bool:
        return msg_id in self._ids
