from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Hashable, List

logger = logging.getLogger(__name__)


class Signal:
    """
    Minimal Qt-style signal: `connect` a slot, `emit` to call every slot in order.
    A slot that raises is logged and skipped; the remaining slots still run.
    """

    def __init__(self, name: str = "signal") -> None:
        self.name = name
        self._slots: List[Callable[..., Any]] = []

    def connect(self, slot: Callable[..., Any]) -> Callable[..., Any]:
        if slot not in self._slots:
            self._slots.append(slot)
        return slot

    def disconnect(self, slot: Callable[..., Any]) -> None:
        try:
            self._slots.remove(slot)
        except ValueError:
            pass

    def emit(self, *args: Any) -> None:
        for slot in list(self._slots):
            try:
                slot(*args)
            except Exception:
                logger.exception("Slot %r failed on %s", slot, self.name)

    def __len__(self) -> int:
        return len(self._slots)


class ActionThrottle:
    """Rejects a repeated action (per key) fired within `min_interval` seconds of the last accepted one."""

    def __init__(self, min_interval: float = 0.9, clock: Callable[[], float] = time.monotonic) -> None:
        self.min_interval = max(0.0, float(min_interval))
        self._clock = clock
        self._last: Dict[Hashable, float] = {}

    def allow(self, key: Hashable = "default") -> bool:
        now = self._clock()
        last = self._last.get(key)
        if last is not None and now - last < self.min_interval:
            return False
        self._last[key] = now
        return True

    def reset(self, key: Hashable = "default") -> None:
        self._last.pop(key, None)
