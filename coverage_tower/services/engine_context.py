from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable

from coverage_tower.color_assigner import ColorAssigner
from coverage_tower.services.legend_service import LegendVisibility


@dataclass
class EngineContext:
    """State that survives rebuilds for one chart instance."""

    session_id: str = "default"
    colors: ColorAssigner = field(default_factory=ColorAssigner)
    legend: LegendVisibility = field(default_factory=LegendVisibility)


class EngineContextRegistry:
    def __init__(
        self,
        *,
        factory: Callable[[str], EngineContext] | None = None,
    ) -> None:
        self._factory = factory or (lambda session_id: EngineContext(session_id=session_id))
        self._contexts: dict[str, EngineContext] = {}
        self._lock = threading.RLock()

    def get(self, session_id: str) -> EngineContext:
        key = str(session_id or "").strip()
        if not key:
            raise ValueError("session_id is required")
        with self._lock:
            context = self._contexts.get(key)
            if context is None:
                context = self._factory(key)
                self._contexts[key] = context
            return context

    def drop(self, session_id: str) -> bool:
        with self._lock:
            return self._contexts.pop(str(session_id or "").strip(), None) is not None

    def session_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._contexts)

    def __len__(self) -> int:
        with self._lock:
            return len(self._contexts)
