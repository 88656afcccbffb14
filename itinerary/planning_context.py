"""
🧭 Contexto de planificación compartido entre días

El registro de candidatos usados es el único recurso mutable que cruza días.
Se reclama con check-and-set bajo lock para que dos días (aunque se calculen
en paralelo) nunca programen el mismo candidato.
"""
import threading
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from settings import settings
from utils.planner_events import EventRecorder, PlannerEventSink


class UsedCandidateRegistry:
    def __init__(self):
        self._used = set()
        self._lock = threading.Lock()

    def claim(self, candidate_id: str) -> bool:
        """Reserva el candidato; False si ya estaba reservado."""
        with self._lock:
            if candidate_id in self._used:
                return False
            self._used.add(candidate_id)
            return True

    def release(self, candidate_id: str) -> None:
        with self._lock:
            self._used.discard(candidate_id)

    def is_used(self, candidate_id: str) -> bool:
        with self._lock:
            return candidate_id in self._used

    def snapshot(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._used)

    def __len__(self) -> int:
        with self._lock:
            return len(self._used)


@dataclass
class PlanningContext:
    registry: UsedCandidateRegistry = field(default_factory=UsedCandidateRegistry)
    events: PlannerEventSink = field(default_factory=EventRecorder)
    config: Optional[object] = None

    @property
    def cfg(self):
        return self.config or settings
