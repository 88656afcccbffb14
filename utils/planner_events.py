"""
📡 Eventos estructurados del planificador

El núcleo no escribe métricas por su cuenta: emite eventos (cluster formado,
candidato descartado, conflicto resuelto...) a un sink recibido explícitamente.
Quien integra el núcleo decide si los guarda, los loguea o los envía a analytics.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List

# Nombres de eventos emitidos por el núcleo
CLUSTER_FORMED = "cluster_formed"
CLUSTERING_PHASE = "clustering_phase"
CANDIDATE_MOVED = "candidate_moved"
CANDIDATE_DROPPED = "candidate_dropped"
CANDIDATE_DEDUPED = "candidate_deduped"
CONFLICT_RESOLVED = "conflict_resolved"
ITEM_SKIPPED = "item_skipped"
SCHEDULE_DEFECT = "schedule_defect"
ADVISOR_FALLBACK = "advisor_fallback"
DIRECTIONS_FALLBACK = "directions_fallback"
AUTO_FIX_APPLIED = "auto_fix_applied"


@dataclass
class PlannerEvent:
    name: str
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {'event': self.name, 'timestamp': self.timestamp, **self.payload}


class PlannerEventSink:
    """Interfaz mínima: recibir un evento."""

    def emit(self, name: str, **payload: Any) -> None:
        raise NotImplementedError


class NullEventSink(PlannerEventSink):
    def emit(self, name: str, **payload: Any) -> None:
        return None


class EventRecorder(PlannerEventSink):
    """Guarda los eventos en memoria (thread-safe)"""

    def __init__(self):
        self._events: List[PlannerEvent] = []
        self._lock = threading.Lock()

    def emit(self, name: str, **payload: Any) -> None:
        with self._lock:
            self._events.append(PlannerEvent(name=name, payload=payload))

    @property
    def events(self) -> List[PlannerEvent]:
        with self._lock:
            return list(self._events)

    def named(self, name: str) -> List[PlannerEvent]:
        return [event for event in self.events if event.name == name]

    def as_dicts(self) -> List[Dict[str, Any]]:
        return [event.to_dict() for event in self.events]


class LoggingEventSink(PlannerEventSink):
    """Reenvía cada evento al logger de analytics con `extra=`"""

    def __init__(self, logger_name: str = 'trip_planner.events'):
        self.logger = logging.getLogger(logger_name)

    def emit(self, name: str, **payload: Any) -> None:
        event = PlannerEvent(name=name, payload=payload)
        # 'event'/'timestamp' no colisionan con atributos de LogRecord
        self.logger.info("PLANNER_EVENT", extra={'planner_event': event.to_dict()})


class FanOutEventSink(PlannerEventSink):
    """Distribuye un evento a varios sinks"""

    def __init__(self, *sinks: PlannerEventSink):
        self.sinks = list(sinks)

    def emit(self, name: str, **payload: Any) -> None:
        for sink in self.sinks:
            sink.emit(name, **payload)
