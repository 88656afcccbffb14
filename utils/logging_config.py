"""
⚡ Configuración de Logging para el planificador
"""

import json
import logging
import sys
from settings import settings


class PlannerEventFormatter(logging.Formatter):
    """Añade el payload de `planner_event` como JSON al final del mensaje"""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        event = getattr(record, 'planner_event', None)
        if event is None:
            return message
        return f"{message} {json.dumps(event, default=str, ensure_ascii=False)}"


def setup_production_logging(config=None):
    """Configurar logging del servicio: root a stdout + logger de eventos a INFO"""
    cfg = config or settings

    # Nivel de logging basado en DEBUG
    log_level = logging.DEBUG if cfg.DEBUG else logging.WARNING

    formatter = PlannerEventFormatter(
        '%(levelname)s:%(name)s:%(message)s' if not cfg.DEBUG
        else '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Silenciar logs verbosos de librerías en producción
    if not cfg.DEBUG:
        for noisy in ("asyncio", "sklearn", "uvicorn.access"):
            logging.getLogger(noisy).setLevel(logging.WARNING)

    # Los eventos estructurados se emiten a INFO aunque el resto esté en WARNING
    logging.getLogger("trip_planner.events").setLevel(logging.INFO)

    return logging.getLogger("trip_planner")
