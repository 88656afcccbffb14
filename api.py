# api.py
from typing import List, Optional
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from datetime import datetime
import time as time_module

from models.schemas import Accommodation, TripDay, TripRequest, TripResponse, ValidationResult
from services.quality_gate import QualityGate
from services.trip_planner_service import TripPlannerService
from settings import settings
from utils.exceptions import PlannerError
from utils.logging_config import setup_production_logging

# Configurar logging optimizado
logger = setup_production_logging()

API_VERSION = "1.0.0"

app = FastAPI(
    title="Trip Planner Core API",
    description="Ensamblado de itinerarios multi-día: clustering geográfico, agenda diaria y control de calidad",
    version=API_VERSION
)

# Configurar CORS para permitir todas las solicitudes
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    max_age=600,  # Cache preflight requests por 10 minutos
)

planner_service = TripPlannerService()


class TripValidationRequest(BaseModel):
    days: List[TripDay]
    accommodation: Optional[Accommodation] = None


@app.get("/health")
async def health_check():
    """Health check básico"""
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "version": API_VERSION,
        "strict_geo_checks": settings.STRICT_GEO_CHECKS
    }


@app.post("/api/v1/trips/assemble", response_model=TripResponse, tags=["Trips"])
async def assemble_trip(request: TripRequest):
    """
    🗺️ Ensambla un viaje completo a partir de candidatos, comidas,
    alojamiento y tramos de transporte.
    """
    start = time_module.time()
    logger.info(f"🚀 Solicitud de viaje: {request.preferences.duration_days} días, {len(request.candidates)} candidatos")

    try:
        response = await planner_service.plan_trip_async(request)
    except PlannerError as e:
        logger.error(f"❌ Error planificando viaje: {e}")
        raise HTTPException(
            status_code=500,
            detail=f"Error planificando viaje: {str(e)}"
        )

    logger.info(
        f"✅ Viaje ensamblado en {time_module.time() - start:.2f}s "
        f"(score {response.validation.score})"
    )
    return response


@app.post("/api/v1/trips/validate", response_model=ValidationResult, tags=["Trips"])
async def validate_trip(request: TripValidationRequest):
    """✅ Ejecuta el quality gate sobre días ya ensamblados"""
    gate = QualityGate()
    return gate.validate_and_fix(request.days, request.accommodation)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api:app",
        host=getattr(settings, 'API_HOST', '0.0.0.0'),
        port=getattr(settings, 'API_PORT', 8000),
        reload=getattr(settings, 'DEBUG', True)
    )
