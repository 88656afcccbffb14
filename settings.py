import os
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Cargar variables de entorno desde .env
load_dotenv()

class Settings(BaseSettings):
    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    # Performance / enriquecimiento externo
    MAX_CONCURRENT_REQUESTS: int = int(os.getenv("MAX_CONCURRENT_REQUESTS", "3"))
    DIRECTIONS_TIMEOUT_S: float = float(os.getenv("DIRECTIONS_TIMEOUT_S", "8"))
    DIRECTIONS_MIN_LEG_KM: float = 1.0   # tramos más cortos se quedan con la estimación

    # Feature flags
    STRICT_GEO_CHECKS: bool = os.getenv("STRICT_GEO_CHECKS", "true").lower() == "true"
    ENABLE_GAP_FILL: bool = os.getenv("ENABLE_GAP_FILL", "true").lower() == "true"
    ENABLE_ADVISOR: bool = os.getenv("ENABLE_ADVISOR", "false").lower() == "true"
    ENABLE_DEDUP: bool = os.getenv("ENABLE_DEDUP", "true").lower() == "true"

    # Deduplicación de candidatos
    DEDUP_NEAR_DISTANCE_KM: float = 0.35
    DEDUP_SAME_NAME_DISTANCE_KM: float = 2.5
    DEDUP_TOKEN_OVERLAP: float = 0.82
    DEDUP_MIN_NAME_LENGTH: int = 12
    DEDUP_NAME_SIMILARITY: float = 0.9

    # Perfil de densidad de ciudad
    DENSITY_DEFAULT_RADIUS_KM: float = 2.0
    DENSITY_MIN_RADIUS_KM: float = 0.5
    DENSITY_MAX_RADIUS_KM: float = 5.0
    DENSITY_SOFT_CAP_KM: float = 2.0     # ~15 min de caminata + transporte
    DENSITY_DENSE_MAX_KM: float = 0.8
    DENSITY_MEDIUM_MAX_KM: float = 2.0

    # Clustering geográfico
    SINGLE_CLUSTER_MAX_CANDIDATES: int = 4
    DAY_TRIP_MIN_DAYS: int = 3           # day-trips solo si num_days > este valor
    DAY_TRIP_DISTANCE_KM: float = 30.0
    RELAXED_RADIUS_FACTOR: float = 1.5
    BALANCE_MAX_PASSES: int = 10
    BALANCE_RADIUS_FACTOR: float = 1.2
    TWO_OPT_MIN_GAIN_KM: float = 0.01

    # Capacidad diaria
    DEFAULT_AVAILABLE_HOURS: float = 12.0
    ARRIVAL_DAY_END_HOUR: float = 22.0
    ARRIVAL_SETTLE_HOURS: float = 1.5    # traslado + instalación tras aterrizar
    DEPARTURE_BUFFER_HOURS: float = 3.0
    DEPARTURE_DAY_START_HOUR: float = 8.0
    HOURS_PER_ACTIVITY: float = 1.5

    # Horario del día
    DAY_START_HOUR: int = 9
    FIRST_DAY_START_HOUR: int = 10
    DAY_END_HOUR: int = 22
    EARLY_DEPARTURE_START_HOUR: int = 7
    MIN_DAY_SPAN_MIN: int = 120

    # Logística
    AIRPORT_CHECKIN_BUFFER_MIN: int = 120   # presentarse 2h antes del vuelo
    AIRPORT_TRANSFER_MIN: int = 60
    STATION_BUFFER_MIN: int = 30
    CHECKIN_DURATION_MIN: int = 30
    CHECKOUT_DURATION_MIN: int = 30
    CHECKOUT_BEFORE_FLIGHT_HOURS: float = 3.5
    DEFAULT_OUTBOUND_DEPARTURE_HOUR: int = 8
    LONG_RETURN_LEG_MIN: int = 240
    LONG_RETURN_DEPARTURE_HOUR: int = 14
    SHORT_RETURN_DEPARTURE_HOUR: int = 15

    # Comidas
    BREAKFAST_BEFORE_HOUR: int = 10
    BREAKFAST_DURATION_MIN: int = 45
    BREAKFAST_EARLIEST: str = "07:00"
    BREAKFAST_LATEST_END: str = "10:30"
    LUNCH_WINDOW_START: str = "11:30"
    LUNCH_WINDOW_END: str = "14:30"
    LUNCH_FALLBACK_END: str = "15:30"
    LUNCH_MIN_START: str = "12:00"
    LUNCH_DURATION_MIN: int = 60
    DINNER_WINDOW_START: str = "18:30"
    DINNER_WINDOW_END: str = "21:00"
    DINNER_MIN_START: str = "19:00"
    DINNER_LATEST_END: str = "22:00"
    DINNER_DURATION_MIN: int = 75
    RESTAURANT_COST_PER_PRICE_LEVEL: float = 15.0

    # Actividades
    CLOSING_SAFETY_MARGIN_MIN: int = 30
    MUST_SEE_MIN_DURATION_MIN: int = 30
    DAY_TRIP_MIN_ACTIVITY_MIN: int = 180
    DAY_TRIP_SPEED_KMH: float = 50.0
    RETURN_TRANSPORT_MIN_TRAVEL_MIN: int = 15
    PACING_FACTORS: dict = {"relaxed": 1.2, "moderate": 1.0, "intensive": 0.85}

    # Gap-fill
    GAP_FILL_MIN_GAP_MIN: int = 60
    GAP_FILL_RADIUS_KM: float = 5.0
    GAP_FILL_MAX_EXTRA: int = 3

    # Estimación de traslados (factor de desvío por calles)
    ROAD_FACTOR: float = 1.4
    TRAVEL_ROUNDING_MIN: int = 5

    # Quality gate
    HARD_LONG_LEG_KM: float = 4.0
    LONG_LEG_KM: float = 2.5
    IMPOSSIBLE_MIN_GAP_MIN: float = 15.0
    IMPOSSIBLE_SPEED_MIN_KM: float = 1.5
    IMPOSSIBLE_SPEED_KMH: float = 65.0
    REPORTED_DISTANCE_TOLERANCE_KM: float = 0.75
    RESTAURANT_MAX_DISTANCE_KM: float = 3.0
    MAX_GAP_MIN: int = 180
    HOTEL_MAX_CENTROID_KM: float = 5.0

    PENALTY_HARD_LONG_LEG: int = 8
    PENALTY_TOO_MANY_LONG_LEGS: int = 4
    PENALTY_IMPOSSIBLE_TRANSITION: int = 7
    PENALTY_UNVERIFIED_RESTAURANT: int = 5
    PENALTY_FAR_RESTAURANT: int = 3
    PENALTY_DUPLICATE_MEAL: int = 5
    PENALTY_EMPTY_DAY: int = 8
    PENALTY_ZERO_COORDS: int = 2
    PENALTY_LARGE_GAP: int = 2
    PENALTY_FAR_HOTEL: int = 5

    class Config:
        env_file = ".env"

settings = Settings()
