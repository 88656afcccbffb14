from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import List, Optional, Union, Literal, Dict, Any
from datetime import date, datetime
from enum import Enum

DataReliability = Literal["verified", "estimated", "generated"]
MealType = Literal["breakfast", "lunch", "dinner"]

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class ItemType(str, Enum):
    ACTIVITY = "activity"
    RESTAURANT = "restaurant"
    FLIGHT = "flight"
    TRANSPORT = "transport"
    TRANSFER = "transfer"
    CHECKIN = "checkin"
    CHECKOUT = "checkout"


# Tipos que nunca cuentan como tramo de ruta turístico
LOGISTICS_TYPES = {
    ItemType.FLIGHT.value,
    ItemType.TRANSPORT.value,
    ItemType.TRANSFER.value,
    ItemType.CHECKIN.value,
    ItemType.CHECKOUT.value,
}

# Tipos que marcan un día de tránsito
TRANSIT_TYPES = {ItemType.FLIGHT.value, ItemType.TRANSPORT.value}


class TransportModeType(str, Enum):
    PLANE = "plane"
    TRAIN = "train"
    BUS = "bus"
    CAR = "car"
    FERRY = "ferry"


class Coordinates(BaseModel):
    """Coordenadas geográficas"""
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


def _is_valid_point(lat: Optional[float], lng: Optional[float]) -> bool:
    if lat is None or lng is None:
        return False
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        return False
    return not (lat == 0 and lng == 0)


def _check_hhmm(v: str) -> str:
    parts = v.split(':')
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValueError('El horario debe tener formato HH:MM')
    hours, minutes = int(parts[0]), int(parts[1])
    if not (0 <= hours <= 24 and 0 <= minutes < 60):
        raise ValueError('Horario fuera de rango')
    return v


class OpeningHours(BaseModel):
    """Par apertura/cierre en formato HH:MM"""
    open: str = "00:00"
    close: str = "23:59"

    @field_validator('open', 'close')
    @classmethod
    def validate_hhmm(cls, v):
        return _check_hhmm(v)


class Candidate(BaseModel):
    """Actividad candidata. Inmutable una vez obtenida."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    category: str = "attraction"
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)
    duration_min: int = Field(default=60, ge=5, le=720)
    estimated_cost: float = Field(default=0.0, ge=0)
    rating: Optional[float] = Field(default=None, ge=0, le=5)
    review_count: int = Field(default=0, ge=0)
    must_see: bool = False
    opening_hours: Optional[Union[OpeningHours, Dict[str, Optional[OpeningHours]]]] = None
    data_reliability: DataReliability = "verified"

    @field_validator('name')
    @classmethod
    def name_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('El nombre no puede estar vacío')
        return v.strip()

    @field_validator('opening_hours')
    @classmethod
    def normalize_weekdays(cls, v):
        if isinstance(v, dict):
            normalized = {}
            for key, hours in v.items():
                day = key.strip().lower()
                if day not in WEEKDAYS:
                    raise ValueError(f'Día de la semana inválido: {key}')
                normalized[day] = hours
            return normalized
        return v

    @property
    def has_valid_coords(self) -> bool:
        return _is_valid_point(self.lat, self.lng)


class Restaurant(BaseModel):
    id: str
    name: str = Field(..., min_length=1)
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)
    price_level: Optional[int] = Field(default=None, ge=0, le=4)
    cuisine_tags: List[str] = Field(default_factory=list)
    rating: Optional[float] = Field(default=None, ge=0, le=5)
    estimated_cost: Optional[float] = Field(default=None, ge=0)
    verified: bool = True

    @property
    def has_valid_coords(self) -> bool:
        return _is_valid_point(self.lat, self.lng)


class MealCandidate(BaseModel):
    day_number: int = Field(..., ge=1)
    meal_type: MealType
    restaurant: Optional[Restaurant] = None  # None = comida por cuenta propia


class Accommodation(BaseModel):
    name: str = "Alojamiento"
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    check_in_time: str = "15:00"
    check_out_time: str = "11:00"
    nightly_price: float = Field(default=0.0, ge=0)
    breakfast_included: bool = False

    @field_validator('check_in_time', 'check_out_time')
    @classmethod
    def validate_hhmm(cls, v):
        return _check_hhmm(v)


class TransportLeg(BaseModel):
    mode: TransportModeType = TransportModeType.PLANE
    direction: Literal["outbound", "return"] = "outbound"
    origin: Optional[Coordinates] = None
    destination: Optional[Coordinates] = None
    departure_time: Optional[datetime] = None
    arrival_time: Optional[datetime] = None
    duration_min: Optional[int] = Field(default=None, ge=0)
    price: float = Field(default=0.0, ge=0)
    label: Optional[str] = None

    @model_validator(mode='after')
    def validate_timetable(self):
        if self.departure_time and self.arrival_time and self.arrival_time < self.departure_time:
            raise ValueError('La llegada no puede ser anterior a la salida')
        return self

    @property
    def is_flight(self) -> bool:
        return self.mode == TransportModeType.PLANE


class Preferences(BaseModel):
    duration_days: int = Field(..., ge=1, le=30)
    start_date: date
    origin_coords: Optional[Coordinates] = None
    dest_coords: Coordinates
    group_size: int = Field(default=1, ge=1, le=20)
    meal_dietary: List[str] = Field(default_factory=list)
    pacing: Literal["relaxed", "moderate", "intensive"] = "moderate"


class TripItem(BaseModel):
    id: str
    day_number: int
    start_time: str
    end_time: str
    type: str
    title: str
    lat: float = 0.0
    lng: float = 0.0
    estimated_cost: float = 0.0
    order_index: int = 0
    data_reliability: DataReliability = "generated"
    duration_min: Optional[int] = None
    distance_from_previous_km: Optional[float] = None
    time_from_previous_min: Optional[float] = None
    meal_type: Optional[MealType] = None
    hotel_provided: bool = False
    candidate_id: Optional[str] = None
    restaurant_id: Optional[str] = None
    description: Optional[str] = None


class GeoDiagnostics(BaseModel):
    max_leg_km: float = 0.0
    p95_leg_km: float = 0.0
    total_travel_min: float = 0.0


class TripDay(BaseModel):
    day_number: int
    date: date
    items: List[TripItem] = Field(default_factory=list)
    geo_diagnostics: Optional[GeoDiagnostics] = None
    theme: Optional[str] = None
    narrative: Optional[str] = None
    is_day_trip: bool = False


class ValidationResult(BaseModel):
    score: int = Field(..., ge=0, le=100)
    warnings: List[str] = Field(default_factory=list)
    auto_fixes: List[str] = Field(default_factory=list)


class TripRequest(BaseModel):
    candidates: List[Candidate] = Field(default_factory=list)
    meals: List[MealCandidate] = Field(default_factory=list)
    accommodation: Optional[Accommodation] = None
    transport_legs: List[TransportLeg] = Field(default_factory=list)
    preferences: Preferences
    extra_pool: List[Candidate] = Field(default_factory=list)

    @model_validator(mode='after')
    def validate_unique_ids(self):
        seen = set()
        for candidate in self.candidates:
            if candidate.id in seen:
                raise ValueError(f'Candidato duplicado: {candidate.id}')
            seen.add(candidate.id)
        return self

    @property
    def outbound_leg(self) -> Optional[TransportLeg]:
        return next((leg for leg in self.transport_legs if leg.direction == "outbound"), None)

    @property
    def return_leg(self) -> Optional[TransportLeg]:
        return next((leg for leg in self.transport_legs if leg.direction == "return"), None)


class TripResponse(BaseModel):
    days: List[TripDay]
    validation: ValidationResult
    cost_breakdown: Dict[str, float] = Field(default_factory=dict)
    dropped_candidate_ids: List[str] = Field(default_factory=list)
    duplicate_candidate_ids: List[str] = Field(default_factory=list)
    events: List[Dict[str, Any]] = Field(default_factory=list)
