"""Tipos de dominio del motor de validación"""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


DEFAULT_VALIDATION_TIMEOUT_SECONDS = 30


class ErrorKind(str, Enum):
    """Categorías estables de error expuestas al validador"""
    # DecodeError
    MALFORMED_PAYLOAD = "MalformedPayload"
    UNREADABLE_IMAGE = "UnreadableImage"
    # PolicyViolation
    FEATURE_DISABLED = "FeatureDisabled"
    UNAUTHORIZED = "Unauthorized"
    REPLAY_DETECTED = "ReplayDetected"
    OUTSIDE_WINDOW = "OutsideWindow"
    LOCATION_NOT_ALLOWED = "LocationNotAllowed"
    ALREADY_USED = "AlreadyUsed"
    VALIDATION_LIMIT_REACHED = "ValidationLimitReached"
    # Otros
    NOT_FOUND = "NotFound"
    TIMEOUT = "Timeout"
    STORE_UNAVAILABLE = "StoreUnavailable"


class ValidationType(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"
    GENERAL = "general"


class LogStatus(str, Enum):
    VALIDATED = "validated"
    REJECTED = "rejected"
    FLAGGED = "flagged"


class ScanMethod(str, Enum):
    QR = "qr"
    MANUAL = "manual"
    IMAGE = "image"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalizar datetimes naive (SQLite) a UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TicketReference(BaseModel):
    """Referencia extraída del payload del QR. Inmutable."""
    model_config = ConfigDict(frozen=True)

    event_id: str
    ticket_id: str
    booking_id: str
    user_id: str
    timestamp: float  # Milisegundos desde epoch, tal como viene en el QR

    @property
    def issued_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc)

    @property
    def fingerprint(self) -> str:
        # repr() conserva el número exacto del payload (1.0 y 1 son el mismo timestamp)
        return f"{self.ticket_id}:{self.timestamp!r}"


class TicketSnapshot(BaseModel):
    """Estado persistido de un ticket en el momento de la lectura"""
    model_config = ConfigDict(frozen=True)

    ticket_id: str
    event_id: str
    booking_id: str
    user_id: str
    ticket_type_name: str
    price: Decimal
    status: str
    validation_count: int = 0
    used_at: Optional[datetime] = None
    validated_by: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "TicketSnapshot":
        return cls(
            ticket_id=row.id,
            event_id=row.event_id,
            booking_id=row.booking_id,
            user_id=row.user_id,
            ticket_type_name=row.ticket_type_name,
            price=Decimal(str(row.price)),
            status=row.status,
            validation_count=row.validation_count or 0,
            used_at=as_utc(row.used_at),
            validated_by=row.validated_by,
        )


class EventSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_id: str
    title: str
    date: datetime
    venue: Optional[str] = None
    location: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "EventSnapshot":
        return cls(
            event_id=row.id,
            title=row.title,
            date=as_utc(row.date),
            venue=row.venue,
            location=row.location,
        )


class ValidationPolicy(BaseModel):
    """
    Snapshot de la política de validación.

    Se construye desde el documento de settings (claves camelCase) y nunca se
    modifica: cada refresco crea un snapshot nuevo. Los valores por defecto son
    la política conservadora usada cuando nunca se pudo cargar el documento.
    """
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    qr_code_enabled: bool = True
    scanner_enabled: bool = True
    multiple_scans_allowed: bool = False
    scan_time_window_days: float = Field(1, ge=0)
    validation_start_days: float = Field(1, ge=0)
    allow_validation_anytime: bool = False
    require_validator_role: bool = True
    anti_replay_enabled: bool = True
    anti_replay_window_seconds: int = Field(10, ge=1)
    max_validations_per_ticket: int = Field(1, ge=1)
    validation_timeout_seconds: Optional[float] = Field(DEFAULT_VALIDATION_TIMEOUT_SECONDS, ge=0)
    geo_location_required: bool = False
    allowed_locations: Tuple[str, ...] = ()
    geofence_radius_meters: float = Field(250, gt=0)
    log_validations: bool = True

    @property
    def scanning_enabled(self) -> bool:
        return self.qr_code_enabled and self.scanner_enabled

    @property
    def timeout_seconds(self) -> float:
        return self.validation_timeout_seconds or DEFAULT_VALIDATION_TIMEOUT_SECONDS


class RequestContext(BaseModel):
    """Contexto de la petición que consume el evaluador"""
    model_config = ConfigDict(frozen=True)

    validator_id: str
    validator_role: Optional[str] = None
    now: datetime
    location: Optional[str] = None
    replay_seen: bool = False


class Verdict(BaseModel):
    """Decisión del evaluador: admitir o rechazar con un motivo concreto"""
    model_config = ConfigDict(frozen=True)

    admitted: bool
    reason: Optional[ErrorKind] = None
    message: str
    used_at: Optional[datetime] = None
    validated_by: Optional[str] = None
    event_date: Optional[datetime] = None

    @classmethod
    def admit(cls) -> "Verdict":
        return cls(admitted=True, message="Ticket validado correctamente")

    @classmethod
    def reject(cls, reason: ErrorKind, message: str, **details) -> "Verdict":
        return cls(admitted=False, reason=reason, message=message, **details)


class ValidationLogEntry(BaseModel):
    """Entrada del registro de auditoría"""
    model_config = ConfigDict(frozen=True)

    validator_id: str
    validator_name: Optional[str] = None
    ticket_id: Optional[str] = None
    booking_id: Optional[str] = None
    event_id: Optional[str] = None
    user_id: Optional[str] = None
    validation_type: ValidationType = ValidationType.ENTRY
    status: LogStatus
    notes: Optional[str] = None
    location: Optional[str] = None
    device_user_agent: Optional[str] = None
    device_ip: Optional[str] = None
    scan_method: ScanMethod = ScanMethod.QR
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RequestInfo(BaseModel):
    """Metadatos de la petición HTTP que viajan hasta el registro de auditoría"""
    model_config = ConfigDict(frozen=True)

    validation_type: ValidationType = ValidationType.ENTRY
    location: Optional[str] = None
    user_agent: Optional[str] = None
    ip: Optional[str] = None
    scan_method: ScanMethod = ScanMethod.QR
