"""
Evaluador de admisión

Función pura: combina referencia, ticket, evento, política y contexto en un
veredicto. No accede a base de datos ni modifica estado. Los chequeos se
aplican en orden fijo y el primero que falla determina el motivo del rechazo.
"""
import math
from datetime import timedelta
from typing import FrozenSet, Iterable, Optional, Tuple

from shared.core.config import settings
from shared.database.models import TICKET_STATUS_VALIDATED
from services.ticket_validation.models.domain import (
    ErrorKind,
    EventSnapshot,
    RequestContext,
    TicketReference,
    TicketSnapshot,
    ValidationPolicy,
    Verdict,
)

EARTH_RADIUS_METERS = 6_371_000


def check_feature_enabled(policy: ValidationPolicy) -> Optional[Verdict]:
    """Paso 1: validación por QR y scanner habilitados"""
    if not policy.scanning_enabled:
        return Verdict.reject(
            ErrorKind.FEATURE_DISABLED,
            "La validación de tickets por QR está deshabilitada",
        )
    return None


def is_claimable(status: str, validation_count: int, policy: ValidationPolicy) -> bool:
    """
    Condición de admisibilidad del estado del ticket.

    Es la misma condición que la escritura atómica vuelve a verificar.
    """
    if validation_count >= policy.max_validations_per_ticket:
        return False
    if status == TICKET_STATUS_VALIDATED:
        return policy.multiple_scans_allowed
    return True


def _parse_coordinates(value: str) -> Optional[Tuple[float, float]]:
    parts = value.split(",")
    if len(parts) != 2:
        return None
    try:
        lat, lng = float(parts[0]), float(parts[1])
    except ValueError:
        return None
    if not (math.isfinite(lat) and math.isfinite(lng)) or abs(lat) > 90 or abs(lng) > 180:
        return None
    return lat, lng


def _haversine_meters(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    lat1, lng1 = map(math.radians, a)
    lat2, lng2 = map(math.radians, b)
    dlat = lat2 - lat1
    dlng = lng2 - lng1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(h))


def location_allowed(location: Optional[str], allowed: Iterable[str], radius_meters: float) -> bool:
    """
    Comparar la ubicación informada con la lista permitida.

    Coincide si el texto es igual (sin distinguir mayúsculas) o, cuando ambos
    son coordenadas "lat,lng", si la distancia está dentro del radio.
    """
    if not location or not location.strip():
        return False

    normalized = location.strip().lower()
    point = _parse_coordinates(normalized)

    for candidate in allowed:
        candidate = candidate.strip().lower()
        if not candidate:
            continue
        if candidate == normalized:
            return True
        if point is not None:
            center = _parse_coordinates(candidate)
            if center is not None and _haversine_meters(point, center) <= radius_meters:
                return True
    return False


def evaluate(
    ref: TicketReference,
    ticket: Optional[TicketSnapshot],
    event: Optional[EventSnapshot],
    policy: ValidationPolicy,
    ctx: RequestContext,
    authorized_roles: Optional[FrozenSet[str]] = None,
) -> Verdict:
    """Calcular el veredicto para un escaneo"""
    # 1. Funcionalidad habilitada
    disabled = check_feature_enabled(policy)
    if disabled is not None:
        return disabled

    # 2. Rol del validador
    if policy.require_validator_role:
        roles = authorized_roles if authorized_roles is not None else settings.authorized_roles
        if (ctx.validator_role or "").lower() not in roles:
            return Verdict.reject(
                ErrorKind.UNAUTHORIZED,
                "Permisos insuficientes. Se requiere rol de validador o administrador.",
            )

    # 3. Ticket existente, del evento indicado y de la reserva y titular del QR
    if ticket is None or event is None or ticket.event_id != ref.event_id:
        return Verdict.reject(ErrorKind.NOT_FOUND, "Ticket no encontrado para este evento")
    if ticket.booking_id != ref.booking_id or ticket.user_id != ref.user_id:
        return Verdict.reject(ErrorKind.NOT_FOUND, "El ticket no corresponde a esta reserva")

    # 4. Anti-replay
    if policy.anti_replay_enabled and ctx.replay_seen:
        return Verdict.reject(
            ErrorKind.REPLAY_DETECTED,
            "Este código QR ya fue procesado hace instantes. Posible reutilización de imagen.",
        )

    # 5. Ventana de admisión
    if not policy.allow_validation_anytime:
        opens_at = event.date - timedelta(days=policy.validation_start_days)
        closes_at = event.date + timedelta(days=policy.scan_time_window_days)
        if not (opens_at <= ctx.now <= closes_at):
            message = "La validación de tickets no está permitida en este momento. "
            if policy.validation_start_days > 0:
                message += f"La validación abre {policy.validation_start_days:g} día(s) antes del evento. "
            message += f"Ventana de validación: {policy.scan_time_window_days:g} día(s) después del inicio."
            return Verdict.reject(ErrorKind.OUTSIDE_WINDOW, message, event_date=event.date)

    # 6. Geolocalización
    if policy.geo_location_required and not location_allowed(
        ctx.location, policy.allowed_locations, policy.geofence_radius_meters
    ):
        return Verdict.reject(
            ErrorKind.LOCATION_NOT_ALLOWED,
            "La ubicación del validador no está autorizada para este evento",
        )

    # 7. Estado del ticket
    if not is_claimable(ticket.status, ticket.validation_count, policy):
        return reject_used(ticket, policy)

    # 8. Admitir
    return Verdict.admit()


def reject_used(ticket: TicketSnapshot, policy: ValidationPolicy) -> Verdict:
    """Rechazo para un ticket que ya no admite validaciones"""
    if ticket.status == TICKET_STATUS_VALIDATED and not policy.multiple_scans_allowed:
        used_at = ticket.used_at.isoformat() if ticket.used_at else "fecha desconocida"
        return Verdict.reject(
            ErrorKind.ALREADY_USED,
            f"Este ticket ya fue validado el {used_at}. "
            "Contacta al responsable si crees que es un error.",
            used_at=ticket.used_at,
            validated_by=ticket.validated_by,
        )
    return Verdict.reject(
        ErrorKind.VALIDATION_LIMIT_REACHED,
        f"El ticket alcanzó el máximo de {policy.max_validations_per_ticket} validación(es)",
        used_at=ticket.used_at,
        validated_by=ticket.validated_by,
    )
