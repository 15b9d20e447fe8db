"""Servicio de validación de tickets"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Union

from pydantic import BaseModel

from shared.auth.identity import ValidatorIdentity
from services.ticket_validation.exceptions import ClaimConflict, DecodeError, StoreUnavailable
from services.ticket_validation.models.domain import (
    ErrorKind,
    EventSnapshot,
    LogStatus,
    RequestContext,
    RequestInfo,
    TicketReference,
    TicketSnapshot,
    ValidationLogEntry,
    ValidationPolicy,
    Verdict,
)
from services.ticket_validation.services import admission_evaluator

logger = logging.getLogger(__name__)

FLAGGED_REASONS = {ErrorKind.REPLAY_DETECTED, ErrorKind.TIMEOUT, ErrorKind.STORE_UNAVAILABLE}

TIMEOUT_MESSAGE = "La validación tardó demasiado. Intenta escanear nuevamente."
STORE_UNAVAILABLE_MESSAGE = (
    "No se pudo verificar el ticket por un problema temporal del sistema. "
    "Intenta nuevamente en unos segundos."
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class ValidationOutcome(BaseModel):
    """Resultado terminal de una petición: Success, Failure o Timeout"""
    success: bool
    message: str
    error: Optional[ErrorKind] = None
    ticket: Optional[TicketSnapshot] = None
    event: Optional[EventSnapshot] = None
    verdict: Optional[Verdict] = None
    ticket_status: Optional[str] = None

    def to_response(self) -> Dict:
        """Cuerpo JSON de la respuesta HTTP"""
        if self.success:
            return {
                "success": True,
                "message": self.message,
                "ticket": {
                    "ticketId": self.ticket.ticket_id,
                    "ticketName": self.ticket.ticket_type_name,
                    "price": float(self.ticket.price),
                    "usedAt": _isoformat(self.ticket.used_at),
                    "validatedBy": self.ticket.validated_by,
                    "validationCount": self.ticket.validation_count,
                },
                "event": {
                    "title": self.event.title,
                    "date": _isoformat(self.event.date),
                    "venue": self.event.venue,
                    "location": self.event.location,
                },
                "customer": {
                    "userId": self.ticket.user_id,
                },
            }

        body = {
            "success": False,
            "message": self.message,
            "error": self.error.value,
        }
        if self.ticket_status:
            body["status"] = self.ticket_status
        if self.verdict is not None:
            if self.verdict.event_date:
                body["eventDate"] = self.verdict.event_date.isoformat()
            if self.verdict.used_at:
                body["usedAt"] = self.verdict.used_at.isoformat()
            if self.verdict.validated_by:
                body["validatedBy"] = self.verdict.validated_by
        return body


class _Trace:
    """Lo que se sabe de la petición en cada estado, para el registro de auditoría"""

    def __init__(self):
        self.state = "received"
        self.ref: Optional[TicketReference] = None
        self.ticket: Optional[TicketSnapshot] = None
        self.claim: Optional[asyncio.Future] = None


class TicketValidationService:
    """
    Orquesta una validación:
    Received -> Decoded -> Evaluated -> (Claimed | Rejected) -> Logged -> Responded

    No guarda estado entre peticiones salvo el cache de política del resolver y
    la base de datos compartida.
    """

    def __init__(
        self,
        policy_resolver,
        decoder,
        ticket_lookup,
        claim_store,
        audit_log,
        replay_guard=None,
        authorized_roles=None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.policy_resolver = policy_resolver
        self.decoder = decoder
        self.ticket_lookup = ticket_lookup
        self.claim_store = claim_store
        self.audit_log = audit_log
        self.replay_guard = replay_guard
        self.authorized_roles = authorized_roles
        self.clock = clock

    async def validate(
        self,
        raw: Union[str, bytes],
        validator: ValidatorIdentity,
        request_info: Optional[RequestInfo] = None,
    ) -> ValidationOutcome:
        """Validar un escaneo (texto del QR o imagen)"""
        request_info = request_info or RequestInfo()
        policy = await self.policy_resolver.current_policy()

        disabled = admission_evaluator.check_feature_enabled(policy)
        if disabled is not None:
            logger.info(f"Escaneo rechazado por {validator.validator_id}: validación deshabilitada")
            return self._failure(disabled)

        trace = _Trace()
        try:
            outcome = await asyncio.wait_for(
                self._process(raw, validator, request_info, policy, trace),
                timeout=policy.timeout_seconds,
            )
        except asyncio.TimeoutError:
            if trace.claim is not None:
                # La escritura ya fue emitida: su resultado es el de la petición
                logger.warning(
                    f"Límite de {policy.timeout_seconds}s superado con el claim en curso "
                    f"(ticket={trace.ref.ticket_id}); se espera su resultado"
                )
                outcome = await trace.claim
            else:
                logger.warning(
                    f"Timeout validando ticket (estado={trace.state}, "
                    f"ticket={trace.ref.ticket_id if trace.ref else None}, "
                    f"limite={policy.timeout_seconds}s)"
                )
                outcome = ValidationOutcome(success=False, message=TIMEOUT_MESSAGE, error=ErrorKind.TIMEOUT)

        if outcome.success and self._tracks_replay(policy):
            await self._remember(trace.ref, policy)

        await self._log(outcome, trace, validator, request_info, policy)
        trace.state = "responded"
        return outcome

    async def _process(
        self,
        raw: Union[str, bytes],
        validator: ValidatorIdentity,
        request_info: RequestInfo,
        policy: ValidationPolicy,
        trace: _Trace,
    ) -> ValidationOutcome:
        try:
            ref = await self.decoder.decode_async(raw)
        except DecodeError as e:
            logger.info(f"Payload inválido ({e.kind.value}) escaneado por {validator.validator_id}")
            return ValidationOutcome(success=False, message=e.message, error=e.kind)

        trace.ref = ref
        trace.state = "decoded"

        try:
            ticket, event = await self.ticket_lookup.get_ticket_with_event(ref.ticket_id)
            trace.ticket = ticket

            replay_seen = False
            if self._tracks_replay(policy):
                replay_seen = await self.replay_guard.seen(ref.fingerprint)
        except StoreUnavailable as e:
            return self._store_unavailable(ref, e)

        ctx = RequestContext(
            validator_id=validator.validator_id,
            validator_role=validator.role,
            now=self.clock(),
            location=request_info.location,
            replay_seen=replay_seen,
        )
        verdict = admission_evaluator.evaluate(
            ref, ticket, event, policy, ctx, authorized_roles=self.authorized_roles
        )
        trace.state = "evaluated"

        if not verdict.admitted:
            logger.info(
                f"Ticket {ref.ticket_id} rechazado ({verdict.reason.value}) "
                f"por {validator.validator_id}"
            )
            trace.state = "rejected"
            return self._failure(verdict, ticket)

        # Una vez emitido, el claim no se cancela aunque venza el límite de tiempo
        trace.claim = asyncio.ensure_future(
            self._claim(ref, event, verdict, validator, ctx, policy, trace)
        )
        return await asyncio.shield(trace.claim)

    async def _claim(
        self,
        ref: TicketReference,
        event: EventSnapshot,
        verdict: Verdict,
        validator: ValidatorIdentity,
        ctx: RequestContext,
        policy: ValidationPolicy,
        trace: _Trace,
    ) -> ValidationOutcome:
        try:
            claimed = await self.claim_store.claim(ref.ticket_id, validator.validator_id, ctx.now, policy)
        except ClaimConflict as conflict:
            # Perdió la carrera contra otro escaneo: mismo rechazo que vería un escaneo posterior
            trace.ticket = conflict.ticket
            trace.state = "rejected"
            if conflict.ticket is None:
                verdict = Verdict.reject(ErrorKind.NOT_FOUND, "Ticket no encontrado para este evento")
            else:
                verdict = admission_evaluator.reject_used(conflict.ticket, policy)
            logger.info(
                f"Ticket {ref.ticket_id} rechazado tras conflicto de claim "
                f"({verdict.reason.value}) por {validator.validator_id}"
            )
            return self._failure(verdict, conflict.ticket)
        except StoreUnavailable as e:
            return self._store_unavailable(ref, e)

        trace.ticket = claimed
        trace.state = "claimed"
        return ValidationOutcome(
            success=True,
            message="Ticket validado correctamente",
            ticket=claimed,
            event=event,
            verdict=verdict,
        )

    def _tracks_replay(self, policy: ValidationPolicy) -> bool:
        # Con escaneo único el segundo escaneo ya es AlreadyUsed
        return (
            policy.anti_replay_enabled
            and policy.multiple_scans_allowed
            and self.replay_guard is not None
        )

    async def _remember(self, ref: TicketReference, policy: ValidationPolicy):
        """Recordar el payload admitido; la admisión ya es definitiva"""
        try:
            await asyncio.wait_for(
                self.replay_guard.remember(ref.fingerprint, policy.anti_replay_window_seconds),
                timeout=policy.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Anti-replay no registró el ticket {ref.ticket_id}: Redis no respondió a tiempo")

    @staticmethod
    def _store_unavailable(ref: TicketReference, error: StoreUnavailable) -> ValidationOutcome:
        logger.error(f"Almacenamiento no disponible validando ticket {ref.ticket_id}: {error}")
        return ValidationOutcome(
            success=False,
            message=STORE_UNAVAILABLE_MESSAGE,
            error=ErrorKind.STORE_UNAVAILABLE,
        )

    @staticmethod
    def _failure(verdict: Verdict, ticket: Optional[TicketSnapshot] = None) -> ValidationOutcome:
        return ValidationOutcome(
            success=False,
            message=verdict.message,
            error=verdict.reason,
            verdict=verdict,
            ticket_status=ticket.status if ticket is not None and verdict.reason in (
                ErrorKind.ALREADY_USED, ErrorKind.VALIDATION_LIMIT_REACHED
            ) else None,
        )

    async def _log(
        self,
        outcome: ValidationOutcome,
        trace: _Trace,
        validator: ValidatorIdentity,
        request_info: RequestInfo,
        policy: ValidationPolicy,
    ):
        if not policy.log_validations:
            return

        if outcome.success:
            status = LogStatus.VALIDATED
            notes = outcome.message
        else:
            status = LogStatus.FLAGGED if outcome.error in FLAGGED_REASONS else LogStatus.REJECTED
            notes = f"{outcome.error.value}: {outcome.message}"

        ref = trace.ref
        await self.audit_log.append(ValidationLogEntry(
            validator_id=validator.validator_id,
            validator_name=validator.name,
            ticket_id=ref.ticket_id if ref else None,
            booking_id=ref.booking_id if ref else None,
            event_id=ref.event_id if ref else None,
            user_id=ref.user_id if ref else None,
            validation_type=request_info.validation_type,
            status=status,
            notes=notes,
            location=request_info.location,
            device_user_agent=request_info.user_agent,
            device_ip=request_info.ip,
            scan_method=request_info.scan_method,
            created_at=self.clock(),
        ))
        trace.state = "logged"


def build_validation_service(session_maker, redis_client=None, policy_ttl_seconds: Optional[float] = None):
    """Construir el servicio con sus colaboradores SQL/Redis"""
    from shared.core.config import settings
    from services.ticket_validation.services.audit_log import AuditLog
    from services.ticket_validation.services.claim_store import SqlTicketClaimStore
    from services.ticket_validation.services.payload_decoder import PayloadDecoder
    from services.ticket_validation.services.policy_resolver import PolicyResolver, SqlPolicySource
    from services.ticket_validation.services.replay_guard import ReplayGuard
    from services.ticket_validation.services.ticket_lookup import SqlTicketLookup

    ttl = policy_ttl_seconds if policy_ttl_seconds is not None else settings.POLICY_CACHE_TTL_SECONDS
    return TicketValidationService(
        policy_resolver=PolicyResolver(
            SqlPolicySource(session_maker),
            ttl_seconds=ttl,
            load_timeout_seconds=settings.POLICY_LOAD_TIMEOUT_SECONDS,
        ),
        decoder=PayloadDecoder(),
        ticket_lookup=SqlTicketLookup(session_maker),
        claim_store=SqlTicketClaimStore(session_maker),
        audit_log=AuditLog(session_maker),
        replay_guard=ReplayGuard(redis_client) if redis_client is not None else None,
        authorized_roles=settings.authorized_roles,
    )
