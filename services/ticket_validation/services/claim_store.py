"""
Almacén de claims de tickets

La transición unused -> validated se hace con un único UPDATE condicional que
vuelve a verificar la condición de admisibilidad dentro de la escritura. La
base de datos decide qué escritura gana; no hay locks en la aplicación.
"""
import logging
from datetime import datetime

from sqlalchemy import and_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from shared.database.models import Ticket, TICKET_STATUS_UNUSED, TICKET_STATUS_VALIDATED
from shared.database.session import session_scope
from services.ticket_validation.exceptions import ClaimConflict, StoreUnavailable
from services.ticket_validation.models.domain import TicketSnapshot, ValidationPolicy
from services.ticket_validation.services.ticket_lookup import fetch_ticket

logger = logging.getLogger(__name__)

CLAIM_RETURNING = (
    Ticket.id,
    Ticket.event_id,
    Ticket.booking_id,
    Ticket.user_id,
    Ticket.ticket_type_name,
    Ticket.price,
    Ticket.status,
    Ticket.validation_count,
    Ticket.used_at,
    Ticket.validated_by,
)


def claim_condition(ticket_id: str, policy: ValidationPolicy):
    """Condición WHERE equivalente a admission_evaluator.is_claimable()"""
    conditions = [
        Ticket.id == ticket_id,
        Ticket.validation_count < policy.max_validations_per_ticket,
    ]
    if not policy.multiple_scans_allowed:
        conditions.append(Ticket.status == TICKET_STATUS_UNUSED)
    return and_(*conditions)


class SqlTicketClaimStore:
    """Claim atómico sobre la tabla tickets"""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def claim(
        self,
        ticket_id: str,
        validator_id: str,
        now: datetime,
        policy: ValidationPolicy,
    ) -> TicketSnapshot:
        """
        Marcar el ticket como validado si sigue siendo admisible

        Returns:
            Estado del ticket después del claim

        Raises:
            ClaimConflict: la condición ya no se cumple (otro escaneo ganó)
            StoreUnavailable: error de base de datos
        """
        stmt = (
            update(Ticket)
            .where(claim_condition(ticket_id, policy))
            .values(
                validation_count=Ticket.validation_count + 1,
                status=TICKET_STATUS_VALIDATED,
                used_at=now,
                validated_by=validator_id,
                updated_at=now,
            )
            .returning(*CLAIM_RETURNING)
            .execution_options(synchronize_session=False)
        )

        try:
            async with session_scope(self.session_maker) as session:
                result = await session.execute(stmt)
                row = result.first()

            if row is None:
                async with self.session_maker() as session:
                    current = await fetch_ticket(session, ticket_id)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Error en claim del ticket {ticket_id}: {e}")
            raise StoreUnavailable(str(e)) from e

        if row is None:
            logger.info(f"Claim rechazado para ticket {ticket_id}: ya no es admisible")
            raise ClaimConflict(ticket_id, current)

        current = TicketSnapshot.from_row(row)

        logger.info(
            f"Ticket {ticket_id} validado por {validator_id} "
            f"(validaciones: {current.validation_count})"
        )
        return current
