"""Consulta de tickets y eventos (solo lectura)"""
import logging
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.database.models import Event, Ticket
from services.ticket_validation.exceptions import StoreUnavailable
from services.ticket_validation.models.domain import EventSnapshot, TicketSnapshot

logger = logging.getLogger(__name__)


async def fetch_ticket(session: AsyncSession, ticket_id: str) -> Optional[TicketSnapshot]:
    result = await session.execute(select(Ticket).where(Ticket.id == ticket_id))
    row = result.scalar_one_or_none()
    return TicketSnapshot.from_row(row) if row else None


class SqlTicketLookup:
    """Lectura del ticket y su evento por ticket_id"""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def get_ticket_with_event(
        self,
        ticket_id: str
    ) -> Tuple[Optional[TicketSnapshot], Optional[EventSnapshot]]:
        try:
            async with self.session_maker() as session:
                result = await session.execute(
                    select(Ticket, Event)
                    .join(Event, Event.id == Ticket.event_id, isouter=True)
                    .where(Ticket.id == ticket_id)
                )
                row = result.one_or_none()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Error consultando ticket {ticket_id}: {e}")
            raise StoreUnavailable(str(e)) from e

        if row is None:
            return None, None

        ticket, event = row
        return (
            TicketSnapshot.from_row(ticket),
            EventSnapshot.from_row(event) if event is not None else None,
        )
