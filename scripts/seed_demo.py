#!/usr/bin/env python3
"""Crear un evento, un ticket y la política por defecto para probar el validador"""
import asyncio
import os
import sys
import time
import uuid
from datetime import datetime, timedelta, timezone

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from shared.database.connection import init_db, create_tables, get_session_maker, close_db  # noqa: E402
from shared.database.models import AppSettings, Event, Ticket  # noqa: E402
from services.ticket_validation.models.domain import TicketReference, ValidationPolicy  # noqa: E402
from services.ticket_validation.services.payload_decoder import encode_payload  # noqa: E402


async def seed():
    await init_db()
    await create_tables()

    event_id = str(uuid.uuid4())
    ticket_id = f"TICKET-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"
    booking_id = str(uuid.uuid4())
    user_id = "user_demo"

    async with get_session_maker()() as session:
        if await session.get(AppSettings, "global") is None:
            session.add(AppSettings(
                id="global",
                validation=ValidationPolicy().model_dump(by_alias=True, mode="json"),
                updated_by="system",
            ))
        session.add(Event(
            id=event_id,
            title="Concierto de prueba",
            date=datetime.now(timezone.utc) + timedelta(hours=2),
            venue="Teatro Central",
            location="Santiago",
        ))
        session.add(Ticket(
            id=ticket_id,
            event_id=event_id,
            booking_id=booking_id,
            user_id=user_id,
            ticket_type_name="General",
            price=15000,
        ))
        await session.commit()

    payload = encode_payload(TicketReference(
        event_id=event_id,
        ticket_id=ticket_id,
        booking_id=booking_id,
        user_id=user_id,
        timestamp=time.time() * 1000,
    ))
    print("✅ Datos de prueba creados")
    print(f"   Payload QR: {payload}")

    await close_db()


if __name__ == "__main__":
    asyncio.run(seed())
