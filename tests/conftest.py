"""
Fixtures compartidas de los tests del motor de validación

Base de datos SQLite temporal (aiosqlite) por test, Redis en memoria con
fakeredis y helpers para sembrar eventos, tickets y la política.
"""
import io
import os
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

# Antes de importar la aplicación: sin rate limiting ni Redis real
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["RATE_LIMIT_STORAGE_URI"] = "memory://"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["APP_ENV"] = "test"

import fakeredis  # noqa: E402
import pytest  # noqa: E402
import qrcode  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from shared.auth.identity import ValidatorIdentity  # noqa: E402
from shared.database.connection import build_engine, create_tables  # noqa: E402
from shared.database.models import (  # noqa: E402
    AppSettings,
    Event,
    Ticket,
    ValidationLog,
    TICKET_STATUS_UNUSED,
)
from services.ticket_validation.models.domain import (  # noqa: E402
    TicketReference,
    ValidationPolicy,
)
from services.ticket_validation.services.payload_decoder import encode_payload  # noqa: E402

ISSUED_AT_MS = 1760000000000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def payload_for(ticket: Ticket, timestamp: float = ISSUED_AT_MS, **overrides) -> str:
    """Payload del QR para un ticket sembrado"""
    ref = TicketReference(
        event_id=overrides.get("event_id", ticket.event_id),
        ticket_id=overrides.get("ticket_id", ticket.id),
        booking_id=overrides.get("booking_id", ticket.booking_id),
        user_id=overrides.get("user_id", ticket.user_id),
        timestamp=timestamp,
    )
    return encode_payload(ref)


def qr_png(text: str) -> bytes:
    """Imagen PNG con un QR real que contiene el texto"""
    buffer = io.BytesIO()
    qrcode.make(text).save(buffer, format="PNG")
    return buffer.getvalue()


class Seeder:
    """Inserta datos de prueba en la base temporal"""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def event(self, date: datetime = None, **fields) -> Event:
        event = Event(
            id=fields.pop("id", str(uuid.uuid4())),
            title=fields.pop("title", "Concierto de Prueba"),
            date=date or utcnow() + timedelta(hours=2),
            venue=fields.pop("venue", "Teatro Municipal"),
            location=fields.pop("location", "Santiago"),
            **fields,
        )
        async with self.session_maker() as session:
            session.add(event)
            await session.commit()
        return event

    async def ticket(self, event: Event, **fields) -> Ticket:
        ticket = Ticket(
            id=fields.pop("id", str(uuid.uuid4())),
            event_id=event.id,
            booking_id=fields.pop("booking_id", "booking-1"),
            user_id=fields.pop("user_id", "user-1"),
            ticket_type_name=fields.pop("ticket_type_name", "General"),
            price=fields.pop("price", Decimal("15000.00")),
            status=fields.pop("status", TICKET_STATUS_UNUSED),
            validation_count=fields.pop("validation_count", 0),
            **fields,
        )
        async with self.session_maker() as session:
            session.add(ticket)
            await session.commit()
        return ticket

    async def policy(self, **overrides) -> ValidationPolicy:
        """Guardar la sección validation del documento de settings"""
        policy = ValidationPolicy(**overrides)
        document = policy.model_dump(by_alias=True, mode="json")
        async with self.session_maker() as session:
            current = await session.get(AppSettings, "global")
            if current is None:
                session.add(AppSettings(id="global", validation=document, version=1))
            else:
                current.validation = document
            await session.commit()
        return policy

    async def get_ticket(self, ticket_id: str) -> Ticket:
        async with self.session_maker() as session:
            return await session.get(Ticket, ticket_id)

    async def logs(self):
        async with self.session_maker() as session:
            result = await session.execute(select(ValidationLog).order_by(ValidationLog.created_at))
            return result.scalars().all()


@pytest.fixture
async def engine(tmp_path):
    """Engine SQLite sobre un archivo temporal con el esquema creado"""
    engine = build_engine(f"sqlite:///{tmp_path / 'gatecheck.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def broken_session_maker(tmp_path):
    """Session factory cuya base de datos no se puede abrir"""
    engine = build_engine(f"sqlite:///{tmp_path / 'missing-dir' / 'gatecheck.db'}")
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def seeder(session_maker):
    return Seeder(session_maker)


@pytest.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    await client.flushall()
    yield client
    await client.aclose()


@pytest.fixture
def validator():
    return ValidatorIdentity(validator_id="validator-1", role="validator", name="Puerta Norte")
