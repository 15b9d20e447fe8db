"""Registro de auditoría de validaciones (append-only)"""
import csv
import io
import logging
import math
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.database.models import ValidationLog
from shared.database.session import session_scope
from shared.utils.retry import retry_decorator
from services.ticket_validation.models.domain import ValidationLogEntry, as_utc

logger = logging.getLogger(__name__)

NOTES_MAX_LENGTH = 1000
LOCATION_MAX_LENGTH = 200
EXPORT_MAX_ROWS = 5000

CSV_HEADERS = [
    "Date", "Time", "Event", "Customer", "Validator", "Type",
    "Status", "Location", "Notes", "Scan Method", "Ticket",
]

# Prefijos que las planillas interpretan como fórmula
FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


class LogFilters(BaseModel):
    validator_id: Optional[str] = None
    event_id: Optional[str] = None
    status: Optional[str] = None
    validation_type: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


def _truncate(value: Optional[str], limit: int) -> Optional[str]:
    if value is None:
        return None
    return value[:limit]


def _apply_filters(stmt, filters: LogFilters):
    if filters.validator_id:
        stmt = stmt.where(ValidationLog.validator_id == filters.validator_id)
    if filters.event_id:
        stmt = stmt.where(ValidationLog.event_id == filters.event_id)
    if filters.status:
        stmt = stmt.where(ValidationLog.status == filters.status)
    if filters.validation_type:
        stmt = stmt.where(ValidationLog.validation_type == filters.validation_type)
    if filters.start_date:
        stmt = stmt.where(ValidationLog.created_at >= filters.start_date)
    if filters.end_date:
        stmt = stmt.where(ValidationLog.created_at <= filters.end_date)
    return stmt


def serialize_log(log: ValidationLog) -> Dict:
    created_at = as_utc(log.created_at)
    return {
        "id": log.id,
        "validatorId": log.validator_id,
        "validatorName": log.validator_name,
        "ticketId": log.ticket_id,
        "bookingId": log.booking_id,
        "eventId": log.event_id,
        "userId": log.user_id,
        "validationType": log.validation_type,
        "status": log.status,
        "notes": log.notes,
        "location": log.location,
        "deviceInfo": {
            "userAgent": log.device_user_agent,
            "ip": log.device_ip,
        },
        "scanMethod": log.scan_method,
        "createdAt": created_at.isoformat() if created_at else None,
    }


class AuditLog:
    """
    Append de entradas de validación.

    Un fallo al registrar nunca hace fallar la validación: se reporta por el
    logger de errores y la respuesta sigue su curso.
    """

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def append(self, entry: ValidationLogEntry):
        try:
            await self._insert(entry)
        except Exception as e:
            logger.error(
                f"No se pudo registrar la validación (ticket={entry.ticket_id}, "
                f"status={entry.status.value}): {type(e).__name__}: {e}"
            )

    @retry_decorator(max_retries=2, initial_delay=0.1, max_delay=1.0, exceptions=(SQLAlchemyError, OSError))
    async def _insert(self, entry: ValidationLogEntry):
        async with session_scope(self.session_maker) as session:
            session.add(ValidationLog(
                id=str(uuid.uuid4()),
                validator_id=entry.validator_id,
                validator_name=entry.validator_name,
                ticket_id=entry.ticket_id,
                booking_id=entry.booking_id,
                event_id=entry.event_id,
                user_id=entry.user_id,
                validation_type=entry.validation_type.value,
                status=entry.status.value,
                notes=_truncate(entry.notes, NOTES_MAX_LENGTH),
                location=_truncate(entry.location, LOCATION_MAX_LENGTH),
                device_user_agent=entry.device_user_agent,
                device_ip=entry.device_ip,
                scan_method=entry.scan_method.value,
                created_at=entry.created_at,
            ))


async def list_entries(
    db: AsyncSession,
    filters: LogFilters,
    page: int = 1,
    limit: int = 20
) -> Dict:
    """
    Listar registros con paginación y estadísticas por status

    Returns:
        dict con logs, pagination y statistics
    """
    page = max(page, 1)
    limit = max(min(limit, 100), 1)

    stmt = _apply_filters(select(ValidationLog), filters)
    stmt = stmt.order_by(ValidationLog.created_at.desc()).offset((page - 1) * limit).limit(limit)
    logs = (await db.execute(stmt)).scalars().all()

    count_stmt = _apply_filters(select(func.count(ValidationLog.id)), filters)
    total_count = (await db.execute(count_stmt)).scalar_one()

    stats_stmt = _apply_filters(
        select(ValidationLog.status, func.count(ValidationLog.id)),
        filters
    ).group_by(ValidationLog.status)
    statistics = {status: count for status, count in (await db.execute(stats_stmt)).all()}

    total_pages = math.ceil(total_count / limit) if total_count else 0

    return {
        "logs": [serialize_log(log) for log in logs],
        "pagination": {
            "currentPage": page,
            "totalPages": total_pages,
            "totalCount": total_count,
            "hasMore": page < total_pages,
            "limit": limit,
        },
        "statistics": statistics,
    }


def _csv_cell(value: Optional[str]) -> str:
    if not value:
        return ""
    if value.startswith(FORMULA_PREFIXES):
        return "'" + value
    return value


async def export_csv(db: AsyncSession, filters: LogFilters) -> str:
    """Exportar registros como CSV (máximo EXPORT_MAX_ROWS filas)"""
    stmt = _apply_filters(select(ValidationLog), filters)
    stmt = stmt.order_by(ValidationLog.created_at.desc()).limit(EXPORT_MAX_ROWS)
    logs: List[ValidationLog] = (await db.execute(stmt)).scalars().all()

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_HEADERS)
    for log in logs:
        created_at = as_utc(log.created_at)
        writer.writerow([
            created_at.strftime("%Y-%m-%d") if created_at else "",
            created_at.strftime("%H:%M:%S") if created_at else "",
            _csv_cell(log.event_id),
            _csv_cell(log.user_id),
            _csv_cell(log.validator_name or log.validator_id),
            log.validation_type,
            log.status,
            _csv_cell(log.location),
            _csv_cell(log.notes),
            log.scan_method,
            _csv_cell(log.ticket_id),
        ])
    return buffer.getvalue()
