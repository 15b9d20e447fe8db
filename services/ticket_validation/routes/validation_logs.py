"""Rutas de consulta y exportación de registros de validación"""
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from shared.auth.dependencies import get_current_log_viewer
from shared.auth.identity import ValidatorIdentity
from shared.database.session import get_db
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.ticket_validation.models.domain import LogStatus, ValidationType, as_utc
from services.ticket_validation.services.audit_log import LogFilters, export_csv, list_entries


router = APIRouter()


def get_log_filters(
    validator_id: Optional[str] = Query(None, alias="validatorId"),
    event_id: Optional[str] = Query(None, alias="eventId"),
    status: Optional[LogStatus] = Query(None),
    validation_type: Optional[ValidationType] = Query(None, alias="validationType"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
) -> LogFilters:
    return LogFilters(
        validator_id=validator_id,
        event_id=event_id,
        status=status.value if status else None,
        validation_type=validation_type.value if validation_type else None,
        start_date=as_utc(start_date),
        end_date=as_utc(end_date),
    )


@router.get("")
@limiter.limit(RATE_LIMITS["logs"])
async def get_validation_logs(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    filters: LogFilters = Depends(get_log_filters),
    db: AsyncSession = Depends(get_db),
    current_user: ValidatorIdentity = Depends(get_current_log_viewer),
):
    """Listar registros de validación con filtros, paginación y estadísticas"""
    data = await list_entries(db, filters, page=page, limit=limit)
    return {"success": True, "data": data}


@router.get("/export")
@limiter.limit(RATE_LIMITS["logs"])
async def export_validation_logs(
    request: Request,
    filters: LogFilters = Depends(get_log_filters),
    db: AsyncSession = Depends(get_db),
    current_user: ValidatorIdentity = Depends(get_current_log_viewer),
):
    """Exportar registros de validación como CSV"""
    content = await export_csv(db, filters)
    filename = f"validation-logs-{datetime.now(timezone.utc).strftime('%Y-%m-%d')}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
