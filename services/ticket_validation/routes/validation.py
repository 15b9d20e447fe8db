"""Rutas de validación de tickets"""
from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse
from typing import Optional

from shared.auth.dependencies import get_current_validator
from shared.auth.identity import ValidatorIdentity
from shared.utils.rate_limiter import limiter, get_real_client_ip, RATE_LIMITS
from services.ticket_validation.models.domain import (
    ErrorKind,
    RequestInfo,
    ScanMethod,
    ValidationType,
)
from services.ticket_validation.models.ticket import TicketValidationRequest
from services.ticket_validation.services.ticket_service import TicketValidationService, ValidationOutcome


router = APIRouter()

MAX_IMAGE_BYTES = 10 * 1024 * 1024

ERROR_STATUS_CODES = {
    ErrorKind.MALFORMED_PAYLOAD: 400,
    ErrorKind.UNREADABLE_IMAGE: 400,
    ErrorKind.OUTSIDE_WINDOW: 400,
    ErrorKind.LOCATION_NOT_ALLOWED: 400,
    ErrorKind.FEATURE_DISABLED: 403,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.ALREADY_USED: 409,
    ErrorKind.VALIDATION_LIMIT_REACHED: 409,
    ErrorKind.REPLAY_DETECTED: 409,
    ErrorKind.STORE_UNAVAILABLE: 503,
    ErrorKind.TIMEOUT: 504,
}


def get_validation_service(request: Request) -> TicketValidationService:
    """Servicio construido en el arranque de la aplicación"""
    return request.app.state.validation_service


def _to_response(outcome: ValidationOutcome) -> JSONResponse:
    status_code = 200 if outcome.success else ERROR_STATUS_CODES.get(outcome.error, 400)
    return JSONResponse(status_code=status_code, content=outcome.to_response())


@router.post("/validate")
@limiter.limit(RATE_LIMITS["validation"])
async def validate_ticket(
    request: Request,
    body: TicketValidationRequest,
    current_validator: ValidatorIdentity = Depends(get_current_validator),
    service: TicketValidationService = Depends(get_validation_service),
):
    """
    Validar un ticket a partir del texto del QR

    Acepta el texto leído por la cámara o ingresado manualmente.
    """
    outcome = await service.validate(
        body.qr_code_data,
        current_validator,
        RequestInfo(
            validation_type=body.validation_type,
            location=body.location,
            user_agent=request.headers.get("user-agent"),
            ip=get_real_client_ip(request),
            scan_method=body.scan_method,
        ),
    )
    return _to_response(outcome)


@router.post("/validate/image")
@limiter.limit(RATE_LIMITS["validation"])
async def validate_ticket_image(
    request: Request,
    file: UploadFile = File(...),
    validation_type: ValidationType = Form(ValidationType.ENTRY, alias="validationType"),
    location: Optional[str] = Form(None),
    current_validator: ValidatorIdentity = Depends(get_current_validator),
    service: TicketValidationService = Depends(get_validation_service),
):
    """
    Validar un ticket a partir de una imagen subida

    Se intentan varias transformaciones de la imagen antes de rendirse.
    """
    data = await file.read(MAX_IMAGE_BYTES + 1)
    if len(data) > MAX_IMAGE_BYTES:
        return JSONResponse(
            status_code=413,
            content={
                "success": False,
                "error": ErrorKind.UNREADABLE_IMAGE.value,
                "message": "La imagen supera el tamaño máximo de 10 MB",
            },
        )

    outcome = await service.validate(
        data,
        current_validator,
        RequestInfo(
            validation_type=validation_type,
            location=location,
            user_agent=request.headers.get("user-agent"),
            ip=get_real_client_ip(request),
            scan_method=ScanMethod.IMAGE,
        ),
    )
    return _to_response(outcome)
