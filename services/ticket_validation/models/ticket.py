"""Modelos Pydantic para validación de tickets"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional

from services.ticket_validation.models.domain import ScanMethod, ValidationType


class TicketValidationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    qr_code_data: str = Field(..., alias="qrCodeData")
    validation_type: ValidationType = Field(ValidationType.ENTRY, alias="validationType")
    location: Optional[str] = Field(None, max_length=200)
    scan_method: ScanMethod = Field(ScanMethod.QR, alias="scanMethod")
