"""Identidad autenticada del validador"""
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ValidatorIdentity(BaseModel):
    """Usuario del token JWT que escanea en puerta"""
    model_config = ConfigDict(frozen=True)

    validator_id: str
    role: Optional[str] = None
    name: Optional[str] = None
