"""Excepciones del motor de validación"""
from typing import Optional

from services.ticket_validation.models.domain import ErrorKind, TicketSnapshot


class DecodeError(Exception):
    """El payload escaneado no se pudo convertir en una referencia de ticket"""

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __eq__(self, other):
        return isinstance(other, DecodeError) and (self.kind, self.message) == (other.kind, other.message)

    def __hash__(self):
        return hash((self.kind, self.message))


class ClaimConflict(Exception):
    """La escritura condicional no aplicó: otro validador ganó la carrera"""

    def __init__(self, ticket_id: str, ticket: Optional[TicketSnapshot]):
        super().__init__(f"Claim conflict for ticket {ticket_id}")
        self.ticket_id = ticket_id
        self.ticket = ticket


class StoreUnavailable(Exception):
    """Error de infraestructura al acceder al almacenamiento de tickets"""
