"""Resolución de la política de validación con cache por TTL"""
import asyncio
import logging
import time
from typing import Callable, Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from shared.database.models import AppSettings
from services.ticket_validation.models.domain import ValidationPolicy

logger = logging.getLogger(__name__)

DEFAULT_POLICY_TTL_SECONDS = 300
DEFAULT_POLICY_LOAD_TIMEOUT_SECONDS = 5
SETTINGS_ROW_ID = "global"


class PolicySourceError(Exception):
    """No se pudo cargar el documento de política"""


class SqlPolicySource:
    """Lee la sección validation del documento de settings"""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def load(self) -> ValidationPolicy:
        try:
            async with self.session_maker() as session:
                result = await session.execute(
                    select(AppSettings.validation).where(AppSettings.id == SETTINGS_ROW_ID)
                )
                document = result.scalar_one_or_none()
        except (SQLAlchemyError, OSError) as e:
            raise PolicySourceError(f"Error leyendo settings: {e}") from e

        if document is None:
            # Sin documento de settings se aplica la política por defecto
            return ValidationPolicy()

        try:
            return ValidationPolicy.model_validate(document)
        except ValidationError as e:
            raise PolicySourceError(f"Documento de política inválido: {e}") from e


class PolicyResolver:
    """
    Mantiene un único snapshot de la política con TTL.

    - Snapshot fresco: se devuelve tal cual.
    - Snapshot vencido: se recarga; si la recarga falla se sigue sirviendo el
      último snapshot válido.
    - Nunca cargado y la carga falla: política conservadora por defecto.
    - Una carga que no responde a tiempo cuenta como falla.
    """

    def __init__(
        self,
        source,
        ttl_seconds: float = DEFAULT_POLICY_TTL_SECONDS,
        load_timeout_seconds: float = DEFAULT_POLICY_LOAD_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.ttl_seconds = ttl_seconds
        self.load_timeout_seconds = load_timeout_seconds
        self.clock = clock
        self._snapshot: Optional[ValidationPolicy] = None
        self._refreshed_at: Optional[float] = None
        self._lock = asyncio.Lock()

    def _is_fresh(self) -> bool:
        return (
            self._snapshot is not None
            and self._refreshed_at is not None
            and self.clock() - self._refreshed_at < self.ttl_seconds
        )

    async def current_policy(self) -> ValidationPolicy:
        if self._is_fresh():
            return self._snapshot

        async with self._lock:
            # Otra tarea pudo refrescar mientras esperábamos el lock
            if self._is_fresh():
                return self._snapshot

            try:
                policy = await asyncio.wait_for(self.source.load(), timeout=self.load_timeout_seconds)
            except asyncio.TimeoutError:
                return self._fallback(f"sin respuesta en {self.load_timeout_seconds}s")
            except Exception as e:
                return self._fallback(e)

            self._snapshot = policy
            self._refreshed_at = self.clock()
            logger.info("Política de validación actualizada")
            return policy

    def _fallback(self, error) -> ValidationPolicy:
        if self._snapshot is not None:
            logger.warning(f"No se pudo refrescar la política, usando snapshot anterior: {error}")
            return self._snapshot
        logger.error(f"No se pudo cargar la política, usando valores por defecto: {error}")
        return ValidationPolicy()

    def invalidate(self):
        """Descartar el snapshot (por ejemplo tras editar los settings)"""
        self._snapshot = None
        self._refreshed_at = None
