"""Detección de reutilización de payloads (anti-replay) respaldada en Redis"""
import logging

from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

REPLAY_KEY_PREFIX = "ticket:replay:"


class ReplayGuard:
    """
    Recuerda los payloads que ya admitieron a alguien durante una ventana corta.

    Es una señal auxiliar: ante errores de Redis se degrada a "no visto" y la
    escritura condicional del claim sigue siendo la que decide.
    """

    def __init__(self, redis_client):
        self.redis = redis_client

    @staticmethod
    def _key(fingerprint: str) -> str:
        return f"{REPLAY_KEY_PREFIX}{fingerprint}"

    async def seen(self, fingerprint: str) -> bool:
        try:
            return bool(await self.redis.exists(self._key(fingerprint)))
        except (RedisError, OSError) as e:
            logger.warning(f"Redis no disponible para anti-replay, se omite el chequeo: {e}")
            return False

    async def remember(self, fingerprint: str, window_seconds: int):
        try:
            await self.redis.set(self._key(fingerprint), "1", nx=True, ex=window_seconds)
        except (RedisError, OSError) as e:
            logger.warning(f"No se pudo registrar el payload en anti-replay: {e}")
