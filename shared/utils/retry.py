"""Utilidades para retry con backoff exponencial"""
import asyncio
import logging
from typing import Awaitable, Callable, Any, Type, Tuple
from functools import wraps

logger = logging.getLogger(__name__)


async def retry_with_backoff(
    func: Callable[[], Awaitable[Any]],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,)
) -> Any:
    """
    Ejecutar una corrutina con retry y backoff exponencial

    Args:
        func: Función async sin argumentos a ejecutar
        max_retries: Número máximo de reintentos (0 = un solo intento)
        initial_delay: Delay inicial en segundos
        max_delay: Delay máximo en segundos
        exponential_base: Base para cálculo exponencial
        exceptions: Excepciones que deben trigger retry

    Returns:
        Resultado de la función

    Raises:
        La última excepción si se agotan los reintentos
    """
    delay = initial_delay

    for attempt in range(max_retries + 1):
        try:
            return await func()
        except exceptions as e:
            if attempt == max_retries:
                raise
            logger.warning(
                f"Intento {attempt + 1}/{max_retries + 1} falló ({type(e).__name__}: {e}). "
                f"Reintentando en {delay:.2f}s..."
            )
            await asyncio.sleep(delay)
            delay = min(delay * exponential_base, max_delay)


def retry_decorator(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,)
):
    """Decorator para retry con backoff sobre funciones async"""
    def decorator(func: Callable[..., Awaitable[Any]]):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await retry_with_backoff(
                lambda: func(*args, **kwargs),
                max_retries=max_retries,
                initial_delay=initial_delay,
                max_delay=max_delay,
                exponential_base=exponential_base,
                exceptions=exceptions
            )
        return wrapper
    return decorator
