"""Reseteo automático del resultado mostrado tras un escaneo"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

ResetCallback = Callable[[], Union[None, Awaitable[None]]]


class AutoResetTimer:
    """
    Tarea programada y cancelable que limpia el resultado mostrado.

    Cada schedule() cancela el reseteo pendiente y programa uno nuevo, así un
    escaneo nuevo nunca es borrado por el temporizador del anterior.
    """

    def __init__(self, delay_seconds: float, callback: ResetCallback):
        self.delay_seconds = delay_seconds
        self.callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self):
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._fire())

    def cancel(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _fire(self):
        await asyncio.sleep(self.delay_seconds)
        result = self.callback()
        if asyncio.iscoroutine(result):
            await result
