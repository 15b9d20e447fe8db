"""Sesiones de base de datos"""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.database.connection import get_db


@asynccontextmanager
async def session_scope(session_maker: async_sessionmaker) -> AsyncIterator[AsyncSession]:
    """Sesión con commit al salir y rollback ante cualquier error o cancelación"""
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise


__all__ = ["get_db", "session_scope"]
