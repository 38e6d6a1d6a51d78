"""
FastAPI dependencies
"""

from typing import AsyncGenerator
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from ingestion.scheduler import IngestionScheduler


def get_ingestion(request: Request) -> IngestionScheduler:
    """Ingestion service attached to the app at startup"""
    return request.app.state.ingestion


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Database session from the ingestion service's session factory"""
    async with request.app.state.ingestion.session_factory() as session:
        yield session
