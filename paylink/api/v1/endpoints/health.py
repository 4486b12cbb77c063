"""Health check endpoints"""

from fastapi import APIRouter
from sqlalchemy import text

from paylink.core.config import settings
from paylink.core.dependencies import get_session_factory

router = APIRouter()


@router.get("")
async def health_check():
    """Health check endpoint"""
    async with get_session_factory()() as session:
        await session.execute(text("SELECT 1"))

    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "services": {"api": "healthy", "database": "healthy"},
    }
