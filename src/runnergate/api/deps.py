"""API dependencies."""

import logging
import secrets
from typing import AsyncGenerator

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from runnergate.config import Environment, settings
from runnergate.db.base import async_session_factory
from runnergate.engine import DispatchCoordinator
from runnergate.integrations.location_client import build_geolocator

logger = logging.getLogger("runnergate.api")


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_coordinator(
    session: AsyncSession = Depends(get_db_session),
) -> DispatchCoordinator:
    """Dispatch coordinator bound to the request's session."""
    return DispatchCoordinator(session, geolocator=build_geolocator())


async def verify_api_key(
    authorization: str | None = Header(None),
    x_api_key: str | None = Header(None, alias="X-API-Key"),
) -> None:
    """
    Check the shared service token.

    Accepts ``Authorization: Bearer <key>`` or ``X-API-Key``. With no key
    configured the check is skipped, which settings only allow in
    development.
    """
    if not settings.api_key:
        if settings.env != Environment.DEVELOPMENT:
            logger.error("No RUNNERGATE_API_KEY configured outside development")
            raise HTTPException(
                status_code=503,
                detail="Server misconfigured: authentication not properly initialized",
            )
        return

    api_key = None
    if authorization and authorization.startswith("Bearer "):
        api_key = authorization[7:]
    elif x_api_key:
        api_key = x_api_key

    if not api_key:
        raise HTTPException(
            status_code=401,
            detail="Missing authorization. Use Authorization: Bearer <key> or X-API-Key header",
        )
    if not secrets.compare_digest(api_key, settings.api_key):
        raise HTTPException(status_code=401, detail="Invalid API key")
