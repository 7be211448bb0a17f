"""
Order Engine — Health endpoint
"""
import asyncio

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from order_engine.core import redis_client
from order_engine.core.config import get_settings
from order_engine.db.database import engine

settings = get_settings()
router = APIRouter(tags=["health"])


async def check_postgres() -> None:
    async with engine.connect() as conn:
        await asyncio.wait_for(conn.execute(text("SELECT 1")), timeout=settings.HEALTH_CHECK_TIMEOUT)


@router.get("/health")
async def health_check():
    deps: dict[str, str] = {}
    healthy = True

    for name, check in (("postgresql", check_postgres), ("redis", redis_client.ping_redis)):
        try:
            await check()
            deps[name] = "ok"
        except Exception as e:
            deps[name] = f"error: {str(e)[:100]}"
            healthy = False

    return JSONResponse(
        content={
            "status": "healthy" if healthy else "degraded",
            "service": settings.SERVICE_NAME,
            "version": settings.SERVICE_VERSION,
            "dependencies": deps,
        },
        status_code=200 if healthy else 503,
    )
