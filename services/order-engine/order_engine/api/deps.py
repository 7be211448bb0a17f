"""
Order Engine — FastAPI dependencies
"""
from fastapi import Request

from order_engine.core.clock import Clock, SystemClock
from order_engine.db.database import AsyncSessionLocal
from order_engine.db.sql_store import SqlUnitOfWork


def get_uow() -> SqlUnitOfWork:
    return SqlUnitOfWork(AsyncSessionLocal)


def get_clock() -> Clock:
    return SystemClock()


def get_current_user(request: Request) -> str:
    """Staff id from the JWT `sub` claim (set by JWTAuthMiddleware)."""
    return request.state.user["sub"]
