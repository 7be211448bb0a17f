"""
Order Engine — Order number allocator

Order numbers look like KWR-001 and restart at 1 per outlet per business day.
Allocation is read-max-then-insert and therefore racy; the race is not
prevented, it is detected. Two transactions that pick the same number
collide on the uq_orders_outlet_day_number constraint, the loser's whole
transaction is rolled back and rerun (re-reading the max, which has since
advanced). Only that collision is retried, and only a bounded number of times.
"""
import asyncio
import functools
import logging
import random
from datetime import date

from order_engine.core.config import get_settings
from order_engine.core.errors import OrderNumberConflictError
from order_engine.db.interfaces import OrderStore

settings = get_settings()
logger = logging.getLogger(__name__)


class OrderNumberCollision(Exception):
    """Raised by the store when an insert or commit hits the order-number
    unique constraint: a concurrent transaction took the same number first.
    """
    pass


def format_order_number(prefix: str, sequence: int) -> str:
    return f"{prefix}-{sequence:03d}"


async def allocate_order_number(store: OrderStore, outlet_id: str, business_date: date,
                                prefix: str | None = None) -> tuple[int, str]:
    sequence = await store.next_order_sequence(outlet_id, business_date)
    return sequence, format_order_number(prefix or settings.ORDER_NUMBER_PREFIX, sequence)


def with_order_number_retry(max_attempts: int | None = None):
    """
    Decorator for an async function that runs one complete order-creation
    transaction. On OrderNumberCollision the function is called again, up to
    `max_attempts` calls in total; after that OrderNumberConflictError is
    raised for the caller to retry the request. Other errors pass through
    untouched.

    Usage:
        @with_order_number_retry()
        async def create_order_tx(uow, ...):
            ...
    """
    _max = max_attempts or settings.ORDER_NUMBER_MAX_ATTEMPTS

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(1, _max + 1):
                try:
                    return await func(*args, **kwargs)
                except OrderNumberCollision as exc:
                    if attempt == _max:
                        logger.error(
                            "Order number collision unresolved after %d attempts for %s",
                            _max, func.__name__,
                        )
                        raise OrderNumberConflictError() from exc
                    base_delay = settings.ORDER_NUMBER_RETRY_BASE_DELAY_MS / 1000.0
                    jitter = random.uniform(0, settings.ORDER_NUMBER_RETRY_JITTER_MS / 1000.0)
                    delay = base_delay * attempt + jitter
                    logger.warning(
                        "Order number collision on attempt %d/%d, retrying in %.3fs",
                        attempt, _max, delay,
                    )
                    await asyncio.sleep(delay)
        return wrapper
    return decorator
