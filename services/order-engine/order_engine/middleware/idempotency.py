"""
Order Engine — Idempotency Key Middleware

Order creation and payment capture are the two calls a flaky tablet
connection must be able to resend safely. When the client sends an
Idempotency-Key header:
  - Key claimed (SET NX) → run the handler, store status + body for the key TTL
  - Stored response      → return it (X-Idempotency-Replay: true)
  - Still in flight      → 409 idempotency_in_progress, the handler is not run

Keys are scoped by path so the same key on two different orders never
replays the wrong response. 5xx responses are not stored and release the
claim; the client is expected to retry those.
"""
import json
import logging
import re

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware

from order_engine.core import redis_client
from order_engine.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

IDEMPOTENCY_PREFIX = "idempotent:"
IDEMPOTENCY_METHODS = {"POST"}
IDEMPOTENCY_PATHS = (
    re.compile(r"^/outlets/[^/]+/orders/?$"),
    re.compile(r"^/outlets/[^/]+/orders/[^/]+/payments/?$"),
)
IN_FLIGHT = "__in_flight__"


def is_idempotent_route(method: str, path: str) -> bool:
    return method in IDEMPOTENCY_METHODS and any(p.match(path) for p in IDEMPOTENCY_PATHS)


def cache_key(path: str, idem_key: str) -> str:
    return f"{IDEMPOTENCY_PREFIX}{path.rstrip('/')}:{idem_key}"


async def _release(redis, key: str) -> None:
    try:
        await redis.delete(key)
    except RedisError as exc:
        # The in-flight TTL clears it eventually.
        logger.error("Failed to release idempotency key %s: %s", key, exc)


class IdempotencyMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        if not is_idempotent_route(request.method, request.url.path):
            return await call_next(request)

        idem_key = request.headers.get("Idempotency-Key")
        if not idem_key:
            return await call_next(request)

        key = cache_key(request.url.path, idem_key)
        redis = redis_client.get_redis()

        try:
            claimed = await redis.set(key, IN_FLIGHT, nx=True, ex=settings.IDEMPOTENCY_IN_FLIGHT_TTL_SECONDS)
            cached = None if claimed else await redis.get(key)
        except RedisError as exc:
            # Without the cache a resend could create a second order or payment.
            logger.warning("Idempotency cache unavailable: %s", exc)
            return JSONResponse(
                status_code=503,
                content={"detail": "idempotency cache unavailable, please retry",
                         "code": "idempotency_unavailable"},
            )

        if not claimed:
            if cached is None or cached == IN_FLIGHT:
                logger.info("Idempotent request %s is still in flight", key)
                return JSONResponse(
                    status_code=409,
                    content={"detail": "a request with this Idempotency-Key is still being processed",
                             "code": "idempotency_in_progress"},
                )
            data = json.loads(cached)
            logger.info("Replaying idempotent response for %s", key)
            return JSONResponse(
                content=data["body"],
                status_code=data["status_code"],
                headers={"X-Idempotency-Replay": "true"},
            )

        try:
            response = await call_next(request)
            body_bytes = b""
            async for chunk in response.body_iterator:
                body_bytes += chunk
        except BaseException:
            await _release(redis, key)
            raise

        if response.status_code < 500:
            try:
                body = json.loads(body_bytes)
            except ValueError:
                body = body_bytes.decode("utf-8", errors="replace")
            try:
                await redis.setex(
                    key,
                    settings.IDEMPOTENCY_KEY_TTL_SECONDS,
                    json.dumps({"body": body, "status_code": response.status_code}),
                )
            except RedisError as exc:
                logger.error("Failed to store idempotent response for %s: %s", key, exc)
        else:
            await _release(redis, key)

        return Response(
            content=body_bytes,
            status_code=response.status_code,
            media_type=response.media_type,
            headers=dict(response.headers),
        )
