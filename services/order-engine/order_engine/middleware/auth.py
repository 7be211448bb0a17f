"""
Order Engine — JWT Authentication Middleware

Tokens are issued by the identity service; this side only verifies them.
Claims used here:
  sub        staff id, recorded as created_by / processed_by
  outlet_id  outlet the staff member belongs to
  role       OWNER may act on any outlet, every other role only on its own

401 for a missing/invalid token, 403 for an outlet the token does not cover.
"""
import logging
import re

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware

from order_engine.core import security

logger = logging.getLogger(__name__)

PUBLIC_PATHS = {"/", "/health", "/docs", "/openapi.json"}

OUTLET_PATH = re.compile(r"^/outlets/(?P<outlet_id>[^/]+)")


def _error(status_code: int, detail: str, code: str) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(status_code=status_code, content={"detail": detail, "code": code}, headers=headers)


class JWTAuthMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        if request.method == "OPTIONS" or path in PUBLIC_PATHS or path.startswith("/metrics"):
            return await call_next(request)

        scheme, _, token = request.headers.get("Authorization", "").partition(" ")
        if scheme.lower() != "bearer" or not token:
            return _error(401, "Missing or invalid Authorization header. Expected: Bearer <token>", "unauthorized")

        try:
            claims = security.decode_token(token)
        except JWTError as exc:
            return _error(401, f"Invalid or expired JWT: {exc}", "unauthorized")
        if not claims.get("sub"):
            return _error(401, "JWT is missing the 'sub' claim", "unauthorized")

        match = OUTLET_PATH.match(path)
        if match and not security.outlet_allowed(claims, match["outlet_id"]):
            logger.info("Staff %s denied access to outlet %s", claims["sub"], match["outlet_id"])
            return _error(403, "access denied for this outlet", "outlet_forbidden")

        request.state.user = claims
        return await call_next(request)
