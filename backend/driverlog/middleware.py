from __future__ import annotations

import hmac

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from .config import settings

ADMIN_PREFIX = "/admin"
ADMIN_PIN_HEADER = "X-Admin-Pin"


class AdminPinMiddleware(BaseHTTPMiddleware):
    """Deny admin routes unless the request carries the configured PIN."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        if not self._is_admin_path(request.url.path):
            return await call_next(request)
        supplied = request.headers.get(ADMIN_PIN_HEADER, "")
        if not self._pin_matches(supplied):
            return JSONResponse({"detail": "Access denied"}, status_code=403)
        return await call_next(request)

    def _is_admin_path(self, path: str) -> bool:
        return path == ADMIN_PREFIX or path.startswith(ADMIN_PREFIX + "/")

    def _pin_matches(self, supplied: str) -> bool:
        if not settings.admin_pin or not supplied:
            return False
        return hmac.compare_digest(supplied.encode(), settings.admin_pin.encode())
