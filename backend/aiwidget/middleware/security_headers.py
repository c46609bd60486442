from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

WIDGET_PREFIX = "/api/widget/"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        # widget endpoints are called from third-party pages; everything else is admin only
        if not request.url.path.startswith(WIDGET_PREFIX):
            response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
            response.headers.setdefault(
                "Content-Security-Policy",
                "default-src 'self'; img-src 'self' data: https:; "
                "script-src 'self' 'unsafe-inline'; style-src 'self' 'unsafe-inline'",
            )
        return response
