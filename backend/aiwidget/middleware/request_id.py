"""
Request ID tracking middleware for log correlation.
"""
import uuid
import time
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import logging

from aiwidget.utils.logging import request_id_var

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Tag every request with an ID (taken from ``X-Request-ID`` when the
    caller sends one) and log its start, completion and duration.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)

        start = time.time()
        logger.info(
            "Request started",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "status": "started",
            },
        )

        try:
            response: Response = await call_next(request)
        except Exception as e:
            duration_ms = int((time.time() - start) * 1000)
            logger.error(
                f"Request failed: {str(e)}",
                extra={"request_id": request_id, "path": request.url.path, "duration_ms": duration_ms},
                exc_info=True,
            )
            raise
        finally:
            request_id_var.reset(token)

        response.headers["X-Request-ID"] = request_id
        # for event streams this measures time to first byte
        duration_ms = int((time.time() - start) * 1000)
        logger.info(
            "Request completed",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response
