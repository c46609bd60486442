"""
Per-project origin gate for the public widget endpoints.

The widget script is embedded on third-party pages, so browser requests are
only answered for origins on the project's allowlist. Requests without an
``Origin`` header (curl, server to server) pass through unchecked.
"""
import logging
import re
from typing import Iterable, Optional
from urllib.parse import urlsplit
from uuid import UUID

from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from aiwidget.db import SessionLocal
from aiwidget.exceptions import NotFoundError, OriginNotAllowed, error_body
from aiwidget.models import Project

logger = logging.getLogger(__name__)

WIDGET_PATH_RE = re.compile(r"^/api/widget/(?P<project_id>[^/]+)/")
ALLOW_METHODS = "GET,POST,OPTIONS"
ALLOW_HEADERS = "Content-Type"


def normalize_origin(value: Optional[str]) -> str:
    return (value or "").strip().rstrip("/").lower()


def origin_allowed(origin: str, allowed_origins: Optional[Iterable[str]]) -> bool:
    """
    Full origin match (scheme, host, port) or a bare host entry.

    An empty allowlist denies everything.
    """
    normalized = normalize_origin(origin)
    if not normalized:
        return False
    parts = urlsplit(normalized)
    hosts = {parts.netloc, parts.hostname or ""} - {""}

    for entry in allowed_origins or []:
        candidate = normalize_origin(entry)
        if not candidate:
            continue
        if "://" in candidate:
            if candidate == normalized:
                return True
        elif candidate in hosts:
            return True
    return False


def _load_allowed_origins(session_factory, project_id: UUID) -> Optional[list]:
    db = session_factory()
    try:
        project = db.query(Project).filter(Project.id == project_id).first()
        if project is None:
            return None
        return list(project.allowed_origins or [])
    finally:
        db.close()


class WidgetOriginMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        match = WIDGET_PATH_RE.match(request.url.path)
        origin = request.headers.get("origin")
        if match is None or not origin:
            return await call_next(request)

        raw_project_id = match.group("project_id")
        try:
            project_id = UUID(raw_project_id)
        except ValueError:
            project_id = None

        allowed = None
        if project_id is not None:
            session_factory = getattr(request.app.state, "session_factory", SessionLocal)
            allowed = await run_in_threadpool(_load_allowed_origins, session_factory, project_id)

        if allowed is None:
            error = NotFoundError("Project", raw_project_id)
            return JSONResponse(status_code=error.status_code, content=error_body(error))

        if not origin_allowed(origin, allowed):
            logger.warning(
                f"Widget origin rejected: {origin}",
                extra={"project_id": raw_project_id, "error_code": "origin_not_allowed", "path": request.url.path},
            )
            error = OriginNotAllowed(origin)
            return JSONResponse(status_code=error.status_code, content=error_body(error))

        cors_headers = {
            # exact value received, not the normalized form
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Credentials": "true",
            "Vary": "Origin",
        }

        if request.method == "OPTIONS":
            cors_headers["Access-Control-Allow-Methods"] = ALLOW_METHODS
            cors_headers["Access-Control-Allow-Headers"] = ALLOW_HEADERS
            return Response(status_code=204, headers=cors_headers)

        response = await call_next(request)
        for name, value in cors_headers.items():
            response.headers[name] = value
        return response
