from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ShadowAIError(Exception):
    """Base for every failure scoped to a single request or turn."""

    kind = "error"
    status_code = 500

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "detail": self.detail}


class AuthError(ShadowAIError):
    kind = "auth"
    status_code = 401
    redirect = "/auth"

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["redirect"] = self.redirect
        return body


class ValidationError(ShadowAIError):
    kind = "validation"
    status_code = 400


class NotFoundError(ShadowAIError):
    kind = "not_found"
    status_code = 404


class UpstreamError(ShadowAIError):
    """An external provider answered with a failure or could not be reached."""

    kind = "upstream"
    status_code = 502

    def __init__(
        self,
        detail: str,
        upstream_status: Optional[int] = None,
        upstream_message: Optional[str] = None,
    ) -> None:
        super().__init__(detail)
        self.upstream_status = upstream_status
        self.upstream_message = upstream_message


class ProtocolError(ShadowAIError):
    kind = "protocol"
    status_code = 502


class PersistenceError(ShadowAIError):
    kind = "persistence"
    status_code = 503


class CheckoutError(ShadowAIError):
    kind = "checkout"
    status_code = 502


async def _handle_shadowai_error(request: Request, exc: ShadowAIError) -> JSONResponse:
    if isinstance(exc, (ProtocolError, PersistenceError)):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail, exc_info=exc)
    elif isinstance(exc, UpstreamError):
        logger.warning(
            "%s %s upstream failure status=%s message=%s",
            request.method,
            request.url.path,
            exc.upstream_status,
            exc.upstream_message,
        )
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.kind, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ShadowAIError, _handle_shadowai_error)  # type: ignore[arg-type]
