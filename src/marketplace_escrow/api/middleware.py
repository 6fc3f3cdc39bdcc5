"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — catches domain exceptions -> structured JSON errors
    3. CORSMiddleware — handles browser-based clients
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from marketplace_escrow.domain.exceptions import (
    DuplicateResolutionError,
    EscrowError,
    InputValidationError,
    InsufficientBalanceError,
    InvalidTransitionError,
    NotFoundError,
    NotParticipantError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

    from marketplace_escrow.config import Settings

logger = structlog.get_logger(__name__)


def _error_response(status_code: int, exc: EscrowError, **extra: object) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "message": exc.message, **extra},
    )


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag every request with an X-Request-ID and log its outcome."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "request.completed",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------
class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch domain exceptions and return structured JSON error responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except NotFoundError as exc:
            logger.warning("record.not_found", kind=exc.kind, record_id=exc.record_id)
            return _error_response(404, exc)
        except DuplicateResolutionError as exc:
            logger.warning(
                "resolution.duplicate",
                subject=exc.subject,
                subject_id=exc.subject_id,
                current=exc.current_state,
            )
            return _error_response(409, exc)
        except InvalidTransitionError as exc:
            logger.warning(
                "state_machine.invalid_transition",
                current=exc.current_state,
                attempted=exc.attempted,
            )
            return _error_response(409, exc)
        except InsufficientBalanceError as exc:
            logger.warning(
                "ledger.insufficient_balance",
                user_id=exc.user_id,
                required=exc.required,
                available=exc.available,
            )
            return _error_response(402, exc)
        except NotParticipantError as exc:
            logger.warning("request.not_participant", user_id=exc.user_id, role=exc.role)
            return _error_response(403, exc)
        except InputValidationError as exc:
            logger.info("request.invalid_input", field=exc.field, error=exc.message)
            return _error_response(422, exc, field=exc.field)
        except EscrowError as exc:
            logger.error("domain.error", error=exc.message, code=exc.code)
            return _error_response(400, exc)
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                },
            )


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware on the FastAPI application.

    Middleware is applied bottom-up: the last one added is the outermost.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials="*" not in settings.cors_allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)
