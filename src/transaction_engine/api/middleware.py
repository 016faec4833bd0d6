"""FastAPI middleware for request tracing and error handling.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — domain exceptions -> the engine's error payload
    3. CORSMiddleware — browser clients

Every failure is rendered as::

    {"success": false, "error": {"message": ..., "code": ..., **extra}}
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from transaction_engine.domain.exceptions import (
    AcceptedOfferRequiredError,
    BlockingConditionsError,
    RequiredResolutionsNeededError,
    ResolutionFailedError,
    WorkflowError,
)
from transaction_engine.logging_config import bind_request_context

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

# Data-carrying outcomes the UI handles as a normal branch.
_EXPECTED_OUTCOMES = (
    BlockingConditionsError,
    RequiredResolutionsNeededError,
    AcceptedOfferRequiredError,
    ResolutionFailedError,
)


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Use client-provided ID or generate one
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        bind_request_context(request_id)

        response = await call_next(request)
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
        except _EXPECTED_OUTCOMES as exc:
            logger.info("workflow.refused", code=exc.code, error=exc.message)
            return JSONResponse(status_code=exc.http_status, content=exc.to_payload())
        except WorkflowError as exc:
            logger.warning("workflow.error", code=exc.code, error=exc.message)
            return JSONResponse(status_code=exc.http_status, content=exc.to_payload())
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "error": {
                        "message": "An unexpected error occurred",
                        "code": "E_INTERNAL_ERROR",
                    },
                },
            )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render FastAPI's request validation failures in the engine's error shape."""
    details = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    logger.info("request.invalid", errors=len(details))
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error": {
                "message": "Request validation failed",
                "code": "E_VALIDATION_FAILED",
                "details": details,
            },
        },
    )


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Order matters — middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # CORS (runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Tighten in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handling (runs second)
    app.add_middleware(ErrorHandlerMiddleware)

    # Request ID (runs last = outermost)
    app.add_middleware(RequestIDMiddleware)
