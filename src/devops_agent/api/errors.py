"""HTTP error envelope and exception handlers.

Every error response has the shape::

    {"error": "...", "timestamp": "2024-01-01T00:00:00+00:00", "request_id": "..."}

In production the message is the error class's ``public_message``; in
development it is the detailed message.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Tuple, Type

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.devops_agent.errors import (
    ConfirmationExpiredError,
    ConfirmationMismatchError,
    ConflictError,
    DevOpsAgentError,
    NoFilesAvailableError,
    NoPreviousRevisionError,
    NotFoundError,
    OperationTimeoutError,
    RevisionImageMissingError,
    TaskCancelledError,
    TaskFailedError,
    UpstreamError,
    ValidationError,
)
from src.devops_agent.tasks.machine import InvalidTransitionError


logger = logging.getLogger(__name__)


REQUEST_ID_HEADER = "X-Request-Id"

# Checked in order; subclasses come before their bases
STATUS_BY_ERROR: List[Tuple[Type[DevOpsAgentError], int]] = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (NoPreviousRevisionError, 422),
    (RevisionImageMissingError, 422),
    (NoFilesAvailableError, 422),
    (ConflictError, 409),
    (ConfirmationMismatchError, 409),
    (ConfirmationExpiredError, 409),
    (TaskCancelledError, 409),
    (InvalidTransitionError, 409),
    (OperationTimeoutError, 504),
    (UpstreamError, 502),
]


def _origin_type(exc: DevOpsAgentError) -> Type[BaseException]:
    if isinstance(exc, TaskFailedError):
        return exc.error_type
    return type(exc)


def status_code_for(exc: DevOpsAgentError) -> int:
    origin = _origin_type(exc)
    for error_type, status_code in STATUS_BY_ERROR:
        if issubclass(origin, error_type):
            return status_code
    return 500


def request_id_for(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id is None:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
    return request_id


def _is_production(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return settings is not None and settings.is_production


def error_response(request: Request, status_code: int, message: str) -> JSONResponse:
    request_id = request_id_for(request)
    return JSONResponse(
        status_code=status_code,
        content={
            "error": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request_id": request_id,
        },
        headers={REQUEST_ID_HEADER: request_id},
    )


async def agent_error_handler(request: Request, exc: DevOpsAgentError) -> JSONResponse:
    status_code = status_code_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "Request failed",
        extra={
            "path": request.url.path,
            "status_code": status_code,
            "error_type": _origin_type(exc).__name__,
            "error": exc.message,
            "request_id": request_id_for(request),
        },
    )
    message = exc.public_message if _is_production(request) else exc.message
    return error_response(request, status_code, message)


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    if _is_production(request):
        return error_response(request, 400, ValidationError.public_message)

    problems = "; ".join(
        f"{'.'.join(str(p) for p in error.get('loc', ()))}: {error.get('msg')}"
        for error in exc.errors()
    )
    return error_response(request, 400, f"Invalid request: {problems}")


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled error",
        extra={"path": request.url.path, "request_id": request_id_for(request)},
    )
    message = (
        DevOpsAgentError.public_message if _is_production(request) else str(exc)
    )
    return error_response(request, 500, message)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DevOpsAgentError, agent_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
