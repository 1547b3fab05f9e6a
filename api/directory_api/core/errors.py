from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from fastapi import FastAPI, HTTPException, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_PARAMS = "INVALID_PARAMS"
    AGENCY_NOT_FOUND = "AGENCY_NOT_FOUND"
    AGENCY_ALREADY_CLAIMED = "AGENCY_ALREADY_CLAIMED"
    PENDING_CLAIM_EXISTS = "PENDING_CLAIM_EXISTS"
    DATABASE_ERROR = "DATABASE_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


_STATUS_CODES: dict[int, ErrorCode] = {
    status.HTTP_400_BAD_REQUEST: ErrorCode.VALIDATION_ERROR,
    status.HTTP_401_UNAUTHORIZED: ErrorCode.UNAUTHORIZED,
    status.HTTP_403_FORBIDDEN: ErrorCode.FORBIDDEN,
    status.HTTP_404_NOT_FOUND: ErrorCode.NOT_FOUND,
    status.HTTP_405_METHOD_NOT_ALLOWED: ErrorCode.NOT_FOUND,
    status.HTTP_409_CONFLICT: ErrorCode.VALIDATION_ERROR,
    status.HTTP_422_UNPROCESSABLE_ENTITY: ErrorCode.VALIDATION_ERROR,
    status.HTTP_503_SERVICE_UNAVAILABLE: ErrorCode.SERVICE_UNAVAILABLE,
}


class ApiError(HTTPException):
    """HTTP error rendered as ``{"error": {"code", "message", "details"}}``."""

    def __init__(
        self,
        status_code: int,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=message)
        self.code = code
        self.message = message
        self.details = details


def not_found(message: str, code: ErrorCode = ErrorCode.NOT_FOUND) -> ApiError:
    return ApiError(status.HTTP_404_NOT_FOUND, code, message)


def unavailable(message: str) -> ApiError:
    return ApiError(status.HTTP_503_SERVICE_UNAVAILABLE, ErrorCode.SERVICE_UNAVAILABLE, message)


def database_error(message: str) -> ApiError:
    return ApiError(status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorCode.DATABASE_ERROR, message)


def invalid_params(exc: ValidationError) -> ApiError:
    issues = [{"path": list(error["loc"]), "message": error["msg"]} for error in exc.errors()]
    return ApiError(status.HTTP_400_BAD_REQUEST, ErrorCode.INVALID_PARAMS, "Invalid query parameters", {"issues": issues})


def error_body(code: ErrorCode | str, message: str, details: Any = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"code": code.value if isinstance(code, ErrorCode) else code, "message": message}
    if details is not None:
        payload["details"] = details
    return {"error": payload}


def _format_validation_details(exc: RequestValidationError) -> dict[str, str]:
    details: dict[str, str] = {}
    for issue in exc.errors():
        location = [str(part) for part in issue.get("loc", ()) if part not in {"body", "query", "path"}]
        key = ".".join(location) or "body"
        details.setdefault(key, str(issue.get("msg", "invalid value")))
    return details


async def _api_error_handler(_: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(error_body(exc.code, exc.message, exc.details)),
        headers=exc.headers,
    )


async def _http_error_handler(_: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(code, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def _validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(ErrorCode.VALIDATION_ERROR, "Validation failed", _format_validation_details(exc)),
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error method=%s path=%s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(ErrorCode.INTERNAL_ERROR, "An unexpected error occurred"),
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, _api_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
