from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Raised by routes, dependencies and services; rendered as ``{"error": {...}}``."""

    def __init__(
        self,
        *,
        status_code: int,
        code: str,
        message: str,
        details: object | None = None,
    ) -> None:
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details
        super().__init__(message)

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {"code": self.code, "message": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


def not_found(code: str, message: str) -> APIError:
    return APIError(status_code=status.HTTP_404_NOT_FOUND, code=code, message=message)


def success_response(data: object, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"data": data})


def error_response(exc: APIError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_payload()})


def _validation_details(exc: RequestValidationError) -> list[dict[str, object]]:
    # Raw pydantic errors may carry the rejected input and exception objects in ctx.
    return [
        {"field": ".".join(str(part) for part in error["loc"] if part != "body"), "message": error["msg"]}
        for error in exc.errors()
    ]


def add_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(APIError)
    async def handle_api_error(request: Request, exc: APIError) -> JSONResponse:
        logger.debug("API error path=%s code=%s status=%s", request.url.path, exc.code, exc.status_code)
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        return error_response(
            APIError(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                code="validation_error",
                message="Request validation failed",
                details=_validation_details(exc),
            )
        )

    @app.exception_handler(HTTPException)
    async def handle_http_error(_: Request, exc: HTTPException) -> JSONResponse:
        detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return error_response(APIError(status_code=exc.status_code, code="http_error", message=detail))

    @app.exception_handler(RedisError)
    async def handle_queue_error(request: Request, exc: RedisError) -> JSONResponse:
        logger.warning("Job queue unavailable path=%s error=%s", request.url.path, exc)
        return error_response(
            APIError(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                code="queue_unavailable",
                message="Job queue is unavailable",
            )
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error path=%s error=%s", request.url.path, exc, exc_info=exc)
        return error_response(
            APIError(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                code="internal_error",
                message="Internal server error",
            )
        )
