"""Error kinds surfaced to API callers and the handlers that render them."""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class TaskhubError(Exception):
    status_code = 500
    message = "Server error"

    def __init__(self, message: str | None = None, data: Any = None):
        if message is not None:
            self.message = message
        self.data = {} if data is None else data
        super().__init__(self.message)


class ValidationError(TaskhubError):
    """A required field is missing on a write."""

    status_code = 400
    message = "Bad Request"


class MalformedQuery(TaskhubError):
    """A query parameter could not be parsed or names something unknown."""

    status_code = 400
    message = "Bad Request"

    def __init__(self, detail: str):
        super().__init__(data=detail)
        self.detail = detail

    def __str__(self) -> str:
        return self.detail


class NotFound(TaskhubError):
    status_code = 404
    message = "Not found"


class UniquenessViolation(TaskhubError):
    status_code = 400
    message = "Email already exists"


class StoreFailure(TaskhubError):
    status_code = 500
    message = "Server error"


def envelope(status_code: int, message: str, data: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message, "data": data})


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(TaskhubError)
    async def taskhub_error_handler(request: Request, exc: TaskhubError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return envelope(exc.status_code, exc.message, exc.data)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        detail = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        )
        return envelope(400, "Bad Request", detail)

    @app.exception_handler(SQLAlchemyError)
    async def store_error_handler(request: Request, exc: SQLAlchemyError):
        logger.exception("Store failure on %s %s", request.method, request.url.path)
        failure = StoreFailure()
        return envelope(failure.status_code, failure.message, failure.data)
