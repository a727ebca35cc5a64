"""
HTTP rendering of domain errors.

Every ChatError becomes ``{"detail": <message>, "code": <code>}`` with the
error's status code. Anything else is logged and answered with an opaque
500 so internal details never reach the client.
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from api.schemas import ErrorResponse
from core.exceptions import AuthenticationError, ChatError

logger = logging.getLogger(__name__)

# OpenAPI documentation of the error body shared by the HTTP routers
ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid input"},
    401: {"model": ErrorResponse, "description": "Missing or invalid bearer token"},
    403: {"model": ErrorResponse, "description": "Not a participant of the chat"},
    404: {"model": ErrorResponse, "description": "Resource not found"},
}


def error_body(message: str, code: str) -> dict:
    return {"detail": message, "code": code}


def register_error_handlers(app: FastAPI) -> None:
    """Install the domain error handlers on an application."""

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
        headers = None
        if isinstance(exc, AuthenticationError):
            headers = {"WWW-Authenticate": "Bearer"}
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.message, exc.code),
            headers=headers
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body("Internal server error", ChatError.code)
        )
