"""
Domain error taxonomy.

Services raise these exceptions; the HTTP layer (api/errors.py) and the
WebSocket endpoint translate them into responses and error frames.
"""
from fastapi import status


class ChatError(Exception):
    """Base class for expected, caller-visible failures."""

    code = "INTERNAL_SERVER_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ChatError):
    """Malformed or incomplete input."""

    code = "BAD_USER_INPUT"
    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(ChatError):
    """Missing or invalid identity."""

    code = "UNAUTHENTICATED"
    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenError(ChatError):
    """Valid identity without rights to the resource."""

    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(ChatError):
    """Referenced entity does not exist."""

    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidCredentialError(Exception):
    """
    Token failed signature or expiry verification.

    Deliberately not a ChatError: callers must convert it into an
    AuthenticationError so the remote side never learns why a token failed.
    """
