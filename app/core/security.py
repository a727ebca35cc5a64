"""
Security utilities for password hashing and JWT bearer tokens.
Uses bcrypt for secure password hashing.
Uses python-jose for JWT token generation and validation.
"""
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError

from core.config import settings
from core.exceptions import InvalidCredentialError


BEARER_PREFIX = re.compile(r"^bearer\s+", re.IGNORECASE)


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password to hash

    Returns:
        Hashed password as a string
    """
    password_bytes = password.encode('utf-8')
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    hashed = bcrypt.hashpw(password_bytes, salt)
    return hashed.decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash.

    Args:
        plain_password: Plain text password to verify
        hashed_password: Previously hashed password

    Returns:
        True if password matches, False otherwise
    """
    password_bytes = plain_password.encode('utf-8')
    hashed_bytes = hashed_password.encode('utf-8')
    return bcrypt.checkpw(password_bytes, hashed_bytes)


def strip_bearer(value: Optional[str]) -> Optional[str]:
    """
    Extract the token from a "Bearer <token>" header value.

    The scheme is matched case-insensitively. Returns None when the value
    carries no token.
    """
    if not isinstance(value, str):
        return None
    return BEARER_PREFIX.sub("", value.lstrip(), count=1).strip() or None


class CredentialService:
    """
    Issues and verifies signed bearer tokens encoding a subject identity.

    Claims carry ``userId`` and ``email``; ``iat`` and ``exp`` are added on
    signing.
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        expires_in: timedelta = timedelta(days=7)
    ):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expires_in = expires_in

    def sign(self, claims: Dict[str, Any]) -> str:
        """
        Sign a token for the given claims.

        Args:
            claims: Payload claims (must include userId)

        Returns:
            Encoded JWT string
        """
        now = datetime.now(timezone.utc)
        payload = dict(claims)
        payload["iat"] = int(now.timestamp())
        payload["exp"] = int((now + self.expires_in).timestamp())
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> Dict[str, Any]:
        """
        Decode and validate a token.

        Args:
            token: JWT string

        Returns:
            Decoded claims

        Raises:
            InvalidCredentialError: bad signature, malformed token, expiry,
                or missing subject claim
        """
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError as e:
            raise InvalidCredentialError("Token has expired") from e
        except JWTError as e:
            raise InvalidCredentialError("Token signature is invalid") from e

        if not payload.get("userId"):
            raise InvalidCredentialError("Token has no subject")
        return payload


credential_service = CredentialService(
    secret_key=settings.jwt_secret_key,
    algorithm=settings.jwt_algorithm,
    expires_in=timedelta(days=settings.token_expiry_days)
)
