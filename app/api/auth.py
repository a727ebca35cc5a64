"""
Account authentication endpoints.
Registration and email/password login issue a signed bearer token valid for
seven days. Includes audit logging for security events.
"""
import logging
from fastapi import APIRouter, Depends, status, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from api.dependencies import get_db, get_current_user, get_credential_service
from api.metrics import auth_requests_total
from api.schemas import AuthPayload, LoginRequest, RegisterRequest, UserResponse
from core.audit_logger import audit_logger
from core.exceptions import AuthenticationError, ValidationError
from core.security import CredentialService, hash_password, verify_password
from db.models import User
from db.repository import UserRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

MIN_PASSWORD_LENGTH = 6


def _request_meta(request: Request):
    ip_address = request.client.host if request.client else "unknown"
    request_id = getattr(request.state, "request_id", "unknown")
    return ip_address, request_id


def _issue(user: User, credentials: CredentialService) -> AuthPayload:
    token = credentials.sign({"userId": user.id, "email": user.email})
    return AuthPayload(token=token, user=UserResponse.from_model(user))


def _duplicate_error(existing: User, email: str) -> ValidationError:
    if existing.email == email:
        return ValidationError("User with this email already exists")
    return ValidationError("User with this username already exists")


@router.post("/register", response_model=AuthPayload, status_code=status.HTTP_200_OK)
def register(
    request_body: RegisterRequest,
    request: Request,
    db: Session = Depends(get_db),
    credentials: CredentialService = Depends(get_credential_service)
):
    """
    Create an account and sign the new user in.

    The email is stored lowercased and trimmed; the username is trimmed.

    Raises:
        ValidationError: missing fields, short password, or duplicate
            email/username

    Example:
        POST /auth/register
        {
            "username": "alice",
            "email": "alice@example.com",
            "password": "secret1"
        }
    """
    ip_address, request_id = _request_meta(request)
    username = request_body.username.strip()
    email = request_body.email.strip().lower()
    password = request_body.password

    if not username or not email or not password:
        auth_requests_total.labels(type="register", status="rejected").inc()
        raise ValidationError("All fields are required")
    if len(password) < MIN_PASSWORD_LENGTH:
        auth_requests_total.labels(type="register", status="rejected").inc()
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    repository = UserRepository(db)
    existing = repository.find_user_by_email_or_username(email, username)
    if existing:
        auth_requests_total.labels(type="register", status="rejected").inc()
        raise _duplicate_error(existing, email)

    try:
        user = repository.create_user(username, email, hash_password(password))
    except IntegrityError:
        # Lost a race with a concurrent registration of the same email/username
        db.rollback()
        auth_requests_total.labels(type="register", status="rejected").inc()
        existing = repository.find_user_by_email_or_username(email, username)
        if existing:
            raise _duplicate_error(existing, email)
        raise ValidationError("User with this email or username already exists")

    logger.info(f"Registered user {user.username} (user_id={user.id})")
    audit_logger.log_registration(
        user_id=user.id,
        email=user.email,
        ip_address=ip_address,
        request_id=request_id
    )
    auth_requests_total.labels(type="register", status="success").inc()
    return _issue(user, credentials)


@router.post("/login", response_model=AuthPayload, status_code=status.HTTP_200_OK)
def login(
    request_body: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    credentials: CredentialService = Depends(get_credential_service)
):
    """
    Exchange email and password for a bearer token.

    Unknown email and wrong password fail identically.

    Raises:
        AuthenticationError: credentials do not match an account
    """
    ip_address, request_id = _request_meta(request)
    email = request_body.email.strip().lower()

    user = UserRepository(db).get_user_by_email(email) if email else None
    if not user or not verify_password(request_body.password, user.password):
        logger.warning(f"Failed login attempt for email: {email}")
        audit_logger.log_auth_failure(
            email=email,
            ip_address=ip_address,
            request_id=request_id,
            reason="Invalid email or password"
        )
        auth_requests_total.labels(type="login", status="failure").inc()
        raise AuthenticationError("Invalid email or password")

    audit_logger.log_auth_success(
        user_id=user.id,
        email=user.email,
        ip_address=ip_address,
        request_id=request_id
    )
    auth_requests_total.labels(type="login", status="success").inc()
    return _issue(user, credentials)


@router.post("/logout", response_model=bool, status_code=status.HTTP_200_OK)
def logout(request: Request, current_user: User = Depends(get_current_user)):
    """
    Sign out. Tokens are stateless, so this only records the event; the
    client discards its token.
    """
    ip_address, request_id = _request_meta(request)
    audit_logger.log_logout(user_id=current_user.id, ip_address=ip_address, request_id=request_id)
    return True


@router.get("/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)):
    """The authenticated user."""
    return UserResponse.from_model(current_user)
