"""
Audit logging for security events.
Records registrations, login attempts, rejected tokens and chat access
denials so they can be correlated after the fact.
"""
import logging
import json
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from enum import Enum

logger = logging.getLogger(__name__)


class AuditEventType(str, Enum):
    """Types of security audit events."""
    USER_REGISTERED = "user_registered"
    AUTH_SUCCESS = "auth_success"
    AUTH_FAILURE = "auth_failure"
    LOGOUT = "logout"
    TOKEN_INVALID = "token_invalid"
    AUTHZ_DENIED = "authorization_denied"


class AuditLogger:
    """
    Security audit logger.

    Each entry carries the event type, the identity involved (when known),
    the transport it arrived on, and free-form metadata.
    """

    @staticmethod
    def log_event(
        event_type: AuditEventType,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
        ip_address: Optional[str] = None,
        request_id: Optional[str] = None,
        success: bool = True,
        metadata: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None
    ) -> None:
        audit_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type.value,
            "success": success,
            "user_id": user_id,
            "email": email,
            "ip_address": ip_address,
            "request_id": request_id,
            "metadata": metadata or {},
            "error_message": error_message
        }

        log_level = logging.INFO if success else logging.WARNING
        logger.log(
            log_level,
            f"AUDIT: {event_type.value} | user={user_id} | ip={ip_address} | "
            f"success={success} | {json.dumps(audit_entry)}"
        )

    @staticmethod
    def log_registration(user_id: str, email: str, ip_address: Optional[str], request_id: Optional[str]) -> None:
        AuditLogger.log_event(
            event_type=AuditEventType.USER_REGISTERED,
            user_id=user_id,
            email=email,
            ip_address=ip_address,
            request_id=request_id
        )

    @staticmethod
    def log_auth_success(user_id: str, email: str, ip_address: Optional[str], request_id: Optional[str]) -> None:
        AuditLogger.log_event(
            event_type=AuditEventType.AUTH_SUCCESS,
            user_id=user_id,
            email=email,
            ip_address=ip_address,
            request_id=request_id
        )

    @staticmethod
    def log_auth_failure(email: Optional[str], ip_address: Optional[str], request_id: Optional[str], reason: str) -> None:
        AuditLogger.log_event(
            event_type=AuditEventType.AUTH_FAILURE,
            email=email,
            ip_address=ip_address,
            request_id=request_id,
            success=False,
            error_message=reason
        )

    @staticmethod
    def log_logout(user_id: str, ip_address: Optional[str], request_id: Optional[str]) -> None:
        AuditLogger.log_event(
            event_type=AuditEventType.LOGOUT,
            user_id=user_id,
            ip_address=ip_address,
            request_id=request_id
        )

    @staticmethod
    def log_token_invalid(transport: str, reason: str, ip_address: Optional[str] = None) -> None:
        """Log a bearer token that failed verification."""
        AuditLogger.log_event(
            event_type=AuditEventType.TOKEN_INVALID,
            ip_address=ip_address,
            success=False,
            metadata={"transport": transport},
            error_message=reason
        )

    @staticmethod
    def log_authorization_denied(user_id: str, chat_id: str, action: str) -> None:
        """Log an identity refused access to a chat."""
        AuditLogger.log_event(
            event_type=AuditEventType.AUTHZ_DENIED,
            user_id=user_id,
            success=False,
            metadata={"resource": f"chat:{chat_id}", "action": action},
            error_message="Not a participant of this chat"
        )


# Global audit logger instance
audit_logger = AuditLogger()
