"""
Structured logging for authentication security events.

Verification failure reasons are written here for operators; clients only
ever see a generic message.
"""

import logging
import json
from typing import Dict, Any, Optional

from .models import utc_now


class SecurityLogger:
    """Structured security event logger."""

    def __init__(self, name: str = "passkey_auth.security"):
        self.logger = logging.getLogger(name)

    def _log_security_event(
        self,
        event_type: str,
        email: Optional[str] = None,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        success: bool = True,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log a structured security event."""
        event = {
            "timestamp": utc_now().isoformat(),
            "event_type": event_type,
            "success": success,
            "email": email,
            "user_id": user_id,
            "ip_address": ip_address,
            "user_agent": user_agent[:100] if user_agent else None,  # Truncate
            "details": details or {}
        }

        # Remove None values
        event = {k: v for k, v in event.items() if v is not None}

        if success:
            self.logger.info(json.dumps(event, default=str))
        else:
            self.logger.warning(json.dumps(event, default=str))

    def webauthn_event(
        self,
        email: str,
        action: str,
        success: bool,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log a WebAuthn ceremony step (register_begin, login_finish, ...)."""
        self._log_security_event(
            event_type="webauthn_event",
            email=email,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            success=success,
            details={**(details or {}), "action": action}
        )

    def password_event(
        self,
        email: str,
        action: str,
        success: bool,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log password registration or login."""
        self._log_security_event(
            event_type="password_event",
            email=email,
            ip_address=ip_address,
            user_agent=user_agent,
            success=success,
            details={**(details or {}), "action": action}
        )

    def security_violation(
        self,
        violation_type: str,
        email: Optional[str] = None,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log security violation (counter regression, challenge replay, foreign credential)."""
        self._log_security_event(
            event_type="security_violation",
            email=email,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            success=False,
            details={**(details or {}), "violation_type": violation_type}
        )


# Global security logger instance
security_logger = SecurityLogger()
