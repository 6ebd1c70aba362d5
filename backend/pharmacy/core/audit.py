"""
Audit logging for authentication and stock-affecting operations.

One JSON line per event on the "audit" logger so the trail can be shipped to
central logging. Passwords and tokens are never logged.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

audit_logger = logging.getLogger("audit")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AuditLog:
    """Central audit logging for security-critical events."""

    @staticmethod
    def log_authentication(
        action: str,  # "login", "logout", "register", "failed_login"
        login: str,
        ip_address: str,
        success: bool,
        reason: str = "",
    ):
        """
        Log authentication events.

        Usage:
            AuditLog.log_authentication("login", "frontdesk", "192.168.1.1", True)
            AuditLog.log_authentication("failed_login", "frontdesk", "192.168.1.1", False, reason="Invalid password")
        """
        log_entry = {
            "timestamp": _now(),
            "event_type": f"auth.{action}",
            "login": login,
            "ip_address": ip_address,
            "success": success,
        }
        if reason and not success:
            log_entry["reason"] = reason

        if success:
            audit_logger.info(json.dumps(log_entry))
        else:
            audit_logger.warning(json.dumps(log_entry))

    @staticmethod
    def log_action(
        action: str,  # "create", "update", "delete", "status"
        resource_type: str,  # "drug", "sale", "user"
        resource_id: int,
        user_id: int,
        pharmacy_id: int,
        changes: Optional[Dict[str, Any]] = None,
    ):
        """
        Log a business action with who did it, in which pharmacy and what changed.

        Usage:
            AuditLog.log_action("create", "sale", 12, user_id=1, pharmacy_id=1, changes={"sale_number": "SL0012"})
        """
        log_entry = {
            "timestamp": _now(),
            "event_type": f"{resource_type}.{action}",
            "user_id": user_id,
            "pharmacy_id": pharmacy_id,
            "resource_id": resource_id,
        }
        if changes:
            log_entry["changes"] = changes

        audit_logger.info(json.dumps(log_entry, default=str))

    @staticmethod
    def log_access_denied(
        action: str,
        resource_type: str,
        user_id: int,
        reason: str,
    ):
        """Log denied access attempts, e.g. a cashier trying to add staff."""
        log_entry = {
            "timestamp": _now(),
            "event_severity": "WARNING",
            "event_type": "access_denied",
            "action": action,
            "resource_type": resource_type,
            "user_id": user_id,
            "reason": reason,
        }
        audit_logger.warning(json.dumps(log_entry))
