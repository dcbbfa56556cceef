"""
System administrator allow-list.

Grants cross-tenant privileges by email. The gate is the single source of
truth for system-admin status: no tenant role implies it and it is never
derived from membership data.

One instance is built at startup from SYSTEM_ADMIN_EMAILS and kept on
app.state. Runtime additions are guarded by a lock but live only in this
process; other instances pick them up on their next restart. Admin grants
are rare, operator-driven actions, so that drift is accepted.
"""

import logging
import threading
from typing import Any, Iterable, List, Optional

logger = logging.getLogger(__name__)


def _normalize(email: Optional[str]) -> str:
    if not isinstance(email, str):
        return ""
    return email.strip().lower()


class SystemAdminGate:
    """Process-wide, case-insensitive allow-list of admin emails."""
    
    def __init__(self, emails: Optional[Iterable[str]] = None):
        self._lock = threading.Lock()
        self._emails: List[str] = []
        for email in emails or ():
            self.add_system_admin(email)
    
    def is_system_admin(self, email: Optional[str]) -> bool:
        """Empty or missing input is never an admin."""
        normalized = _normalize(email)
        if not normalized:
            return False
        with self._lock:
            return normalized in self._emails
    
    def is_user_system_admin(self, user: Any) -> bool:
        """
        Null-safe check for a possibly-absent user object.
        
        Accepts model instances, dicts or None; anything without an email
        is not an admin.
        """
        if user is None:
            return False
        if isinstance(user, dict):
            email = user.get("email")
        else:
            email = getattr(user, "email", None)
        if not email:
            return False
        return self.is_system_admin(email)
    
    def add_system_admin(self, email: str) -> bool:
        """
        Add an email to the allow-list (idempotent).
        
        Returns:
            True if the email was newly added
        """
        normalized = _normalize(email)
        if not normalized:
            return False
        with self._lock:
            if normalized in self._emails:
                return False
            self._emails.append(normalized)
        logger.warning(f"System admin granted: {normalized}")
        return True
    
    def remove_system_admin(self, email: str) -> bool:
        normalized = _normalize(email)
        with self._lock:
            if normalized not in self._emails:
                return False
            self._emails.remove(normalized)
        logger.warning(f"System admin revoked: {normalized}")
        return True
    
    def get_system_admin_emails(self) -> List[str]:
        """Copy of the allow-list."""
        with self._lock:
            return list(self._emails)
