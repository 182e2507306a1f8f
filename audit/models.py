"""
audit/models.py -- Domain dataclasses for the audit trail.

Pure data containers. AuditStore does the persistence, AuditLogger decides
when to write.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime


class AuditAction(str, enum.Enum):
    """Closed set of security-relevant events. Unknown actions are dropped."""

    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    OTP_VERIFICATION_SUCCESS = "OTP_VERIFICATION_SUCCESS"
    OTP_VERIFICATION_FAILURE = "OTP_VERIFICATION_FAILURE"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    USERNAME_CHANGE = "USERNAME_CHANGE"
    LOGOUT = "LOGOUT"
    PROFILE_IMAGE_UPLOAD = "PROFILE_IMAGE_UPLOAD"
    PROFILE_IMAGE_DELETE = "PROFILE_IMAGE_DELETE"
    RESUME_UPLOAD = "RESUME_UPLOAD"
    RESUME_DELETE = "RESUME_DELETE"


@dataclass
class AuditEntry:
    """One append-only audit record.

    admin_id references an account but does not own it: the entry outlives
    a renamed or deleted account. Entries are never updated; the retention
    cleanup is the only thing that deletes them.

    id and created_at are None until the store writes the row.
    """

    admin_id: int
    action: AuditAction
    metadata: dict = field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None
    id: int | None = None
    created_at: datetime | None = None
