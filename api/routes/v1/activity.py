"""
api/routes/v1/activity.py -- Read-only view of the admin audit trail.

Routes:
  GET /api/v1/activity/admin  -- paginated audit entries, newest first (requires auth)

Query params:
  page      1-based page number (default 1)
  limit     page size, 1..100 (default 20)
  action    filter by AuditAction value
  admin_id  filter by account ID

Entries keep their admin_id after the account is renamed or removed; the
username column is resolved at read time and falls back to "Unknown".
"""

from __future__ import annotations

import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import ActivityPage, ActivityRow, Pagination
from audit.models import AuditAction
from audit.store import AuditStore
from auth.dependencies import get_current_account
from auth.errors import InputValidationError
from auth.models import Account
from auth.store import AccountStore

router = APIRouter()

UNKNOWN_ADMIN = "Unknown"


@router.get("/activity/admin", response_model=ActivityPage)
def list_admin_activity(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    action: Optional[str] = Query(default=None),
    admin_id: Optional[int] = Query(default=None),
    account: Account = Depends(get_current_account),
) -> ActivityPage:
    """Return one page of audit entries with pagination metadata."""
    if action and action not in {a.value for a in AuditAction}:
        raise InputValidationError(f"Unknown action: {action}")

    audit_store: AuditStore = request.app.state.audit_store
    account_store: AccountStore = request.app.state.account_store

    total = audit_store.count(action=action, admin_id=admin_id)
    entries = audit_store.list_entries(page=page, limit=limit, action=action, admin_id=admin_id)

    usernames: dict[int, str] = {}
    rows = []
    for entry in entries:
        if entry.admin_id not in usernames:
            owner = account_store.get_by_id(entry.admin_id)
            usernames[entry.admin_id] = owner.username if owner else UNKNOWN_ADMIN
        rows.append(
            ActivityRow(
                id=entry.id,
                admin_id=entry.admin_id,
                admin_username=usernames[entry.admin_id],
                action=entry.action.value,
                metadata=entry.metadata,
                ip_address=entry.ip_address,
                user_agent=entry.user_agent,
                created_at=entry.created_at.isoformat() if entry.created_at else "",
            )
        )

    total_pages = math.ceil(total / limit)
    return ActivityPage(
        activities=rows,
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        ),
    )
