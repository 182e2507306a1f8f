"""
audit/logger.py -- Fail-safe, non-blocking recorder of security events.

record() never raises and never delays a response:

  1. Validation (known action, admin id present) happens inline. A bad call
     is logged and dropped.
  2. IP and user agent are captured from the request right away, while the
     request object is still live.
  3. The write is handed to Starlette's BackgroundTasks, which runs it after
     the response has been sent.
  4. _write() catches every storage failure and logs it to the
     "folioadmin.audit" logger. Nothing propagates back to the handler.

So a slow or unreachable audit database costs nothing on the request path,
and a login still succeeds while the audit table is down.

client_ip() prefers the first X-Forwarded-For hop. That value is
client-supplied, so it is recorded as evidence only; rate limiting keys on
the socket address (api/limiter.py).
"""

from __future__ import annotations

import logging

from fastapi import BackgroundTasks, Request

from audit.models import AuditAction, AuditEntry
from audit.store import AuditStore

logger = logging.getLogger("folioadmin.audit")

UNKNOWN = "unknown"


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, else the connection address, else 'unknown'."""
    forwarded_for = request.headers.get("X-Forwarded-For", "")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN


def user_agent(request: Request) -> str:
    return request.headers.get("User-Agent") or UNKNOWN


class AuditLogger:
    """Schedules AuditEntry writes off the request path."""

    def __init__(self, store: AuditStore) -> None:
        self.store = store

    def record(
        self,
        background: BackgroundTasks | None,
        admin_id: int | None,
        action: AuditAction | str,
        request: Request | None = None,
        metadata: dict | None = None,
    ) -> None:
        """Queue one audit entry. Never raises.

        Without a BackgroundTasks (scripts, tests) the write runs inline but
        is still fail-safe.
        """
        if admin_id is None:
            logger.error("Audit log: missing admin id for action %s", action)
            return
        try:
            kind = AuditAction(action)
        except ValueError:
            logger.error("Audit log: invalid action type: %s", action)
            return

        entry = AuditEntry(
            admin_id=admin_id,
            action=kind,
            metadata=dict(metadata or {}),
            ip_address=client_ip(request) if request is not None else None,
            user_agent=user_agent(request) if request is not None else None,
        )
        if background is None:
            self._write(entry)
        else:
            background.add_task(self._write, entry)

    def _write(self, entry: AuditEntry) -> None:
        try:
            self.store.append(entry)
        except Exception as exc:  # audit storage must never fail the caller
            logger.error(
                "Failed to log admin activity: admin_id=%s action=%s error=%s",
                entry.admin_id,
                entry.action.value,
                exc,
            )
