"""
Audit logging for administrative dispatch and account operations.

Records task triggers, redeploys, cancellations and credential changes
to a dedicated audit logger (separate from the application log) with
structured context.

Events are logged at INFO level to a logger named "audit" so they
can be routed to a separate file / sink via logging configuration.
"""
from __future__ import annotations

import logging
from typing import Any

_audit_logger = logging.getLogger("audit")


def audit_event(
    action: str,
    *,
    org_id: str | None = None,
    task_id: str | None = None,
    app_id: str | None = None,
    detail: str = "",
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Record an audit event.

    Args:
        action: Action name (e.g., "task.manual", "user.token.bind")
        org_id: Dispatching / affected org (if applicable)
        task_id: Task affected (if applicable)
        app_id: Application affected (if applicable)
        detail: Human-readable detail
        extra: Additional structured context
    """
    record = {
        "audit_action": action,
        "org_id": org_id or "",
        "task_id": task_id or "",
        "app_id": app_id or "",
        "detail": detail,
    }
    if extra:
        record.update(extra)

    _audit_logger.info(
        f"AUDIT: {action} org={org_id or '-'} app={app_id or '-'} task={task_id or '-'} {detail}",
        extra=record,
    )
