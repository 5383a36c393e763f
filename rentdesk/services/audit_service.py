from __future__ import annotations

from sqlalchemy.orm import Session

from rentdesk.models import AuditLog, AuthEvent, OrderReturnAudit


def log_auth_event(
    db: Session,
    *,
    attempted_username: str,
    success: bool,
    ip: str | None,
    user_agent: str | None,
    profile_id: int | None = None,
    failure_reason: str | None = None,
) -> None:
    db.add(
        AuthEvent(
            attempted_username=attempted_username,
            success=success,
            failure_reason=failure_reason,
            profile_id=profile_id,
            ip=ip,
            user_agent=user_agent,
        )
    )


def log_audit(
    db: Session,
    *,
    actor_profile_id: int | None,
    action: str,
    ip: str | None,
    order_id: int | None = None,
    metadata: dict | None = None,
) -> None:
    db.add(
        AuditLog(
            actor_profile_id=actor_profile_id,
            action=action,
            order_id=order_id,
            ip=ip,
            meta=metadata or {},
        )
    )


def log_order_event(
    db: Session,
    *,
    order_id: int,
    action: str,
    user_id: int | None,
    previous_status: str | None = None,
    new_status: str | None = None,
    order_item_id: int | None = None,
    notes: str | None = None,
) -> None:
    db.add(
        OrderReturnAudit(
            order_id=order_id,
            order_item_id=order_item_id,
            action=action,
            previous_status=previous_status,
            new_status=new_status,
            user_id=user_id,
            notes=notes,
        )
    )
