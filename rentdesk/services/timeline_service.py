from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from rentdesk.models import OrderReturnAudit, Profile
from rentdesk.services.order_service import get_order
from rentdesk.time_utils import as_utc


@dataclass(frozen=True)
class TimelineEvent:
    id: str
    order_id: int
    action: str
    user_id: int | None
    user_name: str
    created_at: datetime
    order_item_id: int | None = None
    previous_status: str | None = None
    new_status: str | None = None
    notes: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def _display_name(profile: Profile | None) -> str:
    if profile is None:
        return 'Unknown'
    return profile.full_name or profile.username or 'Unknown'


def order_timeline(db: Session, *, order_id: int) -> list[TimelineEvent]:
    """Creation plus every audited transition of an order, newest first."""
    order = get_order(db, order_id)
    ranked = [
        (0, TimelineEvent(
            id=f'created-{order.id}',
            order_id=order.id,
            action='order_created',
            user_id=order.staff_id,
            user_name=_display_name(order.staff),
            created_at=as_utc(order.created_at),
        )),
    ]

    rows = db.execute(
        select(OrderReturnAudit, Profile)
        .outerjoin(Profile, Profile.id == OrderReturnAudit.user_id)
        .where(OrderReturnAudit.order_id == order_id)
    ).unique().all()
    for audit, profile in rows:
        ranked.append(
            (audit.id, TimelineEvent(
                id=str(audit.id),
                order_id=audit.order_id,
                order_item_id=audit.order_item_id,
                action=audit.action,
                previous_status=audit.previous_status,
                new_status=audit.new_status,
                user_id=audit.user_id,
                user_name=_display_name(profile),
                notes=audit.notes,
                created_at=as_utc(audit.created_at),
            ))
        )

    ranked.sort(key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
    return [event for _, event in ranked]
