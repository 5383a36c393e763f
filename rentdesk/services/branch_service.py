from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rentdesk.config import settings
from rentdesk.errors import NotFoundError, ValidationError
from rentdesk.models import Branch, Order

logger = logging.getLogger(__name__)

MAIN_BRANCH_DELETE_MESSAGE = 'The main branch cannot be deleted'


def list_branches(db: Session, *, include_inactive: bool = True) -> list[Branch]:
    query = select(Branch).order_by(Branch.name.asc())
    if not include_inactive:
        query = query.where(Branch.is_active.is_(True))
    return list(db.execute(query).scalars().all())


def get_branch(db: Session, branch_id: int) -> Branch:
    branch = db.get(Branch, branch_id)
    if not branch:
        raise NotFoundError('Branch not found')
    return branch


def get_main_branch(db: Session) -> Branch | None:
    if settings.main_branch_id is not None:
        branch = db.get(Branch, settings.main_branch_id)
        if branch:
            return branch

    name = settings.main_branch_name.strip()
    if name:
        branch = db.execute(
            select(Branch).where(Branch.name.ilike(f'%{name}%')).order_by(Branch.id.asc()).limit(1)
        ).scalar_one_or_none()
        if branch:
            return branch

    return db.execute(select(Branch).order_by(Branch.created_at.asc(), Branch.id.asc()).limit(1)).scalar_one_or_none()


def get_main_branch_id(db: Session) -> int | None:
    branch = get_main_branch(db)
    return branch.id if branch else None


def _clean_fields(name: str, address: str | None) -> tuple[str, str]:
    clean_name = (name or '').strip()
    if not clean_name:
        raise ValidationError('Branch name is required', field='name')
    return clean_name, (address or '').strip()


def create_branch(
    db: Session,
    *,
    name: str,
    address: str | None = None,
    phone: str | None = None,
    logo_url: str | None = None,
) -> Branch:
    clean_name, clean_address = _clean_fields(name, address)
    branch = Branch(
        name=clean_name,
        address=clean_address,
        phone=(phone or '').strip() or None,
        logo_url=logo_url or None,
        is_active=True,
    )
    db.add(branch)
    db.flush()
    logger.info('Created branch %s (%s)', branch.id, branch.name)
    return branch


def update_branch(
    db: Session,
    *,
    branch_id: int,
    name: str,
    address: str | None = None,
    phone: str | None = None,
    logo_url: str | None = None,
    is_active: bool | None = None,
) -> Branch:
    branch = get_branch(db, branch_id)
    clean_name, clean_address = _clean_fields(name, address)
    branch.name = clean_name
    branch.address = clean_address
    branch.phone = (phone or '').strip() or None
    if logo_url is not None:
        branch.logo_url = logo_url or None
    if is_active is not None:
        branch.is_active = is_active
    db.flush()
    return branch


def assert_branch_deletable(branch_id: int, main_branch_id: int | None) -> None:
    if main_branch_id is not None and branch_id == main_branch_id:
        raise ValidationError(MAIN_BRANCH_DELETE_MESSAGE, field='branch_id')


def delete_branch(db: Session, *, branch_id: int, main_branch_id: int | None) -> int:
    """Delete a branch and, through its foreign keys, every order it owns.

    Returns the number of orders removed with it.
    """
    assert_branch_deletable(branch_id, main_branch_id)
    branch = get_branch(db, branch_id)
    order_count = db.execute(select(func.count(Order.id)).where(Order.branch_id == branch_id)).scalar_one()
    for order in db.execute(select(Order).where(Order.branch_id == branch_id)).scalars().all():
        db.delete(order)
    db.delete(branch)
    db.flush()
    logger.info('Deleted branch %s with %s orders', branch_id, order_count)
    return order_count
