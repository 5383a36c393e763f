from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from rentdesk.errors import NotFoundError, PersistenceError, ValidationError
from rentdesk.models import Order, Profile, StaffRole
from rentdesk.security.passwords import clean_new_password, hash_password, verify_password
from rentdesk.services.billing_service import validate_gst_rate
from rentdesk.services.branch_service import get_branch, get_main_branch_id

logger = logging.getLogger(__name__)

STAFF_HAS_ORDERS_MESSAGE = 'Cannot delete staff member with existing orders. Disable the account instead.'
_COMPANY_FIELDS = ('company_name', 'company_address', 'company_logo_url')


def list_staff(db: Session, *, branch_id: int | None = None) -> list[Profile]:
    query = select(Profile).order_by(Profile.created_at.desc(), Profile.id.desc())
    if branch_id is not None:
        query = query.where(Profile.branch_id == branch_id)
    return list(db.execute(query).unique().scalars().all())


def get_staff(db: Session, profile_id: int) -> Profile:
    profile = db.get(Profile, profile_id)
    if not profile:
        raise NotFoundError('Staff member not found')
    return profile


def _resolve_branch(db: Session, role: StaffRole, branch_id: int | None) -> int | None:
    if branch_id is not None:
        return get_branch(db, branch_id).id
    if role == StaffRole.SUPER_ADMIN:
        return None
    main_branch_id = get_main_branch_id(db)
    if main_branch_id is None:
        raise ValidationError('Create a branch before adding staff', field='branch_id')
    return main_branch_id


def create_staff(
    db: Session,
    *,
    username: str,
    password: str,
    role: StaffRole,
    full_name: str,
    phone: str,
    branch_id: int | None = None,
) -> Profile:
    clean_username = (username or '').strip().lower()
    if not clean_username:
        raise ValidationError('Username is required', field='username')
    if not (full_name or '').strip():
        raise ValidationError('Full name is required', field='full_name')
    clean_password = clean_new_password(password)

    existing = db.execute(select(Profile.id).where(Profile.username == clean_username)).first()
    if existing:
        raise PersistenceError('Username is already in use by another account')

    profile = Profile(
        username=clean_username,
        password_hash=hash_password(clean_password),
        role=StaffRole(role),
        branch_id=_resolve_branch(db, StaffRole(role), branch_id),
        full_name=full_name.strip(),
        phone=(phone or '').strip(),
        is_active=True,
    )
    db.add(profile)
    db.flush()
    logger.info('Created %s account %s', profile.role.value, profile.username)
    return profile


def update_staff(
    db: Session,
    *,
    profile_id: int,
    full_name: str | None = None,
    phone: str | None = None,
    role: StaffRole | None = None,
    branch_id: int | None = None,
    new_password: str | None = None,
) -> Profile:
    profile = get_staff(db, profile_id)
    if full_name is not None:
        if not full_name.strip():
            raise ValidationError('Full name is required', field='full_name')
        profile.full_name = full_name.strip()
    if phone is not None:
        profile.phone = phone.strip()
    if role is not None:
        profile.role = StaffRole(role)
    if branch_id is not None or role is not None:
        profile.branch_id = _resolve_branch(db, profile.role, branch_id if branch_id is not None else profile.branch_id)
    if new_password:
        profile.password_hash = hash_password(clean_new_password(new_password))
    db.flush()
    return profile


def set_staff_active(db: Session, *, profile_id: int, active: bool) -> Profile:
    profile = get_staff(db, profile_id)
    profile.is_active = active
    db.flush()
    return profile


def delete_staff(db: Session, *, profile_id: int) -> None:
    profile = get_staff(db, profile_id)
    has_orders = db.execute(select(Order.id).where(Order.staff_id == profile_id).limit(1)).first()
    if has_orders:
        raise PersistenceError(STAFF_HAS_ORDERS_MESSAGE)
    db.delete(profile)
    db.flush()
    logger.info('Deleted staff account %s', profile.username)


def update_profile_settings(db: Session, *, profile_id: int, **fields) -> Profile:
    """Save a staff member's own settings. Company fields are super admin only."""
    profile = get_staff(db, profile_id)
    if 'full_name' in fields and fields['full_name'] is not None:
        if not fields['full_name'].strip():
            raise ValidationError('Full name is required', field='full_name')
        profile.full_name = fields['full_name'].strip()
    if 'phone' in fields and fields['phone'] is not None:
        profile.phone = fields['phone'].strip()
    if 'gst_rate' in fields and fields['gst_rate'] is not None:
        profile.gst_rate = validate_gst_rate(fields['gst_rate'])
    for key in ('gst_enabled', 'gst_included'):
        if key in fields and fields[key] is not None:
            setattr(profile, key, bool(fields[key]))
    for key in ('gst_number', 'upi_id'):
        if key in fields:
            setattr(profile, key, (fields[key] or '').strip() or None)

    company_updates = {key: fields[key] for key in _COMPANY_FIELDS if key in fields}
    if company_updates:
        if profile.role != StaffRole.SUPER_ADMIN:
            raise ValidationError('Only super admins can change company details', field='company_name')
        for key, value in company_updates.items():
            setattr(profile, key, (value or '').strip() or None)
    db.flush()
    return profile


def change_password(
    db: Session,
    *,
    profile_id: int,
    current_password: str,
    new_password: str,
    confirm_password: str,
) -> Profile:
    profile = get_staff(db, profile_id)
    if not verify_password(current_password, profile.password_hash):
        raise ValidationError('Current password is incorrect', field='current_password')
    clean = clean_new_password(new_password, field='new_password')
    if new_password != confirm_password:
        raise ValidationError('New password and confirmation do not match', field='confirm_password')
    profile.password_hash = hash_password(clean)
    db.flush()
    return profile
