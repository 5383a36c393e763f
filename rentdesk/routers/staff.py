from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from rentdesk.auth import Capability, Principal, assert_branch_scope, get_current_principal, require_capability
from rentdesk.db import get_db
from rentdesk.dependencies import get_client_ip
from rentdesk.models import StaffRole
from rentdesk.schemas import (
    PasswordChangeIn,
    ProfileOut,
    ProfileSettingsIn,
    StaffActiveIn,
    StaffCreate,
    StaffUpdate,
)
from rentdesk.security.csrf import verify_csrf
from rentdesk.services import staff_service
from rentdesk.services.audit_service import log_audit

router = APIRouter(tags=['staff'])
staff_admin_access = require_capability(Capability.MANAGE_STAFF)


def _guard_target(principal: Principal, profile) -> None:
    """Branch admins only manage non-super-admin accounts in their own branch."""
    if principal.can(Capability.SWITCH_BRANCH):
        return
    if profile.role == StaffRole.SUPER_ADMIN or profile.branch_id is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    assert_branch_scope(principal, profile.branch_id)


@router.get('/staff', response_model=list[ProfileOut])
def list_staff(
    branch_id: int | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(staff_admin_access),
):
    if not principal.can(Capability.SWITCH_BRANCH):
        branch_id = principal.branch_id
    return staff_service.list_staff(db, branch_id=branch_id)


@router.get('/staff/{profile_id}', response_model=ProfileOut)
def get_staff(profile_id: int, db: Session = Depends(get_db), principal: Principal = Depends(staff_admin_access)):
    profile = staff_service.get_staff(db, profile_id)
    _guard_target(principal, profile)
    return profile


@router.post('/staff', response_model=ProfileOut, status_code=status.HTTP_201_CREATED)
def create_staff(
    payload: StaffCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(staff_admin_access),
    _: None = Depends(verify_csrf),
):
    branch_id = payload.branch_id
    if not principal.can(Capability.SWITCH_BRANCH):
        if payload.role == StaffRole.SUPER_ADMIN:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        branch_id = principal.branch_id
    profile = staff_service.create_staff(
        db,
        username=payload.username,
        password=payload.password,
        role=payload.role,
        full_name=payload.full_name,
        phone=payload.phone,
        branch_id=branch_id,
    )
    log_audit(
        db,
        actor_profile_id=principal.id,
        action='STAFF_CREATED',
        ip=get_client_ip(request),
        metadata={'profile_id': profile.id, 'username': profile.username, 'role': profile.role.value},
    )
    db.commit()
    return profile


@router.patch('/staff/{profile_id}', response_model=ProfileOut)
def update_staff(
    profile_id: int,
    payload: StaffUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(staff_admin_access),
    _: None = Depends(verify_csrf),
):
    _guard_target(principal, staff_service.get_staff(db, profile_id))
    if not principal.can(Capability.SWITCH_BRANCH) and (
        payload.role == StaffRole.SUPER_ADMIN or payload.branch_id not in (None, principal.branch_id)
    ):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    profile = staff_service.update_staff(db, profile_id=profile_id, **payload.model_dump(exclude_unset=True))
    db.commit()
    return profile


@router.post('/staff/{profile_id}/active', response_model=ProfileOut)
def set_staff_active(
    profile_id: int,
    payload: StaffActiveIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(staff_admin_access),
    _: None = Depends(verify_csrf),
):
    _guard_target(principal, staff_service.get_staff(db, profile_id))
    if profile_id == principal.id and not payload.active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='You cannot disable your own account')
    profile = staff_service.set_staff_active(db, profile_id=profile_id, active=payload.active)
    db.commit()
    return profile


@router.delete('/staff/{profile_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_staff(
    profile_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(staff_admin_access),
    _: None = Depends(verify_csrf),
):
    if profile_id == principal.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='You cannot delete your own account')
    _guard_target(principal, staff_service.get_staff(db, profile_id))
    staff_service.delete_staff(db, profile_id=profile_id)
    log_audit(
        db,
        actor_profile_id=principal.id,
        action='STAFF_DELETED',
        ip=get_client_ip(request),
        metadata={'profile_id': profile_id},
    )
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get('/profile', response_model=ProfileOut)
def get_profile(db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    return staff_service.get_staff(db, principal.id)


@router.put('/profile', response_model=ProfileOut)
def update_profile(
    payload: ProfileSettingsIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    _: None = Depends(verify_csrf),
):
    profile = staff_service.update_profile_settings(
        db,
        profile_id=principal.id,
        **payload.model_dump(exclude_unset=True),
    )
    db.commit()
    return profile


@router.post('/profile/password')
def change_password(
    payload: PasswordChangeIn,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    _: None = Depends(verify_csrf),
):
    staff_service.change_password(
        db,
        profile_id=principal.id,
        current_password=payload.current_password,
        new_password=payload.new_password,
        confirm_password=payload.confirm_password,
    )
    log_audit(db, actor_profile_id=principal.id, action='PASSWORD_CHANGED', ip=get_client_ip(request))
    db.commit()
    return {'ok': True}
