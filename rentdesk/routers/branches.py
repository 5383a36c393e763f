from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from rentdesk.auth import Capability, Principal, get_current_principal, require_capability
from rentdesk.db import get_db
from rentdesk.dependencies import get_client_ip, get_notifier
from rentdesk.schemas import BranchIn, BranchOut
from rentdesk.security.csrf import verify_csrf
from rentdesk.services import branch_service
from rentdesk.services.audit_service import log_audit
from rentdesk.services.realtime_service import ChangeEvent, ChangeKind, InvalidationManager

router = APIRouter(prefix='/branches', tags=['branches'])
branch_admin_access = require_capability(Capability.MANAGE_BRANCHES)


def _branch_payload(branch, main_branch_id: int | None) -> dict:
    return (
        BranchOut.model_validate(branch)
        .model_copy(update={'is_main': branch.id == main_branch_id})
        .model_dump(mode='json')
    )


@router.get('')
def list_branches(
    include_inactive: bool = True,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    main_branch_id = branch_service.get_main_branch_id(db)
    return [
        _branch_payload(branch, main_branch_id)
        for branch in branch_service.list_branches(db, include_inactive=include_inactive)
    ]


@router.get('/main')
def get_main_branch(db: Session = Depends(get_db), _: Principal = Depends(get_current_principal)):
    branch = branch_service.get_main_branch(db)
    return _branch_payload(branch, branch.id) if branch else None


@router.get('/{branch_id}')
def get_branch(branch_id: int, db: Session = Depends(get_db), _: Principal = Depends(get_current_principal)):
    return _branch_payload(branch_service.get_branch(db, branch_id), branch_service.get_main_branch_id(db))


@router.post('', status_code=201)
def create_branch(
    payload: BranchIn,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(branch_admin_access),
    _: None = Depends(verify_csrf),
):
    branch = branch_service.create_branch(
        db,
        name=payload.name,
        address=payload.address,
        phone=payload.phone,
        logo_url=payload.logo_url,
    )
    log_audit(
        db,
        actor_profile_id=principal.id,
        action='BRANCH_CREATED',
        ip=get_client_ip(request),
        metadata={'branch_id': branch.id, 'name': branch.name},
    )
    db.commit()
    return _branch_payload(branch, branch_service.get_main_branch_id(db))


@router.put('/{branch_id}')
def update_branch(
    branch_id: int,
    payload: BranchIn,
    db: Session = Depends(get_db),
    _: Principal = Depends(branch_admin_access),
    __: None = Depends(verify_csrf),
):
    branch = branch_service.update_branch(
        db,
        branch_id=branch_id,
        name=payload.name,
        address=payload.address,
        phone=payload.phone,
        logo_url=payload.logo_url,
        is_active=payload.is_active,
    )
    db.commit()
    return _branch_payload(branch, branch_service.get_main_branch_id(db))


@router.delete('/{branch_id}')
def delete_branch(
    branch_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(branch_admin_access),
    notifier: InvalidationManager = Depends(get_notifier),
    _: None = Depends(verify_csrf),
):
    main_branch_id = branch_service.get_main_branch_id(db)
    deleted_orders = branch_service.delete_branch(db, branch_id=branch_id, main_branch_id=main_branch_id)
    log_audit(
        db,
        actor_profile_id=principal.id,
        action='BRANCH_DELETED',
        ip=get_client_ip(request),
        metadata={'branch_id': branch_id, 'deleted_orders': deleted_orders},
    )
    db.commit()
    if deleted_orders:
        notifier.publish(ChangeEvent(table='orders', kind=ChangeKind.DELETE, branch_id=branch_id))
    return {'ok': True, 'deleted_orders': deleted_orders}
