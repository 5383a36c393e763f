from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException, Request, status

from rentdesk.errors import AuthError


class Role(str, Enum):
    SUPER_ADMIN = 'super_admin'
    BRANCH_ADMIN = 'branch_admin'
    STAFF = 'staff'


class Capability(str, Enum):
    SWITCH_BRANCH = 'switch_branch'
    MANAGE_BRANCHES = 'manage_branches'
    MANAGE_STAFF = 'manage_staff'
    EDIT_COMPANY = 'edit_company'
    VIEW_REPORTS = 'view_reports'
    DELETE_ORDERS = 'delete_orders'
    DELETE_CUSTOMERS = 'delete_customers'


_CAPABILITIES = {
    Role.SUPER_ADMIN: frozenset(Capability),
    Role.BRANCH_ADMIN: frozenset(
        {
            Capability.MANAGE_STAFF,
            Capability.VIEW_REPORTS,
            Capability.DELETE_ORDERS,
            Capability.DELETE_CUSTOMERS,
        }
    ),
    Role.STAFF: frozenset(),
}


def capabilities_for(role: Role) -> frozenset[Capability]:
    return _CAPABILITIES[Role(role)]


@dataclass
class Principal:
    id: int
    username: str
    role: Role
    branch_id: int | None
    active: bool
    full_name: str = ''

    @property
    def capabilities(self) -> frozenset[Capability]:
        return capabilities_for(self.role)

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, 'principal', None)
    if not principal:
        raise AuthError('Your session has expired. Please log in again.')
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Account is disabled')
    return principal


def require_capability(capability: Capability):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not principal.can(capability):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        return principal

    return _dep


def resolve_branch_scope(principal: Principal, requested_branch_id: int | None) -> int | None:
    """Branch a request reads from. None means every branch (super admins only)."""
    if principal.can(Capability.SWITCH_BRANCH):
        return requested_branch_id
    if requested_branch_id is not None and requested_branch_id != principal.branch_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    if principal.branch_id is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='No branch assigned to this account')
    return principal.branch_id


def assert_branch_scope(principal: Principal, target_branch_id: int) -> None:
    if principal.can(Capability.SWITCH_BRANCH):
        return
    if principal.branch_id != target_branch_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
