from fastapi import Depends, Request
from fastapi.templating import Jinja2Templates

from rentdesk.auth import Principal, get_current_principal
from rentdesk.errors import AuthError
from rentdesk.services.draft_service import DraftRegistry, OrderDraft
from rentdesk.services.realtime_service import InvalidationManager
from rentdesk.services.storage_service import LocalObjectStorage


def get_templates(request: Request) -> Jinja2Templates:
    return request.app.state.templates


def get_notifier(request: Request) -> InvalidationManager:
    return request.app.state.notifier


def get_storage(request: Request) -> LocalObjectStorage:
    return request.app.state.storage


def get_draft_registry(request: Request) -> DraftRegistry:
    return request.app.state.drafts


def get_session_token(request: Request) -> str:
    token = getattr(request.state, 'session_token', None)
    if not token:
        raise AuthError('Your session has expired. Please log in again.')
    return token


def get_draft(
    request: Request,
    _: Principal = Depends(get_current_principal),
) -> OrderDraft:
    return get_draft_registry(request).get(get_session_token(request))


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None
