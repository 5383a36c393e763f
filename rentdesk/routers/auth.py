from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from rentdesk.auth import Principal, get_current_principal
from rentdesk.config import settings
from rentdesk.db import get_db
from rentdesk.dependencies import get_client_ip, get_draft_registry
from rentdesk.errors import AuthError
from rentdesk.models import Profile
from rentdesk.schemas import LoginRequest, ProfileOut
from rentdesk.security.csrf import verify_csrf
from rentdesk.security.passwords import verify_password
from rentdesk.security.sessions import create_web_session, revoke_web_session
from rentdesk.services.audit_service import log_audit, log_auth_event
from rentdesk.services.staff_service import get_staff

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/auth', tags=['auth'])

INVALID_LOGIN_MESSAGE = 'Invalid username or password'


@router.post('/login')
def login_submit(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    username = payload.username.strip().lower()
    ip = get_client_ip(request)
    user_agent = request.headers.get('user-agent')

    profile = db.execute(select(Profile).where(Profile.username == username)).unique().scalar_one_or_none()
    failure_reason = None
    if not profile:
        failure_reason = 'UNKNOWN_USERNAME'
    elif not profile.is_active:
        failure_reason = 'INACTIVE_PROFILE'
    elif not verify_password(payload.password, profile.password_hash):
        failure_reason = 'BAD_PASSWORD'

    if failure_reason:
        log_auth_event(
            db,
            attempted_username=username,
            success=False,
            failure_reason=failure_reason,
            profile_id=profile.id if profile else None,
            ip=ip,
            user_agent=user_agent,
        )
        db.commit()
        logger.info('Rejected login for %s: %s', username, failure_reason)
        raise AuthError(INVALID_LOGIN_MESSAGE)

    token = create_web_session(db, profile.id, ip=ip, user_agent=user_agent)
    log_auth_event(
        db,
        attempted_username=username,
        success=True,
        failure_reason=None,
        profile_id=profile.id,
        ip=ip,
        user_agent=user_agent,
    )
    log_audit(
        db,
        actor_profile_id=profile.id,
        action='AUTH_LOGIN',
        ip=ip,
        metadata={'username': username},
    )
    db.commit()

    response = JSONResponse(ProfileOut.model_validate(profile).model_dump(mode='json'))
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=settings.session_ttl_minutes * 60,
    )
    return response


@router.post('/logout')
def logout(request: Request, db: Session = Depends(get_db), _: None = Depends(verify_csrf)):
    principal = getattr(request.state, 'principal', None)
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        revoke_web_session(db, token)
        get_draft_registry(request).clear(token)

    log_audit(
        db,
        actor_profile_id=principal.id if principal else None,
        action='AUTH_LOGOUT',
        ip=get_client_ip(request),
        metadata={},
    )
    db.commit()

    response = JSONResponse({'ok': True})
    response.delete_cookie(settings.session_cookie_name)
    return response


@router.get('/me', response_model=ProfileOut)
def me(db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    return get_staff(db, principal.id)
