from __future__ import annotations

import secrets
from datetime import datetime, timedelta

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select

from rentdesk.auth import Principal, Role
from rentdesk.config import settings
from rentdesk.db import SessionLocal
from rentdesk.errors import AuthError
from rentdesk.models import Profile, WebSession
from rentdesk.time_utils import as_utc, utcnow


AUTH_EXEMPT_PATHS = {'/auth/login', '/health', '/robots.txt', '/maintenance/cleanup-images'}
AUTH_EXEMPT_PREFIXES = ('/media/', '/docs', '/openapi.json')


def _session_expiry() -> datetime:
    return utcnow() + timedelta(minutes=settings.session_ttl_minutes)


def create_web_session(db, profile_id: int, ip: str | None, user_agent: str | None) -> str:
    token = secrets.token_urlsafe(48)
    web_session = WebSession(
        session_token=token,
        profile_id=profile_id,
        ip=ip,
        user_agent=user_agent,
        expires_at=_session_expiry(),
    )
    db.add(web_session)
    db.flush()
    return token


def revoke_web_session(db, token: str) -> None:
    session = db.execute(select(WebSession).where(WebSession.session_token == token)).scalar_one_or_none()
    if not session or session.revoked_at is not None:
        return
    session.revoked_at = utcnow()


def load_principal_from_token(db, token: str | None) -> Principal | None:
    if not token:
        return None

    row = db.execute(
        select(WebSession, Profile)
        .join(Profile, Profile.id == WebSession.profile_id)
        .where(WebSession.session_token == token)
    ).unique().one_or_none()
    if not row:
        return None

    web_session, profile = row
    now = utcnow()
    if web_session.revoked_at is not None or as_utc(web_session.expires_at) <= now:
        return None

    web_session.last_seen_at = now
    web_session.expires_at = _session_expiry()
    return Principal(
        id=profile.id,
        username=profile.username,
        role=Role(profile.role.value),
        branch_id=profile.branch_id,
        active=profile.is_active,
        full_name=profile.full_name,
    )


def _is_exempt(path: str) -> bool:
    return path in AUTH_EXEMPT_PATHS or path.startswith(AUTH_EXEMPT_PREFIXES)


def install_auth_session_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def auth_session_middleware(request: Request, call_next):
        token = request.cookies.get(settings.session_cookie_name)
        factory = getattr(request.app.state, 'session_factory', SessionLocal)
        with factory() as db:
            principal = load_principal_from_token(db, token)
            request.state.principal = principal
            request.state.session_token = token if principal else None
            db.commit()

        if not _is_exempt(request.url.path) and request.state.principal is None:
            error = AuthError('Your session has expired. Please log in again.')
            return JSONResponse({'error': error.message, 'code': error.code}, status_code=error.status_code)

        response = await call_next(request)
        return response
