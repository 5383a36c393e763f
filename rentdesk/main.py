import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import IntegrityError

from rentdesk.config import settings
from rentdesk.db import SessionLocal
from rentdesk.errors import PersistenceError, RentDeskError
from rentdesk.routers import auth, branches, customers, dashboard, maintenance, orders, realtime, staff, uploads
from rentdesk.security.csrf import install_csrf_cookie_middleware
from rentdesk.security.headers import install_security_headers
from rentdesk.security.sessions import install_auth_session_middleware
from rentdesk.services.draft_service import DraftRegistry
from rentdesk.services.realtime_service import InvalidationManager
from rentdesk.services.storage_service import LocalObjectStorage

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent / 'templates'


def _csrf_token(request: Request) -> str:
    return getattr(request.state, 'csrf_token', '')


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )


def _error_response(error: RentDeskError) -> JSONResponse:
    body = {'error': error.message, 'code': error.code}
    field = getattr(error, 'field', None)
    if field:
        body['field'] = field
    return JSONResponse(body, status_code=error.status_code)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(RentDeskError)
    async def rentdesk_error_handler(request: Request, exc: RentDeskError):
        if exc.status_code >= 500:
            logger.warning('%s %s failed: %s', request.method, request.url.path, exc.message)
        return _error_response(exc)

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        logger.warning('%s %s rejected by database: %s', request.method, request.url.path, exc.orig)
        return _error_response(PersistenceError(f'The change conflicts with existing data: {exc.orig}'))


@asynccontextmanager
async def _lifespan(app: FastAPI):
    yield
    app.state.notifier.close()
    logger.info('Realtime notifier closed')


def create_app(
    *,
    session_factory=None,
    storage: LocalObjectStorage | None = None,
    notifier: InvalidationManager | None = None,
) -> FastAPI:
    app = FastAPI(title='RentDesk', lifespan=_lifespan)

    app.state.templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
    app.state.templates.env.globals['csrf_token'] = _csrf_token
    app.state.session_factory = session_factory or SessionLocal
    app.state.storage = storage or LocalObjectStorage(settings.media_root, settings.media_base_url)
    app.state.notifier = notifier or InvalidationManager()
    app.state.drafts = DraftRegistry()

    install_security_headers(app)
    install_csrf_cookie_middleware(app)
    install_auth_session_middleware(app)
    install_error_handlers(app)

    app.include_router(auth.router)
    app.include_router(orders.router)
    app.include_router(customers.router)
    app.include_router(branches.router)
    app.include_router(staff.router)
    app.include_router(dashboard.router)
    app.include_router(uploads.router)
    app.include_router(realtime.router)
    app.include_router(maintenance.router)

    app.mount(
        settings.media_base_url,
        StaticFiles(directory=str(app.state.storage.root), check_dir=False),
        name='media',
    )

    @app.get('/health')
    def health() -> dict:
        return {'status': 'ok'}

    @app.get('/robots.txt', response_class=PlainTextResponse)
    def robots_txt() -> str:
        return 'User-agent: *\nDisallow: /\n'

    return app


configure_logging()
app = create_app()
