from __future__ import annotations

import logging
import secrets

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from rentdesk.config import settings
from rentdesk.db import get_db
from rentdesk.dependencies import get_draft_registry, get_storage
from rentdesk.errors import AuthError
from rentdesk.services.draft_service import DraftRegistry
from rentdesk.services.order_service import cancel_expired_scheduled_orders, refresh_overdue_orders
from rentdesk.services.storage_service import LocalObjectStorage, cleanup_order_images

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/maintenance', tags=['maintenance'])


def verify_cron_secret(request: Request) -> None:
    expected = settings.cron_secret
    if not expected:
        return
    supplied = request.headers.get('authorization', '')
    if not secrets.compare_digest(supplied, f'Bearer {expected}'):
        raise AuthError('Unauthorized')


@router.post('/cleanup-images')
def cleanup_images(
    db: Session = Depends(get_db),
    storage: LocalObjectStorage = Depends(get_storage),
    drafts: DraftRegistry = Depends(get_draft_registry),
    _: None = Depends(verify_cron_secret),
):
    overdue = refresh_overdue_orders(db)
    expired = cancel_expired_scheduled_orders(db)
    result = cleanup_order_images(db, storage)
    db.commit()
    evicted_drafts = drafts.evict_idle()
    logger.info('Maintenance run: %s overdue, %s expired, %s files removed', overdue, expired, result.files_deleted)
    message = 'Image cleanup completed' if result.items_found else 'No orders found for image deletion'
    return {
        'success': True,
        'message': message,
        'overdue_orders': overdue,
        'expired_scheduled_orders': expired,
        'evicted_drafts': evicted_drafts,
        'stats': result.to_dict(),
    }
