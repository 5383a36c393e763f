from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Form, UploadFile, status

from rentdesk.auth import Principal, get_current_principal
from rentdesk.dependencies import get_storage
from rentdesk.security.csrf import verify_csrf
from rentdesk.services.storage_service import ORDER_ITEMS_FOLDER, LocalObjectStorage, upload_image

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/uploads', tags=['uploads'])


@router.post('/images', status_code=status.HTTP_201_CREATED)
def upload_image_file(
    file: UploadFile = File(...),
    folder: str = Form(ORDER_ITEMS_FOLDER),
    principal: Principal = Depends(get_current_principal),
    storage: LocalObjectStorage = Depends(get_storage),
    _: None = Depends(verify_csrf),
):
    data = file.file.read()
    url = upload_image(
        storage,
        data,
        folder=folder,
        filename=file.filename,
        content_type=file.content_type,
    )
    logger.info('Profile %s uploaded %s', principal.id, url)
    return {'url': url}
