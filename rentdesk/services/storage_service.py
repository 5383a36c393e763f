"""Photo storage on the local filesystem, served under ``settings.media_base_url``."""
from __future__ import annotations

import io
import logging
import mimetypes
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from pathlib import Path, PurePosixPath

from PIL import Image, ImageOps, UnidentifiedImageError
from sqlalchemy import select
from sqlalchemy.orm import Session

from rentdesk.config import settings
from rentdesk.errors import UploadError
from rentdesk.models import Order, OrderItem, OrderStatus
from rentdesk.time_utils import as_utc, utcnow

logger = logging.getLogger(__name__)

ORDER_ITEMS_FOLDER = 'order-items'
ALLOWED_FOLDERS = {ORDER_ITEMS_FOLDER, 'id-proofs', 'logos'}
JPEG_CONTENT_TYPE = 'image/jpeg'

_compression_pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix='image-compress')


class LocalObjectStorage:
    def __init__(self, root: str | Path, base_url: str) -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip('/')

    def _resolve(self, key: str) -> Path:
        relative = PurePosixPath(key)
        if relative.is_absolute() or '..' in relative.parts or not relative.parts:
            raise UploadError(f'Invalid storage key: {key}')
        return self.root.joinpath(*relative.parts)

    def url_for(self, key: str) -> str:
        return f'{self.base_url}/{key}'

    def key_from_url(self, url: str | None) -> str | None:
        if not url:
            return None
        prefix = f'{self.base_url}/'
        if not url.startswith(prefix):
            return None
        return url[len(prefix):] or None

    def put(self, data: bytes, *, folder: str, filename: str | None = None, content_type: str | None = None) -> str:
        if folder not in ALLOWED_FOLDERS:
            raise UploadError(f'Unknown upload folder: {folder}')
        if not data:
            raise UploadError('Uploaded file is empty')
        extension = mimetypes.guess_extension(content_type or '') or Path(filename or '').suffix or '.bin'
        key = f'{folder}/{uuid.uuid4().hex}{extension.lower()}'
        path = self._resolve(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise UploadError(f'Failed to store {filename or key}: {exc}') from exc
        logger.info('Stored %s (%s bytes)', key, len(data))
        return self.url_for(key)

    def delete(self, url: str) -> bool:
        """Remove a stored object. Returns False when the URL is not ours or already gone."""
        key = self.key_from_url(url)
        if key is None:
            return False
        path = self._resolve(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise UploadError(f'Failed to delete {key}: {exc}') from exc
        return True


def compress_image(
    data: bytes,
    *,
    max_dimension: int | None = None,
    quality: int | None = None,
) -> bytes:
    max_dimension = max_dimension or settings.image_max_dimension
    quality = quality or settings.image_jpeg_quality
    with Image.open(io.BytesIO(data)) as image:
        image = ImageOps.exif_transpose(image)
        if image.mode not in ('RGB', 'L'):
            image = image.convert('RGB')
        image.thumbnail((max_dimension, max_dimension))
        output = io.BytesIO()
        image.save(output, format='JPEG', quality=quality, optimize=True)
    return output.getvalue()


def compress_with_fallback(data: bytes, *, timeout: float | None = None) -> tuple[bytes, bool]:
    """Compress an image, returning the original bytes if it is small, unreadable or slow.

    The second element tells whether the returned bytes are the compressed JPEG.
    """
    if len(data) < settings.image_compress_min_bytes:
        return data, False
    timeout = settings.image_compress_timeout_seconds if timeout is None else timeout
    future = _compression_pool.submit(compress_image, data)
    try:
        compressed = future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        logger.warning('Image compression exceeded %.1fs, uploading original', timeout)
        return data, False
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        logger.warning('Image compression failed, uploading original: %s', exc)
        return data, False
    if len(compressed) >= len(data):
        return data, False
    return compressed, True


def upload_image(
    storage: LocalObjectStorage,
    data: bytes,
    *,
    folder: str = ORDER_ITEMS_FOLDER,
    filename: str | None = None,
    content_type: str | None = None,
) -> str:
    if content_type and not content_type.startswith('image/'):
        raise UploadError('Only image uploads are supported')
    payload, compressed = compress_with_fallback(data)
    return storage.put(
        payload,
        folder=folder,
        filename=filename,
        content_type=JPEG_CONTENT_TYPE if compressed else content_type,
    )


@dataclass(frozen=True)
class CleanupResult:
    orders_processed: int
    items_found: int
    files_deleted: int
    items_updated: int
    failed: list[str]

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload['failed_deletions'] = len(self.failed)
        return payload


def cleanup_order_images(
    db: Session,
    storage: LocalObjectStorage,
    *,
    now: datetime | None = None,
    retention_days: int | None = None,
) -> CleanupResult:
    """Drop item photos of orders completed more than the retention period ago."""
    now = as_utc(now) or utcnow()
    retention_days = settings.image_retention_days if retention_days is None else retention_days
    cutoff = now - timedelta(days=retention_days)
    rows = db.execute(
        select(OrderItem)
        .join(Order, Order.id == OrderItem.order_id)
        .where(
            Order.status == OrderStatus.COMPLETED,
            Order.completed_at.is_not(None),
            Order.completed_at < cutoff,
            OrderItem.photo_url.is_not(None),
        )
    ).scalars().all()

    deleted = 0
    updated = 0
    failed: list[str] = []
    for item in rows:
        try:
            if storage.delete(item.photo_url):
                deleted += 1
        except UploadError as exc:
            logger.warning('Image cleanup could not delete %s: %s', item.photo_url, exc)
            failed.append(item.photo_url)
            continue
        item.photo_url = None
        updated += 1
    db.flush()
    logger.info('Image cleanup removed %s files from %s items', deleted, len(rows))
    return CleanupResult(
        orders_processed=len({item.order_id for item in rows}),
        items_found=len(rows),
        files_deleted=deleted,
        items_updated=updated,
        failed=failed,
    )
