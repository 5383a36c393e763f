from __future__ import annotations

import argparse

from rentdesk.config import settings
from rentdesk.db import SessionLocal
from rentdesk.services.order_service import cancel_expired_scheduled_orders, refresh_overdue_orders
from rentdesk.services.storage_service import CleanupResult, LocalObjectStorage, cleanup_order_images


def run_maintenance(*, retention_days: int, skip_status_jobs: bool = False) -> tuple[int, int, CleanupResult]:
    storage = LocalObjectStorage(settings.media_root, settings.media_base_url)
    overdue = 0
    expired = 0
    with SessionLocal() as db:
        if not skip_status_jobs:
            overdue = refresh_overdue_orders(db)
            expired = cancel_expired_scheduled_orders(db)
        result = cleanup_order_images(db, storage, retention_days=retention_days)
        db.commit()
    return overdue, expired, result


def main() -> None:
    parser = argparse.ArgumentParser(description='Remove item photos of long-completed orders and refresh order statuses.')
    parser.add_argument(
        '--retention-days',
        type=int,
        default=settings.image_retention_days,
        help='Keep photos of orders completed within this many days.',
    )
    parser.add_argument(
        '--skip-status-jobs',
        action='store_true',
        help='Only clean images; do not mark overdue orders or cancel expired scheduled orders.',
    )
    args = parser.parse_args()

    overdue, expired, result = run_maintenance(
        retention_days=args.retention_days,
        skip_status_jobs=args.skip_status_jobs,
    )
    print(
        f'Maintenance complete: overdue={overdue}, expired={expired}, '
        f'items={result.items_found}, deleted={result.files_deleted}, failed={len(result.failed)}'
    )


if __name__ == '__main__':
    main()
