from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from rentdesk.auth import Principal, get_current_principal, resolve_branch_scope
from rentdesk.dependencies import get_notifier
from rentdesk.services.realtime_service import Invalidation, InvalidationManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/realtime', tags=['realtime'])

KEEPALIVE_SECONDS = 15.0


def format_sse(event: str, data: dict) -> str:
    return f'event: {event}\ndata: {json.dumps(data)}\n\n'


@router.get('/orders')
async def order_invalidations(
    request: Request,
    branch_id: int | None = None,
    principal: Principal = Depends(get_current_principal),
    notifier: InvalidationManager = Depends(get_notifier),
):
    scope = resolve_branch_scope(principal, branch_id)
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[Invalidation] = asyncio.Queue()

    def _enqueue(invalidation: Invalidation) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, invalidation)

    subscription = notifier.subscribe(_enqueue, branch_id=scope)

    async def _stream():
        try:
            yield format_sse('ready', {'branch_id': scope})
            while not await request.is_disconnected():
                try:
                    invalidation = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ': keepalive\n\n'
                    continue
                yield format_sse('invalidate', invalidation.to_dict())
        finally:
            notifier.unsubscribe(subscription)
            logger.debug('Realtime stream for profile %s closed', principal.id)

    return StreamingResponse(
        _stream(),
        media_type='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'},
    )
