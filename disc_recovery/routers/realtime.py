import asyncio
import uuid
from typing import Optional
from fastapi import APIRouter, Depends, WebSocket
import structlog
from sqlmodel import Session

from disc_recovery.core.errors import Forbidden, NotFound, Unauthenticated
from disc_recovery.db.db import get_session
from disc_recovery.services import recovery_actions
from disc_recovery.services.change_notifier import ChangeNotifier, RecoveryChanged, get_change_notifier
from disc_recovery.utils.auth_helper import decode_token, get_db_user

log = structlog.get_logger(__name__)

router = APIRouter()

CLOSE_CODES = {
    Unauthenticated: 4401,
    Forbidden: 4403,
    NotFound: 4404,
}


async def _pump(websocket: WebSocket, queue: asyncio.Queue):
    while True:
        payload = await queue.get()
        await websocket.send_json(payload)


async def _wait_for_disconnect(websocket: WebSocket):
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


async def serve_feed(websocket: WebSocket, queue: asyncio.Queue):
    """Forward queued changes until the client leaves or a send fails."""
    sender = asyncio.create_task(_pump(websocket, queue))
    receiver = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (sender, receiver):
            task.cancel()
        await asyncio.gather(sender, receiver, return_exceptions=True)

    for name, task in (("send", sender), ("receive", receiver)):
        if not task.cancelled() and task.exception() is not None:
            log.warning("change_feed_failed", direction=name, error=str(task.exception()))


@router.websocket("/recovery/{recovery_event_id}/changes")
async def recovery_changes(
    websocket: WebSocket,
    recovery_event_id: uuid.UUID,
    token: Optional[str] = None,
    session: Session = Depends(get_session),
    notifier: ChangeNotifier = Depends(get_change_notifier),
):
    """
    Streams {"type": "recovery_changed", ...} for one recovery.

    Browsers cannot set headers on a WebSocket, so the bearer token comes in
    the query string.
    """
    try:
        if not token:
            raise Unauthenticated("Missing token")
        user = get_db_user(session, decode_token(token))
        event = recovery_actions.load_recovery(session, recovery_event_id)
        recovery_actions.resolve_role(event, user)
    except (Unauthenticated, Forbidden, NotFound) as e:
        log.info("change_feed_refused", recovery_event_id=str(recovery_event_id), code=e.code)
        # Closing before accept turns into a bare HTTP 403 under uvicorn
        await websocket.accept()
        await websocket.close(code=CLOSE_CODES[type(e)])
        return

    # The socket may stay open for a long time; give the connection back
    session.close()

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    # publish() runs on whichever thread committed the change
    def on_change(change: RecoveryChanged):
        loop.call_soon_threadsafe(queue.put_nowait, change.to_dict())

    unsubscribe = notifier.subscribe(recovery_event_id, on_change)
    await websocket.accept()
    log.info("change_feed_opened", recovery_event_id=str(recovery_event_id), user_id=user.id)

    try:
        await serve_feed(websocket, queue)
    finally:
        unsubscribe()
        log.info("change_feed_closed", recovery_event_id=str(recovery_event_id), user_id=user.id)
