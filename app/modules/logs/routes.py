import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from app.modules.logs.relay import log_relay, event_frame, EVENT_JOINED_ROOM

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/logs", tags=["logs"])


@router.websocket("/ws")
async def logs_socket(websocket: WebSocket):
    """
    Live build/deploy log stream.

    Client -> server: {"event": "join", "data": "<deployment_id>"}
    Server -> client: joinedRoom(message), logMessage(text), deploymentDone(url)
    """
    await websocket.accept()
    logger.info(f"Client connected: {websocket.client}")
    try:
        while True:
            frame = await websocket.receive_json()
            if not isinstance(frame, dict) or frame.get("event") != "join":
                continue
            deployment_id = str(frame.get("data") or "").strip()
            if not deployment_id:
                continue
            # TODO: check the connecting user owns deployment_id before joining the group
            log_relay.join(deployment_id, websocket)
            await websocket.send_json(
                event_frame(EVENT_JOINED_ROOM, f"Successfully joined room for deployment {deployment_id}")
            )
    except WebSocketDisconnect:
        logger.info(f"Client disconnected: {websocket.client}")
    finally:
        log_relay.leave(websocket)
