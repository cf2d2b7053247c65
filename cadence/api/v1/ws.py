from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from cadence.realtime import RealtimeGateway
from cadence.realtime.protocol import INVALID_PAYLOAD, error_frame

logger = logging.getLogger(__name__)
router = APIRouter(tags=["ws"])


def _frame_text(message: dict) -> str | None:
    """Text of a received frame; binary frames must hold UTF-8 JSON."""
    if message.get("text") is not None:
        return message["text"]
    raw = message.get("bytes")
    if raw is None:
        return None
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return None


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    gateway: RealtimeGateway | None = getattr(websocket.app.state, "gateway", None)
    if gateway is None:
        await websocket.close(code=1011)
        return

    await websocket.accept()
    context = await gateway.connect(websocket)
    try:
        while not context.closed:
            try:
                message = await websocket.receive()
            except WebSocketDisconnect:
                break
            except RuntimeError:
                # Socket was closed server-side (auth failure, heartbeat, slow client).
                break
            if message["type"] == "websocket.disconnect":
                break

            raw_text = _frame_text(message)
            if raw_text is None:
                logger.info("Rejected undecodable frame connection_id=%s", context.connection_id)
                await gateway.connections.send(
                    context.connection_id,
                    error_frame(code=INVALID_PAYLOAD, message="Frames must be UTF-8 encoded JSON"),
                )
                continue
            await gateway.handle_raw(context, raw_text)
    finally:
        await gateway.disconnect(context)
        logger.info("WebSocket session closed connection_id=%s user_id=%s", context.connection_id, context.user_id)
