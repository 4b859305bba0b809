"""
backend/pitchside/routers/ws.py

Purpose:
    Authenticated WebSocket stream of committed match, payment and
    notification events. Clients narrow match events with subscribe commands;
    notifications always reach their recipient.
"""

import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from pitchside.config import settings
from pitchside.services.session_service import SESSION_COOKIE, SessionContext, resolve_session
from pitchside.services.websocket_manager import websocket_manager

logger = logging.getLogger("pitchside.ws")

router = APIRouter()

_CLOSE_UNAUTHORIZED = 4401
_CLOSE_DISABLED = 4403
_CLOSE_FULL = 1013


def _token_from_ws(websocket) -> Optional[str]:
    """Session cookie first; the query token is for clients that cannot send cookies."""
    token = websocket.cookies.get(SESSION_COOKIE)
    if token:
        return token
    return websocket.query_params.get("token") or None


async def _resolve_ws_session(token: Optional[str]) -> Optional[SessionContext]:
    return await resolve_session(token)


@router.websocket("/ws/events")
async def events_stream(websocket: WebSocket):
    if not settings.WS_EVENTS_ENABLED:
        await websocket.close(code=_CLOSE_DISABLED)
        return
    session = await _resolve_ws_session(_token_from_ws(websocket))
    if session is None:
        await websocket.close(code=_CLOSE_UNAUTHORIZED)
        return

    initial_filters = {"match_ids": websocket.query_params.getlist("match_id")}
    try:
        connection_id = await websocket_manager.connect(
            websocket,
            user_id=session.user_id,
            initial_filters=initial_filters,
        )
    except RuntimeError:
        await websocket.close(code=_CLOSE_FULL)
        return

    try:
        while True:
            message = await websocket.receive_json()
            await websocket_manager.touch(connection_id)
            if not isinstance(message, dict):
                continue
            command = str(message.get("type") or "")
            if command == "pong":
                continue
            if command in ("subscribe", "unsubscribe", "replace_subscriptions"):
                filters = await websocket_manager.update_filters(connection_id, command, message.get("data") or {})
                await websocket.send_json({"type": "filters", "data": filters})
    except WebSocketDisconnect:
        pass
    except ValueError:
        logger.debug("Malformed WS message from %s", session.user_id)
    finally:
        await websocket_manager.disconnect(connection_id)
