"""WebSocket presence channel with JWT authentication."""

from __future__ import annotations

import json
from typing import Any

import jwt
import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from studytogether.auth.jwt import user_id_from_token
from studytogether.auth.service import get_user_by_id
from studytogether.database import session_scope
from studytogether.presence.coordinator import PresenceCoordinator, frame, get_coordinator
from studytogether.social.service import get_friend_ids

logger = structlog.get_logger()

router = APIRouter()

AUTH_FAILED_CLOSE_CODE = 4001


async def authenticate_token(token: str | None) -> int | None:
    """Return the user id for a valid token naming an existing, verified user."""
    if not token:
        return None
    try:
        user_id = user_id_from_token(token)
    except jwt.InvalidTokenError:
        return None
    async with session_scope() as db:
        user = await get_user_by_id(db, user_id)
    if user is None or not user.is_email_verified:
        return None
    return user.id


async def load_friend_ids(user_id: int) -> set[int]:
    async with session_scope() as db:
        return set(await get_friend_ids(db, user_id))


async def _handle(coordinator: PresenceCoordinator, websocket: WebSocket, user_id: int, message: dict[str, Any]) -> None:
    action = message.get("action")

    if action == "start_study":
        subject = message.get("subject")
        if subject is not None and not isinstance(subject, str):
            msg = "subject must be a string"
            raise ValueError(msg)
        await coordinator.start_study(user_id, subject, message.get("target"))

    elif action == "stop_study":
        await coordinator.stop_study(user_id)

    elif action == "get_online_friends":
        friend_ids = message.get("friendIds", [])
        if not isinstance(friend_ids, list) or not all(isinstance(i, int) for i in friend_ids):
            msg = "friendIds must be a list of user ids"
            raise ValueError(msg)
        await websocket.send_json(frame("online_friends", {"friendIds": coordinator.online_friends(friend_ids)}))

    elif action == "ping":
        await websocket.send_json(frame("pong"))

    else:
        await websocket.send_json(frame("error", {"message": f"Unknown action: {action}"}))


@router.websocket("/ws")
async def presence_endpoint(
    websocket: WebSocket,
    token: str | None = Query(None),
) -> None:
    """Live friend presence.

    Protocol:
        Client -> Server:
            {"action": "start_study", "subject": "Maths", "target": 3600000}
            {"action": "stop_study"}
            {"action": "get_online_friends", "friendIds": [2, 3]}
            {"action": "ping"}

        Server -> Client:
            {"type": "friend_started_studying", "payload": {"userId", "startTime", "subject"}}
            {"type": "friend_stopped_studying", "payload": {"userId", "duration"}}
            {"type": "online_friends", "payload": {"friendIds": [...]}}
            {"type": "achievement_unlocked", "payload": {"type", "title"}}
            {"type": "pong", "payload": null}
            {"type": "error", "payload": {"message": "..."}}
    """
    user_id = await authenticate_token(token)
    if user_id is None:
        await websocket.close(code=AUTH_FAILED_CLOSE_CODE, reason="Authentication failed")
        return

    coordinator = get_coordinator()
    socket_id = await coordinator.connect(websocket, user_id, await load_friend_ids(user_id))

    try:
        while True:
            raw = await websocket.receive_text()
            if not coordinator.holds_socket(user_id, socket_id):
                break
            coordinator.touch(user_id)
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json(frame("error", {"message": "Invalid JSON"}))
                continue
            if not isinstance(msg, dict):
                await websocket.send_json(frame("error", {"message": "Expected a JSON object"}))
                continue

            try:
                await _handle(coordinator, websocket, user_id, msg)
            except ValueError as e:
                await websocket.send_json(frame("error", {"message": str(e)}))
            except WebSocketDisconnect:
                raise
            except Exception:
                logger.exception("presence_handler_failed", user_id=user_id, action=msg.get("action"))
                await websocket.send_json(frame("error", {"message": "Internal error"}))

    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("presence_ws_error", user_id=user_id)
    finally:
        await coordinator.disconnect(user_id, socket_id)
