"""Presence coordinator.

Process-wide, in-memory table of connected users: which socket each one
holds, whether they are studying right now and when we last heard from them.
Nothing here is persisted; a restart forgets everyone.

Mutations happen under one ``asyncio.Lock``. Fan-out to friends happens
after the lock is released, working from a snapshot of recipients.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from fastapi import WebSocket

logger = structlog.get_logger()

DEFAULT_SUBJECT = "General Study"

# Sent to the older socket when the same user connects again
REPLACED_CLOSE_CODE = 4000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def frame(kind: str, payload: Any = None) -> dict[str, Any]:  # noqa: ANN401
    """Server -> client envelope."""
    return {"type": kind, "payload": payload}


@dataclass
class LiveSession:
    """A study session in progress on the live channel."""

    start_time: datetime
    subject: str = DEFAULT_SUBJECT
    target: Any = None

    def elapsed_ms(self, now: datetime) -> int:
        return max(0, (now - self.start_time) // timedelta(milliseconds=1))


@dataclass
class PresenceEntry:
    """One connected user."""

    websocket: WebSocket
    socket_id: str
    friend_ids: set[int] = field(default_factory=set)
    session: LiveSession | None = None
    last_seen: datetime = field(default_factory=_utcnow)


class PresenceCoordinator:
    """Tracks connected users and relays study status between friends."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._entries: dict[int, PresenceEntry] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    @property
    def connection_count(self) -> int:
        return len(self._entries)

    # -- queries ------------------------------------------------------------

    def is_online(self, user_id: int) -> bool:
        return user_id in self._entries

    def holds_socket(self, user_id: int, socket_id: str) -> bool:
        entry = self._entries.get(user_id)
        return entry is not None and entry.socket_id == socket_id

    def is_studying(self, user_id: int) -> bool:
        entry = self._entries.get(user_id)
        return entry is not None and entry.session is not None

    def live_session(self, user_id: int) -> LiveSession | None:
        entry = self._entries.get(user_id)
        return entry.session if entry else None

    def online_friends(self, friend_ids: Iterable[int]) -> list[int]:
        """The requested ids that currently hold a connection, in request order."""
        return [fid for fid in friend_ids if fid in self._entries]

    # -- lifecycle ----------------------------------------------------------

    async def connect(self, websocket: WebSocket, user_id: int, friend_ids: Iterable[int] = ()) -> str:
        """Accept the socket and register the user. A reconnect replaces the previous entry."""
        await websocket.accept()
        socket_id = str(uuid.uuid4())
        async with self._lock:
            replaced = self._entries.get(user_id)
            self._entries[user_id] = PresenceEntry(
                websocket=websocket,
                socket_id=socket_id,
                friend_ids=set(friend_ids),
                last_seen=self._clock(),
            )
        if replaced is not None:
            try:
                await replaced.websocket.close(code=REPLACED_CLOSE_CODE, reason="Replaced by a newer connection")
            except Exception:
                logger.debug("presence_close_replaced_failed", user_id=user_id, socket_id=replaced.socket_id)
        logger.info("presence_connected", user_id=user_id, socket_id=socket_id)
        return socket_id

    async def disconnect(self, user_id: int, socket_id: str | None = None) -> None:
        """Drop the user's entry, announcing a stop first if they were studying.

        With ``socket_id`` given, only that connection is removed; a stale
        socket closing after a reconnect leaves the newer entry alone.
        """
        now = self._clock()
        async with self._lock:
            entry = self._entries.get(user_id)
            if entry is None or (socket_id is not None and entry.socket_id != socket_id):
                return
            del self._entries[user_id]
            session = entry.session
            friend_ids = set(entry.friend_ids)

        if session is not None:
            await self._broadcast(
                friend_ids,
                frame("friend_stopped_studying", {"userId": user_id, "duration": session.elapsed_ms(now)}),
            )
        logger.info("presence_disconnected", user_id=user_id, was_studying=session is not None)

    def touch(self, user_id: int) -> None:
        entry = self._entries.get(user_id)
        if entry is not None:
            entry.last_seen = self._clock()

    # -- study status -------------------------------------------------------

    async def start_study(self, user_id: int, subject: str | None = None, target: Any = None) -> LiveSession | None:  # noqa: ANN401
        """Mark the user as studying and tell their online friends."""
        now = self._clock()
        async with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            session = LiveSession(start_time=now, subject=subject or DEFAULT_SUBJECT, target=target)
            entry.session = session
            entry.last_seen = now
            friend_ids = set(entry.friend_ids)

        await self._broadcast(
            friend_ids,
            frame(
                "friend_started_studying",
                {"userId": user_id, "startTime": session.start_time.isoformat(), "subject": session.subject},
            ),
        )
        logger.info("presence_study_started", user_id=user_id, subject=session.subject)
        return session

    async def stop_study(self, user_id: int, now: datetime | None = None) -> int | None:
        """Clear the live session and tell friends. Returns the elapsed ms, or None if not studying."""
        now = now or self._clock()
        async with self._lock:
            entry = self._entries.get(user_id)
            if entry is None or entry.session is None:
                return None
            duration = entry.session.elapsed_ms(now)
            entry.session = None
            entry.last_seen = now
            friend_ids = set(entry.friend_ids)

        await self._broadcast(friend_ids, frame("friend_stopped_studying", {"userId": user_id, "duration": duration}))
        logger.info("presence_study_stopped", user_id=user_id, duration=duration)
        return duration

    async def reconcile_stopped(self, user_id: int, now: datetime | None = None) -> int | None:
        """Called when a session is saved over HTTP; clears a lingering live session."""
        return await self.stop_study(user_id, now=now)

    # -- friend graph -------------------------------------------------------

    async def link_friends(self, a: int, b: int) -> None:
        async with self._lock:
            if a in self._entries:
                self._entries[a].friend_ids.add(b)
            if b in self._entries:
                self._entries[b].friend_ids.add(a)

    async def unlink_friends(self, a: int, b: int) -> None:
        async with self._lock:
            if a in self._entries:
                self._entries[a].friend_ids.discard(b)
            if b in self._entries:
                self._entries[b].friend_ids.discard(a)

    # -- delivery -----------------------------------------------------------

    async def send_to_user(self, user_id: int, kind: str, payload: Any = None) -> bool:  # noqa: ANN401
        """Push a frame on the user's private channel. Returns False if not connected or the send failed."""
        entry = self._entries.get(user_id)
        if entry is None:
            return False
        return await self._send(user_id, entry, frame(kind, payload))

    async def _send(self, user_id: int, entry: PresenceEntry, message: dict[str, Any]) -> bool:
        try:
            await entry.websocket.send_json(message)
            return True
        except Exception:  # noqa: BLE001
            logger.warning("presence_send_failed", user_id=user_id, type=message.get("type"))
            await self._drop(user_id, entry.socket_id)
            return False

    async def _drop(self, user_id: int, socket_id: str) -> None:
        async with self._lock:
            entry = self._entries.get(user_id)
            if entry is not None and entry.socket_id == socket_id:
                del self._entries[user_id]

    async def _broadcast(self, recipients: Iterable[int], message: dict[str, Any]) -> int:
        """Best-effort send to whichever recipients are connected. Returns the delivered count."""
        targets = [(uid, self._entries[uid]) for uid in recipients if uid in self._entries]
        if not targets:
            return 0
        results = await asyncio.gather(*(self._send(uid, entry, message) for uid, entry in targets))
        return sum(1 for ok in results if ok)


# Global singleton
_coordinator: PresenceCoordinator | None = None


def get_coordinator() -> PresenceCoordinator:
    global _coordinator  # noqa: PLW0603
    if _coordinator is None:
        _coordinator = PresenceCoordinator()
    return _coordinator


def reset_coordinator() -> None:
    """Forget all connections (for testing)."""
    global _coordinator  # noqa: PLW0603
    _coordinator = None
