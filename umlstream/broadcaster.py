"""Connection registry and message fan-out for diagram subscribers."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Set

logger = logging.getLogger(__name__)

UML_UPDATE = "uml_update"
ERROR = "error"
JOIN_SESSION = "join-session"

ROOM_PREFIX = "session-"


class Connection(Protocol):
    """Anything that can receive an ``(event, data)`` message."""

    id: str

    async def send(self, event: str, data: Any) -> None:
        ...


def room_name(session_id: str) -> str:
    return f"{ROOM_PREFIX}{session_id}"


class SessionBroadcaster:
    """Tracks connected clients and their session rooms.

    Two delivery paths are exposed: :meth:`broadcast` reaches every
    connection, :meth:`emit_to_session` reaches only the members of one
    session room.  A failed send is logged and dropped; only
    :meth:`disconnect` removes a connection.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, Connection] = {}
        self._rooms: Dict[str, Set[str]] = {}

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def sessions_of(self, conn_id: str) -> List[str]:
        return sorted(
            room[len(ROOM_PREFIX):]
            for room, members in self._rooms.items()
            if conn_id in members
        )

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    async def connect(self, conn: Connection, snapshot: Optional[str]) -> None:
        """Register *conn* and send it the current diagram, if there is one."""
        self._connections[conn.id] = conn
        logger.info("Client connected for UML streaming: %s", conn.id)
        if snapshot is not None:
            await self._deliver(conn, UML_UPDATE, snapshot)

    def join(self, conn_id: str, session_id: Any) -> bool:
        """Move *conn_id* into the room of *session_id*.

        Any previous session room is left first.  Returns False when the
        session id is empty or the connection is unknown.
        """
        if not session_id or not isinstance(session_id, str):
            return False
        if conn_id not in self._connections:
            logger.warning("join-session from unknown connection %s", conn_id)
            return False

        self._leave_all(conn_id)
        self._rooms.setdefault(room_name(session_id), set()).add(conn_id)
        logger.info("Connection %s joined session %s", conn_id, session_id)
        return True

    def disconnect(self, conn_id: str) -> None:
        self._connections.pop(conn_id, None)
        self._leave_all(conn_id)
        logger.info("Client disconnected: %s", conn_id)

    def _leave_all(self, conn_id: str) -> None:
        for room in list(self._rooms):
            members = self._rooms[room]
            members.discard(conn_id)
            if not members:
                del self._rooms[room]

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def broadcast(self, event: str, data: Any) -> int:
        """Send to every connection; returns the number of successful sends."""
        delivered = 0
        for conn in list(self._connections.values()):
            if await self._deliver(conn, event, data):
                delivered += 1
        return delivered

    async def emit_to_session(self, session_id: str, event: str, data: Any) -> int:
        """Send to the members of *session_id*'s room only."""
        members = self._rooms.get(room_name(session_id), set())
        delivered = 0
        for conn_id in sorted(members):
            conn = self._connections.get(conn_id)
            if conn is not None and await self._deliver(conn, event, data):
                delivered += 1
        return delivered

    async def broadcast_diagram(self, diagram: str) -> int:
        return await self.broadcast(UML_UPDATE, diagram)

    async def broadcast_error(self, message: str) -> int:
        return await self.broadcast(ERROR, {"message": message})

    @staticmethod
    async def _deliver(conn: Connection, event: str, data: Any) -> bool:
        try:
            await conn.send(event, data)
        except Exception as exc:  # stale sockets raise a variety of errors
            logger.debug("Dropped %s message to %s: %s", event, conn.id, exc)
            return False
        return True
