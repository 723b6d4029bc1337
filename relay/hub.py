from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any
from uuid import uuid4

from fastapi import WebSocket

from relay.metrics import realtime_connections, realtime_pushes_total

logger = logging.getLogger(__name__)

JOIN_ROOM = "join_room"
NEW_COMPLIMENT = "new_compliment"


class RealtimeHub:
    """
    Tracks open realtime connections and their per-code subscription groups.

    Membership is only touched from the event loop, so no lock is held.
    Any connection may join any code; there is no ownership check.
    """

    def __init__(self) -> None:
        self._connections: dict[str, WebSocket] = {}
        self._groups: dict[str, set[str]] = defaultdict(set)
        self._memberships: dict[str, set[str]] = defaultdict(set)

    def connect(self, websocket: WebSocket) -> str:
        """Register a connection and return its id. It starts in no group."""
        connection_id = uuid4().hex
        self._connections[connection_id] = websocket
        realtime_connections.inc()
        logger.info(f"Realtime client connected: {connection_id}")
        return connection_id

    def join(self, connection_id: str, code: str) -> None:
        if connection_id not in self._connections:
            logger.debug(f"Ignoring join for unknown connection {connection_id}")
            return
        self._groups[code].add(connection_id)
        self._memberships[connection_id].add(code)
        logger.info(f"Connection {connection_id} joined room: {code}")

    def disconnect(self, connection_id: str) -> None:
        """Drop a connection from every group it joined."""
        if self._connections.pop(connection_id, None) is None:
            return
        realtime_connections.dec()

        for code in self._memberships.pop(connection_id, set()):
            members = self._groups.get(code)
            if members is None:
                continue
            members.discard(connection_id)
            if not members:
                del self._groups[code]

        logger.info(f"Realtime client disconnected: {connection_id}")

    async def publish(self, code: str, payload: Any) -> None:
        """
        Push a new_compliment event to every member of a group.

        Fire-and-forget: an empty group drops the event, and a connection that
        fails to receive is removed instead of raising.
        """
        members = list(self._groups.get(code, ()))
        if not members:
            logger.debug(f"No subscribers for room {code}, event dropped")
            return

        event = {"event": NEW_COMPLIMENT, "data": payload}
        failed: list[str] = []
        for connection_id in members:
            websocket = self._connections.get(connection_id)
            if websocket is None:
                continue
            try:
                await websocket.send_json(event)
                realtime_pushes_total.inc()
            except Exception as e:
                logger.warning(f"Push to connection {connection_id} failed: {e}")
                failed.append(connection_id)

        for connection_id in failed:
            self.disconnect(connection_id)

        logger.debug(f"Pushed {NEW_COMPLIMENT} to {len(members) - len(failed)}/{len(members)} connections in room {code}")

    def members(self, code: str) -> set[str]:
        return set(self._groups.get(code, ()))

    def connection_count(self) -> int:
        return len(self._connections)
