"""WebSocket fan-out of table changes with heartbeat support.

The manager holds one store subscription per table with at least one
connection.  After every commit each connection receives the table as
its own uid may see it: seated players get their hole cards, railbirds
get none.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Optional

from fastapi import WebSocket

from kcpoker.engine import TableEngine
from kcpoker.store import Document, Unsubscribe, get_store, table_doc

logger = logging.getLogger(__name__)


class ClientConnection:
    """Wraps a single WebSocket connection with metadata."""

    __slots__ = ("ws", "uid", "connected_at", "last_pong")

    def __init__(self, ws: WebSocket, uid: str) -> None:
        self.ws = ws
        self.uid = uid
        self.connected_at = time.time()
        self.last_pong = time.time()

    async def send(self, text: str) -> bool:
        """Send text, returning False on failure."""
        try:
            await self.ws.send_text(text)
            return True
        except Exception:
            logger.debug("WS send failed for %s", self.uid, exc_info=True)
            return False


class ConnectionManager:
    """Connections per table, fed by the document store subscription."""

    # Heartbeat interval (seconds); clients should ping within this window
    HEARTBEAT_TIMEOUT = 30

    def __init__(self) -> None:
        # table_id -> {uid -> ClientConnection}
        self._clients: dict[str, dict[str, ClientConnection]] = {}
        # table_id -> unsubscribe callable
        self._subscriptions: dict[str, Unsubscribe] = {}

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    async def connect(self, table_id: str, uid: str, ws: WebSocket) -> ClientConnection:
        await ws.accept()
        conn = ClientConnection(ws, uid)
        clients = self._clients.setdefault(table_id, {})

        # Close the previous connection for this uid (stale tab)
        old = clients.get(uid)
        if old is not None:
            try:
                await old.ws.close(code=4001, reason="Replaced by new connection")
            except Exception:
                logger.debug("Closing replaced socket for %s failed", uid, exc_info=True)
        clients[uid] = conn

        if table_id not in self._subscriptions:
            self._subscriptions[table_id] = await get_store().subscribe(
                table_doc(table_id), self._on_change
            )
        logger.info("WS connect: table=%s uid=%s", table_id, uid)
        return conn

    async def disconnect(
        self, table_id: str, uid: str, conn: Optional[ClientConnection] = None
    ) -> None:
        """Remove a connection.  If *conn* is given, only remove it if it is still current."""
        clients = self._clients.get(table_id)
        if clients is None:
            return
        existing = clients.get(uid)
        if existing is not None and (conn is None or existing is conn):
            del clients[uid]
            logger.info("WS disconnect: table=%s uid=%s", table_id, uid)
        if not clients:
            del self._clients[table_id]
            unsubscribe = self._subscriptions.pop(table_id, None)
            if unsubscribe is not None:
                await unsubscribe()

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    def record_pong(self, table_id: str, uid: str) -> None:
        """Record that a client responded to a heartbeat."""
        conn = self._clients.get(table_id, {}).get(uid)
        if conn:
            conn.last_pong = time.time()

    def is_stale(self, conn: ClientConnection) -> bool:
        return (time.time() - conn.last_pong) > self.HEARTBEAT_TIMEOUT

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    async def _on_change(self, doc_id: str, data: Optional[Document]) -> None:
        table_id = doc_id.split("/", 1)[1]
        if data is None:
            await self.broadcast(table_id, json.dumps({"type": "table_closed", "table_id": table_id}))
            return
        engine = TableEngine.from_dict(data)
        await self.send_views(table_id, engine)

    async def send_views(self, table_id: str, engine: TableEngine) -> None:
        """Send each connection its own projection of *engine*."""
        dead: list[ClientConnection] = []
        for uid, conn in list(self._clients.get(table_id, {}).items()):
            if self.is_stale(conn):
                logger.info("WS heartbeat expired: table=%s uid=%s", table_id, uid)
                try:
                    await conn.ws.close(code=4002, reason="Heartbeat timeout")
                except Exception:
                    logger.debug("Closing stale socket for %s failed", uid, exc_info=True)
                dead.append(conn)
                continue
            message = json.dumps({"type": "table_state", "data": engine.get_player_view(uid)})
            if not await conn.send(message):
                dead.append(conn)
        for conn in dead:
            await self.disconnect(table_id, conn.uid, conn)

    async def broadcast(self, table_id: str, message: str) -> None:
        """Send an arbitrary message to every connection on a table."""
        dead: list[ClientConnection] = []
        for conn in list(self._clients.get(table_id, {}).values()):
            if not await conn.send(message):
                dead.append(conn)
        for conn in dead:
            await self.disconnect(table_id, conn.uid, conn)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_connected_uids(self, table_id: str) -> set[str]:
        return set(self._clients.get(table_id, {}).keys())

    async def close_all(self) -> None:
        for table_id in list(self._subscriptions):
            unsubscribe = self._subscriptions.pop(table_id)
            await unsubscribe()
        self._clients.clear()


manager = ConnectionManager()
