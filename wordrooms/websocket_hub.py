from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from fastapi import WebSocket


logger = logging.getLogger(__name__)


class RoomWebSocketHub:
    """In-process WebSocket fan-out keyed by room code.

    Contract:
      - subscribe a connection with `connect(code, websocket)`.
      - after every mutation routes call `broadcast(code, payload)`.

    Clients re-fetch room state when notified; polling `GET /rooms/{code}`
    works the same without a socket. Only connections to this process are
    reached.
    """

    def __init__(self) -> None:
        self._by_room: dict[str, set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def connect(self, code: str, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._by_room[code].add(websocket)

    async def disconnect(self, code: str, websocket: WebSocket) -> None:
        async with self._lock:
            conns = self._by_room.get(code)
            if not conns:
                return
            conns.discard(websocket)
            if not conns:
                self._by_room.pop(code, None)

    async def broadcast(self, code: str, payload: dict[str, object]) -> None:
        async with self._lock:
            conns = list(self._by_room.get(code, set()))

        if not conns:
            return

        dead: list[WebSocket] = []
        for ws in conns:
            try:
                await ws.send_json(payload)
            except Exception:
                logger.debug("Dropping dead socket for room %s", code, exc_info=True)
                dead.append(ws)

        if dead:
            async with self._lock:
                for ws in dead:
                    self._by_room.get(code, set()).discard(ws)


def room_updated(code: str) -> dict[str, object]:
    return {"type": "room_updated", "roomCode": code}


hub = RoomWebSocketHub()
