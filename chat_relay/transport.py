"""Socket.IO transport adapter.

Thin wrapper around ``socketio.AsyncServer`` bound to one namespace, so the
lifecycle controller only deals in sids, rooms and event enums.
"""
import logging
from typing import Any, List, Optional

import socketio

logger = logging.getLogger(__name__)


class SocketIOTransport:
    def __init__(self, sio: socketio.AsyncServer, namespace: str = "/"):
        self.sio = sio
        self.namespace = namespace

    async def emit(self, event, data: Any = None, to: Optional[str] = None,
                   room: Optional[str] = None, skip_sid: Optional[str] = None) -> None:
        """Emit ``event`` to one connection (``to``) or a whole room (``room``)."""
        name = getattr(event, "value", event)
        target = to if to is not None else room
        await self.sio.emit(name, data, to=target, skip_sid=skip_sid, namespace=self.namespace)

    async def enter_room(self, sid: str, room: str) -> None:
        await self.sio.enter_room(sid, room, namespace=self.namespace)

    async def leave_room(self, sid: str, room: str) -> None:
        await self.sio.leave_room(sid, room, namespace=self.namespace)

    def rooms(self, sid: str) -> List[str]:
        return list(self.sio.rooms(sid, namespace=self.namespace))

    async def disconnect(self, sid: str) -> None:
        await self.sio.disconnect(sid, namespace=self.namespace)
