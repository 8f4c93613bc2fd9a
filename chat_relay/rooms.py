"""Conversation rooms for the booking chat relay.

A room is the multicast group of one conversation, keyed by the conversation id.
Membership itself lives in the transport (Socket.IO rooms); this module derives
which rooms a user belongs in from their bookings and applies that idempotently.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Set

logger = logging.getLogger(__name__)


def bookings_to_rooms(bookings: Iterable[Dict[str, Any]]) -> Set[str]:
    """Conversation ids of every booking with an active conversation."""
    rooms = set()
    for booking in bookings:
        if not isinstance(booking, dict):
            continue
        conversation = booking.get("conversation")
        if not isinstance(conversation, dict):
            continue
        conversation_id = conversation.get("id")
        if conversation_id and conversation.get("active"):
            rooms.add(str(conversation_id))
    return rooms


def booking_room(booking: Dict[str, Any]) -> Optional[str]:
    """The conversation id of a booking, whether or not the conversation is active."""
    if not isinstance(booking, dict):
        return None
    conversation = booking.get("conversation")
    if not isinstance(conversation, dict) or not conversation.get("id"):
        return None
    return str(conversation["id"])


def booking_stakeholders(booking: Dict[str, Any]) -> List[str]:
    """The guest and the property owner of a booking, in that order."""
    guest = booking.get("guest")
    property_ = booking.get("property")
    owner = property_.get("owner") if isinstance(property_, dict) else None

    stakeholders = []
    for user in (guest, owner):
        user_id = user.get("id") if isinstance(user, dict) else None
        if user_id and str(user_id) not in stakeholders:
            stakeholders.append(str(user_id))
    return stakeholders


class RoomMembership:
    """Room joins and leaves for live connections, backed by the transport."""

    def __init__(self, transport):
        self.transport = transport

    def rooms_of(self, sid: str) -> Set[str]:
        """Conversation rooms ``sid`` is in, without its private room."""
        return {room for room in self.transport.rooms(sid) if room != sid}

    async def join(self, sid: str, room: str) -> None:
        await self.transport.enter_room(sid, room)
        logger.info(f"Connection {sid} joined room {room}")

    async def leave(self, sid: str, room: str) -> None:
        await self.transport.leave_room(sid, room)
        logger.info(f"Connection {sid} left room {room}")

    async def ensure_joined(self, sid: str, rooms: Iterable[str]) -> Set[str]:
        """Join ``sid`` to every room in ``rooms`` it is not already in.

        Returns:
            The rooms that were newly joined.
        """
        current = self.rooms_of(sid)
        joined = set()
        for room in sorted(set(rooms) - current):
            await self.join(sid, room)
            joined.add(room)
        return joined
