"""Connection lifecycle controller for the booking chat relay.

This module drives every live connection through

    CONNECTING -> BOOTSTRAPPING -> ACTIVE -> (TERMINATING ->) DISCONNECTED

Bootstrap fetches the user's bookings and joins the connection to the room of
each active conversation. Only then are its inbound events handled: sending
messages, opening a chat, booking creation fan-out, typing, and explicit room
joins and leaves. A 401 from the backend during bootstrap or while sending a
message ends the connection with ``tokenExpired``; read receipts are best effort.

Each connection owns a lock. Bootstrap and every inbound handler run under it,
so one connection's events are processed in arrival order while different
connections interleave freely.
"""
import asyncio
import enum
import functools
import logging
from typing import Any, Dict, Optional

from utils.event_utils import OutboundEvent
from utils.message_utils import (
    MessageRequest, ProtocolError, SendResult,
    create_message_error, create_messages_read_payload,
    create_typing_payload, require_conversation_id
)

from .backend_gateway import AuthExpired, GatewayError, Unavailable
from .rooms import RoomMembership, booking_room, booking_stakeholders, bookings_to_rooms
from .session_registry import SessionRegistry

logger = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    CONNECTING = "connecting"
    BOOTSTRAPPING = "bootstrapping"
    ACTIVE = "active"
    TERMINATING = "terminating"
    DISCONNECTED = "disconnected"


class Connection:
    """The relay's view of one live transport connection."""

    def __init__(self, sid: str, user_id: str, token: str):
        self.sid = sid
        self.user_id = user_id
        self.token = token
        self.state = ConnectionState.CONNECTING
        self.lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self.state not in (ConnectionState.TERMINATING, ConnectionState.DISCONNECTED)

    def __repr__(self):
        return f"<Connection {self.sid} user={self.user_id} state={self.state.value}>"


def serialized(handler):
    """Run an inbound event handler under its connection's lock, once ACTIVE."""
    @functools.wraps(handler)
    async def wrapper(self, sid: str, *args):
        connection = self.connections.get(sid)
        if connection is None:
            logger.warning(f"Dropping {handler.__name__} from unknown connection {sid}")
            return None

        async with connection.lock:
            if connection.state is not ConnectionState.ACTIVE:
                logger.debug(f"Dropping {handler.__name__} for {connection!r}")
                return None
            return await handler(self, connection, *args)
    return wrapper


class ConnectionLifecycle:
    def __init__(self, transport, gateway, registry: Optional[SessionRegistry] = None,
                 rooms: Optional[RoomMembership] = None):
        self.transport = transport
        self.gateway = gateway
        self.registry = registry if registry is not None else SessionRegistry()
        self.rooms = rooms if rooms is not None else RoomMembership(transport)
        self.connections: Dict[str, Connection] = {}

    # --- Connect / bootstrap / disconnect ---

    def open(self, sid: str, user_id: str, token: str) -> Connection:
        """Track a freshly connected client and register it under its user."""
        connection = Connection(sid, user_id, token)
        self.connections[sid] = connection
        self.registry.register(user_id, sid)
        logger.info(f"Client connected: {sid}, User: {user_id}")
        logger.debug(f"Connected users: {sorted(self.registry.users())}")
        return connection

    async def bootstrap(self, connection: Connection) -> bool:
        """Fetch bookings, join their rooms and mark the connection ACTIVE.

        Returns:
            True if the connection became ACTIVE.
        """
        async with connection.lock:
            if not connection.is_open:
                return False
            connection.state = ConnectionState.BOOTSTRAPPING

            try:
                bookings = await self.gateway.fetch_bookings(connection.user_id, connection.token)
            except AuthExpired:
                logger.warning(f"Token expired during bootstrap of {connection.sid} (user {connection.user_id})")
                await self._expire(connection)
                return False
            except Unavailable as e:
                logger.error(f"Bootstrap failed for {connection.sid} (user {connection.user_id}): {e}")
                await self._terminate(connection)
                return False

            if not connection.is_open:
                logger.debug(f"{connection.sid} went away during bootstrap")
                return False

            await self.rooms.ensure_joined(connection.sid, bookings_to_rooms(bookings))
            await self.transport.emit(OutboundEvent.BOOKINGS_UPDATED, bookings, to=connection.sid)
            connection.state = ConnectionState.ACTIVE
            logger.info(f"Connection {connection.sid} active with {len(bookings)} bookings")
            return True

    def close(self, sid: str) -> None:
        """Forget a disconnected client. Safe to call any number of times."""
        connection = self.connections.pop(sid, None)
        if connection is None:
            return

        connection.state = ConnectionState.DISCONNECTED
        self.registry.unregister(connection.user_id, sid)
        logger.info(f"Client disconnected: {sid}, User: {connection.user_id}")

    async def _expire(self, connection: Connection) -> None:
        if not connection.is_open:
            return
        await self.transport.emit(OutboundEvent.TOKEN_EXPIRED, to=connection.sid)
        await self._terminate(connection)

    async def _terminate(self, connection: Connection) -> None:
        if not connection.is_open:
            return
        connection.state = ConnectionState.TERMINATING
        await self.transport.disconnect(connection.sid)
        self.close(connection.sid)

    # --- Inbound events ---

    @serialized
    async def send_message(self, connection: Connection, payload: Any = None) -> Optional[SendResult]:
        """Persist a message, then relay it to its conversation room."""
        try:
            message = MessageRequest.from_payload(payload)
        except ProtocolError as e:
            logger.warning(f"Invalid sendMessage payload from {connection.sid}: {e}")
            return None

        try:
            await self.gateway.post_message(message.to_payload(), connection.token)
        except AuthExpired:
            logger.warning(f"Token expired while {connection.sid} was sending a message")
            await self._expire(connection)
            return SendResult.AUTH_EXPIRED
        except Unavailable as e:
            logger.error(f"Error saving message from {connection.sid}: {e}")
            if connection.is_open:
                await self.transport.emit(
                    OutboundEvent.MESSAGE_ERROR,
                    create_message_error("Failed to send message", payload),
                    to=connection.sid
                )
            return SendResult.UNAVAILABLE

        await self.transport.emit(OutboundEvent.MESSAGE_RECEIVED, message.to_payload(),
                                  room=message.conversation_id)
        logger.info(f"Message sent in conversation: {message.conversation_id}")
        return SendResult.OK

    @serialized
    async def open_chat(self, connection: Connection, conversation_id: Any = None) -> None:
        """Mark a conversation read and tell the other participants. Best effort."""
        try:
            conversation_id = require_conversation_id(conversation_id)
        except ProtocolError as e:
            logger.warning(f"Invalid openChat payload from {connection.sid}: {e}")
            return

        try:
            await self.gateway.mark_read(conversation_id, connection.token)
        except GatewayError as e:
            logger.warning(f"Failed to mark conversation {conversation_id} as read: {e}")
            return

        await self.transport.emit(
            OutboundEvent.MESSAGES_READ,
            create_messages_read_payload(conversation_id, connection.user_id),
            room=conversation_id,
            skip_sid=connection.sid
        )

    @serialized
    async def booking_created(self, connection: Connection, booking: Any = None) -> None:
        """Refresh the bookings of both stakeholders on all their live connections."""
        if not isinstance(booking, dict):
            logger.warning(f"Invalid bookingCreated payload from {connection.sid}: {booking!r}")
            return

        stakeholders = booking_stakeholders(booking)
        if not stakeholders:
            logger.warning(f"Booking {booking.get('id')} names no stakeholders")
            return

        for user_id in stakeholders:
            await self._notify_stakeholder(connection, user_id, booking)

    async def _notify_stakeholder(self, connection: Connection, user_id: str,
                                  booking: Dict[str, Any]) -> None:
        if not self.registry.lookup(user_id):
            logger.debug(f"Stakeholder {user_id} of booking {booking.get('id')} is not connected")
            return

        try:
            bookings = await self.gateway.fetch_bookings(user_id, connection.token)
        except GatewayError as e:
            logger.error(f"Failed to update bookings for user {user_id}: {e}")
            return

        rooms = bookings_to_rooms(bookings)
        new_room = booking_room(booking)
        if new_room:
            rooms.add(new_room)
        for sid in sorted(self.registry.lookup(user_id)):
            target = self.connections.get(sid)
            if target is None or not target.is_open:
                continue
            await self.rooms.ensure_joined(sid, rooms)
            await self.transport.emit(OutboundEvent.BOOKINGS_UPDATED, bookings, to=sid)

    @serialized
    async def typing(self, connection: Connection, data: Any = None) -> None:
        try:
            conversation_id = require_conversation_id((data or {}).get("conversationId"))
        except (ProtocolError, AttributeError):
            logger.warning(f"Invalid typing payload from {connection.sid}: {data!r}")
            return

        await self.transport.emit(
            OutboundEvent.TYPING,
            create_typing_payload(connection.user_id, data.get("isTyping", False)),
            room=conversation_id,
            skip_sid=connection.sid
        )

    @serialized
    async def join_room(self, connection: Connection, conversation_id: Any = None) -> None:
        try:
            conversation_id = require_conversation_id(conversation_id)
        except ProtocolError as e:
            logger.warning(f"Invalid joinRoom payload from {connection.sid}: {e}")
            return

        await self.rooms.join(connection.sid, conversation_id)
        await self.transport.emit(OutboundEvent.USER_JOINED, connection.user_id,
                                  room=conversation_id, skip_sid=connection.sid)

    @serialized
    async def leave_room(self, connection: Connection, conversation_id: Any = None) -> None:
        try:
            conversation_id = require_conversation_id(conversation_id)
        except ProtocolError as e:
            logger.warning(f"Invalid leaveRoom payload from {connection.sid}: {e}")
            return

        await self.rooms.leave(connection.sid, conversation_id)
        await self.transport.emit(OutboundEvent.USER_LEFT, connection.user_id,
                                  room=conversation_id, skip_sid=connection.sid)
