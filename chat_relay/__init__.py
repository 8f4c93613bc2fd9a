"""Socket.IO chat relay package for booking conversations.

This package relays chat messages, read receipts, typing and presence signals
between the guest and the property owner of a booking. Durable storage and
authorization live in the backend REST service.

Components:
- session_registry: user id -> open connection ids
- rooms: booking-derived conversation rooms
- backend_gateway: HTTP calls to the backend, reduced to AuthExpired / Unavailable
- transport: Socket.IO adapter used by the lifecycle controller
- lifecycle: connect, bootstrap, event handling and disconnect per connection
- server: AsyncServer + aiohttp assembly and process entry point
"""

from . import backend_gateway
from . import lifecycle
from . import rooms
from . import server
from . import session_registry
from . import transport

__all__ = [
    'backend_gateway',
    'lifecycle',
    'rooms',
    'server',
    'session_registry',
    'transport'
]
