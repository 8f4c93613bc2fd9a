import enum


class InboundEvent(enum.Enum):
    """
    Enumerates the events a chat client sends to the relay.
    Payload shapes are noted beside each member.
    """
    SEND_MESSAGE = "sendMessage"        # Payload: MessageRequest, acknowledged
    OPEN_CHAT = "openChat"              # Payload: conversationId (str)
    BOOKING_CREATED = "bookingCreated"  # Payload: Booking
    TYPING = "typing"                   # Payload: {"conversationId": str, "isTyping": bool}
    JOIN_ROOM = "joinRoom"              # Payload: conversationId (str)
    LEAVE_ROOM = "leaveRoom"            # Payload: conversationId (str)


class OutboundEvent(enum.Enum):
    """
    Enumerates the events the relay emits to chat clients.
    Events signify that something *has happened*. Payloads provide context.
    """
    MESSAGE_RECEIVED = "messageReceived"  # Payload: MessageRequest (wire form)
    BOOKINGS_UPDATED = "bookingsUpdated"  # Payload: [Booking]
    MESSAGES_READ = "messagesRead"        # Payload: {"conversationId": str, "userId": str}
    TOKEN_EXPIRED = "tokenExpired"        # Payload: none
    MESSAGE_ERROR = "messageError"        # Payload: {"error": str, "originalMessage": dict}
    TYPING = "typing"                     # Payload: {"userId": str, "isTyping": bool}
    USER_JOINED = "userJoined"            # Payload: userId (str)
    USER_LEFT = "userLeft"                # Payload: userId (str)
