"""Test configuration and fixtures for the chat relay tests."""
import os
import sys
import asyncio
from collections import defaultdict
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
import socketio
from aiohttp import web

# Add application root to Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from chat_relay.backend_gateway import BackendGateway
from chat_relay.lifecycle import ConnectionLifecycle
from chat_relay.server import ChatServer
from chat_relay.session_registry import SessionRegistry
from utils.config_loader import ConfigManager

SOCKET_TIMEOUT = 2.0


def make_booking(booking_id: str, guest: str, owner: str,
                 conversation_id: Optional[str] = None, active: bool = True) -> Dict[str, Any]:
    booking = {
        "id": booking_id,
        "property": {
            "id": f"prop-{booking_id}",
            "name": "Sea View Apartment",
            "owner": {"id": owner, "firstName": "Olivia", "lastName": "Owner"}
        },
        "guest": {"id": guest, "firstName": "Gabriel", "lastName": "Guest"},
        "conversation": None
    }
    if conversation_id:
        booking["conversation"] = {"id": conversation_id, "active": active, "messages": []}
    return booking


@pytest.fixture
def booking_factory():
    return make_booking


# --- In-memory doubles for the lifecycle unit tests ---

class FakeTransport:
    """Records what each connection would have received over Socket.IO."""

    def __init__(self):
        self._rooms: Dict[str, set] = {}
        self.delivered: Dict[str, List[tuple]] = defaultdict(list)
        self.emits: List[dict] = []
        self.joins: List[tuple] = []
        self.disconnected: List[str] = []

    def connect(self, sid: str) -> None:
        self._rooms[sid] = {sid}

    async def emit(self, event, data=None, to=None, room=None, skip_sid=None):
        name = getattr(event, "value", event)
        self.emits.append({"event": name, "data": data, "to": to, "room": room, "skip_sid": skip_sid})
        if to is not None:
            targets = {to} & set(self._rooms)
        else:
            targets = {sid for sid, rooms in self._rooms.items() if room in rooms}
        targets.discard(skip_sid)
        for sid in targets:
            self.delivered[sid].append((name, data))

    async def enter_room(self, sid, room):
        self.joins.append((sid, room))
        self._rooms.setdefault(sid, {sid}).add(room)

    async def leave_room(self, sid, room):
        self._rooms.get(sid, set()).discard(room)

    def rooms(self, sid):
        return list(self._rooms.get(sid, ()))

    async def disconnect(self, sid):
        self.disconnected.append(sid)
        self._rooms.pop(sid, None)

    def events(self, sid: str, name: str) -> List[Any]:
        return [data for event, data in self.delivered[sid] if event == name]

    def names(self, sid: str) -> List[str]:
        return [event for event, _ in self.delivered[sid]]


class FakeGateway:
    """Scripted backend. ``hold(method)`` pauses the next call until released."""

    def __init__(self):
        self.bookings: Dict[str, list] = {}
        self.errors: Dict[Any, Exception] = {}
        self.calls: List[tuple] = []
        self.posted: List[dict] = []
        self._holds: Dict[str, List[asyncio.Event]] = defaultdict(list)

    def hold(self, method: str) -> asyncio.Event:
        event = asyncio.Event()
        self._holds[method].append(event)
        return event

    async def _call(self, method: str, key: str, token: str):
        self.calls.append((method, key, token))
        if self._holds[method]:
            await self._holds[method].pop(0).wait()
        error = self.errors.get((method, key)) or self.errors.get(method)
        if error is not None:
            raise error

    async def fetch_bookings(self, user_id, token):
        await self._call("fetch_bookings", user_id, token)
        return list(self.bookings.get(user_id, []))

    async def post_message(self, message, token):
        await self._call("post_message", message["conversationId"], token)
        self.posted.append(message)

    async def mark_read(self, conversation_id, token):
        await self._call("mark_read", conversation_id, token)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def lifecycle(transport, gateway, registry):
    return ConnectionLifecycle(transport, gateway, registry=registry)


@pytest.fixture
def connect(lifecycle, transport):
    """Open and bootstrap a connection the way the Socket.IO handler does."""
    async def _connect(sid: str, user_id: str, token: str = "valid-token") -> bool:
        transport.connect(sid)
        connection = lifecycle.open(sid, user_id, token)
        return await lifecycle.bootstrap(connection)
    return _connect


# --- Fake backend REST service ---

def create_backend_app(bookings_by_user: Dict[str, list]):
    """aiohttp app standing in for the bookings/messages REST API.

    Bearer tokens ``expired`` and ``broken`` make every route answer 401 and 500.
    """
    state = {"requests": [], "messages": [], "read": []}

    def check_token(request):
        state["requests"].append({
            "method": request.method,
            "path": request.path,
            "authorization": request.headers.get("Authorization")
        })
        token = request.headers.get("Authorization", "")
        if token == "Bearer expired":
            return web.json_response({"message": "Unauthorized"}, status=401)
        if token == "Bearer broken":
            return web.json_response({"message": "Internal error"}, status=500)
        return None

    async def find_bookings(request):
        rejected = check_token(request)
        if rejected is not None:
            return rejected
        if request.headers.get("Authorization") == "Bearer not-a-list":
            return web.json_response({"bookings": []})
        return web.json_response(bookings_by_user.get(request.match_info["user_id"], []))

    async def post_message(request):
        rejected = check_token(request)
        if rejected is not None:
            return rejected
        state["messages"].append(await request.json())
        return web.json_response({"saved": True}, status=201)

    async def mark_read(request):
        rejected = check_token(request)
        if rejected is not None:
            return rejected
        state["read"].append(request.match_info["conversation_id"])
        return web.Response(status=204)

    async def slow(request):
        await asyncio.sleep(1)
        return web.json_response([])

    app = web.Application()
    app.router.add_get("/bookings/findByUserGuestOrHost/{user_id}", find_bookings)
    app.router.add_post("/users/chat/message", post_message)
    app.router.add_put("/bookings/conversation/{conversation_id}/read", mark_read)
    app.router.add_get("/slow/bookings/findByUserGuestOrHost/{user_id}", slow)
    return app, state


@pytest.fixture
def backend_bookings():
    return {}


@pytest_asyncio.fixture
async def backend_server(backend_bookings):
    """Provide the fake backend; yields (base_url, state)."""
    app, state = create_backend_app(backend_bookings)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = runner.addresses[0][1]
    try:
        yield f"http://127.0.0.1:{port}", state
    finally:
        await runner.cleanup()


@pytest_asyncio.fixture
async def backend_gateway(backend_server):
    base_url, _ = backend_server
    gateway = BackendGateway(base_url, timeout=SOCKET_TIMEOUT)
    await gateway.start()
    try:
        yield gateway
    finally:
        await gateway.close()


# --- Real Socket.IO server for the integration tests ---

@pytest.fixture
def test_config(tmp_path):
    """Defaults only, pointed at nothing yet; no config file, no environment."""
    config = ConfigManager(config_file=str(tmp_path / "missing.json"), use_env=False)
    config.set("server", "cors_origins", "*")
    config.set("server", "shutdown_timeout", 1.0)
    return config


@pytest_asyncio.fixture
async def chat_server(backend_server, test_config):
    """Provide a running relay; yields (server, url)."""
    base_url, _ = backend_server
    test_config.set("backend", "api_url", base_url)
    server = ChatServer(test_config)
    port = await server.start("127.0.0.1", 0)
    try:
        yield server, f"http://127.0.0.1:{port}"
    finally:
        await server.stop()


class RecordingClient:
    """socketio.AsyncClient that keeps every event it receives."""

    EVENTS = ("messageReceived", "bookingsUpdated", "messagesRead", "tokenExpired",
              "messageError", "typing", "userJoined", "userLeft")

    def __init__(self):
        self.sio = socketio.AsyncClient(reconnection=False, logger=False, engineio_logger=False)
        self.received: Dict[str, list] = defaultdict(list)
        self.disconnected = False
        for name in self.EVENTS:
            self.sio.on(name, self._recorder(name))
        self.sio.on("disconnect", self._on_disconnect)

    def _recorder(self, name):
        def record(*args):
            self.received[name].append(args[0] if args else None)
        return record

    def _on_disconnect(self, *args):
        self.disconnected = True

    async def connect(self, url: str, user_id: Optional[str], token: Optional[str]):
        query = f"?userId={user_id}" if user_id else ""
        auth = {"token": token} if token else None
        await self.sio.connect(f"{url}{query}", auth=auth, transports=["websocket"],
                               wait_timeout=SOCKET_TIMEOUT)

    async def wait_for(self, condition, timeout: float = SOCKET_TIMEOUT) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() > deadline:
                return False
            await asyncio.sleep(0.01)
        return True

    async def wait_for_event(self, name: str, count: int = 1) -> bool:
        return await self.wait_for(lambda: len(self.received[name]) >= count)


@pytest_asyncio.fixture
async def make_client():
    clients = []

    def _make():
        client = RecordingClient()
        clients.append(client)
        return client

    try:
        yield _make
    finally:
        for client in clients:
            if client.sio.connected:
                await client.sio.disconnect()
