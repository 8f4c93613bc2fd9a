#!/usr/bin/env python3
"""Booking Chat Relay Socket.IO Server

This module assembles the Socket.IO server that relays chat, presence and typing
events between the participants of a booking conversation. The backend REST
service owns all durable state; the relay only tracks live connections and the
conversation rooms they belong to.

Key Features:
- Handshake with a user id (query string) and a bearer token (auth payload)
- Booking-derived conversation rooms joined on connect
- Message relay after the backend has persisted the message, with ack
- Booking-created fan-out to every live connection of both stakeholders
- Forced disconnect with ``tokenExpired`` when the backend rejects a token
- ``GET /health`` with live connection and user counts
"""
import os
import sys
import logging
import argparse
from urllib.parse import parse_qs
from typing import Any, Dict, Optional

import socketio
from aiohttp import web

from utils.config_loader import ConfigManager, config as default_config
from utils.event_utils import InboundEvent
from utils.message_utils import SendResult
from utils.path_config import get_logs_dir

from .backend_gateway import BackendGateway
from .lifecycle import ConnectionLifecycle
from .session_registry import SessionRegistry
from .transport import SocketIOTransport

logger = logging.getLogger(__name__)


def setup_logging(log_level: str = "INFO", log_format: Optional[str] = None):
    """Configure logging with the specified level."""
    log_file = os.path.join(get_logs_dir(), "chat_relay.log")

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=log_format or '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )
    return logging.getLogger('chat_relay')


class ChatServer:
    def __init__(self, config: Optional[ConfigManager] = None,
                 registry: Optional[SessionRegistry] = None,
                 gateway: Optional[BackendGateway] = None):
        self.config = config or default_config
        self.namespace = self.config.get('server', 'namespace', default='/')

        self.sio = socketio.AsyncServer(
            async_mode='aiohttp',
            cors_allowed_origins=self.config.get('server', 'cors_origins'),
            cors_credentials=True
        )
        self.app = web.Application()
        self.sio.attach(self.app, socketio_path=self.config.get('server', 'socketio_path', default='socket.io'))

        self.gateway = gateway or BackendGateway(
            self.config.get('backend', 'api_url'),
            timeout=self.config.get('backend', 'timeout', default=10.0)
        )
        self.transport = SocketIOTransport(self.sio, self.namespace)
        self.lifecycle = ConnectionLifecycle(self.transport, self.gateway, registry=registry)
        self._runner: Optional[web.AppRunner] = None
        self._bootstrap_tasks = set()

        self._register_handlers()
        self.app.router.add_get('/health', self.health)
        self.app.on_startup.append(self._start_gateway)
        self.app.on_cleanup.append(self._close_gateway)

    @property
    def registry(self) -> SessionRegistry:
        return self.lifecycle.registry

    def _register_handlers(self):
        on = self.sio.on
        on('connect', self.on_connect, namespace=self.namespace)
        on('disconnect', self.on_disconnect, namespace=self.namespace)
        on(InboundEvent.SEND_MESSAGE.value, self.on_send_message, namespace=self.namespace)
        on(InboundEvent.OPEN_CHAT.value, self.lifecycle.open_chat, namespace=self.namespace)
        on(InboundEvent.BOOKING_CREATED.value, self.lifecycle.booking_created, namespace=self.namespace)
        on(InboundEvent.TYPING.value, self.lifecycle.typing, namespace=self.namespace)
        on(InboundEvent.JOIN_ROOM.value, self.lifecycle.join_room, namespace=self.namespace)
        on(InboundEvent.LEAVE_ROOM.value, self.lifecycle.leave_room, namespace=self.namespace)

    # --- Socket.IO handlers ---

    async def on_connect(self, sid: str, environ: Dict, auth: Optional[Dict] = None):
        """Validate the handshake, register the client and start its bootstrap."""
        query = parse_qs(environ.get('QUERY_STRING', ''))
        user_id = (query.get('userId') or [None])[0]
        token = auth.get('token') if isinstance(auth, dict) else None

        if not token:
            logger.warning(f"Rejecting {sid}: authentication token missing")
            raise socketio.exceptions.ConnectionRefusedError('Authentication token missing')
        if not user_id:
            logger.warning(f"Rejecting {sid}: user id missing")
            raise socketio.exceptions.ConnectionRefusedError('User id missing')

        connection = self.lifecycle.open(sid, user_id, token)
        task = self.sio.start_background_task(self.lifecycle.bootstrap, connection)
        self._bootstrap_tasks.add(task)
        task.add_done_callback(self._bootstrap_tasks.discard)

    async def on_disconnect(self, sid: str, reason: Any = None):
        self.lifecycle.close(sid)

    async def on_send_message(self, sid: str, data: Any = None):
        """Relay a message; the return value is the client's ack."""
        result = await self.lifecycle.send_message(sid, data)
        if result is SendResult.OK:
            return {'success': True}
        return None

    # --- HTTP ---

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response({
            'status': 'ok',
            'connections': len(self.lifecycle.connections),
            'users': len(self.registry)
        })

    async def _start_gateway(self, app: web.Application):
        await self.gateway.start()

    async def _close_gateway(self, app: web.Application):
        await self.gateway.close()

    # --- Server Lifecycle ---

    async def start(self, host: str, port: int):
        """Start serving on ``host:port`` without blocking. Returns the bound port."""
        self._runner = web.AppRunner(
            self.app,
            shutdown_timeout=self.config.get('server', 'shutdown_timeout', default=5.0)
        )
        await self._runner.setup()
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        port = self._runner.addresses[0][1]
        logger.info(f"Chat server listening on {host}:{port} (namespace {self.namespace})")
        return port

    async def stop(self):
        for task in list(self._bootstrap_tasks):
            task.cancel()
        for sid in list(self.lifecycle.connections):
            await self.sio.disconnect(sid, namespace=self.namespace)
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        logger.info("Chat server stopped")


# --- Argument Parsing ---
def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Booking Chat Relay Socket.IO Server")
    parser.add_argument('--host', type=str, default=default_config.get('server', 'host', default='0.0.0.0'),
                        help='Host IP address to bind the server to.')
    parser.add_argument('--port', type=int, default=default_config.get('server', 'port', default=3001),
                        help='Port number to bind the server to.')
    parser.add_argument('--log-level', default=default_config.get('server', 'log_level', default='INFO'),
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level')
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(args.log_level, default_config.get('logging', 'format'))

    try:
        server = ChatServer()
        logger.info(f"Starting chat relay on {args.host}:{args.port}")
        logger.info(f"Backend API: {server.gateway.api_url}")
        web.run_app(server.app, host=args.host, port=args.port)
    except Exception as e:
        logger.critical(f"Server encountered critical error: {e}", exc_info=True)
        return 1

    logger.info("Server shutdown complete.")
    return 0


if __name__ == '__main__':
    sys.exit(main())
