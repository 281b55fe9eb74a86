"""
Plugin Server - WebSocket Connection Manager

Owns the WebSocket listener the Figma plugin connects to. Exactly one plugin
connection is canonical at a time; a newer connection replaces the older one
(the plugin reconnecting after a reload).
"""

import asyncio
import logging
from typing import Callable, Optional, Set

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

logger = logging.getLogger(__name__)

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 3055

MessageHandler = Callable[[str | bytes], None]
DisconnectHandler = Callable[[str], None]


class PluginServer:
    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        on_message: Optional[MessageHandler] = None,
        on_disconnect: Optional[DisconnectHandler] = None,
    ):
        """
        Args:
            host: Interface to bind
            port: Port to bind; 0 picks a free port, readable from `port` after `start()`
            on_message: Called with every frame received from the canonical connection
            on_disconnect: Called with a reason whenever the canonical connection is lost
        """
        self.host = host
        self.port = port
        self.on_message = on_message
        self.on_disconnect = on_disconnect
        self.websocket: Optional[ServerConnection] = None
        self._server: Optional[Server] = None
        self._connected = asyncio.Event()
        self._close_tasks: Set[asyncio.Task] = set()

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}"

    def is_connected(self) -> bool:
        return self.websocket is not None and self.websocket.state is State.OPEN

    async def start(self) -> None:
        """Bind the listener. Returns once it is ready to accept the plugin."""
        if self._server is not None:
            return
        try:
            self._server = await serve(self._handle_connection, self.host, self.port, max_size=None)
        except OSError as e:
            logger.error(f"❌ WebSocket server failed to bind {self.host}:{self.port}: {e}")
            raise
        sockets = list(self._server.sockets)
        if sockets:
            self.port = sockets[0].getsockname()[1]
        logger.info(f"🌉 WebSocket server listening on {self.url}")

    async def stop(self) -> None:
        """Close the active plugin connection and the listener."""
        server = self._server
        if server is None:
            return
        self._server = None
        if self.websocket is not None:
            self._drop_canonical("Bridge stopped")
        # Abandon close handshakes with replaced peers; server.close() tears those connections down
        for task in list(self._close_tasks):
            task.cancel()
        await asyncio.gather(*self._close_tasks, return_exceptions=True)
        server.close()
        await server.wait_closed()
        logger.info("🛑 WebSocket server stopped")

    async def send(self, message: str) -> None:
        websocket = self.websocket
        if websocket is None or websocket.state is not State.OPEN:
            raise ConnectionError("Figma plugin is not connected")
        await websocket.send(message)

    async def wait_for_connection(self, timeout: Optional[float] = None) -> bool:
        """Wait until a plugin is connected. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._connected.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return self.is_connected()

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        previous = self.websocket
        self.websocket = websocket
        self._connected.set()
        logger.info(f"🔌 Figma plugin connected from {websocket.remote_address}")

        if previous is not None and previous is not websocket:
            # Last connection wins; requests sent on the old one can no longer be answered
            logger.warning("♻️ New plugin connection replaces the previous one")
            self._notify_disconnect("Replaced by a newer plugin connection")
            # Closing waits for the old peer to answer; the new connection must be read meanwhile
            task = asyncio.create_task(previous.close(code=1000, reason="Replaced by a newer connection"))
            self._close_tasks.add(task)
            task.add_done_callback(self._close_tasks.discard)

        try:
            async for message in websocket:
                if self.websocket is not websocket:
                    break
                if self.on_message is not None:
                    self.on_message(message)
        except ConnectionClosed as e:
            logger.warning(f"💔 Plugin connection closed with error: {e}")
        finally:
            if self.websocket is websocket:
                self._drop_canonical("WebSocket connection closed")

    def _drop_canonical(self, reason: str) -> None:
        self.websocket = None
        self._connected.clear()
        logger.info(f"🔌 Figma plugin disconnected ({reason})")
        self._notify_disconnect(reason)

    def _notify_disconnect(self, reason: str) -> None:
        if self.on_disconnect is not None:
            self.on_disconnect(reason)
