"""
Figma Bridge - composes the plugin server and the communicator.

One FigmaBridge is created by the entrypoint and handed to whatever needs to
talk to Figma; there is no module-level instance.
"""

from typing import Any, Dict

from figma_communicator import DEFAULT_REQUEST_TIMEOUT, FigmaCommunicator
from figma_protocol import FigmaAction, ResponseEnvelope
from plugin_server import DEFAULT_HOST, DEFAULT_PORT, PluginServer


class FigmaBridge:
    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT, timeout: float = DEFAULT_REQUEST_TIMEOUT):
        self.server = PluginServer(host=host, port=port)
        self.communicator = FigmaCommunicator(self.server, timeout=timeout)
        self.server.on_message = self.communicator.handle_message
        self.server.on_disconnect = self.communicator.fail_all_pending

    @property
    def url(self) -> str:
        return self.server.url

    def is_connected(self) -> bool:
        return self.server.is_connected()

    async def start(self) -> None:
        await self.server.start()

    async def stop(self) -> None:
        self.communicator.close()
        await self.server.stop()

    async def send_command(self, action: FigmaAction | str, payload: Dict[str, Any] | None = None) -> ResponseEnvelope:
        return await self.communicator.send_command(action, payload)

    async def __aenter__(self) -> "FigmaBridge":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
