"""
Figma Communicator - Request Correlation Layer

This module correlates commands sent to the Figma plugin with the responses
that come back over the WebSocket. Responses may arrive in any order; each one
is matched to its pending request by id.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Protocol

from figma_protocol import (
    FigmaAction,
    ResponseEnvelope,
    build_command,
    decode_response,
    encode_command,
)

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0


class ToolExecutionError(Exception):
    """
    Structured failure raised by the bridge.

    Carries a payload of shape { code: str, message: str, details?: dict } so
    callers can report the failure without parsing exception text.
    """

    default_code = "unknown_plugin_error"

    def __init__(self, payload: Any, command: str | None = None, params: Dict[str, Any] | None = None):
        self.command = command
        self.params = params

        if isinstance(payload, dict):
            self.code: str = str(payload.get("code", self.default_code))
            self.message: str = str(payload.get("message", ""))
            self.details: Dict[str, Any] = payload.get("details", {}) or {}
        else:
            self.code = self.default_code
            self.message = str(payload)
            self.details = {}

        self.payload = {"code": self.code, "message": self.message, "details": self.details}
        super().__init__(self.message if self.message else self.code)


class NotConnectedError(ToolExecutionError):
    default_code = "not_connected"


class RequestTimeoutError(ToolExecutionError):
    default_code = "request_timeout"


class ConnectionClosedError(ToolExecutionError):
    default_code = "connection_closed"


class PluginConnection(Protocol):
    """What the communicator needs from the transport."""

    def is_connected(self) -> bool: ...

    async def send(self, message: str) -> None: ...


class PendingState(str, Enum):
    PENDING = "pending"
    SETTLED = "settled"


@dataclass
class PendingRequest:
    """One in-flight command.

    Only the first transition out of PENDING applies; later attempts (a reply
    after a timeout, a disconnect after a reply) return False and do nothing.
    """

    request_id: str
    action: str
    future: asyncio.Future
    created_at: float = field(default_factory=time.time)
    timer: Optional[asyncio.TimerHandle] = None
    state: PendingState = PendingState.PENDING

    @property
    def settled(self) -> bool:
        return self.state is PendingState.SETTLED

    def resolve(self, response: ResponseEnvelope) -> bool:
        if not self._settle():
            return False
        if not self.future.done():
            self.future.set_result(response)
        return True

    def reject(self, error: BaseException) -> bool:
        if not self._settle():
            return False
        if not self.future.done():
            self.future.set_exception(error)
        return True

    def elapsed(self) -> float:
        return time.time() - self.created_at

    def _settle(self) -> bool:
        if self.state is PendingState.SETTLED:
            return False
        self.state = PendingState.SETTLED
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None
        return True


class FigmaCommunicator:
    """
    Handles request/response correlation with the Figma plugin.

    This class manages:
    - Refusing commands while the plugin is not connected
    - Sending command envelopes with unique ids
    - Resolving pending requests when response envelopes arrive
    - Expiring requests after the timeout and failing them all on disconnect
    """

    def __init__(self, connection: PluginConnection, timeout: float = DEFAULT_REQUEST_TIMEOUT):
        """
        Initialize the communicator.

        Args:
            connection: Transport used to check liveness and send frames
            timeout: Timeout in seconds for each command (default: 30.0)
        """
        self.connection = connection
        self.timeout = timeout
        self.pending_requests: Dict[str, PendingRequest] = {}

    @property
    def pending_count(self) -> int:
        return len(self.pending_requests)

    def is_connected(self) -> bool:
        return self.connection.is_connected()

    async def send_command(self, action: FigmaAction | str, payload: Dict[str, Any] | None = None) -> ResponseEnvelope:
        """
        Send a command to the Figma plugin and wait for its response.

        Args:
            action: The action name (e.g., "CREATE_FRAME")
            payload: The JSON-serializable payload for the action

        Returns:
            The plugin's response envelope, successful or not

        Raises:
            NotConnectedError: If no plugin is connected; nothing is sent
            RequestTimeoutError: If no response arrives within the timeout
            ConnectionClosedError: If the plugin disconnects before responding
            ToolExecutionError: If the frame could not be written
        """
        if not self.connection.is_connected():
            raise NotConnectedError(
                {"code": "not_connected", "message": "Figma plugin is not connected. Please open the plugin in Figma."},
                command=getattr(action, "value", action),
                params=payload,
            )

        command = build_command(action, payload)
        request_id = command.id
        loop = asyncio.get_running_loop()

        pending = PendingRequest(request_id=request_id, action=command.action, future=loop.create_future())
        pending.timer = loop.call_later(self.timeout, self._expire, request_id)
        self.pending_requests[request_id] = pending

        logger.debug(f"📝 Added to pending requests: {request_id} (total: {len(self.pending_requests)})")

        try:
            logger.info(f"🚀 Sending {command.action} with ID: {request_id}")
            await self.connection.send(encode_command(command))
        except Exception as e:
            if self.pending_requests.get(request_id) is pending:
                del self.pending_requests[request_id]
            # No-op when a disconnect already failed this request mid-write
            pending.reject(ToolExecutionError(
                {"code": "communication_error", "message": f"Failed to send {command.action}: {e}"},
                command=command.action,
                params=payload,
            ))

        return await pending.future

    def handle_message(self, raw: str | bytes) -> None:
        """
        Handle one inbound frame from the plugin.

        Malformed frames and responses for unknown ids are logged and dropped.
        """
        try:
            response = decode_response(raw)
        except ValueError as e:
            preview = raw[:200] if isinstance(raw, (str, bytes)) else raw
            logger.error(f"❌ Dropping malformed message from plugin: {e}. Raw: {preview!r}")
            return

        pending = self.pending_requests.pop(response.id, None)
        if pending is None:
            logger.warning(f"❌ Received response for unknown request: {response.id}")
            return

        elapsed = pending.elapsed()
        if response.success:
            logger.info(f"✅ {pending.action} ({response.id}) completed after {elapsed:.3f}s")
        else:
            logger.error(f"❌ {pending.action} ({response.id}) failed after {elapsed:.3f}s: {response.error}")
        logger.debug(f"🎯 Result payload: {response.data}")
        pending.resolve(response)

    def fail_all_pending(self, reason: str = "WebSocket connection closed") -> int:
        """Reject every pending request as disconnected. Returns how many were failed."""
        pending_requests = list(self.pending_requests.values())
        self.pending_requests.clear()

        failed = 0
        for pending in pending_requests:
            error = ConnectionClosedError(
                {"code": "connection_closed", "message": reason, "details": {"id": pending.request_id}},
                command=pending.action,
            )
            if pending.reject(error):
                failed += 1
        if failed:
            logger.warning(f"🔌 Failed {failed} pending request(s): {reason}")
        return failed

    def close(self) -> None:
        """Fail pending requests on shutdown."""
        self.fail_all_pending("Bridge is shutting down")

    def _expire(self, request_id: str) -> None:
        pending = self.pending_requests.pop(request_id, None)
        if pending is None:
            return
        error = RequestTimeoutError(
            {
                "code": "request_timeout",
                "message": f"Request {request_id} timed out after {self.timeout}s",
                "details": {"id": request_id},
            },
            command=pending.action,
        )
        if pending.reject(error):
            logger.error(f"⏰ {pending.action} (ID: {request_id}) timed out after {pending.elapsed():.3f}s (limit: {self.timeout}s)")
