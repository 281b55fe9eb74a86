"""
Figma Protocol - Wire Envelopes

Defines the JSON frames exchanged with the Figma plugin over the WebSocket:
outbound command envelopes, inbound response envelopes, the fixed action
vocabulary, and correlation id generation.
"""

import json
import time
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, ValidationError


class FigmaAction(str, Enum):
    CREATE_FRAME = "CREATE_FRAME"
    CREATE_TEXT = "CREATE_TEXT"
    CREATE_RECTANGLE = "CREATE_RECTANGLE"
    CREATE_IMAGE = "CREATE_IMAGE"
    UPDATE_NODE = "UPDATE_NODE"
    DELETE_NODE = "DELETE_NODE"
    CONVERT_TO_COMPONENT = "CONVERT_TO_COMPONENT"
    REORDER_NODE = "REORDER_NODE"


class CommandEnvelope(BaseModel):
    """A command sent to the plugin. Frozen once built."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    id: str
    action: FigmaAction
    payload: Dict[str, Any]
    timestamp: int


class ResponseEnvelope(BaseModel):
    """A reply produced by the plugin for a single command id."""

    model_config = ConfigDict(frozen=True)

    id: str
    success: bool
    data: Any = None
    error: Optional[str] = None


def generate_request_id() -> str:
    """Millisecond time prefix plus a random suffix, e.g. ``1718000000000-3f9a1c2b``."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def build_command(action: FigmaAction | str, payload: Optional[Dict[str, Any]] = None) -> CommandEnvelope:
    return CommandEnvelope(
        id=generate_request_id(),
        action=FigmaAction(action),
        payload=payload or {},
        timestamp=int(time.time() * 1000),
    )


def encode_command(command: CommandEnvelope) -> str:
    return json.dumps(command.model_dump(mode="json"), ensure_ascii=False)


def decode_command(raw: str | bytes) -> CommandEnvelope:
    try:
        return CommandEnvelope.model_validate_json(raw)
    except ValidationError as e:
        raise ValueError(f"Malformed command envelope: {e.error_count()} error(s)") from e


def encode_response(response: ResponseEnvelope) -> str:
    # `data`/`error` are optional on the wire; only emit what was given
    return json.dumps(response.model_dump(mode="json", exclude_unset=True), ensure_ascii=False)


def decode_response(raw: str | bytes) -> ResponseEnvelope:
    """Parse one inbound frame.

    Raises:
        ValueError: If the frame is not JSON or lacks `id`/`success`.
    """
    try:
        return ResponseEnvelope.model_validate_json(raw)
    except ValidationError as e:
        raise ValueError(f"Malformed response envelope: {e.error_count()} error(s)") from e
