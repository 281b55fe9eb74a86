"""
Figma Dispatch - the command surface exposed to the tool layer.

Each action has a pydantic payload model (serialized with the plugin's
camelCase field names). The dispatcher sends the payload through the bridge
and turns every outcome, including transport failures, into a ToolResult
with human-readable text.
"""

import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Literal, Optional, Protocol, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from figma_communicator import (
    ConnectionClosedError,
    NotConnectedError,
    RequestTimeoutError,
    ToolExecutionError,
)
from figma_protocol import FigmaAction, ResponseEnvelope
from image_ingest import DEFAULT_FETCH_TIMEOUT_MS, ImageIngestor, IngestionFailure

logger = logging.getLogger(__name__)

NOT_CONNECTED_TEXT = "Error: Figma plugin is not connected. Please open the plugin in Figma first."

PLACEHOLDER_FILL = {"r": 0.9, "g": 0.9, "b": 0.9}
PLACEHOLDER_STROKE = {"r": 0.8, "g": 0.8, "b": 0.8}


# ============================================
# ============ PAYLOAD MODELS ================
# ============================================

class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class RGB(WireModel):
    r: float = Field(ge=0, le=1)
    g: float = Field(ge=0, le=1)
    b: float = Field(ge=0, le=1)


class Padding(WireModel):
    top: float
    right: float
    bottom: float
    left: float


class SolidPaint(WireModel):
    type: Literal["SOLID"] = "SOLID"
    color: RGB


LayoutMode = Literal["HORIZONTAL", "VERTICAL", "NONE"]
PrimaryAxisAlign = Literal["MIN", "CENTER", "MAX", "SPACE_BETWEEN"]
CounterAxisAlign = Literal["MIN", "CENTER", "MAX"]
LayoutSizing = Literal["FIXED", "HUG", "FILL"]
BlendMode = Literal[
    "PASS_THROUGH", "NORMAL", "DARKEN", "MULTIPLY", "LINEAR_BURN", "COLOR_BURN",
    "LIGHTEN", "SCREEN", "LINEAR_DODGE", "COLOR_DODGE", "OVERLAY", "SOFT_LIGHT",
    "HARD_LIGHT", "DIFFERENCE", "EXCLUSION", "HUE", "SATURATION", "COLOR", "LUMINOSITY",
]


class ActionPayload(WireModel):
    action: ClassVar[FigmaAction]


class CreateFrameInput(ActionPayload):
    action: ClassVar[FigmaAction] = FigmaAction.CREATE_FRAME

    name: str
    x: float
    y: float
    width: float
    height: float
    fills: Optional[List[SolidPaint]] = None
    corner_radius: Optional[float] = None
    top_left_radius: Optional[float] = None
    top_right_radius: Optional[float] = None
    bottom_left_radius: Optional[float] = None
    bottom_right_radius: Optional[float] = None
    layout_mode: Optional[LayoutMode] = None
    padding: Optional[Padding] = None
    item_spacing: Optional[float] = None
    primary_axis_align_items: Optional[PrimaryAxisAlign] = None
    counter_axis_align_items: Optional[CounterAxisAlign] = None
    layout_sizing_horizontal: Optional[LayoutSizing] = None
    layout_sizing_vertical: Optional[LayoutSizing] = None
    strokes: Optional[List[SolidPaint]] = None
    stroke_weight: Optional[float] = None
    parent_id: Optional[str] = None


class CreateTextInput(ActionPayload):
    action: ClassVar[FigmaAction] = FigmaAction.CREATE_TEXT

    content: str
    x: float
    y: float
    font_size: float = 16
    font_family: str = "Inter"
    font_weight: Literal[
        "thin", "extralight", "light", "normal", "medium", "semibold", "bold", "extrabold", "black"
    ] = "normal"
    color: Optional[RGB] = None
    width: Optional[float] = None
    text_align_horizontal: Optional[Literal["LEFT", "CENTER", "RIGHT", "JUSTIFIED"]] = None
    text_align_vertical: Optional[Literal["TOP", "CENTER", "BOTTOM"]] = None
    parent_id: Optional[str] = None


class CreateRectangleInput(ActionPayload):
    action: ClassVar[FigmaAction] = FigmaAction.CREATE_RECTANGLE

    x: float
    y: float
    width: float
    height: float
    fills: Optional[List[SolidPaint]] = None
    corner_radius: Optional[float] = None
    strokes: Optional[List[SolidPaint]] = None
    stroke_weight: Optional[float] = None
    name: Optional[str] = None
    parent_id: Optional[str] = None


class CreateImageInput(WireModel):
    """What the caller asks for; the URL is resolved before anything is sent."""

    url: str
    x: float
    y: float
    width: float
    height: float
    name: Optional[str] = None
    corner_radius: Optional[float] = None
    scale_mode: Literal["FILL", "FIT", "CROP", "TILE"] = "FILL"
    parent_id: Optional[str] = None
    use_placeholder_on_error: bool = True
    timeout_ms: int = DEFAULT_FETCH_TIMEOUT_MS


class CreateImagePayload(ActionPayload):
    action: ClassVar[FigmaAction] = FigmaAction.CREATE_IMAGE

    x: float
    y: float
    width: float
    height: float
    image_data: str
    mime_type: str
    scale_mode: Literal["FILL", "FIT", "CROP", "TILE"] = "FILL"
    name: Optional[str] = None
    corner_radius: Optional[float] = None
    parent_id: Optional[str] = None


class NodeProperties(WireModel):
    name: Optional[str] = None
    x: Optional[float] = None
    y: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    fills: Optional[List[SolidPaint]] = None
    corner_radius: Optional[float] = None
    top_left_radius: Optional[float] = None
    top_right_radius: Optional[float] = None
    bottom_left_radius: Optional[float] = None
    bottom_right_radius: Optional[float] = None
    opacity: Optional[float] = Field(default=None, ge=0, le=1)
    blend_mode: Optional[BlendMode] = None
    visible: Optional[bool] = None
    locked: Optional[bool] = None
    strokes: Optional[List[SolidPaint]] = None
    stroke_weight: Optional[float] = None
    layout_mode: Optional[LayoutMode] = None
    padding: Optional[Padding] = None
    item_spacing: Optional[float] = None
    primary_axis_align_items: Optional[PrimaryAxisAlign] = None
    counter_axis_align_items: Optional[CounterAxisAlign] = None
    layout_sizing_horizontal: Optional[LayoutSizing] = None
    layout_sizing_vertical: Optional[LayoutSizing] = None


class UpdateNodeInput(ActionPayload):
    action: ClassVar[FigmaAction] = FigmaAction.UPDATE_NODE

    node_id: str
    properties: NodeProperties


class DeleteNodeInput(ActionPayload):
    action: ClassVar[FigmaAction] = FigmaAction.DELETE_NODE

    node_id: str


class ConvertToComponentInput(ActionPayload):
    action: ClassVar[FigmaAction] = FigmaAction.CONVERT_TO_COMPONENT

    node_id: str
    name: Optional[str] = None


class ReorderNodeInput(ActionPayload):
    action: ClassVar[FigmaAction] = FigmaAction.REORDER_NODE

    node_id: str
    index: int = Field(ge=0, description="0 is the bottom-most child")


PAYLOAD_MODELS: Dict[FigmaAction, Type[ActionPayload]] = {
    FigmaAction.CREATE_FRAME: CreateFrameInput,
    FigmaAction.CREATE_TEXT: CreateTextInput,
    FigmaAction.CREATE_RECTANGLE: CreateRectangleInput,
    FigmaAction.CREATE_IMAGE: CreateImagePayload,
    FigmaAction.UPDATE_NODE: UpdateNodeInput,
    FigmaAction.DELETE_NODE: DeleteNodeInput,
    FigmaAction.CONVERT_TO_COMPONENT: ConvertToComponentInput,
    FigmaAction.REORDER_NODE: ReorderNodeInput,
}


# ============================================
# ============== DISPATCHER ==================
# ============================================

class CommandSender(Protocol):
    def is_connected(self) -> bool: ...

    async def send_command(self, action: FigmaAction | str, payload: Dict[str, Any] | None = None) -> ResponseEnvelope: ...


@dataclass
class ToolResult:
    text: str
    is_error: bool = False
    data: Any = None
    placeholder_used: bool = False
    failure_reason: Optional[str] = None


class CommandDispatcher:
    """
    Sends typed commands to the plugin and reports outcomes as text.

    Args:
        bridge: Anything with `is_connected()` and `send_command()`, normally a FigmaBridge
        ingestor: Resolves image references for `create_image`
    """

    def __init__(self, bridge: CommandSender, ingestor: Optional[ImageIngestor] = None):
        self.bridge = bridge
        self.ingestor = ingestor or ImageIngestor()

    def check_connection(self) -> ToolResult:
        if self.bridge.is_connected():
            return ToolResult("Figma plugin is connected and ready.", data=True)
        return ToolResult(
            'Figma plugin is NOT connected. Please open the "Code to Figma Bridge" plugin in Figma.',
            data=False,
        )

    async def dispatch(self, action: FigmaAction | str, payload: Dict[str, Any]) -> ToolResult:
        """Generic entry: pick the payload model by action name and send it."""
        try:
            model = PAYLOAD_MODELS[FigmaAction(action)]
        except ValueError:
            return ToolResult(f"Error: Unknown action: {action}", is_error=True)
        try:
            request = model.model_validate(payload)
        except ValidationError as e:
            return ToolResult(f"Error: invalid payload for {action}: {e.error_count()} error(s)", is_error=True)
        return await self._run(request, "Command completed successfully.", f"running {action}")

    async def create_frame(self, request: CreateFrameInput) -> ToolResult:
        return await self._run(request, f'Frame "{request.name}" created successfully.', "creating frame")

    async def create_text(self, request: CreateTextInput) -> ToolResult:
        return await self._run(request, "Text created successfully.", "creating text")

    async def create_rectangle(self, request: CreateRectangleInput) -> ToolResult:
        return await self._run(request, "Rectangle created successfully.", "creating rectangle")

    async def update_node(self, request: UpdateNodeInput) -> ToolResult:
        return await self._run(request, f"Node {request.node_id} updated successfully.", "updating node", show_id=False)

    async def delete_node(self, request: DeleteNodeInput) -> ToolResult:
        return await self._run(request, f"Node {request.node_id} deleted successfully.", "deleting node", show_id=False)

    async def convert_to_component(self, request: ConvertToComponentInput) -> ToolResult:
        return await self._run(request, "Converted to component successfully.", "converting to component", id_label="New Component ID")

    async def reorder_node(self, request: ReorderNodeInput) -> ToolResult:
        return await self._run(
            request,
            f"Node {request.node_id} reordered to index {request.index} successfully.",
            "reordering node",
            show_id=False,
        )

    async def create_image(self, request: CreateImageInput) -> ToolResult:
        """
        Resolve the image, then send CREATE_IMAGE.

        If resolution fails and `use_placeholder_on_error` is set, a grey
        rectangle of the same geometry is created instead and the result says
        so. Otherwise the failure reason is returned as the error.
        """
        if not self.bridge.is_connected():
            return ToolResult(NOT_CONNECTED_TEXT, is_error=True)

        outcome = await self.ingestor.ingest(request.url, request.width, request.height, request.timeout_ms)
        if isinstance(outcome, IngestionFailure):
            return await self._create_placeholder(request, outcome.reason)

        payload = CreateImagePayload(
            x=request.x,
            y=request.y,
            width=request.width,
            height=request.height,
            image_data=outcome.to_base64(),
            mime_type=outcome.content_type,
            scale_mode=request.scale_mode,
            name=request.name,
            corner_radius=request.corner_radius,
            parent_id=request.parent_id,
        )
        source_info = " (from data URI)" if request.url.startswith("data:") else ""
        return await self._run(payload, f"Image created successfully{source_info}.", "creating image")

    async def _create_placeholder(self, request: CreateImageInput, reason: str) -> ToolResult:
        if not request.use_placeholder_on_error:
            return ToolResult(f"Error: {reason}", is_error=True, failure_reason=reason)

        placeholder = CreateRectangleInput(
            x=request.x,
            y=request.y,
            width=request.width,
            height=request.height,
            name=f"{request.name} (placeholder)" if request.name else "Image Placeholder",
            corner_radius=request.corner_radius,
            fills=[SolidPaint(color=RGB(**PLACEHOLDER_FILL))],
            strokes=[SolidPaint(color=RGB(**PLACEHOLDER_STROKE))],
            stroke_weight=1,
            parent_id=request.parent_id,
        )
        logger.info(f"🩹 Creating placeholder for failed image: {reason}")
        result = await self._send(placeholder)
        if isinstance(result, ToolResult):
            result.text = f"Error: {reason}. {result.text}"
            result.failure_reason = reason
            return result
        if result.success:
            return ToolResult(
                f"Image fetch failed ({reason}). Created placeholder instead. Node ID: {result.data}",
                data=result.data,
                placeholder_used=True,
                failure_reason=reason,
            )
        return ToolResult(
            f"Error: {reason}. Failed to create placeholder: {result.error}",
            is_error=True,
            failure_reason=reason,
        )

    async def _run(
        self,
        payload: ActionPayload,
        success_text: str,
        verb: str,
        show_id: bool = True,
        id_label: str = "Node ID",
    ) -> ToolResult:
        result = await self._send(payload)
        if isinstance(result, ToolResult):
            return result
        if result.success:
            text = f"{success_text} {id_label}: {result.data}" if show_id else success_text
            return ToolResult(text, data=result.data)
        return ToolResult(f"Error {verb}: {result.error}", is_error=True, failure_reason=result.error)

    async def _send(self, payload: ActionPayload) -> ResponseEnvelope | ToolResult:
        """Send one payload; transport failures come back as an error ToolResult."""
        action = payload.action
        try:
            return await self.bridge.send_command(action, payload.to_wire())
        except NotConnectedError:
            return ToolResult(NOT_CONNECTED_TEXT, is_error=True)
        except RequestTimeoutError as e:
            logger.error(f"⏰ {action.value} timed out: {e.message}")
            return ToolResult(f"Error: {action.value} timed out ({e.message})", is_error=True, failure_reason=e.message)
        except ConnectionClosedError as e:
            logger.error(f"🔌 {action.value} lost its connection: {e.message}")
            return ToolResult(
                f"Error: Figma plugin disconnected before {action.value} completed ({e.message})",
                is_error=True,
                failure_reason=e.message,
            )
        except ToolExecutionError as e:
            logger.error(f"❌ Communication error in {action.value}: {e.message}")
            return ToolResult(f"Error: {e.message}", is_error=True, failure_reason=e.message)
