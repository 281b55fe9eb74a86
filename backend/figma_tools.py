"""
Figma Tools - OpenAI Agent Tools

This module defines the tools the agent uses to create and edit nodes in
Figma. Each tool is a thin wrapper over CommandDispatcher, which it reaches
through the run context, so several bridges can coexist in one process.

Every tool returns text. Failures are returned, not raised, and start with
"Error" so the model can tell a disconnected plugin from a rejected command.
"""

import logging
from dataclasses import dataclass

from agents import RunContextWrapper, function_tool

from figma_dispatch import (
    CommandDispatcher,
    ConvertToComponentInput,
    CreateFrameInput,
    CreateImageInput,
    CreateRectangleInput,
    CreateTextInput,
    DeleteNodeInput,
    NodeProperties,
    ReorderNodeInput,
    ToolResult,
    UpdateNodeInput,
)

logger = logging.getLogger(__name__)


@dataclass
class FigmaToolContext:
    """Run context handed to `Runner.run(..., context=...)`."""

    dispatcher: CommandDispatcher


def _report(tool_name: str, result: ToolResult) -> str:
    if result.is_error:
        logger.error(f"❌ Tool {tool_name} failed: {result.text}")
    elif result.placeholder_used:
        logger.warning(f"🩹 Tool {tool_name} used a placeholder: {result.failure_reason}")
    else:
        logger.info(f"✅ Tool {tool_name}: {result.text}")
    return result.text


# ============================================
# ===============  TOOLS  ====================
# ============================================

@function_tool
async def check_connection(ctx: RunContextWrapper[FigmaToolContext]) -> str:
    """Check whether the Figma plugin is connected and ready to receive commands."""
    return _report("check_connection", ctx.context.dispatcher.check_connection())


@function_tool(strict_mode=False)
async def create_figma_frame(ctx: RunContextWrapper[FigmaToolContext], frame: CreateFrameInput) -> str:
    """Create a frame (container) in Figma.

    Purpose & Use Case
    --------------------
    Frames are the layout containers of a design. Use them for screens,
    cards, button groups and anything that holds children. Setting
    `layoutMode` turns on auto-layout, after which `padding`, `itemSpacing`,
    the axis alignments and the sizing modes apply.

    Parameters (Args)
    ------------------
    frame: Name, position (`x`, `y`), size (`width`, `height`) and optional
        fills, strokes, corner radii (uniform or per corner), auto-layout
        attributes and `parentId`. Colors are RGB in the 0-1 range.

    Returns
    -------
    (str): A confirmation with the new node id, or an error message.

    Agent Guidance
    --------------
    Create parent frames first, then add children with `parentId` set to the
    returned node id.
    """
    logger.info(f"🖼️ Creating frame: {frame.width}x{frame.height} at ({frame.x}, {frame.y}) named '{frame.name}'")
    return _report("create_figma_frame", await ctx.context.dispatcher.create_frame(frame))


@function_tool(strict_mode=False)
async def create_figma_text(ctx: RunContextWrapper[FigmaToolContext], text: CreateTextInput) -> str:
    """Create a text node in Figma.

    Args:
        text: Content, position and optional font size, family, weight, color,
            fixed width, alignment and `parentId`. Defaults: 16px Inter normal.
    """
    logger.info(f"🔤 Creating text at ({text.x}, {text.y}): '{text.content[:40]}'")
    return _report("create_figma_text", await ctx.context.dispatcher.create_text(text))


@function_tool(strict_mode=False)
async def create_figma_rectangle(ctx: RunContextWrapper[FigmaToolContext], rectangle: CreateRectangleInput) -> str:
    """Create a rectangle in Figma with optional fills, strokes and corner radius."""
    logger.info(f"⬛ Creating rectangle: {rectangle.width}x{rectangle.height} at ({rectangle.x}, {rectangle.y})")
    return _report("create_figma_rectangle", await ctx.context.dispatcher.create_rectangle(rectangle))


@function_tool(strict_mode=False)
async def create_figma_image(ctx: RunContextWrapper[FigmaToolContext], image: CreateImageInput) -> str:
    """Create an image element from a URL or a data URI.

    Purpose & Use Case
    --------------------
    Places a bitmap on the canvas. The image is downloaded by the bridge
    (redirects are followed, so Unsplash-style links work) or decoded from a
    `data:` URI. SVG is rasterized at twice the requested size; WebP and other
    formats Figma rejects are converted to PNG.

    Parameters (Args)
    ------------------
    image: `url`, position and size, plus optional `name`, `cornerRadius`,
        `scaleMode` (FILL, FIT, CROP, TILE), `parentId`,
        `usePlaceholderOnError` (default true) and `timeoutMs` (default 30000).

    Returns
    -------
    (str): A confirmation with the node id. When the image cannot be loaded
    and placeholders are allowed, a grey rectangle is created instead and the
    message says why.
    """
    logger.info(f"🏞️ Creating image: {image.width}x{image.height} at ({image.x}, {image.y}) from {image.url[:80]}")
    return _report("create_figma_image", await ctx.context.dispatcher.create_image(image))


@function_tool(strict_mode=False)
async def update_figma_node(ctx: RunContextWrapper[FigmaToolContext], node_id: str, properties: NodeProperties) -> str:
    """Update properties of an existing node.

    Args:
        node_id: The id of the node to update. The user must provide this id.
        properties: Only the properties to change: name, position, size, fills,
            strokes, corner radii, opacity, blend mode, visibility, lock state
            and auto-layout attributes.
    """
    logger.info(f"✏️ Updating node {node_id}")
    request = UpdateNodeInput(node_id=node_id, properties=properties)
    return _report("update_figma_node", await ctx.context.dispatcher.update_node(request))


@function_tool
async def delete_figma_node(ctx: RunContextWrapper[FigmaToolContext], node_id: str) -> str:
    """Delete a node by its id. The user must provide the node id."""
    logger.info(f"🗑️ Deleting node {node_id}")
    return _report("delete_figma_node", await ctx.context.dispatcher.delete_node(DeleteNodeInput(node_id=node_id)))


@function_tool(strict_mode=False)
async def convert_to_component(ctx: RunContextWrapper[FigmaToolContext], node_id: str, name: str | None = None) -> str:
    """Convert an existing frame to a component.

    Args:
        node_id: The id of the frame to convert. The user must provide this id.
        name: Optional new name for the component.
    """
    logger.info(f"🧩 Converting node {node_id} to component")
    request = ConvertToComponentInput(node_id=node_id, name=name)
    return _report("convert_to_component", await ctx.context.dispatcher.convert_to_component(request))


@function_tool
async def reorder_figma_node(ctx: RunContextWrapper[FigmaToolContext], node_id: str, index: int) -> str:
    """Move a node to a new index within its parent.

    Args:
        node_id: The id of the node to reorder. The user must provide this id.
        index: Target index. 0 is the bottom-most child (rendered behind);
            higher indexes are rendered on top.
    """
    if index < 0:
        return "Error: 'index' must be 0 or greater"
    logger.info(f"↕️ Reordering node {node_id} to index {index}")
    request = ReorderNodeInput(node_id=node_id, index=index)
    return _report("reorder_figma_node", await ctx.context.dispatcher.reorder_node(request))


ALL_TOOLS = [
    check_connection,
    create_figma_frame,
    create_figma_text,
    create_figma_rectangle,
    create_figma_image,
    update_figma_node,
    delete_figma_node,
    convert_to_component,
    reorder_figma_node,
]
