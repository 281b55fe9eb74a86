import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv
from agents import Agent, Runner

from system_prompt import SYSTEM_PROMPT
from figma_bridge import FigmaBridge
from figma_communicator import DEFAULT_REQUEST_TIMEOUT
from figma_dispatch import CommandDispatcher
from figma_tools import ALL_TOOLS, FigmaToolContext
from image_ingest import DEFAULT_USER_AGENT, ImageIngestor
from plugin_server import DEFAULT_HOST, DEFAULT_PORT

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

EXIT_COMMANDS = {"exit", "quit"}


@dataclass
class BridgeConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    timeout: float = DEFAULT_REQUEST_TIMEOUT
    user_agent: str = DEFAULT_USER_AGENT
    model: str = "gpt-4.1-nano"
    api_key: Optional[str] = None
    max_turns: int = 10
    log_level: str = "INFO"
    standalone: bool = False


class FigmaAgent:
    """Interactive console: each line typed is one agent run against the bridge."""

    def __init__(self, dispatcher: CommandDispatcher, model: str, api_key: str, max_turns: int = 10):
        # Lazy import: the litellm extension pulls in litellm itself
        from agents.extensions.models.litellm_model import LitellmModel

        self.context = FigmaToolContext(dispatcher=dispatcher)
        self.max_turns = max_turns
        self.agent = Agent(
            name="FigmaBridge",
            instructions=SYSTEM_PROMPT,
            model=LitellmModel(model=model, api_key=api_key),
            tools=ALL_TOOLS,
        )
        logger.info(f"🧰 Tools enabled: {', '.join(t.name for t in ALL_TOOLS)}")

    async def run_prompt(self, prompt: str) -> str:
        result = await Runner.run(self.agent, prompt, context=self.context, max_turns=self.max_turns)
        return str(result.final_output)

    async def run_console(self) -> None:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)

        while True:
            print("> ", end="", flush=True)
            line = await reader.readline()
            if not line:
                break
            prompt = line.decode("utf-8", errors="replace").strip()
            if not prompt:
                continue
            if prompt.lower() in EXIT_COMMANDS:
                break
            try:
                print(await self.run_prompt(prompt))
            except Exception as e:
                logger.error(f"❌ Agent run failed: {e}")


def get_config(argv: Optional[List[str]] = None) -> BridgeConfig:
    """Get configuration from environment variables or CLI args"""
    config = BridgeConfig(
        host=os.getenv("FIGMA_BRIDGE_HOST", DEFAULT_HOST),
        port=int(os.getenv("FIGMA_BRIDGE_PORT", str(DEFAULT_PORT))),
        timeout=float(os.getenv("FIGMA_TOOL_TIMEOUT", str(DEFAULT_REQUEST_TIMEOUT))),
        user_agent=os.getenv("IMAGE_USER_AGENT", DEFAULT_USER_AGENT),
        model=os.getenv("LITELLM_MODEL", "gpt-4.1-nano"),
        api_key=os.getenv("LITELLM_API_KEY"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
    try:
        config.max_turns = int(os.getenv("AGENT_MAX_TURNS", "10"))
    except ValueError:
        config.max_turns = 10

    # Parse CLI args for overrides
    for arg in sys.argv[1:] if argv is None else argv:
        if arg.startswith("--host="):
            config.host = arg.split("=", 1)[1]
        elif arg.startswith("--port="):
            config.port = int(arg.split("=", 1)[1])
        elif arg.startswith("--timeout="):
            config.timeout = float(arg.split("=", 1)[1])
        elif arg.startswith("--model="):
            config.model = arg.split("=", 1)[1]
        elif arg.startswith("--api-key="):
            config.api_key = arg.split("=", 1)[1]
        elif arg == "--standalone":
            config.standalone = True

    # Without a model key the bridge can still serve other tool layers
    if not config.api_key and not config.standalone:
        logger.warning("LITELLM_API_KEY not set; running the bridge standalone")
        config.standalone = True

    return config


async def run(config: BridgeConfig) -> None:
    bridge = FigmaBridge(host=config.host, port=config.port, timeout=config.timeout)
    await bridge.start()
    try:
        if config.standalone:
            logger.info("Waiting for Figma plugin to connect... (Ctrl+C to stop)")
            await asyncio.Future()
        else:
            dispatcher = CommandDispatcher(bridge, ImageIngestor(user_agent=config.user_agent))
            agent = FigmaAgent(dispatcher, config.model, config.api_key, max_turns=config.max_turns)
            await agent.run_console()
    finally:
        await bridge.stop()


def main():
    config = get_config()

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format='[%(asctime)s] [bridge] [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%dT%H:%M:%S'
    )

    logger.info("Starting Figma Bridge")
    logger.info(f"WebSocket: ws://{config.host}:{config.port}")
    logger.info(f"Tool timeout: {config.timeout}s")
    logger.info(f"Mode: {'standalone' if config.standalone else f'agent console ({config.model})'}")

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Bridge interrupted")


if __name__ == "__main__":
    main()
