import asyncio
import base64
import json
import os

import pytest
from websockets.asyncio.client import connect

from figma_bridge import FigmaBridge
from figma_communicator import ConnectionClosedError, NotConnectedError
from figma_protocol import FigmaAction, ResponseEnvelope, encode_response


async def started_bridge(timeout: float = 5.0) -> FigmaBridge:
    bridge = FigmaBridge(host="127.0.0.1", port=0, timeout=timeout)
    await bridge.start()
    return bridge


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


def test_start_binds_a_port_and_reports_disconnected() -> None:
    async def scenario():
        bridge = await started_bridge()
        try:
            assert bridge.server.port != 0
            assert bridge.is_connected() is False
            with pytest.raises(NotConnectedError):
                await bridge.send_command(FigmaAction.CREATE_TEXT, {"content": "hi"})
        finally:
            await bridge.stop()

    asyncio.run(scenario())


def test_plugin_round_trip_over_websocket() -> None:
    async def scenario():
        bridge = await started_bridge()
        try:
            async with connect(bridge.url) as plugin:
                assert await bridge.server.wait_for_connection(timeout=2.0)

                first = asyncio.create_task(bridge.send_command(FigmaAction.CREATE_TEXT, {"content": "one"}))
                second = asyncio.create_task(bridge.send_command(FigmaAction.CREATE_TEXT, {"content": "two"}))
                frames = [json.loads(await plugin.recv()) for _ in range(2)]

                # Answer out of order, with noise in between
                await plugin.send("garbage")
                for frame in reversed(frames):
                    response = ResponseEnvelope(id=frame["id"], success=True, data=frame["payload"]["content"])
                    await plugin.send(encode_response(response))

                return (await first).data, (await second).data
        finally:
            await bridge.stop()

    assert asyncio.run(scenario()) == ("one", "two")


def test_plugin_disconnect_fails_pending_requests() -> None:
    async def scenario():
        bridge = await started_bridge()
        try:
            plugin = await connect(bridge.url)
            assert await bridge.server.wait_for_connection(timeout=2.0)

            pending = asyncio.create_task(bridge.send_command(FigmaAction.DELETE_NODE, {"nodeId": "1:1"}))
            await plugin.recv()
            await plugin.close()

            with pytest.raises(ConnectionClosedError):
                await asyncio.wait_for(pending, 2.0)
            await wait_until(lambda: not bridge.is_connected())
            assert bridge.communicator.pending_count == 0
        finally:
            await bridge.stop()

    asyncio.run(scenario())


def test_newer_plugin_connection_replaces_older_one() -> None:
    async def scenario():
        bridge = await started_bridge()
        try:
            old = await connect(bridge.url)
            assert await bridge.server.wait_for_connection(timeout=2.0)
            old_socket = bridge.server.websocket

            stale = asyncio.create_task(bridge.send_command(FigmaAction.DELETE_NODE, {"nodeId": "1:1"}))
            await old.recv()

            async with connect(bridge.url) as new:
                await wait_until(lambda: bridge.server.websocket is not old_socket and bridge.is_connected())
                with pytest.raises(ConnectionClosedError):
                    await asyncio.wait_for(stale, 2.0)

                fresh = asyncio.create_task(bridge.send_command(FigmaAction.DELETE_NODE, {"nodeId": "2:2"}))
                frame = json.loads(await new.recv())
                await new.send(encode_response(ResponseEnvelope(id=frame["id"], success=True, data="2:2")))
                assert (await fresh).data == "2:2"

                # The replaced socket closing later must not clear the new connection
                await old.close()
                await asyncio.sleep(0.05)
                assert bridge.is_connected()
        finally:
            await bridge.stop()

    asyncio.run(scenario())


def test_silent_replaced_peer_does_not_delay_new_connection() -> None:
    async def scenario():
        bridge = await started_bridge()
        # Completes the handshake, then never answers anything, like a killed plugin
        reader, writer = await asyncio.open_connection("127.0.0.1", bridge.server.port)
        try:
            key = base64.b64encode(os.urandom(16)).decode()
            writer.write((
                "GET / HTTP/1.1\r\n"
                f"Host: 127.0.0.1:{bridge.server.port}\r\n"
                "Upgrade: websocket\r\n"
                "Connection: Upgrade\r\n"
                f"Sec-WebSocket-Key: {key}\r\n"
                "Sec-WebSocket-Version: 13\r\n\r\n"
            ).encode())
            await writer.drain()
            assert b" 101 " in await reader.readuntil(b"\r\n\r\n")
            assert await bridge.server.wait_for_connection(timeout=2.0)
            silent_socket = bridge.server.websocket

            async with connect(bridge.url) as new:
                await wait_until(lambda: bridge.server.websocket is not silent_socket and bridge.is_connected())

                fresh = asyncio.create_task(bridge.send_command(FigmaAction.DELETE_NODE, {"nodeId": "2:2"}))
                frame = json.loads(await new.recv())
                await new.send(encode_response(ResponseEnvelope(id=frame["id"], success=True, data="2:2")))
                assert (await asyncio.wait_for(fresh, 2.0)).data == "2:2"
        finally:
            writer.close()
            await bridge.stop()

    asyncio.run(scenario())


def test_stop_closes_active_connection() -> None:
    async def scenario():
        bridge = await started_bridge()
        plugin = await connect(bridge.url)
        assert await bridge.server.wait_for_connection(timeout=2.0)
        pending = asyncio.create_task(bridge.send_command(FigmaAction.DELETE_NODE, {"nodeId": "1:1"}))
        await plugin.recv()

        await bridge.stop()

        with pytest.raises(ConnectionClosedError):
            await pending
        assert bridge.is_connected() is False
        await plugin.close()

    asyncio.run(scenario())
