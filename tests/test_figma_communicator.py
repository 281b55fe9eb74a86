import asyncio
import json
import random

import pytest

from figma_communicator import (
    ConnectionClosedError,
    FigmaCommunicator,
    NotConnectedError,
    PendingRequest,
    RequestTimeoutError,
    ToolExecutionError,
)
from figma_protocol import FigmaAction, ResponseEnvelope, encode_response


class FakeConnection:
    def __init__(self, connected: bool = True, fail_send: bool = False) -> None:
        self.connected = connected
        self.fail_send = fail_send
        self.sent: list[str] = []

    def is_connected(self) -> bool:
        return self.connected

    async def send(self, message: str) -> None:
        if self.fail_send:
            raise ConnectionError("socket is gone")
        self.sent.append(message)

    def sent_ids(self) -> list[str]:
        return [json.loads(raw)["id"] for raw in self.sent]


def reply(request_id: str, success: bool = True, data=None, error=None) -> str:
    fields = {"id": request_id, "success": success}
    if data is not None:
        fields["data"] = data
    if error is not None:
        fields["error"] = error
    return encode_response(ResponseEnvelope(**fields))


async def wait_for_sends(connection: FakeConnection, count: int) -> None:
    while len(connection.sent) < count:
        await asyncio.sleep(0)


def test_send_while_disconnected_fails_without_transmitting() -> None:
    connection = FakeConnection(connected=False)
    communicator = FigmaCommunicator(connection)

    with pytest.raises(NotConnectedError) as excinfo:
        asyncio.run(communicator.send_command(FigmaAction.CREATE_FRAME, {"name": "A"}))

    assert excinfo.value.code == "not_connected"
    assert connection.sent == []
    assert communicator.pending_count == 0


def test_command_envelope_is_sent_and_reply_resolves() -> None:
    async def scenario():
        connection = FakeConnection()
        communicator = FigmaCommunicator(connection)
        task = asyncio.create_task(communicator.send_command(FigmaAction.DELETE_NODE, {"nodeId": "1:2"}))
        await wait_for_sends(connection, 1)

        frame = json.loads(connection.sent[0])
        assert frame["action"] == "DELETE_NODE"
        assert frame["payload"] == {"nodeId": "1:2"}
        assert isinstance(frame["timestamp"], int)

        communicator.handle_message(reply(frame["id"], data="1:2"))
        return await task, communicator

    response, communicator = asyncio.run(scenario())

    assert response.success is True
    assert response.data == "1:2"
    assert communicator.pending_count == 0


def test_replies_in_any_order_resolve_matching_requests() -> None:
    async def scenario():
        connection = FakeConnection()
        communicator = FigmaCommunicator(connection)
        tasks = [
            asyncio.create_task(communicator.send_command(FigmaAction.CREATE_TEXT, {"content": f"t{i}"}))
            for i in range(8)
        ]
        await wait_for_sends(connection, 8)

        ids = connection.sent_ids()
        content_by_id = {json.loads(raw)["id"]: json.loads(raw)["payload"]["content"] for raw in connection.sent}
        shuffled = ids[:]
        random.Random(7).shuffle(shuffled)
        for request_id in shuffled:
            communicator.handle_message(reply(request_id, data=content_by_id[request_id]))

        return await asyncio.gather(*tasks)

    responses = asyncio.run(scenario())

    assert [r.data for r in responses] == [f"t{i}" for i in range(8)]


def test_remote_rejection_is_returned_not_raised() -> None:
    async def scenario():
        connection = FakeConnection()
        communicator = FigmaCommunicator(connection)
        task = asyncio.create_task(communicator.send_command(FigmaAction.UPDATE_NODE, {"nodeId": "9:9"}))
        await wait_for_sends(connection, 1)
        communicator.handle_message(reply(connection.sent_ids()[0], success=False, error="Node not found"))
        return await task

    response = asyncio.run(scenario())

    assert response.success is False
    assert response.error == "Node not found"


def test_unknown_and_malformed_replies_do_not_disturb_pending_requests() -> None:
    async def scenario():
        connection = FakeConnection()
        communicator = FigmaCommunicator(connection)
        task = asyncio.create_task(communicator.send_command(FigmaAction.CREATE_RECTANGLE, {"x": 0}))
        await wait_for_sends(connection, 1)

        communicator.handle_message(reply("999-unknown", data="nope"))
        communicator.handle_message("{not json")
        communicator.handle_message(json.dumps({"success": True}))
        communicator.handle_message(b"\xff\xfe")
        assert communicator.pending_count == 1
        assert not task.done()

        communicator.handle_message(reply(connection.sent_ids()[0], data="5:5"))
        return await task

    response = asyncio.run(scenario())

    assert response.data == "5:5"


def test_timeout_settles_once_and_late_reply_is_ignored() -> None:
    async def scenario():
        connection = FakeConnection()
        communicator = FigmaCommunicator(connection, timeout=0.05)
        with pytest.raises(RequestTimeoutError) as excinfo:
            await communicator.send_command(FigmaAction.CREATE_FRAME, {"name": "Slow"})

        assert communicator.pending_count == 0
        # Arrives after the deadline: must be discarded without error
        communicator.handle_message(reply(connection.sent_ids()[0], data="late"))
        assert communicator.pending_count == 0
        return excinfo.value

    error = asyncio.run(scenario())

    assert error.code == "request_timeout"
    assert "timed out" in error.message


def test_disconnect_fails_every_pending_request_once() -> None:
    async def scenario():
        connection = FakeConnection()
        communicator = FigmaCommunicator(connection)
        tasks = [
            asyncio.create_task(communicator.send_command(FigmaAction.DELETE_NODE, {"nodeId": str(i)}))
            for i in range(3)
        ]
        await wait_for_sends(connection, 3)

        connection.connected = False
        assert communicator.fail_all_pending("WebSocket connection closed") == 3
        assert communicator.fail_all_pending("again") == 0

        # A reply racing the disconnect changes nothing
        communicator.handle_message(reply(connection.sent_ids()[0], data="0"))
        results = await asyncio.gather(*tasks, return_exceptions=True)

        with pytest.raises(NotConnectedError):
            await communicator.send_command(FigmaAction.DELETE_NODE, {"nodeId": "4"})
        return results

    results = asyncio.run(scenario())

    assert len(results) == 3
    assert all(isinstance(r, ConnectionClosedError) for r in results)
    assert all(r.code == "connection_closed" for r in results)


def test_send_failure_retires_request() -> None:
    connection = FakeConnection(fail_send=True)
    communicator = FigmaCommunicator(connection)

    with pytest.raises(ToolExecutionError) as excinfo:
        asyncio.run(communicator.send_command(FigmaAction.REORDER_NODE, {"nodeId": "1:1", "index": 0}))

    assert excinfo.value.code == "communication_error"
    assert communicator.pending_count == 0


def test_pending_request_only_applies_first_transition() -> None:
    async def scenario():
        loop = asyncio.get_running_loop()
        pending = PendingRequest(request_id="1-a", action="CREATE_FRAME", future=loop.create_future())
        pending.timer = loop.call_later(10, lambda: None)

        assert pending.settled is False
        assert pending.resolve(ResponseEnvelope(id="1-a", success=True, data="ok")) is True
        assert pending.settled is True
        assert pending.timer is None
        assert pending.reject(RuntimeError("late timeout")) is False
        assert pending.resolve(ResponseEnvelope(id="1-a", success=True, data="again")) is False
        return await pending.future

    response = asyncio.run(scenario())

    assert response.data == "ok"


def test_tool_execution_error_normalizes_plain_messages() -> None:
    error = ToolExecutionError("boom", command="CREATE_FRAME")

    assert error.code == "unknown_plugin_error"
    assert error.payload == {"code": "unknown_plugin_error", "message": "boom", "details": {}}
    assert str(error) == "boom"
    assert NotConnectedError("no plugin").code == "not_connected"
