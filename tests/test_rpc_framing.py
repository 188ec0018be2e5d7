from __future__ import annotations

import asyncio
import json

import pytest

from liquidjava_client import rpc
from liquidjava_client.exceptions import RpcFramingError


def _frame(payload: object) -> bytes:
    body = json.dumps(payload).encode("utf-8")
    return f"Content-Length: {len(body)}\r\n\r\n".encode("utf-8") + body


def _read(data: bytes):
    async def _run():
        reader = asyncio.StreamReader()
        reader.feed_data(data)
        reader.feed_eof()
        return await rpc.read_rpc(reader)

    return asyncio.run(_run())


class _RecordingWriter:
    def __init__(self) -> None:
        self.data = b""
        self.drains = 0

    def write(self, data: bytes) -> None:
        self.data += data

    async def drain(self) -> None:
        self.drains += 1


def test_read_rpc_parses_framed_message() -> None:
    message = {"jsonrpc": "2.0", "id": 1, "result": {"ok": True}}
    assert _read(_frame(message)) == message


def test_read_rpc_ignores_extra_headers_and_header_case() -> None:
    body = json.dumps({"jsonrpc": "2.0", "method": "initialized"}).encode("utf-8")
    data = (
        b"content-length: " + str(len(body)).encode("ascii") + b"\r\n"
        b"Content-Type: application/vscode-jsonrpc; charset=utf-8\r\n\r\n" + body
    )
    assert _read(data) == {"jsonrpc": "2.0", "method": "initialized"}


def test_read_rpc_returns_none_on_clean_eof() -> None:
    assert _read(b"") is None


@pytest.mark.parametrize(
    ("data", "match"),
    [
        (b"Content-Length: 10\r\n", "inside headers"),
        (b"X-Other: 1\r\n\r\n{}", "Content-Length"),
        (b"Content-Length: abc\r\n\r\n{}", "Content-Length"),
        (b"Content-Length: 40\r\n\r\n{}", "inside body"),
        (b"Content-Length: 3\r\n\r\n{x}", "Invalid LSP message body"),
        (b"Content-Length: 2\r\n\r\n[]", "payload"),
    ],
)
def test_read_rpc_rejects_malformed_frames(data: bytes, match: str) -> None:
    with pytest.raises(RpcFramingError, match=match):
        _read(data)


def test_read_rpc_rejects_unbounded_headers() -> None:
    with pytest.raises(RpcFramingError, match="Too many"):
        _read(b"X-Padding: 1\r\n" * 80)


def test_write_rpc_frames_payload_with_byte_length() -> None:
    writer = _RecordingWriter()
    message = rpc.notification_message("window/logMessage", {"message": "café"})
    asyncio.run(rpc.write_rpc(writer, message))

    header, body = writer.data.split(b"\r\n\r\n", 1)
    assert header == f"Content-Length: {len(body)}".encode("ascii")
    assert json.loads(body) == message
    assert writer.drains == 1


def test_message_builders_and_classifiers() -> None:
    request = rpc.request_message(3, "shutdown")
    assert request == {"jsonrpc": "2.0", "id": 3, "method": "shutdown"}
    assert rpc.is_request(request)
    assert not rpc.is_notification(request)

    notification = rpc.notification_message("exit")
    assert "params" not in notification
    assert rpc.is_notification(notification)

    reply = rpc.result_message(3, None)
    assert rpc.is_response(reply)
    failure = rpc.error_message(3, rpc.METHOD_NOT_FOUND, "nope")
    assert failure["error"] == {"code": -32601, "message": "nope"}
    assert rpc.is_response(failure)
