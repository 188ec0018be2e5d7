"""JSON-RPC framing with LSP ``Content-Length`` headers over asyncio streams."""

from __future__ import annotations

import asyncio
import json
from typing import TypeAlias

from liquidjava_client.exceptions import RpcFramingError

JSONScalar: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
JSONObject: TypeAlias = dict[str, JSONValue]

METHOD_NOT_FOUND = -32601

_HEADER_LIMIT = 64


async def read_rpc(reader: asyncio.StreamReader) -> JSONObject | None:
    """Read one framed message; ``None`` on a clean EOF between messages."""
    length = -1
    header_lines = 0
    while True:
        line = await reader.readline()
        if not line:
            if header_lines == 0:
                return None
            raise RpcFramingError("LSP stream closed inside headers")
        header_lines += 1
        if header_lines > _HEADER_LIMIT:
            raise RpcFramingError("Too many LSP header lines")
        if line in (b"\r\n", b"\n"):
            break
        if line.lower().startswith(b"content-length:"):
            try:
                length = int(line.split(b":", 1)[1].strip())
            except ValueError as exc:
                raise RpcFramingError("Invalid LSP Content-Length") from exc
    if length <= 0:
        raise RpcFramingError("Invalid LSP Content-Length")
    try:
        body = await reader.readexactly(length)
    except asyncio.IncompleteReadError as exc:
        raise RpcFramingError("LSP stream closed inside body") from exc
    try:
        message = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise RpcFramingError(f"Invalid LSP message body: {exc}") from exc
    if not isinstance(message, dict):
        raise RpcFramingError("Invalid LSP message payload")
    return message


async def write_rpc(writer: asyncio.StreamWriter, message: JSONObject) -> None:
    payload = json.dumps(message).encode("utf-8")
    header = f"Content-Length: {len(payload)}\r\n\r\n".encode("utf-8")
    writer.write(header + payload)
    await writer.drain()


def request_message(request_id: int, method: str, params: JSONValue = None) -> JSONObject:
    message: JSONObject = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


def notification_message(method: str, params: JSONValue = None) -> JSONObject:
    message: JSONObject = {"jsonrpc": "2.0", "method": method}
    if params is not None:
        message["params"] = params
    return message


def result_message(request_id: JSONValue, result: JSONValue) -> JSONObject:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def error_message(request_id: JSONValue, code: int, text: str) -> JSONObject:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": text}}


def is_response(message: JSONObject) -> bool:
    return "id" in message and "method" not in message


def is_request(message: JSONObject) -> bool:
    return "id" in message and "method" in message


def is_notification(message: JSONObject) -> bool:
    return "id" not in message and "method" in message
