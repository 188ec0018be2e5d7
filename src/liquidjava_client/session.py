from __future__ import annotations

import asyncio
from enum import Enum
import logging
import os
from typing import Callable, Sequence

from lsprotocol import types as lsp
from lsprotocol.converters import get_converter

from liquidjava_client import __version__
from liquidjava_client.channel import Channel
from liquidjava_client.engine_log import EngineLogger
from liquidjava_client.exceptions import (
    ClientError,
    HandshakeFailed,
    ResponseError,
    RpcFramingError,
    SessionEnded,
)
from liquidjava_client.invariants import never
from liquidjava_client.rpc import (
    METHOD_NOT_FOUND,
    JSONObject,
    JSONValue,
    error_message,
    is_notification,
    is_request,
    is_response,
    notification_message,
    read_rpc,
    request_message,
    result_message,
    write_rpc,
)

LOGGER = logging.getLogger(__name__)

_CONVERTER = get_converter()

# Server-to-client requests acknowledged with a null result.
_ACKNOWLEDGED_REQUESTS = frozenset(
    {
        lsp.WINDOW_WORK_DONE_PROGRESS_CREATE,
        lsp.CLIENT_REGISTER_CAPABILITY,
        lsp.CLIENT_UNREGISTER_CAPABILITY,
    }
)

_MESSAGE_TYPE_LEVELS = {
    lsp.MessageType.Error.value: logging.ERROR,
    lsp.MessageType.Warning.value: logging.WARNING,
    lsp.MessageType.Info.value: logging.INFO,
    lsp.MessageType.Log.value: logging.DEBUG,
}

NotificationHandler = Callable[[JSONValue], None]
DiagnosticsCallback = Callable[[str, Sequence[lsp.Diagnostic]], None]
EndedCallback = Callable[[str], None]


class SessionState(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"


class ProtocolSession:
    """LSP client session over an open :class:`Channel`.

    The session owns the channel: reaching ``STOPPED`` closes it, fails every
    pending request and fires ``on_ended`` exactly once, whatever the cause.
    """

    def __init__(
        self,
        channel: Channel,
        *,
        logger: EngineLogger | None = None,
        on_diagnostics: DiagnosticsCallback | None = None,
        on_ended: EndedCallback | None = None,
        shutdown_timeout: float = 2.0,
    ) -> None:
        self.channel = channel
        self.state = SessionState.STARTING
        self.end_reason: str | None = None
        self.server_info: JSONObject = {}
        self._logger = logger or EngineLogger()
        self._on_diagnostics = on_diagnostics
        self._on_ended = on_ended
        self._shutdown_timeout = shutdown_timeout
        self._pending: dict[int, asyncio.Future[JSONValue]] = {}
        self._handlers: dict[str, NotificationHandler] = {
            lsp.TEXT_DOCUMENT_PUBLISH_DIAGNOSTICS: self._handle_publish_diagnostics,
            lsp.WINDOW_LOG_MESSAGE: self._handle_log_message,
            lsp.WINDOW_SHOW_MESSAGE: self._handle_log_message,
        }
        self._next_id = 1
        self._reader_task: asyncio.Task[None] | None = None
        self._stopping = False
        self._ended = False

    @property
    def live(self) -> bool:
        return self.state is not SessionState.STOPPED and not self.channel.closed

    def on_notification(self, method: str, handler: NotificationHandler) -> None:
        self._handlers[method] = handler

    async def start(self, root_uri: str, timeout: float) -> None:
        if self._reader_task is not None:
            never("protocol session started twice")
        self._reader_task = asyncio.create_task(self._read_loop(), name="liquidjava-session-reader")
        try:
            result = await self.request(
                lsp.INITIALIZE,
                _CONVERTER.unstructure(_initialize_params(root_uri)),
                timeout=timeout,
            )
            await self.notify(lsp.INITIALIZED, {})
        except asyncio.TimeoutError as exc:
            await self._abort(f"Handshake timed out after {timeout}s")
            raise HandshakeFailed(f"Handshake timed out after {timeout}s") from exc
        except ClientError as exc:
            await self._abort(f"Handshake failed: {exc}")
            raise HandshakeFailed(str(exc)) from exc
        if self.state is SessionState.STOPPED:
            raise HandshakeFailed(self.end_reason or "Session ended during handshake")
        if isinstance(result, dict):
            info = result.get("serverInfo")
            self.server_info = info if isinstance(info, dict) else {}
        self.state = SessionState.RUNNING

    async def request(
        self,
        method: str,
        params: JSONValue = None,
        *,
        timeout: float | None = None,
    ) -> JSONValue:
        if not self.live:
            raise SessionEnded(self.end_reason or "Session is not live")
        request_id = self._next_id
        self._next_id += 1
        future: asyncio.Future[JSONValue] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send(request_message(request_id, method, params))
            if timeout is None:
                return await future
            return await asyncio.wait_for(future, timeout)
        finally:
            self._pending.pop(request_id, None)

    async def notify(self, method: str, params: JSONValue = None) -> None:
        if not self.live:
            raise SessionEnded(self.end_reason or "Session is not live")
        await self._send(notification_message(method, params))

    async def did_open(self, uri: str, language_id: str, text: str, version: int = 1) -> None:
        params = lsp.DidOpenTextDocumentParams(
            text_document=lsp.TextDocumentItem(
                uri=uri, language_id=language_id, version=version, text=text
            )
        )
        await self.notify(lsp.TEXT_DOCUMENT_DID_OPEN, _CONVERTER.unstructure(params))

    async def did_save(self, uri: str, text: str | None = None) -> None:
        params = lsp.DidSaveTextDocumentParams(
            text_document=lsp.TextDocumentIdentifier(uri=uri), text=text
        )
        await self.notify(lsp.TEXT_DOCUMENT_DID_SAVE, _CONVERTER.unstructure(params))

    async def did_close(self, uri: str) -> None:
        params = lsp.DidCloseTextDocumentParams(text_document=lsp.TextDocumentIdentifier(uri=uri))
        await self.notify(lsp.TEXT_DOCUMENT_DID_CLOSE, _CONVERTER.unstructure(params))

    async def stop(self) -> None:
        """Best-effort ``shutdown``/``exit``, then release the channel."""
        if self._stopping:
            return
        self._stopping = True
        try:
            if self.state is SessionState.RUNNING and self.live:
                try:
                    await self.request(lsp.SHUTDOWN, timeout=self._shutdown_timeout)
                    await self.notify(lsp.EXIT)
                except (ClientError, asyncio.TimeoutError) as exc:
                    self._logger.client.info("Engine did not acknowledge shutdown: %s", exc)
        finally:
            await self._abort("Session stopped")

    async def _abort(self, reason: str) -> None:
        self._finish(reason)
        task = self._reader_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    def _finish(self, reason: str) -> None:
        if self._ended:
            return
        self._ended = True
        self.state = SessionState.STOPPED
        self.end_reason = reason
        self.channel.close()
        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(SessionEnded(reason))
        if self._on_ended is not None:
            self._on_ended(reason)

    async def _send(self, message: JSONObject) -> None:
        if self.channel.closed:
            raise SessionEnded(self.end_reason or "Channel is closed")
        try:
            await write_rpc(self.channel.writer, message)
        except (ConnectionError, OSError) as exc:
            raise SessionEnded(f"Channel write failed: {exc}") from exc

    async def _read_loop(self) -> None:
        reason = "Connection closed by engine"
        try:
            while True:
                message = await read_rpc(self.channel.reader)
                if message is None:
                    break
                await self._dispatch(message)
        except asyncio.CancelledError:
            reason = "Session stopped"
            raise
        except (RpcFramingError, SessionEnded, ConnectionError, OSError) as exc:
            reason = f"Channel failed: {exc}"
        finally:
            self._finish(reason)

    async def _dispatch(self, message: JSONObject) -> None:
        if is_response(message):
            self._resolve(message)
        elif is_request(message):
            await self._answer(message)
        elif is_notification(message):
            method = str(message["method"])
            handler = self._handlers.get(method)
            if handler is None:
                LOGGER.debug("ignoring notification %s", method)
                return
            try:
                handler(message.get("params"))
            except Exception:
                LOGGER.exception("notification handler for %s failed", method)
        else:
            LOGGER.warning("dropping malformed message: %r", message)

    def _resolve(self, message: JSONObject) -> None:
        request_id = message.get("id")
        future = self._pending.get(request_id) if isinstance(request_id, int) else None
        if future is None or future.done():
            LOGGER.debug("response for unknown request %r", request_id)
            return
        error = message.get("error")
        if isinstance(error, dict):
            future.set_exception(
                ResponseError(
                    int(error.get("code", 0) or 0),
                    str(error.get("message", "")),
                    error.get("data"),
                )
            )
        else:
            future.set_result(message.get("result"))

    async def _answer(self, message: JSONObject) -> None:
        request_id = message.get("id")
        method = str(message.get("method"))
        if method in _ACKNOWLEDGED_REQUESTS:
            reply = result_message(request_id, None)
        elif method == lsp.WORKSPACE_CONFIGURATION:
            params = message.get("params")
            items = params.get("items") if isinstance(params, dict) else None
            count = len(items) if isinstance(items, list) else 0
            reply = result_message(request_id, [None] * count)
        else:
            reply = error_message(request_id, METHOD_NOT_FOUND, f"Unsupported request: {method}")
        await self._send(reply)

    def _handle_publish_diagnostics(self, params: JSONValue) -> None:
        published = _CONVERTER.structure(params, lsp.PublishDiagnosticsParams)
        if self._on_diagnostics is not None:
            self._on_diagnostics(published.uri, list(published.diagnostics))

    def _handle_log_message(self, params: JSONValue) -> None:
        if not isinstance(params, dict):
            return
        level = _MESSAGE_TYPE_LEVELS.get(params.get("type"), logging.INFO)
        self._logger.server.log(level, str(params.get("message", "")))


def _initialize_params(root_uri: str) -> lsp.InitializeParams:
    return lsp.InitializeParams(
        process_id=os.getpid(),
        root_uri=root_uri,
        client_info=lsp.ClientInfo(name="liquidjava-client", version=__version__),
        workspace_folders=[lsp.WorkspaceFolder(uri=root_uri, name=root_uri.rstrip("/").rsplit("/", 1)[-1])],
        capabilities=lsp.ClientCapabilities(
            text_document=lsp.TextDocumentClientCapabilities(
                synchronization=lsp.TextDocumentSyncClientCapabilities(did_save=True),
                publish_diagnostics=lsp.PublishDiagnosticsClientCapabilities(
                    related_information=True,
                    data_support=True,
                ),
            ),
            window=lsp.WindowClientCapabilities(work_done_progress=True),
        ),
    )
