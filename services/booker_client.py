"""
Booker Client
Persistent JSON-RPC 2.0 WebSocket connection to the Booker, the peer that
processes payment jobs. The Booker calls the gateway methods over this socket
and the gateway can call the Booker back.

The connection is opened lazily behind a once-only barrier: the first caller
creates a future and connects, concurrent callers await that same future. A
failed connect clears the barrier so a later caller tries again.
"""

import asyncio
import itertools
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import orjson
import websockets
from websockets.exceptions import ConnectionClosed

from config import Config
from utils.exception_handler import BookerConnectionError, GatewayError

logger = logging.getLogger(__name__)

RpcHandler = Callable[[Optional[Dict[str, Any]]], Awaitable[Any]]

# JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603
SERVER_ERROR = -32000


class BookerRpcError(Exception):
    """Error object returned by the Booker for one of our calls"""

    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.data = data
        super().__init__(f"[{code}] {message}")


class BookerClient:
    """JSON-RPC peer over a single shared WebSocket"""

    def __init__(
        self,
        url: Optional[str] = None,
        connect_timeout: Optional[float] = None,
        reconnect_delay: Optional[float] = None,
        call_timeout: float = 30.0,
        connector: Callable[..., Awaitable[Any]] = websockets.connect,
    ):
        self.url = url or Config.BOOKER_PROVIDER_URL
        self.connect_timeout = connect_timeout or Config.BOOKER_CONNECT_TIMEOUT
        self.reconnect_delay = Config.BOOKER_RECONNECT_DELAY if reconnect_delay is None else reconnect_delay
        self.call_timeout = call_timeout
        self._connector = connector

        self._ready: Optional[asyncio.Future] = None
        self._websocket = None
        self._receiver: Optional[asyncio.Task] = None
        self._reconnector: Optional[asyncio.Task] = None
        self._closing = False
        self._serving: Set[asyncio.Task] = set()

        self._handlers: Dict[str, RpcHandler] = {}
        self._pending: Dict[int, asyncio.Future] = {}
        self._request_ids = itertools.count(1)

    def register(self, method: str, handler: RpcHandler) -> None:
        """Expose ``handler`` to the Booker as RPC method ``method``"""
        self._handlers[method] = handler

    @property
    def connected(self) -> bool:
        return self._websocket is not None

    async def get_connection(self):
        """Open WebSocket, connecting on first use"""
        if self._ready is None:
            self._closing = False
            ready = asyncio.get_running_loop().create_future()
            self._ready = ready
            try:
                websocket = await self._connector(self.url, open_timeout=self.connect_timeout)
            except BaseException as e:
                self._ready = None
                error = BookerConnectionError(
                    f"Could not connect to Booker at {self.url}: {e}", details={"url": self.url}
                )
                ready.set_exception(error)
                # Mark retrieved; the raise below reports it
                ready.exception()
                if isinstance(e, asyncio.CancelledError):
                    raise
                logger.error(f"❌ BOOKER_CONNECT_FAILED: {self.url}: {e}")
                raise error from e

            self._websocket = websocket
            self._receiver = asyncio.create_task(self._receive_loop(websocket))
            ready.set_result(websocket)
            logger.info(f"✅ Connection to Booker has been established successfully ({self.url})")

        return await asyncio.shield(self._ready)

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Call a Booker method and wait for its result.

        Raises:
            BookerConnectionError: no connection, or it dropped before the answer
            BookerRpcError: the Booker answered with an error object
        """
        websocket = await self.get_connection()
        request_id = next(self._request_ids)
        answer = asyncio.get_running_loop().create_future()
        self._pending[request_id] = answer
        try:
            await websocket.send(_encode({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or {}}))
            return await asyncio.wait_for(answer, timeout=self.call_timeout)
        except ConnectionClosed as e:
            raise BookerConnectionError(f"Booker connection closed during {method}") from e
        finally:
            self._pending.pop(request_id, None)

    async def close(self) -> None:
        self._closing = True
        websocket = self._websocket
        for task in (self._reconnector, self._receiver):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._reconnector = None
        self._receiver = None

        if websocket is not None:
            await websocket.close()
            logger.info("🔌 Booker connection closed")
        self._websocket = None
        self._ready = None
        self._fail_pending(BookerConnectionError("Booker client closed"))

    # Incoming traffic

    async def _receive_loop(self, websocket) -> None:
        try:
            async for raw in websocket:
                await self._handle_message(websocket, raw)
        except ConnectionClosed as e:
            logger.warning(f"⚠️ BOOKER_DISCONNECTED: {e}")
        except Exception as e:
            logger.error(f"❌ BOOKER_RECEIVE_FAILED: {e}", exc_info=True)
            # Drop the broken connection; the reconnect below opens a fresh one
            await websocket.close()
        finally:
            if self._websocket is websocket:
                self._websocket = None
                self._ready = None
                self._fail_pending(BookerConnectionError("Booker connection lost"))
                if not self._closing:
                    self._reconnector = asyncio.create_task(self._reconnect())

    async def _handle_message(self, websocket, raw) -> None:
        try:
            message = orjson.loads(raw)
        except orjson.JSONDecodeError:
            logger.warning("⚠️ BOOKER_INVALID_JSON: dropping unparsable frame")
            await websocket.send(_encode(_error_response(None, PARSE_ERROR, "Parse error")))
            return

        if not isinstance(message, dict):
            await websocket.send(_encode(_error_response(None, INVALID_REQUEST, "Invalid Request")))
            return

        if "method" in message:
            # Served concurrently so a slow order intake does not hold up the socket
            task = asyncio.create_task(self._serve_request(websocket, message))
            self._serving.add(task)
            task.add_done_callback(self._serving.discard)
        elif "id" in message:
            self._resolve_pending(message)

    async def _serve_request(self, websocket, message: Dict[str, Any]) -> None:
        request_id = message.get("id")
        method = message.get("method")
        handler = self._handlers.get(method) if isinstance(method, str) else None

        if handler is None:
            response = _error_response(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")
        else:
            try:
                result = await handler(message.get("params"))
                response = {"jsonrpc": "2.0", "id": request_id, "result": result}
            except GatewayError as e:
                response = _error_response(request_id, SERVER_ERROR, e.message, e.to_dict())
            except Exception as e:
                response = _error_response(request_id, INTERNAL_ERROR, str(e) or type(e).__name__)

        if request_id is None:
            # Notification: no response expected
            return
        try:
            await websocket.send(_encode(response))
        except ConnectionClosed:
            logger.warning(f"⚠️ BOOKER_RESPONSE_LOST: method={method} id={request_id}")

    def _resolve_pending(self, message: Dict[str, Any]) -> None:
        answer = self._pending.get(message.get("id"))
        if answer is None or answer.done():
            return
        error = message.get("error")
        if error:
            answer.set_exception(
                BookerRpcError(error.get("code", INTERNAL_ERROR), error.get("message", ""), error.get("data"))
            )
        else:
            answer.set_result(message.get("result"))

    def _fail_pending(self, error: Exception) -> None:
        for answer in self._pending.values():
            if not answer.done():
                answer.set_exception(error)
        self._pending.clear()

    async def _reconnect(self) -> None:
        while not self._closing:
            await asyncio.sleep(self.reconnect_delay)
            try:
                await self.get_connection()
                logger.info("🔄 BOOKER_RECONNECTED")
                return
            except BookerConnectionError:
                logger.warning(f"⚠️ BOOKER_RECONNECT_FAILED: retrying in {self.reconnect_delay}s")


def _error_response(request_id: Any, code: int, message: str, data: Any = None) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


def _encode(message: Dict[str, Any]) -> str:
    return orjson.dumps(message).decode()
