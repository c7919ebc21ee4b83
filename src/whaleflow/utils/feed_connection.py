"""
Feed connection management.

Owns the WebSocket lifecycle for one logical feed connection:
- connect / close with a single live transport at a time
- JSON-RPC request transmission with monotonic call ids
- receive loop delivering one message at a time to the message handler
- close detection and fixed-delay reconnect scheduling

Trade semantics live elsewhere; this module only moves envelopes.
"""

import asyncio
import json
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Optional

import websockets
from loguru import logger
from websockets.exceptions import ConnectionClosed, WebSocketException

from whaleflow.core.models import ConnectionState, PendingCall

if TYPE_CHECKING:
    from whaleflow.config.flow_config import FeedConfig

DERIVE_WS_URL = "wss://api.lyra.finance/ws"

StateListener = Callable[[ConnectionState], None]
MessageHandler = Callable[[str], None]

TRANSPORT_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


class FeedConnectionManager:
    """
    Manages the feed WebSocket with close detection and reconnect.

    **State machine:**
    DISCONNECTED → CONNECTING → CONNECTED → DISCONNECTED

    **Reconnect:**
    Every transition into DISCONNECTED caused by a close or error arms one
    reconnect timer (fixed delay, no attempt ceiling). Reconnect is suppressed
    while backgrounded (set_foreground(False)) and after close().

    **Pending calls:**
    Registered on send, removed by pop_pending() when a response arrives,
    discarded when the carrying transport closes. Nothing is re-issued
    automatically; state listeners decide what to request after CONNECTED.
    """

    def __init__(
        self,
        url: str = DERIVE_WS_URL,
        reconnect_delay: float = 3.0,
        connect_timeout: float = 10.0,
        connector: Optional[Callable[..., Any]] = None,
        ping_interval: Optional[float] = 20.0,
    ):
        """
        Initialize connection manager.

        Args:
            url: WebSocket endpoint
            reconnect_delay: Seconds to wait before each reconnect attempt
            connect_timeout: Seconds allowed for the opening handshake
            connector: Transport factory (default: websockets.connect)
            ping_interval: Keepalive ping interval passed to the transport
        """
        self.url = url
        self.reconnect_delay = reconnect_delay
        self.connect_timeout = connect_timeout
        self.ping_interval = ping_interval
        self._connector = connector or websockets.connect

        self._transport: Any = None
        self._state = ConnectionState.DISCONNECTED
        self._error: Optional[str] = None
        self._next_call_id = 0
        self._pending: dict[int, PendingCall] = {}

        self._message_handler: Optional[MessageHandler] = None
        self._listeners: list[StateListener] = []

        self._receive_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._foreground = True
        self._closed = False

        self.connect_attempts = 0
        self.last_connected_at: Optional[datetime] = None

    @classmethod
    def from_config(
        cls,
        feed_config: "FeedConfig",
        connector: Optional[Callable[..., Any]] = None,
    ) -> "FeedConnectionManager":
        """Create a FeedConnectionManager from the feed config section."""
        return cls(
            url=feed_config.url,
            reconnect_delay=feed_config.reconnect_delay,
            connect_timeout=feed_config.connect_timeout,
            connector=connector,
        )

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def error(self) -> Optional[str]:
        """Last transport error, cleared on successful connect."""
        return self._error

    @property
    def is_foreground(self) -> bool:
        return self._foreground

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def pending_calls(self) -> dict[int, PendingCall]:
        return dict(self._pending)

    @property
    def reconnect_scheduled(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def set_message_handler(self, handler: MessageHandler) -> None:
        """Set the callback invoked once per inbound message."""
        self._message_handler = handler

    def add_state_listener(self, listener: StateListener) -> None:
        """
        Register a callback for state transitions.

        Listeners run synchronously on the event loop; anything slow should
        be scheduled as a task by the listener itself.
        """
        if listener not in self._listeners:
            self._listeners.append(listener)
            logger.debug(f"Registered state listener: {getattr(listener, '__qualname__', listener)}")

    def remove_state_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def connect(self) -> None:
        """
        Open the transport.

        No-op after close() or while a connection is open or opening.
        Failures are recorded in error and drive DISCONNECTED (which arms
        the reconnect timer); they are never raised.
        """
        if self._closed:
            logger.debug("Connect ignored: connection manager is closed")
            return
        if self._state != ConnectionState.DISCONNECTED:
            logger.debug(f"Connect ignored: already {self._state.value}")
            return

        await self._close_transport()
        self._set_state(ConnectionState.CONNECTING)
        self.connect_attempts += 1
        logger.info(f"Connecting to {self.url} (attempt {self.connect_attempts})")

        try:
            transport = await self._connector(
                self.url,
                open_timeout=self.connect_timeout,
                ping_interval=self.ping_interval,
            )
        except TRANSPORT_ERRORS as e:
            self._handle_disconnect(f"Connection failed: {str(e) or type(e).__name__}")
            return

        if self._closed:
            # Torn down while the handshake was in flight
            await self._close_quietly(transport)
            return

        self._transport = transport
        self._error = None
        self.last_connected_at = datetime.now()
        self._receive_task = asyncio.create_task(self._receive_loop(transport))
        self._set_state(ConnectionState.CONNECTED)
        logger.info(f"✓ Connected to {self.url}")

    async def send(self, method: str, params: Optional[dict] = None) -> Optional[int]:
        """
        Transmit a JSON-RPC request.

        Does not wait for the response; it arrives through the message handler.

        Args:
            method: JSON-RPC method (e.g. public/get_trade_history)
            params: Method params

        Returns:
            Call id, or None if not connected or the transmit failed
        """
        if self._state != ConnectionState.CONNECTED or self._transport is None:
            logger.debug(f"Not connected, {method} not sent")
            return None

        self._next_call_id += 1
        call_id = self._next_call_id
        params = params or {}
        envelope = {"method": method, "params": params, "id": call_id, "jsonrpc": "2.0"}

        transport = self._transport
        # Registered before transmit so a fast response finds its call
        self._pending[call_id] = PendingCall(
            id=call_id,
            method=method,
            issued_at=datetime.now(),
            params=params,
        )

        try:
            await transport.send(json.dumps(envelope))
        except (ConnectionClosed, OSError) as e:
            self._pending.pop(call_id, None)
            if transport is self._transport:
                self._transport = None
                self._cancel_receive()
                self._handle_disconnect(f"Send failed: {e}")
                await self._close_quietly(transport)
            return None

        logger.debug(f"→ {method} (id={call_id})")
        return call_id

    def pop_pending(self, call_id: Any) -> Optional[PendingCall]:
        """Remove and return the pending call for a response id, if known."""
        if not isinstance(call_id, int) or isinstance(call_id, bool):
            return None
        return self._pending.pop(call_id, None)

    def set_foreground(self, visible: bool) -> None:
        """
        Hook for the hosting view's visibility.

        Backgrounding cancels any armed reconnect and suppresses new ones;
        foregrounding while disconnected arms a reconnect.
        """
        if visible == self._foreground:
            return
        self._foreground = visible

        if not visible:
            self._cancel_reconnect()
            logger.info("Feed backgrounded: reconnect suspended")
        elif self._state == ConnectionState.DISCONNECTED and not self._closed:
            logger.info("Feed foregrounded: scheduling reconnect")
            self._schedule_reconnect()

    async def close(self) -> None:
        """
        Tear down: cancel timers and the receive loop, close the transport.

        After close(), connect() and reconnect scheduling are no-ops.
        """
        self._closed = True
        self._cancel_reconnect()

        receive_task = self._receive_task
        self._receive_task = None
        if receive_task and not receive_task.done() and receive_task is not asyncio.current_task():
            receive_task.cancel()
            try:
                await receive_task
            except asyncio.CancelledError:
                pass

        await self._close_transport()
        self._pending.clear()
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("✓ Feed connection closed")

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def connection_health(self) -> dict:
        """Get connection health status."""
        return {
            "state": self._state.value,
            "connected": self.is_connected,
            "error": self._error,
            "pending_calls": len(self._pending),
            "connect_attempts": self.connect_attempts,
            "reconnect_scheduled": self.reconnect_scheduled,
            "last_connected_at": self.last_connected_at.isoformat() if self.last_connected_at else None,
        }

    async def _receive_loop(self, transport: Any) -> None:
        """Deliver inbound messages one at a time until the transport ends."""
        reason = "Connection closed by server"
        try:
            async for message in transport:
                self._dispatch(message)
        except ConnectionClosed as e:
            reason = f"Connection lost: {e}"
        except OSError as e:
            reason = f"Connection error: {e}"

        if transport is self._transport:
            self._transport = None
            self._receive_task = None
            self._handle_disconnect(reason)

    def _dispatch(self, message: Any) -> None:
        if isinstance(message, (bytes, bytearray)):
            message = message.decode("utf-8", errors="replace")

        if self._message_handler is None:
            logger.debug("No message handler registered, message dropped")
            return

        try:
            self._message_handler(message)
        except Exception as e:
            logger.exception(f"Message handler failed: {e}")

    def _handle_disconnect(self, reason: str) -> None:
        dropped = len(self._pending)
        self._pending.clear()
        self._error = reason
        logger.warning(f"Feed disconnected: {reason} ({dropped} pending calls discarded)")
        self._set_state(ConnectionState.DISCONNECTED)
        self._schedule_reconnect()

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        previous = self._state
        self._state = state
        logger.debug(f"Feed state {previous.value} → {state.value}")

        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.exception(f"State listener failed: {e}")

    def _schedule_reconnect(self) -> None:
        if self._closed or not self._foreground:
            logger.debug("Reconnect not scheduled (closed or backgrounded)")
            return
        if self.reconnect_scheduled:
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay())
        logger.info(f"Reconnecting in {self.reconnect_delay}s")

    async def _reconnect_after_delay(self) -> None:
        await asyncio.sleep(self.reconnect_delay)
        self._reconnect_task = None

        if self._closed or not self._foreground or self._state != ConnectionState.DISCONNECTED:
            return
        await self.connect()

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _cancel_receive(self) -> None:
        task = self._receive_task
        self._receive_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _close_transport(self) -> None:
        self._cancel_receive()
        transport = self._transport
        self._transport = None
        if transport is not None:
            await self._close_quietly(transport)

    @staticmethod
    async def _close_quietly(transport: Any) -> None:
        try:
            await transport.close()
        except TRANSPORT_ERRORS as e:
            logger.warning(f"Error closing transport: {e}")
