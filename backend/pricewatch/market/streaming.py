"""Coinbase Exchange websocket ticker client.

One persistent connection carries every crypto subscription. Subscription
changes are sent as unsubscribe/subscribe diffs over the live socket; the
socket is only replaced after a transport failure, using capped exponential
backoff between attempts.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import websockets

from .models import ConnectionState, ConnectionStatus, RawUpdate, finite_float

logger = logging.getLogger(__name__)

COINBASE_WS_URL = "wss://ws-feed.exchange.coinbase.com"
BASE_RECONNECT_DELAY = 1.0  # seconds
MAX_RECONNECT_DELAY = 60.0  # seconds
TICKER_CHANNEL = "ticker"


def reconnect_delay(
    attempt: int,
    base: float = BASE_RECONNECT_DELAY,
    maximum: float = MAX_RECONNECT_DELAY,
) -> float:
    """Backoff before reconnect ``attempt`` (1-based): 1, 2, 4, ... capped."""
    exponent = min(max(attempt, 1) - 1, 63)
    return min(base * 2.0**exponent, maximum)


def subscription_message(kind: str, product_ids: Iterable[str]) -> str:
    """Build a subscribe/unsubscribe envelope for the ticker channel."""
    ids = sorted(product_ids)
    return json.dumps(
        {
            "type": kind,
            "product_ids": ids,
            "channels": [{"name": TICKER_CHANNEL, "product_ids": ids}],
        }
    )


@dataclass(frozen=True, slots=True)
class Skip:
    """A frame that was read but carries no price update."""

    reason: str


def parse_frame(raw: str | bytes) -> RawUpdate | Skip:
    """Decode one inbound frame into a RawUpdate, or say why it was skipped."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return Skip("binary frame is not utf-8")

    try:
        message = json.loads(raw)
    except ValueError:
        return Skip(f"unparseable frame: {raw[:100]!r}")
    if not isinstance(message, dict):
        return Skip("frame is not a JSON object")

    kind = message.get("type")
    if kind != TICKER_CHANNEL:
        return Skip(f"message type {kind!r}")

    product_id = message.get("product_id")
    if not isinstance(product_id, str) or not product_id:
        return Skip("ticker without product_id")
    price = finite_float(message.get("price"))
    if price is None:
        return Skip(f"{product_id}: missing or invalid price")
    open_24h = finite_float(message.get("open_24h"))
    if open_24h is None:
        return Skip(f"{product_id}: missing or invalid open_24h")

    return RawUpdate(
        product_key=product_id,
        price=price,
        reference=open_24h,
        high_24h=finite_float(message.get("high_24h")),
        low_24h=finite_float(message.get("low_24h")),
        volume_24h=finite_float(message.get("volume_24h")),
    )


@dataclass
class _Command:
    kind: str  # "connect" | "update" | "disconnect"
    keys: frozenset[str] = frozenset()
    done: asyncio.Future | None = field(default=None, repr=False)


Dialer = Callable[[str], Awaitable[Any]]
Sleeper = Callable[[float], Awaitable[Any]]


class StreamingClient:
    """Websocket client for the Coinbase ticker channel.

    All connection state lives in a single worker task. The public coroutines
    only enqueue a command and wait until the worker has applied it; they never
    wait for the network. The worker multiplexes three event sources: the
    command queue, the pending frame receive (while connected) and the pending
    dial or retry delay (while not).

    Outputs:
        updates - asyncio.Queue of RawUpdate, in receipt order
        states  - asyncio.Queue of every ConnectionState transition
    """

    def __init__(
        self,
        url: str = COINBASE_WS_URL,
        base_delay: float = BASE_RECONNECT_DELAY,
        max_delay: float = MAX_RECONNECT_DELAY,
        connect: Dialer | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.url = url
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._dialer: Dialer = connect or websockets.connect
        self._sleep = sleep

        self.updates: asyncio.Queue[RawUpdate] = asyncio.Queue()
        self.states: asyncio.Queue[ConnectionState] = asyncio.Queue()
        self._commands: asyncio.Queue[_Command] = asyncio.Queue()
        self._worker: asyncio.Task | None = None

        # Everything below is owned by the worker task
        self._state = ConnectionState.disconnected()
        self._desired: frozenset[str] = frozenset()
        self._subscribed: frozenset[str] = frozenset()
        self._stay_connected = False
        self._attempt = 0
        self._ws: Any = None
        self._dial: asyncio.Task | None = None
        self._receiver: asyncio.Task | None = None
        self._retry: asyncio.Task | None = None

    # --- Public API ---

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def subscriptions(self) -> frozenset[str]:
        """The desired product set."""
        return self._desired

    @property
    def is_active(self) -> bool:
        """True unless disconnected or failed, i.e. the client is trying to stay up."""
        return self._stay_connected and self._state.status not in (
            ConnectionStatus.DISCONNECTED,
            ConnectionStatus.FAILED,
        )

    async def connect(self, product_ids: Iterable[str]) -> None:
        """Open the feed and subscribe to ``product_ids``. Empty input is a no-op."""
        keys = frozenset(product_ids)
        if not keys:
            logger.info("No product ids to connect")
            return
        await self._submit(_Command("connect", keys))

    async def update_subscriptions(self, product_ids: Iterable[str]) -> None:
        """Move to a new product set by diffing against the live subscription."""
        await self._submit(_Command("update", frozenset(product_ids)))

    async def disconnect(self) -> None:
        """Close the feed and forget the subscription set. Safe in any state."""
        await self._submit(_Command("disconnect"))

    async def close(self) -> None:
        """Disconnect and stop the worker task."""
        if self._worker is None:
            return
        await self.disconnect()
        worker, self._worker = self._worker, None
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass

    # --- Worker ---

    async def _submit(self, command: _Command) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="coinbase-ws")
        command.done = asyncio.get_running_loop().create_future()
        self._commands.put_nowait(command)
        await command.done

    async def _run(self) -> None:
        next_command: asyncio.Future | None = None
        try:
            while True:
                if next_command is None:
                    next_command = asyncio.ensure_future(self._commands.get())
                dial, receiver, retry = self._dial, self._receiver, self._retry
                waiters = {t for t in (next_command, dial, receiver, retry) if t is not None}
                done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)

                try:
                    if dial is not None and dial in done:
                        await self._on_dialed()
                    if receiver is not None and receiver in done:
                        await self._on_received()
                    if retry is not None and retry in done:
                        self._on_retry_elapsed()
                except Exception:
                    logger.exception("Streaming worker event failed")

                if next_command in done:
                    command = next_command.result()
                    next_command = None
                    try:
                        await self._apply(command)
                    except Exception:
                        logger.exception("Streaming command %s failed", command.kind)
                    finally:
                        if command.done is not None and not command.done.done():
                            command.done.set_result(None)
        finally:
            pending: list[_Command] = []
            if next_command is not None:
                if next_command.done() and not next_command.cancelled():
                    pending.append(next_command.result())
                next_command.cancel()
            await self._teardown()
            while not self._commands.empty():
                pending.append(self._commands.get_nowait())
            # Release callers whose commands will never be applied
            for command in pending:
                if command.done is not None and not command.done.done():
                    command.done.set_result(None)

    async def _apply(self, command: _Command) -> None:
        if command.kind == "connect":
            await self._handle_connect(command.keys)
        elif command.kind == "update":
            await self._handle_update(command.keys)
        elif command.kind == "disconnect":
            await self._handle_disconnect()
        else:
            raise ValueError(f"Unknown command: {command.kind}")

    async def _handle_connect(self, keys: frozenset[str]) -> None:
        self._desired = keys
        self._stay_connected = True

        if self._dial is not None:
            logger.info("Already connecting, skipping")
            return
        if self._ws is not None:
            await self._sync_subscriptions()
            return
        if self._retry is not None:
            # The pending reconnect subscribes the full desired set
            return

        logger.info("Connecting to %s with products: %s", self.url, sorted(keys))
        self._attempt = 0
        self._begin_dial(ConnectionState.connecting())

    async def _handle_update(self, keys: frozenset[str]) -> None:
        self._desired = keys
        if self._ws is not None:
            await self._sync_subscriptions()

    async def _handle_disconnect(self) -> None:
        self._stay_connected = False
        await self._teardown()
        self._desired = frozenset()
        self._subscribed = frozenset()
        self._attempt = 0
        self._set_state(ConnectionState.disconnected(), force=True)
        logger.info("Disconnected from %s", self.url)

    def _begin_dial(self, state: ConnectionState) -> None:
        self._set_state(state)
        self._dial = asyncio.ensure_future(self._open(self._desired))

    async def _open(self, keys: frozenset[str]) -> tuple[Any, frozenset[str]]:
        """Handshake: open the socket and subscribe the full set."""
        ws = await self._dialer(self.url)
        try:
            if keys:
                await ws.send(subscription_message("subscribe", keys))
        except BaseException:
            await self._close_transport(ws)
            raise
        return ws, keys

    async def _on_dialed(self) -> None:
        task, self._dial = self._dial, None
        try:
            ws, sent = task.result()
        except Exception as e:
            logger.warning("Connection to %s failed: %s", self.url, e)
            self._schedule_reconnect()
            return

        self._ws = ws
        self._subscribed = sent
        self._attempt = 0
        self._set_state(ConnectionState.connected())
        logger.info("Connected and subscribed to %d products", len(sent))
        self._receiver = asyncio.ensure_future(ws.recv())

        # The desired set may have changed while the handshake was in flight
        if self._desired != self._subscribed:
            await self._sync_subscriptions()

    async def _on_received(self) -> None:
        task, self._receiver = self._receiver, None
        try:
            raw = task.result()
        except Exception as e:
            logger.warning("Connection lost: %s", e)
            ws, self._ws = self._ws, None
            await self._close_transport(ws)
            self._schedule_reconnect()
            return

        result = parse_frame(raw)
        if isinstance(result, Skip):
            logger.debug("Skipping frame: %s", result.reason)
        else:
            self.updates.put_nowait(result)

        self._receiver = asyncio.ensure_future(self._ws.recv())

    def _schedule_reconnect(self) -> None:
        self._subscribed = frozenset()
        if not self._stay_connected:
            self._set_state(ConnectionState.disconnected())
            return

        self._attempt += 1
        delay = reconnect_delay(self._attempt, self._base_delay, self._max_delay)
        self._set_state(ConnectionState.reconnecting(self._attempt))
        logger.info("Reconnecting in %.0fs (attempt %d)", delay, self._attempt)
        self._retry = asyncio.ensure_future(self._sleep(delay))

    def _on_retry_elapsed(self) -> None:
        task, self._retry = self._retry, None
        try:
            task.result()
        except Exception as e:
            reason = str(e) or type(e).__name__
            logger.error("Could not wait for reconnect: %s", reason)
            self._set_state(ConnectionState.failed(reason))
            return
        self._begin_dial(ConnectionState.reconnecting(self._attempt))

    async def _sync_subscriptions(self) -> None:
        """Unsubscribe what was dropped, then subscribe what was added."""
        target = self._desired
        to_remove = self._subscribed - target
        to_add = target - self._subscribed
        try:
            if to_remove:
                await self._ws.send(subscription_message("unsubscribe", to_remove))
            if to_add:
                await self._ws.send(subscription_message("subscribe", to_add))
        except Exception as e:
            # The receiver sees the broken socket; reconnect resubscribes everything
            logger.warning("Failed to send subscription change: %s", e)
            return
        self._subscribed = target
        if to_remove or to_add:
            logger.info("Subscriptions updated: -%s +%s", sorted(to_remove), sorted(to_add))

    async def _teardown(self) -> None:
        """Cancel pending dial, receive and retry; close the socket."""
        dial = self._dial
        tasks = [t for t in (self._dial, self._receiver, self._retry) if t is not None]
        self._dial = self._receiver = self._retry = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        # A handshake that finished but was never handled still owns a socket
        if dial is not None and not dial.cancelled() and dial.exception() is None:
            ws, _ = dial.result()
            await self._close_transport(ws)

        ws, self._ws = self._ws, None
        await self._close_transport(ws)

    async def _close_transport(self, ws: Any) -> None:
        if ws is None:
            return
        try:
            await ws.close()
        except Exception as e:
            logger.debug("Error closing websocket: %s", e)

    def _set_state(self, state: ConnectionState, force: bool = False) -> None:
        if state == self._state and not force:
            return
        self._state = state
        self.states.put_nowait(state)
        logger.info("Connection state: %s", state)
