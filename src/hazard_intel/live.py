"""Live event stream with automatic reconnection, or a polling fallback.

Connection state is an explicit machine: :func:`transition` is the only
place that decides which ``ConnectionState`` follows an event, and
:class:`LiveConnection` is the only owner of the current state.  Reconnect
delays are cancelable asyncio tasks.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List

import aiohttp

from .models import ClassifiedItem, ConnectionState
from .rate_limit import capped_exponential_backoff_ms

_log = logging.getLogger(__name__)

MAX_RECONNECT_ATTEMPTS = 5
NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006
SUBSCRIBE_TOPICS = ["hazard_alerts", "social_posts"]


class ConnectionEvent(str, Enum):
    CONNECT = "connect"
    OPENED = "opened"
    CLOSED = "closed"
    ABNORMAL_CLOSE = "abnormal_close"
    RECONNECT_DUE = "reconnect_due"
    EXHAUSTED = "exhausted"
    START_POLLING = "start_polling"
    DISCONNECT = "disconnect"


class InvalidTransition(ValueError):
    pass


_TRANSITIONS: Dict[tuple[ConnectionState, ConnectionEvent], ConnectionState] = {
    (ConnectionState.DISCONNECTED, ConnectionEvent.CONNECT): ConnectionState.CONNECTING,
    (ConnectionState.FAILED, ConnectionEvent.CONNECT): ConnectionState.CONNECTING,
    (ConnectionState.RECONNECTING, ConnectionEvent.CONNECT): ConnectionState.CONNECTING,
    (ConnectionState.RECONNECTING, ConnectionEvent.RECONNECT_DUE): ConnectionState.CONNECTING,
    (ConnectionState.CONNECTING, ConnectionEvent.OPENED): ConnectionState.CONNECTED,
    (ConnectionState.CONNECTING, ConnectionEvent.ABNORMAL_CLOSE): ConnectionState.RECONNECTING,
    (ConnectionState.CONNECTED, ConnectionEvent.ABNORMAL_CLOSE): ConnectionState.RECONNECTING,
    (ConnectionState.CONNECTING, ConnectionEvent.EXHAUSTED): ConnectionState.FAILED,
    (ConnectionState.CONNECTED, ConnectionEvent.EXHAUSTED): ConnectionState.FAILED,
    (ConnectionState.CONNECTED, ConnectionEvent.CLOSED): ConnectionState.DISCONNECTED,
    (ConnectionState.DISCONNECTED, ConnectionEvent.START_POLLING): ConnectionState.POLLING,
}


def transition(state: ConnectionState, event: ConnectionEvent) -> ConnectionState:
    """Next state for ``event``; ``DISCONNECT`` is accepted from every state."""
    if event == ConnectionEvent.DISCONNECT:
        return ConnectionState.DISCONNECTED
    try:
        return _TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransition(f"{event.value!r} is not valid in state {state.value!r}") from None


def reconnect_delay_ms(attempt: int) -> int:
    return capped_exponential_backoff_ms(attempt)


# ── Transports ───────────────────────────────────────────────────────


class LiveTransport(ABC):
    close_code: int | None = None

    @abstractmethod
    async def open(self) -> None: ...

    @abstractmethod
    async def send(self, text: str) -> None: ...

    @abstractmethod
    def messages(self) -> AsyncIterator[str]:
        """Inbound text frames until the connection closes."""

    @abstractmethod
    async def close(self, code: int = NORMAL_CLOSURE) -> None: ...


class AiohttpTransport(LiveTransport):
    def __init__(self, url: str, *, heartbeat: float = 30.0) -> None:
        self.url = url
        self._heartbeat = heartbeat
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None

    async def open(self) -> None:
        self._session = aiohttp.ClientSession()
        try:
            self._ws = await self._session.ws_connect(self.url, heartbeat=self._heartbeat)
        except BaseException:
            await self._session.close()
            self._session = None
            raise

    async def send(self, text: str) -> None:
        assert self._ws is not None
        await self._ws.send_str(text)

    async def messages(self) -> AsyncIterator[str]:
        assert self._ws is not None
        async for msg in self._ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                yield msg.data
            elif msg.type == aiohttp.WSMsgType.ERROR:
                break
        self.close_code = self._ws.close_code if self._ws.close_code is not None else ABNORMAL_CLOSURE
        await self._release()

    async def close(self, code: int = NORMAL_CLOSURE) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close(code=code, message=b"Manual disconnect")
        self.close_code = code
        await self._release()

    async def _release(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None


class DemoPollSource:
    """Deterministic stand-in for a periodic fetch when no live endpoint is configured."""

    TEXTS = ["flood reports rising", "cyclone alert update", "high waves spotted", "tsunami siren test"]

    def __init__(self) -> None:
        self._count = 0

    def next_post(self) -> Dict[str, Any]:
        n = self._count
        self._count += 1
        return {
            "id": f"poll_{n}",
            "platform": "demo",
            "text": self.TEXTS[n % len(self.TEXTS)],
            "engagement": {"likes": (n * 7) % 30, "shares": (n * 3) % 10},
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "lat": 8 + (n * 37 % 100) / 10,
            "lon": 75 + (n * 53 % 100) / 10,
        }


# ── Connection ───────────────────────────────────────────────────────

Processor = Callable[[Dict[str, Any]], Awaitable[ClassifiedItem | None]]
PostCallback = Callable[[ClassifiedItem], Any]


class LiveConnection:
    def __init__(
        self,
        url: str,
        processor: Processor,
        on_post: PostCallback | None = None,
        *,
        transport_factory: Callable[[str], LiveTransport] = AiohttpTransport,
        max_attempts: int = MAX_RECONNECT_ATTEMPTS,
        poll_interval: float = 5.0,
        poll_source: DemoPollSource | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_state_change: Callable[[ConnectionState], Any] | None = None,
    ) -> None:
        self.url = (url or "").strip()
        self.processor = processor
        self.on_post = on_post
        self._factory = transport_factory
        self.max_attempts = max_attempts
        self.poll_interval = poll_interval
        self._poll_source = poll_source or DemoPollSource()
        self._sleep = sleep
        self._on_state_change = on_state_change

        self._state = ConnectionState.DISCONNECTED
        self._attempt = 0
        self._transport: LiveTransport | None = None
        self._reader: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._poll_task: asyncio.Task | None = None
        self._manual_close = False
        self.message_count = 0
        self.last_message: Dict[str, Any] | None = None
        self.history: List[ConnectionState] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def _fire(self, event: ConnectionEvent) -> None:
        new_state = transition(self._state, event)
        if new_state != self._state:
            _log.info("Live connection %s -> %s (%s)", self._state.value, new_state.value, event.value)
        self._state = new_state
        self.history.append(new_state)
        if self._on_state_change is not None:
            self._on_state_change(new_state)

    # ── Public API ───────────────────────────────────────────────────

    async def connect(self) -> None:
        """Open the stream (or start polling); a manual call resets the attempt counter."""
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED, ConnectionState.POLLING):
            return
        if not self.url:
            self._fire(ConnectionEvent.START_POLLING)
            self._poll_task = asyncio.create_task(self._poll_loop())
            return
        self._cancel_reconnect()
        self._attempt = 0
        self._manual_close = False
        await self._open(ConnectionEvent.CONNECT)

    async def disconnect(self) -> None:
        self._manual_close = True
        self._cancel_reconnect()
        if self._poll_task is not None:
            self._poll_task.cancel()
            await asyncio.gather(self._poll_task, return_exceptions=True)
            self._poll_task = None
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.close(NORMAL_CLOSURE)
        if self._reader is not None:
            await asyncio.gather(self._reader, return_exceptions=True)
            self._reader = None
        self._fire(ConnectionEvent.DISCONNECT)

    async def send(self, message: Dict[str, Any]) -> bool:
        if self._state != ConnectionState.CONNECTED or self._transport is None:
            return False
        await self._transport.send(json.dumps(message))
        return True

    async def wait_idle(self) -> None:
        """Wait until no read loop or reconnect timer is pending."""
        while True:
            pending = [t for t in (self._reader, self._reconnect_task) if t is not None and not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # ── Internals ────────────────────────────────────────────────────

    async def _open(self, event: ConnectionEvent) -> None:
        self._fire(event)
        transport = self._factory(self.url)
        try:
            await transport.open()
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
            _log.warning("Live connection to %s failed to open: %s", self.url, exc)
            self._handle_close(ABNORMAL_CLOSURE)
            return

        self._transport = transport
        self._attempt = 0
        self._fire(ConnectionEvent.OPENED)
        await transport.send(
            json.dumps(
                {
                    "type": "subscribe",
                    "topics": SUBSCRIBE_TOPICS,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                }
            )
        )
        self._reader = asyncio.create_task(self._read_loop(transport))

    async def _read_loop(self, transport: LiveTransport) -> None:
        try:
            async for raw in transport.messages():
                await self._handle_message(raw)
        except (aiohttp.ClientError, OSError) as exc:
            _log.warning("Live connection read failed: %s", exc)
            transport.close_code = ABNORMAL_CLOSURE
        if self._manual_close or self._transport is not transport:
            return
        self._transport = None
        self._handle_close(transport.close_code if transport.close_code is not None else ABNORMAL_CLOSURE)

    def _handle_close(self, code: int) -> None:
        if code == NORMAL_CLOSURE:
            self._fire(ConnectionEvent.CLOSED)
            return
        self._attempt += 1
        if self._attempt >= self.max_attempts:
            _log.warning("Live connection gave up after %d abnormal close(s)", self._attempt)
            self._fire(ConnectionEvent.EXHAUSTED)
            return
        delay = reconnect_delay_ms(self._attempt) / 1000
        self._fire(ConnectionEvent.ABNORMAL_CLOSE)
        _log.warning(
            "Live connection closed (code %s); reconnect %d/%d in %.0fs",
            code,
            self._attempt,
            self.max_attempts,
            delay,
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        self._reconnect_task = None
        await self._open(ConnectionEvent.RECONNECT_DUE)

    def _cancel_reconnect(self) -> None:
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

    async def _handle_message(self, raw: str) -> None:
        try:
            data = json.loads(raw)
        except ValueError:
            _log.warning("Dropping non-JSON live message")
            return
        if not isinstance(data, dict):
            _log.warning("Dropping non-object live message")
            return
        self.message_count += 1
        self.last_message = data
        if data.get("type") == "post" and isinstance(data.get("data"), dict):
            await self._route_post(data["data"])

    async def _route_post(self, payload: Dict[str, Any]) -> None:
        # One bad post is dropped; the read and poll loops keep going.
        try:
            item = await self.processor(payload)
            if item is None or self.on_post is None:
                return
            result = self.on_post(item)
            if inspect.isawaitable(result):
                await result
        except Exception:
            _log.exception("Dropping live post %r after processing failed", payload.get("id"))

    async def _poll_loop(self) -> None:
        while True:
            await self._route_post(self._poll_source.next_post())
            await self._sleep(self.poll_interval)
