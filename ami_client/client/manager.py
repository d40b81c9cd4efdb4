"""
MODULE OVERVIEW:
The AMI client: one TCP session, its parser state, and everything waiting on it.

WHAT IS HAPPENING HERE:
A Manager owns exactly one connection and all of the mutable state that goes with it:
the frame reader (line buffer + follow state), the held queue, the correlation table,
the authentication flag and the reconnect timer. Nothing is module-level, so several
Managers can talk to several servers from the same event loop.

Inbound:   socket bytes -> FrameReader -> classify() -> EventBus (one loop turn later)
Outbound:  action() -> held queue (before login) or serialize_action() -> socket

Every emission is deferred with `call_soon`. That way code like

    action_id = manager.action({"action": "Ping"})
    manager.once(action_id, on_pong)

still sees the response even if it was already sitting in the read buffer.
"""

import asyncio
from functools import partial
from typing import Any, Callable, Optional
from loguru import logger

from ami_client.client.actions import is_login_action, new_action_id, serialize_action
from ami_client.client.framing import FrameReader
from ami_client.client.router import classify
from ami_client.shared.client_utils import default_callback, make_client_stats, trim, utc_now_iso
from ami_client.shared.config import settings
from ami_client.shared.errors import (
    ConnectionClosedError,
    ManagerError,
    NoConnectionError,
    TransportError,
)
from ami_client.shared.events import EventBus
from ami_client.shared.models import ClientStats, ConnectionState, PendingAction

READ_CHUNK_SIZE = 8192


def _deliver(callback: Optional[Callable[..., Any]], error: Optional[Exception], *args: Any) -> None:
    """Error-first callback when one was given, otherwise raise the error."""
    if callback is None:
        if error is not None:
            raise error
        return
    callback(error, *args)


class Manager:
    def __init__(
        self,
        port: Optional[int] = None,
        host: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        events: Optional[bool] = None,
    ):
        self.port = port
        self.host = host
        self.username = username
        self.password = password
        self.events = events

        self.bus = EventBus()
        self.state = ConnectionState.DISCONNECTED
        self.stats = make_client_stats()

        # 🔵 Authentication gate: actions accepted before login, in submission order
        self.held: list[PendingAction] = []
        # 🟢 Correlation table: ActionID -> action waiting for its response
        self.pending: dict[str, PendingAction] = {}
        self.last_action_id: Optional[str] = None

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._frames: Optional[FrameReader] = None
        self._opening: Optional[asyncio.Task] = None
        self._read_task: Optional[asyncio.Task] = None

        # 🟡 Keep-alive: one close handler, at most one armed timer
        self._reconnect_handler: Optional[Callable[..., None]] = None
        self._reconnect_timer: Optional[asyncio.TimerHandle] = None
        self._reconnect_task: Optional[asyncio.Task] = None

    # ==========================
    # LISTENER REGISTRY
    # ==========================
    def on(self, channel: str, callback: Callable[..., Any]) -> Callable[..., Any]:
        return self.bus.on(channel, callback)

    add_listener = on

    def once(self, channel: str, callback: Callable[..., Any]) -> Callable[..., Any]:
        return self.bus.once(channel, callback)

    def off(self, channel: str, callback: Callable[..., Any]) -> bool:
        return self.bus.off(channel, callback)

    remove_listener = off

    def remove_all_listeners(self, channel: Optional[str] = None) -> None:
        self.bus.remove_all_listeners(channel)

    def listeners(self, channel: str) -> list:
        return self.bus.listeners(channel)

    def listener_count(self, channel: str) -> int:
        return self.bus.listener_count(channel)

    def emit(self, channel: str, *args: Any) -> bool:
        return self.bus.emit(channel, *args)

    # ==========================
    # CONNECTION LIFECYCLE
    # ==========================
    @property
    def authenticated(self) -> bool:
        return self.state is ConnectionState.AUTHENTICATED

    def is_connected(self) -> bool:
        return (
            self._writer is not None
            and not self._writer.is_closing()
            and self.state in (ConnectionState.CONNECTED, ConnectionState.AUTHENTICATED)
        )

    connected = is_connected

    async def connect(
        self,
        port: Optional[int] = None,
        host: Optional[str] = None,
        callback: Optional[Callable[..., Any]] = None,
    ) -> None:
        if self.is_connected():
            return _deliver(callback, None)

        port = port or self.port or settings.PORT
        host = host or self.host or settings.HOST

        # A second connect() while the first is still opening waits for the same socket
        if self._opening is None or self._opening.done():
            self._opening = asyncio.ensure_future(self._open(port, host))

        try:
            await asyncio.shield(self._opening)
        except TransportError as e:
            return _deliver(callback, e)
        _deliver(callback, None)

    async def _open(self, port: int, host: str) -> None:
        self.state = ConnectionState.CONNECTING
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=settings.CONNECT_TIMEOUT_S,
            )
        except (OSError, asyncio.TimeoutError) as e:
            self.state = ConnectionState.DISCONNECTED
            error = TransportError(f"could not connect to {host}:{port}: {str(e) or 'timeout'}")
            logger.warning(f"host={host} port={port} event=error reason='{error}'")
            self.bus.emit_soon("error", error)
            self.bus.emit_soon("close", True)
            raise error from e

        self._reader, self._writer = reader, writer
        self._frames = FrameReader(self._handle_item)
        self.state = ConnectionState.CONNECTED
        self.stats["connected_at"] = utc_now_iso()
        self._read_task = asyncio.ensure_future(self._read_loop(reader, writer, self._frames))

        logger.info(f"host={host} port={port} event=connect")
        self.bus.emit_soon("connect")

    async def _read_loop(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, frames: FrameReader) -> None:
        had_error = False
        try:
            while True:
                chunk = await reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    # Our own disconnect() detaches the writer first; only a remote EOF is an `end`
                    if self._writer is writer:
                        logger.info("event=end reason=remote_closed")
                        self.bus.emit_soon("end")
                    break
                self.stats["bytes_received"] += len(chunk)
                frames.feed(chunk)
        except OSError as e:
            had_error = True
            error = TransportError(str(e))
            logger.warning(f"event=error reason='{error}'")
            logger.opt(exception=e).debug("transport failure")
            self.bus.emit_soon("error", error)
        finally:
            if self._writer is writer:
                self._detach()
                writer.close()
                self._fail_outstanding(include_held=False)
            logger.info(f"event=close had_error={had_error}")
            self.bus.emit_soon("close", had_error)

    def _detach(self) -> None:
        self._reader = None
        self._writer = None
        self._frames = None
        self.state = ConnectionState.DISCONNECTED

    async def disconnect(self, callback: Optional[Callable[..., Any]] = None) -> None:
        self._cancel_reconnect()
        if self._opening is not None and not self._opening.done():
            self._opening.cancel()

        writer = self._writer
        self._detach()
        if writer is not None and not writer.is_closing():
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                logger.debug(f"event=disconnect reason='close failed: {e}'")

        self._fail_outstanding(include_held=True)
        logger.info("event=disconnect reason=requested")

        if callable(callback):
            asyncio.get_running_loop().call_soon(callback)

    def _fail_outstanding(self, include_held: bool) -> None:
        """Resolve every in-flight action (and optionally every held one) with ConnectionClosedError."""
        for action_id in list(self.pending):
            self.bus.emit_soon(action_id, ConnectionClosedError(action_id), None)

        if include_held and self.held:
            held, self.held = self.held, []
            loop = asyncio.get_running_loop()
            for pending in held:
                loop.call_soon(pending.callback, ConnectionClosedError(pending.action_id), None)
            logger.info(f"event=held_failed count={len(held)} reason=disconnect")

    # ==========================
    # KEEP-ALIVE
    # ==========================
    def keep_connected(
        self,
        port: Optional[int] = None,
        host: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        events: Optional[bool] = None,
        timeout_ms: Optional[int] = None,
    ) -> None:
        """
        Reconnect and log in again `timeout_ms` after every `close`.
        Calling it again while already armed does nothing.
        """
        if self._reconnect_handler is not None:
            return

        delay_s = (settings.RECONNECT_TIMEOUT_MS if timeout_ms is None else timeout_ms) / 1000.0
        target = (port, host, username or "", password or "", bool(events))

        def on_close(*args: Any) -> None:
            self._arm_reconnect(delay_s, *target)

        self._reconnect_handler = on_close
        self.bus.on("close", on_close)

        if not self.is_connected():
            self._arm_reconnect(0, *target)

    def _arm_reconnect(self, delay_s: float, *target: Any) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
        loop = asyncio.get_running_loop()
        self._reconnect_timer = loop.call_later(delay_s, self._start_reconnect, *target)
        logger.info(f"event=reconnect_armed delay_s={delay_s:.2f}")

    def _start_reconnect(self, *target: Any) -> None:
        self._reconnect_timer = None
        self.stats["reconnect_count"] += 1
        self._reconnect_task = asyncio.ensure_future(self._reconnect(*target))

    async def _reconnect(self, port, host, username, password, events) -> None:
        try:
            await self.connect(port, host)
            await self.login(username, password, events)
        except ManagerError as e:
            # A failed connect emits `close`, which re-arms the timer
            logger.warning(f"event=reconnect_failed attempt={self.stats['reconnect_count']} reason='{e}'")

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handler is not None:
            self.bus.off("close", self._reconnect_handler)
            self._reconnect_handler = None
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ==========================
    # AUTHENTICATION
    # ==========================
    async def login(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        events: Optional[bool] = None,
        callback: Optional[Callable[..., Any]] = None,
    ) -> Optional[dict]:
        username = username if username is not None else (self.username or settings.USERNAME)
        password = password if password is not None else (self.password or settings.SECRET)
        events = events if events is not None else (self.events if self.events is not None else settings.EVENTS)

        loop = asyncio.get_running_loop()
        outcome: asyncio.Future = loop.create_future()

        def on_login(error, response=None):
            if not outcome.done():
                outcome.set_result((error, response))

        self.action({
            "action": "login",
            "username": username or "",
            "secret": password or "",
            "events": "on" if events else "off",
        }, on_login)

        error, response = await outcome
        if error is not None:
            logger.warning(f"username={username} event=login_failed reason='{error}'")
            _deliver(callback, error, response)
            return None

        self.state = ConnectionState.AUTHENTICATED
        logger.info(f"username={username} event=login_ok")
        if callback is not None:
            loop.call_soon(callback, None, response)

        held, self.held = self.held, []
        if held:
            logger.info(f"event=flush_held count={len(held)}")
        for pending in held:
            self.action(pending.payload, pending.callback)
        return response

    # ==========================
    # ACTIONS
    # ==========================
    def _is_outstanding(self, action_id: str) -> bool:
        if self.bus.listener_count(action_id):
            return True
        return any(pending.action_id == action_id for pending in self.held)

    def action(self, payload: Optional[dict] = None, callback: Optional[Callable[..., Any]] = None) -> str:
        """
        Queue or send one action and return its ActionID.
        `callback(error, response)` runs once, when the response (or a failure) arrives.
        """
        payload = dict(payload or {})
        callback = default_callback(callback)

        requested = None
        for name in list(payload):
            if trim(name).lower() == "actionid":
                requested = payload.pop(name)
        action_id = new_action_id(self._is_outstanding, requested)

        if not self.authenticated and not is_login_action(payload):
            payload["actionid"] = action_id
            self.held.append(PendingAction(action_id=action_id, payload=payload, callback=callback))
            logger.debug(f"action_id={action_id} event=held reason=not_authenticated")
            return action_id

        self.pending[action_id] = PendingAction(action_id=action_id, payload=payload, callback=callback)
        self.bus.once(action_id, partial(self._resolve, action_id))
        self.last_action_id = action_id

        if self._writer is None or self._writer.is_closing():
            logger.error(f"action_id={action_id} event=dropped reason=no_connection")
            self.bus.emit_soon(action_id, NoConnectionError(action_id), None)
            return action_id

        self._writer.write(serialize_action(payload, action_id).encode("utf-8"))
        self.stats["actions_sent"] += 1
        return action_id

    def _resolve(self, action_id: str, error: Optional[Exception], response: Optional[dict] = None) -> None:
        pending = self.pending.pop(action_id, None)
        if pending is not None:
            pending.callback(error, response)

    async def send_action(self, payload: dict) -> dict:
        """Awaitable `action()`: returns the response item or raises its error."""
        done: asyncio.Future = asyncio.get_running_loop().create_future()

        def on_response(error, response=None):
            if done.done():
                return
            if error is not None:
                done.set_exception(error)
            else:
                done.set_result(response)

        self.action(payload, on_response)
        return await done

    # ==========================
    # INBOUND
    # ==========================
    def _handle_item(self, item: dict) -> None:
        self.stats["items_received"] += 1
        self.stats["last_item_at"] = utc_now_iso()

        self.bus.emit_soon("rawevent", item)
        for channel, args in classify(item, self.last_action_id):
            self.bus.emit_soon(channel, *args)

    # ==========================
    # METRICS
    # ==========================
    def get_stats(self) -> ClientStats:
        return ClientStats(
            state=self.state,
            authenticated=self.authenticated,
            items_received=self.stats["items_received"],
            bytes_received=self.stats["bytes_received"],
            actions_sent=self.stats["actions_sent"],
            reconnect_count=self.stats["reconnect_count"],
            pending_actions=len(self.pending),
            held_actions=len(self.held),
            last_item_at=self.stats["last_item_at"],
            connected_at=self.stats["connected_at"],
        )

    # ==========================
    # CONTEXT MANAGER
    # ==========================
    async def __aenter__(self) -> "Manager":
        await self.connect(self.port, self.host)
        if self.username is not None:
            try:
                await self.login(self.username, self.password, self.events)
            except BaseException:
                # __aexit__ never runs when __aenter__ raises
                await self.disconnect()
                raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()
