"""
MODULE OVERVIEW:
This module provides the per-client publish/subscribe registry.

WHAT IS HAPPENING HERE:
Channels are plain strings computed at runtime: "managerevent", the lowercased event
name, "userevent-ping", or an ActionID such as "1718000000000". Each channel maps to an
ordered list of listeners. A listener registered with `once()` is removed right before
its first (and only) invocation, which is how an action's response callback is
modelled.

Every Manager owns its own EventBus, so two clients never share listeners.
"""

import asyncio
import inspect
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Set
from loguru import logger

Listener = Callable[..., Any]


class _Registration:
    __slots__ = ("callback", "once")

    def __init__(self, callback: Listener, once: bool):
        self.callback = callback
        self.once = once


class EventBus:
    """
    A minimal string-keyed pub/sub registry with one-shot listeners.
    Listeners may be plain functions or coroutine functions.
    """
    def __init__(self):
        self._channels: Dict[str, List[_Registration]] = {}
        # Strong references to running coroutine listeners
        self._tasks: Set[asyncio.Future] = set()

    def on(self, channel: str, callback: Listener) -> Listener:
        self._channels.setdefault(channel, []).append(_Registration(callback, once=False))
        return callback

    add_listener = on

    def once(self, channel: str, callback: Listener) -> Listener:
        self._channels.setdefault(channel, []).append(_Registration(callback, once=True))
        return callback

    def off(self, channel: str, callback: Listener) -> bool:
        """Remove the first registration of `callback` on `channel`."""
        registrations = self._channels.get(channel)
        if not registrations:
            return False
        for index, registration in enumerate(registrations):
            if registration.callback is callback:
                del registrations[index]
                if not registrations:
                    del self._channels[channel]
                return True
        return False

    remove_listener = off

    def remove_all_listeners(self, channel: Optional[str] = None) -> None:
        if channel is None:
            self._channels.clear()
        else:
            self._channels.pop(channel, None)

    def listeners(self, channel: str) -> List[Listener]:
        return [r.callback for r in self._channels.get(channel, [])]

    def listener_count(self, channel: str) -> int:
        return len(self._channels.get(channel, []))

    def emit(self, channel: str, *args: Any) -> bool:
        """
        Invoke every listener of `channel` synchronously, in registration order.
        Returns False when nobody was listening.
        """
        registrations = self._channels.get(channel)
        if not registrations:
            return False

        snapshot = list(registrations)
        for registration in snapshot:
            if registration.once:
                self._discard(channel, registration)

        for registration in snapshot:
            try:
                result = registration.callback(*args)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._tasks.add(task)
                    task.add_done_callback(partial(self._listener_done, channel))
            except Exception as e:
                logger.error(f"channel={channel} event=listener_error reason='{e}'")
        return True

    def _listener_done(self, channel: str, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"channel={channel} event=listener_error reason='{error}'")

    def emit_soon(self, channel: str, *args: Any) -> None:
        """Defer `emit()` to the next turn of the running loop."""
        asyncio.get_running_loop().call_soon(self.emit, channel, *args)

    def _discard(self, channel: str, registration: _Registration) -> None:
        registrations = self._channels.get(channel)
        if registrations is None:
            return
        try:
            registrations.remove(registration)
        except ValueError:
            return
        if not registrations:
            del self._channels[channel]
