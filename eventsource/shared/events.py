"""
MODULE OVERVIEW:
This module provides the notification surface of the EventSource: a small
string-keyed event emitter.

WHAT IS HAPPENING HERE:
The EventSource emits `open`, `error` and one event per decoded message (named after
the message type, `message` by default). Applications subscribe with `on()`.

Listeners are called synchronously, in registration order, so a listener can call
`close()` and the emitter will not deliver anything else afterwards: removal takes
effect immediately, even in the middle of an `emit()`.
A listener may also be an `async def`. Its coroutine is scheduled as a background task
and does not block delivery.
"""

import asyncio
import inspect
from typing import Any, Callable, Dict, List
from loguru import logger

Listener = Callable[..., Any]

class EventEmitter:
    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}
        # Strong references so pending listener coroutines are not garbage collected
        self._background_tasks: set[asyncio.Task] = set()

    def on(self, event: str, listener: Listener) -> Listener:
        self._listeners.setdefault(event, []).append(listener)
        return listener

    def once(self, event: str, listener: Listener) -> Listener:
        def wrapper(*args: Any) -> Any:
            self.remove_listener(event, wrapper)
            return listener(*args)

        self.on(event, wrapper)
        return wrapper

    def remove_listener(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)
            if not listeners:
                del self._listeners[event]

    def remove_all_listeners(self, event: str | None = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def listeners(self, event: str) -> List[Listener]:
        return list(self._listeners.get(event, ()))

    def emit(self, event: str, *args: Any) -> None:
        for listener in self.listeners(event):
            # A previous listener may have unsubscribed this one (or closed the source)
            if listener not in self._listeners.get(event, ()):
                continue
            try:
                result = listener(*args)
            except Exception as e:
                logger.error(f"Error in listener for event={event}: {e!r}")
                continue
            if inspect.isawaitable(result):
                self._track(event, result)

    def _track(self, event: str, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._background_tasks.add(task)

        def done(t: asyncio.Task) -> None:
            self._background_tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error(f"Error in async listener for event={event}: {t.exception()!r}")

        task.add_done_callback(done)
