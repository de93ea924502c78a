from datetime import datetime, timezone
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """
    Anything that can run a callback later. `asyncio.AbstractEventLoop` already
    matches: `loop.call_later()` returns an `asyncio.TimerHandle`.
    """
    def call_later(self, delay: float, callback: Callable[[], object]) -> TimerHandle: ...


def make_client_stats() -> dict:
    """
    Returns a fresh stats dictionary with zeroed counters.
    Every EventSource calls this once in __init__.
    Keys: events_received, reconnect_count, bytes_received,
          last_event_at, connected_at.
    """
    return {
        "events_received": 0,
        "reconnect_count": 0,
        "bytes_received": 0,
        "last_event_at": None,
        "connected_at": None,
    }


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
