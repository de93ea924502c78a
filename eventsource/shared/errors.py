"""
MODULE OVERVIEW:
The EventSource exception hierarchy.

WHAT IS HAPPENING HERE:
Only `InvalidInputError` is ever raised to the caller (bad URL, bad message fields).
Everything else is delivered through the `error` event: a `FatalProtocolError`
leaves the EventSource CLOSED, a `TransientConnectionError` is followed by a retry.
"""


class EventSourceError(Exception):
    """Base for all eventsource errors."""


class InvalidInputError(EventSourceError, ValueError):
    """Raised synchronously for malformed constructor arguments."""


class FatalProtocolError(EventSourceError):
    """The server answered, but not with an event stream. Never retried."""


class UnexpectedStatusError(FatalProtocolError):
    def __init__(self, status_code: int):
        super().__init__(f"Unexpected status code {status_code}")
        self.status_code = status_code


class UnexpectedContentTypeError(FatalProtocolError):
    def __init__(self, content_type: str):
        super().__init__(f"Unexpected Content-Type {content_type!r}")
        self.content_type = content_type


class TransientConnectionError(EventSourceError):
    """The connection was lost or could not be made. A retry is scheduled."""


class StreamClosedError(TransientConnectionError):
    def __init__(self, reconnect_delay: float, cause: BaseException | None = None):
        super().__init__(f"Stream closed, reconnecting in {reconnect_delay:g} seconds")
        self.reconnect_delay = reconnect_delay
        # Set when the body read failed instead of ending cleanly
        self.__cause__ = cause


class ConnectionFailedError(TransientConnectionError):
    """The streaming GET itself failed (DNS, connect, TLS, ...).

    The underlying exception is available as `__cause__`.
    """

    def __init__(self, cause: BaseException):
        super().__init__(f"Connection failed: {cause!r}")
        self.__cause__ = cause
