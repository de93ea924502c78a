"""
MODULE OVERVIEW:
The Server-Sent Events frame decoder.

WHAT IS HAPPENING HERE:
The wire format is line based. A line ends with CRLF, a lone CR or a lone LF, and a
blank line (two terminators in a row) ends a message block. HTTP chunks do not care
about any of this, so `FrameBuffer` keeps whatever has not been terminated yet and
re-scans the accumulated bytes every time a new chunk arrives.

Each complete block goes through `parse_message()`, which is a pure function of the
block and the last event id carried by the connection. It never raises: invalid UTF-8
inside a field value is replaced with U+FFFD, and unknown or malformed fields are skipped.
"""
import re

from eventsource.shared.models import DEFAULT_EVENT_TYPE, MessageEvent, ParsedMessage

_LINE_BREAK = re.compile(rb"\r\n|\r(?!\n)|\n")
_BOUNDARY = re.compile(rb"(?:\r\n|\r(?!\n)|\n){2}")
_RETRY = re.compile(rb"0|[1-9][0-9]*")

# Largest signed 64-bit integer
MAX_RETRY_MS = 2**63 - 1
_MAX_RETRY_DIGITS = len(str(MAX_RETRY_MS))


def repair_utf8(value: bytes) -> str:
    """Decode UTF-8, replacing only the invalid byte sequences with U+FFFD."""
    return value.decode("utf-8", errors="replace")


class FrameBuffer:
    """Splits an arbitrary chunked byte stream into SSE message blocks."""

    def __init__(self):
        self._buffer = b""
        # The last boundary ended on a CR at the very end of the buffer. If the next
        # chunk starts with LF, that LF completes the CRLF and belongs to no line.
        self._skip_lf = False

    def __len__(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[bytes]:
        """Append `chunk` and return every block completed by it, in order."""
        if not chunk:
            return []
        if self._skip_lf:
            self._skip_lf = False
            if chunk.startswith(b"\n"):
                chunk = chunk[1:]

        self._buffer += chunk
        blocks = []
        start = 0
        for match in _BOUNDARY.finditer(self._buffer):
            blocks.append(self._buffer[start:match.start()])
            start = match.end()

        if blocks and start == len(self._buffer) and self._buffer.endswith(b"\r"):
            self._skip_lf = True
        self._buffer = self._buffer[start:]
        return blocks

    def clear(self) -> None:
        self._buffer = b""
        self._skip_lf = False


def parse_message(block: bytes | str, last_event_id: str = "") -> ParsedMessage:
    """
    Parse one message block (without its terminating blank line).

    `last_event_id` is the id carried forward by the connection; it becomes the
    message id unless the block sets a new one. Committing the returned id and
    retry value back to the connection is up to the caller.
    """
    if isinstance(block, str):
        block = block.encode("utf-8", errors="surrogatepass")

    data = []
    event_id = last_event_id
    event_type = DEFAULT_EVENT_TYPE
    retry = None

    for line in _LINE_BREAK.split(block):
        name, colon, value = line.partition(b":")
        if colon and value.startswith(b" "):
            value = value[1:]

        if name == b"data":
            data.append(repair_utf8(value))
        elif name == b"id":
            if b"\0" not in value:
                event_id = repair_utf8(value)
        elif name == b"event":
            if value:
                event_type = repair_utf8(value)
        elif name == b"retry":
            # Length first, int() refuses very long digit strings
            if _RETRY.fullmatch(value) and len(value) <= _MAX_RETRY_DIGITS and int(value) <= MAX_RETRY_MS:
                retry = int(value)
        # Comments (empty name) and unknown fields are ignored

    message = MessageEvent(
        data="\n".join(data),
        last_event_id=event_id,
        type=event_type,
        retry=retry,
    )
    return ParsedMessage(message, retry / 1000 if retry is not None else None)
