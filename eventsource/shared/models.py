"""
MODULE OVERVIEW:
This module defines the typed data structures shared by the decoder and the
EventSource client, powered by Pydantic v2.

WHAT IS HAPPENING HERE:
`MessageEvent` is what listeners receive for every decoded message. It is frozen,
and its constructor validates every field so an application can build one by hand
in a test and get the same guarantees the decoder gives.
"""
import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from eventsource.shared.errors import InvalidInputError

DEFAULT_EVENT_TYPE = "message"

_CR_LF = re.compile(r"\r\n?")


class ConnectionState(IntEnum):
    # Same numeric values as the browser EventSource.readyState
    CONNECTING = 0
    OPEN = 1
    CLOSED = 2


def _require_utf8(value: Any, field: str) -> Any:
    if isinstance(value, (bytes, bytearray)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            raise ValueError(f"{field} must be valid UTF-8")
    if isinstance(value, str):
        try:
            value.encode("utf-8")
        except UnicodeEncodeError:
            raise ValueError(f"{field} must be valid UTF-8")
    return value


class MessageEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: str = ""
    last_event_id: str = ""
    type: str = DEFAULT_EVENT_TYPE
    retry: Annotated[int, Field(ge=0)] | None = None

    def __init__(
        self,
        data: str | bytes = "",
        last_event_id: str | bytes = "",
        type: str | bytes = DEFAULT_EVENT_TYPE,
        retry: int | None = None,
    ):
        try:
            super().__init__(data=data, last_event_id=last_event_id, type=type, retry=retry)
        except ValidationError as e:
            raise InvalidInputError(str(e)) from e

    @field_validator("data", mode="before")
    @classmethod
    def _check_data(cls, value: Any) -> Any:
        value = _require_utf8(value, "data")
        if isinstance(value, str):
            return _CR_LF.sub("\n", value)
        return value

    @field_validator("last_event_id", mode="before")
    @classmethod
    def _check_last_event_id(cls, value: Any) -> Any:
        value = _require_utf8(value, "last_event_id")
        if isinstance(value, str) and ("\0" in value or "\r" in value or "\n" in value):
            raise ValueError("last_event_id must not contain null bytes or newline characters")
        return value

    @field_validator("type", mode="before")
    @classmethod
    def _check_type(cls, value: Any) -> Any:
        value = _require_utf8(value, "type")
        if isinstance(value, str) and (value == "" or "\r" in value or "\n" in value):
            raise ValueError("type must be a non-empty string with no newline characters")
        return value


@dataclass(frozen=True)
class ParsedMessage:
    """Result of decoding one block: the message plus the accepted `retry:` in seconds."""
    message: MessageEvent
    retry_seconds: float | None = None
