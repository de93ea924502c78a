"""
MODULE OVERVIEW:
This module provides client-wide configuration using Pydantic Settings.
Where it fits: every EventSource reads its defaults from here unless the caller
passes explicit values.

WHAT IS HAPPENING HERE:
We declare the reconnect delay and the HTTP timeouts once. The values can be
overridden through environment variables prefixed with `EVENTSOURCE_`
(e.g. `EVENTSOURCE_RECONNECT_DELAY_S=1.5`) or a local `.env` file.
"""
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # Delay before the first reconnect. The server can change it per stream with `retry:`.
    RECONNECT_DELAY_S: float = 3.0

    # Only used when the EventSource creates its own httpx client
    CONNECT_TIMEOUT_S: float = 10.0
    READ_TIMEOUT_S: float | None = None

    class Config:
        env_prefix = "EVENTSOURCE_"
        env_file = ".env"
        # Tolerate missing env vars to allow easy out-of-the-box execution
        env_file_encoding = 'utf-8'
        extra = 'ignore'

settings = Settings()
