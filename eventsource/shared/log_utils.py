from loguru import logger

_LEVELS = {
    "connect": "DEBUG",
    "open": "INFO",
    "fatal": "WARNING",
    "dropped": "WARNING",
    "failed": "WARNING",
    "reconnect": "INFO",
    "close": "INFO",
}

def log_connection(event: str, url: str, extra: dict | None = None) -> None:
    """
    Single structured log entry for a connection lifecycle transition.
    Writes: protocol, url, event and any extra fields as key=value pairs.
    The level follows the transition: failures are warnings, routine steps info/debug.
    """
    log_str = f"protocol=sse url={url} event={event}"
    for k, v in (extra or {}).items():
        log_str += f" {k}={v}"
    logger.log(_LEVELS.get(event, "INFO"), log_str)
