"""Retry database connection attempts with exponential backoff.

Connection-refused, -reset and -aborted errors are transient (the server
may still be starting); anything else is permanent and returned at once.
"""

from __future__ import annotations

import logging
import socket
import sqlite3
import time
from typing import TYPE_CHECKING, TypeVar
from urllib.parse import unquote, urlsplit

from tenacity import (
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_delay,
    wait_exponential,
)

from queryprep.errors import PermanentConnectionError, TransientConnectionError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSIENT_ERRORS = (ConnectionRefusedError, ConnectionResetError, ConnectionAbortedError)

_DEFAULT_PORTS = {
    "postgres": 5432,
    "postgresql": 5432,
    "mysql": 3306,
    "mariadb": 3306,
    "mssql": 1433,
    "sqlserver": 1433,
}


def is_transient(exc: BaseException) -> bool:
    """True if *exc*, or an exception it was raised from, is a retryable connection error."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        if isinstance(current, _TRANSIENT_ERRORS):
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False


def retry_connect(
    attempt: Callable[[], T],
    max_elapsed: float,
    *,
    initial_interval: float = 0.5,
    max_interval: float = 60.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call *attempt* until it succeeds, retrying transient failures.

    Parameters
    ----------
    attempt:
        Zero-argument callable that opens and returns a connection.
    max_elapsed:
        Total time budget in seconds. Once exceeded, the last transient
        error is final.
    initial_interval, max_interval:
        Bounds of the exponential backoff between attempts.
    sleep:
        Sleep function used between attempts.

    Raises
    ------
    TransientConnectionError
        If every attempt within the budget failed transiently.
    PermanentConnectionError
        On the first non-transient failure, without retrying.
    """
    retrying = Retrying(
        stop=stop_after_delay(max_elapsed),
        wait=wait_exponential(multiplier=initial_interval, min=initial_interval, max=max_interval),
        retry=retry_if_exception(is_transient),
        before_sleep=before_sleep_log(logger, logging.INFO),
        sleep=sleep,
        reraise=False,
    )
    try:
        return retrying(attempt)
    except RetryError as exc:
        last = exc.last_attempt.exception()
        attempts = exc.last_attempt.attempt_number
        msg = f"could not connect after {attempts} attempt(s) within {max_elapsed:g}s: {last}"
        raise TransientConnectionError(msg) from last
    except Exception as exc:
        msg = f"connection failed: {exc}"
        raise PermanentConnectionError(msg) from exc


# ---------------------------------------------------------------------------
# Database reachability probe
# ---------------------------------------------------------------------------


def probe_database(url: str, timeout: float = 5.0) -> None:
    """Open and close one connection to the database at *url*.

    ``sqlite:`` URLs open the database file; other schemes open a TCP
    connection to the URL's host and port.
    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    if scheme == "sqlite":
        path = unquote(url.split(":", 1)[1].split("?", 1)[0])
        if path.startswith("//"):
            path = path[2:]
        if path in ("", ":memory:"):
            return
        conn = sqlite3.connect(f"file:{path}?mode=rw", uri=True, timeout=timeout)
        conn.close()
        return

    if scheme not in _DEFAULT_PORTS:
        msg = f"unsupported database URL scheme: {parts.scheme!r}"
        raise ValueError(msg)
    host = parts.hostname or "localhost"
    port = parts.port or _DEFAULT_PORTS[scheme]
    with socket.create_connection((host, port), timeout=timeout):
        logger.debug("Database at %s:%d is reachable", host, port)
