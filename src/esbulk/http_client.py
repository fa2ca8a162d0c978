"""HTTP helpers with retry/backoff logic and server selection for the bulk loader."""

from __future__ import annotations

import logging
import os
import random
import time
from typing import Optional, Sequence

import requests

from .config import BACKOFF_BASE_SEC, REQUEST_TIMEOUT
from .errors import TransportError

logger = logging.getLogger(__name__)

# Seeded once at import; every server pick draws from this instance.
_RANDOM = random.Random()


def pick_server(servers: Sequence[str], rng: Optional[random.Random] = None) -> str:
    """Return a uniformly random server base URL from the pool."""
    if not servers:
        raise ValueError("server pool is empty")
    return (rng or _RANDOM).choice(list(servers))


def build_session(username: Optional[str], password: Optional[str]) -> requests.Session:
    """Return a session sending JSON content type and, when complete, basic auth."""
    session = requests.Session()
    session.headers.update({"Content-Type": "application/json"})
    if username and password:
        session.auth = (username, password)
    return session


def sleep_with_jitter(base: float) -> None:
    """Pause execution with +/- 25% jitter to avoid synchronized retries."""
    jitter = base * 0.25 * (0.5 - (os.urandom(1)[0] / 255.0))
    time.sleep(max(0.0, base + jitter))


def describe_response(resp: requests.Response) -> str:
    """Return ``<status> <reason>: <body>`` for error messages."""
    status = f"{resp.status_code} {resp.reason}" if getattr(resp, "reason", None) else str(resp.status_code)
    return f"{status}: {resp.text or ''}"


def _should_retry(resp: requests.Response) -> bool:
    return resp.status_code >= 500


def request_with_backoff(
    session: requests.Session,
    method: str,
    url: str,
    *,
    max_retries: int,
    backoff_base: float = BACKOFF_BASE_SEC,
    **kwargs,
) -> requests.Response:
    """Perform a call with up to ``max_retries`` attempts and exponential backoff.

    Connection errors and 5xx answers are retried against the same URL. When
    attempts run out the last response is returned for the caller to classify;
    if no attempt produced a response, ``TransportError`` is raised.
    """
    kwargs.setdefault("timeout", REQUEST_TIMEOUT)
    attempts = max(1, max_retries)
    last_exc: Optional[requests.RequestException] = None

    for attempt in range(1, attempts + 1):
        try:
            resp = session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            last_exc = exc
            if attempt < attempts:
                delay = backoff_base * (2 ** (attempt - 1))
                logger.warning("[retry %d/%d] %s %s: %s -> sleep %.1fs", attempt, attempts, method, url, exc, delay)
                sleep_with_jitter(delay)
            continue

        if not _should_retry(resp) or attempt == attempts:
            return resp

        delay = backoff_base * (2 ** (attempt - 1))
        logger.warning(
            "[retry %d/%d] %s %s: HTTP %d -> sleep %.1fs", attempt, attempts, method, url, resp.status_code, delay
        )
        sleep_with_jitter(delay)

    raise TransportError(f"{method} {url} failed after {attempts} attempts: {last_exc}") from last_exc


__all__ = [
    "pick_server",
    "build_session",
    "sleep_with_jitter",
    "describe_response",
    "request_with_backoff",
]
