# Overview: Retry helpers for optimistic-version writes against the local store.

from __future__ import annotations

import logging
import time

from ..errors import VersionConflict

logger = logging.getLogger(__name__)


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.01, on_retry=None):
    """
    Execute a read-modify-write with retry on concurrency-related failures.

    Retries on VersionConflict (another writer bumped the key's version) with
    exponential backoff. Other errors propagate immediately; the last conflict
    is re-raised once attempts are exhausted.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except VersionConflict as exc:
            last_exc = exc
            if on_retry is not None:
                on_retry(exc)
            if attempt >= attempts - 1:
                raise
            logger.debug("retrying after %s (attempt %d/%d)", exc, attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
