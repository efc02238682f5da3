# Overview: Network reachability probes polled before each sync flush.

from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)


class ReachabilityProbe:
    def is_online(self) -> bool:
        raise NotImplementedError


class StaticReachabilityProbe(ReachabilityProbe):
    """Reports whatever it was last told; used offline and in tests."""

    def __init__(self, online: bool = True):
        self.online = online

    def set_online(self, online: bool) -> None:
        self.online = online

    def is_online(self) -> bool:
        return self.online


class HttpReachabilityProbe(ReachabilityProbe):
    """
    Online means the backend answered a HEAD request without a 5xx.

    Any transport error (DNS, refused, timeout) counts as offline.
    """

    def __init__(self, url: str, *, timeout: float = 2.0, client: httpx.Client | None = None):
        self.url = url
        self._client = client or httpx.Client(timeout=timeout)

    def is_online(self) -> bool:
        try:
            response = self._client.head(self.url)
        except httpx.HTTPError as exc:
            logger.info("backend unreachable: %s", exc)
            return False
        return response.status_code < 500
