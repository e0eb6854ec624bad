"""Network reachability signal."""

import logging
from typing import Callable

import requests

from .constants import CONNECTIVITY_PROBE_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], None]


class ConnectivityMonitor:
    """Tracks whether the host is online and notifies on transitions."""

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: list[ConnectivityListener] = []

    @property
    def online(self) -> bool:
        return self._online

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity restored" if online else "Connectivity lost")
        for listener in list(self._listeners):
            listener(online)

    def probe(self, url: str, timeout: float = CONNECTIVITY_PROBE_TIMEOUT_SECONDS) -> bool:
        """Check reachability of ``url`` and update the online flag.

        Any HTTP response counts as reachable; only transport errors count as
        offline.
        """
        try:
            requests.head(url, timeout=timeout)
            reachable = True
        except requests.RequestException as e:
            logger.debug(f"Connectivity probe to {url} failed: {e}")
            reachable = False
        self.set_online(reachable)
        return reachable
