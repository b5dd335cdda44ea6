"""
Session lifecycle for one appliance connection.

    UNINITIALIZED --start--> ACTIVE --stop--> STOPPED --start--> ACTIVE

The session owns the API client and a cancellation event. stop() sets
the event and closes the client, so a collection cycle running on
another thread bails out at its next checkpoint (or as soon as the
closed connection fails, whichever comes first).
"""

from __future__ import annotations

import enum
import logging
import threading
from typing import Callable, Optional

from pstore.client import PowerStoreClient
from pstore.config import ConnectionConfig
from pstore.errors import ApplianceConnectionError, CollectionCancelled, SessionStateError

log = logging.getLogger(__name__)


class SessionState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    STOPPED = "stopped"


class SessionManager:
    """Owns exactly one live PowerStoreClient between start() and stop()."""

    def __init__(
        self,
        config: ConnectionConfig,
        client_factory: Callable[[ConnectionConfig], PowerStoreClient] = PowerStoreClient,
    ):
        self._config = config
        self._client_factory = client_factory
        self._client: Optional[PowerStoreClient] = None
        self._cancelled = threading.Event()
        self._state = SessionState.UNINITIALIZED

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def client(self) -> PowerStoreClient:
        if self._state is not SessionState.ACTIVE or self._client is None:
            raise SessionStateError(f"session is {self._state.value}, not active")
        return self._client

    def start(self) -> PowerStoreClient:
        if self._state is SessionState.ACTIVE:
            raise SessionStateError("session already started")

        log.info("Starting PowerStore session to %s", self._config.url)

        client = self._client_factory(self._config)
        try:
            client.login()
        except ApplianceConnectionError:
            client.close()
            raise

        self._cancelled = threading.Event()
        self._client = client
        self._state = SessionState.ACTIVE
        return client

    def stop(self):
        """Cancel outstanding work and drop the client. Safe to call anytime."""
        if self._state is not SessionState.ACTIVE:
            log.debug("stop() on %s session, nothing to do", self._state.value)
            return

        log.info("Stopping PowerStore session to %s", self._config.url)
        self._cancelled.set()
        self._state = SessionState.STOPPED

        client, self._client = self._client, None
        if client is not None:
            client.close()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def scope(self) -> threading.Event:
        """Cancellation event of the current session.

        A new one is made on every start(), so a cycle that grabbed the
        old scope stays cancelled across a stop/start.
        """
        return self._cancelled

    def checkpoint(self, scope: Optional[threading.Event] = None):
        """Raise if stop() has been called on the session `scope` belongs to."""
        if (scope if scope is not None else self._cancelled).is_set():
            raise CollectionCancelled("session stopped during collection")
