"""Tests for SessionManager state transitions."""

import pytest

from pstore.config import ConnectionConfig
from pstore.errors import ApplianceConnectionError, CollectionCancelled, SessionStateError
from pstore.session import SessionManager, SessionState


class FakeClient:
    def __init__(self, config, fail_login=False):
        self.config = config
        self.fail_login = fail_login
        self.logged_in = False
        self.closed = False

    def login(self):
        if self.fail_login:
            raise ApplianceConnectionError("nope")
        self.logged_in = True

    def close(self):
        self.closed = True


def _manager(**client_kwargs):
    created = []

    def factory(config):
        client = FakeClient(config, **client_kwargs)
        created.append(client)
        return client

    config = ConnectionConfig(url="https://powerstore.test/api/rest")
    return SessionManager(config, client_factory=factory), created


def test_starts_uninitialized():
    manager, _ = _manager()
    assert manager.state is SessionState.UNINITIALIZED
    with pytest.raises(SessionStateError):
        manager.client


def test_start_logs_in_and_activates():
    manager, created = _manager()
    client = manager.start()

    assert manager.state is SessionState.ACTIVE
    assert manager.client is client
    assert created[0].logged_in


def test_stop_closes_client_and_cancels():
    manager, created = _manager()
    manager.start()
    manager.stop()

    assert manager.state is SessionState.STOPPED
    assert created[0].closed
    assert manager.cancelled
    with pytest.raises(CollectionCancelled):
        manager.checkpoint()
    with pytest.raises(SessionStateError):
        manager.client


def test_stop_is_idempotent():
    manager, created = _manager()
    manager.stop()
    manager.start()
    manager.stop()
    manager.stop()
    assert manager.state is SessionState.STOPPED
    assert len(created) == 1


def test_double_start_rejected():
    manager, _ = _manager()
    manager.start()
    with pytest.raises(SessionStateError):
        manager.start()


def test_restart_gets_fresh_client_and_scope():
    manager, created = _manager()
    manager.start()
    manager.stop()
    manager.start()

    assert len(created) == 2
    assert manager.client is created[1]
    assert not manager.cancelled
    manager.checkpoint()


def test_failed_login_closes_client_and_stays_uninitialized():
    manager, created = _manager(fail_login=True)
    with pytest.raises(ApplianceConnectionError):
        manager.start()

    assert manager.state is SessionState.UNINITIALIZED
    assert created[0].closed
