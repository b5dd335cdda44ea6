import threading

import pytest

from pstore.config import ConnectionConfig
from pstore.mock.fake_powerstore_server import FakePowerStoreServer


@pytest.fixture
def fake_server():
    server = FakePowerStoreServer(("127.0.0.1", 0))
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server
    finally:
        server.shutdown()
        server.server_close()


@pytest.fixture
def config(fake_server):
    return ConnectionConfig(
        url=fake_server.base_url,
        username="admin",
        password="admin",
        timeout_seconds=5.0,
    )
