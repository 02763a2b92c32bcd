"""Shared fixtures: a live TransferServer bound to an ephemeral port."""

import pytest
import pytest_asyncio

from hashdrop.transfer import TransferServer

# Small enough to exercise the size boundary cheaply
TEST_MAX_FILE_SIZE = 64 * 1024


@pytest.fixture
def upload_dir(tmp_path):
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest_asyncio.fixture
async def make_server(upload_dir):
    """Factory starting servers on 127.0.0.1:0; all are stopped at teardown."""
    servers = []

    async def factory(**kwargs):
        options = dict(
            upload_dir=upload_dir,
            host='127.0.0.1',
            port=0,
            max_file_size=TEST_MAX_FILE_SIZE,
            max_concurrent_clients=2,
            read_timeout=5.0,
        )
        options.update(kwargs)
        server = TransferServer(**options)
        await server.start()
        servers.append(server)
        return server

    yield factory

    for server in servers:
        await server.stop()


@pytest_asyncio.fixture
async def server(make_server):
    return await make_server()
