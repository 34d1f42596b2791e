"""Pytest configuration and fixtures"""

import os
import pytest
import pytest_asyncio
import tempfile
import shutil
from pathlib import Path

from chunktransfer.config import TransferConfig
from chunktransfer.engine import FileTransferEngine
from chunktransfer.network.peers import Peer, PeerDirectory
from chunktransfer.network.transport import LoopbackNetwork


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    tmpdir = tempfile.mkdtemp()
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def download_dir(temp_dir):
    """Directory the receiving engine writes into"""
    return temp_dir / "downloads"


@pytest.fixture
def fast_config(download_dir):
    """Small chunks, fast pacing and short timeouts"""
    return TransferConfig(
        bytes_per_chunk=1000,
        chunks_per_second=1000,
        server_timeout=0.5,
        client_timeout=1.0,
        ready_poll_interval=0.01,
        download_dir=str(download_dir),
    )


@pytest.fixture
def make_file(temp_dir):
    """Factory writing a file of random content; returns (path, data)"""
    source_dir = temp_dir / "source"
    source_dir.mkdir(exist_ok=True)

    def _make(name: str, size: int):
        data = os.urandom(size)
        path = source_dir / name
        path.write_bytes(data)
        return path, data

    return _make


@pytest.fixture
def network():
    return LoopbackNetwork()


@pytest.fixture
def directory():
    return PeerDirectory([Peer('alice'), Peer('bob')])


@pytest_asyncio.fixture
async def alice(network, directory, fast_config):
    """Sending side"""
    engine = FileTransferEngine('alice', network.transport('alice'), directory, fast_config)
    await engine.start()
    yield engine
    await engine.close()


@pytest_asyncio.fixture
async def bob(network, directory, fast_config):
    """Receiving side"""
    engine = FileTransferEngine('bob', network.transport('bob'), directory, fast_config)
    await engine.start()
    yield engine
    await engine.close()


class SignalRecorder:
    """Collects every signal an engine emits"""

    def __init__(self, engine: FileTransferEngine):
        self.events = []
        for name in ('upload_succeeded', 'upload_failed', 'download_started',
                     'download_succeeded', 'download_failed'):
            getattr(engine.signals, name).connect(self._recorder(name))

    def _recorder(self, name):
        def record(*args):
            self.events.append((name, *args))
        return record

    def named(self, name):
        return [event[1:] for event in self.events if event[0] == name]


@pytest.fixture
def recorder():
    return SignalRecorder
