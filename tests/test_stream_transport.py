"""Test the TCP transport"""

import asyncio

import pytest

from chunktransfer.engine import FileTransferEngine
from chunktransfer.network.messages import ReadyMessage
from chunktransfer.network.peers import Peer, PeerDirectory
from chunktransfer.network.transport import StreamTransport
from chunktransfer.transfer.descriptor import TransferState


class TestStreamTransport:
    """Test framing and delivery over localhost"""

    @pytest.mark.asyncio
    async def test_message_delivery(self):
        directory = PeerDirectory()
        received = []
        arrived = asyncio.Event()

        async def handler(from_peer_id, message):
            received.append((from_peer_id, message))
            arrived.set()

        a = StreamTransport('a', '127.0.0.1', 0, directory)
        b = StreamTransport('b', '127.0.0.1', 0, directory)
        b.set_handler(handler)
        await a.start()
        await b.start()
        directory.add(Peer('b', '127.0.0.1', b.bound_port))

        try:
            await a.send('b', ReadyMessage('a', 12))
            await asyncio.wait_for(arrived.wait(), 5.0)
        finally:
            await a.close()
            await b.close()

        assert received == [('a', ReadyMessage('a', 12))]

    @pytest.mark.asyncio
    async def test_send_to_unknown_peer(self):
        a = StreamTransport('a', '127.0.0.1', 0, PeerDirectory())
        await a.start()
        try:
            with pytest.raises(ConnectionError):
                await a.send('nobody', ReadyMessage('a', 1))
        finally:
            await a.close()

    @pytest.mark.asyncio
    async def test_file_transfer_over_tcp(self, fast_config, make_file, download_dir):
        directory = PeerDirectory()
        alice = FileTransferEngine('alice', StreamTransport('alice', '127.0.0.1', 0, directory),
                                   directory, fast_config)
        bob = FileTransferEngine('bob', StreamTransport('bob', '127.0.0.1', 0, directory),
                                 directory, fast_config)
        await alice.start()
        await bob.start()
        directory.add(Peer('alice', '127.0.0.1', alice.transport.bound_port))
        directory.add(Peer('bob', '127.0.0.1', bob.transport.bound_port))

        source, data = make_file('over-tcp.bin', 7777)
        try:
            sender = await alice.send_file(source, 'bob')
            upload = await sender.wait()
            [download] = await bob.wait_all()
        finally:
            await alice.close()
            await bob.close()

        assert upload.state is TransferState.COMPLETED
        assert download.state is TransferState.COMPLETED
        assert download.sent_bytes == 7777
        assert (download_dir / 'over-tcp.bin').read_bytes() == data
