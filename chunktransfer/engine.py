"""
File transfer engine

One engine per local peer. It owns the transfer registry, runs one
asyncio task per transfer and dispatches inbound messages through a
handler table keyed by message type.
"""

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Union
import logging

from .config import TransferConfig
from .errors import ProtocolError, TransferIOError, UnknownTransferError
from .network.messages import (
    Message, MessageType, SetupMessage, ReadyMessage, ChunkMessage,
)
from .network.peers import PeerDirectory, PeerId, check_peer_id
from .network.transport import Transport
from .transfer.base import TransferProtocol
from .transfer.descriptor import TransferDescriptor, TransferState
from .transfer.receiver import ReceiverProtocol
from .transfer.registry import Collection, TransferRegistry
from .transfer.sender import SenderProtocol
from .transfer.signals import TransferSignals

logger = logging.getLogger(__name__)

MessageHandler = Callable[[PeerId, Message], Awaitable[None]]


class FileTransferEngine:
    """Sends and receives files for one local peer"""

    def __init__(self, peer_id: PeerId, transport: Transport,
                 directory: PeerDirectory, config: Optional[TransferConfig] = None):
        check_peer_id(peer_id, "local peer id")
        self.peer_id = peer_id
        self.transport = transport
        self.directory = directory
        self.config = config or TransferConfig()

        self.registry = TransferRegistry(history_size=self.config.history_size)
        self.signals = TransferSignals()
        self._protocols: Dict[TransferDescriptor, TransferProtocol] = {}

        self._handlers: Dict[MessageType, MessageHandler] = {
            MessageType.SETUP: self._handle_setup,
            MessageType.READY: self._handle_ready,
            MessageType.CHUNK: self._handle_chunk,
        }
        self.transport.set_handler(self.handle_message)

    async def start(self):
        await self.transport.start()
        logger.info(f"Transfer engine for peer {self.peer_id!r} started")

    # === Outbound ===

    async def send_file(self, path: Union[str, Path], target_peer_id: PeerId,
                        bytes_per_chunk: Optional[int] = None,
                        chunks_per_second: Optional[float] = None,
                        server_timeout: Optional[float] = None) -> SenderProtocol:
        """
        Start uploading path to target_peer_id

        Returns the running SenderProtocol; ``await sender.wait()`` for the
        outcome. Raises ProtocolError for a target that is not a string or
        integer peer id, and TransferIOError if the file cannot be read; in
        both cases the transfer is never registered or announced.
        """
        check_peer_id(target_peer_id, "target peer id")
        config = self.config.with_overrides(
            bytes_per_chunk=bytes_per_chunk,
            chunks_per_second=chunks_per_second,
            server_timeout=server_timeout,
        )
        descriptor = TransferDescriptor(
            sender_peer=self.peer_id,
            receiver_peer=target_peer_id,
            path=str(path),
            bytes_per_chunk=config.bytes_per_chunk,
            chunks_per_second=config.chunks_per_second,
        )
        sender = SenderProtocol(descriptor, self.transport, self.registry,
                                config, self.signals)

        try:
            await sender.measure_source()
        except TransferIOError as e:
            await sender.fail_before_start(str(e))
            raise

        self.registry.reserve_upload(descriptor)
        logger.info(f"Sending {descriptor.path} to {target_peer_id!r} as transfer #{descriptor.id}")
        self._start(sender)
        return sender

    # === Inbound ===

    async def handle_message(self, from_peer_id: PeerId, message: Message):
        """Transport entry point"""
        handler = self._handlers.get(message.msg_type)
        if handler is None:
            logger.warning(f"No handler for {message.msg_type}")
            return
        await handler(from_peer_id, message)

    async def _handle_setup(self, from_peer_id: PeerId, message: SetupMessage):
        try:
            message.validate()
        except ProtocolError as e:
            logger.warning(f"Rejected Setup from {from_peer_id!r}: {e}")
            return

        if self._active_receiver(message.sender_peer_id, message.transfer_id) is not None:
            logger.debug(f"Duplicate Setup for active transfer #{message.transfer_id} "
                         f"from {message.sender_peer_id!r}, ignored")
            return

        descriptor = TransferDescriptor(
            sender_peer=message.sender_peer_id,
            receiver_peer=self.peer_id,
            path=message.path,
            bytes_per_chunk=message.bytes_per_chunk,
            chunks_per_second=self.config.chunks_per_second,
            id=message.transfer_id,
            total_bytes=message.total_bytes,
            state=TransferState.SETUP_RECEIVED,
        )
        receiver = ReceiverProtocol(descriptor, self.transport, self.registry,
                                    self.config, self.signals, self.directory)
        self._start(receiver)

    async def _handle_ready(self, from_peer_id: PeerId, message: ReadyMessage):
        descriptor = self.registry.find(Collection.UPLOADS, message.receiver_peer_id,
                                        message.transfer_id)
        sender = self._protocols.get(descriptor) if descriptor is not None else None
        if not isinstance(sender, SenderProtocol):
            logger.debug(str(UnknownTransferError(message.receiver_peer_id, message.transfer_id)))
            return
        sender.mark_ready()
        logger.debug(f"Peer {message.receiver_peer_id!r} ready for transfer #{message.transfer_id}")

    async def _handle_chunk(self, from_peer_id: PeerId, message: ChunkMessage):
        descriptor = self.registry.find(Collection.DOWNLOADS, message.sender_peer_id,
                                        message.transfer_id)
        receiver = self._protocols.get(descriptor) if descriptor is not None else None
        if not isinstance(receiver, ReceiverProtocol):
            # Stale or erroneous chunk, nothing to attribute it to
            logger.debug(str(UnknownTransferError(message.sender_peer_id, message.transfer_id)))
            return
        receiver.accept_chunk(message.step, message.payload)

    def _active_receiver(self, sender_peer_id: PeerId,
                         transfer_id: int) -> Optional[ReceiverProtocol]:
        for protocol in self._protocols.values():
            d = protocol.descriptor
            if (isinstance(protocol, ReceiverProtocol) and not d.is_finished
                    and d.sender_peer == sender_peer_id and d.id == transfer_id):
                return protocol
        return None

    # === Lifecycle ===

    def _start(self, protocol: TransferProtocol):
        descriptor = protocol.descriptor
        self._protocols[descriptor] = protocol
        task = protocol.start()
        task.add_done_callback(lambda _: self._protocols.pop(descriptor, None))

    def protocol_for(self, descriptor: TransferDescriptor) -> Optional[TransferProtocol]:
        return self._protocols.get(descriptor)

    def cancel(self, descriptor: TransferDescriptor) -> bool:
        """Abort an active transfer; returns False if it is not running"""
        protocol = self._protocols.get(descriptor)
        if protocol is None:
            return False
        return protocol.cancel()

    async def wait_all(self) -> List[TransferDescriptor]:
        """Wait for every running transfer to reach a terminal state"""
        results = []
        while self._protocols:
            protocols = list(self._protocols.values())
            results.extend(await asyncio.gather(*(p.wait() for p in protocols)))
            for protocol in protocols:
                self._protocols.pop(protocol.descriptor, None)
        return results

    async def close(self):
        """Cancel running transfers and stop the transport"""
        protocols = list(self._protocols.values())
        for protocol in protocols:
            protocol.cancel()
        if protocols:
            await asyncio.gather(*(p.wait() for p in protocols))
        await self.transport.close()
        logger.info(f"Transfer engine for peer {self.peer_id!r} stopped")

    @property
    def uploads(self) -> List[TransferDescriptor]:
        return self.registry.uploads()

    @property
    def downloads(self) -> List[TransferDescriptor]:
        return self.registry.downloads()

    @property
    def history(self) -> List[TransferDescriptor]:
        return self.registry.history()
