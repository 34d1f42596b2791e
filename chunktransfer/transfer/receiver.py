"""
Receiver protocol

    SETUP_RECEIVED -> READY -> RECEIVING -> COMPLETED
          |             |          |
          +---------> FAILED <-----+          (or CANCELLED)

Chunks are accepted out of band by accept_chunk() and written strictly
in step order by the receive loop.
"""

import asyncio
from pathlib import Path, PureWindowsPath
from typing import Optional
import logging

import aiofiles
import aiofiles.os

from .base import TransferProtocol
from .descriptor import TransferDescriptor, TransferState
from .reassembler import ChunkReassembler
from .registry import Collection
from ..errors import (
    InvalidPeerError, TransferError, TransferIOError, TransferTimeoutError,
)
from ..network.messages import ReadyMessage
from ..network.peers import PeerDirectory

logger = logging.getLogger(__name__)


def destination_for(announced_path: str, download_dir: Path) -> Path:
    """
    Map the path announced in a Setup message into download_dir

    Only the final component is kept, whichever separator the sender uses.
    """
    name = PureWindowsPath(announced_path).name
    if name in ('', '.', '..'):
        raise TransferIOError(f"Invalid destination name in {announced_path!r}")
    return Path(download_dir) / name


class ReceiverProtocol(TransferProtocol):
    """Inbound handshake and timeout-guarded reassembly for one download"""

    def __init__(self, descriptor: TransferDescriptor, transport, registry, config,
                 signals, directory: PeerDirectory):
        super().__init__(descriptor, transport, registry, config, signals)
        self.directory = directory
        self.reassembler = ChunkReassembler(window=config.reassembly_window)
        self.announced_path = descriptor.path
        self._output = None
        self._opened = False
        self._registered = False

    def accept_chunk(self, step: int, payload: bytes) -> bool:
        """Buffer an inbound chunk; returns False when it was discarded"""
        d = self.descriptor
        if d.is_finished:
            return False
        if step >= d.total_steps:
            logger.warning(f"{self._log_prefix} step {step} beyond last step {d.total_steps - 1}")
            return False
        if len(payload) > d.bytes_per_chunk:
            logger.warning(f"{self._log_prefix} step {step} carries {len(payload)} bytes, "
                           f"more than {d.bytes_per_chunk}")
            return False
        return self.reassembler.put(step, payload)

    async def run(self) -> TransferDescriptor:
        d = self.descriptor
        d.set_state(TransferState.SETUP_RECEIVED)

        if self.directory.resolve(d.sender_peer) is None:
            reason = str(InvalidPeerError(d.sender_peer))
            d.set_state(TransferState.FAILED, reason)
            logger.error(f"{self._log_prefix} {reason}")
            await self.signals.download_failed.emit(d, reason)
            return d

        reason: Optional[str] = None
        try:
            try:
                d.path = str(destination_for(self.announced_path, Path(self.config.download_dir)))
                self._check_destination_free()
                self.registry.register(Collection.DOWNLOADS, d)
                self._registered = True
                await self.signals.download_started.emit(d)
                logger.info(f"{self._log_prefix} Receiving {d.path} ({d.total_bytes:,} bytes)")

                await self._open_destination()
                await self.transport.send(d.sender_peer, ReadyMessage(
                    receiver_peer_id=d.receiver_peer,
                    transfer_id=d.id,
                ))
                await self._receive()
            finally:
                await self._close_destination()
                self._release()
        except asyncio.CancelledError:
            self._mark_cancelled()
            await self._discard_partial()
            raise
        except TransferError as e:
            reason = str(e)
        except (ConnectionError, OSError) as e:
            reason = f"Transport error: {e}"
        except Exception as e:
            logger.error(f"{self._log_prefix} unexpected error", exc_info=True)
            reason = f"Internal error: {e}"

        if reason is not None:
            d.set_state(TransferState.FAILED, reason)
            logger.error(f"{self._log_prefix} download of {d.path} failed: {reason}")
            await self._discard_partial()
            await self.signals.download_failed.emit(d, reason)
        else:
            d.set_state(TransferState.COMPLETED)
            logger.info(f"{self._log_prefix} ✓ Downloaded {d.path} ({d.sent_bytes:,} bytes)")
            await self.signals.download_succeeded.emit(d)
        return d

    def _check_destination_free(self):
        # No await between this check and register()
        d = self.descriptor
        for other in self.registry.downloads():
            if other is not d and other.path == d.path:
                raise TransferIOError(
                    f"Destination {d.path} is in use by transfer #{other.id} "
                    f"from {other.sender_peer!r}"
                )

    async def _open_destination(self):
        d = self.descriptor
        d.set_state(TransferState.READY)
        destination = Path(d.path)
        try:
            await aiofiles.os.makedirs(destination.parent, exist_ok=True)
            self._output = await aiofiles.open(destination, 'wb')
            self._opened = True
        except OSError as e:
            raise TransferIOError(f"Can't write the destination file {destination}: {e}") from e

    async def _receive(self):
        d = self.descriptor
        d.set_state(TransferState.RECEIVING)

        timeout = self.config.client_timeout
        loop = asyncio.get_running_loop()
        last_chunk_time = loop.time()
        total_steps = d.total_steps

        while self.reassembler.expected_step < total_steps:
            payload = self.reassembler.pop_next()
            if payload is not None:
                try:
                    await self._output.write(payload)
                except OSError as e:
                    raise TransferIOError(f"Can't write the destination file {d.path}: {e}") from e
                d.add_progress(len(payload))
                last_chunk_time = loop.time()
                continue

            idle = loop.time() - last_chunk_time
            if idle >= timeout:
                raise TransferTimeoutError(
                    f"Timeout: no response from the server for {timeout:g} seconds"
                )
            await self.reassembler.wait(timeout - idle)

        if d.sent_bytes != d.total_bytes:
            raise TransferError(
                f"Received {d.sent_bytes:,} bytes, expected {d.total_bytes:,}"
            )

    def _release(self):
        self.reassembler.clear()
        if self._registered:
            self.registry.retire(Collection.DOWNLOADS, self.descriptor)

    async def _close_destination(self):
        if self._output is not None:
            output, self._output = self._output, None
            await output.close()

    async def _discard_partial(self):
        if not (self.config.delete_partial and self._opened):
            return
        try:
            await aiofiles.os.remove(self.descriptor.path)
            logger.info(f"{self._log_prefix} removed partial file {self.descriptor.path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"{self._log_prefix} could not remove partial file: {e}")
