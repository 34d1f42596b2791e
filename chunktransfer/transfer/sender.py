"""
Sender protocol

    CREATED -> AWAITING_READY -> STREAMING -> COMPLETED
                     |               |
                     +-> FAILED <----+        (or CANCELLED)

The Setup message announces the file; chunks are only streamed once the
receiver's Ready has been observed.
"""

import asyncio
import os
from typing import Optional
import logging

import aiofiles

from .base import TransferProtocol
from .descriptor import TransferDescriptor, TransferState
from .pacer import Pacer
from .registry import Collection
from ..errors import TransferError, TransferIOError, TransferTimeoutError
from ..network.messages import SetupMessage, ChunkMessage

logger = logging.getLogger(__name__)


class SenderProtocol(TransferProtocol):
    """Outbound handshake and paced chunk streaming for one upload"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.pacer = Pacer(self.descriptor.chunks_per_second)
        self.chunks_sent = 0
        self._ready = asyncio.Event()
        self._measured = False

    async def measure_source(self) -> int:
        """
        Open the source file once to record its size

        Raises TransferIOError when the file cannot be opened or read;
        the transfer is then never registered or announced.
        """
        d = self.descriptor
        try:
            async with aiofiles.open(d.path, 'rb') as source:
                await source.seek(0, os.SEEK_END)
                d.total_bytes = await source.tell()
        except OSError as e:
            raise TransferIOError(f"Can't read the target file {d.path}: {e}") from e

        self._measured = True
        logger.debug(f"{self._log_prefix} {d.path}: {d.total_bytes:,} bytes, "
                     f"{d.total_steps} chunks")
        return d.total_bytes

    async def fail_before_start(self, reason: str):
        """Report a transfer that never got past CREATED"""
        self.descriptor.set_state(TransferState.FAILED, reason)
        logger.error(f"{self._log_prefix} {reason}")
        await self.signals.upload_failed.emit(self.descriptor, reason)

    def mark_ready(self):
        """Called by the Ready handler"""
        self.descriptor.client_ready = True
        self._ready.set()

    async def run(self) -> TransferDescriptor:
        d = self.descriptor
        reason: Optional[str] = None

        try:
            try:
                if not self._measured:
                    await self.measure_source()
                await self._await_ready()
                await self._stream()
            finally:
                self._release()
        except asyncio.CancelledError:
            self._mark_cancelled()
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
            logger.error(f"{self._log_prefix} upload of {d.path} failed: {reason}")
            await self.signals.upload_failed.emit(d, reason)
        else:
            d.set_state(TransferState.COMPLETED)
            logger.info(f"{self._log_prefix} ✓ Uploaded {d.path} "
                        f"({d.sent_bytes:,} bytes in {self.chunks_sent} chunks)")
            await self.signals.upload_succeeded.emit(d)
        return d

    async def _await_ready(self):
        d = self.descriptor
        d.set_state(TransferState.AWAITING_READY)

        await self.transport.send(d.receiver_peer, SetupMessage(
            path=d.path,
            sender_peer_id=d.sender_peer,
            total_bytes=d.total_bytes,
            bytes_per_chunk=d.bytes_per_chunk,
            transfer_id=d.id,
        ))
        logger.debug(f"{self._log_prefix} Setup sent, waiting for Ready")

        # The Ready handler sets the event; the poll interval bounds each wait
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.server_timeout
        while not d.client_ready:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise TransferTimeoutError("Timeout: no response from the client")
            try:
                await asyncio.wait_for(
                    self._ready.wait(),
                    min(remaining, self.config.ready_poll_interval)
                )
            except asyncio.TimeoutError:
                pass

    async def _stream(self):
        d = self.descriptor
        d.set_state(TransferState.STREAMING)

        total_steps = d.total_steps
        if total_steps == 0:
            return

        try:
            source = await aiofiles.open(d.path, 'rb')
        except OSError as e:
            raise TransferIOError(f"Can't read the target file {d.path}: {e}") from e

        async with source:
            for step in range(total_steps):
                size = min(d.bytes_per_chunk, d.total_bytes - d.sent_bytes)
                payload = await source.read(size)
                if len(payload) != size:
                    raise TransferIOError(
                        f"{d.path} shrank during transfer: "
                        f"read {d.sent_bytes + len(payload):,} of {d.total_bytes:,} bytes"
                    )

                await self.transport.send(d.receiver_peer, ChunkMessage(
                    sender_peer_id=d.sender_peer,
                    transfer_id=d.id,
                    step=step,
                    payload=payload,
                ))
                d.add_progress(len(payload))
                self.chunks_sent += 1

                if step + 1 < total_steps:
                    await self.pacer.pace()

    def _release(self):
        self.registry.retire(Collection.UPLOADS, self.descriptor)
