"""Out-of-order chunk buffer released strictly in step order"""

import asyncio
from typing import Dict, Optional
import logging

logger = logging.getLogger(__name__)


class ChunkReassembler:
    """
    Per-transfer mapping step -> payload

    Chunks are stored in whatever order they arrive. The consumer only
    ever takes the entry for ``expected_step``, so memory is bounded by
    the chunks received ahead of it. With ``window`` set, chunks at or
    beyond ``expected_step + window`` are dropped.
    """

    def __init__(self, window: Optional[int] = None):
        self.window = window
        self.expected_step = 0
        self._chunks: Dict[int, bytes] = {}
        self._arrived = asyncio.Event()
        self.dropped = 0

    def put(self, step: int, payload: bytes) -> bool:
        """Store a chunk; returns False if it was dropped"""
        if step < self.expected_step:
            logger.debug(f"Dropping duplicate of already written step {step}")
            self.dropped += 1
            return False
        if self.window is not None and step >= self.expected_step + self.window:
            logger.warning(
                f"Dropping step {step}: beyond look-ahead window "
                f"({self.expected_step} + {self.window})"
            )
            self.dropped += 1
            return False

        # Retransmissions simply replace the earlier copy
        self._chunks[step] = payload
        self._arrived.set()
        return True

    def pop_next(self) -> Optional[bytes]:
        """Take the chunk for the expected step, if it has arrived"""
        payload = self._chunks.pop(self.expected_step, None)
        if payload is not None:
            self.expected_step += 1
        return payload

    def has_next(self) -> bool:
        return self.expected_step in self._chunks

    async def wait(self, timeout: float) -> bool:
        """Suspend until a new chunk arrives; False on timeout"""
        if timeout <= 0:
            return False
        self._arrived.clear()
        if self.has_next():
            return True
        try:
            await asyncio.wait_for(self._arrived.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def clear(self):
        self._chunks.clear()
        self._arrived.set()

    @property
    def pending(self) -> int:
        return len(self._chunks)

    def __len__(self):
        return len(self._chunks)
