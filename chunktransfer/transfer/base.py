"""Common task handling for the sender and receiver protocols"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional
import logging

from .descriptor import TransferDescriptor, TransferState
from .registry import TransferRegistry
from .signals import TransferSignals
from ..config import TransferConfig
from ..network.transport import Transport

logger = logging.getLogger(__name__)


class TransferProtocol(ABC):
    """One transfer state machine running as its own asyncio task"""

    def __init__(self, descriptor: TransferDescriptor, transport: Transport,
                 registry: TransferRegistry, config: TransferConfig,
                 signals: TransferSignals):
        self.descriptor = descriptor
        self.transport = transport
        self.registry = registry
        self.config = config
        self.signals = signals
        self.task: Optional[asyncio.Task] = None

    @abstractmethod
    async def run(self) -> TransferDescriptor:
        """Drive the transfer to a terminal state"""

    @abstractmethod
    def _release(self):
        """Drop registry entries and buffers held for this transfer"""

    def start(self) -> asyncio.Task:
        if self.task is None:
            self.task = asyncio.create_task(self.run(), name=self._log_prefix)
            self.task.add_done_callback(self._cancelled_before_run)
        return self.task

    def _cancelled_before_run(self, task: asyncio.Task):
        # A task cancelled before its first step never executes run()
        if task.cancelled() and not self.descriptor.is_finished:
            self._mark_cancelled()
            self._release()

    def cancel(self) -> bool:
        """Abort the transfer; cleanup runs in the task"""
        if self.task is None or self.task.done():
            return False
        logger.info(f"{self._log_prefix} cancelling")
        return self.task.cancel()

    async def wait(self) -> TransferDescriptor:
        """Wait for the terminal state; cancelled transfers return too"""
        if self.task is None:
            return self.descriptor
        try:
            return await asyncio.shield(self.task)
        except asyncio.CancelledError:
            if not self.task.cancelled():
                raise
            return self.descriptor

    def _mark_cancelled(self):
        self.descriptor.set_state(TransferState.CANCELLED, "Cancelled")
        logger.info(f"{self._log_prefix} cancelled")

    @property
    def state(self) -> TransferState:
        return self.descriptor.state

    @property
    def _log_prefix(self) -> str:
        d = self.descriptor
        return f"[{self.__class__.__name__} #{d.id} {d.sender_peer}->{d.receiver_peer}]"
