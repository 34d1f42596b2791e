"""Completion / failure notifications"""

import inspect
from dataclasses import dataclass, field
from typing import Callable, List
import logging

logger = logging.getLogger(__name__)


class Signal:
    """A list of callbacks fired together; callbacks may be sync or async"""

    def __init__(self, name: str):
        self.name = name
        self._callbacks: List[Callable] = []

    def connect(self, callback: Callable) -> Callable:
        """Add a callback; usable as a decorator"""
        self._callbacks.append(callback)
        return callback

    def disconnect(self, callback: Callable):
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def emit(self, *args):
        # Listener errors are logged, never raised into the emitting transfer
        for callback in list(self._callbacks):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Callback {callback!r} on {self.name} failed: {e}", exc_info=True)

    def __len__(self):
        return len(self._callbacks)


@dataclass
class TransferSignals:
    """Signals raised by the sender and receiver protocols"""
    upload_succeeded: Signal = field(default_factory=lambda: Signal('upload_succeeded'))
    upload_failed: Signal = field(default_factory=lambda: Signal('upload_failed'))
    download_started: Signal = field(default_factory=lambda: Signal('download_started'))
    download_succeeded: Signal = field(default_factory=lambda: Signal('download_succeeded'))
    download_failed: Signal = field(default_factory=lambda: Signal('download_failed'))
