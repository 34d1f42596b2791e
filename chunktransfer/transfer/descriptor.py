"""Transfer descriptor: identity, parameters and progress of one transfer"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from ..errors import TransferError
from ..network.peers import PeerId

MAX_TRANSFER_ID = 32766  # transfer ids travel as 16-bit signed values


class TransferState(Enum):
    """Protocol states for both directions"""
    # Sender
    CREATED = "created"
    AWAITING_READY = "awaiting_ready"
    STREAMING = "streaming"

    # Receiver
    SETUP_RECEIVED = "setup_received"
    READY = "ready"
    RECEIVING = "receiving"

    # Terminal
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TransferState.COMPLETED, TransferState.FAILED,
                        TransferState.CANCELLED)


def total_steps(total_bytes: int, bytes_per_chunk: int) -> int:
    """Number of chunk messages needed for total_bytes"""
    if bytes_per_chunk <= 0:
        raise ValueError(f"bytes_per_chunk must be positive, got {bytes_per_chunk}")
    if total_bytes < 0:
        raise ValueError(f"total_bytes must not be negative, got {total_bytes}")
    return -(-total_bytes // bytes_per_chunk)


@dataclass(eq=False)
class TransferDescriptor:
    """
    One file transfer as seen from one side

    Descriptors compare by identity: two transfers with equal fields are
    still different transfers.
    """
    sender_peer: PeerId
    receiver_peer: PeerId
    path: str
    bytes_per_chunk: int
    chunks_per_second: float = 10
    id: int = 1
    total_bytes: int = 0
    sent_bytes: int = 0
    client_ready: bool = False
    state: TransferState = TransferState.CREATED
    failure_reason: Optional[str] = None
    started_at: float = field(default_factory=time.monotonic)
    finished_at: Optional[float] = None

    @property
    def total_steps(self) -> int:
        return total_steps(self.total_bytes, self.bytes_per_chunk)

    @property
    def progress(self) -> float:
        """Fraction of the file transferred so far"""
        if self.total_bytes == 0:
            return 1.0 if self.state is TransferState.COMPLETED else 0.0
        return self.sent_bytes / self.total_bytes

    @property
    def is_finished(self) -> bool:
        return self.state.is_terminal

    @property
    def elapsed(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at

    def add_progress(self, n: int):
        """Account for a delivered chunk of n bytes"""
        if n < 0:
            raise TransferError(f"Negative progress ({n}) on transfer {self.id}")
        if self.sent_bytes + n > self.total_bytes:
            raise TransferError(
                f"Transfer {self.id} exceeds its announced size: "
                f"{self.sent_bytes + n} > {self.total_bytes}"
            )
        self.sent_bytes += n

    def set_state(self, state: TransferState, reason: Optional[str] = None):
        self.state = state
        if reason is not None:
            self.failure_reason = reason
        if state.is_terminal and self.finished_at is None:
            self.finished_at = time.monotonic()

    def remote_peer(self, local_peer: PeerId) -> PeerId:
        """The endpoint that is not local_peer"""
        return self.receiver_peer if self.sender_peer == local_peer else self.sender_peer

    def key_for(self, local_peer: PeerId) -> Tuple[PeerId, int]:
        """Registry key (remote peer, id) from local_peer's point of view"""
        return (self.remote_peer(local_peer), self.id)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'sender_peer': self.sender_peer,
            'receiver_peer': self.receiver_peer,
            'path': self.path,
            'total_bytes': self.total_bytes,
            'sent_bytes': self.sent_bytes,
            'bytes_per_chunk': self.bytes_per_chunk,
            'chunks_per_second': self.chunks_per_second,
            'total_steps': self.total_steps,
            'state': self.state.value,
            'failure_reason': self.failure_reason,
        }

    def __repr__(self):
        return (f"<TransferDescriptor #{self.id} {self.sender_peer}->{self.receiver_peer} "
                f"{self.path!r} {self.sent_bytes}/{self.total_bytes} {self.state.value}>")
