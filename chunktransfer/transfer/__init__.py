from .descriptor import TransferDescriptor, TransferState, total_steps
from .registry import TransferRegistry, Collection
from .reassembler import ChunkReassembler
from .pacer import Pacer
from .signals import Signal, TransferSignals
from .sender import SenderProtocol
from .receiver import ReceiverProtocol

__all__ = [
    'TransferDescriptor',
    'TransferState',
    'total_steps',
    'TransferRegistry',
    'Collection',
    'ChunkReassembler',
    'Pacer',
    'Signal',
    'TransferSignals',
    'SenderProtocol',
    'ReceiverProtocol',
]
