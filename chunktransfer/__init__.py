"""Chunked peer-to-peer file transfer over a peer-addressed message channel"""

from .config import TransferConfig, load_config
from .engine import FileTransferEngine
from .errors import (
    TransferError, TransferIOError, ProtocolError, InvalidPeerError,
    UnknownTransferError, TransferTimeoutError, ConfigError,
)
from .network import Peer, PeerDirectory, LoopbackNetwork, StreamTransport
from .transfer import TransferDescriptor, TransferState, total_steps

__version__ = "1.0.0"

__all__ = [
    'TransferConfig',
    'load_config',
    'FileTransferEngine',
    'TransferError',
    'TransferIOError',
    'ProtocolError',
    'InvalidPeerError',
    'UnknownTransferError',
    'TransferTimeoutError',
    'ConfigError',
    'Peer',
    'PeerDirectory',
    'LoopbackNetwork',
    'StreamTransport',
    'TransferDescriptor',
    'TransferState',
    'total_steps',
]
