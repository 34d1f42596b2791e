from .messages import (
    MessageType, Message, SetupMessage, ReadyMessage, ChunkMessage,
    encode_message, decode_message,
)
from .peers import Peer, PeerDirectory, PeerId, check_peer_id
from .transport import Transport, LoopbackNetwork, LoopbackTransport, StreamTransport

__all__ = [
    'MessageType',
    'Message',
    'SetupMessage',
    'ReadyMessage',
    'ChunkMessage',
    'encode_message',
    'decode_message',
    'Peer',
    'PeerDirectory',
    'PeerId',
    'check_peer_id',
    'Transport',
    'LoopbackNetwork',
    'LoopbackTransport',
    'StreamTransport',
]
