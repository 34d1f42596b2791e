"""
Transfer protocol messages

Three message kinds travel between peers:

    Setup  sender -> receiver   announce a file and its chunking
    Ready  receiver -> sender   destination opened, start streaming
    Chunk  sender -> receiver   one step of the file

On the wire a message is a JSON object ``{"type": ..., "payload": {...}}``;
chunk payload bytes are hex encoded.
"""

import json
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, ClassVar, Dict, Union
import logging

from ..errors import ProtocolError
from .peers import PeerId, check_peer_id

logger = logging.getLogger(__name__)

INT16_MAX = 2 ** 15 - 1
INT32_MAX = 2 ** 31 - 1
INT64_MAX = 2 ** 63 - 1


class MessageType(Enum):
    """Protocol message types"""
    SETUP = "setup"
    READY = "ready"
    CHUNK = "chunk"


def _check_range(name: str, value: Any, upper: int, lower: int = 0):
    if not isinstance(value, int) or isinstance(value, bool):
        raise ProtocolError(f"{name} must be an integer, got {type(value).__name__}")
    if not lower <= value <= upper:
        raise ProtocolError(f"{name} out of range: {value}")


@dataclass(frozen=True)
class SetupMessage:
    """Announces a transfer to the receiver"""
    path: str
    sender_peer_id: PeerId
    total_bytes: int
    bytes_per_chunk: int
    transfer_id: int

    msg_type: ClassVar[MessageType] = MessageType.SETUP

    def validate(self):
        if not isinstance(self.path, str) or not self.path:
            raise ProtocolError("Setup path must be a non-empty string")
        check_peer_id(self.sender_peer_id, 'sender_peer_id')
        _check_range('total_bytes', self.total_bytes, INT64_MAX)
        _check_range('bytes_per_chunk', self.bytes_per_chunk, INT32_MAX, lower=1)
        _check_range('transfer_id', self.transfer_id, INT16_MAX)

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ReadyMessage:
    """Receiver is ready for the chunks of transfer_id"""
    receiver_peer_id: PeerId
    transfer_id: int

    msg_type: ClassVar[MessageType] = MessageType.READY

    def validate(self):
        check_peer_id(self.receiver_peer_id, 'receiver_peer_id')
        _check_range('transfer_id', self.transfer_id, INT16_MAX)

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ChunkMessage:
    """One step of the file"""
    sender_peer_id: PeerId
    transfer_id: int
    step: int
    payload: bytes

    msg_type: ClassVar[MessageType] = MessageType.CHUNK

    def validate(self):
        check_peer_id(self.sender_peer_id, 'sender_peer_id')
        _check_range('transfer_id', self.transfer_id, INT16_MAX)
        _check_range('step', self.step, INT32_MAX)
        if not isinstance(self.payload, (bytes, bytearray)):
            raise ProtocolError("Chunk payload must be bytes")

    def to_payload(self) -> Dict[str, Any]:
        return {
            'sender_peer_id': self.sender_peer_id,
            'transfer_id': self.transfer_id,
            'step': self.step,
            'payload': bytes(self.payload).hex(),
        }

    def __repr__(self):
        return (f"ChunkMessage(sender_peer_id={self.sender_peer_id!r}, "
                f"transfer_id={self.transfer_id}, step={self.step}, "
                f"payload=<{len(self.payload)} bytes>)")


Message = Union[SetupMessage, ReadyMessage, ChunkMessage]

MESSAGE_CLASSES = {
    MessageType.SETUP: SetupMessage,
    MessageType.READY: ReadyMessage,
    MessageType.CHUNK: ChunkMessage,
}


def message_to_dict(message: Message) -> Dict[str, Any]:
    return {
        'type': message.msg_type.value,
        'payload': message.to_payload(),
    }


def message_from_dict(data: Dict[str, Any]) -> Message:
    """Rebuild and validate a message from its dict form"""
    if not isinstance(data, dict):
        raise ProtocolError("Message must be a JSON object")
    try:
        msg_type = MessageType(data.get('type'))
    except ValueError:
        raise ProtocolError(f"Unknown message type: {data.get('type')!r}")

    payload = data.get('payload')
    if not isinstance(payload, dict):
        raise ProtocolError("Message payload must be a JSON object")

    payload = dict(payload)
    if msg_type is MessageType.CHUNK:
        try:
            payload['payload'] = bytes.fromhex(payload.get('payload', ''))
        except (TypeError, ValueError):
            raise ProtocolError("Chunk payload is not valid hex")

    try:
        message = MESSAGE_CLASSES[msg_type](**payload)
    except TypeError as e:
        raise ProtocolError(f"Malformed {msg_type.value} message: {e}")

    message.validate()
    return message


def encode_message(message: Message) -> bytes:
    """Serialize to UTF-8 JSON"""
    return json.dumps(message_to_dict(message)).encode('utf-8')


def decode_message(raw: bytes) -> Message:
    """Parse UTF-8 JSON produced by encode_message"""
    try:
        data = json.loads(raw.decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"Undecodable message: {e}")
    return message_from_dict(data)
