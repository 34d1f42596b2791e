"""Test protocol message codec"""

import json

import pytest

from chunktransfer.errors import ProtocolError
from chunktransfer.network.messages import (
    MessageType, SetupMessage, ReadyMessage, ChunkMessage,
    encode_message, decode_message, message_from_dict,
)


class TestMessageCodec:
    """Test encoding and validation"""

    def test_chunk_payload_is_hex_on_the_wire(self):
        raw = encode_message(ChunkMessage('alice', 3, 0, b'\x00\xffab'))
        data = json.loads(raw)
        assert data['type'] == 'chunk'
        assert data['payload']['payload'] == '00ff6162'

    def test_decode_restores_types(self):
        setup = SetupMessage('docs/report.pdf', 1, 25000, 10000, 7)
        decoded = decode_message(encode_message(setup))
        assert decoded == setup
        assert decoded.msg_type is MessageType.SETUP

        chunk = decode_message(encode_message(ChunkMessage(1, 7, 2, b'xyz')))
        assert isinstance(chunk.payload, bytes)
        assert chunk.payload == b'xyz'

    def test_unknown_type(self):
        with pytest.raises(ProtocolError):
            message_from_dict({'type': 'hello', 'payload': {}})

    def test_missing_field(self):
        with pytest.raises(ProtocolError):
            message_from_dict({'type': 'ready', 'payload': {'transfer_id': 1}})

    def test_transfer_id_is_16_bit(self):
        with pytest.raises(ProtocolError):
            message_from_dict({
                'type': 'ready',
                'payload': {'receiver_peer_id': 'bob', 'transfer_id': 40000},
            })

    def test_rejects_zero_chunk_size(self):
        with pytest.raises(ProtocolError):
            SetupMessage('f', 'alice', 10, 0, 1).validate()

    def test_rejects_negative_step(self):
        with pytest.raises(ProtocolError):
            ChunkMessage('alice', 1, -1, b'').validate()

    def test_bad_hex(self):
        with pytest.raises(ProtocolError):
            message_from_dict({
                'type': 'chunk',
                'payload': {'sender_peer_id': 'a', 'transfer_id': 1, 'step': 0, 'payload': 'zz'},
            })

    def test_undecodable_bytes(self):
        with pytest.raises(ProtocolError):
            decode_message(b'\xff\xfe not json')

    def test_chunk_repr_hides_payload(self):
        assert '<3 bytes>' in repr(ChunkMessage('a', 1, 0, b'abc'))
