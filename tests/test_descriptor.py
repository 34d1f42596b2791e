"""Test transfer descriptors and step arithmetic"""

import math

import pytest

from chunktransfer.errors import TransferError
from chunktransfer.transfer.descriptor import TransferDescriptor, TransferState, total_steps


class TestTotalSteps:
    """Test the chunk count derivation"""

    @pytest.mark.parametrize("total_bytes, bytes_per_chunk", [
        (0, 1), (1, 1), (1, 10000), (9999, 10000), (10000, 10000),
        (10001, 10000), (25000, 10000), (2 ** 40 + 3, 10000), (7, 3),
    ])
    def test_matches_ceiling_division(self, total_bytes, bytes_per_chunk):
        assert total_steps(total_bytes, bytes_per_chunk) == math.ceil(total_bytes / bytes_per_chunk)

    def test_exact_for_huge_sizes(self):
        """Float division would round this one wrong"""
        assert total_steps(2 ** 62 + 1, 1) == 2 ** 62 + 1

    def test_empty_file(self):
        assert total_steps(0, 10000) == 0

    def test_scenario_25000_bytes(self):
        assert total_steps(25000, 10000) == 3

    def test_rejects_non_positive_chunk_size(self):
        with pytest.raises(ValueError):
            total_steps(10, 0)


class TestTransferDescriptor:
    """Test descriptor bookkeeping"""

    @pytest.fixture
    def descriptor(self):
        return TransferDescriptor(
            sender_peer='alice', receiver_peer='bob', path='file.bin',
            bytes_per_chunk=10000, total_bytes=25000,
        )

    def test_total_steps_follows_fields(self, descriptor):
        assert descriptor.total_steps == 3
        descriptor.bytes_per_chunk = 5000
        assert descriptor.total_steps == 5
        descriptor.total_bytes = 0
        assert descriptor.total_steps == 0

    def test_progress_accumulates(self, descriptor):
        for size in (10000, 10000, 5000):
            descriptor.add_progress(size)
        assert descriptor.sent_bytes == descriptor.total_bytes
        assert descriptor.progress == 1.0

    def test_progress_cannot_exceed_total(self, descriptor):
        descriptor.add_progress(20000)
        with pytest.raises(TransferError):
            descriptor.add_progress(10000)
        assert descriptor.sent_bytes == 20000

    def test_progress_cannot_decrease(self, descriptor):
        with pytest.raises(TransferError):
            descriptor.add_progress(-1)

    def test_terminal_state_records_finish(self, descriptor):
        assert not descriptor.is_finished
        descriptor.set_state(TransferState.FAILED, "Timeout: no response from the client")
        assert descriptor.is_finished
        assert descriptor.finished_at is not None
        assert descriptor.failure_reason == "Timeout: no response from the client"

    def test_key_uses_remote_peer(self, descriptor):
        descriptor.id = 7
        assert descriptor.key_for('alice') == ('bob', 7)
        assert descriptor.key_for('bob') == ('alice', 7)

    def test_identity_equality(self):
        a = TransferDescriptor('alice', 'bob', 'f', 10)
        b = TransferDescriptor('alice', 'bob', 'f', 10)
        assert a != b
        assert len({a, b}) == 2

    def test_to_dict(self, descriptor):
        data = descriptor.to_dict()
        assert data['total_steps'] == 3
        assert data['state'] == 'created'
