"""Test transfer registry and id allocation"""

import random
import threading

import pytest

from chunktransfer.errors import TransferError
from chunktransfer.transfer.descriptor import TransferDescriptor
from chunktransfer.transfer.registry import (
    Collection, TransferRegistry, SEQUENTIAL_ID_CEILING,
)


def upload(receiver='bob', transfer_id=1):
    return TransferDescriptor('alice', receiver, 'file.bin', 10000, id=transfer_id)


def download(sender='alice', transfer_id=1):
    return TransferDescriptor(sender, 'bob', 'file.bin', 10000, id=transfer_id)


class TestIdAllocation:
    """Test collision-free ids per receiver peer"""

    def test_first_id_is_one(self):
        assert TransferRegistry().allocate_upload_id('bob') == 1

    def test_skips_ids_in_use(self):
        registry = TransferRegistry()
        registry.register(Collection.UPLOADS, upload(transfer_id=1))
        registry.register(Collection.UPLOADS, upload(transfer_id=2))
        assert registry.allocate_upload_id('bob') == 3

    def test_ids_repeat_across_peers(self):
        registry = TransferRegistry()
        registry.reserve_upload(upload('bob'))
        assert registry.reserve_upload(upload('carol')) == 1

    def test_released_id_is_reused(self):
        registry = TransferRegistry()
        first = upload()
        registry.reserve_upload(first)
        registry.retire(Collection.UPLOADS, first)
        assert registry.allocate_upload_id('bob') == 1

    def test_falls_back_to_random_past_ceiling(self):
        registry = TransferRegistry(rng=random.Random(42))
        for transfer_id in range(1, SEQUENTIAL_ID_CEILING + 1):
            registry.register(Collection.UPLOADS, upload(transfer_id=transfer_id))

        transfer_id = registry.allocate_upload_id('bob')
        assert 0 <= transfer_id < 32766
        assert registry.find(Collection.UPLOADS, 'bob', transfer_id) is None

    def test_concurrent_reservations_are_distinct(self):
        registry = TransferRegistry()
        ids = []
        lock = threading.Lock()

        def worker():
            for _ in range(50):
                transfer_id = registry.reserve_upload(upload())
                with lock:
                    ids.append(transfer_id)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(ids) == 400
        assert len(set(ids)) == 400


class TestLookup:
    """Test find/register/unregister"""

    def test_find_by_either_endpoint(self):
        registry = TransferRegistry()
        d = download(transfer_id=5)
        registry.register(Collection.DOWNLOADS, d)

        assert registry.find(Collection.DOWNLOADS, 'alice', 5) is d
        assert registry.find(Collection.DOWNLOADS, 'bob', 5) is d
        assert registry.find(Collection.DOWNLOADS, 'alice', 6) is None
        assert registry.find(Collection.UPLOADS, 'alice', 5) is None

    def test_duplicate_key_rejected(self):
        registry = TransferRegistry()
        registry.register(Collection.DOWNLOADS, download())
        with pytest.raises(TransferError):
            registry.register(Collection.DOWNLOADS, download())

    def test_unregister_only_removes_same_descriptor(self):
        registry = TransferRegistry()
        d = download()
        registry.register(Collection.DOWNLOADS, d)
        assert registry.unregister(Collection.DOWNLOADS, download()) is False
        assert registry.unregister(Collection.DOWNLOADS, d) is True
        assert registry.downloads() == []

    def test_history_is_bounded(self):
        registry = TransferRegistry(history_size=2)
        descriptors = [upload(transfer_id=i) for i in range(1, 4)]
        for d in descriptors:
            registry.register(Collection.UPLOADS, d)
        for d in descriptors:
            registry.retire(Collection.UPLOADS, d)

        assert len(registry) == 0
        assert registry.history() == descriptors[1:]

    def test_no_history(self):
        registry = TransferRegistry(history_size=0)
        d = upload()
        registry.register(Collection.UPLOADS, d)
        registry.retire(Collection.UPLOADS, d)
        assert registry.history() == []
