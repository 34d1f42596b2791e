"""Active upload/download tracking and transfer id allocation"""

import random
import threading
from collections import deque
from enum import Enum
from typing import Deque, Dict, List, Optional, Tuple
import logging

from .descriptor import TransferDescriptor, MAX_TRANSFER_ID
from ..errors import TransferError
from ..network.peers import PeerId

logger = logging.getLogger(__name__)

FIRST_TRANSFER_ID = 1
SEQUENTIAL_ID_CEILING = 32765

Key = Tuple[PeerId, int]


class Collection(Enum):
    """The two registry tables"""
    UPLOADS = "uploads"
    DOWNLOADS = "downloads"


class TransferRegistry:
    """
    Tracks active transfers and allocates collision-free ids

    Each table is keyed by (remote peer, id): uploads by receiver peer,
    downloads by sender peer. Ids are only unique per remote peer.
    Terminal transfers are moved to a bounded history.

    Engines call it from their event loop only; the RLock lets transports
    that deliver on their own threads, and progress reporters polling from
    another thread, read or reserve entries safely.
    """

    def __init__(self, history_size: int = 64, rng: Optional[random.Random] = None):
        self._tables: Dict[Collection, Dict[Key, TransferDescriptor]] = {
            Collection.UPLOADS: {},
            Collection.DOWNLOADS: {},
        }
        self._history: Deque[TransferDescriptor] = deque(maxlen=history_size)
        self._lock = threading.RLock()
        self._rng = rng or random.Random()

    @staticmethod
    def _key(collection: Collection, descriptor: TransferDescriptor) -> Key:
        if collection is Collection.UPLOADS:
            return (descriptor.receiver_peer, descriptor.id)
        return (descriptor.sender_peer, descriptor.id)

    def allocate_upload_id(self, receiver_peer: PeerId) -> int:
        """
        Pick an id not used by any active upload to receiver_peer

        Counts up from 1; past the ceiling falls back to random draws.
        """
        with self._lock:
            uploads = self._tables[Collection.UPLOADS]
            in_use = sum(1 for peer, _ in uploads if peer == receiver_peer)
            if in_use >= MAX_TRANSFER_ID:
                raise TransferError(f"No free transfer id left for peer {receiver_peer!r}")

            transfer_id = FIRST_TRANSFER_ID
            while (receiver_peer, transfer_id) in uploads:
                if transfer_id < SEQUENTIAL_ID_CEILING:
                    transfer_id += 1
                else:
                    transfer_id = self._rng.randrange(0, MAX_TRANSFER_ID)
            return transfer_id

    def reserve_upload(self, descriptor: TransferDescriptor) -> int:
        """Allocate an id for descriptor and register it in one step"""
        with self._lock:
            descriptor.id = self.allocate_upload_id(descriptor.receiver_peer)
            self.register(Collection.UPLOADS, descriptor)
            return descriptor.id

    def register(self, collection: Collection, descriptor: TransferDescriptor):
        key = self._key(collection, descriptor)
        with self._lock:
            table = self._tables[collection]
            existing = table.get(key)
            if existing is not None and existing is not descriptor:
                raise TransferError(
                    f"Transfer {descriptor.id} with {key[0]!r} already active in {collection.value}"
                )
            table[key] = descriptor
        logger.debug(f"Registered {collection.value[:-1]} {descriptor!r}")

    def unregister(self, collection: Collection, descriptor: TransferDescriptor) -> bool:
        """Remove descriptor; returns False when it was not registered"""
        key = self._key(collection, descriptor)
        with self._lock:
            table = self._tables[collection]
            if table.get(key) is not descriptor:
                return False
            del table[key]
        logger.debug(f"Unregistered {collection.value[:-1]} {descriptor!r}")
        return True

    def retire(self, collection: Collection, descriptor: TransferDescriptor):
        """Unregister a finished transfer and keep it in the history"""
        with self._lock:
            if self.unregister(collection, descriptor) and self._history.maxlen:
                self._history.append(descriptor)

    def find(self, collection: Collection, peer: PeerId,
             transfer_id: int) -> Optional[TransferDescriptor]:
        """Look up a transfer by either endpoint and id"""
        with self._lock:
            table = self._tables[collection]
            descriptor = table.get((peer, transfer_id))
            if descriptor is not None:
                return descriptor
            for info in table.values():
                if (info.sender_peer == peer or info.receiver_peer == peer) and info.id == transfer_id:
                    return info
            return None

    def uploads(self) -> List[TransferDescriptor]:
        with self._lock:
            return list(self._tables[Collection.UPLOADS].values())

    def downloads(self) -> List[TransferDescriptor]:
        with self._lock:
            return list(self._tables[Collection.DOWNLOADS].values())

    def history(self) -> List[TransferDescriptor]:
        with self._lock:
            return list(self._history)

    def __len__(self):
        with self._lock:
            return sum(len(t) for t in self._tables.values())
