"""Known-peer directory"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union
import logging

import yaml

from ..errors import ConfigError, ProtocolError

logger = logging.getLogger(__name__)

PeerId = Union[str, int]


def check_peer_id(value: Any, name: str = "peer id"):
    """Raise ProtocolError unless value is a string or integer peer id"""
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise ProtocolError(f"{name} must be a string or integer peer id, got {type(value).__name__}")


@dataclass(frozen=True)
class Peer:
    """A network endpoint identified by a string or integer id"""
    peer_id: PeerId
    host: str = "127.0.0.1"
    port: int = 0

    def __post_init__(self):
        try:
            check_peer_id(self.peer_id)
        except ProtocolError as e:
            raise ConfigError(str(e)) from e

    @property
    def address(self):
        return (self.host, self.port)


class PeerDirectory:
    """Resolves peer ids to Peer records"""

    def __init__(self, peers: Iterable[Peer] = ()):
        self._peers: Dict[PeerId, Peer] = {}
        for peer in peers:
            self.add(peer)

    def add(self, peer: Peer):
        self._peers[peer.peer_id] = peer

    def remove(self, peer_id: PeerId) -> Optional[Peer]:
        return self._peers.pop(peer_id, None)

    def resolve(self, peer_id: PeerId) -> Optional[Peer]:
        return self._peers.get(peer_id)

    def peers(self) -> List[Peer]:
        return list(self._peers.values())

    def __contains__(self, peer_id):
        return peer_id in self._peers

    def __len__(self):
        return len(self._peers)

    @classmethod
    def from_yaml(cls, path: Path) -> 'PeerDirectory':
        """
        Load peers from a YAML file of the form

            peers:
              - {id: alice, host: 10.0.0.2, port: 9000}
        """
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}

        entries = data.get('peers', []) if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise ConfigError(f"{path}: 'peers' must be a list")

        directory = cls()
        for entry in entries:
            try:
                directory.add(Peer(
                    peer_id=entry['id'],
                    host=entry.get('host', '127.0.0.1'),
                    port=int(entry.get('port', 0)),
                ))
            except (KeyError, TypeError, ValueError) as e:
                raise ConfigError(f"{path}: invalid peer entry {entry!r}: {e}")

        logger.info(f"Loaded {len(directory)} peers from {path}")
        return directory
