"""Exception hierarchy for chunked transfers"""


class TransferError(Exception):
    """Base class for every transfer failure"""


class TransferIOError(TransferError):
    """Source file unreadable or destination file unwritable"""


class ProtocolError(TransferError):
    """A peer sent something the protocol cannot accept"""


class InvalidPeerError(ProtocolError):
    """A Setup message names a sender the peer directory does not know"""

    def __init__(self, peer_id):
        super().__init__(
            f"Incorrect server ID: {peer_id!r} doesn't match any known peer"
        )
        self.peer_id = peer_id


class UnknownTransferError(ProtocolError):
    """A Chunk or Ready message references no registered transfer"""

    def __init__(self, peer_id, transfer_id: int):
        super().__init__(f"No transfer {transfer_id} registered for peer {peer_id!r}")
        self.peer_id = peer_id
        self.transfer_id = transfer_id


class TransferTimeoutError(TransferError):
    """No readiness or no chunk progress within the configured timeout"""


class ConfigError(ValueError):
    """Invalid configuration value"""
