"""
Peer-addressed message transports

Delivery is at-most-once per send with no ordering guarantee assumed by
the protocol layer. Two implementations:

- LoopbackNetwork / LoopbackTransport: in-process delivery between
  peers, with hooks to hold, reorder or drop messages
- StreamTransport: asyncio TCP with length-prefixed JSON frames
"""

import asyncio
import json
import struct
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple
import logging

from .messages import (
    Message, MessageType, encode_message, decode_message,
    message_to_dict, message_from_dict,
)
from .peers import PeerDirectory, PeerId
from ..errors import ProtocolError

logger = logging.getLogger(__name__)

MessageHandler = Callable[[PeerId, Message], Awaitable[None]]

MAX_FRAME_SIZE = 64 * 1024 * 1024


class Transport(ABC):
    """Send/receive contract consumed by the transfer engine"""

    def __init__(self, local_peer_id: PeerId):
        self.local_peer_id = local_peer_id
        self._handler: Optional[MessageHandler] = None

    def set_handler(self, handler: MessageHandler):
        """Register the callable invoked with (from_peer_id, message)"""
        self._handler = handler

    async def start(self):
        """Begin accepting messages"""

    @abstractmethod
    async def send(self, target_peer_id: PeerId, message: Message):
        """Deliver message to target_peer_id (at most once)"""

    async def close(self):
        """Stop the transport"""

    async def _dispatch(self, from_peer_id: PeerId, message: Message):
        if self._handler is None:
            logger.warning(f"No handler set, dropping {message.msg_type.value} from {from_peer_id!r}")
            return
        try:
            await self._handler(from_peer_id, message)
        except Exception as e:
            logger.error(f"Handler failed for {message.msg_type.value} from {from_peer_id!r}: {e}",
                         exc_info=True)


class LoopbackNetwork:
    """
    In-process network connecting LoopbackTransports by peer id

    Every message is encoded and decoded on the way through. Set
    ``hold`` to a set of message types to queue them instead of
    delivering; ``release()`` delivers the queue in any order.
    ``drop`` is an optional predicate for lost messages.
    """

    def __init__(self):
        self._endpoints: Dict[PeerId, 'LoopbackTransport'] = {}
        self._tasks: Set[asyncio.Task] = set()
        self.sent: List[Tuple[PeerId, PeerId, Message]] = []
        self.held: List[Tuple[PeerId, PeerId, bytes]] = []
        self.hold: Set[MessageType] = set()
        self.drop: Optional[Callable[[Message], bool]] = None

    def transport(self, peer_id: PeerId) -> 'LoopbackTransport':
        """Create (or return) the endpoint for peer_id"""
        if peer_id not in self._endpoints:
            self._endpoints[peer_id] = LoopbackTransport(peer_id, self)
        return self._endpoints[peer_id]

    def detach(self, peer_id: PeerId):
        self._endpoints.pop(peer_id, None)

    def messages(self, msg_type: Optional[MessageType] = None) -> List[Message]:
        """Messages sent so far, optionally of one type"""
        return [m for _, _, m in self.sent if msg_type is None or m.msg_type is msg_type]

    def route(self, from_peer_id: PeerId, target_peer_id: PeerId, message: Message):
        self.sent.append((from_peer_id, target_peer_id, message))

        if self.drop is not None and self.drop(message):
            logger.debug(f"Loopback dropped {message!r}")
            return

        raw = encode_message(message)
        if message.msg_type in self.hold:
            self.held.append((from_peer_id, target_peer_id, raw))
            return
        self._deliver(from_peer_id, target_peer_id, raw)

    def release(self, reverse: bool = False, order: Optional[List[int]] = None):
        """Deliver held messages reversed or in the given index order; unlisted ones are lost"""
        held, self.held = self.held, []
        if order is not None:
            held = [held[i] for i in order]
        elif reverse:
            held.reverse()
        for from_peer_id, target_peer_id, raw in held:
            self._deliver(from_peer_id, target_peer_id, raw)

    def _deliver(self, from_peer_id, target_peer_id, raw: bytes):
        endpoint = self._endpoints.get(target_peer_id)
        if endpoint is None:
            logger.debug(f"Loopback: no endpoint {target_peer_id!r}, message lost")
            return
        task = asyncio.ensure_future(endpoint._dispatch(from_peer_id, decode_message(raw)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self):
        """Wait until every in-flight delivery has been handled"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))


class LoopbackTransport(Transport):
    """Endpoint of a LoopbackNetwork"""

    def __init__(self, local_peer_id: PeerId, network: LoopbackNetwork):
        super().__init__(local_peer_id)
        self.network = network

    async def send(self, target_peer_id: PeerId, message: Message):
        self.network.route(self.local_peer_id, target_peer_id, message)

    async def close(self):
        self.network.detach(self.local_peer_id)


class StreamTransport(Transport):
    """
    TCP transport, one listening server per peer

    Frame: 4-byte big-endian length + JSON ``{"from", "type", "payload"}``.
    Outbound connections are opened on first send and reused.
    """

    def __init__(self, local_peer_id: PeerId, host: str, port: int,
                 directory: PeerDirectory, connect_timeout: float = 10.0):
        super().__init__(local_peer_id)
        self.host = host
        self.port = port
        self.directory = directory
        self.connect_timeout = connect_timeout
        self.server: Optional[asyncio.AbstractServer] = None
        self._connections: Dict[PeerId, Tuple[asyncio.StreamReader, asyncio.StreamWriter]] = {}
        self._locks: Dict[PeerId, asyncio.Lock] = {}
        self._inbound: Set[asyncio.StreamWriter] = set()

    @property
    def bound_port(self) -> int:
        """Actual listening port (useful when port 0 was requested)"""
        if self.server is None:
            return self.port
        return self.server.sockets[0].getsockname()[1]

    async def start(self):
        self.server = await asyncio.start_server(self._handle_connection, self.host, self.port)
        logger.info(f"Transport for peer {self.local_peer_id!r} listening on "
                    f"{self.host}:{self.bound_port}")

    async def send(self, target_peer_id: PeerId, message: Message):
        frame = self._encode_frame(message)
        lock = self._locks.setdefault(target_peer_id, asyncio.Lock())
        async with lock:
            writer = await self._get_writer(target_peer_id)
            try:
                writer.write(frame)
                await writer.drain()
            except (ConnectionError, OSError) as e:
                logger.error(f"Error sending to {target_peer_id!r}: {e}")
                self._forget(target_peer_id)
                raise

    def _encode_frame(self, message: Message) -> bytes:
        data = message_to_dict(message)
        data['from'] = self.local_peer_id
        body = json.dumps(data).encode('utf-8')
        return struct.pack('!I', len(body)) + body

    async def _get_writer(self, target_peer_id: PeerId) -> asyncio.StreamWriter:
        conn = self._connections.get(target_peer_id)
        if conn is not None and not conn[1].is_closing():
            return conn[1]

        peer = self.directory.resolve(target_peer_id)
        if peer is None:
            raise ConnectionError(f"Unknown peer {target_peer_id!r}")

        logger.debug(f"Connecting to {target_peer_id!r} at {peer.host}:{peer.port}")
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(peer.host, peer.port),
                timeout=self.connect_timeout
            )
        except asyncio.TimeoutError as e:
            raise ConnectionError(
                f"Timed out connecting to {target_peer_id!r} at {peer.host}:{peer.port}"
            ) from e
        self._connections[target_peer_id] = (reader, writer)
        return writer

    def _forget(self, target_peer_id: PeerId):
        conn = self._connections.pop(target_peer_id, None)
        if conn is not None:
            conn[1].close()

    async def _handle_connection(self, reader: asyncio.StreamReader,
                                 writer: asyncio.StreamWriter):
        addr = writer.get_extra_info('peername')
        logger.debug(f"New connection from {addr}")
        self._inbound.add(writer)

        try:
            while True:
                length_bytes = await reader.readexactly(4)
                length = struct.unpack('!I', length_bytes)[0]
                if length > MAX_FRAME_SIZE:
                    logger.error(f"Frame too large from {addr}: {length}")
                    break

                body = await reader.readexactly(length)
                try:
                    data = json.loads(body.decode('utf-8'))
                    from_peer_id = data.pop('from')
                    message = message_from_dict(data)
                except (UnicodeDecodeError, json.JSONDecodeError, KeyError,
                        AttributeError, ProtocolError) as e:
                    logger.warning(f"Discarding malformed frame from {addr}: {e}")
                    continue

                await self._dispatch(from_peer_id, message)

        except asyncio.IncompleteReadError:
            logger.debug(f"Connection from {addr} closed")
        except ConnectionError as e:
            logger.debug(f"Connection from {addr} lost: {e}")
        finally:
            self._inbound.discard(writer)
            writer.close()

    async def close(self):
        for peer_id in list(self._connections):
            self._forget(peer_id)
        for writer in list(self._inbound):
            writer.close()
        if self.server is not None:
            self.server.close()
            await self.server.wait_closed()
            self.server = None
            logger.info(f"Transport for peer {self.local_peer_id!r} stopped")
