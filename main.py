import asyncio
import argparse
import logging
import sys
from pathlib import Path

from chunktransfer.config import load_config
from chunktransfer.engine import FileTransferEngine
from chunktransfer.errors import TransferError, ConfigError
from chunktransfer.network.peers import Peer, PeerDirectory
from chunktransfer.network.transport import StreamTransport
from chunktransfer.transfer.descriptor import TransferState

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler('chunktransfer.log')
    ]
)
logger = logging.getLogger(__name__)


def parse_peer_id(value: str):
    """Peer ids are integers when they look like one"""
    return int(value) if value.lstrip('-').isdigit() else value


def build_engine(args, config) -> FileTransferEngine:
    """Create the engine for the local peer over TCP"""
    directory = PeerDirectory.from_yaml(Path(args.peers)) if args.peers else PeerDirectory()
    if args.peer_id not in directory:
        directory.add(Peer(args.peer_id, args.host, args.port))

    transport = StreamTransport(args.peer_id, args.host, args.port, directory)
    return FileTransferEngine(args.peer_id, transport, directory, config)


async def run_send(args, config) -> int:
    """Send one file and wait for the outcome"""
    logger.info("=== Chunk Transfer: send ===")

    engine = build_engine(args, config)
    await engine.start()

    try:
        sender = await engine.send_file(
            Path(args.file), args.target,
            bytes_per_chunk=args.bytes_per_chunk,
            chunks_per_second=args.rate,
        )
        logger.info(f"Transfer #{sender.descriptor.id}: {sender.descriptor.total_bytes:,} bytes "
                    f"in {sender.descriptor.total_steps} chunks")
        descriptor = await sender.wait()
    except TransferError as e:
        logger.error(f"Send failed: {e}")
        return 1
    finally:
        await engine.close()

    return 0 if descriptor.state is TransferState.COMPLETED else 1


async def run_receive(args, config) -> int:
    """Accept incoming files until interrupted"""
    logger.info("=== Chunk Transfer: receive ===")
    Path(config.download_dir).mkdir(parents=True, exist_ok=True)

    engine = build_engine(args, config)

    @engine.signals.download_succeeded.connect
    def report(descriptor):
        logger.info(f"✓ {descriptor.path} received ({descriptor.sent_bytes:,} bytes, "
                    f"{descriptor.elapsed:.1f}s)")

    await engine.start()
    logger.info(f"Saving files to {config.download_dir}. Press Ctrl+C to stop.")

    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await engine.close()


def create_parser():
    """Create argument parser"""
    parser = argparse.ArgumentParser(
        description='Chunk Transfer - paced chunked file transfer between peers',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start a receiver
  python main.py receive --peer-id 2 --port 9002 --peers peers.yaml

  # Send a file to peer 2
  python main.py send report.pdf --target 2 --peer-id 1 --port 9001 --peers peers.yaml
        """
    )

    # Mode selection
    subparsers = parser.add_subparsers(dest='mode', required=True)
    send = subparsers.add_parser('send', help='Send a file to a peer')
    receive = subparsers.add_parser('receive', help='Receive files from peers')

    for sub in (send, receive):
        sub.add_argument(
            '--peer-id',
            type=parse_peer_id,
            required=True,
            help='Local peer id'
        )
        sub.add_argument(
            '--host',
            default='127.0.0.1',
            help='Listening address (default: 127.0.0.1)'
        )
        sub.add_argument(
            '--port',
            type=int,
            default=9000,
            help='Listening port (default: 9000)'
        )
        sub.add_argument(
            '--peers',
            help='YAML file listing known peers'
        )
        sub.add_argument(
            '--config',
            help='YAML configuration file'
        )
        sub.add_argument(
            '--debug',
            action='store_true',
            help='Enable debug logging'
        )
        sub.add_argument(
            '--quiet',
            action='store_true',
            help='Minimal output'
        )

    # Send-specific arguments
    send.add_argument('file', help='File to send')
    send.add_argument(
        '--target',
        type=parse_peer_id,
        required=True,
        help='Receiving peer id'
    )
    send.add_argument(
        '--bytes-per-chunk',
        type=int,
        help='Chunk size in bytes (default: 10000)'
    )
    send.add_argument(
        '--rate',
        type=float,
        help='Chunks per second (default: 10)'
    )

    # Receive-specific arguments
    receive.add_argument(
        '--download-dir',
        help='Where received files are written (default: ./downloads)'
    )

    return parser


async def main():
    """Main entry point"""
    parser = create_parser()
    args = parser.parse_args()

    # Adjust logging level
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    elif args.quiet:
        logging.getLogger().setLevel(logging.WARNING)

    try:
        config = load_config(Path(args.config) if args.config else None)
        if args.mode == 'receive':
            config = config.with_overrides(download_dir=args.download_dir)
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    # Route to appropriate mode
    try:
        if args.mode == 'send':
            code = await run_send(args, config)
        else:
            code = await run_receive(args, config)
    except KeyboardInterrupt:
        logger.info("\nShutdown requested by user")
        code = 0
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        code = 1
    sys.exit(code)


def run():
    """Console script entry point"""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == '__main__':
    run()
