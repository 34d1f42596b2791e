"""Basic sanity tests"""

import pytest


def test_imports():
    """Test that all modules can be imported"""
    from chunktransfer import config, engine, errors
    from chunktransfer.network import messages, peers, transport
    from chunktransfer.transfer import descriptor, registry, reassembler, pacer, sender, receiver
    assert True


def test_python_version():
    """Test Python version is adequate"""
    import sys
    assert sys.version_info >= (3, 10)


def test_aiofiles_import():
    """Test that aiofiles can be imported"""
    try:
        import aiofiles
        import aiofiles.os
        assert callable(aiofiles.open)
    except ImportError as e:
        pytest.fail(f"aiofiles not available: {e}")


def test_cli_parser():
    """Test that the CLI parses both modes"""
    from main import create_parser

    parser = create_parser()
    args = parser.parse_args(['send', 'a.bin', '--target', '2', '--peer-id', '1'])
    assert args.mode == 'send'
    assert args.target == 2
    assert args.peer_id == 1

    args = parser.parse_args(['receive', '--peer-id', 'bob', '--download-dir', 'out'])
    assert args.mode == 'receive'
    assert args.peer_id == 'bob'
    assert args.download_dir == 'out'
