"""
Transfer configuration

Configuration priority (highest to lowest):
1. Explicit overrides passed by the caller
2. Environment variables (CHUNKTRANSFER_*)
3. YAML config file
4. Default values
"""

import os
from dataclasses import dataclass, asdict, fields, replace
from pathlib import Path
from typing import Optional, Dict, Any
import logging

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "CHUNKTRANSFER_"


@dataclass
class TransferConfig:
    """Parameters shared by the sender and receiver protocols"""
    bytes_per_chunk: int = 10000
    chunks_per_second: float = 10
    server_timeout: float = 5.0  # seconds waiting for Ready
    client_timeout: float = 15.0  # seconds without chunk progress
    ready_poll_interval: float = 0.1
    reassembly_window: Optional[int] = None  # chunks ahead of the expected step
    history_size: int = 64
    download_dir: str = "./downloads"
    delete_partial: bool = False

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Reject values the protocol cannot run with"""
        if self.bytes_per_chunk <= 0:
            raise ConfigError(f"bytes_per_chunk must be positive, got {self.bytes_per_chunk}")
        if self.chunks_per_second <= 0:
            raise ConfigError(f"chunks_per_second must be positive, got {self.chunks_per_second}")
        for name in ('server_timeout', 'client_timeout', 'ready_poll_interval'):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)}")
        if self.reassembly_window is not None and self.reassembly_window <= 0:
            raise ConfigError(f"reassembly_window must be positive, got {self.reassembly_window}")
        if self.history_size < 0:
            raise ConfigError(f"history_size must not be negative, got {self.history_size}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransferConfig':
        """Build a config from a mapping, rejecting unknown keys"""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: Path) -> 'TransferConfig':
        """Load configuration from a YAML file"""
        path = Path(path)
        if not path.exists():
            logger.debug(f"Config file {path} not found, using defaults")
            return cls()

        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigError(f"{path}: expected a mapping at top level")

        # Allow the settings to live under a 'transfer' section
        data = data.get('transfer', data)
        return cls.from_dict(data)

    def from_env(self) -> 'TransferConfig':
        """Return a copy with CHUNKTRANSFER_* environment overrides applied"""
        overrides = {}
        for f in fields(self):
            raw = os.getenv(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            try:
                if f.type is bool:
                    overrides[f.name] = raw.lower() in ('1', 'true', 'yes')
                elif f.type is float:
                    overrides[f.name] = float(raw)
                elif f.type is int or f.name == 'reassembly_window':
                    overrides[f.name] = int(raw)
                else:
                    overrides[f.name] = raw
            except ValueError:
                raise ConfigError(f"Invalid value for {ENV_PREFIX}{f.name.upper()}: {raw!r}")
        return self.with_overrides(**overrides)

    def with_overrides(self, **overrides) -> 'TransferConfig':
        """Copy with the given non-None fields replaced"""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return asdict(self)


def load_config(config_path: Optional[Path] = None) -> TransferConfig:
    """Load configuration from file, then apply environment overrides"""
    config = TransferConfig.from_yaml(config_path) if config_path else TransferConfig()
    return config.from_env()


EXAMPLE_CONFIG = """
transfer:
  bytes_per_chunk: 10000
  chunks_per_second: 10
  server_timeout: 5.0
  client_timeout: 15.0
  ready_poll_interval: 0.1
  reassembly_window: 1024
  download_dir: ./downloads
"""
