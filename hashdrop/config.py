"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional
import json

from dotenv import load_dotenv


class ConfigError(ValueError):
    """Raised when a configuration value is out of range."""


@dataclass
class Config:
    """
    Hashdrop Configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (HASHDROP_*)
    2. Config file (config.json)
    3. Default values

    Values are read once at startup and never change afterwards.
    """
    # Network
    host: str = '0.0.0.0'
    port: int = 9000
    server_host: str = '127.0.0.1'

    # Storage
    upload_dir: Path = field(default_factory=lambda: Path('./uploads'))

    # Limits
    max_file_size: int = 100 * 1024 * 1024  # 100MB
    max_concurrent_clients: int = 5
    buffer_size: int = 8192

    # Timeouts (seconds)
    read_timeout: float = 300.0
    client_timeout: float = 30.0
    accept_poll_interval: float = 1.0

    # Logging
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        # Network
        config.host = os.getenv('HASHDROP_HOST', config.host)
        config.port = int(os.getenv('HASHDROP_PORT', config.port))
        config.server_host = os.getenv('HASHDROP_SERVER_HOST', config.server_host)

        # Storage
        upload_dir = os.getenv('HASHDROP_UPLOAD_DIR')
        if upload_dir:
            config.upload_dir = Path(upload_dir)

        # Limits
        config.max_file_size = int(
            os.getenv('HASHDROP_MAX_FILE_SIZE', config.max_file_size)
        )
        config.max_concurrent_clients = int(
            os.getenv('HASHDROP_MAX_CLIENTS', config.max_concurrent_clients)
        )
        config.buffer_size = int(os.getenv('HASHDROP_BUFFER_SIZE', config.buffer_size))

        # Timeouts
        config.read_timeout = float(os.getenv('HASHDROP_READ_TIMEOUT', config.read_timeout))
        config.client_timeout = float(
            os.getenv('HASHDROP_CLIENT_TIMEOUT', config.client_timeout)
        )

        # Logging
        config.log_level = os.getenv('HASHDROP_LOG_LEVEL', config.log_level)

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """
        Load configuration from a JSON file.

        Raises:
            ConfigError: if a value has the wrong type
        """
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()

        try:
            # Network
            config.host = str(data.get('host', config.host))
            config.port = int(data.get('port', config.port))
            config.server_host = str(data.get('server_host', config.server_host))

            # Storage
            if 'upload_dir' in data:
                config.upload_dir = Path(data['upload_dir'])

            # Limits
            config.max_file_size = int(data.get('max_file_size', config.max_file_size))
            config.max_concurrent_clients = int(data.get(
                'max_concurrent_clients', config.max_concurrent_clients
            ))
            config.buffer_size = int(data.get('buffer_size', config.buffer_size))

            # Timeouts
            config.read_timeout = float(data.get('read_timeout', config.read_timeout))
            config.client_timeout = float(data.get('client_timeout', config.client_timeout))
            config.accept_poll_interval = float(data.get(
                'accept_poll_interval', config.accept_poll_interval
            ))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Bad value in {path}: {e}") from e

        # Logging
        config.log_level = str(data.get('log_level', config.log_level))

        return config

    def validate(self) -> 'Config':
        """
        Check that limits and timeouts are usable.

        Raises:
            ConfigError: on the first out-of-range value
        """
        if not 0 <= self.port <= 65535:
            raise ConfigError(f"port out of range: {self.port}")
        for name in ('max_file_size', 'max_concurrent_clients', 'buffer_size'):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)}")
        for name in ('read_timeout', 'client_timeout', 'accept_poll_interval'):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)}")
        return self

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'host': self.host,
            'port': self.port,
            'server_host': self.server_host,
            'upload_dir': str(self.upload_dir),
            'max_file_size': self.max_file_size,
            'max_concurrent_clients': self.max_concurrent_clients,
            'buffer_size': self.buffer_size,
            'read_timeout': self.read_timeout,
            'client_timeout': self.client_timeout,
            'accept_poll_interval': self.accept_poll_interval,
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


# Environment variable behind each overridable key
_ENV_KEYS = {
    'host': 'HASHDROP_HOST',
    'port': 'HASHDROP_PORT',
    'server_host': 'HASHDROP_SERVER_HOST',
    'upload_dir': 'HASHDROP_UPLOAD_DIR',
    'max_file_size': 'HASHDROP_MAX_FILE_SIZE',
    'max_concurrent_clients': 'HASHDROP_MAX_CLIENTS',
    'buffer_size': 'HASHDROP_BUFFER_SIZE',
    'read_timeout': 'HASHDROP_READ_TIMEOUT',
    'client_timeout': 'HASHDROP_CLIENT_TIMEOUT',
    'log_level': 'HASHDROP_LOG_LEVEL',
}


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Any non-empty variable overrides the file, even when its value equals
    the default.
    """
    # Start with defaults
    config = Config()

    # Load from file if provided
    if config_path and config_path.exists():
        config = Config.from_file(config_path)

    # Override with environment variables (also reads .env)
    env_config = Config.from_env()

    for key, env_name in _ENV_KEYS.items():
        if os.getenv(env_name):
            setattr(config, key, getattr(env_config, key))

    return config.validate()


# Example config file template
EXAMPLE_CONFIG = """
{
  "host": "0.0.0.0",
  "port": 9000,
  "server_host": "127.0.0.1",
  "upload_dir": "./uploads",
  "max_file_size": 104857600,
  "max_concurrent_clients": 5,
  "buffer_size": 8192,
  "read_timeout": 300.0,
  "client_timeout": 30.0,
  "log_level": "INFO"
}
"""
