"""
Connection settings for the Event Socket client.

Defaults match a stock switch install. Every setting can be overridden
from the environment:

- ESL_HOST, ESL_PORT, ESL_PASSWORD
- ESL_TIMEOUT: dial timeout per attempt, in seconds
- ESL_MAX_RETRIES: number of dial attempts
- ESL_REPLY_TIMEOUT: seconds to wait for a reply (unset waits forever)
- ESL_DISPATCH_WORKERS: threads delivering notifications to the handler
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .exceptions import ConfigurationError


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8021
DEFAULT_PASSWORD = "ClueCon"
DEFAULT_TIMEOUT = 3.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_DISPATCH_WORKERS = 8
READ_BUFFER_SIZE = 16 * 1024


@dataclass
class ConnectionConfig:
    """Settings used to open and run a Connection."""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    password: str = DEFAULT_PASSWORD
    timeout: float = DEFAULT_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    reply_timeout: Optional[float] = None
    dispatch_workers: int = DEFAULT_DISPATCH_WORKERS

    def validate(self) -> "ConnectionConfig":
        """
        Check the settings for consistency.

        Raises:
            ConfigurationError: If a setting is out of range
        """
        if not self.host:
            raise ConfigurationError("host must not be empty")
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"port out of range: {self.port}")
        if self.timeout <= 0:
            raise ConfigurationError(f"timeout must be positive: {self.timeout}")
        if self.max_retries < 1:
            raise ConfigurationError(f"max_retries must be at least 1: {self.max_retries}")
        if self.reply_timeout is not None and self.reply_timeout <= 0:
            raise ConfigurationError(f"reply_timeout must be positive: {self.reply_timeout}")
        if self.dispatch_workers < 1:
            raise ConfigurationError(f"dispatch_workers must be at least 1: {self.dispatch_workers}")
        return self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ConnectionConfig":
        """Build a configuration from ESL_* environment variables."""
        env = os.environ if environ is None else environ

        def _get(name, convert, default):
            raw = env.get(name)
            if raw is None or raw == "":
                return default
            try:
                return convert(raw)
            except ValueError:
                raise ConfigurationError(f"{name} has an invalid value: {raw!r}")

        config = cls(
            host=env.get("ESL_HOST") or DEFAULT_HOST,
            port=_get("ESL_PORT", int, DEFAULT_PORT),
            password=env.get("ESL_PASSWORD") or DEFAULT_PASSWORD,
            timeout=_get("ESL_TIMEOUT", float, DEFAULT_TIMEOUT),
            max_retries=_get("ESL_MAX_RETRIES", int, DEFAULT_MAX_RETRIES),
            reply_timeout=_get("ESL_REPLY_TIMEOUT", float, None),
            dispatch_workers=_get("ESL_DISPATCH_WORKERS", int, DEFAULT_DISPATCH_WORKERS),
        )
        return config.validate()
