"""
Execution Channel Configuration

Where canonicalization units are executed and how long to wait for them.
"""

import os
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

LOOPBACK_HOSTS = ('127.0.0.1', 'localhost', '::1')


class ChannelConfig(BaseModel):
    """Configuration for the execution channel."""

    endpoint: str = Field(
        default="local",
        description="'local', unix:///abs/path.sock, or http(s)://host:port"
    )

    timeout_ms: int = Field(
        default=5000,
        ge=100,
        le=60000,
        description="Round-trip timeout in milliseconds"
    )

    @field_validator('endpoint')
    @classmethod
    def validate_endpoint(cls, v):
        """Validate endpoint format."""
        if v == 'local':
            return v
        if v.startswith('unix://'):
            path = v[7:]
            if not path.startswith('/'):
                raise ValueError('Unix socket path must be absolute')
        elif v.startswith(('http://', 'https://')):
            parsed = urlparse(v)
            if not parsed.hostname:
                raise ValueError('HTTP endpoint must include a host')
            # Plain HTTP is only acceptable on the loopback interface
            if parsed.scheme == 'http' and parsed.hostname not in LOOPBACK_HOSTS:
                raise ValueError('Plain HTTP endpoint must be localhost only; use https for remote agents')
        else:
            raise ValueError('Endpoint must be local, unix:// or http(s)://')
        return v

    @property
    def is_local(self) -> bool:
        return self.endpoint == 'local'

    @classmethod
    def from_env(cls) -> 'ChannelConfig':
        """Load configuration from environment variables."""
        return cls(
            endpoint=os.getenv('COPYDATA_CHANNEL_ENDPOINT', 'local'),
            timeout_ms=int(os.getenv('COPYDATA_CHANNEL_TIMEOUT_MS', '5000')),
        )
