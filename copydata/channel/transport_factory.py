"""
Transport Factory

Lazy loading of transport modules so a local-only setup never imports
socket or HTTP client code it does not use.
"""

from typing import Optional

from ..units import Authorizer, UnitExecutor
from .config import ChannelConfig
from .local_transport import LocalTransport
from .transport import Transport


def create_transport(config: ChannelConfig, authorizer: Optional[Authorizer] = None) -> Transport:
    """Create transport instance based on configuration.

    The authorizer only matters for the local transport; remote agents apply
    their own policy.
    """
    if config.is_local:
        return LocalTransport(config, UnitExecutor(authorizer))

    if config.endpoint.startswith('unix://'):
        from .transports.unix_socket import UnixSocketTransport
        return UnixSocketTransport(config)

    elif config.endpoint.startswith(('http://', 'https://')):
        from .transports.http_transport import HttpTransport
        return HttpTransport(config)

    else:
        raise ValueError(f"Unsupported endpoint: {config.endpoint}")
