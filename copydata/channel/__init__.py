"""
Execution Channel Module

Carries units of work to the node hosting the filesystem and back.
Supports local (in-process), unix socket and HTTP transports.
"""

from .channel import ExecutionChannel
from .config import ChannelConfig
from .result import ChannelResult, ChannelStatus

__all__ = [
    'ExecutionChannel',
    'ChannelConfig',
    'ChannelResult',
    'ChannelStatus'
]
