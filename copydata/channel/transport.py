"""
Transport Interface

Abstract base class for execution channel transports.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict

from .result import ChannelResult


class Transport(ABC):
    """Abstract base class for execution channel transports."""

    def __init__(self, config):
        self.config = config

    @abstractmethod
    def call(self, payload: Dict[str, Any]) -> ChannelResult:
        """Send one serialized unit and wait for its result."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the transport is available."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close the transport and cleanup resources."""
        pass
