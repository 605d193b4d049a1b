"""
Execution Channel Result Types

Result types and status enums for units dispatched over a channel.
"""

from enum import Enum
from typing import Any, Dict, Optional

from ..units import ERROR_AUTHORIZATION, ERROR_INVALID_REQUEST


class ChannelStatus(Enum):
    """Status of a channel round-trip."""
    OK = "ok"
    ERROR = "error"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"
    INVALID_REQUEST = "invalid_request"
    DENIED = "denied"


class ChannelResult:
    """Result from executing one unit."""

    def __init__(self, status: ChannelStatus, success: bool, **kwargs):
        self.status = status
        self.success = success
        self.reason = kwargs.get('reason')
        self.latency_ms = kwargs.get('latency_ms')
        self.payload_size = kwargs.get('payload_size')
        self.payload = kwargs.get('payload')
        self.error_code = kwargs.get('error_code')

    @classmethod
    def success_result(cls, payload: Optional[Dict[str, Any]] = None,
                       latency_ms: Optional[int] = None) -> 'ChannelResult':
        """Create a successful result."""
        payload_size = len(str(payload).encode()) if payload else 0
        return cls(
            status=ChannelStatus.OK,
            success=True,
            payload=payload,
            latency_ms=latency_ms,
            payload_size=payload_size
        )

    @classmethod
    def error_result(cls, reason: str, error_code: Optional[str] = None,
                     latency_ms: Optional[int] = None) -> 'ChannelResult':
        """Create an error result."""
        return cls(
            status=ChannelStatus.ERROR,
            success=False,
            reason=reason,
            error_code=error_code,
            latency_ms=latency_ms
        )

    @classmethod
    def denied_result(cls, reason: str, latency_ms: Optional[int] = None) -> 'ChannelResult':
        """Create a result for a unit the hosting node refused to run."""
        return cls(
            status=ChannelStatus.DENIED,
            success=False,
            reason=reason,
            error_code=ERROR_AUTHORIZATION,
            latency_ms=latency_ms
        )

    @classmethod
    def invalid_request_result(cls, reason: str, latency_ms: Optional[int] = None) -> 'ChannelResult':
        """Create a result for a payload the hosting node could not parse."""
        return cls(
            status=ChannelStatus.INVALID_REQUEST,
            success=False,
            reason=reason,
            error_code=ERROR_INVALID_REQUEST,
            latency_ms=latency_ms
        )

    @classmethod
    def timeout_result(cls, latency_ms: Optional[int] = None) -> 'ChannelResult':
        """Create a timeout result."""
        return cls(
            status=ChannelStatus.TIMEOUT,
            success=False,
            reason="Request timed out",
            latency_ms=latency_ms
        )

    @classmethod
    def unavailable_result(cls, reason: str = "Execution channel unavailable") -> 'ChannelResult':
        """Create an unavailable result."""
        return cls(
            status=ChannelStatus.UNAVAILABLE,
            success=False,
            reason=reason
        )

    @classmethod
    def from_response(cls, response: Dict[str, Any],
                      latency_ms: Optional[int] = None) -> 'ChannelResult':
        """Map an agent response body onto a result."""
        if not isinstance(response, dict) or 'ok' not in response:
            return cls.error_result("Malformed agent response", latency_ms=latency_ms)

        if response['ok']:
            return cls.success_result(payload=response.get('result') or {}, latency_ms=latency_ms)

        code = response.get('error')
        message = response.get('message', 'Unknown error')
        if code == ERROR_AUTHORIZATION:
            return cls.denied_result(message, latency_ms=latency_ms)
        if code == ERROR_INVALID_REQUEST:
            return cls.invalid_request_result(message, latency_ms=latency_ms)
        return cls.error_result(message, error_code=code, latency_ms=latency_ms)

    def dict(self) -> Dict[str, Any]:
        """Convert result to dictionary."""
        return {
            'status': self.status.value,
            'success': self.success,
            'reason': self.reason,
            'latency_ms': self.latency_ms,
            'payload_size': self.payload_size,
            'payload': self.payload,
            'error_code': self.error_code
        }
