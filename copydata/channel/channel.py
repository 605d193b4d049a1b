"""
Execution Channel Main Interface

Blocking request/response dispatch of units to the node hosting the
filesystem. No retries: a failed round-trip is fatal for the invocation.
"""

import logging
import threading
import time
from typing import Any, Dict, Optional

from ..config import AgentConfig
from ..errors import AuthorizationError, ChannelError
from ..telemetry import emit_event
from ..units import Authorizer, RoleAuthorizer, WorkUnit
from .config import ChannelConfig
from .result import ChannelResult, ChannelStatus
from .transport import Transport
from .transport_factory import create_transport

logger = logging.getLogger(__name__)


class ExecutionChannel:
    """Main execution channel interface."""

    def __init__(self, config: Optional[ChannelConfig] = None,
                 authorizer: Optional[Authorizer] = None,
                 transport: Optional[Transport] = None):
        self.config = config or ChannelConfig()
        self._lock = threading.Lock()
        self._transport: Optional[Transport] = transport or create_transport(self.config, authorizer)

    @classmethod
    def from_env(cls) -> 'ExecutionChannel':
        """Channel from environment; a local channel gets the agent role policy."""
        config = ChannelConfig.from_env()
        authorizer = RoleAuthorizer(AgentConfig.from_env().allowed_roles) if config.is_local else None
        return cls(config, authorizer=authorizer)

    @classmethod
    def local(cls, authorizer: Optional[Authorizer]) -> 'ExecutionChannel':
        """In-process channel guarded by the given authorizer."""
        return cls(ChannelConfig(), authorizer=authorizer)

    def is_available(self) -> bool:
        """Check if the channel can currently reach its hosting node."""
        if not self._transport:
            return False
        return self._transport.is_available()

    def call(self, unit: WorkUnit) -> ChannelResult:
        """Send a unit and return the raw result. Never raises."""
        if not self._transport:
            return ChannelResult.unavailable_result("Transport not initialized")

        start_time = time.time()
        try:
            result = self._transport.call(unit.to_dict())
        except Exception as e:
            logger.exception("transport failure for unit %s", unit.name)
            result = ChannelResult.error_result(
                reason=str(e),
                latency_ms=int((time.time() - start_time) * 1000)
            )

        self._emit_telemetry(unit, result)
        return result

    def dispatch(self, unit: WorkUnit) -> Dict[str, Any]:
        """
        Send a unit and return its result payload.

        RAISES:
            AuthorizationError: the hosting node refused to run the unit
            ChannelError: the unit could not be delivered or failed remotely
        """
        result = self.call(unit)

        if result.success:
            return result.payload or {}

        if result.status == ChannelStatus.DENIED:
            raise AuthorizationError(result.reason or f"unit '{unit.name}' denied")

        raise ChannelError(
            f"execution channel failed for unit '{unit.name}': {result.reason}",
            status=result.status
        )

    def _emit_telemetry(self, unit: WorkUnit, result: ChannelResult) -> None:
        """Emit telemetry event for the call."""
        emit_event(
            "channel.call",
            f"{unit.name} -> {result.status.value}",
            level="info" if result.success else "error",
            stage="channel",
            unit=unit.name,
            status=result.status.value,
            latency_ms=result.latency_ms,
            error=None if result.success else result.reason,
        )

    def close(self) -> None:
        """Close the channel and cleanup resources."""
        with self._lock:
            if self._transport:
                self._transport.close()
                self._transport = None
