"""
Local Transport Implementation

Runs units in this process. Payloads still go through the wire form and the
UnitExecutor, so local execution is authorized exactly like remote execution.
"""

import time
from typing import Any, Dict

from ..units import UnitExecutor
from .result import ChannelResult
from .transport import Transport


class LocalTransport(Transport):
    """In-process transport backed by a UnitExecutor."""

    def __init__(self, config, executor: UnitExecutor):
        super().__init__(config)
        self.executor = executor

    def call(self, payload: Dict[str, Any]) -> ChannelResult:
        """Execute the unit here and wrap the response."""
        start_time = time.time()
        response = self.executor.execute_payload(payload)
        latency_ms = int((time.time() - start_time) * 1000)
        return ChannelResult.from_response(response, latency_ms=latency_ms)

    def is_available(self) -> bool:
        """Local transport is always available."""
        return True

    def close(self) -> None:
        """No cleanup needed for local transport."""
        pass
