"""
HTTP Transport Implementation

Sends units to an execution agent's HTTP API (see channel/agent_api.py).
"""

import threading
import time
from typing import Any, Dict

import requests

from ..result import ChannelResult
from ..transport import Transport


class HttpTransport(Transport):
    """HTTP transport for execution channel communication."""

    def __init__(self, config):
        super().__init__(config)
        self._session = None
        self._lock = threading.Lock()
        self._base_url = config.endpoint.rstrip('/')

    def _get_session(self) -> requests.Session:
        """Get or create HTTP session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def call(self, payload: Dict[str, Any]) -> ChannelResult:
        """POST one unit to the agent and wait for the reply."""
        start_time = time.time()

        try:
            with self._lock:
                response = self._get_session().post(
                    f"{self._base_url}/v1/units",
                    json=payload,
                    timeout=self.config.timeout_ms / 1000
                )
        except requests.Timeout:
            return ChannelResult.timeout_result(
                latency_ms=int((time.time() - start_time) * 1000)
            )
        except requests.ConnectionError as e:
            return ChannelResult.unavailable_result(f"Failed to reach agent: {e}")
        except requests.RequestException as e:
            return ChannelResult.error_result(
                reason=str(e),
                latency_ms=int((time.time() - start_time) * 1000)
            )

        latency_ms = int((time.time() - start_time) * 1000)

        # Denials and bad requests come back as non-200 with a JSON body
        try:
            body = response.json()
        except ValueError as e:
            return ChannelResult.error_result(
                reason=f"HTTP {response.status_code}: invalid JSON response: {e}",
                latency_ms=latency_ms
            )

        if response.status_code != 200 and not (isinstance(body, dict) and 'ok' in body):
            return ChannelResult.error_result(
                reason=f"HTTP {response.status_code}",
                latency_ms=latency_ms
            )

        return ChannelResult.from_response(body, latency_ms=latency_ms)

    def is_available(self) -> bool:
        """Check if the agent answers its health probe."""
        try:
            response = self._get_session().get(f"{self._base_url}/v1/health", timeout=1.0)
            return response.status_code == 200
        except requests.RequestException:
            return False

    def close(self) -> None:
        """Close the HTTP transport."""
        with self._lock:
            if self._session:
                self._session.close()
                self._session = None
