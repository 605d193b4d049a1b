"""
Unix Socket Transport Implementation

Sends units to an agent listening on a unix socket. One connection per unit,
no retries: a failed round-trip is reported once.
"""

import os
import socket
import stat
import threading
import time
from typing import Any, Dict

from ..framing import recv_frame, send_frame
from ..result import ChannelResult
from ..transport import Transport


class UnixSocketTransport(Transport):
    """Unix socket transport for execution channel communication."""

    def __init__(self, config):
        super().__init__(config)
        self._lock = threading.Lock()
        self._socket_path = config.endpoint[7:]  # Remove 'unix://' prefix

    def _create_socket(self) -> socket.socket:
        """Create a new unix socket."""
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(self.config.timeout_ms / 1000)
        return sock

    def _connect(self) -> socket.socket:
        """Connect to unix socket."""
        sock = self._create_socket()

        try:
            sock.connect(self._socket_path)
            return sock
        except (socket.timeout, ConnectionRefusedError, FileNotFoundError) as e:
            sock.close()
            raise ConnectionError(f"Failed to connect to agent socket: {e}")

    def call(self, payload: Dict[str, Any]) -> ChannelResult:
        """Send one unit to the agent and wait for the reply."""
        start_time = time.time()

        with self._lock:
            try:
                sock = self._connect()
            except ConnectionError as e:
                return ChannelResult.unavailable_result(str(e))

            try:
                send_frame(sock, payload)
                response = recv_frame(sock)
            except socket.timeout:
                return ChannelResult.timeout_result(
                    latency_ms=int((time.time() - start_time) * 1000)
                )
            except ValueError as e:
                return ChannelResult.error_result(
                    reason=f"Invalid JSON response: {e}",
                    latency_ms=int((time.time() - start_time) * 1000)
                )
            except OSError as e:
                return ChannelResult.error_result(
                    reason=str(e),
                    latency_ms=int((time.time() - start_time) * 1000)
                )
            finally:
                sock.close()

        latency_ms = int((time.time() - start_time) * 1000)
        return ChannelResult.from_response(response, latency_ms=latency_ms)

    def is_available(self) -> bool:
        """Check that the socket file exists and is a socket."""
        try:
            return stat.S_ISSOCK(os.stat(self._socket_path).st_mode)
        except OSError:
            return False

    def close(self) -> None:
        """Connections are per call; nothing is held open."""
        pass
