"""
Unix Socket Execution Agent

Serves units over a unix socket using the same framing as
UnixSocketTransport. One request per connection.
"""

import logging
import os
import socketserver
import stat

from ..units import ERROR_INVALID_REQUEST, UnitExecutor
from .framing import recv_frame, send_frame

logger = logging.getLogger(__name__)


class _UnitRequestHandler(socketserver.BaseRequestHandler):
    """Reads one unit frame, executes it, writes one response frame."""

    def handle(self):
        try:
            payload = recv_frame(self.request)
        except (ConnectionError, ValueError) as e:
            logger.warning("rejected malformed frame: %s", e)
            try:
                send_frame(self.request, {"ok": False, "error": ERROR_INVALID_REQUEST, "message": str(e)})
            except OSError as send_error:
                logger.debug("could not report malformed frame: %s", send_error)
            return

        send_frame(self.request, self.server.executor.execute_payload(payload))


class UnitSocketServer(socketserver.ThreadingMixIn, socketserver.UnixStreamServer):
    """Threaded unix socket server bound to one UnitExecutor."""

    daemon_threads = True

    def __init__(self, socket_path: str, executor: UnitExecutor):
        if os.path.exists(socket_path):
            if not stat.S_ISSOCK(os.stat(socket_path).st_mode):
                raise FileExistsError(f"Refusing to replace non-socket file: {socket_path}")
            os.unlink(socket_path)
        self.executor = executor
        super().__init__(socket_path, _UnitRequestHandler)
        # Owner-only access to the agent
        os.chmod(socket_path, stat.S_IRUSR | stat.S_IWUSR)


def serve_unix(socket_path: str, executor: UnitExecutor) -> None:
    """Run the agent until interrupted."""
    with UnitSocketServer(socket_path, executor) as server:
        logger.info("execution agent listening on %s", socket_path)
        try:
            server.serve_forever()
        finally:
            if os.path.exists(socket_path):
                os.unlink(socket_path)
