"""
Tests for the unix socket agent and transport, end to end.
"""

import os
import socket
import stat
import sys
import tempfile
import threading

import pytest

from copydata.channel import ChannelConfig, ChannelStatus, ExecutionChannel
from copydata.channel.agent_socket import UnitSocketServer
from copydata.channel.framing import recv_frame, send_frame
from copydata.errors import AuthorizationError
from copydata.units import CanonicalPathUnit, DenyAllAuthorizer, RoleAuthorizer, UnitExecutor

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="unix sockets only")


@pytest.fixture
def socket_dir():
    # AF_UNIX paths are length-limited; pytest tmp paths can be too long
    with tempfile.TemporaryDirectory(prefix="cd-") as path:
        yield path


def _serve(socket_path, executor):
    server = UnitSocketServer(socket_path, executor)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return server


@pytest.fixture
def agent(socket_dir):
    path = os.path.join(socket_dir, "agent.sock")
    server = _serve(path, UnitExecutor(RoleAuthorizer()))
    yield path
    server.shutdown()
    server.server_close()


class TestUnixSocketAgent:

    def test_socket_is_owner_only(self, agent):
        assert stat.S_IMODE(os.stat(agent).st_mode) == 0o600

    def test_dispatch_over_socket(self, agent, tmp_path):
        channel = ExecutionChannel(ChannelConfig(endpoint=f"unix://{agent}"))

        payload = channel.dispatch(CanonicalPathUnit(str(tmp_path)))

        assert payload["exists"] is True
        assert channel.is_available() is True

    def test_denial_over_socket(self, socket_dir, tmp_path):
        path = os.path.join(socket_dir, "deny.sock")
        server = _serve(path, UnitExecutor(DenyAllAuthorizer()))
        try:
            channel = ExecutionChannel(ChannelConfig(endpoint=f"unix://{path}"))

            assert channel.call(CanonicalPathUnit(str(tmp_path))).status == ChannelStatus.DENIED
            with pytest.raises(AuthorizationError):
                channel.dispatch(CanonicalPathUnit(str(tmp_path)))
        finally:
            server.shutdown()
            server.server_close()

    def test_malformed_frame(self, agent):
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(5)
        try:
            sock.connect(agent)
            body = b"[1, 2]"
            sock.sendall(len(body).to_bytes(4, "big") + body)
            response = recv_frame(sock)
        finally:
            sock.close()

        assert response["ok"] is False
        assert response["error"] == "invalid_request"

    def test_unknown_unit(self, agent):
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(5)
        try:
            sock.connect(agent)
            send_frame(sock, {"unit": "shell", "params": {}})
            response = recv_frame(sock)
        finally:
            sock.close()

        assert response["error"] == "invalid_request"

    def test_refuses_to_replace_regular_file(self, socket_dir):
        path = os.path.join(socket_dir, "plain")
        with open(path, "w") as f:
            f.write("x")

        with pytest.raises(FileExistsError):
            UnitSocketServer(path, UnitExecutor(RoleAuthorizer()))
