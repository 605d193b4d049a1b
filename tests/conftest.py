import os

import pytest

from copydata import telemetry
from copydata.channel import ExecutionChannel
from copydata.config import HostConfig
from copydata.units import RoleAuthorizer


def _can_symlink(tmp_dir) -> bool:
    link = os.path.join(tmp_dir, "check-link")
    try:
        os.symlink(tmp_dir, link)
    except (OSError, NotImplementedError, AttributeError):
        return False
    os.unlink(link)
    return True


@pytest.fixture
def symlinks_supported(tmp_path):
    if not _can_symlink(str(tmp_path)):
        pytest.skip("symlinks not supported in this environment")


@pytest.fixture(autouse=True)
def no_telemetry(monkeypatch):
    """Keep test runs from writing event logs unless a test opts in."""
    monkeypatch.delenv("COPYDATA_TELEMETRY", raising=False)
    telemetry._event_buffer.clear()
    yield
    telemetry._event_buffer.clear()


@pytest.fixture
def data_root(tmp_path):
    """Allowed root with a small tree and an outside directory next to it."""
    root = tmp_path / "data"
    (root / "safe" / "sub").mkdir(parents=True)
    (root / "safe" / "file.txt").write_text("hello")
    (root / "safe" / "sub" / "nested.txt").write_text("nested")
    (root / "other").mkdir()
    (root / "other" / "tool.sh").write_text("#!/bin/sh\necho hi\n")
    outside = tmp_path / "outside"
    outside.mkdir()
    (outside / "secret.txt").write_text("secret")
    return root


@pytest.fixture
def unreadable_subdir(data_root):
    """safe/sub with its permissions removed; restored afterwards for cleanup."""
    if not hasattr(os, "geteuid") or os.geteuid() == 0:
        pytest.skip("permission bits are not enforced for this user")
    sub = data_root / "safe" / "sub"
    os.chmod(str(sub), 0)
    yield sub
    os.chmod(str(sub), 0o755)


@pytest.fixture
def host_config(data_root):
    return HostConfig(allowed_root=str(data_root), platform="posix")


@pytest.fixture
def channel():
    channel = ExecutionChannel.local(RoleAuthorizer())
    yield channel
    channel.close()
