"""
Unit tests for the sandboxed copy engine.
"""

import os
import stat
import threading

import pytest
from unittest.mock import MagicMock, patch

from copydata import copy_engine
from copydata.config import CopyDataConfig
from copydata.containment import OUTSIDE_ROOT_MESSAGE, SYMLINK_ESCAPE_MESSAGE
from copydata.copy_engine import (
    CopyManifest,
    CopySession,
    SandboxedCopyEngine,
    make_executable,
    remove_entries,
    run_build,
)
from copydata.errors import (
    AuthorizationError,
    BuildCancelledError,
    ContainmentError,
    ContainmentFailure,
    CopyIOError,
    PathSyntaxError,
    SourceNotFoundError,
)
from copydata.channel import ExecutionChannel
from copydata.path_syntax import PathRule
from copydata.units import DenyAllAuthorizer


@pytest.fixture
def engine(host_config, channel):
    return SandboxedCopyEngine(host_config, channel)


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "workspace"
    ws.mkdir()
    return ws


class TestCopyManifest:
    """Test the ordered, de-duplicated manifest."""

    def test_order_and_dedup(self):
        manifest = CopyManifest()
        manifest.add("b")
        manifest.add("a")
        manifest.add("b")

        assert manifest.names == ["b", "a"]
        assert len(manifest) == 2
        assert "a" in manifest

    def test_frozen_rejects_add(self):
        manifest = CopyManifest()
        manifest.add("a")
        manifest.freeze()

        with pytest.raises(RuntimeError):
            manifest.add("b")
        assert manifest.frozen is True

    def test_names_is_a_copy(self):
        manifest = CopyManifest()
        manifest.add("a")
        manifest.names.append("x")

        assert manifest.names == ["a"]


class TestScenarios:
    """End-to-end behaviour against a real allowed root."""

    def test_plain_copy(self, engine, data_root, workspace):
        """Test a plain fragment is copied and recorded."""
        session = engine.begin(CopyDataConfig(folder_path="safe"), str(workspace))

        assert session.manifest.names == ["file.txt", "sub"]
        assert session.manifest.frozen is True
        assert (workspace / "file.txt").read_text() == "hello"
        assert (workspace / "sub" / "nested.txt").read_text() == "nested"

    def test_traversal_rejected_before_filesystem_access(self, host_config, workspace):
        """Test syntax rejection happens before the channel is used."""
        channel = MagicMock(spec=ExecutionChannel)
        engine = SandboxedCopyEngine(host_config, channel)

        with pytest.raises(PathSyntaxError) as exc_info:
            engine.begin(CopyDataConfig(folder_path="../outside"), str(workspace))

        assert str(exc_info.value) == "path traversal is not allowed"
        assert exc_info.value.rule is PathRule.TRAVERSAL
        channel.dispatch.assert_not_called()
        channel.call.assert_not_called()
        assert os.listdir(str(workspace)) == []

    def test_top_level_symlink_rejected(self, engine, data_root, workspace, symlinks_supported):
        """Test a fragment that is a link out of the root is refused."""
        os.symlink(str(data_root.parent / "outside"), str(data_root / "evil"))

        with pytest.raises(ContainmentError) as exc_info:
            engine.begin(CopyDataConfig(folder_path="evil"), str(workspace))

        assert exc_info.value.kind is ContainmentFailure.OUTSIDE_ROOT
        assert OUTSIDE_ROOT_MESSAGE in str(exc_info.value)
        assert SYMLINK_ESCAPE_MESSAGE in str(exc_info.value)
        assert os.listdir(str(workspace)) == []

    def test_descendant_symlink_rejected(self, engine, data_root, workspace, symlinks_supported):
        """Test a link beneath the fragment blocks the whole fragment."""
        os.symlink(str(data_root.parent / "outside"), str(data_root / "safe" / "tmp"))

        with pytest.raises(ContainmentError) as exc_info:
            engine.begin(CopyDataConfig(folder_path="safe"), str(workspace))

        assert exc_info.value.kind is ContainmentFailure.SYMLINK_ESCAPE
        assert str(exc_info.value) == SYMLINK_ESCAPE_MESSAGE
        assert not (workspace / "file.txt").exists()
        assert exc_info.value.manifest == []

    def test_unreadable_subdirectory_rejected(self, engine, data_root, workspace, unreadable_subdir):
        """Test an unlistable directory blocks the copy instead of crashing it."""
        with pytest.raises(ContainmentError) as exc_info:
            engine.begin(CopyDataConfig(folder_path="safe"), str(workspace))

        assert exc_info.value.kind is ContainmentFailure.UNREADABLE
        assert not (workspace / "file.txt").exists()

    def test_missing_fragment(self, engine, workspace):
        with pytest.raises(SourceNotFoundError) as exc_info:
            engine.begin(CopyDataConfig(folder_path="nope"), str(workspace))

        assert str(exc_info.value) == "folder 'nope' not found"

    def test_empty_fragment_rejected(self, engine, workspace):
        with pytest.raises(PathSyntaxError) as exc_info:
            engine.begin(CopyDataConfig(folder_path="safe,,other"), str(workspace))

        assert exc_info.value.rule is PathRule.EMPTY

    def test_agent_refusal(self, host_config, workspace):
        """Test an agent refusal aborts the copy as an authorization failure."""
        engine = SandboxedCopyEngine(host_config, ExecutionChannel.local(DenyAllAuthorizer()))

        with pytest.raises(AuthorizationError):
            engine.begin(CopyDataConfig(folder_path="safe"), str(workspace))

        assert os.listdir(str(workspace)) == []


class TestMultipleFragments:
    """Test ordering and short-circuit across fragments."""

    def test_all_fragments_copied_in_order(self, engine, workspace):
        session = engine.begin(CopyDataConfig(folder_path="other, safe"), str(workspace))

        assert session.manifest.names == ["tool.sh", "file.txt", "sub"]

    def test_later_failure_keeps_earlier_copy(self, engine, workspace):
        """Test no rollback: earlier fragments stay and are reported."""
        with pytest.raises(SourceNotFoundError) as exc_info:
            engine.begin(CopyDataConfig(folder_path="other,missing,safe"), str(workspace))

        assert exc_info.value.manifest == ["tool.sh"]
        assert (workspace / "tool.sh").exists()
        assert not (workspace / "file.txt").exists()

    def test_single_file_fragment(self, engine, workspace):
        session = engine.begin(CopyDataConfig(folder_path="safe/file.txt"), str(workspace))

        assert session.manifest.names == ["file.txt"]
        assert (workspace / "file.txt").read_text() == "hello"

    def test_overwrites_existing_workspace_entries(self, engine, workspace):
        (workspace / "file.txt").write_text("stale")
        (workspace / "sub").mkdir()

        engine.begin(CopyDataConfig(folder_path="safe"), str(workspace))

        assert (workspace / "file.txt").read_text() == "hello"
        assert (workspace / "sub" / "nested.txt").exists()

    def test_workspace_created(self, engine, tmp_path):
        target = tmp_path / "fresh" / "ws"

        engine.begin(CopyDataConfig(folder_path="safe"), str(target))

        assert (target / "file.txt").exists()


class TestExecutableBits:
    """Test the optional chmod step."""

    def test_files_made_executable(self, engine, workspace):
        engine.begin(CopyDataConfig(folder_path="safe", make_files_executable=True), str(workspace))

        for path in (workspace / "file.txt", workspace / "sub" / "nested.txt"):
            assert stat.S_IMODE(os.stat(str(path)).st_mode) == 0o755

    def test_not_executable_by_default(self, engine, workspace):
        engine.begin(CopyDataConfig(folder_path="safe"), str(workspace))

        assert not os.stat(str(workspace / "file.txt")).st_mode & stat.S_IXUSR

    def test_symlink_targets_untouched(self, tmp_path, symlinks_supported):
        target = tmp_path / "target.txt"
        target.write_text("x")
        os.chmod(str(target), 0o644)
        tree = tmp_path / "tree"
        tree.mkdir()
        os.symlink(str(target), str(tree / "link"))

        changed = make_executable([str(tree)])

        assert changed == 0
        assert stat.S_IMODE(os.stat(str(target)).st_mode) == 0o644

    def test_copied_links_stay_links(self, engine, data_root, workspace, symlinks_supported):
        """Test internal symlinks are copied as links, not followed."""
        os.symlink(str(data_root / "other" / "tool.sh"), str(data_root / "safe" / "tool"))

        engine.begin(CopyDataConfig(folder_path="safe", make_files_executable=True), str(workspace))

        assert os.path.islink(str(workspace / "tool"))
        assert stat.S_IMODE(os.stat(str(data_root / "other" / "tool.sh")).st_mode) != 0o755


class TestTeardown:
    """Test CopySession.end()."""

    def test_delete_after(self, engine, workspace):
        (workspace / "keep.txt").write_text("mine")
        session = engine.begin(CopyDataConfig(folder_path="safe", delete_files_after_build=True),
                               str(workspace))

        assert session.end() is True
        assert sorted(os.listdir(str(workspace))) == ["keep.txt"]

    def test_no_delete_by_default(self, engine, workspace):
        session = engine.begin(CopyDataConfig(folder_path="safe"), str(workspace))

        assert session.end() is True
        assert (workspace / "file.txt").exists()

    def test_end_twice(self, engine, workspace):
        session = engine.begin(CopyDataConfig(folder_path="safe", delete_files_after_build=True),
                               str(workspace))

        assert session.end() is True
        assert session.end() is True

    def test_missing_entries_tolerated(self, workspace):
        manifest = CopyManifest()
        manifest.add("gone")
        manifest.add("also-gone")

        assert CopySession(str(workspace), manifest, delete_after=True).end() is True

    def test_delete_failure_does_not_raise(self, workspace):
        (workspace / "a.txt").write_text("x")

        with patch("copydata.copy_engine.os.unlink", side_effect=PermissionError("denied")):
            assert remove_entries(str(workspace), ["a.txt"]) == 0

    def test_symlink_removed_not_followed(self, tmp_path, workspace, symlinks_supported):
        target_dir = tmp_path / "elsewhere"
        target_dir.mkdir()
        (target_dir / "keep.txt").write_text("x")
        os.symlink(str(target_dir), str(workspace / "link"))

        assert remove_entries(str(workspace), ["link"]) == 1
        assert (target_dir / "keep.txt").exists()


class TestCancellation:
    """Test the cancel event and interrupt handling."""

    def test_cancel_before_start(self, engine, workspace):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(BuildCancelledError):
            engine.begin(CopyDataConfig(folder_path="safe"), str(workspace), cancel_event=cancel)

        assert os.listdir(str(workspace)) == []

    def test_cancel_mid_copy_tears_down(self, engine, workspace):
        """Test cancellation between entries removes what was copied."""
        cancel = threading.Event()
        real_add = CopyManifest.add

        def add_then_cancel(manifest, name):
            real_add(manifest, name)
            cancel.set()

        config = CopyDataConfig(folder_path="safe", delete_files_after_build=True)
        with patch.object(CopyManifest, "add", add_then_cancel):
            with pytest.raises(BuildCancelledError) as exc_info:
                engine.begin(config, str(workspace), cancel_event=cancel)

        assert exc_info.value.manifest == ["file.txt"]
        assert os.listdir(str(workspace)) == []

    def test_cancel_without_delete_keeps_entries(self, engine, workspace):
        cancel = threading.Event()
        real_add = CopyManifest.add

        def add_then_cancel(manifest, name):
            real_add(manifest, name)
            cancel.set()

        with patch.object(CopyManifest, "add", add_then_cancel):
            with pytest.raises(BuildCancelledError):
                engine.begin(CopyDataConfig(folder_path="safe"), str(workspace), cancel_event=cancel)

        assert os.listdir(str(workspace)) == ["file.txt"]

    def test_keyboard_interrupt_tears_down(self, engine, workspace):
        config = CopyDataConfig(folder_path="other,safe", delete_files_after_build=True)
        real_copy = copy_engine._copy_entry
        calls = []

        def copy_then_interrupt(source, target):
            calls.append(source)
            if len(calls) > 1:
                raise KeyboardInterrupt()
            real_copy(source, target)

        with patch("copydata.copy_engine._copy_entry", side_effect=copy_then_interrupt):
            with pytest.raises(KeyboardInterrupt):
                engine.begin(config, str(workspace))

        assert len(calls) == 2
        assert os.listdir(str(workspace)) == []


class TestCopyErrors:
    """Test I/O failures during the copy."""

    def test_copy_failure_wrapped(self, engine, workspace):
        with patch("copydata.copy_engine._copy_entry", side_effect=PermissionError(13, "Permission denied")):
            with pytest.raises(CopyIOError) as exc_info:
                engine.begin(CopyDataConfig(folder_path="safe"), str(workspace))

        assert "Permission denied" in str(exc_info.value)
        assert isinstance(exc_info.value.cause, PermissionError)
        assert exc_info.value.manifest == []


class TestRunBuild:
    """Test the build lifecycle glue."""

    def test_step_runs_and_teardown_follows(self, host_config, channel, workspace):
        seen = []

        def step(ws):
            seen.extend(sorted(os.listdir(ws)))
            return "built"

        config = CopyDataConfig(folder_path="safe", delete_files_after_build=True)
        result = run_build(config, host_config, str(workspace), step, channel=channel)

        assert result == "built"
        assert seen == ["file.txt", "sub"]
        assert os.listdir(str(workspace)) == []

    def test_teardown_after_failed_step(self, host_config, channel, workspace):
        config = CopyDataConfig(folder_path="safe", delete_files_after_build=True)

        with pytest.raises(RuntimeError):
            run_build(config, host_config, str(workspace),
                      MagicMock(side_effect=RuntimeError("build failed")), channel=channel)

        assert os.listdir(str(workspace)) == []
