#!/usr/bin/env python3
"""
================================================================================
copydata/copy_engine.py - Sandboxed Copy of Allowed-Root Data into a Workspace
================================================================================

PURPOSE:
    Copies the contents of one or more configured fragments (relative to the
    host's allowed root) into a build workspace, optionally marks the copied
    files executable, and hands back a session whose end() removes them again.

HOW IT WORKS (per fragment, in configured order):
    1. Syntax check of the fragment (no filesystem access yet)
    2. Existence check through the execution channel
    3. Containment verdict for the fragment and everything beneath it
    4. Copy of each direct child into the workspace; each child name is
       recorded in the manifest as soon as it is copied
    5. Optional chmod 0755 of every regular file that was copied

    The first failing fragment aborts the run. Entries copied for earlier
    fragments stay in the workspace; the raised error carries the manifest so
    the caller can still tear them down.

CANCELLATION:
    A threading.Event is checked before every channel round-trip and
    filesystem step. Cancellation (or KeyboardInterrupt) triggers a teardown
    attempt when delete-after-build is configured, then propagates.

KNOWN LIMITATION:
    A symlink planted between the containment verdict and the copy is not
    detected. Symlinks are copied as links, never followed.
================================================================================
"""

import logging
import os
import shutil
import threading
from typing import Callable, Iterator, List, Optional, TypeVar

from .channel import ExecutionChannel
from .config import CopyDataConfig, HostConfig
from .containment import ContainmentChecker
from .errors import (
    BuildCancelledError,
    CopyDataError,
    CopyIOError,
    SourceNotFoundError,
)
from .path_syntax import ensure_path_syntax
from .resolver import CanonicalPathResolver
from .telemetry import emit_event

logger = logging.getLogger(__name__)

EXECUTABLE_MODE = 0o755

T = TypeVar("T")


class CopyManifest:
    """Ordered set of top-level entry names copied into the workspace."""

    def __init__(self):
        self._names: List[str] = []
        self._frozen = False

    def add(self, name: str) -> None:
        if self._frozen:
            raise RuntimeError("manifest is frozen after the copy step")
        if name not in self._names:
            logger.debug("Storing file/folder name '%s'", name)
            self._names.append(name)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def names(self) -> List[str]:
        return list(self._names)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._names))

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, name: object) -> bool:
        return name in self._names


def remove_entries(workspace: str, names: List[str]) -> int:
    """
    Delete each named entry from the workspace.

    Missing entries are skipped. Failures are logged and reported through
    telemetry; teardown itself never raises. Returns how many entries were
    removed.
    """
    removed = 0
    for name in names:
        target = os.path.join(workspace, name)
        try:
            if os.path.isdir(target) and not os.path.islink(target):
                logger.debug("Deleting directory '%s'", name)
                shutil.rmtree(target)
            else:
                logger.debug("Deleting file '%s'", name)
                os.unlink(target)
            removed += 1
        except FileNotFoundError:
            logger.debug("Already gone: '%s'", name)
        except OSError as e:
            logger.warning("Failed to delete '%s': %s", name, e)
            emit_event("teardown_failed", f"failed to delete '{name}'",
                       level="warn", stage="teardown", error=str(e))
    return removed


def make_executable(paths: List[str]) -> int:
    """chmod 0755 every regular file at or under the given paths.

    Symlinks are skipped so their targets are never touched.
    """
    changed = 0
    pending = list(paths)
    while pending:
        current = pending.pop()
        if os.path.islink(current):
            continue
        if os.path.isdir(current):
            with os.scandir(current) as it:
                pending.extend(entry.path for entry in it)
        elif os.path.isfile(current):
            os.chmod(current, EXECUTABLE_MODE)
            changed += 1
    return changed


class CopySession:
    """Handle returned by begin(); end() performs the optional teardown."""

    def __init__(self, workspace: str, manifest: CopyManifest, delete_after: bool):
        self.workspace = workspace
        self.manifest = manifest
        self.delete_after = delete_after
        self._ended = False

    def end(self) -> bool:
        """Remove copied entries if configured. Idempotent; always True."""
        if self._ended:
            return True
        self._ended = True

        if self.delete_after:
            removed = remove_entries(self.workspace, self.manifest.names)
            emit_event("teardown", f"removed {removed} of {len(self.manifest)} entries",
                       stage="teardown", manifest_size=len(self.manifest))
        return True


class SandboxedCopyEngine:
    """Validates, contains and copies configured fragments."""

    def __init__(self, host_config: HostConfig, channel: Optional[ExecutionChannel] = None):
        self.host_config = host_config
        self.channel = channel or ExecutionChannel.from_env()

    def begin(self, config: CopyDataConfig, workspace: str,
              cancel_event: Optional[threading.Event] = None) -> CopySession:
        """
        Run the copy sequence for every configured fragment.

        RETURNS:
            CopySession holding the frozen manifest

        RAISES:
            PathSyntaxError, SourceNotFoundError, ContainmentError,
            AuthorizationError, ChannelError, CopyIOError, BuildCancelledError.
            Each carries the manifest of entries copied so far.
        """
        workspace = os.path.abspath(workspace)
        manifest = CopyManifest()
        session = CopySession(workspace, manifest, config.delete_files_after_build)

        # Fresh resolver and checker per invocation; nothing is shared across builds
        resolver = CanonicalPathResolver(self.channel)
        checker = ContainmentChecker(resolver)

        logger.info("Given folders: %s", config.folder_path)
        try:
            for fragment in config.fragments():
                self._copy_fragment(fragment, config, workspace, manifest,
                                    resolver, checker, cancel_event)
        except (BuildCancelledError, KeyboardInterrupt) as e:
            logger.warning("copy cancelled after %d entries", len(manifest))
            emit_event("cancelled", "copy cancelled", level="warn",
                       manifest_size=len(manifest))
            session.end()
            if isinstance(e, CopyDataError):
                e.manifest = manifest.names
            raise
        except CopyDataError as e:
            e.manifest = manifest.names
            raise

        manifest.freeze()
        return session

    def _copy_fragment(self, fragment: str, config: CopyDataConfig, workspace: str,
                       manifest: CopyManifest, resolver: CanonicalPathResolver,
                       checker: ContainmentChecker,
                       cancel_event: Optional[threading.Event]) -> None:
        root = self.host_config.allowed_root

        try:
            fragment = ensure_path_syntax(fragment, self.host_config.platform)
        except CopyDataError as e:
            self._rejected(fragment, "syntax", e)
            raise

        source = os.path.join(root, fragment)

        located = self._step(cancel_event, lambda: resolver.resolve(source))
        if not located.exists:
            error = SourceNotFoundError(fragment)
            self._rejected(fragment, "exists", error)
            raise error

        try:
            self._step(cancel_event, lambda: checker.enforce(root, source, fragment=fragment))
        except CopyDataError as e:
            if not isinstance(e, BuildCancelledError):
                self._rejected(fragment, "containment", e)
            raise

        logger.info("Copying data from '%s' to '%s'", fragment, workspace)
        copied = self._copy_contents(source, located.is_dir, workspace, manifest, cancel_event)

        if config.make_files_executable:
            logger.debug("Making executable")
            paths = [os.path.join(workspace, name) for name in copied]
            try:
                self._step(cancel_event, lambda: make_executable(paths))
            except OSError as e:
                raise CopyIOError(f"failed to make files executable: {e.strerror or e}", cause=e) from e

        emit_event("fragment_copied", f"copied {len(copied)} entries",
                   stage="copy", fragment=fragment, manifest_size=len(manifest))

    def _copy_contents(self, source: str, is_dir: bool, workspace: str,
                       manifest: CopyManifest,
                       cancel_event: Optional[threading.Event]) -> List[str]:
        """Copy the children of ``source`` (or ``source`` itself for a file)."""
        try:
            os.makedirs(workspace, exist_ok=True)
            if is_dir:
                with os.scandir(source) as it:
                    entries = sorted(((e.name, e.path) for e in it), key=lambda item: item[0])
            else:
                entries = [(os.path.basename(source), source)]
        except OSError as e:
            raise CopyIOError(f"failed to read source: {e.strerror or e}", cause=e) from e

        copied = []
        for name, path in entries:
            target = os.path.join(workspace, name)
            try:
                self._step(cancel_event, lambda: _copy_entry(path, target))
            except OSError as e:
                raise CopyIOError(f"failed to copy '{name}': {e.strerror or e}", cause=e) from e
            manifest.add(name)
            copied.append(name)
        return copied

    @staticmethod
    def _step(cancel_event: Optional[threading.Event], action: Callable[[], T]) -> T:
        if cancel_event is not None and cancel_event.is_set():
            raise BuildCancelledError("build cancelled")
        return action()

    @staticmethod
    def _rejected(fragment: str, stage: str, error: Exception) -> None:
        logger.warning("fragment '%s' rejected at %s: %s", fragment, stage, error)
        emit_event("fragment_rejected", str(error), level="error",
                   stage=stage, fragment=fragment, error=str(error))


def _copy_entry(source: str, target: str) -> None:
    if os.path.isdir(source) and not os.path.islink(source):
        shutil.copytree(source, target, symlinks=True, dirs_exist_ok=True)
        return

    # Replace an existing link or file; symlinks are recreated, not followed
    if os.path.islink(target) or (os.path.lexists(target) and not os.path.isdir(target)):
        os.unlink(target)
    shutil.copy2(source, target, follow_symlinks=False)


def run_build(config: CopyDataConfig, host_config: HostConfig, workspace: str,
              build_step: Callable[[str], T],
              channel: Optional[ExecutionChannel] = None,
              cancel_event: Optional[threading.Event] = None) -> T:
    """
    Build-lifecycle glue: begin, run the build step, always end.

    The build step receives the workspace path.
    """
    engine = SandboxedCopyEngine(host_config, channel)
    session = engine.begin(config, workspace, cancel_event)
    try:
        return build_step(session.workspace)
    finally:
        session.end()
