"""
Canonical Path Resolution

Turns a location into its canonical form by running a CanonicalPathUnit on
the node that hosts the filesystem. A path string alone is never trusted to
describe where it leads.
"""

import os
from dataclasses import dataclass

from .channel import ExecutionChannel
from .errors import ChannelError
from .units import CanonicalPathUnit


@dataclass(frozen=True)
class CanonicalPath:
    """Resolved location as reported by the hosting node."""
    path: str
    exists: bool
    is_dir: bool
    is_symlink: bool
    sep: str = os.sep


class CanonicalPathResolver:
    """Resolves paths through an execution channel. Results are never cached."""

    def __init__(self, channel: ExecutionChannel):
        if channel is None:
            raise ValueError("an execution channel is required")
        self.channel = channel

    def resolve(self, path: str) -> CanonicalPath:
        """
        Canonicalize ``path`` on its hosting node.

        A location that does not exist comes back lexically normalized with
        exists=False rather than as an error.

        RAISES:
            AuthorizationError: the hosting node refused the unit
            ChannelError: transport failure or malformed reply
        """
        payload = self.channel.dispatch(CanonicalPathUnit(path))

        canonical = payload.get("path")
        if not isinstance(canonical, str) or not canonical:
            raise ChannelError("agent returned no canonical path")

        return CanonicalPath(
            path=canonical,
            exists=bool(payload.get("exists")),
            is_dir=bool(payload.get("is_dir")),
            is_symlink=bool(payload.get("is_symlink")),
            sep=payload.get("sep") or os.sep,
        )
