"""
copydata Error Types

Exception hierarchy for syntax, containment, channel and copy failures.
Each rejection category is its own type so callers can tell "the agent
refused" from "the path is unsafe" without parsing messages.
"""

from enum import Enum
from typing import List, Optional


class ContainmentFailure(Enum):
    """Which containment rule was violated."""
    OUTSIDE_ROOT = "outside_root"
    SYMLINK_ESCAPE = "symlink_escape"
    UNREADABLE = "unreadable"


class CopyDataError(Exception):
    """Base class for every copydata failure.

    ``manifest`` holds the entry names already copied into the workspace
    when the failure interrupted a multi-fragment copy.
    """

    def __init__(self, message: str, manifest: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.manifest = list(manifest or [])

    def __str__(self) -> str:
        return self.message


class PathSyntaxError(CopyDataError, ValueError):
    """Configured path fragment rejected by string inspection."""

    def __init__(self, message: str, rule=None, fragment: Optional[str] = None):
        super().__init__(message)
        self.rule = rule
        self.fragment = fragment


class SourceNotFoundError(CopyDataError):
    """Configured fragment does not exist under the allowed root."""

    def __init__(self, fragment: str):
        super().__init__(f"folder '{fragment}' not found")
        self.fragment = fragment


class ContainmentError(CopyDataError, PermissionError):
    """Candidate resolves outside the allowed root."""

    def __init__(self, message: str, kind: ContainmentFailure,
                 fragment: Optional[str] = None, entry: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.fragment = fragment
        # Escaping entry relative to the candidate, for descendant escapes
        self.entry = entry


class AuthorizationError(CopyDataError, PermissionError):
    """Hosting node refused to run a unit of work."""


class ChannelError(CopyDataError):
    """Execution channel could not complete a unit of work."""

    def __init__(self, message: str, status=None):
        super().__init__(message)
        self.status = status


class CopyIOError(CopyDataError, OSError):
    """Filesystem failure while copying or changing permissions."""

    def __init__(self, message: str, cause: Optional[OSError] = None):
        super().__init__(message)
        self.cause = cause


class BuildCancelledError(CopyDataError):
    """Copy sequence aborted at a blocking boundary."""
