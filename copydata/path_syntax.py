"""
Path Syntax Validation

String-only pre-check of a configured path fragment. Runs before any
filesystem access, so it is safe to call from configuration forms where the
target filesystem may be unreachable.

RULES (first match wins):
    1. empty              -> "path cannot be empty"
    2. ".." segment       -> "path traversal is not allowed"
    3. leading "~"        -> "leading home-directory reference is not allowed"
    4. absolute form      -> "absolute paths are not allowed"
       bad characters     -> "path contains characters that are not allowed"

The platform branch follows the host that will resolve the path, never the
shape of the string itself.
"""

import os
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .errors import PathSyntaxError


class Platform(Enum):
    """Path grammar of the resolving host."""
    POSIX = "posix"
    WINDOWS = "windows"

    @classmethod
    def current(cls) -> "Platform":
        return cls.WINDOWS if os.name == "nt" else cls.POSIX

    @classmethod
    def coerce(cls, value: Union["Platform", str, None]) -> "Platform":
        if value is None:
            return cls.current()
        if isinstance(value, Platform):
            return value
        return cls(str(value).lower())


class PathRule(Enum):
    """Rule that rejected a fragment."""
    EMPTY = "empty"
    TRAVERSAL = "traversal"
    HOME = "home"
    ABSOLUTE = "absolute"
    CHARACTERS = "characters"


REASONS = {
    PathRule.EMPTY: "path cannot be empty",
    PathRule.TRAVERSAL: "path traversal is not allowed",
    PathRule.HOME: "leading home-directory reference is not allowed",
    PathRule.ABSOLUTE: "absolute paths are not allowed",
    PathRule.CHARACTERS: "path contains characters that are not allowed",
}

# Reserved by the Windows filename grammar
WINDOWS_FORBIDDEN_CHARS = frozenset('<>:"|?*')

_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:")
_SEPARATORS = re.compile(r"[\\/]+")


@dataclass(frozen=True)
class SyntaxVerdict:
    """Outcome of a syntax check."""
    ok: bool
    reason: Optional[str] = None
    rule: Optional[PathRule] = None

    @classmethod
    def accept(cls) -> "SyntaxVerdict":
        return cls(ok=True)

    @classmethod
    def reject(cls, rule: PathRule) -> "SyntaxVerdict":
        return cls(ok=False, reason=REASONS[rule], rule=rule)


def _has_control_chars(value: str) -> bool:
    return any(ord(ch) < 0x20 for ch in value)


def _segments(value: str):
    # Both conventions are folded together so "a\..\b" is caught on POSIX too
    normalized = value.replace(os.sep, "/")
    return _SEPARATORS.split(normalized)


def validate_path_syntax(value: Optional[str],
                         platform: Union[Platform, str, None] = None) -> SyntaxVerdict:
    """
    Judge one configured fragment by string inspection only.

    ARGS:
        value: raw fragment (surrounding whitespace is ignored)
        platform: resolving host's grammar; defaults to this host's OS

    RETURNS:
        SyntaxVerdict with the first violated rule, or ok=True
    """
    if value is None or not value.strip():
        return SyntaxVerdict.reject(PathRule.EMPTY)

    value = value.strip()
    platform = Platform.coerce(platform)

    if ".." in _segments(value):
        return SyntaxVerdict.reject(PathRule.TRAVERSAL)

    if value == "~" or value.startswith("~/") or value.startswith("~\\"):
        return SyntaxVerdict.reject(PathRule.HOME)

    if platform is Platform.WINDOWS:
        if _DRIVE_PREFIX.match(value):
            return SyntaxVerdict.reject(PathRule.ABSOLUTE)
        # UNC prefix, and the drive-root form "\dir"
        if value.startswith(("\\", "/")):
            return SyntaxVerdict.reject(PathRule.ABSOLUTE)
        if any(ch in WINDOWS_FORBIDDEN_CHARS for ch in value) or _has_control_chars(value):
            return SyntaxVerdict.reject(PathRule.CHARACTERS)
    else:
        if value.startswith("/"):
            return SyntaxVerdict.reject(PathRule.ABSOLUTE)
        if _has_control_chars(value):
            return SyntaxVerdict.reject(PathRule.CHARACTERS)

    return SyntaxVerdict.accept()


def ensure_path_syntax(value: Optional[str],
                       platform: Union[Platform, str, None] = None) -> str:
    """Validate a fragment and return it trimmed; raise PathSyntaxError otherwise."""
    verdict = validate_path_syntax(value, platform)
    if not verdict.ok:
        raise PathSyntaxError(verdict.reason, rule=verdict.rule, fragment=value)
    return value.strip()
