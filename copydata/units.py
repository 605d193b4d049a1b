"""
Units of Work

Self-contained requests that run on the node hosting the filesystem.

PROTOCOL:
    1. The caller builds a unit (e.g. CanonicalPathUnit) and serializes it:
           {"unit": "canonical_path", "role": "*", "params": {...}}
    2. A transport carries the payload to the hosting node.
    3. The hosting node rebuilds the unit with unit_from_dict() and hands it to
       a UnitExecutor, which authorizes it against the unit's declared role
       BEFORE running it.
    4. The response is {"ok": true, "result": {...}} or
       {"ok": false, "error": <code>, "message": <text>}.

SECURITY:
    - Authorization is mandatory even though every unit here declares
      ANY_ROLE. A missing authorizer is an error, not an implicit allow.
    - The role used for authorization is the one declared by the unit class;
      the "role" field on the wire is informational only.
    - Unknown unit names are rejected as invalid requests.
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional, Protocol, Type

from .errors import AuthorizationError

logger = logging.getLogger(__name__)

# "Unknown/any" role: the most permissive declaration a unit can make
ANY_ROLE = "*"

ERROR_AUTHORIZATION = "authorization_denied"
ERROR_INVALID_REQUEST = "invalid_request"
ERROR_UNIT_FAILED = "unit_failed"


# =============================================================================
# Authorization
# =============================================================================


class Authorizer(Protocol):
    """Hosting-side policy hook consulted before any unit runs."""

    def check(self, unit: "WorkUnit", role: str) -> Optional[bool]:
        """Raise AuthorizationError or return False to deny."""
        ...


class RoleAuthorizer:
    """Allows units whose declared role is in the configured set.

    A unit declaring ANY_ROLE is only allowed when "*" itself is permitted.
    """

    def __init__(self, allowed_roles: Iterable[str] = (ANY_ROLE,)):
        self.allowed_roles = frozenset(allowed_roles)

    def check(self, unit: "WorkUnit", role: str) -> bool:
        if ANY_ROLE in self.allowed_roles or role in self.allowed_roles:
            return True
        raise AuthorizationError(f"unit '{unit.name}' with role '{role}' is not permitted on this agent")


class DenyAllAuthorizer:
    """Refuses every unit. Used for locked-down agents."""

    def check(self, unit: "WorkUnit", role: str) -> bool:
        raise AuthorizationError(f"unit '{unit.name}' denied by agent policy")


def authorize(unit: "WorkUnit", authorizer: Optional[Authorizer]) -> None:
    """Run the authorizer for a unit; raise AuthorizationError on any refusal."""
    if authorizer is None:
        raise AuthorizationError(f"no authorizer supplied for unit '{unit.name}'")

    try:
        allowed = authorizer.check(unit, unit.required_role)
    except AuthorizationError:
        raise
    except Exception as e:
        raise AuthorizationError(f"authorizer failed for unit '{unit.name}': {e}") from e

    if allowed is False:
        raise AuthorizationError(f"unit '{unit.name}' denied by agent policy")


# =============================================================================
# Canonicalization primitives (hosting side)
# =============================================================================


def canonical_local(path: str) -> str:
    """Symlink-resolved, normalized absolute form of a path on this host.

    Missing trailing components are normalized lexically, so a path that does
    not exist yet still gets a comparable form.
    """
    return os.path.normcase(os.path.realpath(os.path.abspath(path)))


def is_within(canonical_root: str, canonical_candidate: str, sep: str = os.sep) -> bool:
    """True if candidate equals root or sits below it.

    The separator guard keeps "/data/app-evil" from matching "/data/app".
    """
    if canonical_candidate == canonical_root:
        return True
    prefix = canonical_root if canonical_root.endswith(sep) else canonical_root + sep
    return canonical_candidate.startswith(prefix)


def _require_path(field: str, value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise ValueError(f"{field} must be a non-empty string")
    if "\x00" in value:
        raise ValueError(f"{field} must not contain NUL bytes")
    return value


# =============================================================================
# Units
# =============================================================================


class WorkUnit(ABC):
    """A unit of work that must run where the filesystem is mounted."""

    name: str = ""
    required_role: str = ANY_ROLE

    @abstractmethod
    def params(self) -> Dict[str, Any]:
        """Wire parameters."""

    @abstractmethod
    def run(self) -> Dict[str, Any]:
        """Execute on the hosting node. Only called after authorization."""

    def to_dict(self) -> Dict[str, Any]:
        return {"unit": self.name, "role": self.required_role, "params": self.params()}


class CanonicalPathUnit(WorkUnit):
    """Resolve one location to its canonical form."""

    name = "canonical_path"

    def __init__(self, path: str):
        self.path = _require_path("path", path)

    def params(self) -> Dict[str, Any]:
        return {"path": self.path}

    def run(self) -> Dict[str, Any]:
        lexical = os.path.abspath(self.path)
        return {
            "path": canonical_local(lexical),
            "exists": os.path.exists(lexical),
            "is_dir": os.path.isdir(lexical),
            "is_symlink": os.path.islink(lexical),
            "sep": os.sep,
        }


class TreeScanUnit(WorkUnit):
    """
    Walk everything under ``path`` and report the first entry whose canonical
    form escapes ``root``.

    Uses an explicit stack. Symlinked directories are followed once (tracked by
    canonical path) so a link to a sibling area inside the root is still
    inspected, and link cycles terminate.

    A subdirectory that cannot be listed stops the walk with ``unreadable``
    set, since its contents were never inspected.
    """

    name = "tree_scan"

    def __init__(self, root: str, path: str):
        self.root = _require_path("root", root)
        self.path = _require_path("path", path)

    def params(self) -> Dict[str, Any]:
        return {"root": self.root, "path": self.path}

    def run(self) -> Dict[str, Any]:
        real_root = canonical_local(self.root)
        start = os.path.abspath(self.path)
        visited = {canonical_local(start)}
        pending = [start]
        scanned = 0

        while pending:
            current = pending.pop()
            try:
                with os.scandir(current) as it:
                    entries = sorted(it, key=lambda e: e.name)
            except PermissionError:
                if current == start:
                    raise
                return {
                    "escaped": False,
                    "unreadable": True,
                    "entry": os.path.relpath(current, start),
                    "scanned": scanned,
                }

            for entry in entries:
                scanned += 1
                real = canonical_local(entry.path)
                if not is_within(real_root, real):
                    return {
                        "escaped": True,
                        "unreadable": False,
                        "entry": os.path.relpath(entry.path, start),
                        "scanned": scanned,
                    }
                if entry.is_dir(follow_symlinks=True) and real not in visited:
                    visited.add(real)
                    pending.append(entry.path)

        return {"escaped": False, "unreadable": False, "entry": None, "scanned": scanned}


UNIT_TYPES: Dict[str, Type[WorkUnit]] = {
    CanonicalPathUnit.name: CanonicalPathUnit,
    TreeScanUnit.name: TreeScanUnit,
}


def unit_from_dict(payload: Dict[str, Any]) -> WorkUnit:
    """Rebuild a unit from its wire form. Raises ValueError on bad input."""
    if not isinstance(payload, dict):
        raise ValueError("unit payload must be an object")

    name = payload.get("unit")
    unit_cls = UNIT_TYPES.get(name) if isinstance(name, str) else None
    if unit_cls is None:
        raise ValueError(f"unknown unit: {payload.get('unit')!r}")

    params = payload.get("params") or {}
    if not isinstance(params, dict):
        raise ValueError("unit params must be an object")

    try:
        return unit_cls(**params)
    except TypeError as e:
        raise ValueError(f"bad params for unit '{unit_cls.name}': {e}") from e


# =============================================================================
# Executor (hosting side)
# =============================================================================


class UnitExecutor:
    """Authorizes and runs units on the hosting node."""

    def __init__(self, authorizer: Optional[Authorizer]):
        self.authorizer = authorizer

    def execute(self, unit: WorkUnit) -> Dict[str, Any]:
        """Authorize, then run. AuthorizationError means the unit never ran."""
        authorize(unit, self.authorizer)
        return unit.run()

    def execute_payload(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Wire-level entry point used by every agent. Never raises."""
        try:
            unit = unit_from_dict(payload)
        except ValueError as e:
            return {"ok": False, "error": ERROR_INVALID_REQUEST, "message": str(e)}

        try:
            result = self.execute(unit)
        except AuthorizationError as e:
            logger.warning("unit %s refused: %s", unit.name, e)
            return {"ok": False, "error": ERROR_AUTHORIZATION, "message": str(e)}
        except OSError as e:
            return {"ok": False, "error": ERROR_UNIT_FAILED, "message": f"{type(e).__name__}: {e.strerror or e}"}
        except (TypeError, ValueError) as e:
            logger.warning("unit %s failed: %s", unit.name, e)
            return {"ok": False, "error": ERROR_UNIT_FAILED, "message": f"{type(e).__name__}: {e}"}

        return {"ok": True, "result": result}
