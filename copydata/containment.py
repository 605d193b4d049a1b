"""
Containment Checking

Decides whether a candidate directory, and everything reachable beneath it,
resolves inside the allowed root.

HOW IT WORKS:
    1. Root and candidate are canonicalized separately, by the same unit on
       the same hosting node.
    2. The candidate passes if it equals the root or starts with root + sep.
    3. A candidate that does not exist yet is judged on its normalized form
       and not walked.
    4. An existing directory is walked on the hosting node (TreeScanUnit);
       the first escaping entry fails the whole verdict, and so does a
       subdirectory the walk cannot list.

Verdicts are computed fresh on every call. Nothing here remembers an earlier
answer for the same string, because the filesystem can change between calls.
The window between a verdict and the copy that follows it is not closed.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .errors import ContainmentError, ContainmentFailure
from .resolver import CanonicalPathResolver
from .units import TreeScanUnit, is_within

logger = logging.getLogger(__name__)

OUTSIDE_ROOT_MESSAGE = "source path is not within the allowed directory"
SYMLINK_ESCAPE_MESSAGE = "path contains symlinks that point outside the allowed directory"
UNREADABLE_MESSAGE = "path contains directories that cannot be read"


@dataclass(frozen=True)
class ContainmentVerdict:
    """Accept/reject decision with the rule that decided it."""
    allowed: bool
    reason: str
    kind: Optional[ContainmentFailure] = None
    entry: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


class ContainmentChecker:
    """Checks candidates against an allowed root through a resolver."""

    def __init__(self, resolver: CanonicalPathResolver):
        self.resolver = resolver

    def check(self, root: str, candidate: str) -> ContainmentVerdict:
        """
        Judge ``candidate`` against ``root``.

        RAISES:
            AuthorizationError / ChannelError from the resolver; those are not
            containment verdicts and are never folded into one.
        """
        canonical_root = self.resolver.resolve(root)
        canonical_candidate = self.resolver.resolve(candidate)

        if not is_within(canonical_root.path, canonical_candidate.path, canonical_root.sep):
            reason = OUTSIDE_ROOT_MESSAGE
            if canonical_candidate.is_symlink:
                reason = f"{OUTSIDE_ROOT_MESSAGE} ({SYMLINK_ESCAPE_MESSAGE})"
            return ContainmentVerdict(False, reason, ContainmentFailure.OUTSIDE_ROOT)

        if not canonical_candidate.exists:
            # Nothing to descend into; the copy step re-checks existence
            return ContainmentVerdict(True, "candidate is within the allowed directory")

        if canonical_candidate.is_dir:
            scan = self.resolver.channel.dispatch(TreeScanUnit(root, candidate))
            if scan.get("escaped"):
                return ContainmentVerdict(
                    False,
                    SYMLINK_ESCAPE_MESSAGE,
                    ContainmentFailure.SYMLINK_ESCAPE,
                    entry=scan.get("entry"),
                )
            if scan.get("unreadable"):
                return ContainmentVerdict(
                    False,
                    UNREADABLE_MESSAGE,
                    ContainmentFailure.UNREADABLE,
                    entry=scan.get("entry"),
                )
            logger.debug("tree scan clean: %s entries", scan.get("scanned"))

        return ContainmentVerdict(True, "candidate is within the allowed directory")

    def is_contained(self, root: str, candidate: str) -> bool:
        return self.check(root, candidate).allowed

    def enforce(self, root: str, candidate: str, fragment: Optional[str] = None) -> ContainmentVerdict:
        """Like check(), but raise ContainmentError on a negative verdict."""
        verdict = self.check(root, candidate)
        if not verdict.allowed:
            raise ContainmentError(verdict.reason, verdict.kind, fragment=fragment, entry=verdict.entry)
        return verdict
