"""
Form Validation

Configuration-time checks for the folder path field. check_folder_path()
never touches the filesystem; check_folder_path_exists() additionally asks the
hosting node whether every fragment exists and stays inside the allowed root.

Both return a FormValidation instead of raising, so a configuration form can
show the message next to the field.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .channel import ExecutionChannel
from .config import HostConfig
from .containment import ContainmentChecker
from .errors import AuthorizationError, ChannelError
from .path_syntax import Platform, validate_path_syntax
from .resolver import CanonicalPathResolver

logger = logging.getLogger(__name__)


class ValidationKind(Enum):
    OK = "ok"
    ERROR = "error"


@dataclass(frozen=True)
class FormValidation:
    """Result shown beside a form field."""
    kind: ValidationKind
    message: str = ""

    @classmethod
    def ok(cls, message: str = "") -> "FormValidation":
        return cls(ValidationKind.OK, message)

    @classmethod
    def error(cls, message: str) -> "FormValidation":
        return cls(ValidationKind.ERROR, message)

    @property
    def is_ok(self) -> bool:
        return self.kind is ValidationKind.OK


def _split(value: Optional[str], delimiter: str):
    if value is None or not value.strip():
        return [value or ""]
    return [part.strip() for part in value.split(delimiter)]


def check_folder_path(value: Optional[str],
                      platform: Union[Platform, str, None] = None,
                      delimiter: str = ",") -> FormValidation:
    """Syntax check of every fragment in ``value``; first failure wins."""
    for fragment in _split(value, delimiter):
        verdict = validate_path_syntax(fragment, platform)
        if not verdict.ok:
            return FormValidation.error(verdict.reason)
    return FormValidation.ok()


def check_folder_path_exists(value: Optional[str], host_config: HostConfig,
                             channel: Optional[ExecutionChannel] = None,
                             delimiter: str = ",") -> FormValidation:
    """
    Syntax, existence and containment check of every fragment.

    Channel and authorization failures are reported as form errors; the field
    cannot be judged when the hosting node is unreachable.
    """
    syntax = check_folder_path(value, host_config.platform, delimiter)
    if not syntax.is_ok:
        return syntax

    channel = channel or ExecutionChannel.from_env()
    resolver = CanonicalPathResolver(channel)
    checker = ContainmentChecker(resolver)
    root = host_config.allowed_root

    try:
        for fragment in _split(value, delimiter):
            candidate = os.path.join(root, fragment)
            if not resolver.resolve(candidate).exists:
                return FormValidation.error(f"folder '{fragment}' not found")
            verdict = checker.check(root, candidate)
            if not verdict.allowed:
                return FormValidation.error(verdict.reason)
    except (AuthorizationError, ChannelError) as e:
        logger.warning("folder path could not be evaluated: %s", e)
        return FormValidation.error(f"Unable to evaluate given folder: {e}")

    return FormValidation.ok()
