"""
copydata

Copies data from under an administrator-owned allowed root into a build
workspace, refusing any source that resolves outside that root.
"""

from .config import CopyDataConfig, HostConfig
from .containment import ContainmentChecker, ContainmentVerdict
from .copy_engine import CopyManifest, CopySession, SandboxedCopyEngine, run_build
from .errors import (
    AuthorizationError,
    BuildCancelledError,
    ChannelError,
    ContainmentError,
    CopyDataError,
    CopyIOError,
    PathSyntaxError,
    SourceNotFoundError,
)
from .path_syntax import Platform, validate_path_syntax
from .resolver import CanonicalPath, CanonicalPathResolver

__version__ = "0.1.0"

__all__ = [
    'CopyDataConfig',
    'HostConfig',
    'ContainmentChecker',
    'ContainmentVerdict',
    'CopyManifest',
    'CopySession',
    'SandboxedCopyEngine',
    'run_build',
    'AuthorizationError',
    'BuildCancelledError',
    'ChannelError',
    'ContainmentError',
    'CopyDataError',
    'CopyIOError',
    'PathSyntaxError',
    'SourceNotFoundError',
    'Platform',
    'validate_path_syntax',
    'CanonicalPath',
    'CanonicalPathResolver',
]
