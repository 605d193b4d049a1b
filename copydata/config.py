"""
copydata Configuration

Build-time options for the copy wrapper and the host-owned containment
settings. The allowed root lives in HostConfig only, so nothing a job
configures can move it.
"""

import os
from typing import List

from pydantic import BaseModel, Field, field_validator

from .path_syntax import Platform


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class CopyDataConfig(BaseModel):
    """Per-job options, as entered in the job configuration form."""

    folder_path: str = Field(
        default="",
        description="Fragment(s) relative to the allowed root, delimiter-separated"
    )

    make_files_executable: bool = Field(
        default=False,
        description="chmod 0755 every copied file"
    )

    delete_files_after_build: bool = Field(
        default=False,
        description="Remove copied entries from the workspace when the build ends"
    )

    delimiter: str = Field(
        default=",",
        min_length=1,
        description="Separator between configured fragments"
    )

    def fragments(self) -> List[str]:
        """Split folder_path on the delimiter and trim each fragment.

        Empty fragments are kept so the syntax check can reject them.
        """
        return [part.strip() for part in self.folder_path.split(self.delimiter)]

    @classmethod
    def from_env(cls) -> 'CopyDataConfig':
        """Load configuration from environment variables."""
        return cls(
            folder_path=os.getenv('COPYDATA_FOLDER_PATH', ''),
            make_files_executable=_env_flag('COPYDATA_MAKE_EXECUTABLE'),
            delete_files_after_build=_env_flag('COPYDATA_DELETE_AFTER'),
            delimiter=os.getenv('COPYDATA_DELIMITER', ','),
        )


class HostConfig(BaseModel):
    """Containment rules owned by the hosting environment."""

    allowed_root: str = Field(
        description="Absolute directory every copy source must resolve under"
    )

    platform: Platform = Field(
        default_factory=Platform.current,
        description="Path grammar used for syntax validation"
    )

    @field_validator('allowed_root')
    @classmethod
    def validate_allowed_root(cls, v):
        """Allowed root must be absolute."""
        if not v or not os.path.isabs(v):
            raise ValueError('allowed_root must be an absolute path')
        return v

    @classmethod
    def from_env(cls) -> 'HostConfig':
        """Load host settings from environment variables."""
        kwargs = {'allowed_root': os.getenv('COPYDATA_ALLOWED_ROOT', '')}
        platform = os.getenv('COPYDATA_PLATFORM')
        if platform:
            kwargs['platform'] = platform.lower()
        return cls(**kwargs)


class AgentConfig(BaseModel):
    """Authorization policy of an execution agent."""

    allowed_roles: List[str] = Field(
        default_factory=lambda: ["*"],
        description="Roles whose units this agent will run"
    )

    @classmethod
    def from_env(cls) -> 'AgentConfig':
        raw = os.getenv('COPYDATA_AGENT_ALLOWED_ROLES', '*')
        roles = [role.strip() for role in raw.split(',') if role.strip()]
        return cls(allowed_roles=roles)
