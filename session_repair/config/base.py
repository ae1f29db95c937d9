"""
Base configuration for session repair services.

Settings are read from SESSION_REPAIR_* environment variables, optionally
from the .env file named by LOAD_ENV_FILE.
"""

from __future__ import annotations

import os
import pathlib
from typing import TypeVar

import lazy_object_proxy
import pydantic
import pydantic_settings

from session_repair.schemas.documents import DEFAULT_CONTENT_PART_TYPES
from session_repair.schemas.operations.plan import Strategy
from session_repair.schemas.operations.scan import HistoryPolicy

T = TypeVar('T', bound='RepairSettings')


class RepairSettings(pydantic_settings.BaseSettings):
    """Shared configuration for the repair engine and CLI."""

    model_config = pydantic_settings.SettingsConfigDict(
        env_prefix='SESSION_REPAIR_',
        env_file_encoding='utf-8',
        case_sensitive=True,  # Fail fast on misconfiguration
        extra='forbid',  # Reject unknown environment variables
    )

    # Application metadata
    APP_NAME: str = 'opencode-session-repair'
    VERSION: str = '0.1.0'

    # Store layout: {DATA_DIR}/storage/{session,message,part}/...
    DATA_DIR: pathlib.Path = pathlib.Path.home() / '.local' / 'share' / 'opencode'
    BACKUP_DIR_NAME: str = 'repair-backups'
    LOCK_DIR_NAME: str = 'repair-locks'

    DEFAULT_STRATEGY: Strategy = 'auto'

    # Request-history reconstruction policy (see services/history.py)
    HISTORY_SKIP_SYSTEM_MESSAGES: bool = True
    HISTORY_SKIP_ERRORED_ASSISTANT: bool = True
    HISTORY_SKIP_EMPTY_MESSAGES: bool = False
    HISTORY_CONTENT_PART_TYPES: frozenset[str] = DEFAULT_CONTENT_PART_TYPES

    @pydantic.field_validator('HISTORY_CONTENT_PART_TYPES')
    @classmethod
    def validate_content_part_types(cls, v: frozenset[str]) -> frozenset[str]:
        """Reasoning parts must count as content, otherwise no index could resolve to one."""
        if 'reasoning' not in v:
            raise ValueError("HISTORY_CONTENT_PART_TYPES must include 'reasoning'")
        return v

    @pydantic.field_validator('BACKUP_DIR_NAME', 'LOCK_DIR_NAME')
    @classmethod
    def validate_dir_name(cls, v: str) -> str:
        """Directory names are single path components under DATA_DIR."""
        if not v or '/' in v or v in ('.', '..', 'storage'):
            raise ValueError(f'Invalid directory name: {v!r}')
        return v

    @property
    def backup_dir(self) -> pathlib.Path:
        return self.DATA_DIR / self.BACKUP_DIR_NAME

    @property
    def lock_dir(self) -> pathlib.Path:
        return self.DATA_DIR / self.LOCK_DIR_NAME

    def history_policy(self) -> HistoryPolicy:
        return HistoryPolicy(
            skip_system_messages=self.HISTORY_SKIP_SYSTEM_MESSAGES,
            skip_errored_assistant=self.HISTORY_SKIP_ERRORED_ASSISTANT,
            skip_empty_messages=self.HISTORY_SKIP_EMPTY_MESSAGES,
            content_part_types=self.HISTORY_CONTENT_PART_TYPES,
        )


def get_settings(settings_class: type[T], env_file: str | None = None) -> T:
    """
    Build settings from the environment, plus a .env file when one is named.

    The file comes from env_file, else from LOAD_ENV_FILE. With neither set
    only SESSION_REPAIR_* variables are read.

    Raises:
        FileNotFoundError: If the named .env file is missing
        pydantic.ValidationError: If a value is invalid
    """
    named = env_file or os.getenv('LOAD_ENV_FILE')
    if not named:
        return settings_class(_env_file=None)

    env_path = pathlib.Path(named).expanduser().resolve()
    if not env_path.is_file():
        raise FileNotFoundError(f'LOAD_ENV_FILE does not exist: {env_path}')
    return settings_class(_env_file=env_path)


def lazy_settings(settings_class: type[T]) -> T:
    """Proxy that builds the settings on first attribute access, so importing never reads the environment."""
    return lazy_object_proxy.Proxy(lambda: get_settings(settings_class))


settings = lazy_settings(RepairSettings)
