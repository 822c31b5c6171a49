"""
Settings plumbing for the snatch CLI.

Only the command-line layer reads settings. The parsing, tree and
aggregation services take every knob as an explicit argument.
"""

from __future__ import annotations

import os
import pathlib
from typing import TypeVar

import lazy_object_proxy
import pydantic_settings

ENV_FILE_VARIABLE = 'LOAD_ENV_FILE'

SettingsT = TypeVar('SettingsT', bound='BaseSnatchSettings')


class BaseSnatchSettings(pydantic_settings.BaseSettings):
    """Fields and loading rules every snatch settings class shares."""

    model_config = pydantic_settings.SettingsConfigDict(
        env_prefix='SNATCH_',
        env_file_encoding='utf-8',
        case_sensitive=True,
        extra='forbid',
    )

    APP_NAME: str = 'claude-snatch'
    VERSION: str = '0.1.0'


def resolve_env_file(env_file: str | None = None) -> pathlib.Path | None:
    """Return the dotenv file to load, or None to use the process environment alone.

    An explicit argument wins over the LOAD_ENV_FILE variable. A named file
    that does not exist raises FileNotFoundError instead of being skipped.
    """
    candidate = env_file or os.getenv(ENV_FILE_VARIABLE)
    if not candidate:
        return None

    path = pathlib.Path(candidate).expanduser().resolve()
    if not path.is_file():
        raise FileNotFoundError(f'Settings file not found: {path}')
    return path


def get_settings(settings_class: type[SettingsT], env_file: str | None = None) -> SettingsT:
    path = resolve_env_file(env_file)
    if path is None:
        return settings_class()
    return settings_class(_env_file=path)


def lazy_settings(settings_class: type[SettingsT]) -> SettingsT:
    """Build settings on first attribute access so importing the CLI stays side-effect free."""
    return lazy_object_proxy.Proxy(lambda: get_settings(settings_class))
