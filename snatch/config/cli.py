"""
CLI configuration.

Defaults for the reader and aggregator options of the `snatch` commands.
Every value can be overridden per call with a command-line option, or
globally with an environment variable (SNATCH_ prefix), e.g.
SNATCH_MAX_BYTES=104857600.
"""

from __future__ import annotations

import pydantic

from snatch.config.base import BaseSnatchSettings, lazy_settings


class CliSettings(BaseSnatchSettings):
    """Settings for the snatch CLI."""

    LENIENT: bool = True  # Skip malformed lines instead of aborting
    MAX_BYTES: int = 0  # Refuse larger session files (0 = unlimited)
    MAX_RECORDED_ERRORS: int = 100  # Recent parse errors kept in stats
    WINDOW_HOURS: int = 5  # Billing block length
    LOG_LEVEL: str = 'WARNING'

    @pydantic.field_validator('MAX_BYTES', 'MAX_RECORDED_ERRORS')
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError('must be >= 0')
        return v

    @pydantic.field_validator('WINDOW_HOURS')
    @classmethod
    def validate_window_hours(cls, v: int) -> int:
        """Billing windows are whole hours within one day."""
        if not 1 <= v <= 24:
            raise ValueError('WINDOW_HOURS must be between 1-24')
        return v

    @pydantic.field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f'Unknown LOG_LEVEL: {v}')
        return level


# Module-level singleton (lazy-loaded)
settings = lazy_settings(CliSettings)
