"""
Shared type definitions for schemas.

Layering:
- This module provides FOUNDATION types (BaseStrictModel, PermissiveModel)
- The session/ package builds the record model on PermissiveModel
- The operations module builds result value objects on BaseStrictModel
"""

from __future__ import annotations

from datetime import UTC, datetime

import pydantic

# ==============================================================================
# Base Strict Model (Foundation)
# ==============================================================================


class BaseStrictModel(pydantic.BaseModel):
    """
    Base for report values built by this package, never by decoding logs.

    A misspelled or stray field is a programming error here, so construction
    fails instead of carrying the value along.
    """

    model_config = pydantic.ConfigDict(
        extra='forbid',
        strict=True,
        frozen=True,
    )


# ==============================================================================
# Permissive Model (Foundation)
# ==============================================================================


class PermissiveModel(pydantic.BaseModel):
    """
    Foundation permissive model for data read from session logs.

    Symmetry with BaseStrictModel:
    - BaseStrictModel: extra='forbid' (rejects unknown fields)
    - PermissiveModel: extra='allow' (accepts unknown fields)

    Every JSON key that is not a declared field is kept in the model's extra
    map, in the order it was read, and is emitted again by model_dump(). This
    is what makes parse -> dump a lossless round trip for logs written by
    newer Claude Code releases.

    Also usable as the LAST type in typed unions to catch unknown structures:

        MessageContent = Annotated[
            TextContent | ToolUseContent | UnknownContent,
            pydantic.Field(union_mode='left_to_right'),
        ]
    """

    model_config = pydantic.ConfigDict(
        extra='allow',  # Accept unknown fields (graceful fallback)
        strict=True,  # Strict type coercion for known fields
        frozen=True,  # Immutable after creation
    )

    @property
    def unknown_fields(self) -> dict[str, object]:
        """Fields captured verbatim because the model does not name them."""
        return dict(self.__pydantic_extra__) if self.__pydantic_extra__ else {}

    @property
    def has_unknown_fields(self) -> bool:
        return bool(self.__pydantic_extra__)


# ==============================================================================
# Timestamps
# ==============================================================================


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 log timestamp into an aware UTC datetime.

    Naive timestamps are taken to be UTC, matching what the emitter writes.

    Raises:
        ValueError: If the string is not ISO-8601.
    """
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
