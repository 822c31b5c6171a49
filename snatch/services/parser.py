"""
Line parser - decodes one JSONL line into a typed session record.

Decoding is per line, never per file: a trailing partial line in a session
that is still being written must fail on its own without losing the records
before it. The streaming reader builds on these functions.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

import pydantic

from snatch.exceptions import ParseError, truncate_preview
from snatch.schemas.session.models import SessionRecord, SessionRecordAdapter


def _describe_validation_error(error: pydantic.ValidationError) -> str:
    """One-line summary of a pydantic error: first failure plus a count."""
    details = error.errors(include_url=False)
    first = details[0]
    location = '.'.join(str(part) for part in first['loc']) or '<root>'
    summary = f'{location}: {first["msg"]}'
    if len(details) > 1:
        summary += f' (+{len(details) - 1} more)'
    return summary


def parse_record(obj: Mapping[str, Any], line_no: int = 0, *, raw: str | None = None) -> SessionRecord:
    """
    Validate an already-decoded JSON object as a session record.

    Args:
        obj: Decoded JSON object
        line_no: 1-based line number, for error reporting
        raw: Original line text, used for the error preview when given

    Returns:
        The validated record

    Raises:
        ParseError: If the object is not a valid record
    """
    if not isinstance(obj, Mapping):
        preview = truncate_preview(raw if raw is not None else repr(obj))
        raise ParseError(line_no, f'expected a JSON object, got {type(obj).__name__}', preview)

    try:
        return SessionRecordAdapter.validate_python(obj)
    except pydantic.ValidationError as e:
        preview = truncate_preview(raw if raw is not None else json.dumps(obj, ensure_ascii=False))
        raise ParseError(line_no, _describe_validation_error(e), preview) from e


def parse_line(text: str, line_no: int) -> SessionRecord:
    """
    Decode one JSONL line into a session record.

    Args:
        text: Line content (surrounding whitespace is ignored)
        line_no: 1-based line number, for error reporting

    Returns:
        The validated record

    Raises:
        ParseError: If the line is not JSON, not an object, has an unknown
            record type, or violates the record schema
    """
    stripped = text.strip()
    try:
        obj = json.loads(stripped)
    except json.JSONDecodeError as e:
        raise ParseError(line_no, f'invalid JSON: {e.msg} at column {e.colno}', truncate_preview(stripped)) from e

    return parse_record(obj, line_no, raw=stripped)
