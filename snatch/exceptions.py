"""
Shared exceptions for claude-snatch.

Exception Hierarchy:
    SnatchError (base)
    ├── ParseError (one JSONL line could not be decoded into a record)
    ├── ValidationError (input rejected before parsing, e.g. over max_bytes)
    └── SessionIOError (the underlying byte source failed mid-read)

Schema generation changes and structural anomalies are reported as values
(see snatch.schemas.operations), never raised.
"""

from __future__ import annotations

PREVIEW_CHARS = 100


def truncate_preview(text: str, max_chars: int = PREVIEW_CHARS) -> str:
    """First max_chars characters of text, with '...' appended when cut.

    Slices by code point, so a multi-byte character is never split.
    """
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + '...'


class SnatchError(Exception):
    """Base exception for all claude-snatch errors."""


class ParseError(SnatchError):
    """Raised when one line of a session log is not a valid record."""

    def __init__(self, line: int, message: str, content_preview: str) -> None:
        self.line = line
        self.message = message
        self.content_preview = content_preview
        super().__init__(f'Line {line}: {message}')


class ValidationError(SnatchError):
    """Raised when an input is rejected before any line is read."""

    def __init__(self, message: str, *, size: int | None = None, limit: int | None = None) -> None:
        self.size = size
        self.limit = limit
        super().__init__(message)


class SessionIOError(SnatchError):
    """Raised when the byte source fails while a session is being read."""

    def __init__(self, line: int, cause: OSError) -> None:
        self.line = line
        self.cause = cause
        super().__init__(f'I/O error after line {line}: {cause}')
