"""
Streaming reader - iterates a session log one record at a time.

Memory stays bounded by the longest line: the byte source is consumed
lazily and each line is decoded on its own. Two modes:

    lenient (default)  malformed lines and undecodable bytes are recorded in
                       ParseStats and skipped; an I/O failure is recorded and
                       ends iteration
    strict             the first ParseError or SessionIOError propagates

Usage:
    with SessionReader.open(path, max_bytes=50_000_000) as reader:
        for record in reader:
            ...
    print(reader.stats.success_rate)

Session liveness (detect_session_state) is classified from file metadata
only; nothing here waits for new data.
"""

from __future__ import annotations

import io
import logging
from collections import deque
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from pathlib import Path
from types import TracebackType
from typing import BinaryIO, Self

from snatch.exceptions import ParseError, SessionIOError, ValidationError, truncate_preview
from snatch.schemas.operations import SchemaWarning
from snatch.schemas.session.generations import SchemaVersion, detect, detect_schema_change
from snatch.schemas.session.models import SessionRecord
from snatch.services.parser import parse_line

logger = logging.getLogger(__name__)

DEFAULT_MAX_RECORDED_ERRORS = 100

type LineSource = Iterable[bytes] | Iterable[str]


# ==============================================================================
# Parse Statistics
# ==============================================================================


@dataclass
class ParseStats:
    """Counters updated as lines are consumed.

    `errors` keeps only the most recent failures (a deque with maxlen), so a
    badly corrupted file cannot grow it without bound.
    """

    lines_processed: int = 0
    entries_parsed: int = 0
    lines_skipped: int = 0
    empty_lines: int = 0
    io_errors: int = 0
    bytes_read: int = 0
    schema_version: SchemaVersion | None = None
    errors: deque[ParseError | SessionIOError] = field(
        default_factory=lambda: deque(maxlen=DEFAULT_MAX_RECORDED_ERRORS)
    )
    warnings: list[SchemaWarning] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        """Parsed share of non-empty lines, as a percentage (100 when there are none)."""
        denominator = self.lines_processed - self.lines_skipped - self.empty_lines
        if denominator <= 0:
            return 100.0
        return self.entries_parsed / denominator * 100.0

    def record_error(self, error: ParseError | SessionIOError) -> None:
        self.errors.append(error)


# ==============================================================================
# Streaming Reader
# ==============================================================================


class SessionReader:
    """
    Lazy, bounded-memory iterator over the records of one session log.

    Accepts a binary or text file object, or any iterable of bytes/str
    lines. A text file backed by a binary buffer is read through that
    buffer, so each line is decoded on its own. Each reader owns its
    source exclusively and is single pass: iterating it again yields
    nothing.

    Args:
        source: Line-oriented byte or text source
        lenient: Skip and record bad lines instead of raising
        max_bytes: Refuse inputs whose declared size exceeds this (0 = unlimited)
        declared_size: Size of the source in bytes, when known
        max_recorded_errors: How many recent errors ParseStats keeps

    Raises:
        ValidationError: If declared_size exceeds max_bytes (raised before
            anything is read)
    """

    def __init__(
        self,
        source: LineSource,
        *,
        lenient: bool = True,
        max_bytes: int = 0,
        declared_size: int | None = None,
        max_recorded_errors: int = DEFAULT_MAX_RECORDED_ERRORS,
        name: str = '<stream>',
    ) -> None:
        if max_bytes < 0:
            raise ValueError('max_bytes must be >= 0')
        _check_size(name, declared_size, max_bytes)

        self.lenient = lenient
        self.max_bytes = max_bytes
        self.declared_size = declared_size
        self.name = name
        self.stats = ParseStats(errors=deque(maxlen=max_recorded_errors))
        if isinstance(source, io.TextIOBase) and getattr(source, 'buffer', None) is not None:
            source = source.buffer
        self._source = source
        self._owned: BinaryIO | None = None
        self._consumed = False
        self._line_no = 0
        self._seen_versions: set[SchemaVersion] = set()

    @classmethod
    def open(cls, path: Path | str, **kwargs) -> SessionReader:
        """Open a session file for reading.

        The size limit is checked against the file's metadata before the
        file is opened.

        Raises:
            ValidationError: If the file exceeds max_bytes
            OSError: If the file cannot be stat'ed or opened
        """
        path = Path(path)
        size = path.stat().st_size
        _check_size(str(path), size, kwargs.get('max_bytes', 0))

        handle = path.open('rb')
        try:
            reader = cls(handle, declared_size=size, name=str(path), **kwargs)
        except Exception:
            handle.close()
            raise
        reader._owned = handle
        return reader

    @classmethod
    def from_string(cls, text: str, **kwargs) -> SessionReader:
        """Read records from an in-memory JSONL string."""
        encoded = text.encode('utf-8')
        return cls(io.BytesIO(encoded), declared_size=len(encoded), name='<string>', **kwargs)

    # Context management

    def close(self) -> None:
        if self._owned is not None:
            self._owned.close()
            self._owned = None

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # Iteration

    @property
    def line_no(self) -> int:
        """Number of the last line consumed."""
        return self._line_no

    @property
    def progress(self) -> float | None:
        """Percentage of the declared size consumed, when the size is known."""
        if self.declared_size is None:
            return None
        if self.declared_size == 0:
            return 100.0
        return min(100.0, self.stats.bytes_read / self.declared_size * 100.0)

    def __iter__(self) -> Iterator[SessionRecord]:
        if self._consumed:
            return
        self._consumed = True
        lines = iter(self._source)
        try:
            while True:
                try:
                    raw = next(lines)
                except StopIteration:
                    return
                except OSError as e:
                    self._handle_io_error(e)
                    return
                except UnicodeDecodeError as e:
                    # Decoder state is unknown past this point
                    self._handle_undecodable_text(e)
                    return

                record = self._consume(raw)
                if record is not None:
                    yield record
        finally:
            self.close()

    def read_all(self) -> list[SessionRecord]:
        """Consume the whole source and return its records."""
        return list(self)

    def _consume(self, raw: bytes | str) -> SessionRecord | None:
        """Process one raw line; returns the record, or None if nothing was produced."""
        self._line_no += 1
        self.stats.lines_processed += 1

        if isinstance(raw, bytes):
            self.stats.bytes_read += len(raw)
            try:
                text = raw.decode('utf-8-sig' if self._line_no == 1 else 'utf-8')
            except UnicodeDecodeError as e:
                preview = truncate_preview(raw.decode('utf-8', errors='replace').strip())
                error = ParseError(self._line_no, f'invalid UTF-8: {e.reason}', preview)
                self._handle_parse_error(error, e)
                return None
        else:
            self.stats.bytes_read += len(raw.encode('utf-8'))
            text = raw

        if not text.strip():
            self.stats.empty_lines += 1
            return None

        try:
            record = parse_line(text, self._line_no)
        except ParseError as e:
            self._handle_parse_error(e, e.__cause__)
            return None

        self.stats.entries_parsed += 1
        if record.version is not None:
            self._observe_version(record.version)
        return record

    def _handle_parse_error(self, error: ParseError, cause: BaseException | None) -> None:
        if not self.lenient:
            raise error from cause
        self.stats.lines_skipped += 1
        self.stats.record_error(error)
        logger.debug('%s: skipped line %d: %s', self.name, error.line, error.message)

    def _handle_undecodable_text(self, cause: UnicodeDecodeError) -> None:
        self._line_no += 1
        self.stats.lines_processed += 1
        error = ParseError(self._line_no, f'invalid UTF-8: {cause.reason}', '')
        self._handle_parse_error(error, cause)
        logger.warning('%s: undecodable text after line %d, stopping', self.name, self._line_no - 1)

    def _handle_io_error(self, cause: OSError) -> None:
        error = SessionIOError(self._line_no, cause)
        if not self.lenient:
            raise error from cause
        self.stats.io_errors += 1
        self.stats.record_error(error)
        logger.warning('%s: read failed after line %d, stopping: %s', self.name, self._line_no, cause)

    def _observe_version(self, version: str) -> None:
        """Set the session's schema generation from the first version tag seen.

        Later tags that map to a different generation are recorded as a
        warning once per generation; the detected value does not change.
        """
        detected = detect(version)
        if detected in self._seen_versions:
            return
        self._seen_versions.add(detected)

        if detected.is_unknown:
            logger.warning('%s: unrecognized Claude Code version %r, decoding permissively', self.name, version)

        current = self.stats.schema_version
        if current is None:
            self.stats.schema_version = detected
            return

        warning = detect_schema_change(current, detected, line=self._line_no)
        if warning is not None:
            self.stats.warnings.append(warning)
            logger.warning('%s: %s', self.name, warning.format())


def _check_size(name: str, size: int | None, max_bytes: int) -> None:
    if max_bytes and size is not None and size > max_bytes:
        raise ValidationError(
            f'{name} is {size} bytes, exceeding the {max_bytes} byte limit',
            size=size,
            limit=max_bytes,
        )


# ==============================================================================
# Session Liveness
# ==============================================================================

POSSIBLY_ACTIVE_WINDOW = timedelta(seconds=5)
RECENTLY_ACTIVE_WINDOW = timedelta(seconds=60)


class SessionState(StrEnum):
    """How recently a session file was written."""

    INACTIVE = 'inactive'
    RECENTLY_ACTIVE = 'recently_active'  # modified within 60 seconds
    POSSIBLY_ACTIVE = 'possibly_active'  # modified within 5 seconds

    @property
    def description(self) -> str:
        return self.value.replace('_', ' ')

    @property
    def is_active(self) -> bool:
        return self is not SessionState.INACTIVE


def classify_modification_time(modified: datetime, now: datetime | None = None) -> SessionState:
    """Classify a file modification time relative to now.

    A modification time in the future (clock skew) counts as inactive.
    """
    now = now or datetime.now(UTC)
    age = now - modified
    if age < timedelta(0):
        return SessionState.INACTIVE
    if age < POSSIBLY_ACTIVE_WINDOW:
        return SessionState.POSSIBLY_ACTIVE
    if age < RECENTLY_ACTIVE_WINDOW:
        return SessionState.RECENTLY_ACTIVE
    return SessionState.INACTIVE


def detect_session_state(path: Path | str, now: datetime | None = None) -> SessionState:
    """Classify a session file from its mtime.

    Raises:
        OSError: If the file cannot be stat'ed
    """
    modified = datetime.fromtimestamp(Path(path).stat().st_mtime, tz=UTC)
    return classify_modification_time(modified, now)


def has_incomplete_line(path: Path | str) -> bool:
    """True when the file's last byte is not a newline (a write is in progress)."""
    with Path(path).open('rb') as f:
        f.seek(0, io.SEEK_END)
        if f.tell() == 0:
            return False
        f.seek(-1, io.SEEK_END)
        return f.read(1) != b'\n'
