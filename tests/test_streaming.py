"""Tests for the streaming reader, parse statistics and session liveness."""

from __future__ import annotations

import io
import json
import logging
import os
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from snatch.exceptions import ParseError, SessionIOError, ValidationError
from snatch.schemas.session.generations import Generation
from snatch.services.streaming import (
    SessionReader,
    SessionState,
    classify_modification_time,
    detect_session_state,
    has_incomplete_line,
)
from tests import factories


def session_text(count: int = 3) -> str:
    objects = [factories.user('u-0')]
    for i in range(1, count):
        objects.append(factories.assistant(f'a-{i}', objects[-1]['uuid']))
    return factories.to_jsonl(objects)


# ==============================================================================
# Lenient and strict modes
# ==============================================================================


def test_lenient_mode_skips_malformed_lines() -> None:
    good = json.dumps(factories.user('u-1'))
    text = f'{good}\n{{not json\n{json.dumps(factories.assistant("a-1", "u-1"))}\n'

    reader = SessionReader.from_string(text)
    records = reader.read_all()

    assert [record.uuid for record in records] == ['u-1', 'a-1']
    assert reader.stats.lines_processed == 3
    assert reader.stats.entries_parsed == 2
    assert reader.stats.lines_skipped == 1
    assert len(reader.stats.errors) == 1
    assert reader.stats.errors[0].line == 2


def test_strict_mode_raises_on_first_bad_line() -> None:
    text = session_text(2) + '{not json\n' + session_text(2)
    reader = SessionReader.from_string(text, lenient=False)

    with pytest.raises(ParseError) as exc_info:
        reader.read_all()

    assert exc_info.value.line == 3


def test_empty_lines_are_counted_not_parsed() -> None:
    text = '\n' + session_text(2) + '   \n\n'

    reader = SessionReader.from_string(text, lenient=False)
    records = reader.read_all()

    assert len(records) == 2
    assert reader.stats.empty_lines == 3
    assert reader.stats.lines_skipped == 0
    assert reader.stats.success_rate == 100.0


def test_success_rate() -> None:
    text = session_text(3) + '{bad\n'

    reader = SessionReader.from_string(text)
    reader.read_all()

    assert reader.stats.entries_parsed == 3
    assert reader.stats.success_rate == 100.0
    assert reader.stats.lines_skipped == 1


def test_success_rate_of_empty_input() -> None:
    reader = SessionReader.from_string('')

    assert reader.read_all() == []
    assert reader.stats.success_rate == 100.0


def test_recorded_errors_are_bounded() -> None:
    text = ''.join(f'{{bad {i}\n' for i in range(5))

    reader = SessionReader.from_string(text, max_recorded_errors=2)
    reader.read_all()

    assert reader.stats.lines_skipped == 5
    assert [error.line for error in reader.stats.errors] == [4, 5]


def test_invalid_utf8_is_a_parse_error() -> None:
    good = json.dumps(factories.user('u-1')).encode()
    source = io.BytesIO(b'\xff\xfe garbage\n' + good + b'\n')

    reader = SessionReader(source)
    records = reader.read_all()

    assert [record.uuid for record in records] == ['u-1']
    assert reader.stats.errors[0].message.startswith('invalid UTF-8')

    with pytest.raises(ParseError):
        SessionReader(io.BytesIO(b'\xff\n'), lenient=False).read_all()


def test_text_file_with_invalid_utf8_skips_only_that_line(tmp_path: Path) -> None:
    good = json.dumps(factories.user('u-1')).encode()
    later = json.dumps(factories.user('u-2', 'u-1')).encode()
    path = tmp_path / 'mixed.jsonl'
    path.write_bytes(good + b'\n{"bad": "\xff\xfe"}\n' + later + b'\n')

    with open(path, encoding='utf-8') as f:
        reader = SessionReader(f)
        records = reader.read_all()

    assert [record.uuid for record in records] == ['u-1', 'u-2']
    assert reader.stats.lines_skipped == 1
    assert reader.stats.errors[0].line == 2


def test_undecodable_text_source_ends_iteration() -> None:
    def lines() -> Iterator[str]:
        yield json.dumps(factories.user('u-1')) + '\n'
        raise UnicodeDecodeError('utf-8', b'\xff', 0, 1, 'invalid start byte')

    reader = SessionReader(lines())
    records = reader.read_all()

    assert [record.uuid for record in records] == ['u-1']
    assert reader.stats.lines_skipped == 1
    assert reader.stats.errors[0].line == 2

    with pytest.raises(ParseError):
        SessionReader(lines(), lenient=False).read_all()


def test_second_iteration_yields_nothing(tmp_path: Path) -> None:
    path = tmp_path / 'session.jsonl'
    path.write_text(session_text(2))

    with SessionReader.open(path) as reader:
        assert len(reader.read_all()) == 2
        assert reader.read_all() == []

    assert reader.stats.entries_parsed == 2


def test_open_closes_file_when_reader_cannot_be_built(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / 'session.jsonl'
    path.write_text(session_text(1))
    handles = []
    original_open = Path.open

    def tracking_open(self, *args, **kwargs):
        handle = original_open(self, *args, **kwargs)
        handles.append(handle)
        return handle

    monkeypatch.setattr(Path, 'open', tracking_open)

    with pytest.raises(ValueError):
        SessionReader.open(path, max_recorded_errors=-1)

    (handle,) = handles
    assert handle.closed


def test_leading_byte_order_mark_is_ignored() -> None:
    source = io.BytesIO(b'\xef\xbb\xbf' + session_text(1).encode())

    records = SessionReader(source, lenient=False).read_all()

    assert [record.uuid for record in records] == ['u-0']


def test_text_line_source() -> None:
    lines = session_text(3).splitlines(keepends=True)

    records = SessionReader(lines).read_all()

    assert len(records) == 3


def test_reading_is_lazy() -> None:
    consumed = []

    def lines() -> Iterator[str]:
        for i, line in enumerate(session_text(3).splitlines(keepends=True)):
            consumed.append(i)
            yield line

    reader = SessionReader(lines())
    first = next(iter(reader))

    assert first.uuid == 'u-0'
    assert consumed == [0]
    assert reader.line_no == 1


# ==============================================================================
# I/O failures
# ==============================================================================


def failing_source() -> Iterator[bytes]:
    yield json.dumps(factories.user('u-1')).encode() + b'\n'
    raise OSError('device unplugged')


def test_io_error_ends_iteration_in_lenient_mode() -> None:
    reader = SessionReader(failing_source())

    records = reader.read_all()

    assert [record.uuid for record in records] == ['u-1']
    assert reader.stats.io_errors == 1
    assert isinstance(reader.stats.errors[-1], SessionIOError)


def test_io_error_raises_in_strict_mode() -> None:
    reader = SessionReader(failing_source(), lenient=False)

    with pytest.raises(SessionIOError) as exc_info:
        reader.read_all()

    assert exc_info.value.line == 1
    assert isinstance(exc_info.value.cause, OSError)


# ==============================================================================
# Size limits
# ==============================================================================


def test_max_bytes_rejects_large_string_before_reading() -> None:
    text = session_text(3)

    with pytest.raises(ValidationError) as exc_info:
        SessionReader.from_string(text, max_bytes=10)

    assert exc_info.value.limit == 10
    assert exc_info.value.size == len(text.encode())


def test_max_bytes_checked_against_file_size(tmp_path: Path) -> None:
    path = tmp_path / 'session.jsonl'
    path.write_text(session_text(3))

    with pytest.raises(ValidationError):
        SessionReader.open(path, max_bytes=100)

    with SessionReader.open(path, max_bytes=path.stat().st_size) as reader:
        assert len(reader.read_all()) == 3
    assert reader.progress == 100.0


def test_zero_max_bytes_means_unlimited() -> None:
    reader = SessionReader.from_string(session_text(3), max_bytes=0)

    assert len(reader.read_all()) == 3


def test_negative_max_bytes_is_rejected() -> None:
    with pytest.raises(ValueError):
        SessionReader([], max_bytes=-1)


# ==============================================================================
# Schema detection while reading
# ==============================================================================


def test_first_version_sets_schema() -> None:
    reader = SessionReader.from_string(session_text(2))
    reader.read_all()

    assert reader.stats.schema_version is not None
    assert reader.stats.schema_version.generation is Generation.V2_LSP
    assert reader.stats.warnings == []


def test_generation_change_is_warned_once() -> None:
    objects = [
        factories.user('u-1', version='2.0.60'),
        factories.assistant('a-1', 'u-1', version='2.0.65'),
        factories.assistant('a-2', 'a-1', version='2.0.66'),
    ]

    reader = SessionReader.from_string(factories.to_jsonl(objects))
    reader.read_all()

    assert str(reader.stats.schema_version) == 'v2_agents'
    assert len(reader.stats.warnings) == 1
    warning = reader.stats.warnings[0]
    assert warning.is_breaking
    assert warning.line == 2


def test_unknown_version_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    text = factories.to_jsonl([factories.user('u-1', version='7.0.0')])

    with caplog.at_level(logging.WARNING, logger='snatch.services.streaming'):
        records = SessionReader.from_string(text).read_all()

    assert len(records) == 1
    assert 'unrecognized Claude Code version' in caplog.text


# ==============================================================================
# Liveness
# ==============================================================================

NOW = datetime(2025, 12, 1, 12, 0, tzinfo=UTC)


@pytest.mark.parametrize(
    ('age', 'expected'),
    [
        (timedelta(seconds=2), SessionState.POSSIBLY_ACTIVE),
        (timedelta(seconds=30), SessionState.RECENTLY_ACTIVE),
        (timedelta(minutes=5), SessionState.INACTIVE),
        (timedelta(seconds=-30), SessionState.INACTIVE),
    ],
)
def test_classify_modification_time(age: timedelta, expected: SessionState) -> None:
    assert classify_modification_time(NOW - age, NOW) is expected


def test_detect_session_state_uses_mtime(tmp_path: Path) -> None:
    path = tmp_path / 'session.jsonl'
    path.write_text(session_text(1))
    mtime = NOW.timestamp()
    os.utime(path, (mtime, mtime))

    assert detect_session_state(path, now=NOW + timedelta(seconds=1)) is SessionState.POSSIBLY_ACTIVE
    assert detect_session_state(path, now=NOW + timedelta(hours=1)) is SessionState.INACTIVE
    assert SessionState.RECENTLY_ACTIVE.description == 'recently active'


def test_has_incomplete_line(tmp_path: Path) -> None:
    complete = tmp_path / 'complete.jsonl'
    partial = tmp_path / 'partial.jsonl'
    empty = tmp_path / 'empty.jsonl'
    complete.write_text(session_text(1))
    partial.write_text(session_text(1) + '{"type": "user"')
    empty.write_text('')

    assert not has_incomplete_line(complete)
    assert has_incomplete_line(partial)
    assert not has_incomplete_line(empty)
