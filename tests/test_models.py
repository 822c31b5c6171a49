"""Tests for session record models: typed access, unknown-field retention, validation."""

from __future__ import annotations

from datetime import UTC, datetime

import pydantic
import pytest

from snatch.schemas.session.models import (
    AssistantRecord,
    FileHistorySnapshotRecord,
    ImageContent,
    SessionRecordAdapter,
    SummaryRecord,
    SystemRecord,
    TextContent,
    ThinkingContent,
    TokenUsage,
    ToolResultContent,
    ToolUseContent,
    UnknownContent,
    UserRecord,
)
from tests import factories


def validate(obj: dict) -> object:
    return SessionRecordAdapter.validate_python(obj)


# ==============================================================================
# Record accessors
# ==============================================================================


def test_user_record_accessors() -> None:
    record = validate(factories.user('u-1', 'a-0', content='hi there', timestamp='2025-12-01T10:00:00.000Z'))

    assert isinstance(record, UserRecord)
    assert record.uuid == 'u-1'
    assert record.parent_uuid == 'a-0'
    assert record.session_id == factories.SESSION_ID
    assert record.version == '2.0.74'
    assert record.is_sidechain is False
    assert record.message_type() == 'user'
    assert record.text == 'hi there'
    assert record.content_blocks == ()
    assert record.usage is None
    assert record.occurred_at == datetime(2025, 12, 1, 10, 0, tzinfo=UTC)


def test_assistant_record_accessors() -> None:
    record = validate(
        factories.assistant(
            'a-1',
            'u-1',
            message_id='msg_01',
            content=[factories.thinking('hmm'), factories.text('Done.'), factories.tool_use('toolu_1', 'Read')],
            usage={'input_tokens': 12, 'output_tokens': 7, 'cache_read_input_tokens': 30},
            stop_reason='tool_use',
        )
    )

    assert isinstance(record, AssistantRecord)
    assert record.message_id == 'msg_01'
    assert record.model == factories.SONNET
    assert record.stop_reason == 'tool_use'
    assert record.text == 'Done.'
    assert [block.name for block in record.tool_uses] == ['Read']
    assert [block.thinking for block in record.thinking_blocks] == ['hmm']
    assert record.has_thinking
    assert record.has_tool_use
    assert record.usage is not None
    assert record.usage.total_input_tokens == 42
    assert record.is_api_error is False


def test_assistant_without_message_id_falls_back_to_uuid() -> None:
    record = validate(factories.assistant('a-1', 'u-1'))

    assert isinstance(record, AssistantRecord)
    assert record.message_id == 'a-1'


def test_content_blocks_are_typed() -> None:
    record = validate(
        factories.user(
            'u-1',
            content=[
                factories.text('look'),
                {'type': 'image', 'source': {'type': 'base64', 'media_type': 'image/png', 'data': 'iVBORw0'}},
                factories.tool_result('toolu_1', [factories.text('line one'), factories.text('line two')]),
                {'type': 'document', 'source': {'type': 'text', 'data': 'notes'}},
            ],
        )
    )

    assert isinstance(record, UserRecord)
    text_block, image, result, document = record.content_blocks
    assert isinstance(text_block, TextContent)
    assert isinstance(image, ImageContent)
    assert image.source.media_type == 'image/png'
    assert isinstance(result, ToolResultContent)
    assert result.text == 'line one\nline two'
    assert isinstance(document, UnknownContent)
    assert document.type == 'document'
    assert document.unknown_fields == {'source': {'type': 'text', 'data': 'notes'}}
    assert record.images == [image]
    assert record.has_tool_results


def test_tool_use_classification() -> None:
    server = ToolUseContent(type='tool_use', id='srvtoolu_01', name='web_search', input={})
    mcp = ToolUseContent(type='tool_use', id='toolu_01', name='mcp__github__list_issues', input={})

    assert server.is_server_tool and not server.is_mcp_tool
    assert mcp.is_mcp_tool and not mcp.is_server_tool


def test_system_record_subtypes() -> None:
    error = validate(factories.api_error('e-1', 'u-1', 1))
    novel = validate(factories.system('s-1', subtype='brand_new_subtype'))

    assert isinstance(error, SystemRecord)
    assert error.is_api_error
    assert error.retryAttempt == 1
    assert isinstance(novel, SystemRecord)
    assert novel.subtype == 'brand_new_subtype'
    assert not novel.is_api_error and not novel.is_compact_boundary


def test_metadata_records_have_no_uuid_or_timestamp() -> None:
    summary = validate({'type': 'summary', 'summary': 'Listing files', 'leafUuid': 'a-4'})
    snapshot = validate(
        {
            'type': 'file-history-snapshot',
            'messageId': 'u-1',
            'snapshot': {'messageId': 'u-1', 'trackedFileBackups': {}, 'timestamp': '2025-12-01T10:00:00.000Z'},
            'isSnapshotUpdate': False,
        }
    )

    assert isinstance(summary, SummaryRecord)
    assert summary.uuid is None and summary.occurred_at is None
    assert isinstance(snapshot, FileHistorySnapshotRecord)
    assert snapshot.message_type() == 'file-history-snapshot'


# ==============================================================================
# Unknown fields
# ==============================================================================


def test_unknown_fields_are_kept_in_order() -> None:
    obj = factories.user('u-1', futureFlag=True, permissionMode='plan')
    record = validate(obj)

    assert record.has_unknown_fields
    assert list(record.unknown_fields) == ['futureFlag', 'permissionMode']
    assert record.to_json_dict() == obj


def test_round_trip_keeps_explicit_nulls_and_omits_absent_keys() -> None:
    obj = factories.assistant('a-1', None, message_id='msg_01')
    record = validate(obj)
    dumped = record.to_json_dict()

    assert dumped == obj
    assert dumped['parentUuid'] is None
    assert 'requestId' not in dumped


# ==============================================================================
# Validation
# ==============================================================================


def test_unknown_record_type_is_rejected() -> None:
    with pytest.raises(pydantic.ValidationError):
        validate({'type': 'telemetry', 'uuid': 'x'})


def test_negative_token_count_is_rejected() -> None:
    with pytest.raises(pydantic.ValidationError):
        validate(factories.assistant('a-1', usage={'input_tokens': -1, 'output_tokens': 0}))


def test_non_iso_timestamp_is_rejected() -> None:
    with pytest.raises(pydantic.ValidationError):
        validate(factories.user('u-1', timestamp='yesterday at noon'))


def test_user_and_assistant_require_uuid() -> None:
    obj = factories.user('u-1')
    del obj['uuid']

    with pytest.raises(pydantic.ValidationError):
        validate(obj)


def test_records_are_immutable() -> None:
    record = validate(factories.user('u-1'))

    with pytest.raises(pydantic.ValidationError):
        record.uuid = 'other'  # type: ignore[misc]


def test_thinking_signature_is_optional() -> None:
    block = ThinkingContent(type='thinking', thinking='...')

    assert block.signature is None


# ==============================================================================
# Token usage
# ==============================================================================


def test_usage_cache_helpers() -> None:
    usage = TokenUsage(
        input_tokens=100,
        output_tokens=50,
        cache_creation_input_tokens=200,
        cache_read_input_tokens=600,
    )

    assert usage.cache_write_tokens == 200
    assert usage.cache_read_tokens == 600
    assert usage.total_input_tokens == 900
    assert usage.total_tokens == 950
    assert usage.has_caching
    assert usage.cache_hit_rate() == pytest.approx(75.0)
    assert usage.cache_efficiency() == pytest.approx(3.0)


def test_usage_without_cache_fields() -> None:
    usage = TokenUsage(input_tokens=10, output_tokens=2)

    assert not usage.has_caching
    assert usage.cache_hit_rate() == 0.0
    assert usage.cache_efficiency() is None


def test_usage_merge_sums_counters() -> None:
    merged = TokenUsage(input_tokens=10, output_tokens=2, cache_read_input_tokens=5).merged(
        TokenUsage(input_tokens=1, output_tokens=3)
    )

    assert merged.input_tokens == 11
    assert merged.output_tokens == 5
    assert merged.cache_read_input_tokens == 5
    assert merged.cache_creation_input_tokens is None
