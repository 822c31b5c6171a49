"""
Session JSONL schema models.

Record models live in models.py; version-tag to schema-generation mapping
lives in generations.py.
"""

from __future__ import annotations

from snatch.schemas.session.generations import (
    Feature,
    Generation,
    ParsingStrategy,
    SchemaVersion,
    detect,
    detect_schema_change,
)
from snatch.schemas.session.models import (
    AssistantMessage,
    AssistantRecord,
    BaseRecord,
    FileHistorySnapshotRecord,
    ImageContent,
    MessageContent,
    QueueOperationRecord,
    SessionRecord,
    SessionRecordAdapter,
    SummaryRecord,
    SystemRecord,
    TextContent,
    ThinkingContent,
    TokenUsage,
    ToolResultContent,
    ToolUseContent,
    TurnEndRecord,
    UnknownContent,
    UserMessage,
    UserRecord,
)

__all__ = [
    # Generations
    'Feature',
    'Generation',
    'ParsingStrategy',
    'SchemaVersion',
    'detect',
    'detect_schema_change',
    # Records
    'BaseRecord',
    'UserRecord',
    'AssistantRecord',
    'SystemRecord',
    'SummaryRecord',
    'FileHistorySnapshotRecord',
    'QueueOperationRecord',
    'TurnEndRecord',
    'SessionRecord',
    'SessionRecordAdapter',
    # Messages and content
    'UserMessage',
    'AssistantMessage',
    'MessageContent',
    'TextContent',
    'ThinkingContent',
    'ToolUseContent',
    'ToolResultContent',
    'ImageContent',
    'UnknownContent',
    'TokenUsage',
]
