"""
Pydantic models for Claude Code session JSONL records.

One JSONL line decodes to one record. Records are discriminated by their
`type` key:

    user                    - prompt text or tool results sent to the model
    assistant               - one streamed fragment of a model response
    system                  - harness events (api_error retries, compaction, hooks)
    summary                 - conversation summary pointing at a leaf uuid
    file-history-snapshot   - tracked-file backup state for undo
    queue-operation         - queued prompt bookkeeping
    turn_end                - marks the end of an agent turn

FORWARD COMPATIBILITY:
Every model here is a PermissiveModel. Keys the model does not declare are
kept verbatim (in read order) in the model's extra map, exposed as
`unknown_fields`, and written back by `to_json_dict()`. New Claude Code
releases add fields constantly; decoding must never fail because of them.

Content blocks use a left-to-right union that ends in UnknownContent, so a
block type this module has never seen (document, server_tool_use, ...) is
still accepted and round-trips.

Field names mirror the JSON keys exactly (camelCase on records, snake_case
inside API messages) so serialization needs no aliasing. Snake-case
accessors (parent_uuid, session_id, ...) are provided as properties.

Round-trip serialization:
- Use record.to_json_dict() (model_dump(exclude_unset=True, mode='json'))
  to reproduce the original JSON object as a value.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Annotated, Any, Literal

import pydantic

from snatch.schemas.types import PermissiveModel, parse_timestamp

# ==============================================================================
# Known Values
# ==============================================================================

# System subtypes the reconstruction layer understands. Other strings are
# accepted and passed through.
KnownSystemSubtype = Literal[
    'api_error',
    'compact_boundary',
    'stop_hook_summary',
    'local_command',
    'informational',
    'turn_duration',
]

SERVER_TOOL_ID_PREFIX = 'srvtoolu_'
MCP_TOOL_NAME_PREFIX = 'mcp__'


# ==============================================================================
# Message Content Types (Left-to-right Union)
# ==============================================================================


class TextContent(PermissiveModel):
    """Text content block from user or assistant messages."""

    type: Literal['text']
    text: str


class ThinkingContent(PermissiveModel):
    """Extended-thinking block; the signature is opaque and never inspected."""

    type: Literal['thinking']
    thinking: str
    signature: str | None = None


class ToolUseContent(PermissiveModel):
    """Tool invocation emitted by the assistant."""

    type: Literal['tool_use']
    id: str
    name: str
    input: Any = None  # Opaque JSON, tool specific

    @property
    def is_server_tool(self) -> bool:
        """Server-side tools (web search, web fetch) run on the API, not locally."""
        return self.id.startswith(SERVER_TOOL_ID_PREFIX)

    @property
    def is_mcp_tool(self) -> bool:
        """MCP tool names follow the pattern mcp__{server}__{operation}."""
        return self.name.startswith(MCP_TOOL_NAME_PREFIX)


class ImageSource(PermissiveModel):
    """Image payload descriptor (base64 data or URL)."""

    type: str
    media_type: str | None = None
    data: str | None = None


class ImageContent(PermissiveModel):
    """Image content block."""

    type: Literal['image']
    source: ImageSource


class UnknownContent(PermissiveModel):
    """Fallback for content block types not modeled above."""

    type: str


ToolResultContentBlock = Annotated[
    TextContent | ImageContent | UnknownContent,
    pydantic.Field(union_mode='left_to_right'),
]


class ToolResultContent(PermissiveModel):
    """Result of a tool invocation, sent back to the model in a user record."""

    type: Literal['tool_result']
    tool_use_id: str
    content: Annotated[
        str | Sequence[ToolResultContentBlock] | None,
        pydantic.Field(union_mode='left_to_right'),
    ] = None
    is_error: bool | None = None

    @property
    def text(self) -> str:
        """Textual payload of the result, joining text blocks when structured."""
        if self.content is None:
            return ''
        if isinstance(self.content, str):
            return self.content
        return '\n'.join(block.text for block in self.content if isinstance(block, TextContent))


MessageContent = Annotated[
    TextContent | ThinkingContent | ToolUseContent | ToolResultContent | ImageContent | UnknownContent,
    pydantic.Field(union_mode='left_to_right'),
]


# ==============================================================================
# Token Usage
# ==============================================================================


class CacheCreation(PermissiveModel):
    """Cache creation token breakdown by TTL."""

    ephemeral_5m_input_tokens: pydantic.NonNegativeInt = 0
    ephemeral_1h_input_tokens: pydantic.NonNegativeInt = 0


class ServerToolUse(PermissiveModel):
    """Server-side tool use tracking."""

    web_search_requests: pydantic.NonNegativeInt = 0
    web_fetch_requests: pydantic.NonNegativeInt = 0


class TokenUsage(PermissiveModel):
    """Token usage information for assistant messages."""

    input_tokens: pydantic.NonNegativeInt = 0
    output_tokens: pydantic.NonNegativeInt = 0
    cache_creation_input_tokens: pydantic.NonNegativeInt | None = None
    cache_read_input_tokens: pydantic.NonNegativeInt | None = None
    cache_creation: CacheCreation | None = None
    service_tier: str | None = None
    server_tool_use: ServerToolUse | None = None

    @property
    def cache_write_tokens(self) -> int:
        return self.cache_creation_input_tokens or 0

    @property
    def cache_read_tokens(self) -> int:
        return self.cache_read_input_tokens or 0

    @property
    def total_input_tokens(self) -> int:
        """Input tokens including both cache classes."""
        return self.input_tokens + self.cache_write_tokens + self.cache_read_tokens

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.output_tokens

    @property
    def has_caching(self) -> bool:
        return self.cache_creation_input_tokens is not None or self.cache_read_input_tokens is not None

    def cache_hit_rate(self) -> float:
        """Share of cached input that was served from cache, as a percentage."""
        total_cache = self.cache_write_tokens + self.cache_read_tokens
        if total_cache == 0:
            return 0.0
        return self.cache_read_tokens / total_cache * 100.0

    def cache_efficiency(self) -> float | None:
        """Cache read/write ratio, or None when nothing was written to cache."""
        if not self.cache_write_tokens:
            return None
        return self.cache_read_tokens / self.cache_write_tokens

    def merged(self, other: TokenUsage) -> TokenUsage:
        """Return a new usage with the counters of both summed.

        Cache counters stay None only when neither side reported them.
        Unknown fields are not carried over.
        """

        def _sum_optional(a: int | None, b: int | None) -> int | None:
            if a is None and b is None:
                return None
            return (a or 0) + (b or 0)

        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_creation_input_tokens=_sum_optional(
                self.cache_creation_input_tokens, other.cache_creation_input_tokens
            ),
            cache_read_input_tokens=_sum_optional(self.cache_read_input_tokens, other.cache_read_input_tokens),
        )


# ==============================================================================
# Message Structure
# ==============================================================================


class UserMessage(PermissiveModel):
    """Message payload of a user record: plain text or content blocks."""

    role: Literal['user']
    content: Annotated[
        str | Sequence[MessageContent],
        pydantic.Field(union_mode='left_to_right'),
    ]


class AssistantMessage(PermissiveModel):
    """Message payload of an assistant record (one streamed API fragment)."""

    role: Literal['assistant']
    content: Sequence[MessageContent]
    id: str | None = pydantic.Field(None, description='API message id, shared by all fragments of one response')
    type: Literal['message'] | None = None
    model: str | None = None
    stop_reason: str | None = None
    stop_sequence: str | None = None
    usage: TokenUsage | None = None
    container: Any = None
    context_management: Any = None


# ==============================================================================
# Nested Record Payloads
# ==============================================================================


class ThinkingMetadata(PermissiveModel):
    """Extended thinking configuration attached to user prompts."""

    level: str | None = None
    disabled: bool | None = None
    triggers: Sequence[Any] | None = None
    maxThinkingTokens: int | None = None


class CompactMetadata(PermissiveModel):
    """Metadata for compact_boundary system records."""

    trigger: str | None = None
    preTokens: int | None = None


class FileBackup(PermissiveModel):
    """One tracked file inside a file-history snapshot."""

    backupFileName: str | None = None
    version: int | None = None
    backupTime: str | None = None


class FileHistorySnapshot(PermissiveModel):
    """Snapshot payload of a file-history-snapshot record."""

    messageId: str
    timestamp: str
    trackedFileBackups: dict[str, FileBackup] = pydantic.Field(default_factory=dict)


# ==============================================================================
# Base Record
# ==============================================================================


class BaseRecord(PermissiveModel):
    """Base class for all session record types.

    Declares the envelope fields every kind may carry. Kinds that always
    carry a field (uuid on user/assistant/system, timestamp on timed kinds)
    narrow it to required.
    """

    type: str
    uuid: str | None = None
    parentUuid: str | None = None
    timestamp: str | None = None
    sessionId: str | None = None
    version: str | None = None
    isSidechain: bool | None = None

    @pydantic.field_validator('timestamp')
    @classmethod
    def validate_timestamp(cls, v: str | None) -> str | None:
        """Keep the string as written, but reject anything that is not ISO-8601."""
        if v is not None:
            parse_timestamp(v)
        return v

    # Snake-case accessors

    @property
    def parent_uuid(self) -> str | None:
        return self.parentUuid

    @property
    def session_id(self) -> str | None:
        return self.sessionId

    @property
    def is_sidechain(self) -> bool:
        return bool(self.isSidechain)

    @property
    def occurred_at(self) -> datetime | None:
        """Record timestamp as an aware UTC datetime."""
        if self.timestamp is None:
            return None
        return parse_timestamp(self.timestamp)

    @property
    def usage(self) -> TokenUsage | None:
        """Token usage; only assistant records carry one."""
        return None

    def message_type(self) -> str:
        """Discriminator tag as written on disk (e.g. 'file-history-snapshot')."""
        return self.type

    def to_json_dict(self) -> dict[str, Any]:
        """Serialize back to the JSON object this record was decoded from."""
        return self.model_dump(exclude_unset=True, mode='json')


class ConversationRecord(BaseRecord):
    """Records that are nodes of the conversation tree (user, assistant, system)."""

    uuid: str
    timestamp: str
    cwd: str | None = None
    gitBranch: str | None = None
    userType: str | None = None
    agentId: str | None = pydantic.Field(None, description='Agent id for records written by background agents')
    slug: str | None = pydantic.Field(None, description='Human-readable session slug (Claude Code 2.0.40+)')


# ==============================================================================
# User Record
# ==============================================================================


class UserRecord(ConversationRecord):
    """User message record."""

    type: Literal['user']
    message: UserMessage
    toolUseResult: Any = None  # Tool execution metadata, tool specific
    todos: Sequence[Any] | None = None
    thinkingMetadata: ThinkingMetadata | None = None
    isMeta: bool | None = None
    isCompactSummary: bool | None = None
    isVisibleInTranscriptOnly: bool | None = None
    sourceToolUseID: str | None = None

    @property
    def content_blocks(self) -> Sequence[MessageContent]:
        """Content blocks; plain-text messages have none."""
        if isinstance(self.message.content, str):
            return ()
        return self.message.content

    @property
    def text(self) -> str:
        if isinstance(self.message.content, str):
            return self.message.content
        return '\n'.join(block.text for block in self.message.content if isinstance(block, TextContent))

    @property
    def tool_results(self) -> list[ToolResultContent]:
        return [block for block in self.content_blocks if isinstance(block, ToolResultContent)]

    @property
    def images(self) -> list[ImageContent]:
        return [block for block in self.content_blocks if isinstance(block, ImageContent)]

    @property
    def has_tool_results(self) -> bool:
        return any(isinstance(block, ToolResultContent) for block in self.content_blocks)


# ==============================================================================
# Assistant Record
# ==============================================================================


class AssistantRecord(ConversationRecord):
    """Assistant message record (one streamed fragment of a response)."""

    type: Literal['assistant']
    message: AssistantMessage
    requestId: str | None = None
    isApiErrorMessage: bool | None = None
    error: Any = None

    @property
    def message_id(self) -> str:
        """API message id shared by all fragments; falls back to the record uuid."""
        return self.message.id or self.uuid

    @property
    def model(self) -> str | None:
        return self.message.model

    @property
    def content(self) -> Sequence[MessageContent]:
        return self.message.content

    @property
    def stop_reason(self) -> str | None:
        return self.message.stop_reason

    @property
    def usage(self) -> TokenUsage | None:
        return self.message.usage

    @property
    def is_api_error(self) -> bool:
        return bool(self.isApiErrorMessage)

    @property
    def text(self) -> str:
        return '\n'.join(block.text for block in self.content if isinstance(block, TextContent))

    @property
    def tool_uses(self) -> list[ToolUseContent]:
        return [block for block in self.content if isinstance(block, ToolUseContent)]

    @property
    def thinking_blocks(self) -> list[ThinkingContent]:
        return [block for block in self.content if isinstance(block, ThinkingContent)]

    @property
    def has_tool_use(self) -> bool:
        return any(isinstance(block, ToolUseContent) for block in self.content)

    @property
    def has_thinking(self) -> bool:
        return any(isinstance(block, ThinkingContent) for block in self.content)


# ==============================================================================
# System Record
# ==============================================================================


class SystemRecord(ConversationRecord):
    """System event record.

    A single model covers every subtype. api_error records carry the retry
    fields (retryAttempt, maxRetries, retryInMs); compact_boundary records
    carry compactMetadata and a logicalParentUuid that bridges the compaction.
    """

    type: Literal['system']
    subtype: KnownSystemSubtype | str | None = None
    content: str | None = None
    level: str | None = None
    logicalParentUuid: str | None = None
    isMeta: bool | None = None
    toolUseID: str | None = None
    # api_error
    error: Any = None
    cause: Any = None
    retryInMs: int | float | None = None
    retryAttempt: int | None = None
    maxRetries: int | None = None
    # compact_boundary
    compactMetadata: CompactMetadata | None = None
    # stop_hook_summary
    hookCount: int | None = None
    hookInfos: Sequence[Any] | None = None
    hookErrors: Sequence[Any] | None = None
    hasOutput: bool | None = None
    preventedContinuation: bool | None = None
    stopReason: str | None = None

    @property
    def is_api_error(self) -> bool:
        return self.subtype == 'api_error'

    @property
    def is_compact_boundary(self) -> bool:
        return self.subtype == 'compact_boundary'

    @property
    def logical_parent_uuid(self) -> str | None:
        return self.logicalParentUuid


# ==============================================================================
# Metadata Records (not tree nodes)
# ==============================================================================


class SummaryRecord(BaseRecord):
    """Conversation summary; leafUuid names the record it summarizes up to."""

    type: Literal['summary']
    summary: str
    leafUuid: str | None = None
    isCompactSummary: bool | None = None


class FileHistorySnapshotRecord(BaseRecord):
    """Tracked-file backup state captured before a user message."""

    type: Literal['file-history-snapshot']
    messageId: str
    snapshot: FileHistorySnapshot
    isSnapshotUpdate: bool | None = None


class QueueOperationRecord(BaseRecord):
    """Prompt queue bookkeeping (enqueue, dequeue, remove, popAll)."""

    type: Literal['queue-operation']
    operation: str
    timestamp: str
    content: str | None = None


class TurnEndRecord(BaseRecord):
    """Marks the end of an agent turn."""

    type: Literal['turn_end']
    timestamp: str


# ==============================================================================
# Session Record Union
# ==============================================================================

SessionRecord = Annotated[
    UserRecord
    | AssistantRecord
    | SystemRecord
    | SummaryRecord
    | FileHistorySnapshotRecord
    | QueueOperationRecord
    | TurnEndRecord,
    pydantic.Field(discriminator='type'),
]

# Type adapter for validating session records (required for union types)
SessionRecordAdapter: pydantic.TypeAdapter[SessionRecord] = pydantic.TypeAdapter(SessionRecord)
