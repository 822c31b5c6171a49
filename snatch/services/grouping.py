"""
Streaming-chunk grouping - folds assistant fragments into logical messages.

Claude Code writes one assistant record per streamed content block, each
with its own uuid and parent link but all sharing the API message id. The
tree is built on fragments; exporters and analytics want the message:

    fragments (message.id = "msg_01")       reconstructed message
    [thinking]  uuid a                  ->  uuid a, chunk_count 3
    [text]      uuid b  parent a            content [thinking, text, tool_use]
    [tool_use]  uuid c  parent b            stop_reason/usage of c

Metadata (uuid, timestamp, session, version, model) comes from the first
fragment; stop_reason and usage from the last, which holds the final state.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from snatch.schemas.session.models import (
    AssistantRecord,
    MessageContent,
    SessionRecord,
    TextContent,
    ThinkingContent,
    TokenUsage,
    ToolUseContent,
)
from snatch.services.conversation import Conversation


@dataclass(frozen=True)
class ReconstructedMessage:
    """One logical assistant message assembled from its streamed fragments."""

    message_id: str
    uuid: str  # First fragment
    uuids: tuple[str, ...]  # Every fragment, in encounter order
    timestamp: str
    session_id: str | None
    version: str | None
    model: str | None
    content: tuple[MessageContent, ...]
    stop_reason: str | None
    usage: TokenUsage | None
    chunk_count: int

    @property
    def text(self) -> str:
        """All text blocks joined with no separator (fragments split mid-sentence)."""
        return ''.join(block.text for block in self.content if isinstance(block, TextContent))

    @property
    def thinking(self) -> list[ThinkingContent]:
        return [block for block in self.content if isinstance(block, ThinkingContent)]

    @property
    def tool_uses(self) -> list[ToolUseContent]:
        return [block for block in self.content if isinstance(block, ToolUseContent)]

    @property
    def has_thinking(self) -> bool:
        return any(isinstance(block, ThinkingContent) for block in self.content)

    @property
    def has_tool_use(self) -> bool:
        return any(isinstance(block, ToolUseContent) for block in self.content)

    def to_record(self, template: AssistantRecord) -> AssistantRecord:
        """Fold back into a single assistant record.

        The first fragment is used as the template for every envelope
        field; content, stop_reason and usage are replaced with the merged
        values. Grouping the result again yields this same message.
        """
        data = template.to_json_dict()
        message = data['message']
        message['content'] = [block.model_dump(exclude_unset=True, mode='json') for block in self.content]
        message['stop_reason'] = self.stop_reason
        if self.usage is not None:
            message['usage'] = self.usage.model_dump(exclude_unset=True, mode='json')
        else:
            message.pop('usage', None)
        return AssistantRecord.model_validate(data)


def reconstruct(fragments: Sequence[AssistantRecord]) -> ReconstructedMessage:
    """Fold fragments of one message id, given in encounter order.

    Raises:
        ValueError: If fragments is empty
    """
    if not fragments:
        raise ValueError('cannot reconstruct a message from zero fragments')

    first, last = fragments[0], fragments[-1]
    content: list[MessageContent] = []
    for fragment in fragments:
        content.extend(fragment.content)

    return ReconstructedMessage(
        message_id=first.message_id,
        uuid=first.uuid,
        uuids=tuple(fragment.uuid for fragment in fragments),
        timestamp=first.timestamp,
        session_id=first.sessionId,
        version=first.version,
        model=first.model,
        content=tuple(content),
        stop_reason=last.stop_reason,
        usage=last.usage,
        chunk_count=len(fragments),
    )


class MessageGrouper:
    """Collects assistant fragments by API message id.

    Usage:
        grouper = MessageGrouper()
        grouper.add_all(records)
        for message in grouper.reconstruct_all():
            print(message.message_id, message.chunk_count, message.text)
    """

    def __init__(self) -> None:
        self._groups: dict[str, list[AssistantRecord]] = {}

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> MessageGrouper:
        """Use a built conversation's message groups (duplicates already resolved)."""
        grouper = cls()
        for message_id in conversation.message_groups:
            grouper._groups[message_id] = conversation.message_group(message_id)
        return grouper

    def add(self, record: SessionRecord) -> bool:
        """Add a record; returns False for anything that is not an assistant record."""
        if not isinstance(record, AssistantRecord):
            return False
        self._groups.setdefault(record.message_id, []).append(record)
        return True

    def add_all(self, records: Iterable[SessionRecord]) -> int:
        """Add records; returns how many were assistant fragments."""
        return sum(1 for record in records if self.add(record))

    def __len__(self) -> int:
        return len(self._groups)

    def message_ids(self) -> list[str]:
        """Message ids in order of first appearance."""
        return list(self._groups)

    def groups(self) -> dict[str, list[AssistantRecord]]:
        """Fragments per message id, both in encounter order."""
        return {message_id: list(group) for message_id, group in self._groups.items()}

    def get_group(self, message_id: str) -> list[AssistantRecord]:
        return list(self._groups.get(message_id, ()))

    def multi_chunk_ids(self) -> list[str]:
        """Ids of messages that were streamed as more than one fragment."""
        return [message_id for message_id, group in self._groups.items() if len(group) > 1]

    def reconstruct(self, message_id: str) -> ReconstructedMessage:
        """
        Raises:
            KeyError: If no fragment with this message id was added
        """
        return reconstruct(self._groups[message_id])

    def reconstruct_all(self) -> list[ReconstructedMessage]:
        return [reconstruct(group) for group in self._groups.values()]
