"""
Conversation reconstruction - re-links session records into a tree.

Every record with a uuid becomes a node; parentUuid links become edges.
The resulting tree exposes branching (retries, "edit previous" forks,
sidechains), the main thread, tool_use -> owning assistant links and
streaming-fragment groups.

Construction runs in four passes over the records of ONE session:

    1. index   nodes in encounter order (a duplicate uuid replaces the
               earlier record but keeps its position); roots are records
               whose parent is absent or not in the session
    2. link    append each node to its parent's children, in encounter order
    3. label   depth from every root, bounded by a visited set; parent
               loops are broken and reported; branch points marked
    4. thread  from the first root, follow the first child to a leaf

Nothing here raises on bad structure. Dangling parents, unmatched tool
results, duplicate uuids and cycles are collected as StructuralAnomaly
values and logged.

Usage:
    records = SessionReader.open(path).read_all()
    conversation = Conversation.from_records(records)

    for node in conversation.iter_main_thread():
        ...
    stats = conversation.statistics()
    assert stats.tools_balanced()
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from snatch.schemas.operations import StructuralAnomaly
from snatch.schemas.session.models import (
    AssistantRecord,
    SessionRecord,
    SystemRecord,
    ThinkingContent,
    ToolResultContent,
    ToolUseContent,
    UserRecord,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Types: Nodes
# =============================================================================


@dataclass
class ConversationNode:
    """One record placed in the tree.

    `parent_uuid` is the resolved parent: None for roots, including records
    whose parentUuid is dangling or whose parent edge was cut to break a
    cycle. The record itself still carries the parentUuid it was written with.
    """

    record: SessionRecord
    parent_uuid: str | None = None
    children: list[str] = field(default_factory=list)
    depth: int = 0
    on_main_thread: bool = False
    is_branch_point: bool = False

    @property
    def uuid(self) -> str:
        assert self.record.uuid is not None
        return self.record.uuid

    @property
    def is_root(self) -> bool:
        return self.parent_uuid is None

    @property
    def is_leaf(self) -> bool:
        return not self.children

    @property
    def occurred_at(self) -> datetime | None:
        return self.record.occurred_at


# =============================================================================
# Types: Turns and Statistics
# =============================================================================


@dataclass
class Turn:
    """A main-thread exchange: user message + the assistant record after it.

    Assistant records with no user record directly before them on the main
    thread yield turns with user=None.
    """

    user: UserRecord | None = None
    assistant: AssistantRecord | None = None
    tool_uses: list[ToolUseContent] = field(default_factory=list)
    tool_results: list[ToolResultContent] = field(default_factory=list)


@dataclass(frozen=True)
class UnlinkedToolResult:
    """A tool_result whose tool_use_id matched no earlier tool_use in the session."""

    uuid: str  # User record carrying the result
    tool_use_id: str


@dataclass(frozen=True)
class ConversationStats:
    """Aggregate structure counts for one conversation."""

    total_nodes: int
    user_messages: int
    assistant_messages: int
    system_messages: int
    tool_uses: int
    tool_results: int
    thinking_blocks: int
    branch_count: int
    max_depth: int
    main_thread_length: int
    unlinked_tool_results: int
    anomalies: int

    def tools_balanced(self) -> bool:
        """Every tool call has a result (diagnostic, not enforced)."""
        return self.tool_uses == self.tool_results


# =============================================================================
# Conversation
# =============================================================================


class Conversation:
    """Tree view of one session.

    Attributes:
        nodes: uuid -> node, in encounter order
        roots: uuids with no resolvable parent, in encounter order (roots
            created by breaking a cycle come last)
        main_thread: first-child path from the first root to a leaf
        branch_points: uuids with more than one child, in encounter order
        tool_links: tool_use id -> uuid of the assistant node that emitted
            it, for every tool_use that has a matching tool_result
        tool_use_owner: tool_use id -> owning assistant uuid, for every
            tool_use (the first owner wins if an id repeats)
        message_groups: API message id -> assistant uuids sharing it, in
            encounter order
        unlinked_tool_results: results with no earlier matching tool_use
        anomalies: structural problems found while building
        detached_records: records without a uuid (summaries, snapshots, ...)
    """

    def __init__(self) -> None:
        self.nodes: dict[str, ConversationNode] = {}
        self.roots: list[str] = []
        self.main_thread: list[str] = []
        self.branch_points: list[str] = []
        self.tool_links: dict[str, str] = {}
        self.tool_use_owner: dict[str, str] = {}
        self.message_groups: dict[str, list[str]] = {}
        self.unlinked_tool_results: list[UnlinkedToolResult] = []
        self.anomalies: list[StructuralAnomaly] = []
        self.detached_records: list[SessionRecord] = []

    @classmethod
    def from_records(cls, records: Iterable[SessionRecord]) -> Conversation:
        """Build the tree from the records of one session, in file order.

        Timestamps are not required to be monotone; encounter order is the
        authoritative tie-break everywhere.
        """
        conversation = cls()
        conversation._index(records)
        conversation._link()
        conversation._label()
        conversation._select_main_thread()
        return conversation

    # =========================================================================
    # Construction
    # =========================================================================

    def _index(self, records: Iterable[SessionRecord]) -> None:
        for record in records:
            uuid = record.uuid
            if uuid is None:
                self.detached_records.append(record)
                continue
            if uuid in self.nodes:
                logger.warning('Duplicate uuid %s: keeping the later %s record', uuid, record.type)
                self.anomalies.append(
                    StructuralAnomaly(
                        kind='duplicate_uuid',
                        uuid=uuid,
                        detail=f'uuid appears more than once; later {record.type} record replaces the earlier one',
                    )
                )
                self.nodes[uuid].record = record
            else:
                self.nodes[uuid] = ConversationNode(record=record)

        # Derived maps are built from the surviving records, in node order
        for uuid, node in self.nodes.items():
            record = node.record
            if isinstance(record, AssistantRecord):
                self.message_groups.setdefault(record.message_id, []).append(uuid)
                for tool_use in record.tool_uses:
                    self.tool_use_owner.setdefault(tool_use.id, uuid)
            elif isinstance(record, UserRecord):
                for result in record.tool_results:
                    owner = self.tool_use_owner.get(result.tool_use_id)
                    if owner is not None:
                        self.tool_links[result.tool_use_id] = owner
                    else:
                        self.unlinked_tool_results.append(UnlinkedToolResult(uuid, result.tool_use_id))
                        self.anomalies.append(
                            StructuralAnomaly(
                                kind='unmatched_tool_result',
                                uuid=uuid,
                                detail='tool_result has no earlier tool_use with this id',
                                related_id=result.tool_use_id,
                            )
                        )

    def _link(self) -> None:
        for uuid, node in self.nodes.items():
            parent = node.record.parentUuid
            if parent is None:
                self.roots.append(uuid)
            elif parent not in self.nodes:
                logger.debug('Record %s has dangling parent %s; treating it as a root', uuid, parent)
                self.anomalies.append(
                    StructuralAnomaly(
                        kind='dangling_parent',
                        uuid=uuid,
                        detail='parentUuid refers to a record that is not in this session',
                        related_id=parent,
                    )
                )
                self.roots.append(uuid)
            else:
                node.parent_uuid = parent
                self.nodes[parent].children.append(uuid)

    def _label(self) -> None:
        visited: set[str] = set()
        for root in self.roots:
            self._assign_depths(root, visited)

        # Whatever was not reached hangs off a parent loop
        if len(visited) < len(self.nodes):
            for uuid in list(self.nodes):
                if uuid not in visited:
                    cut = self._break_cycle(uuid, visited)
                    self._assign_depths(cut, visited)

        for uuid, node in self.nodes.items():
            node.is_branch_point = len(node.children) > 1
            if node.is_branch_point:
                self.branch_points.append(uuid)

    def _assign_depths(self, start: str, visited: set[str]) -> None:
        if start in visited:
            return
        stack = [(start, 0)]
        while stack:
            uuid, depth = stack.pop()
            if uuid in visited:
                continue
            visited.add(uuid)
            node = self.nodes[uuid]
            node.depth = depth
            stack.extend((child, depth + 1) for child in node.children)

    def _break_cycle(self, start: str, visited: set[str]) -> str:
        """Walk up from an unreached node until a uuid repeats; cut that node's parent edge.

        Returns the uuid that became a new root.
        """
        seen: set[str] = set()
        current = start
        while current not in seen:
            seen.add(current)
            parent = self.nodes[current].parent_uuid
            assert parent is not None and parent not in visited
            current = parent

        node = self.nodes[current]
        parent = node.parent_uuid
        assert parent is not None
        self.nodes[parent].children.remove(current)
        node.parent_uuid = None
        self.roots.append(current)

        logger.warning('Parent cycle through %s; detaching it from %s', current, parent)
        self.anomalies.append(
            StructuralAnomaly(
                kind='cycle',
                uuid=current,
                detail='parent links form a loop; edge to parent removed and node treated as a root',
                related_id=parent,
            )
        )
        return current

    def _select_main_thread(self) -> None:
        if not self.roots:
            return
        self.main_thread = self._first_child_path(self.roots[0])
        for uuid in self.main_thread:
            self.nodes[uuid].on_main_thread = True

    def _first_child_path(self, start: str) -> list[str]:
        path = [start]
        node = self.nodes[start]
        while node.children:
            child = node.children[0]
            path.append(child)
            node = self.nodes[child]
        return path

    # =========================================================================
    # Container Protocol
    # =========================================================================

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, uuid: object) -> bool:
        return uuid in self.nodes

    def __getitem__(self, uuid: str) -> ConversationNode:
        return self.nodes[uuid]

    def get_node(self, uuid: str) -> ConversationNode | None:
        return self.nodes.get(uuid)

    # =========================================================================
    # Iteration
    # =========================================================================

    def iter_depth_first(self, start: str | None = None) -> Iterator[ConversationNode]:
        """Pre-order traversal, children in encounter order.

        Covers every root in order, or only the subtree under `start`.
        """
        starts = [start] if start is not None else self.roots
        for root in starts:
            stack = [root]
            while stack:
                node = self.nodes[stack.pop()]
                yield node
                stack.extend(reversed(node.children))

    def iter_breadth_first(self, start: str | None = None) -> Iterator[ConversationNode]:
        """Level-order traversal starting from every root (or from `start`)."""
        queue = deque([start] if start is not None else self.roots)
        while queue:
            node = self.nodes[queue.popleft()]
            yield node
            queue.extend(node.children)

    def iter_main_thread(self) -> Iterator[ConversationNode]:
        """Nodes of the first-child thread."""
        for uuid in self.main_thread:
            yield self.nodes[uuid]

    def iter_deepest_thread(self) -> Iterator[ConversationNode]:
        """Nodes of the path ending at the deepest leaf."""
        for uuid in self.deepest_thread():
            yield self.nodes[uuid]

    def iter_latest_thread(self) -> Iterator[ConversationNode]:
        """Nodes of the path ending at the chronologically latest leaf."""
        for uuid in self.latest_thread():
            yield self.nodes[uuid]

    # =========================================================================
    # Thread Selection
    # =========================================================================

    def deepest_thread(self) -> list[str]:
        """Path from a root to the deepest leaf (earliest such leaf on ties)."""
        leaves = self.leaves()
        if not leaves:
            return []
        deepest = max(leaves, key=lambda node: node.depth)
        return self.path_to(deepest.uuid)

    def latest_thread(self) -> list[str]:
        """Path from a root to the leaf with the latest timestamp.

        Ties go to the leaf encountered last in the file. Leaves without a
        timestamp are only chosen when no leaf has one.
        """
        leaves = self.leaves()
        if not leaves:
            return []
        timed = [(node.occurred_at, index, node) for index, node in enumerate(leaves) if node.occurred_at is not None]
        if timed:
            latest = max(timed, key=lambda item: (item[0], item[1]))[2]
        else:
            latest = leaves[-1]
        return self.path_to(latest.uuid)

    # =========================================================================
    # Path and Subtree Queries
    # =========================================================================

    def path_to(self, uuid: str) -> list[str]:
        """Uuids from the nearest root down to `uuid`, inclusive.

        Raises:
            KeyError: If uuid is not a node of this conversation
        """
        node = self.nodes[uuid]
        path = [uuid]
        while node.parent_uuid is not None:
            path.append(node.parent_uuid)
            node = self.nodes[node.parent_uuid]
        path.reverse()
        return path

    def common_ancestor(self, a: str, b: str) -> str | None:
        """Deepest node on both root paths, or None when they share no root.

        Raises:
            KeyError: If either uuid is not a node of this conversation
        """
        common = None
        for left, right in zip(self.path_to(a), self.path_to(b)):
            if left != right:
                break
            common = left
        return common

    def subtree(self, uuid: str) -> list[ConversationNode]:
        """The node and all of its descendants, in depth-first order."""
        return list(self.iter_depth_first(uuid))

    def subtree_size(self, uuid: str) -> int:
        return sum(1 for _ in self.iter_depth_first(uuid))

    def leaves(self) -> list[ConversationNode]:
        return [node for node in self.nodes.values() if node.is_leaf]

    def nodes_at_depth(self, depth: int) -> list[ConversationNode]:
        return [node for node in self.nodes.values() if node.depth == depth]

    def children_of(self, uuid: str) -> list[ConversationNode]:
        return [self.nodes[child] for child in self.nodes[uuid].children]

    def parent_of(self, uuid: str) -> ConversationNode | None:
        parent = self.nodes[uuid].parent_uuid
        return self.nodes[parent] if parent is not None else None

    def branch_paths(self) -> list[list[str]]:
        """Root paths of every leaf that is not on the main thread."""
        return [self.path_to(node.uuid) for node in self.leaves() if not node.on_main_thread]

    def has_branches(self) -> bool:
        return bool(self.branch_points)

    def max_depth(self) -> int:
        return max((node.depth for node in self.nodes.values()), default=0)

    # =========================================================================
    # Record Views
    # =========================================================================

    def main_thread_records(self) -> list[SessionRecord]:
        return [self.nodes[uuid].record for uuid in self.main_thread]

    def chronological_records(self) -> list[SessionRecord]:
        """Node records sorted by timestamp; encounter order breaks ties.

        Records without a timestamp keep their relative order at the end.
        """
        timed = [node.record for node in self.nodes.values() if node.occurred_at is not None]
        untimed = [node.record for node in self.nodes.values() if node.occurred_at is None]
        timed.sort(key=lambda record: record.occurred_at)
        return timed + untimed

    def message_group(self, message_id: str) -> list[AssistantRecord]:
        """Assistant fragments sharing one API message id, in encounter order."""
        records: list[AssistantRecord] = []
        for uuid in self.message_groups.get(message_id, ()):
            record = self.nodes[uuid].record
            assert isinstance(record, AssistantRecord)
            records.append(record)
        return records

    def turns(self) -> list[Turn]:
        """Fold the main thread into (user, assistant) turns.

        A user record opens a turn and takes the assistant record directly
        after it, if any. Any other assistant record is an orphan turn.
        Other record kinds are skipped.
        """
        records = self.main_thread_records()
        turns: list[Turn] = []
        i = 0
        while i < len(records):
            record = records[i]
            if isinstance(record, UserRecord):
                turn = Turn(user=record, tool_results=record.tool_results)
                following = records[i + 1] if i + 1 < len(records) else None
                if isinstance(following, AssistantRecord):
                    turn.assistant = following
                    turn.tool_uses = following.tool_uses
                    i += 1
                turns.append(turn)
            elif isinstance(record, AssistantRecord):
                turns.append(Turn(assistant=record, tool_uses=record.tool_uses))
            i += 1
        return turns

    # =========================================================================
    # Statistics
    # =========================================================================

    def statistics(self) -> ConversationStats:
        users = assistants = systems = tool_uses = tool_results = thinking = 0
        for node in self.nodes.values():
            record = node.record
            if isinstance(record, UserRecord):
                users += 1
                tool_results += len(record.tool_results)
            elif isinstance(record, AssistantRecord):
                assistants += 1
                for block in record.content:
                    if isinstance(block, ToolUseContent):
                        tool_uses += 1
                    elif isinstance(block, ThinkingContent):
                        thinking += 1
            elif isinstance(record, SystemRecord):
                systems += 1

        return ConversationStats(
            total_nodes=len(self.nodes),
            user_messages=users,
            assistant_messages=assistants,
            system_messages=systems,
            tool_uses=tool_uses,
            tool_results=tool_results,
            thinking_blocks=thinking,
            branch_count=len(self.branch_points),
            max_depth=self.max_depth(),
            main_thread_length=len(self.main_thread),
            unlinked_tool_results=len(self.unlinked_tool_results),
            anomalies=len(self.anomalies),
        )

    def anomalies_of_kind(self, kind: str) -> Sequence[StructuralAnomaly]:
        return [anomaly for anomaly in self.anomalies if anomaly.kind == kind]
