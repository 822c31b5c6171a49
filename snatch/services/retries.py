"""
Retry-chain tracking - reconstructs API-error retry sequences.

When an API request fails, Claude Code writes a system record with
subtype 'api_error' per attempt:

    {"type": "system", "subtype": "api_error", "retryAttempt": 2,
     "maxRetries": 10, "retryInMs": 1134.5, "parentUuid": "<attempt 1>", ...}

Attempt 1 opens a chain whose root is its parentUuid (the record whose
request failed) or, failing that, its own uuid. Later attempts join:

    1. the chain that already contains their parentUuid, else
    2. the most recent chain whose last attempt number is one less, else
    3. a new chain rooted at their own uuid

A chain counts as a successful recovery when a non-error assistant record
answers it: one parented on the chain root or any attempt, or the first
user/assistant record after the final attempt.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from snatch.schemas.session.models import AssistantRecord, SessionRecord, SystemRecord, UserRecord


@dataclass(frozen=True)
class RetryAttempt:
    """One api_error record."""

    uuid: str
    retry_attempt: int  # 0 when the record carries no attempt number
    max_retries: int | None
    retry_in_ms: float | None
    timestamp: str
    parent_uuid: str | None = None


@dataclass
class RetryChain:
    """Attempts that arose from one logical request."""

    root: str
    attempts: list[RetryAttempt] = field(default_factory=list)
    succeeded: bool = False
    recovered_by: str | None = None  # uuid of the assistant record that answered

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def total_delay_ms(self) -> float:
        return sum(attempt.retry_in_ms for attempt in self.attempts if attempt.retry_in_ms is not None)

    @property
    def last_attempt(self) -> RetryAttempt:
        return self.attempts[-1]

    @property
    def max_retries(self) -> int | None:
        """Largest retry budget any attempt reported."""
        budgets = [attempt.max_retries for attempt in self.attempts if attempt.max_retries is not None]
        return max(budgets, default=None)

    def contains(self, uuid: str) -> bool:
        return any(attempt.uuid == uuid for attempt in self.attempts)


@dataclass(frozen=True)
class RetryStatistics:
    """Aggregate retry behavior across a session."""

    total_chains: int
    total_retries: int
    max_retries_seen: int  # Most attempts in any one chain
    successful_recoveries: int

    @property
    def success_rate(self) -> float:
        """Recovered chains as a percentage (0 when there were no chains)."""
        if self.total_chains == 0:
            return 0.0
        return self.successful_recoveries / self.total_chains * 100.0


class RetryChainTracker:
    """Builds retry chains from a session's records.

    Usage:
        tracker = RetryChainTracker()
        tracker.process(records)
        for chain in tracker.chains():
            print(chain.root, chain.attempt_count, chain.total_delay_ms, chain.succeeded)
    """

    def __init__(self) -> None:
        self._chains: dict[str, RetryChain] = {}
        self._chain_of_attempt: dict[str, str] = {}

    def process(self, records: Iterable[SessionRecord]) -> None:
        """Scan records in file order. May be called once per batch of records."""
        records = list(records)
        spans: dict[str, list[int]] = {}  # chain root -> [first index, last index] in this batch

        for index, record in enumerate(records):
            if isinstance(record, SystemRecord) and record.is_api_error:
                chain = self._add_error(record)
                span = spans.setdefault(chain.root, [index, index])
                span[1] = index

        for root, (first_index, last_index) in spans.items():
            self._resolve_outcome(self._chains[root], records, first_index, last_index)

    def _add_error(self, record: SystemRecord) -> RetryChain:
        attempt = RetryAttempt(
            uuid=record.uuid,
            retry_attempt=record.retryAttempt or 0,
            max_retries=record.maxRetries,
            retry_in_ms=float(record.retryInMs) if record.retryInMs is not None else None,
            timestamp=record.timestamp,
            parent_uuid=record.parentUuid,
        )

        if attempt.retry_attempt == 1:
            root = record.parentUuid or record.uuid
            if root in self._chains:
                root = record.uuid  # A fresh sequence from a parent that already had one
            chain = self._open_chain(root)
        else:
            chain = self._find_chain(attempt) or self._open_chain(record.uuid)

        chain.attempts.append(attempt)
        self._chain_of_attempt[attempt.uuid] = chain.root
        return chain

    def _open_chain(self, root: str) -> RetryChain:
        chain = RetryChain(root=root)
        self._chains[root] = chain
        return chain

    def _find_chain(self, attempt: RetryAttempt) -> RetryChain | None:
        if attempt.retry_attempt == 0:
            return None
        if attempt.parent_uuid is not None and attempt.parent_uuid in self._chain_of_attempt:
            return self._chains[self._chain_of_attempt[attempt.parent_uuid]]
        for chain in reversed(self._chains.values()):
            if chain.last_attempt.retry_attempt == attempt.retry_attempt - 1:
                return chain
        return None

    def _resolve_outcome(
        self, chain: RetryChain, records: list[SessionRecord], first_index: int, last_index: int
    ) -> None:
        answered = {attempt.uuid for attempt in chain.attempts} | {chain.root}

        for record in records[first_index + 1 :]:
            if isinstance(record, AssistantRecord) and not record.is_api_error and record.parentUuid in answered:
                chain.succeeded, chain.recovered_by = True, record.uuid
                return

        for record in records[last_index + 1 :]:
            if isinstance(record, AssistantRecord):
                if not record.is_api_error:
                    chain.succeeded, chain.recovered_by = True, record.uuid
                return
            if isinstance(record, UserRecord):
                return

    def chains(self) -> list[RetryChain]:
        """Chains in the order they were opened."""
        return list(self._chains.values())

    def chain_from(self, root: str) -> RetryChain | None:
        return self._chains.get(root)

    def chain_containing(self, uuid: str) -> RetryChain | None:
        root = self._chain_of_attempt.get(uuid)
        return self._chains[root] if root is not None else None

    def statistics(self) -> RetryStatistics:
        chains = self._chains.values()
        return RetryStatistics(
            total_chains=len(chains),
            total_retries=sum(chain.attempt_count for chain in chains),
            max_retries_seen=max((chain.attempt_count for chain in chains), default=0),
            successful_recoveries=sum(1 for chain in chains if chain.succeeded),
        )
