"""
Billing-block aggregation - usage summed over aligned wall-clock windows.

Usage is charged in fixed windows (5 hours by default). A record falls in
the block that starts at

    UTC midnight of its day + (hour // window_hours) * window_hours

so with the default window the blocks of a day start at 00:00, 05:00,
10:00, 15:00 and 20:00 UTC. The last block of a day runs past midnight
(20:00 - 01:00); when the window does not divide 24 the last block can
overlap the first block of the next day. Both are accepted: alignment is
always computed from the record's own day.

Token counters come from assistant usage only; message_count covers every
record with a timestamp. Cost is optional and computed by a caller-supplied
`price(model, usage)` callback (see snatch.services.pricing).
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from snatch.schemas.session.models import AssistantRecord, SessionRecord, TokenUsage

DEFAULT_WINDOW_HOURS = 5

type PriceFn = Callable[[str | None, TokenUsage], float]


class BlockStatus(StrEnum):
    ACTIVE = 'active'
    COMPLETED = 'completed'


@dataclass
class BillingBlock:
    """Counters for one window [start, end)."""

    start: datetime
    end: datetime
    status: BlockStatus = BlockStatus.COMPLETED
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    message_count: int = 0
    tool_invocations: int = 0
    estimated_cost: float | None = None
    models: Counter[str] = field(default_factory=Counter)
    tools_by_name: Counter[str] = field(default_factory=Counter)
    first_activity: datetime | None = None
    last_activity: datetime | None = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def window(self) -> timedelta:
        return self.end - self.start

    @property
    def is_active(self) -> bool:
        return self.status is BlockStatus.ACTIVE

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end

    def remaining(self, now: datetime | None = None) -> timedelta:
        """Time left in the window; zero once it has ended."""
        now = _as_utc(now) if now is not None else datetime.now(UTC)
        return max(self.end - now, timedelta(0))

    def _add_usage(self, usage: TokenUsage) -> None:
        self.input_tokens += usage.input_tokens
        self.output_tokens += usage.output_tokens
        self.cache_read_tokens += usage.cache_read_tokens
        self.cache_creation_tokens += usage.cache_write_tokens

    def _touch(self, instant: datetime) -> None:
        if self.first_activity is None or instant < self.first_activity:
            self.first_activity = instant
        if self.last_activity is None or instant > self.last_activity:
            self.last_activity = instant


def block_start(instant: datetime, window_hours: int = DEFAULT_WINDOW_HOURS) -> datetime:
    """Start of the aligned window containing instant (UTC)."""
    instant = _as_utc(instant)
    midnight = instant.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + timedelta(hours=(instant.hour // window_hours) * window_hours)


def aggregate_billing_blocks(
    records: Iterable[SessionRecord],
    *,
    window_hours: int = DEFAULT_WINDOW_HOURS,
    price: PriceFn | None = None,
    now: datetime | None = None,
) -> list[BillingBlock]:
    """
    Partition records into aligned billing blocks.

    Args:
        records: Records of one or more sessions, any order
        window_hours: Window length in whole hours (1-24)
        price: Optional cost callback; estimated_cost stays None without it
        now: Reference instant for the active block (defaults to current time)

    Returns:
        Blocks ordered by start. The latest-starting block that contains
        `now` is ACTIVE; every other block is COMPLETED.

    Raises:
        ValueError: If window_hours is outside 1-24
    """
    if not 1 <= window_hours <= 24:
        raise ValueError(f'window_hours must be between 1 and 24, got {window_hours}')
    window = timedelta(hours=window_hours)
    blocks: dict[datetime, BillingBlock] = {}

    for record in records:
        instant = record.occurred_at
        if instant is None:
            continue

        start = block_start(instant, window_hours)
        block = blocks.get(start)
        if block is None:
            block = BillingBlock(start=start, end=start + window, estimated_cost=0.0 if price else None)
            blocks[start] = block

        block.message_count += 1
        block._touch(instant)

        if not isinstance(record, AssistantRecord):
            continue
        for tool_use in record.tool_uses:
            block.tool_invocations += 1
            block.tools_by_name[tool_use.name] += 1
        usage = record.usage
        if usage is None:
            continue
        block._add_usage(usage)
        if record.model:
            block.models[record.model] += 1
        if price is not None:
            block.estimated_cost = (block.estimated_cost or 0.0) + price(record.model, usage)

    ordered = [blocks[start] for start in sorted(blocks)]
    _label_active(ordered, _as_utc(now) if now is not None else datetime.now(UTC))
    return ordered


def active_block(blocks: Iterable[BillingBlock]) -> BillingBlock | None:
    return next((block for block in blocks if block.is_active), None)


def _label_active(blocks: list[BillingBlock], now: datetime) -> None:
    for block in reversed(blocks):
        if block.contains(now):
            block.status = BlockStatus.ACTIVE
            return


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=UTC)
    return instant.astimezone(UTC)
