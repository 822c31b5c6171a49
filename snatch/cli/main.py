#!/usr/bin/env python3
"""
Command-line interface for claude-snatch.

Thin commands over the reconstruction core: each one reads a session JSONL
file and prints one view of it (parse stats, tree structure, turns, retry
chains, billing blocks, liveness).
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated

import typer

from snatch.config.cli import settings
from snatch.exceptions import ParseError, SnatchError
from snatch.schemas.session.models import SessionRecord
from snatch.services.billing import aggregate_billing_blocks
from snatch.services.conversation import Conversation
from snatch.services.jsonl import serialize_record, write_jsonl
from snatch.services.parser import parse_line
from snatch.services.pricing import default_price
from snatch.services.retries import RetryChainTracker
from snatch.services.streaming import ParseStats, SessionReader, detect_session_state, has_incomplete_line

app = typer.Typer(
    name='snatch',
    help='Inspect and reconstruct Claude Code session logs',
    add_completion=False,
)

SessionFile = Annotated[
    Path, typer.Argument(exists=True, dir_okay=False, readable=True, help='Session JSONL file')
]


@app.callback()
def configure(verbose: bool = typer.Option(False, '--verbose', '-v', help='Verbose logging')) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.INFO if verbose else settings.LOG_LEVEL,
        format='%(levelname)s %(name)s: %(message)s',
    )


def _load(path: Path, strict: bool, max_bytes: int | None) -> tuple[list[SessionRecord], ParseStats]:
    """Read a session file with CLI defaults; exits with status 1 on failure."""
    try:
        with SessionReader.open(
            path,
            lenient=not strict and settings.LENIENT,
            max_bytes=settings.MAX_BYTES if max_bytes is None else max_bytes,
            max_recorded_errors=settings.MAX_RECORDED_ERRORS,
        ) as reader:
            records = reader.read_all()
    except (SnatchError, OSError) as e:
        typer.secho(f'Error: {e}', fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    return records, reader.stats


@app.command()
def validate(
    path: SessionFile,
    strict: bool = typer.Option(False, '--strict', help='Abort on the first malformed line'),
    max_bytes: int | None = typer.Option(None, '--max-bytes', help='Refuse larger files (0 = unlimited)'),
    output: Path | None = typer.Option(None, '--output', '-o', help='Write the re-serialized records here'),
) -> None:
    """Parse a session and check that every record re-serializes losslessly."""
    records, stats = _load(path, strict, max_bytes)

    mismatches = 0
    with open(path, encoding='utf-8', errors='replace') as f:
        for line_no, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                record = parse_line(line, line_no)
            except ParseError:
                continue
            if json.loads(serialize_record(record)) != json.loads(line):
                mismatches += 1
                typer.secho(f'  Line {line_no}: round-trip mismatch', fg=typer.colors.YELLOW)

    typer.secho('Parse statistics:', bold=True)
    typer.echo(f'  Lines: {stats.lines_processed} ({stats.empty_lines} empty, {stats.lines_skipped} skipped)')
    typer.echo(f'  Records: {stats.entries_parsed}')
    typer.echo(f'  Success rate: {stats.success_rate:.1f}%')
    typer.echo(f'  Schema: {stats.schema_version or "none"}')
    for warning in stats.warnings:
        typer.secho(f'  {warning.format()}', fg=typer.colors.YELLOW)
    for error in stats.errors:
        typer.secho(f'  {error}', fg=typer.colors.YELLOW)

    if mismatches or stats.lines_skipped or stats.io_errors:
        typer.secho(f'✗ {len(records)} records read with problems', fg=typer.colors.RED)
        raise typer.Exit(1)
    typer.secho(f'✓ {len(records)} records, round-trip clean', fg=typer.colors.GREEN)
    if output is not None:
        count = write_jsonl(output, records)
        typer.echo(f'Wrote {count} records to {output}')


@app.command()
def tree(
    path: SessionFile,
    strict: bool = typer.Option(False, '--strict', help='Abort on the first malformed line'),
    thread: str = typer.Option('main', '--thread', help='Thread to list: main, deepest or latest'),
) -> None:
    """Show conversation tree structure, branch points and anomalies."""
    records, _ = _load(path, strict, None)
    conversation = Conversation.from_records(records)
    stats = conversation.statistics()

    if thread == 'main':
        selected = conversation.main_thread
    elif thread == 'deepest':
        selected = conversation.deepest_thread()
    elif thread == 'latest':
        selected = conversation.latest_thread()
    else:
        raise typer.BadParameter("Must be 'main', 'deepest' or 'latest'", param_hint='--thread')

    typer.secho('Conversation:', bold=True)
    typer.echo(f'  Nodes: {stats.total_nodes} ({len(conversation.roots)} roots, max depth {stats.max_depth})')
    typer.echo(
        f'  Messages: {stats.user_messages} user, {stats.assistant_messages} assistant, {stats.system_messages} system'
    )
    typer.echo(f'  Tools: {stats.tool_uses} uses, {stats.tool_results} results')
    typer.echo(f'  Thinking blocks: {stats.thinking_blocks}')
    typer.echo(f'  Branch points: {stats.branch_count}')
    typer.echo(f'  {thread.capitalize()} thread: {len(selected)} nodes')
    if not stats.tools_balanced():
        typer.secho('  Tool uses and results are unbalanced', fg=typer.colors.YELLOW)

    for uuid in conversation.branch_points:
        typer.echo(f'  ├─ {uuid}: {len(conversation[uuid].children)} children')
    if conversation.anomalies:
        typer.echo()
        typer.secho('Anomalies:', bold=True)
        for anomaly in conversation.anomalies:
            typer.secho(f'  [{anomaly.kind}] {anomaly.uuid}: {anomaly.detail}', fg=typer.colors.YELLOW)


@app.command()
def turns(
    path: SessionFile,
    strict: bool = typer.Option(False, '--strict', help='Abort on the first malformed line'),
) -> None:
    """List main-thread turns."""
    records, _ = _load(path, strict, None)
    conversation = Conversation.from_records(records)

    for index, turn in enumerate(conversation.turns(), start=1):
        user = turn.user.text[:60].replace('\n', ' ') if turn.user else '-'
        tools = ', '.join(tool_use.name for tool_use in turn.tool_uses)
        typer.echo(f'{index:4d}  {user}')
        if tools:
            typer.secho(f'      tools: {tools}', fg=typer.colors.CYAN)
        if turn.tool_results:
            typer.echo(f'      results: {len(turn.tool_results)}')


@app.command()
def retries(
    path: SessionFile,
    strict: bool = typer.Option(False, '--strict', help='Abort on the first malformed line'),
) -> None:
    """Show API-error retry chains."""
    records, _ = _load(path, strict, None)
    tracker = RetryChainTracker()
    tracker.process(records)

    for chain in tracker.chains():
        outcome = 'recovered' if chain.succeeded else 'failed'
        color = typer.colors.GREEN if chain.succeeded else typer.colors.RED
        typer.secho(
            f'  {chain.root}: {chain.attempt_count} attempts, {chain.total_delay_ms:.0f} ms waited, {outcome}',
            fg=color,
        )

    stats = tracker.statistics()
    typer.secho('Retry statistics:', bold=True)
    typer.echo(f'  Chains: {stats.total_chains}')
    typer.echo(f'  Attempts: {stats.total_retries} (max {stats.max_retries_seen} in one chain)')
    typer.echo(f'  Recovered: {stats.successful_recoveries} ({stats.success_rate:.1f}%)')


@app.command()
def blocks(
    path: SessionFile,
    window_hours: int | None = typer.Option(None, '--window-hours', help='Billing window length in hours'),
    no_cost: bool = typer.Option(False, '--no-cost', help='Skip cost estimation'),
    strict: bool = typer.Option(False, '--strict', help='Abort on the first malformed line'),
) -> None:
    """Aggregate usage into billing blocks."""
    records, _ = _load(path, strict, None)
    now = datetime.now(UTC)
    try:
        billing_blocks = aggregate_billing_blocks(
            records,
            window_hours=settings.WINDOW_HOURS if window_hours is None else window_hours,
            price=None if no_cost else default_price,
            now=now,
        )
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint='--window-hours')

    for block in billing_blocks:
        label = f'{block.start:%Y-%m-%d %H:%M} - {block.end:%H:%M} UTC'
        typer.secho(f'{label}  [{block.status}]', bold=True)
        typer.echo(f'  Tokens: {block.input_tokens} in, {block.output_tokens} out ({block.total_tokens} total)')
        typer.echo(f'  Cache: {block.cache_read_tokens} read, {block.cache_creation_tokens} written')
        typer.echo(f'  Messages: {block.message_count}, tool calls: {block.tool_invocations}')
        if block.estimated_cost is not None:
            typer.echo(f'  Estimated cost: ${block.estimated_cost:.4f}')
        if block.is_active:
            minutes = int(block.remaining(now).total_seconds() // 60)
            typer.secho(f'  Remaining: {minutes // 60}h {minutes % 60}m', fg=typer.colors.CYAN)


@app.command()
def state(path: SessionFile) -> None:
    """Report whether a session file is still being written."""
    session_state = detect_session_state(path)
    color = typer.colors.GREEN if session_state.is_active else typer.colors.WHITE
    typer.secho(f'{path.name}: {session_state.description}', fg=color)
    if has_incomplete_line(path):
        typer.secho('  Last line is incomplete (write in progress)', fg=typer.colors.YELLOW)


def main() -> None:
    """Entry point for CLI."""
    app()


if __name__ == '__main__':
    main()
