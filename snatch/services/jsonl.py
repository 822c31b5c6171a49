"""
JSONL serialization for session records.

The inverse of the line parser: re-emits records so that each output line is
JSON-value-equal to the line it was decoded from, unknown fields included.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path

from snatch.schemas.session.models import SessionRecord


def serialize_record(record: SessionRecord) -> str:
    """Serialize one record as a compact JSON line (without the newline).

    Serialization uses exclude_unset=True for round-trip fidelity (preserves
    fields explicitly set to None, unlike exclude_none which drops them).
    """
    return json.dumps(record.to_json_dict(), separators=(',', ':'), ensure_ascii=False)


def write_jsonl(path: Path, records: Iterable[SessionRecord]) -> int:
    """Write records to a JSONL file, one per line.

    Args:
        path: Output file path
        records: Records to write

    Returns:
        Number of records written
    """
    count = 0
    with open(path, 'w', encoding='utf-8') as f:
        for record in records:
            f.write(serialize_record(record) + '\n')
            count += 1
    return count
