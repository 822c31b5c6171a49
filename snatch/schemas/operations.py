"""
Operation result schemas.

Value objects produced by the parsing and reconstruction services. They
describe conditions found in the data and are reported, never raised.
"""

from __future__ import annotations

from typing import Literal

from snatch.schemas.types import BaseStrictModel


class SchemaWarning(BaseStrictModel):
    """A schema generation change observed inside one session.

    Sessions are assumed homogeneous; a later record whose version maps to a
    different generation than the first one produces a warning.
    """

    from_generation: str
    to_generation: str
    description: str
    is_breaking: bool
    recommendation: str
    line: int | None = None  # Line of the record that introduced the change

    def format(self) -> str:
        severity = 'BREAKING' if self.is_breaking else 'WARNING'
        return (
            f'[{severity}] Schema changed from {self.from_generation} to {self.to_generation}: '
            f'{self.description}. {self.recommendation}'
        )


AnomalyKind = Literal[
    'dangling_parent',  # parentUuid names a record that is not in the session
    'unmatched_tool_result',  # tool_result with no prior tool_use of that id
    'duplicate_uuid',  # two records share one uuid; the later one is kept
    'cycle',  # parent links form a loop; one edge was detached
]


class StructuralAnomaly(BaseStrictModel):
    """Structural problem found while building a conversation tree."""

    kind: AnomalyKind
    uuid: str  # Record the anomaly is attached to
    detail: str
    related_id: str | None = None  # Missing parent, tool_use id, ...
