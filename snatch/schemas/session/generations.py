"""
Schema generations of the Claude Code session format.

Maps a record's `version` tag (the Claude Code release that wrote it) to a
discrete schema generation. Each generation enables a cumulative set of
format features; callers gate optional handling on
`SchemaVersion.supports(feature)`.

GENERATION TABLE (MAJOR.MINOR.PATCH):
    1.x.x             v1_legacy
    2.0.0  - 2.0.29   v2_base
    2.0.30 - 2.0.39   v2_sandbox    sandbox mode
    2.0.40 - 2.0.44   v2_slug       session slugs
    2.0.45 - 2.0.55   v2_hooks      hook events
    2.0.56 - 2.0.59   v2_compact    compaction metadata
    2.0.60 - 2.0.63   v2_agents     background agents
    2.0.64 - 2.0.69   v2_unified    unified task output (breaking)
    2.0.70 - 2.0.71   v2_thinking   thinking metadata
    2.0.72 - 2.0.73   v2_chrome     Chrome MCP
    2.0.74+, 2.1+     v2_lsp        LSP tools
    anything else     unknown(raw)  every feature enabled

Unknown versions are maximally permissive so that logs from future releases
still decode.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum, StrEnum

from packaging.version import InvalidVersion, Version

from snatch.schemas.operations import SchemaWarning


class Generation(IntEnum):
    """Closed, ordered set of schema generations."""

    V1_LEGACY = 0
    V2_BASE = 1
    V2_SANDBOX = 2
    V2_SLUG = 3
    V2_HOOKS = 4
    V2_COMPACT = 5
    V2_AGENTS = 6
    V2_UNIFIED = 7
    V2_THINKING = 8
    V2_CHROME = 9
    V2_LSP = 10
    UNKNOWN = 99

    @property
    def label(self) -> str:
        return self.name.lower()


class Feature(StrEnum):
    """Optional format features, each introduced by one generation."""

    SANDBOX = 'sandbox'
    SLUG = 'slug'
    HOOKS = 'hooks'
    COMPACT_METADATA = 'compact_metadata'
    BACKGROUND_AGENTS = 'background_agents'
    TASK_OUTPUT = 'task_output'
    THINKING_METADATA = 'thinking_metadata'
    CHROME_MCP = 'chrome_mcp'
    LSP = 'lsp'


# First generation that carries each feature; later generations keep it
FEATURE_INTRODUCED_IN: dict[Feature, Generation] = {
    Feature.SANDBOX: Generation.V2_SANDBOX,
    Feature.SLUG: Generation.V2_SLUG,
    Feature.HOOKS: Generation.V2_HOOKS,
    Feature.COMPACT_METADATA: Generation.V2_COMPACT,
    Feature.BACKGROUND_AGENTS: Generation.V2_AGENTS,
    Feature.TASK_OUTPUT: Generation.V2_UNIFIED,
    Feature.THINKING_METADATA: Generation.V2_THINKING,
    Feature.CHROME_MCP: Generation.V2_CHROME,
    Feature.LSP: Generation.V2_LSP,
}

# Patch ranges within 2.0.x, as (last patch inclusive, generation)
_V2_0_PATCH_RANGES: tuple[tuple[int, Generation], ...] = (
    (29, Generation.V2_BASE),
    (39, Generation.V2_SANDBOX),
    (44, Generation.V2_SLUG),
    (55, Generation.V2_HOOKS),
    (59, Generation.V2_COMPACT),
    (63, Generation.V2_AGENTS),
    (69, Generation.V2_UNIFIED),
    (71, Generation.V2_THINKING),
    (73, Generation.V2_CHROME),
)


@dataclass(frozen=True)
class SchemaVersion:
    """A detected generation; `raw` keeps the original tag for unknown versions."""

    generation: Generation
    raw: str | None = None

    @property
    def is_unknown(self) -> bool:
        return self.generation is Generation.UNKNOWN

    def supports(self, feature: Feature | str) -> bool:
        """Whether this generation carries a feature.

        Unknown feature names are never supported; the unknown generation
        supports every known feature.
        """
        try:
            feature = Feature(feature)
        except ValueError:
            return False
        if self.is_unknown:
            return True
        return self.generation >= FEATURE_INTRODUCED_IN[feature]

    def features(self) -> frozenset[Feature]:
        return frozenset(f for f in Feature if self.supports(f))

    def __str__(self) -> str:
        if self.is_unknown:
            return f'unknown({self.raw})'
        return self.generation.label


def detect(version: str) -> SchemaVersion:
    """Map a Claude Code version tag to its schema generation.

    Pure function. Tags with fewer than three release components, invalid
    tags and releases outside the known ranges map to unknown(raw).

    Args:
        version: Version string from a record, e.g. '2.0.74'

    Returns:
        The detected SchemaVersion
    """
    unknown = SchemaVersion(Generation.UNKNOWN, raw=version)
    # Claude Code writes bare release numbers; packaging would also accept 'v2.0.74'
    if not version[:1].isdigit():
        return unknown
    try:
        parsed = Version(version)
    except InvalidVersion:
        return unknown
    if len(parsed.release) < 3:
        return unknown

    major, minor, patch = parsed.release[:3]
    if major == 1:
        return SchemaVersion(Generation.V1_LEGACY)
    if major != 2:
        return unknown
    if minor >= 1:
        return SchemaVersion(Generation.V2_LSP)
    for last_patch, generation in _V2_0_PATCH_RANGES:
        if patch <= last_patch:
            return SchemaVersion(generation)
    return SchemaVersion(Generation.V2_LSP)


# ==============================================================================
# Parsing Strategy
# ==============================================================================


@dataclass(frozen=True)
class ParsingStrategy:
    """What a reader should expect from records of one generation."""

    expected_types: frozenset[str]
    required_fields: frozenset[str]
    optional_fields: frozenset[str] = field(default_factory=frozenset)
    expect_sandbox: bool = False
    expect_hooks: bool = False
    expect_thinking_metadata: bool = False
    expect_lsp: bool = False

    @classmethod
    def for_version(cls, version: SchemaVersion) -> ParsingStrategy:
        expected = {'user', 'assistant', 'summary'}
        required = {'type', 'uuid'}
        optional: set[str] = set()

        generation = version.generation
        if generation in (Generation.V1_LEGACY, Generation.UNKNOWN):
            optional |= {'parentUuid', 'isSidechain'}
        else:
            required.add('parentUuid')
        if generation >= Generation.V2_HOOKS and not version.is_unknown:
            expected.add('system')

        known = not version.is_unknown
        return cls(
            expected_types=frozenset(expected),
            required_fields=frozenset(required),
            optional_fields=frozenset(optional),
            expect_sandbox=known and version.supports(Feature.SANDBOX),
            expect_hooks=known and version.supports(Feature.HOOKS),
            expect_thinking_metadata=known and version.supports(Feature.TASK_OUTPUT),
            expect_lsp=known and version.supports(Feature.CHROME_MCP),
        )

    def is_type_expected(self, record_type: str) -> bool:
        return record_type in self.expected_types

    def is_field_required(self, name: str) -> bool:
        return name in self.required_fields

    def is_field_optional(self, name: str) -> bool:
        return name in self.optional_fields


# ==============================================================================
# Schema Change Detection
# ==============================================================================

_BREAKING_FROM_AGENTS = frozenset(
    {Generation.V2_UNIFIED, Generation.V2_THINKING, Generation.V2_CHROME, Generation.V2_LSP}
)


def detect_schema_change(
    previous: SchemaVersion, current: SchemaVersion, line: int | None = None
) -> SchemaWarning | None:
    """Describe a generation change between two records, or None if unchanged."""
    if previous == current:
        return None

    is_breaking = previous.generation is Generation.V2_AGENTS and current.generation in _BREAKING_FROM_AGENTS

    if previous.generation is Generation.V1_LEGACY:
        description = 'Upgraded from legacy v1.x format'
    elif previous.generation is Generation.V2_AGENTS and current.generation is Generation.V2_UNIFIED:
        description = 'Task output structure unified (breaking)'
    elif current.generation is Generation.V2_LSP:
        description = 'Upgraded to latest LSP-enabled schema'
    else:
        description = f'Schema version changed from {previous} to {current}'

    if is_breaking:
        recommendation = 'Re-export data with latest version for consistency'
    else:
        recommendation = 'No action required; changes are backward compatible'

    return SchemaWarning(
        from_generation=str(previous),
        to_generation=str(current),
        description=description,
        is_breaking=is_breaking,
        recommendation=recommendation,
        line=line,
    )
