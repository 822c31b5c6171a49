"""Tests for schema generation detection and change warnings."""

from __future__ import annotations

import pytest

from snatch.schemas.session.generations import (
    Feature,
    Generation,
    ParsingStrategy,
    SchemaVersion,
    detect,
    detect_schema_change,
)


@pytest.mark.parametrize(
    ('version', 'label'),
    [
        ('1.0.0', 'v1_legacy'),
        ('1.0.128', 'v1_legacy'),
        ('2.0.0', 'v2_base'),
        ('2.0.29', 'v2_base'),
        ('2.0.30', 'v2_sandbox'),
        ('2.0.40', 'v2_slug'),
        ('2.0.44', 'v2_slug'),
        ('2.0.45', 'v2_hooks'),
        ('2.0.56', 'v2_compact'),
        ('2.0.63', 'v2_agents'),
        ('2.0.64', 'v2_unified'),
        ('2.0.70', 'v2_thinking'),
        ('2.0.73', 'v2_chrome'),
        ('2.0.74', 'v2_lsp'),
        ('2.0.200', 'v2_lsp'),
        ('2.1.0', 'v2_lsp'),
        ('2.3.9', 'v2_lsp'),
    ],
)
def test_known_versions(version: str, label: str) -> None:
    detected = detect(version)

    assert not detected.is_unknown
    assert str(detected) == label


@pytest.mark.parametrize('version', ['3.0.0', '0.9.1', '2.0', 'not-a-version', '', 'v2.0.74'])
def test_unrecognized_versions_are_unknown(version: str) -> None:
    detected = detect(version)

    assert detected.is_unknown
    assert detected.raw == version
    assert str(detected) == f'unknown({version})'


def test_detection_is_pure() -> None:
    assert detect('2.0.74') == detect('2.0.74')
    assert detect('2.0.74') == SchemaVersion(Generation.V2_LSP)


def test_features_are_cumulative() -> None:
    hooks = detect('2.0.50')

    assert hooks.supports(Feature.SANDBOX)
    assert hooks.supports('slug')
    assert hooks.supports(Feature.HOOKS)
    assert not hooks.supports(Feature.COMPACT_METADATA)
    assert not hooks.supports(Feature.LSP)
    assert detect('1.0.0').features() == frozenset()
    assert detect('2.0.74').features() == frozenset(Feature)


def test_unknown_generation_supports_everything() -> None:
    unknown = detect('9.9.9')

    assert all(unknown.supports(feature) for feature in Feature)
    assert not unknown.supports('teleportation')


def test_parsing_strategy_per_generation() -> None:
    legacy = ParsingStrategy.for_version(detect('1.0.0'))
    hooks = ParsingStrategy.for_version(detect('2.0.45'))
    latest = ParsingStrategy.for_version(detect('2.0.74'))
    unknown = ParsingStrategy.for_version(detect('5.0.0'))

    assert legacy.is_field_optional('parentUuid')
    assert not legacy.is_type_expected('system')
    assert hooks.is_field_required('parentUuid')
    assert hooks.is_type_expected('system')
    assert hooks.expect_hooks and not hooks.expect_thinking_metadata
    assert latest.expect_lsp and latest.expect_thinking_metadata
    assert unknown.is_field_optional('isSidechain')
    assert not unknown.expect_sandbox


def test_no_warning_for_same_generation() -> None:
    assert detect_schema_change(detect('2.0.74'), detect('2.0.80')) is None


def test_agents_to_unified_is_breaking() -> None:
    warning = detect_schema_change(detect('2.0.60'), detect('2.0.65'), line=12)

    assert warning is not None
    assert warning.is_breaking
    assert warning.from_generation == 'v2_agents'
    assert warning.to_generation == 'v2_unified'
    assert warning.line == 12
    assert warning.format().startswith('[BREAKING]')


def test_compatible_upgrade_is_not_breaking() -> None:
    warning = detect_schema_change(detect('2.0.30'), detect('2.0.74'))

    assert warning is not None
    assert not warning.is_breaking
    assert warning.description == 'Upgraded to latest LSP-enabled schema'
    assert warning.format().startswith('[WARNING]')
