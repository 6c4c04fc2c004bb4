"""Version ordering and range matching tests."""
from __future__ import annotations

import itertools

import pytest

from provctl.versions import MavenVersion, VersionRange, compare_versions, latest_version

ORDERED = [
    "1.0.0.Alpha1",
    "1.0.0.Beta1",
    "1.0.0.Beta2",
    "1.0.0.CR1",
    "1.0.0-SNAPSHOT",
    "1.0.0.Final",
    "1.0.0.SP1",
    "1.0.1",
    "1.2",
    "1.9.0",
    "1.10.0",
    "2.0.0.Final",
]


def test_versions_compare_numerically_not_lexically() -> None:
    """Numeric segments compare by value."""
    assert compare_versions("1.10.0", "1.9.0") == 1
    assert compare_versions("1.9.0", "1.10.0") == -1
    assert compare_versions("2.0", "10.0") == -1


def test_release_qualifiers_and_trailing_zeros_are_insignificant() -> None:
    """``1.0.0.Final`` is the same version as ``1``."""
    assert compare_versions("1.0.0.Final", "1") == 0
    assert compare_versions("1.0.0.GA", "1.0") == 0
    assert MavenVersion("2.0.0") == MavenVersion("2.0.0.Final")
    assert hash(MavenVersion("2.0.0")) == hash(MavenVersion("2"))


def test_qualifier_precedence() -> None:
    """Pre-release qualifiers sort before the release, service packs after."""
    versions = [MavenVersion(value) for value in ORDERED]
    shuffled = list(reversed(versions))
    assert [str(value) for value in sorted(shuffled)] == ORDERED


def test_letter_aliases_apply_only_before_numbers() -> None:
    """``a1`` means alpha-1 while a lone ``a`` is an unknown qualifier."""
    assert compare_versions("1.0-a1", "1.0-alpha-1") == 0
    assert compare_versions("1.0-b2", "1.0-beta-2") == 0
    assert compare_versions("1.0-cr1", "1.0-rc-1") == 0
    assert compare_versions("1.0-a", "1.0") == 1


def test_comparison_is_a_strict_total_order() -> None:
    """Reflexive equality, antisymmetry and transitivity over a sample."""
    sample = [MavenVersion(value) for value in ORDERED + ["1", "1.0.0", "1-sp-1", "1.0-foo"]]
    for left in sample:
        assert left._compare(left) == 0
    for left, right in itertools.product(sample, repeat=2):
        assert left._compare(right) == -right._compare(left)
    for first, second, third in itertools.product(sample, repeat=3):
        if first <= second and second <= third:
            assert first <= third


def test_latest_version_picks_highest() -> None:
    """The latest version honours semantic ordering."""
    assert latest_version(["1.9", "1.10", "1.10.0.Beta1"]) == "1.10"
    assert latest_version([]) is None


def test_empty_version_is_rejected() -> None:
    """Empty strings are not versions."""
    with pytest.raises(ValueError):
        MavenVersion("  ")


@pytest.mark.parametrize(
    ("spec", "inside", "outside"),
    [
        ("[1.0,)", ["1.0", "1.0.1", "3"], ["0.9", "1.0.0.Beta1"]),
        ("(1.0,2.0]", ["1.0.1", "2.0"], ["1.0", "2.0.1"]),
        ("[1.2]", ["1.2", "1.2.0"], ["1.2.1"]),
        ("1.5", ["1.5.0.Final"], ["1.6"]),
        ("[1,2),[3,4]", ["1.5", "3", "4"], ["2", "2.5", "4.1"]),
        ("(,1.0)", ["0.1"], ["1.0"]),
    ],
)
def test_version_range_contains(spec: str, inside: list[str], outside: list[str]) -> None:
    """Ranges admit exactly the versions inside their restrictions."""
    version_range = VersionRange.parse(spec)
    for version in inside:
        assert version_range.contains(version), version
    for version in outside:
        assert not version_range.contains(version), version


def test_from_floor_filters_candidates_in_order() -> None:
    """``from_floor`` builds the open-ended range used for update searches."""
    version_range = VersionRange.from_floor("1.5")

    assert str(version_range) == "[1.5,)"
    assert version_range.filter(["1.4", "2.0", "1.5", "1.6"]) == ["2.0", "1.5", "1.6"]


@pytest.mark.parametrize("spec", ["[1.0", "1.0]", "[[1,2]]", "[2,1]", "[]", "(1.0)"])
def test_malformed_ranges_raise(spec: str) -> None:
    """Malformed range syntax raises ``ValueError``."""
    with pytest.raises(ValueError):
        VersionRange.parse(spec)
