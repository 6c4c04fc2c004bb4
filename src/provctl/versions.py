"""Maven-style version ordering and version range matching.

Versions are compared segment by segment rather than as strings, so
``1.10.0`` sorts after ``1.9.0`` and ``2.0.0.Final`` equals ``2.0.0``.
Qualifiers follow the usual Maven precedence::

    alpha < beta < milestone < rc < snapshot < (release) < sp < other

Trailing zero or release segments carry no weight.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from functools import total_ordering

_QUALIFIER_RANK = {
    "alpha": 0,
    "beta": 1,
    "milestone": 2,
    "rc": 3,
    "snapshot": 4,
    "": 5,
    "sp": 6,
}
_RELEASE_RANK = _QUALIFIER_RANK[""]
_UNKNOWN_RANK = len(_QUALIFIER_RANK)
_ALIASES = {"cr": "rc", "ga": "", "final": "", "release": ""}
_LETTER_ALIASES = {"a": "alpha", "b": "beta", "m": "milestone"}

_NULL_ITEM: tuple[int, int, str] = (1, _RELEASE_RANK, "")


def _tokenize(text: str) -> list[str]:
    tokens: list[str] = []
    buffer = ""
    for char in text.strip().lower():
        if char in ".-_":
            if buffer:
                tokens.append(buffer)
                buffer = ""
            continue
        if buffer and buffer[-1].isdigit() != char.isdigit():
            tokens.append(buffer)
            buffer = ""
        buffer += char
    if buffer:
        tokens.append(buffer)
    return tokens


def _item_key(token: str, next_token: str | None) -> tuple[int, int, str]:
    if token.isdigit():
        number = int(token)
        return _NULL_ITEM if number == 0 else (2, number, "")
    if next_token is not None and next_token.isdigit() and token in _LETTER_ALIASES:
        token = _LETTER_ALIASES[token]
    token = _ALIASES.get(token, token)
    rank = _QUALIFIER_RANK.get(token)
    if rank is None:
        return (1, _UNKNOWN_RANK, token)
    return (1, rank, "")


def _version_key(text: str) -> tuple[tuple[int, int, str], ...]:
    tokens = _tokenize(text)
    items = [
        _item_key(token, tokens[index + 1] if index + 1 < len(tokens) else None)
        for index, token in enumerate(tokens)
    ]
    while items and items[-1] == _NULL_ITEM:
        items.pop()
    return tuple(items)


@total_ordering
class MavenVersion:
    """A parsed version string with a strict total order."""

    __slots__ = ("raw", "_key")

    def __init__(self, raw: str) -> None:
        """Parse *raw* into comparable segments."""
        if not isinstance(raw, str) or not raw.strip():
            raise ValueError("Version must be a non-empty string.")
        self.raw = raw.strip()
        self._key = _version_key(self.raw)

    def _compare(self, other: MavenVersion) -> int:
        length = max(len(self._key), len(other._key))
        left = self._key + (_NULL_ITEM,) * (length - len(self._key))
        right = other._key + (_NULL_ITEM,) * (length - len(other._key))
        if left == right:
            return 0
        return -1 if left < right else 1

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MavenVersion):
            return NotImplemented
        return self._key == other._key

    def __lt__(self, other: MavenVersion) -> bool:
        if not isinstance(other, MavenVersion):
            return NotImplemented
        return self._compare(other) < 0

    def __hash__(self) -> int:
        return hash(self._key)

    def __repr__(self) -> str:
        return f"MavenVersion({self.raw!r})"

    def __str__(self) -> str:
        return self.raw

    @property
    def is_snapshot(self) -> bool:
        """Return True for ``-SNAPSHOT`` builds."""
        return self.raw.upper().endswith("SNAPSHOT")


def compare_versions(left: str, right: str) -> int:
    """Return -1, 0 or 1 comparing two version strings semantically."""
    return MavenVersion(left)._compare(MavenVersion(right))


def latest_version(versions: Iterable[str]) -> str | None:
    """Return the highest version in *versions*, or None when empty."""
    best: MavenVersion | None = None
    for candidate in versions:
        parsed = MavenVersion(candidate)
        if best is None or parsed > best:
            best = parsed
    return best.raw if best is not None else None


@dataclass(frozen=True, slots=True)
class Restriction:
    """A single interval of a Maven version range."""

    lower: MavenVersion | None
    lower_inclusive: bool
    upper: MavenVersion | None
    upper_inclusive: bool

    def contains(self, version: MavenVersion) -> bool:
        """Return True when *version* falls inside the interval."""
        if self.lower is not None:
            if version < self.lower or (not self.lower_inclusive and version == self.lower):
                return False
        if self.upper is not None:
            if version > self.upper or (not self.upper_inclusive and version == self.upper):
                return False
        return True


@dataclass(frozen=True, slots=True)
class VersionRange:
    """Parsed Maven version range such as ``[1.0,)`` or ``[1,2),[3,4]``."""

    spec: str
    restrictions: tuple[Restriction, ...]

    @classmethod
    def parse(cls, spec: str) -> VersionRange:
        """Parse *spec*; a bare version is treated as an exact match."""
        text = spec.strip()
        if not text:
            raise ValueError("Version range must be a non-empty string.")
        if not any(char in text for char in "[]()"):
            exact = MavenVersion(text)
            return cls(text, (Restriction(exact, True, exact, True),))
        return cls(text, tuple(_parse_restriction(group) for group in _split_groups(text)))

    @classmethod
    def from_floor(cls, version: str) -> VersionRange:
        """Return the open-ended range ``[version,)``."""
        return cls.parse(f"[{version},)")

    def contains(self, version: str | MavenVersion) -> bool:
        """Return True when any restriction admits *version*."""
        parsed = version if isinstance(version, MavenVersion) else MavenVersion(version)
        return any(restriction.contains(parsed) for restriction in self.restrictions)

    def filter(self, versions: Iterable[str]) -> list[str]:
        """Return the subset of *versions* inside the range, preserving order."""
        return [candidate for candidate in versions if self.contains(candidate)]

    def __str__(self) -> str:
        return self.spec


def _split_groups(text: str) -> list[str]:
    groups: list[str] = []
    current = ""
    depth = 0
    for char in text:
        if char in "[(":
            if depth:
                raise ValueError(f"Nested brackets in version range '{text}'.")
            depth = 1
            current = char
        elif char in "])":
            if not depth:
                raise ValueError(f"Unbalanced version range '{text}'.")
            depth = 0
            groups.append(current + char)
            current = ""
        elif depth:
            current += char
        elif char not in ", ":
            raise ValueError(f"Unexpected character {char!r} in version range '{text}'.")
    if depth:
        raise ValueError(f"Unbalanced version range '{text}'.")
    return groups


def _parse_restriction(group: str) -> Restriction:
    lower_inclusive = group.startswith("[")
    upper_inclusive = group.endswith("]")
    inner = group[1:-1].strip()
    if "," not in inner:
        if not (lower_inclusive and upper_inclusive) or not inner:
            raise ValueError(f"Single version restriction must use brackets: '{group}'.")
        exact = MavenVersion(inner)
        return Restriction(exact, True, exact, True)

    lower_text, upper_text = (part.strip() for part in inner.split(",", 1))
    lower = MavenVersion(lower_text) if lower_text else None
    upper = MavenVersion(upper_text) if upper_text else None
    if lower is not None and upper is not None and upper < lower:
        raise ValueError(f"Range upper bound is below lower bound: '{group}'.")
    return Restriction(lower, lower_inclusive, upper, upper_inclusive)


__all__ = [
    "MavenVersion",
    "Restriction",
    "VersionRange",
    "compare_versions",
    "latest_version",
]
