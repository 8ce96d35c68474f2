"""
Immutable, name-sorted label sets.

Ordering follows Prometheus label comparison: pairwise by name then value,
shorter sets first on a common prefix.
"""
import json
from functools import total_ordering
from typing import Dict, Iterable, Iterator, Mapping, Tuple


@total_ordering
class Labels:
    """A sorted set of label name/value pairs."""

    __slots__ = ("_pairs",)

    def __init__(self, pairs: Iterable[Tuple[str, str]] = ()):
        merged: Dict[str, str] = {}
        for name, value in pairs:
            merged[name] = value
        self._pairs: Tuple[Tuple[str, str], ...] = tuple(sorted(merged.items()))

    @classmethod
    def from_map(cls, mapping: Mapping[str, str]) -> "Labels":
        return cls(mapping.items())

    @classmethod
    def from_strings(cls, *ss: str) -> "Labels":
        """Build from alternating name, value arguments."""
        if len(ss) % 2:
            raise ValueError("from_strings needs an even number of arguments")
        return cls(zip(ss[0::2], ss[1::2]))

    def get(self, name: str, default: str = "") -> str:
        for n, v in self._pairs:
            if n == name:
                return v
        return default

    def with_labels(self, **extra: str) -> "Labels":
        return Labels(list(self._pairs) + list(extra.items()))

    def merge(self, other: Mapping[str, str]) -> "Labels":
        return Labels(list(self._pairs) + list(other.items()))

    def without(self, *names: str) -> "Labels":
        return Labels((n, v) for n, v in self._pairs if n not in names)

    def to_dict(self) -> Dict[str, str]:
        return dict(self._pairs)

    def __iter__(self) -> Iterator[Tuple[str, str]]:
        return iter(self._pairs)

    def __len__(self) -> int:
        return len(self._pairs)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Labels):
            return NotImplemented
        return self._pairs == other._pairs

    def __lt__(self, other: "Labels") -> bool:
        return self._pairs < other._pairs

    def __hash__(self) -> int:
        return hash(self._pairs)

    def __str__(self) -> str:
        """
        Prometheus style `{name="value", ...}`, used as the alert identity.

        Values are quoted with json.dumps, which escapes control and some
        non-printable Unicode characters differently from Prometheus. Two
        label sets still map to distinct strings, but the text may not match
        the one Prometheus prints for unusual values.
        """
        inner = ", ".join(f"{n}={json.dumps(v, ensure_ascii=False)}" for n, v in self._pairs)
        return "{" + inner + "}"

    def __repr__(self) -> str:
        return f"Labels({self})"
