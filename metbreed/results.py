"""Containers for per-trait analysis results."""

from __future__ import annotations

from collections.abc import Mapping
from numbers import Integral
from dataclasses import dataclass, field
from typing import Dict, Generic, Iterator, List, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class TraitResults(Mapping, Generic[T]):
    """Ordered mapping of trait name to its result, also indexable by position."""

    traits: Dict[str, T] = field(default_factory=dict)

    def __getitem__(self, key: Union[str, int]) -> T:
        if isinstance(key, Integral):
            return list(self.traits.values())[key]
        return self.traits[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self.traits)

    def __len__(self) -> int:
        return len(self.traits)

    @property
    def names(self) -> List[str]:
        return list(self.traits)
