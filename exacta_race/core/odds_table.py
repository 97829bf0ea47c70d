"""Exacta odds table: integer payout multiplier per ordered pair.

The table is a keyed map populated once from :class:`RaceConfig` and
read-only afterwards.  :meth:`OddsTable.multiplier` is total over the
``n x n`` domain: the diagonal, unlisted pairs and out-of-range ids all
return ``0``, which settlement treats as "no payout".
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Tuple

from exacta_race.core.race_config import RaceConfig

Pair = Tuple[int, int]


class OddsTable:
    """Read-only mapping from ``(first, second)`` to multiplier."""

    __slots__ = ("_cells", "_size")

    def __init__(self, size: int, cells: Mapping[Pair, int]):
        table: Dict[Pair, int] = {}
        for (first, second), multiplier in cells.items():
            if not (0 <= first < size and 0 <= second < size) or first == second:
                raise ValueError(f"Invalid odds cell ({first}, {second}) for {size} runners")
            table[(first, second)] = multiplier
        self._size = size
        self._cells: Mapping[Pair, int] = MappingProxyType(table)

    @classmethod
    def from_config(cls, config: RaceConfig) -> OddsTable:
        return cls(
            config.num_participants,
            {(first, second): mult for first, second, mult in config.odds},
        )

    @property
    def size(self) -> int:
        return self._size

    def multiplier(self, first: int, second: int) -> int:
        """Payout multiplier for the exacta ``first -> second`` (``0`` if none)."""
        return self._cells.get((first, second), 0)

    def paying_pairs(self) -> Iterator[Tuple[int, int, int]]:
        """Yield ``(first, second, multiplier)`` for every cell with a payout, in id order."""
        for first in range(self._size):
            for second in range(self._size):
                mult = self.multiplier(first, second)
                if mult > 0:
                    yield first, second, mult

    def __len__(self) -> int:
        return sum(1 for _ in self.paying_pairs())

    def __repr__(self) -> str:
        return f"OddsTable(size={self._size}, paying_cells={len(self)})"
