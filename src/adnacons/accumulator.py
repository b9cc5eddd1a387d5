from __future__ import annotations

import bisect
import logging
from typing import Callable, Dict, List, Optional, Tuple, TypeVar

from .errors import ReadOrderError
from .models import Observation, PositionKey
from .reads import AlignedRead

logger = logging.getLogger(__name__)

T = TypeVar("T")

PositionProcess = Callable[[PositionKey, Tuple[Observation, ...]], T]


class PositionAccumulator:
    """Ordered pileup buffer for a single forward pass over sorted reads.

    Observations are buffered per ``PositionKey`` and released in ascending key
    order by ``flush_up_to``. Every reference coordinate between flushes is
    emitted, with an empty observation tuple where no read covered it, so the
    consumer sees each position exactly once. Flushed coordinates are evicted
    and can never receive observations again.

    Parameters
    ----------
    end:
        Last valid reference coordinate (contig length). Observations past it are
        dropped and counted in ``dropped_beyond_end``.
    """

    def __init__(self, *, end: Optional[int] = None) -> None:
        self.end = end
        self._slots: Dict[PositionKey, List[Observation]] = {}
        self._keys: List[PositionKey] = []  # sorted
        self._cursor = 1  # next coordinate to flush
        self._last_start = 0
        self.dropped_beyond_end = 0

    def __len__(self) -> int:
        return len(self._keys)

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def pending_coordinates(self) -> int:
        return len({k.coordinate for k in self._keys})

    def add_read(self, read: AlignedRead) -> int:
        """Buffer one observation per aligned reference base of ``read``.

        Returns the number of observations added. Raises ReadOrderError if the
        read starts before the previous read or inside already-flushed territory.
        """
        if read.start < self._last_start:
            raise ReadOrderError(
                f"Input is not coordinate-sorted: read {read.name} starts at {read.start} "
                f"after a read starting at {self._last_start}.",
                read_name=read.name,
                coordinate=read.start,
            )
        if read.start < self._cursor:
            raise ReadOrderError(
                f"Read {read.name} starts at {read.start}, but positions up to "
                f"{self._cursor - 1} were already emitted.",
                read_name=read.name,
                coordinate=read.start,
            )
        self._last_start = read.start

        added = 0
        strand = read.strand
        for coord in range(read.start, read.end + 1):
            resolved = read.base_at(coord)
            if resolved is None:
                continue
            if self.end is not None and coord > self.end:
                self.dropped_beyond_end += 1
                continue
            base, offset = resolved
            self._insert(
                PositionKey(coord, 0),
                Observation(
                    base=base,
                    read_offset=offset,
                    read_length=read.length,
                    strand=strand,
                    read_group=read.read_group,
                ),
            )
            added += 1
        return added

    def add_observation(self, key: PositionKey, observation: Observation) -> None:
        """Buffer a single observation at an arbitrary slot, including insertion offsets."""
        if key.coordinate < self._cursor:
            raise ReadOrderError(
                f"Position {key.coordinate} was already emitted and evicted.",
                coordinate=key.coordinate,
            )
        if key.coordinate < 1 or key.offset < 0:
            raise ValueError(f"Invalid position key: {key}")
        self._insert(key, observation)

    def _insert(self, key: PositionKey, observation: Observation) -> None:
        slot = self._slots.get(key)
        if slot is None:
            slot = []
            self._slots[key] = slot
            bisect.insort(self._keys, key)
        slot.append(observation)

    def flush_up_to(self, coordinate: int, process: PositionProcess[T]) -> List[T]:
        """Process and evict every slot whose coordinate is strictly below ``coordinate``.

        Slots are handed to ``process`` in ascending (coordinate, offset) order.
        A coordinate without a buffered reference slot is still processed once,
        with no observations.
        """
        stop = coordinate
        if self.end is not None:
            stop = min(stop, self.end + 1)

        results: List[T] = []
        while self._cursor < stop:
            c = self._cursor
            if not self._keys or self._keys[0] != PositionKey(c, 0):
                results.append(process(PositionKey(c, 0), ()))
            while self._keys and self._keys[0].coordinate == c:
                key = self._keys[0]
                results.append(process(key, tuple(self._slots[key])))
                self._keys.pop(0)
                del self._slots[key]
            self._cursor = c + 1
        return results

    def flush_all(self, process: PositionProcess[T]) -> List[T]:
        """Flush to the end of the contig (or past the last buffered slot if unbounded)."""
        if self.end is not None:
            return self.flush_up_to(self.end + 1, process)
        if not self._keys:
            return []
        return self.flush_up_to(self._keys[-1].coordinate + 1, process)
