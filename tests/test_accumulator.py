from typing import List, Tuple

import pytest

from adnacons.accumulator import PositionAccumulator
from adnacons.errors import ReadOrderError
from adnacons.models import Observation, PositionKey
from adnacons.reads import AlignedRead


def make_read(name: str, start: int, seq: str, *, is_reverse: bool = False, skip=()) -> AlignedRead:
    bases = {}
    for i, b in enumerate(seq):
        coord = start + i
        if coord in skip:
            continue
        bases[coord] = (b, i)
    return AlignedRead(
        name=name,
        start=start,
        end=start + len(seq) - 1,
        length=len(seq),
        is_reverse=is_reverse,
        read_group="default",
        bases=bases,
    )


def collect(key: PositionKey, obs: Tuple[Observation, ...]) -> Tuple[PositionKey, str]:
    return key, "".join(o.base for o in obs)


def test_flush_emits_every_coordinate_in_order() -> None:
    acc = PositionAccumulator(end=10)
    acc.add_read(make_read("r1", 3, "ACG"))
    acc.add_read(make_read("r2", 4, "CGT"))

    out = acc.flush_all(collect)
    assert [k.coordinate for k, _ in out] == list(range(1, 11))
    assert dict(out)[PositionKey(1)] == ""
    assert dict(out)[PositionKey(3)] == "A"
    assert dict(out)[PositionKey(4)] == "CC"
    assert dict(out)[PositionKey(6)] == "T"
    assert len(acc) == 0


def test_flush_up_to_is_exclusive_and_evicts() -> None:
    acc = PositionAccumulator(end=20)
    acc.add_read(make_read("r1", 5, "AAAA"))

    out = acc.flush_up_to(7, collect)
    assert [k.coordinate for k, _ in out] == [1, 2, 3, 4, 5, 6]
    assert acc.cursor == 7
    # positions 7 and 8 are still buffered
    assert acc.pending_coordinates == 2

    with pytest.raises(ReadOrderError):
        acc.add_observation(PositionKey(6), Observation(base="A", read_offset=0, read_length=1))


def test_insertion_offsets_follow_their_coordinate() -> None:
    acc = PositionAccumulator(end=5)
    acc.add_observation(PositionKey(2, 2), Observation(base="G", read_offset=0, read_length=1))
    acc.add_observation(PositionKey(2, 1), Observation(base="T", read_offset=0, read_length=1))
    acc.add_observation(PositionKey(2, 0), Observation(base="A", read_offset=0, read_length=1))
    acc.add_observation(PositionKey(10, 0), Observation(base="C", read_offset=0, read_length=1))

    keys: List[PositionKey] = [k for k, _ in acc.flush_up_to(4, collect)]
    assert keys == [
        PositionKey(1, 0),
        PositionKey(2, 0),
        PositionKey(2, 1),
        PositionKey(2, 2),
        PositionKey(3, 0),
    ]


def test_numeric_not_lexical_ordering() -> None:
    acc = PositionAccumulator()
    acc.add_observation(PositionKey(10), Observation(base="A", read_offset=0, read_length=1))
    acc.add_observation(PositionKey(9), Observation(base="C", read_offset=0, read_length=1))
    acc.add_observation(PositionKey(100), Observation(base="G", read_offset=0, read_length=1))

    out = acc.flush_all(collect)
    assert out[8] == (PositionKey(9), "C")
    assert out[9] == (PositionKey(10), "A")
    assert out[-1] == (PositionKey(100), "G")
    assert len(out) == 100


def test_deletions_are_not_observations() -> None:
    acc = PositionAccumulator(end=6)
    added = acc.add_read(make_read("r1", 1, "ACGTAC", skip={3, 4}))
    assert added == 4

    out = dict(acc.flush_all(collect))
    assert out[PositionKey(3)] == ""
    assert out[PositionKey(5)] == "A"


def test_unsorted_reads_raise() -> None:
    acc = PositionAccumulator(end=50)
    acc.add_read(make_read("r1", 10, "ACGT"))
    with pytest.raises(ReadOrderError) as exc:
        acc.add_read(make_read("r2", 9, "ACGT"))
    assert exc.value.read_name == "r2"
    assert exc.value.coordinate == 9


def test_read_into_flushed_region_raises() -> None:
    acc = PositionAccumulator(end=50)
    acc.add_read(make_read("r1", 10, "ACGT"))
    acc.flush_up_to(12, collect)
    with pytest.raises(ReadOrderError):
        acc.add_read(make_read("r2", 11, "ACGT"))


def test_observations_past_contig_end_are_dropped() -> None:
    acc = PositionAccumulator(end=4)
    acc.add_read(make_read("r1", 3, "ACGT"))
    out = acc.flush_all(collect)
    assert [k.coordinate for k, _ in out] == [1, 2, 3, 4]
    assert acc.dropped_beyond_end == 2


def test_observation_carries_read_context() -> None:
    acc = PositionAccumulator(end=5)
    acc.add_read(make_read("r1", 2, "ACGT", is_reverse=True))

    seen = {}

    def grab(key, obs):
        seen[key.coordinate] = obs
        return key

    acc.flush_all(grab)
    (obs,) = seen[4]
    assert obs.base == "G"
    assert obs.read_offset == 2
    assert obs.read_length == 4
    assert obs.is_reverse
    assert obs.weight == 1.0
