"""Damage profile loading.

A damage profile is a tab-separated table with a header row and one row per
distance from a read end, e.g. as produced by DamageProfiler or mapDamage::

    pos   C>T     G>A
    1     0.31    0.02
    2     0.12    0.01

The 5' file is read from the first value column labelled ``C>T`` or ``G>A``
(or the second column of a two-column file); the 3' file likewise. Rows of
the 5' file start at the 5' terminus; rows of the 3' file end at the 3'
terminus, so its last row is the last base of the read.

Several read groups are described by a profile table, one row per group::

    RG1   lib1_5p.txt   lib1_3p.txt
    RG2   lib2_5p.txt   lib2_3p.txt
"""

from __future__ import annotations

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import InputValidationError, MissingProfileError
from .models import DamageProfile
from .utils import open_textmaybe_gzip

logger = logging.getLogger(__name__)

DEFAULT_READ_GROUP = "default"

_VALUE_COLUMNS = ("C>T", "G>A")


def _data_lines(path: Path) -> List[List[str]]:
    rows: List[List[str]] = []
    with open_textmaybe_gzip(path, "rt") as fh:
        for line in fh:
            line = line.rstrip("\n").rstrip("\r")
            if not line.strip() or line.startswith("#"):
                continue
            rows.append(line.split("\t"))
    return rows


def _value_column(header: List[str], path: Path) -> int:
    cols = [c.strip() for c in header]
    for name in _VALUE_COLUMNS:
        if name in cols:
            return cols.index(name)
    if len(cols) == 2:
        return 1
    raise InputValidationError(
        f"Damage profile {path} has no 'C>T' or 'G>A' column (header: {' '.join(cols)})"
    )


def parse_profile_file(path: str | Path) -> Tuple[float, ...]:
    """Parse one damage profile file into probabilities, in file row order."""
    p = Path(path)
    if not p.exists():
        raise InputValidationError(f"Damage profile does not exist: {p}")

    rows = _data_lines(p)
    if not rows:
        raise InputValidationError(f"Damage profile is empty: {p}")

    col = _value_column(rows[0], p)
    values: List[float] = []
    for lineno, row in enumerate(rows[1:], start=2):
        try:
            v = float(row[col])
        except (IndexError, ValueError):
            raise InputValidationError(
                f"Damage profile {p}, row {lineno}: expected a number in column {col + 1}"
            ) from None
        if not 0.0 <= v <= 1.0:
            raise InputValidationError(
                f"Damage profile {p}, row {lineno}: probability {v} is outside [0, 1]"
            )
        values.append(v)

    if not values:
        raise InputValidationError(f"Damage profile has a header but no values: {p}")
    return tuple(values)


def load_profile_pair(
    dp5: str | Path, dp3: str | Path, *, read_group: str = DEFAULT_READ_GROUP
) -> DamageProfile:
    profile = DamageProfile(
        read_group=read_group,
        five_prime=parse_profile_file(dp5),
        three_prime=parse_profile_file(dp3),
    )
    logger.info(
        "Damage profile %s: %d 5' and %d 3' positions (max 5' C>T %.3f)",
        read_group,
        len(profile.five_prime),
        len(profile.three_prime),
        max(profile.five_prime),
    )
    return profile


def load_profile_table(path: str | Path) -> Dict[str, DamageProfile]:
    """Load per-read-group profiles from a ``read_group  dp5  dp3`` table."""
    table = Path(path)
    if not table.exists():
        raise InputValidationError(f"Profile table does not exist: {table}")

    profiles: Dict[str, DamageProfile] = {}
    for row in _data_lines(table):
        if len(row) < 3:
            raise InputValidationError(
                f"Invalid profile table record in {table}: {' '.join(row)!r} "
                "(expected read_group, 5' profile, 3' profile)"
            )
        rg, dp5, dp3 = (x.strip() for x in row[:3])
        if rg in profiles:
            raise InputValidationError(f"Read group {rg} is listed twice in {table}")
        profiles[rg] = load_profile_pair(
            _resolve(table.parent, dp5), _resolve(table.parent, dp3), read_group=rg
        )

    if not profiles:
        raise InputValidationError(f"Profile table lists no read groups: {table}")
    return profiles


def _resolve(base: Path, p: str) -> Path:
    path = Path(p).expanduser()
    return path if path.is_absolute() else base / path


def freeze_profiles(profiles: Mapping[str, DamageProfile]) -> Mapping[str, DamageProfile]:
    return MappingProxyType(dict(profiles))


def resolve_profile(
    profiles: Mapping[str, DamageProfile], read_group: str
) -> Optional[DamageProfile]:
    """Profile for a read group, falling back to the ``default`` profile."""
    profile = profiles.get(read_group)
    if profile is None:
        profile = profiles.get(DEFAULT_READ_GROUP)
    return profile


def check_read_groups(profiles: Mapping[str, DamageProfile], read_groups: Iterable[str]) -> None:
    """Raise MissingProfileError unless every read group resolves to a profile."""
    missing = [rg for rg in read_groups if resolve_profile(profiles, rg) is None]
    if missing:
        raise MissingProfileError(missing)
