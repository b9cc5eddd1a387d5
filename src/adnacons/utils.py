from __future__ import annotations

import gzip
import json
import logging
import math
from pathlib import Path
from typing import Any, Mapping, TextIO

logger = logging.getLogger(__name__)


def round_half_up(x: float) -> int:
    # Python's round() is banker's rounding; allele depths round 0.5 upwards.
    return int(math.floor(x + 0.5))


def format_number(x: float) -> str:
    """Format with at most two decimals and no trailing zeros (12.5, 0.83, 3)."""
    s = f"{x:.2f}".rstrip("0").rstrip(".")
    return "0" if s in ("", "-0") else s


def format_counts(counts: Mapping[str, float]) -> str:
    return ",".join(f"{base}={format_number(value)}" for base, value in counts.items())


def ensure_outdir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def open_textmaybe_gzip(path: str | Path, mode: str = "rt") -> TextIO:
    p = str(path)
    if p.endswith(".gz"):
        return gzip.open(p, mode)  # type: ignore[return-value]
    return open(p, mode)


def write_json(path: str | Path, obj: Any) -> None:
    with open(path, "wt", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=True)
