from __future__ import annotations

from typing import List, Mapping

from .models import BASE_ORDER, AlleleCounts
from .utils import round_half_up


def tabulate_alleles(frequencies: Mapping[str, float], reference_base: str) -> AlleleCounts:
    """Reference-first allele list with rounded depths.

    The reference allele is always listed, even with depth 0. Other bases follow
    in A, C, G, T order when their weight rounds to at least 1. A reference base
    outside ACGT is reported as N.
    """
    ref = reference_base.upper()
    if ref not in BASE_ORDER:
        ref = "N"

    alleles: List[str] = [ref]
    counts: List[int] = [round_half_up(frequencies.get(ref, 0.0))]
    for base in BASE_ORDER:
        if base == ref:
            continue
        depth = round_half_up(frequencies.get(base, 0.0))
        if depth >= 1:
            alleles.append(base)
            counts.append(depth)
    return AlleleCounts(alleles=tuple(alleles), counts=tuple(counts))
