from __future__ import annotations

import logging
from typing import Dict, Iterable, Mapping

from .models import BASE_ORDER, NO_CALL, NO_CALL_FREQUENCY, ConsensusCall, Observation

logger = logging.getLogger(__name__)


def base_frequencies(observations: Iterable[Observation]) -> Dict[str, float]:
    """Sum observation weights per base. Always has A, C, G and T; N is not counted."""
    freqs = {b: 0.0 for b in BASE_ORDER}
    for obs in observations:
        if obs.base in freqs:
            freqs[obs.base] += obs.weight
    return freqs


def majority_base(frequencies: Mapping[str, float]) -> str:
    """Highest-weight base; ties go to the earliest base in A, C, G, T order."""
    best = BASE_ORDER[0]
    best_weight = frequencies.get(best, 0.0)
    for base in BASE_ORDER[1:]:
        w = frequencies.get(base, 0.0)
        if w > best_weight:
            best, best_weight = base, w
    return best


def call_consensus(
    raw_coverage: int,
    frequencies: Mapping[str, float],
    *,
    min_coverage: int,
    min_frequency: float,
) -> ConsensusCall:
    """Apply the coverage and frequency thresholds to a (corrected) base distribution.

    ``raw_coverage`` is the number of observations before correction, N bases
    included. Any threshold failure yields ``ConsensusCall('N', -1.0)``.
    """
    if raw_coverage < min_coverage:
        return ConsensusCall(NO_CALL, NO_CALL_FREQUENCY)

    total = sum(frequencies.get(b, 0.0) for b in BASE_ORDER)
    if total <= 0.0:
        return ConsensusCall(NO_CALL, NO_CALL_FREQUENCY)

    base = majority_base(frequencies)
    freq = frequencies[base] / total
    if freq < min_frequency:
        return ConsensusCall(NO_CALL, NO_CALL_FREQUENCY)
    return ConsensusCall(base, freq)
