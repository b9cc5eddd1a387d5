"""Damage correction strategies.

Silencing masks damage-consistent bases (forward T for C->T, reverse A for
G->A) by turning them into N. Weighting keeps them but lowers their weight to
``1 - p``, where ``p`` is the deamination probability at the base's offset in
the read, and credits the complementary allele with the removed mass through a
single synthetic observation.
"""

from __future__ import annotations

import abc
import dataclasses
import logging
import math
from typing import Dict, Mapping, Sequence, Tuple

import numpy as np

from .config import RunConfig
from .errors import MissingProfileError
from .models import CorrectionMode, DamagePattern, DamageProfile, Observation, Strand
from .profiles import resolve_profile

logger = logging.getLogger(__name__)

# (strand, base) that carries the damage signature, and the allele it came from.
_DAMAGED: Dict[DamagePattern, Tuple[Strand, str, str]] = {
    DamagePattern.FORWARD_CT: (Strand.FORWARD, "T", "C"),
    DamagePattern.REVERSE_GA: (Strand.REVERSE, "A", "G"),
}


def is_damage_consistent(obs: Observation, pattern: DamagePattern) -> bool:
    if not pattern.needs_correction or obs.synthetic:
        return False
    strand, base, _ = _DAMAGED[pattern]
    return obs.strand is strand and obs.base == base


def map_profile_to_read(
    read_length: int,
    five_prime: Sequence[float],
    three_prime: Sequence[float],
    *,
    reverse: bool = False,
) -> np.ndarray:
    """Lay the 5' and 3' damage profiles onto a read of ``read_length`` bases.

    The 5' profile fills at most the first half of the read (rounded up), the 3'
    profile fills what remains from the other end, and uncovered middle bases get
    0. For reverse-strand reads the profiles swap ends and are read backwards,
    because the sequencing 5' end of a reverse-mapped read sits at its right end
    in reference orientation.
    """
    if read_length <= 0:
        return np.zeros(0, dtype=float)

    p5 = np.asarray(five_prime, dtype=float)
    p3 = np.asarray(three_prime, dtype=float)
    if reverse:
        p5, p3 = p3[::-1], p5[::-1]

    out = np.zeros(read_length, dtype=float)
    k5 = min(math.ceil(read_length / 2), len(p5))
    out[:k5] = p5[:k5]
    k3 = min(read_length - k5, len(p3))
    if k3 > 0:
        out[read_length - k3 :] = p3[len(p3) - k3 :]
    return out


class DamageCorrector(abc.ABC):
    @abc.abstractmethod
    def correct(
        self, observations: Sequence[Observation], pattern: DamagePattern
    ) -> Tuple[Observation, ...]:
        """Return a new observation tuple; the input is left untouched."""


class PassthroughCorrector(DamageCorrector):
    def correct(
        self, observations: Sequence[Observation], pattern: DamagePattern
    ) -> Tuple[Observation, ...]:
        return tuple(observations)


class SilencingCorrector(DamageCorrector):
    def correct(
        self, observations: Sequence[Observation], pattern: DamagePattern
    ) -> Tuple[Observation, ...]:
        if not pattern.needs_correction:
            return tuple(observations)
        return tuple(
            dataclasses.replace(obs, base="N") if is_damage_consistent(obs, pattern) else obs
            for obs in observations
        )


class WeightingCorrector(DamageCorrector):
    """Down-weight damage-consistent bases by their per-offset deamination probability.

    With ``upvote`` the summed probability is appended as one synthetic
    observation of the complementary allele, so the total weight at the
    position is unchanged.
    """

    def __init__(self, profiles: Mapping[str, DamageProfile], *, upvote: bool = True) -> None:
        self.profiles = profiles
        self.upvote = upvote
        self._cache: Dict[Tuple[str, int, bool], np.ndarray] = {}

    def damage_probability(self, obs: Observation) -> float:
        profile = resolve_profile(self.profiles, obs.read_group)
        if profile is None:
            raise MissingProfileError([obs.read_group])
        cache_key = (profile.read_group, obs.read_length, obs.is_reverse)
        mapped = self._cache.get(cache_key)
        if mapped is None:
            mapped = map_profile_to_read(
                obs.read_length, profile.five_prime, profile.three_prime, reverse=obs.is_reverse
            )
            self._cache[cache_key] = mapped
        if not 0 <= obs.read_offset < len(mapped):
            return 0.0
        return float(mapped[obs.read_offset])

    def correct(
        self, observations: Sequence[Observation], pattern: DamagePattern
    ) -> Tuple[Observation, ...]:
        if not pattern.needs_correction:
            return tuple(observations)

        strand, _, source_base = _DAMAGED[pattern]
        out = []
        upvote_total = 0.0
        for obs in observations:
            if is_damage_consistent(obs, pattern):
                p = self.damage_probability(obs)
                out.append(dataclasses.replace(obs, weight=obs.weight * (1.0 - p)))
                upvote_total += obs.weight * p
            else:
                out.append(obs)

        if self.upvote:
            out.append(
                Observation(
                    base=source_base,
                    read_offset=0,
                    read_length=0,
                    strand=strand,
                    weight=upvote_total,
                    read_group="",
                    synthetic=True,
                )
            )
        return tuple(out)


def build_corrector(config: RunConfig) -> DamageCorrector:
    if config.correction is CorrectionMode.SILENCE:
        return SilencingCorrector()
    if config.correction is CorrectionMode.WEIGHT:
        return WeightingCorrector(config.profiles, upvote=True)
    if config.correction is CorrectionMode.WEIGHT_NO_UPVOTE:
        return WeightingCorrector(config.profiles, upvote=False)
    return PassthroughCorrector()
