"""Deamination pattern detection at a single pileup position.

Forward-strand C->T and reverse-strand G->A are the two signatures. When both
could apply at one position, C->T is checked first and wins.
"""

from __future__ import annotations

import abc
import logging
from typing import Sequence

from .config import RunConfig
from .models import DamagePattern, DetectionMode, Observation, Strand

logger = logging.getLogger(__name__)


def _has(observations: Sequence[Observation], base: str, strand: Strand | None = None) -> bool:
    for obs in observations:
        if obs.base == base and (strand is None or obs.strand is strand):
            return True
    return False


class DamageClassifier(abc.ABC):
    @abc.abstractmethod
    def classify(self, observations: Sequence[Observation], reference_base: str) -> DamagePattern:
        """Return the damage pattern present at a position."""


class NullClassifier(DamageClassifier):
    """Used when correction is disabled: no position is ever flagged."""

    def classify(self, observations: Sequence[Observation], reference_base: str) -> DamagePattern:
        return DamagePattern.NONE


class ReferenceBasedClassifier(DamageClassifier):
    """Flag C->T where the reference is C, G->A where the reference is G."""

    def classify(self, observations: Sequence[Observation], reference_base: str) -> DamagePattern:
        ref = reference_base.upper()
        if ref == "C" and _has(observations, "T", Strand.FORWARD):
            return DamagePattern.FORWARD_CT
        if ref == "G" and _has(observations, "A", Strand.REVERSE):
            return DamagePattern.REVERSE_GA
        return DamagePattern.NONE


class ReferenceFreeClassifier(DamageClassifier):
    """Flag positions from the pileup alone: C alongside forward T, or G alongside reverse A."""

    def classify(self, observations: Sequence[Observation], reference_base: str) -> DamagePattern:
        if _has(observations, "C") and _has(observations, "T", Strand.FORWARD):
            return DamagePattern.FORWARD_CT
        if _has(observations, "G") and _has(observations, "A", Strand.REVERSE):
            return DamagePattern.REVERSE_GA
        return DamagePattern.NONE


def build_classifier(config: RunConfig) -> DamageClassifier:
    if not config.correction_enabled:
        return NullClassifier()
    if config.detection is DetectionMode.REFERENCE_BASED:
        return ReferenceBasedClassifier()
    if config.detection is DetectionMode.REFERENCE_FREE:
        return ReferenceFreeClassifier()
    return NullClassifier()
