from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, NamedTuple, Tuple

BASE_ORDER: Tuple[str, ...] = ("A", "C", "G", "T")

NO_CALL = "N"
NO_CALL_FREQUENCY = -1.0


class PositionKey(NamedTuple):
    """Ordering key of a pileup slot.

    Attributes
    ----------
    coordinate:
        1-based reference coordinate.
    offset:
        Insertion offset after ``coordinate``; 0 is the reference base itself.
    """

    coordinate: int
    offset: int = 0


class Strand(str, enum.Enum):
    FORWARD = "+"
    REVERSE = "-"


class DamagePattern(str, enum.Enum):
    NONE = "NONE"
    FORWARD_CT = "CT"
    REVERSE_GA = "GA"

    @property
    def needs_correction(self) -> bool:
        return self is not DamagePattern.NONE


class CorrectionMode(str, enum.Enum):
    NONE = "none"
    SILENCE = "silence"
    WEIGHT = "weight"
    WEIGHT_NO_UPVOTE = "weight-noupvote"

    @property
    def short_name(self) -> str:
        return _CORRECTION_SHORT_NAMES[self]

    @property
    def description(self) -> str:
        return _CORRECTION_DESCRIPTIONS[self]

    @property
    def needs_profiles(self) -> bool:
        return self in (CorrectionMode.WEIGHT, CorrectionMode.WEIGHT_NO_UPVOTE)


_CORRECTION_SHORT_NAMES: Dict[CorrectionMode, str] = {
    CorrectionMode.NONE: "no-cor",
    CorrectionMode.SILENCE: "silence-dam",
    CorrectionMode.WEIGHT: "wc-WithUpvote",
    CorrectionMode.WEIGHT_NO_UPVOTE: "wc-NoUpvote",
}

_CORRECTION_DESCRIPTIONS: Dict[CorrectionMode, str] = {
    CorrectionMode.NONE: "no correction",
    CorrectionMode.SILENCE: "silence damage",
    CorrectionMode.WEIGHT: "weighted correction with reference upvote",
    CorrectionMode.WEIGHT_NO_UPVOTE: "weighted correction without reference upvote",
}


class DetectionMode(str, enum.Enum):
    NONE = "none"
    REFERENCE_BASED = "reference-based"
    REFERENCE_FREE = "reference-free"


@dataclass(frozen=True)
class Observation:
    """One read's evidence at one pileup slot.

    Observations are values: correction stages derive new ones with
    ``dataclasses.replace`` instead of editing them.

    Attributes
    ----------
    base:
        Observed base (A/C/G/T/N), uppercase.
    read_offset:
        0-based offset of the base in the read (query coordinates, soft clips included).
    read_length:
        Full query length of the read.
    strand:
        Mapping strand of the read.
    weight:
        Evidence mass carried by the observation.
    read_group:
        Read group id, used to select the damage profile.
    synthetic:
        True for the up-vote observation appended by weighting correction.
    """

    base: str
    read_offset: int
    read_length: int
    strand: Strand = Strand.FORWARD
    weight: float = 1.0
    read_group: str = "default"
    synthetic: bool = False

    @property
    def is_reverse(self) -> bool:
        return self.strand is Strand.REVERSE


@dataclass(frozen=True)
class DamageProfile:
    """Per-read-group deamination probabilities anchored at each read end."""

    read_group: str
    five_prime: Tuple[float, ...]
    three_prime: Tuple[float, ...]


@dataclass(frozen=True)
class ConsensusCall:
    base: str
    frequency: float

    @property
    def is_informative(self) -> bool:
        return self.base != NO_CALL


@dataclass(frozen=True)
class AlleleCounts:
    """Reference-first allele list with per-allele depth, as written to VCF AD."""

    alleles: Tuple[str, ...]
    counts: Tuple[int, ...]


@dataclass(frozen=True)
class PositionResult:
    """Everything reported for one flushed pileup slot."""

    key: PositionKey
    reference_base: str
    raw_coverage: int
    pattern: DamagePattern
    prior_frequencies: Dict[str, float]
    corrected_frequencies: Dict[str, float]
    prior_alleles: AlleleCounts
    corrected_alleles: AlleleCounts
    call: ConsensusCall

    @property
    def corrected(self) -> bool:
        return self.pattern.needs_correction
