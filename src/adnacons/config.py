from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .errors import InputValidationError
from .models import CorrectionMode, DamageProfile, DetectionMode
from .profiles import freeze_profiles

logger = logging.getLogger(__name__)

VCF_RECORD_CHOICES = ("all", "corrected")

# Numeric modes 1-4 are accepted as aliases.
_CORRECTION_ALIASES = {
    "1": CorrectionMode.NONE,
    "no-cor": CorrectionMode.NONE,
    "2": CorrectionMode.SILENCE,
    "silencing": CorrectionMode.SILENCE,
    "3": CorrectionMode.WEIGHT,
    "weighting": CorrectionMode.WEIGHT,
    "4": CorrectionMode.WEIGHT_NO_UPVOTE,
}

_DETECTION_ALIASES = {
    "based": DetectionMode.REFERENCE_BASED,
    "ref-based": DetectionMode.REFERENCE_BASED,
    "free": DetectionMode.REFERENCE_FREE,
    "ref-free": DetectionMode.REFERENCE_FREE,
}


@dataclass(frozen=True)
class RunConfig:
    """Immutable run configuration, built once and passed to every component."""

    correction: CorrectionMode = CorrectionMode.NONE
    detection: DetectionMode = DetectionMode.NONE
    min_coverage: int = 1
    min_frequency: float = 0.0
    profiles: Mapping[str, DamageProfile] = field(default_factory=lambda: freeze_profiles({}))
    sample_name: str = "sample"
    vcf_records: str = "all"
    write_vcf: bool = True
    min_mapq: int = 0
    skip_duplicates: bool = True

    @property
    def output_prefix(self) -> str:
        return f"{self.sample_name}_{self.correction.short_name}"

    @property
    def correction_enabled(self) -> bool:
        return self.correction is not CorrectionMode.NONE and self.detection is not DetectionMode.NONE


def parse_correction_mode(value: str | CorrectionMode) -> CorrectionMode:
    if isinstance(value, CorrectionMode):
        return value
    key = str(value).strip().lower()
    if key in _CORRECTION_ALIASES:
        return _CORRECTION_ALIASES[key]
    try:
        return CorrectionMode(key)
    except ValueError:
        choices = ", ".join(m.value for m in CorrectionMode)
        raise InputValidationError(f"Unknown correction mode {value!r} (choose from: {choices})") from None


def parse_detection_mode(value: str | DetectionMode) -> DetectionMode:
    if isinstance(value, DetectionMode):
        return value
    key = str(value).strip().lower()
    if key in _DETECTION_ALIASES:
        return _DETECTION_ALIASES[key]
    try:
        return DetectionMode(key)
    except ValueError:
        choices = ", ".join(m.value for m in DetectionMode)
        raise InputValidationError(f"Unknown detection mode {value!r} (choose from: {choices})") from None


def build_config(
    *,
    correction: str | CorrectionMode = CorrectionMode.NONE,
    detection: Optional[str | DetectionMode] = None,
    min_coverage: int = 1,
    min_frequency: float = 0.0,
    profiles: Optional[Mapping[str, DamageProfile]] = None,
    sample_name: str = "sample",
    vcf_records: str = "all",
    write_vcf: bool = True,
    min_mapq: int = 0,
    skip_duplicates: bool = True,
) -> RunConfig:
    """Validate raw parameters and return a RunConfig.

    Raises InputValidationError for any invalid value; nothing is read from the
    alignment file before this succeeds.
    """
    cor = parse_correction_mode(correction)
    if detection is None:
        det = DetectionMode.NONE if cor is CorrectionMode.NONE else DetectionMode.REFERENCE_BASED
    else:
        det = parse_detection_mode(detection)

    if cor is CorrectionMode.NONE and det is not DetectionMode.NONE:
        logger.info("Correction mode is 'none'; damage detection (%s) is disabled.", det.value)
        det = DetectionMode.NONE

    try:
        min_cov = int(min_coverage)
    except (TypeError, ValueError):
        raise InputValidationError(f"Minimum coverage must be an integer. Given: {min_coverage!r}") from None
    if min_cov < 0 or (isinstance(min_coverage, float) and min_cov != min_coverage):
        raise InputValidationError(f"Minimum coverage must be a non-negative integer. Given: {min_coverage!r}")

    try:
        min_freq = float(min_frequency)
    except (TypeError, ValueError):
        raise InputValidationError(f"Minimum frequency must be a number. Given: {min_frequency!r}") from None
    if not 0.0 <= min_freq <= 1.0:
        raise InputValidationError(f"Minimum frequency must be between 0 and 1. Given: {min_frequency!r}")

    if vcf_records not in VCF_RECORD_CHOICES:
        raise InputValidationError(
            f"vcf_records must be one of {', '.join(VCF_RECORD_CHOICES)}. Given: {vcf_records!r}"
        )
    if min_mapq < 0:
        raise InputValidationError(f"Minimum MAPQ must be non-negative. Given: {min_mapq}")
    if not sample_name or any(c.isspace() for c in sample_name):
        raise InputValidationError(f"Sample name must be non-empty without whitespace. Given: {sample_name!r}")

    prof = dict(profiles or {})
    if cor.needs_profiles and not prof:
        raise InputValidationError(
            f"Correction mode '{cor.value}' requires damage profiles (--dp5/--dp3 or --profile-table)."
        )

    return RunConfig(
        correction=cor,
        detection=det,
        min_coverage=min_cov,
        min_frequency=min_freq,
        profiles=freeze_profiles(prof),
        sample_name=sample_name,
        vcf_records=vcf_records,
        write_vcf=bool(write_vcf),
        min_mapq=int(min_mapq),
        skip_duplicates=bool(skip_duplicates),
    )
