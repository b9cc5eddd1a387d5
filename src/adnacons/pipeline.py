from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence, Tuple

import numpy as np
import pysam
from tqdm import tqdm

from .accumulator import PositionAccumulator
from .alleles import tabulate_alleles
from .caller import base_frequencies, call_consensus
from .config import RunConfig
from .correction import DamageCorrector, build_corrector
from .damage import DamageClassifier, build_classifier
from .models import DamagePattern, Observation, PositionKey, PositionResult
from .profiles import check_read_groups
from .reads import check_sort_order, iter_aligned_reads, used_read_groups
from .reference import Reference
from .utils import ensure_outdir, write_json
from .writers import RunOutputs

logger = logging.getLogger(__name__)

COVERAGE_HIST_MAX = 100


class PositionProcessor:
    """Classify, correct, call and tabulate one pileup slot.

    The classifier and corrector strategies are chosen once from the config.
    Positions below the coverage threshold are not classified; their reported
    corrected distribution is the raw one.
    """

    def __init__(
        self,
        config: RunConfig,
        reference: Reference,
        *,
        classifier: Optional[DamageClassifier] = None,
        corrector: Optional[DamageCorrector] = None,
    ) -> None:
        self.config = config
        self.reference = reference
        self.classifier = classifier if classifier is not None else build_classifier(config)
        self.corrector = corrector if corrector is not None else build_corrector(config)

    def __call__(self, key: PositionKey, observations: Tuple[Observation, ...]) -> PositionResult:
        ref_base = self.reference.base_at(key.coordinate) if key.offset == 0 else "N"
        raw_coverage = len(observations)
        prior = base_frequencies(observations)

        pattern = DamagePattern.NONE
        corrected_obs: Sequence[Observation] = observations
        if raw_coverage >= self.config.min_coverage:
            pattern = self.classifier.classify(observations, ref_base)
            if pattern.needs_correction:
                corrected_obs = self.corrector.correct(observations, pattern)

        corrected = base_frequencies(corrected_obs)
        call = call_consensus(
            raw_coverage,
            corrected,
            min_coverage=self.config.min_coverage,
            min_frequency=self.config.min_frequency,
        )
        return PositionResult(
            key=key,
            reference_base=ref_base,
            raw_coverage=raw_coverage,
            pattern=pattern,
            prior_frequencies=prior,
            corrected_frequencies=corrected,
            prior_alleles=tabulate_alleles(prior, ref_base),
            corrected_alleles=tabulate_alleles(corrected, ref_base),
            call=call,
        )


class _Tally:
    """Streaming per-position statistics for the run summary."""

    def __init__(self) -> None:
        self.coverage_counts = np.zeros(COVERAGE_HIST_MAX + 1, dtype=np.int64)
        self.freq_bins = np.linspace(0.0, 1.0, 21)
        self.freq_counts = np.zeros(len(self.freq_bins) - 1, dtype=np.int64)
        self.counts: Dict[str, int] = {
            "positions_total": 0,
            "positions_called": 0,
            "positions_n": 0,
            "positions_corrected_ct": 0,
            "positions_corrected_ga": 0,
            "insertion_slots_skipped": 0,
        }

    def add(self, result: PositionResult) -> None:
        self.counts["positions_total"] += 1
        self.coverage_counts[min(result.raw_coverage, COVERAGE_HIST_MAX)] += 1
        if result.call.is_informative:
            self.counts["positions_called"] += 1
            self.freq_counts += np.histogram([result.call.frequency], bins=self.freq_bins)[0]
        else:
            self.counts["positions_n"] += 1
        if result.pattern is DamagePattern.FORWARD_CT:
            self.counts["positions_corrected_ct"] += 1
        elif result.pattern is DamagePattern.REVERSE_GA:
            self.counts["positions_corrected_ga"] += 1

    def to_dict(self) -> Dict[str, object]:
        covered = int(self.coverage_counts[1:].sum())
        total = max(self.counts["positions_total"], 1)
        return {
            "counts": dict(self.counts),
            "breadth_of_coverage": covered / total,
            "coverage_hist": {
                "max_bin": COVERAGE_HIST_MAX,
                "counts": self.coverage_counts.tolist(),
            },
            "call_frequency_hist": {
                "bin_edges": self.freq_bins.tolist(),
                "counts": self.freq_counts.tolist(),
            },
        }


def reconstruct_reads(
    records: Iterable[pysam.AlignedSegment],
    *,
    reference: Reference,
    config: RunConfig,
    outputs: RunOutputs,
    read_counts: Dict[str, int],
) -> Dict[str, object]:
    """Stream sorted records through the accumulator and emit one result per reference position."""
    process = PositionProcessor(config, reference)
    acc = PositionAccumulator(end=len(reference))
    tally = _Tally()

    def publish(results: Iterable[PositionResult]) -> None:
        for res in results:
            if res.key.offset > 0:
                # insertion slots are buffered in order but not reported
                tally.counts["insertion_slots_skipped"] += 1
                continue
            tally.add(res)
            outputs.emit(res)

    max_pending = 0
    reads = iter_aligned_reads(
        records,
        contig=reference.contig,
        counts=read_counts,
        min_mapq=config.min_mapq,
        skip_duplicates=config.skip_duplicates,
    )
    for read in reads:
        publish(acc.flush_up_to(read.start, process))
        acc.add_read(read)
        max_pending = max(max_pending, len(acc))

    publish(acc.flush_all(process))

    out = tally.to_dict()
    out["max_buffered_slots"] = max_pending
    out["observations_beyond_contig"] = acc.dropped_beyond_end
    return out


def _empty_read_counts() -> Dict[str, int]:
    return {
        "reads_total": 0,
        "reads_used": 0,
        "reads_unmapped": 0,
        "reads_skipped_secondary": 0,
        "reads_skipped_supplementary": 0,
        "reads_skipped_duplicates": 0,
        "reads_skipped_mapq": 0,
        "reads_other_contig": 0,
        "reads_no_sequence": 0,
    }


def _check_profiles_cover_reads(bam_path: str | Path, reference: Reference, config: RunConfig) -> None:
    """Read-group pre-pass: every group the used records carry must resolve to a profile."""
    with pysam.AlignmentFile(str(bam_path), "rb") as bam:
        groups = used_read_groups(
            bam.fetch(until_eof=True),
            contig=reference.contig,
            min_mapq=config.min_mapq,
            skip_duplicates=config.skip_duplicates,
        )
    logger.info("Read groups in use: %s", ", ".join(groups) or "(none)")
    check_read_groups(config.profiles, groups)


def reconstruct_bam(
    *,
    bam_path: str | Path,
    reference: Reference,
    config: RunConfig,
    outdir: str | Path,
    progress: bool = True,
) -> Dict[str, object]:
    """Main workhorse: validate, stream the BAM, write consensus/VCF/ROI/log, return a summary.

    The header sort order and, for weighting, the read groups the records
    actually carry are checked before the scan starts and before any output is
    opened. Outputs appear only if the whole scan succeeds.
    """
    t0 = time.time()
    outdir_path = ensure_outdir(outdir)

    with pysam.AlignmentFile(str(bam_path), "rb") as bam:
        check_sort_order(bam)
        if reference.contig not in bam.references:
            logger.warning(
                "Reference contig %s is not in the BAM header; the consensus will be all N.",
                reference.contig,
            )
        if config.correction.needs_profiles and config.correction_enabled:
            _check_profiles_cover_reads(bam_path, reference, config)

        read_counts = _empty_read_counts()
        it: Iterable[pysam.AlignedSegment] = bam.fetch(until_eof=True)
        if progress:
            it = tqdm(it, unit="read", desc="Reconstructing")

        with RunOutputs(outdir_path, reference, config) as outputs:
            stats = reconstruct_reads(
                it,
                reference=reference,
                config=config,
                outputs=outputs,
                read_counts=read_counts,
            )
        output_counts = outputs.counts()

    dt = time.time() - t0
    logger.info(
        "Reconstructed %d positions (%d called, %d corrected) in %.1f s",
        stats["counts"]["positions_total"],  # type: ignore[index]
        stats["counts"]["positions_called"],  # type: ignore[index]
        stats["counts"]["positions_corrected_ct"] + stats["counts"]["positions_corrected_ga"],  # type: ignore[index]
        dt,
    )

    summary: Dict[str, object] = {
        "bam_path": str(bam_path),
        "contig": reference.contig,
        "contig_length": len(reference),
        "sample_name": config.sample_name,
        "correction_mode": config.correction.value,
        "detection_mode": config.detection.value,
        "min_coverage": config.min_coverage,
        "min_frequency": config.min_frequency,
        "min_mapq": config.min_mapq,
        "skip_duplicates": config.skip_duplicates,
        "vcf_records": config.vcf_records if config.write_vcf else None,
        "read_groups": sorted(config.profiles),
        "outputs": {k: str(v) for k, v in outputs.paths.items()},
        "output_counts": output_counts,
        "read_counts": read_counts,
        "runtime_seconds": float(dt),
    }
    summary.update(stats)

    write_json(outdir_path / "summary.json", summary)
    return summary
