"""Output writers: consensus FASTA, VCF, ROI BED and the correction log.

All files are written to ``<name>.partial`` and only renamed into place when
the whole scan succeeded, so an aborted run leaves no half-written output.
"""

from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Dict, List, Optional, TextIO

import pysam

from . import __version__
from .config import RunConfig
from .models import PositionResult
from .reference import Reference
from .utils import format_counts, format_number

logger = logging.getLogger(__name__)

FASTA_LINE_WIDTH = 70
ROI_UPSTREAM = 3
ROI_DOWNSTREAM = 2
NO_ALT_ALLELE = "<*>"


def _partial(path: Path) -> Path:
    return path.with_name(path.name + ".partial")


class FastaWriter:
    def __init__(self, path: Path, name: str) -> None:
        self.path = path
        self._fh: TextIO = open(_partial(path), "wt", encoding="utf-8")
        self._fh.write(f">{name}\n")
        self._line: List[str] = []
        self.length = 0

    def write_base(self, base: str) -> None:
        self._line.append(base)
        self.length += 1
        if len(self._line) == FASTA_LINE_WIDTH:
            self._fh.write("".join(self._line) + "\n")
            self._line = []

    def close(self) -> None:
        if self._line:
            self._fh.write("".join(self._line) + "\n")
            self._line = []
        self._fh.close()


def build_vcf_header(reference: Reference, config: RunConfig) -> pysam.VariantHeader:
    header = pysam.VariantHeader()
    header.add_meta("fileformat", "VCFv4.2")
    header.add_meta("source", f"adnacons-{__version__}")
    header.add_meta("correctionMode", config.correction.description)
    header.add_meta("detectionMode", config.detection.value)
    header.add_meta("minCoverage", str(config.min_coverage))
    header.add_meta("minFrequency", str(config.min_frequency))
    header.contigs.add(reference.contig, length=len(reference))
    header.add_line('##ALT=<ID=*,Description="No alternate allele observed">')
    header.info.add("DMG", number=1, type="String", description="Damage pattern detected at the position (NONE, CT or GA)")
    header.info.add("PAL", number=".", type="String", description="Alleles before damage correction, reference first")
    header.info.add("PAD", number=".", type="Integer", description="Allele depths before damage correction, in PAL order")
    header.info.add("CALL", number=1, type="String", description="Consensus base call")
    header.info.add("CALLF", number=1, type="Float", description="Frequency of the consensus call (-1 for N calls)")
    header.formats.add("AD", number="R", type="Integer", description="Allelic depths for the ref and alt alleles in the order listed")
    header.formats.add("DP", number=1, type="Integer", description="Number of reads covering the position before correction")
    header.add_sample(config.output_prefix)
    return header


class VcfWriter:
    def __init__(self, path: Path, reference: Reference, config: RunConfig) -> None:
        self.path = path
        self.contig = reference.contig
        self.records = 0
        self._vcf = pysam.VariantFile(str(_partial(path)), "w", header=build_vcf_header(reference, config))

    def write(self, result: PositionResult) -> None:
        pos0 = result.key.coordinate - 1
        alleles = result.corrected_alleles
        allele_list = alleles.alleles
        depths = alleles.counts
        if len(allele_list) == 1:
            # VCF records need an ALT; REF-only sites get the symbolic <*>
            allele_list = allele_list + (NO_ALT_ALLELE,)
            depths = depths + (0,)
        rec = self._vcf.new_record(
            contig=self.contig,
            start=pos0,
            stop=pos0 + 1,
            alleles=allele_list,
        )
        rec.info["DMG"] = result.pattern.value
        rec.info["PAL"] = result.prior_alleles.alleles
        rec.info["PAD"] = result.prior_alleles.counts
        rec.info["CALL"] = result.call.base
        rec.info["CALLF"] = round(result.call.frequency, 4)
        rec.samples[0]["AD"] = depths
        rec.samples[0]["DP"] = result.raw_coverage
        self._vcf.write(rec)
        self.records += 1

    def close(self) -> None:
        self._vcf.close()


class RoiWriter:
    """BED-like regions around corrected positions, for inspection in a genome browser."""

    def __init__(self, path: Path, reference: Reference) -> None:
        self.path = path
        self.contig = reference.contig
        self.contig_length = len(reference)
        self.records = 0
        self._fh: TextIO = open(_partial(path), "wt", encoding="utf-8")
        self._fh.write(
            "#CHROM=chromosome or scaffold name\n"
            "#ROI_START=0-based start position of ROI\n"
            "#ROI_END=1-based end position of ROI\n"
            "#CORRECTED_POS=1-based position of corrected variant\n"
            "#CHROM\tROI_START\tROI_END\tCORRECTED_POS\n"
        )

    def write(self, result: PositionResult) -> None:
        pos = result.key.coordinate
        start = max(pos - ROI_UPSTREAM, 0)
        end = min(pos + ROI_DOWNSTREAM, self.contig_length)
        self._fh.write(f"{self.contig}\t{start}\t{end}\tCORRECTED_POS:{pos}\n")
        self.records += 1

    def close(self) -> None:
        self._fh.close()


class CorrectionLogWriter:
    """Tab-separated log of corrected positions (or of every call when correction is off)."""

    def __init__(self, path: Path, reference: Reference, config: RunConfig) -> None:
        self.path = path
        self.contig = reference.contig
        self.all_calls = not config.correction_enabled
        self.records = 0
        self._fh: TextIO = open(_partial(path), "wt", encoding="utf-8")
        now = _dt.datetime.now().isoformat(timespec="seconds")
        self._fh.write(f"# adnacons {__version__} report, run {now}\n")
        self._fh.write(f"# correction mode: {config.correction.description}\n")
        self._fh.write(f"# detection mode: {config.detection.value}\n")
        self._fh.write(f"# minimum coverage: {config.min_coverage}\n")
        self._fh.write(f"# minimum frequency: {config.min_frequency}\n")
        if self.all_calls:
            self._fh.write("CHROM\tPOS\tBASE_CALL\tBASE_FREQ\n")
        else:
            self._fh.write(
                "CHROM\tPOS\tREF\tCOV\tALLELE_COUNTS_PRIOR\tALLELE_COUNTS_CORRECTED\tBASE_CALL\tBASE_FREQ\n"
            )

    def write(self, result: PositionResult) -> None:
        freq = format_number(result.call.frequency)
        if self.all_calls:
            self._fh.write(f"{self.contig}\t{result.key.coordinate}\t{result.call.base}\t{freq}\n")
        elif result.corrected:
            self._fh.write(
                f"{self.contig}\t{result.key.coordinate}\t{result.reference_base}\t{result.raw_coverage}\t"
                f"{format_counts(result.prior_frequencies)}\t{format_counts(result.corrected_frequencies)}\t"
                f"{result.call.base}\t{freq}\n"
            )
        else:
            return
        self.records += 1

    def close(self) -> None:
        self._fh.close()


class RunOutputs:
    """Owns every output of one run and publishes them atomically on success.

    Use as a context manager: on a clean exit the ``.partial`` files are renamed
    to their final names, on any exception they are deleted.
    """

    def __init__(self, outdir: Path, reference: Reference, config: RunConfig) -> None:
        prefix = config.output_prefix
        self.config = config
        self.paths: Dict[str, Path] = {
            "fasta": outdir / f"{prefix}.fasta",
            "corrections": outdir / f"{prefix}.corrections.tsv",
        }
        if config.write_vcf:
            self.paths["vcf"] = outdir / f"{prefix}.vcf"
        if config.correction_enabled:
            self.paths["roi"] = outdir / f"{prefix}.roi.bed"

        self.fasta: Optional[FastaWriter] = None
        self.log: Optional[CorrectionLogWriter] = None
        self.vcf: Optional[VcfWriter] = None
        self.roi: Optional[RoiWriter] = None
        try:
            self.fasta = FastaWriter(self.paths["fasta"], prefix)
            self.log = CorrectionLogWriter(self.paths["corrections"], reference, config)
            if "vcf" in self.paths:
                self.vcf = VcfWriter(self.paths["vcf"], reference, config)
            if "roi" in self.paths:
                self.roi = RoiWriter(self.paths["roi"], reference)
        except BaseException:
            self._discard()
            raise

    def emit(self, result: PositionResult) -> None:
        assert self.fasta is not None and self.log is not None
        self.fasta.write_base(result.call.base)
        self.log.write(result)
        if self.vcf is not None and (self.config.vcf_records == "all" or result.corrected):
            self.vcf.write(result)
        if self.roi is not None and result.corrected:
            self.roi.write(result)

    def counts(self) -> Dict[str, int]:
        return {
            "consensus_length": self.fasta.length if self.fasta is not None else 0,
            "vcf_records": self.vcf.records if self.vcf is not None else 0,
            "roi_records": self.roi.records if self.roi is not None else 0,
            "log_records": self.log.records if self.log is not None else 0,
        }

    def _close_all(self) -> None:
        for w in (self.fasta, self.log, self.vcf, self.roi):
            if w is not None:
                w.close()

    def _discard(self) -> None:
        self._close_all()
        for path in self.paths.values():
            _partial(path).unlink(missing_ok=True)

    def __enter__(self) -> "RunOutputs":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            logger.error("Run aborted; removing partial outputs.")
            self._discard()
            return
        self._close_all()
        for path in self.paths.values():
            _partial(path).replace(path)
