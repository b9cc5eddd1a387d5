from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Mapping, MutableMapping, Optional, Tuple

import pysam

from .errors import InputValidationError
from .models import Strand
from .profiles import DEFAULT_READ_GROUP

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlignedRead:
    """A mapped read reduced to what the pileup needs.

    Coordinates are 1-based and inclusive; ``bases`` maps each reference
    coordinate that is aligned to a read base onto ``(base, query_offset)``.
    Deleted and skipped reference positions are absent from ``bases``.
    """

    name: str
    start: int
    end: int
    length: int
    is_reverse: bool
    read_group: str
    bases: Mapping[int, Tuple[str, int]]

    @property
    def strand(self) -> Strand:
        return Strand.REVERSE if self.is_reverse else Strand.FORWARD

    def base_at(self, coordinate: int) -> Optional[Tuple[str, int]]:
        """(base, 0-based read offset) at a reference coordinate, or None for a deletion."""
        return self.bases.get(coordinate)


def aligned_read_from_segment(read: pysam.AlignedSegment) -> Optional[AlignedRead]:
    """Convert a pysam segment; returns None if it has no sequence or no aligned bases.

    The CIGAR is walked once. Query offsets count soft-clipped bases, so they
    index the read as sequenced (in reference orientation).
    """
    if read.is_unmapped or read.cigartuples is None:
        return None
    seq = read.query_sequence
    if not seq:
        return None

    bases: Dict[int, Tuple[str, int]] = {}
    ref_pos = read.reference_start + 1
    query_pos = 0

    for op, length in read.cigartuples:
        if op in (0, 7, 8):  # M, =, X: consumes query and ref
            for i in range(length):
                q = query_pos + i
                if q < len(seq):
                    bases[ref_pos + i] = (seq[q].upper(), q)
            ref_pos += length
            query_pos += length
        elif op in (1, 4):  # I, S: consumes query only
            query_pos += length
        elif op in (2, 3):  # D, N: consumes ref only
            ref_pos += length
        else:  # H, P, B: consume neither
            continue

    if not bases:
        return None

    return AlignedRead(
        name=str(read.query_name),
        start=int(read.reference_start) + 1,
        end=int(read.reference_end),
        length=len(seq),
        is_reverse=bool(read.is_reverse),
        read_group=_read_group(read),
        bases=bases,
    )


def _read_group(read: pysam.AlignedSegment) -> str:
    if read.has_tag("RG"):
        return str(read.get_tag("RG"))
    return DEFAULT_READ_GROUP


def check_sort_order(bam: pysam.AlignmentFile) -> None:
    """Reject BAMs whose header declares a non-coordinate sort order.

    A missing or ``unknown`` SO only warns; record order is still checked while streaming.
    """
    hd = bam.header.to_dict().get("HD", {})
    so = hd.get("SO")
    if so is None or so == "unknown":
        logger.warning("BAM header has no usable SO tag (%s); record order is checked while streaming.", so)
        return
    if so != "coordinate":
        raise InputValidationError(
            f"BAM must be coordinate-sorted (header SO:{so}). Run: samtools sort -o sorted.bam input.bam"
        )


def _skip_reason(
    read: pysam.AlignedSegment,
    *,
    contig: str,
    min_mapq: int,
    skip_duplicates: bool,
) -> Optional[str]:
    """Counter key for a record the scan does not use, or None for a usable record."""
    if read.is_unmapped:
        return "reads_unmapped"
    if read.is_secondary:
        return "reads_skipped_secondary"
    if read.is_supplementary:
        return "reads_skipped_supplementary"
    if skip_duplicates and read.is_duplicate:
        return "reads_skipped_duplicates"
    if read.reference_name != contig:
        return "reads_other_contig"
    if read.mapping_quality < min_mapq:
        return "reads_skipped_mapq"
    return None


def used_read_groups(
    reads: Iterable[pysam.AlignedSegment],
    *,
    contig: str,
    min_mapq: int = 0,
    skip_duplicates: bool = True,
) -> List[str]:
    """Distinct read groups carried by the records the scan will use.

    Untagged reads count as ``default``. Header ``@RG`` lines are not consulted,
    since they may list groups no read carries or omit groups that reads do.
    """
    groups = set()
    for read in reads:
        if _skip_reason(read, contig=contig, min_mapq=min_mapq, skip_duplicates=skip_duplicates):
            continue
        if not read.query_sequence:
            continue
        groups.add(_read_group(read))
    return sorted(groups)


def iter_aligned_reads(
    reads: Iterable[pysam.AlignedSegment],
    *,
    contig: str,
    counts: MutableMapping[str, int],
    min_mapq: int = 0,
    skip_duplicates: bool = True,
) -> Iterator[AlignedRead]:
    """Filter a record stream down to usable reads on ``contig``, updating ``counts``."""
    for read in reads:
        counts["reads_total"] += 1

        reason = _skip_reason(read, contig=contig, min_mapq=min_mapq, skip_duplicates=skip_duplicates)
        if reason is not None:
            counts[reason] += 1
            continue

        aligned = aligned_read_from_segment(read)
        if aligned is None:
            counts["reads_no_sequence"] += 1
            continue

        counts["reads_used"] += 1
        yield aligned
