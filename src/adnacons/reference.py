from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import pysam

from .errors import InputValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reference:
    """Single-contig reference sequence with 1-based base lookup."""

    contig: str
    sequence: str

    def __len__(self) -> int:
        return len(self.sequence)

    def base_at(self, position: int) -> str:
        """Uppercase reference base at a 1-based position; 'N' outside the contig."""
        if position < 1 or position > len(self.sequence):
            return "N"
        return self.sequence[position - 1].upper()


def load_reference(path: str | Path) -> Reference:
    """Load the first record of a FASTA file.

    The contig id is the header text up to the first whitespace, which is what
    ``pysam.FastxFile`` reports as the record name. Additional records are ignored
    with a warning.
    """
    p = Path(path)
    if not p.exists():
        raise InputValidationError(f"Reference FASTA does not exist: {p}")

    with pysam.FastxFile(str(p)) as fh:
        first = next(iter(fh), None)
        if first is None or not first.sequence:
            raise InputValidationError(f"Reference FASTA has no sequence records: {p}")
        extra = sum(1 for _ in fh)

    if extra:
        logger.warning(
            "Reference %s has %d additional record(s); only '%s' is used.", p, extra, first.name
        )
    logger.info("Reference contig %s (%d bp)", first.name, len(first.sequence))
    return Reference(contig=str(first.name), sequence=str(first.sequence))
