from __future__ import annotations

import random
from pathlib import Path
from typing import Dict, List

import pysam

from .utils import ensure_outdir, write_json


def _write_fasta(path: Path, contig: str, seq: str) -> None:
    lines = [f">{contig} toy reference"]
    for i in range(0, len(seq), 60):
        lines.append(seq[i : i + 60])
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _write_profile(path: Path, values: List[float]) -> None:
    lines = ["pos\tC>T\tG>A"]
    for i, v in enumerate(values, start=1):
        lines.append(f"{i}\t{v:.4f}\t0.0000")
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _make_read(
    name: str,
    start0: int,
    seq: str,
    *,
    is_reverse: bool,
    read_group: str,
    mapq: int = 37,
) -> pysam.AlignedSegment:
    a = pysam.AlignedSegment()
    a.query_name = name
    a.query_sequence = seq
    a.flag = 16 if is_reverse else 0
    a.reference_id = 0
    a.reference_start = start0
    a.mapping_quality = mapq
    a.cigartuples = [(0, len(seq))]
    a.query_qualities = pysam.qualitystring_to_array("I" * len(seq))
    a.set_tag("RG", read_group, value_type="Z")
    return a


def make_toy_data(*, outdir: str | Path, n_reads: int = 120, seed: int = 7) -> Dict[str, str]:
    """Create a tiny damaged ancient-DNA dataset for quick demos/tests.

    The outputs include:
    - toy_ref.fa (+ .fai)
    - sample.bam (+ .bai), two read groups, both strands
    - toy_5p.txt / toy_3p.txt damage profiles and profiles.tsv table

    Forward reads carry C->T near their left end and reverse reads G->A near
    their right end, drawn from the same profile the files describe. Every read
    also carries one true C->T variant at position 201 (1-based).

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)
    rng = random.Random(seed)

    contig = "chrT"
    ref_seq = "".join(rng.choice("ACGT") for _ in range(400))
    # make sure the true variant sits on a C
    variant_pos0 = 200
    ref_seq = ref_seq[:variant_pos0] + "C" + ref_seq[variant_pos0 + 1 :]
    ref_fa = outdir_p / "toy_ref.fa"
    _write_fasta(ref_fa, contig, ref_seq)
    pysam.faidx(str(ref_fa))

    # 5' profile runs from the terminal base inwards, 3' profile ends at the terminal base.
    dp5 = [round(0.35 * 0.55**i, 4) for i in range(15)]
    dp3 = list(reversed(dp5))
    dp5_path = outdir_p / "toy_5p.txt"
    dp3_path = outdir_p / "toy_3p.txt"
    _write_profile(dp5_path, dp5)
    _write_profile(dp3_path, dp3)

    table_path = outdir_p / "profiles.tsv"
    table_path.write_text(
        f"RG1\t{dp5_path.name}\t{dp3_path.name}\nRG2\t{dp5_path.name}\t{dp3_path.name}\n",
        encoding="utf-8",
    )

    reads: List[pysam.AlignedSegment] = []
    for i in range(n_reads):
        length = rng.randint(35, 60)
        start0 = rng.randint(0, len(ref_seq) - length)
        is_reverse = rng.random() < 0.5
        seq = list(ref_seq[start0 : start0 + length])

        rel = variant_pos0 - start0
        if 0 <= rel < length:
            seq[rel] = "T"

        for k, p in enumerate(dp5):
            if k >= length:
                break
            # damage on the molecule's 5' end: left end forward, right end reverse
            idx = length - 1 - k if is_reverse else k
            if is_reverse and seq[idx] == "G" and rng.random() < p:
                seq[idx] = "A"
            elif not is_reverse and seq[idx] == "C" and rng.random() < p:
                seq[idx] = "T"

        reads.append(
            _make_read(
                f"toy_{i:04d}",
                start0,
                "".join(seq),
                is_reverse=is_reverse,
                read_group="RG1" if i % 2 == 0 else "RG2",
            )
        )

    reads.sort(key=lambda r: r.reference_start)

    bam_path = outdir_p / "sample.bam"
    header = {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": contig, "LN": len(ref_seq)}],
        "RG": [{"ID": "RG1", "SM": "toy"}, {"ID": "RG2", "SM": "toy"}],
    }
    with pysam.AlignmentFile(str(bam_path), "wb", header=header) as bam:
        for r in reads:
            bam.write(r)
    pysam.index(str(bam_path))

    summary = {
        "ref_fa": str(ref_fa),
        "bam": str(bam_path),
        "dp5": str(dp5_path),
        "dp3": str(dp3_path),
        "profile_table": str(table_path),
        "outdir": str(outdir_p),
    }
    write_json(outdir_p / "toy_summary.json", summary)
    return summary
