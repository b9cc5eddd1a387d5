from pathlib import Path
from typing import List, Optional, Tuple

import pysam
import pytest

from adnacons.config import build_config
from adnacons.errors import MissingProfileError, ReadOrderError
from adnacons.models import DamageProfile, PositionKey
from adnacons.pipeline import PositionProcessor, reconstruct_bam
from adnacons.profiles import load_profile_table
from adnacons.reference import Reference, load_reference
from adnacons.toy_data import make_toy_data

# 1-based: C at 6, G at 10
REF = "GATTACACCGGTTAACCGGA"

# (start0, seq, is_reverse); position 6 carries a forward T at read offset 0,
# position 10 a reverse A at read offset 4
READS: List[Tuple[int, str, bool]] = [
    (5, "CACCGGTTAA", False),
    (5, "TACCGGTTAA", False),
    (5, "CACCGGTTAA", False),
    (5, "CACCAGTTAA", True),
]

PROFILES = {"default": DamageProfile("default", (0.5, 0.25), (0.25, 0.5))}


def write_inputs(
    tmp_path: Path,
    reads=READS,
    *,
    read_groups: Optional[List[str]] = None,
    tags: Optional[List[Optional[str]]] = None,
) -> Tuple[Path, Reference]:
    """Write ref.fa and in.bam. ``read_groups`` go in the header; ``tags`` set each read's RG
    (defaulting to cycling through ``read_groups``), with None leaving a read untagged."""
    fa = tmp_path / "ref.fa"
    fa.write_text(f">chrM mito\n{REF}\n", encoding="utf-8")

    header = {"HD": {"VN": "1.6", "SO": "coordinate"}, "SQ": [{"SN": "chrM", "LN": len(REF)}]}
    if read_groups:
        header["RG"] = [{"ID": rg, "SM": "s"} for rg in read_groups]

    bam_path = tmp_path / "in.bam"
    with pysam.AlignmentFile(str(bam_path), "wb", header=header) as bam:
        for i, (start0, seq, is_reverse) in enumerate(reads):
            a = pysam.AlignedSegment(bam.header)
            a.query_name = f"r{i}"
            a.query_sequence = seq
            a.flag = 16 if is_reverse else 0
            a.reference_id = 0
            a.reference_start = start0
            a.mapping_quality = 60
            a.cigartuples = [(0, len(seq))]
            a.query_qualities = pysam.qualitystring_to_array("I" * len(seq))
            if tags is not None:
                tag = tags[i]
            elif read_groups:
                tag = read_groups[i % len(read_groups)]
            else:
                tag = None
            if tag is not None:
                a.set_tag("RG", tag)
            bam.write(a)
    return bam_path, load_reference(fa)


def read_fasta(path: Path) -> Tuple[str, str]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return lines[0], "".join(lines[1:])


def log_rows(path: Path) -> List[List[str]]:
    rows = [line.split("\t") for line in path.read_text(encoding="utf-8").splitlines()]
    return [r for r in rows if not r[0].startswith("#")][1:]


def test_no_correction_run(tmp_path: Path) -> None:
    bam, ref = write_inputs(tmp_path)
    outdir = tmp_path / "out"
    run = reconstruct_bam(bam_path=bam, reference=ref, config=build_config(), outdir=outdir, progress=False)

    name, seq = read_fasta(outdir / "sample_no-cor.fasta")
    assert name == ">sample_no-cor"
    assert seq == "NNNNNCACCGGTTAANNNNN"
    assert not (outdir / "sample_no-cor.roi.bed").exists()
    assert not list(outdir.glob("*.partial"))

    rows = log_rows(outdir / "sample_no-cor.corrections.tsv")
    assert len(rows) == len(REF)
    assert rows[0] == ["chrM", "1", "N", "-1"]
    assert rows[5] == ["chrM", "6", "C", "0.75"]

    assert run["counts"]["positions_total"] == 20
    assert run["counts"]["positions_called"] == 10
    assert run["read_counts"]["reads_used"] == 4
    assert (outdir / "summary.json").exists()

    with pysam.VariantFile(str(outdir / "sample_no-cor.vcf")) as vcf:
        records = list(vcf)
    assert len(records) == 20
    rec = records[5]
    assert rec.pos == 6
    assert rec.alleles == ("C", "T")
    assert rec.samples[0]["AD"] == (3, 1)
    assert rec.samples[0]["DP"] == 4
    assert rec.info["DMG"] == "NONE"

    uncovered = records[0]
    assert uncovered.alleles == ("G", "<*>")
    assert uncovered.samples[0]["AD"] == (0, 0)
    assert uncovered.samples[0]["DP"] == 0
    assert uncovered.info["CALL"] == "N"


def test_silencing_run(tmp_path: Path) -> None:
    bam, ref = write_inputs(tmp_path)
    outdir = tmp_path / "out"
    cfg = build_config(correction="silence", vcf_records="corrected")
    run = reconstruct_bam(bam_path=bam, reference=ref, config=cfg, outdir=outdir, progress=False)

    _, seq = read_fasta(outdir / "sample_silence-dam.fasta")
    assert seq == "NNNNNCACCGGTTAANNNNN"
    assert run["counts"]["positions_corrected_ct"] == 1
    assert run["counts"]["positions_corrected_ga"] == 1

    roi = [
        line.split("\t")
        for line in (outdir / "sample_silence-dam.roi.bed").read_text(encoding="utf-8").splitlines()
        if not line.startswith("#")
    ]
    assert roi == [["chrM", "3", "8", "CORRECTED_POS:6"], ["chrM", "7", "12", "CORRECTED_POS:10"]]

    rows = log_rows(outdir / "sample_silence-dam.corrections.tsv")
    assert [r[1] for r in rows] == ["6", "10"]
    assert rows[0] == ["chrM", "6", "C", "4", "A=0,C=3,G=0,T=1", "A=0,C=3,G=0,T=0", "C", "1"]

    with pysam.VariantFile(str(outdir / "sample_silence-dam.vcf")) as vcf:
        records = list(vcf)
    assert [r.pos for r in records] == [6, 10]
    # REF-only site after silencing carries the symbolic ALT with zero depth
    assert records[0].alleles == ("C", "<*>")
    assert records[0].samples[0]["AD"] == (3, 0)
    assert records[0].info["PAL"] == ("C", "T")
    assert records[0].info["PAD"] == (3, 1)
    assert records[1].info["DMG"] == "GA"


def test_weighting_run(tmp_path: Path) -> None:
    bam, ref = write_inputs(tmp_path)
    outdir = tmp_path / "out"
    cfg = build_config(correction="weight", profiles=PROFILES, sample_name="ind7")
    reconstruct_bam(bam_path=bam, reference=ref, config=cfg, outdir=outdir, progress=False)

    rows = log_rows(outdir / "ind7_wc-WithUpvote.corrections.tsv")
    assert rows[0] == ["chrM", "6", "C", "4", "A=0,C=3,G=0,T=1", "A=0,C=3.5,G=0,T=0.5", "C", "0.88"]
    # reverse A at mid-read offset carries no damage probability
    assert rows[1][5] == "A=1,C=0,G=3,T=0"

    with pysam.VariantFile(str(outdir / "ind7_wc-WithUpvote.vcf")) as vcf:
        rec = [r for r in vcf if r.pos == 6][0]
    assert rec.samples[0]["AD"] == (4, 1)
    assert rec.info["CALL"] == "C"
    assert rec.info["CALLF"] == pytest.approx(0.875)


def test_min_coverage_masks_positions(tmp_path: Path) -> None:
    bam, ref = write_inputs(tmp_path)
    outdir = tmp_path / "out"
    cfg = build_config(min_coverage=5)
    reconstruct_bam(bam_path=bam, reference=ref, config=cfg, outdir=outdir, progress=False)
    _, seq = read_fasta(outdir / "sample_no-cor.fasta")
    assert seq == "N" * len(REF)


def test_unsorted_input_leaves_no_outputs(tmp_path: Path) -> None:
    reads = [(8, "CGGTTAA", False), (2, "TTACACC", False)]
    bam, ref = write_inputs(tmp_path, reads)
    outdir = tmp_path / "out"
    with pytest.raises(ReadOrderError):
        reconstruct_bam(bam_path=bam, reference=ref, config=build_config(), outdir=outdir, progress=False)
    assert not list(outdir.glob("sample_*"))
    assert not (outdir / "summary.json").exists()


def test_missing_read_group_profile_fails_before_scan(tmp_path: Path) -> None:
    bam, ref = write_inputs(tmp_path, read_groups=["RG1", "RG2"])
    outdir = tmp_path / "out"
    cfg = build_config(correction="weight", profiles={"RG1": PROFILES["default"]})
    with pytest.raises(MissingProfileError):
        reconstruct_bam(bam_path=bam, reference=ref, config=cfg, outdir=outdir, progress=False)
    assert not list(outdir.glob("sample_*"))


def _no_outputs(*args, **kwargs):
    raise AssertionError("outputs opened before the read-group check")


def test_untagged_read_needs_default_profile(tmp_path: Path, monkeypatch) -> None:
    # header declares RG1 only; r0 carries no RG tag and no damaged base
    bam, ref = write_inputs(tmp_path, read_groups=["RG1"], tags=[None, "RG1", "RG1", "RG1"])
    cfg = build_config(correction="weight", profiles={"RG1": PROFILES["default"]})
    monkeypatch.setattr("adnacons.pipeline.RunOutputs", _no_outputs)
    with pytest.raises(MissingProfileError) as exc:
        reconstruct_bam(bam_path=bam, reference=ref, config=cfg, outdir=tmp_path / "out", progress=False)
    assert exc.value.read_groups == ["default"]


def test_read_groups_come_from_read_tags(tmp_path: Path) -> None:
    # no @RG header lines, every read tagged RG1
    bam, ref = write_inputs(tmp_path, tags=["RG1"] * len(READS))
    outdir = tmp_path / "out"
    cfg = build_config(correction="weight", profiles={"RG1": PROFILES["default"]})
    run = reconstruct_bam(bam_path=bam, reference=ref, config=cfg, outdir=outdir, progress=False)

    assert run["counts"]["positions_corrected_ct"] == 1
    rows = log_rows(outdir / "sample_wc-WithUpvote.corrections.tsv")
    assert rows[0][5] == "A=0,C=3.5,G=0,T=0.5"


def _calls(vcf_path: Path) -> List[Tuple[int, str, float]]:
    with pysam.VariantFile(str(vcf_path)) as vcf:
        return [(r.pos, r.info["CALL"], round(r.info["CALLF"], 4)) for r in vcf]


def test_zero_profile_matches_uncorrected_run(tmp_path: Path) -> None:
    bam, ref = write_inputs(tmp_path)
    zero = {"default": DamageProfile("default", (0.0,) * 5, (0.0,) * 5)}

    plain = reconstruct_bam(
        bam_path=bam, reference=ref, config=build_config(), outdir=tmp_path / "plain", progress=False
    )
    weighted = reconstruct_bam(
        bam_path=bam,
        reference=ref,
        config=build_config(correction="weight", profiles=zero),
        outdir=tmp_path / "weighted",
        progress=False,
    )

    # damage is still detected, it just moves no weight
    assert weighted["counts"]["positions_corrected_ct"] == 1
    assert _calls(Path(plain["outputs"]["vcf"])) == _calls(Path(weighted["outputs"]["vcf"]))
    assert read_fasta(Path(plain["outputs"]["fasta"]))[1] == read_fasta(Path(weighted["outputs"]["fasta"]))[1]
    assert plain["call_frequency_hist"] == weighted["call_frequency_hist"]


def test_insertion_slot_has_no_reference_base() -> None:
    process = PositionProcessor(build_config(), Reference("chrM", REF))
    result = process(PositionKey(6, 1), ())
    assert result.reference_base == "N"
    assert result.call.base == "N"


def test_toy_data_weighted_run(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    ref = load_reference(toy["ref_fa"])
    cfg = build_config(correction="weight", profiles=load_profile_table(toy["profile_table"]))
    run = reconstruct_bam(bam_path=toy["bam"], reference=ref, config=cfg, outdir=tmp_path / "out", progress=False)

    assert ref.contig == "chrT"
    assert run["output_counts"]["consensus_length"] == len(ref)
    assert run["read_counts"]["reads_used"] == 120
    assert run["read_groups"] == ["RG1", "RG2"]
    assert run["counts"]["positions_corrected_ct"] + run["counts"]["positions_corrected_ga"] > 0
