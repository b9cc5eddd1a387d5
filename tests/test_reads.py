import pysam
import pytest

from adnacons.errors import InputValidationError
from adnacons.pipeline import _empty_read_counts
from adnacons.reads import (
    aligned_read_from_segment,
    check_sort_order,
    iter_aligned_reads,
    used_read_groups,
)

HEADER = pysam.AlignmentHeader.from_dict(
    {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": "chrM", "LN": 1000}, {"SN": "chr2", "LN": 1000}],
    }
)


def make_read(
    seq: str,
    start: int = 100,
    cigar=None,
    *,
    name: str = "r1",
    flag: int = 0,
    contig: int = 0,
    mapq: int = 60,
    rg=None,
) -> pysam.AlignedSegment:
    a = pysam.AlignedSegment(HEADER)
    a.query_name = name
    a.query_sequence = seq
    a.flag = flag
    a.reference_id = contig
    a.reference_start = start
    a.mapping_quality = mapq
    a.cigartuples = cigar or [(0, len(seq))]  # M
    a.query_qualities = pysam.qualitystring_to_array("I" * len(seq))
    if rg is not None:
        a.set_tag("RG", rg)
    return a


def test_simple_match_is_one_based() -> None:
    read = aligned_read_from_segment(make_read("ACGTA", start=100))
    assert read is not None
    assert read.start == 101
    assert read.end == 105
    assert read.base_at(101) == ("A", 0)
    assert read.base_at(104) == ("T", 3)
    assert read.read_group == "default"


def test_cigar_walk_with_clip_insertion_and_deletion() -> None:
    # 2S 3M 1I 2M 2D 2M: query SS MMM I MM -- MM
    seq = "ggACGtTAca"
    cigar = [(4, 2), (0, 3), (1, 1), (0, 2), (2, 2), (0, 2)]
    read = aligned_read_from_segment(make_read(seq, start=10, cigar=cigar, rg="RG7"))
    assert read is not None
    assert read.length == 10
    assert read.start == 11
    assert read.end == 19
    assert read.base_at(11) == ("A", 2)
    assert read.base_at(13) == ("G", 4)
    # insertion consumed query offset 5
    assert read.base_at(14) == ("T", 6)
    assert read.base_at(15) == ("A", 7)
    assert read.base_at(16) is None
    assert read.base_at(17) is None
    assert read.base_at(18) == ("C", 8)
    assert read.base_at(19) == ("A", 9)
    assert read.read_group == "RG7"


def test_reverse_strand_flag() -> None:
    read = aligned_read_from_segment(make_read("ACGT", flag=16))
    assert read is not None
    assert read.is_reverse
    assert read.strand.value == "-"


def test_iter_filters_and_counts() -> None:
    records = [
        make_read("ACGT", name="ok"),
        make_read("ACGT", name="dup", flag=1024),
        make_read("ACGT", name="sec", flag=256),
        make_read("ACGT", name="supp", flag=2048),
        make_read("ACGT", name="other", contig=1),
        make_read("ACGT", name="lowq", mapq=5),
    ]
    counts = _empty_read_counts()
    names = [r.name for r in iter_aligned_reads(records, contig="chrM", counts=counts, min_mapq=20)]
    assert names == ["ok"]
    assert counts["reads_total"] == 6
    assert counts["reads_used"] == 1
    assert counts["reads_skipped_duplicates"] == 1
    assert counts["reads_skipped_secondary"] == 1
    assert counts["reads_skipped_supplementary"] == 1
    assert counts["reads_other_contig"] == 1
    assert counts["reads_skipped_mapq"] == 1


def test_keep_duplicates() -> None:
    counts = _empty_read_counts()
    reads = list(
        iter_aligned_reads(
            [make_read("ACGT", flag=1024)], contig="chrM", counts=counts, skip_duplicates=False
        )
    )
    assert len(reads) == 1


def test_sort_order_check(tmp_path) -> None:
    header = {"HD": {"VN": "1.6", "SO": "queryname"}, "SQ": [{"SN": "chrM", "LN": 100}]}
    bam_path = tmp_path / "qs.bam"
    with pysam.AlignmentFile(str(bam_path), "wb", header=header):
        pass
    with pysam.AlignmentFile(str(bam_path), "rb") as bam:
        with pytest.raises(InputValidationError):
            check_sort_order(bam)


def _empty_bam(tmp_path, so: str):
    header = {"HD": {"VN": "1.6", "SO": so}, "SQ": [{"SN": "chrM", "LN": 100}]}
    bam_path = tmp_path / f"{so}.bam"
    with pysam.AlignmentFile(str(bam_path), "wb", header=header):
        pass
    return bam_path


def test_unknown_sort_order_only_warns(tmp_path) -> None:
    with pysam.AlignmentFile(str(_empty_bam(tmp_path, "unknown")), "rb") as bam:
        check_sort_order(bam)
    with pysam.AlignmentFile(str(_empty_bam(tmp_path, "unsorted")), "rb") as bam:
        with pytest.raises(InputValidationError):
            check_sort_order(bam)


def test_used_read_groups_follow_tags_not_header() -> None:
    records = [
        make_read("ACGT", name="a", rg="RG1"),
        make_read("ACGT", name="b"),
        make_read("ACGT", name="c", rg="RG5", flag=1024),
        make_read("ACGT", name="d", rg="RG6", contig=1),
        make_read("ACGT", name="e", rg="RG7", mapq=3),
    ]
    assert used_read_groups(records, contig="chrM", min_mapq=10) == ["RG1", "default"]
    assert used_read_groups(records, contig="chrM", skip_duplicates=False) == ["RG1", "RG5", "RG7", "default"]
