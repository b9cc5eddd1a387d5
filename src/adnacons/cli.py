from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, Optional

from . import __version__
from .config import VCF_RECORD_CHOICES, RunConfig, build_config
from .errors import InputValidationError
from .models import CorrectionMode, DamageProfile, DetectionMode
from .pipeline import reconstruct_bam
from .plotting import (
    plot_call_frequency_hist,
    plot_call_summary,
    plot_coverage_hist,
    plot_damage_profiles,
)
from .profiles import load_profile_pair, load_profile_table
from .reference import load_reference
from .report import render_report
from .toy_data import make_toy_data


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    sys.stderr.write(f"{err.__class__.__name__}: {err}\n")
    if log_path is not None and log_path.exists():
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="adnacons",
        description=(
            "adnacons: damage-aware consensus and variant calling for ancient DNA. "
            "Reconstructs a consensus sequence from a coordinate-sorted BAM, optionally "
            "silencing or down-weighting bases that look like post-mortem deamination."
        ),
    )
    p.add_argument("--version", action="version", version=f"adnacons {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser(
        "quickstart",
        help="Print ready-to-run recipes for common scenarios.",
    )

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny damaged reference/BAM/profile set for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # call
    # -----------------
    c = sub.add_parser(
        "call",
        help="Reconstruct a consensus sequence (FASTA, VCF, ROI, correction log) from a BAM.",
    )
    c.add_argument("--bam", required=True, type=_path_exists, help="Coordinate-sorted BAM.")
    c.add_argument(
        "--ref",
        required=True,
        type=_path_exists,
        help="Reference FASTA; the first record is the contig to reconstruct.",
    )
    c.add_argument("--outdir", required=True, help="Output directory.")
    c.add_argument(
        "--correction",
        default=CorrectionMode.NONE.value,
        help=(
            "Damage correction: none, silence, weight (with up-vote) or weight-noupvote. "
            "Numeric aliases 1-4 are accepted."
        ),
    )
    c.add_argument(
        "--detection",
        default=None,
        help=(
            "Damage detection: reference-based or reference-free "
            f"(default: {DetectionMode.REFERENCE_BASED.value} when correcting)."
        ),
    )

    prof = c.add_mutually_exclusive_group()
    prof.add_argument("--dp5", type=_path_exists, help="5' damage profile (use with --dp3).")
    prof.add_argument(
        "--profile-table",
        type=_path_exists,
        help="Per-read-group profile table: read_group, 5' profile, 3' profile.",
    )
    c.add_argument("--dp3", type=_path_exists, help="3' damage profile (use with --dp5).")

    c.add_argument(
        "--min-coverage",
        default="1",
        help="Positions covered by fewer reads are called N (default: 1).",
    )
    c.add_argument(
        "--min-frequency",
        default="0",
        help="Called base must reach this frequency (0-1), otherwise N (default: 0).",
    )
    c.add_argument(
        "--sample",
        default="sample",
        help="Sample name, used as the output file prefix together with the correction mode.",
    )

    # Outputs
    c.add_argument(
        "--vcf-records",
        choices=list(VCF_RECORD_CHOICES),
        default="all",
        help="Write a VCF record for every position or only for corrected ones.",
    )
    c.add_argument("--no-vcf", action="store_true", help="Do not write the VCF.")
    c.add_argument("--no-report", action="store_true", help="Skip plots and report.html.")

    # Read filters
    c.add_argument("--min-mapq", type=int, default=0, help="Skip reads below this mapping quality.")
    c.add_argument("--keep-duplicates", action="store_true", help="Do not skip duplicate reads.")

    c.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    c.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


# -----------------
# Command handlers
# -----------------

def cmd_quickstart() -> int:
    lines = [
        "adnacons quickstart (copy/paste):",
        "",
        "1) Plain consensus, no damage handling:",
        "   adnacons call \\",
        "     --bam sample.bam \\",
        "     --ref ref.fa \\",
        "     --min-coverage 3 \\",
        "     --outdir results/",
        "   Outputs: results/sample_no-cor.fasta, results/sample_no-cor.vcf, results/report.html",
        "",
        "2) Silence C>T / G>A damage (no profiles needed):",
        "   adnacons call \\",
        "     --bam sample.bam \\",
        "     --ref ref.fa \\",
        "     --correction silence \\",
        "     --outdir results_silenced/",
        "   Outputs: results_silenced/sample_silence-dam.fasta and .roi.bed",
        "",
        "3) Weight by per-read-group damage profiles:",
        "   adnacons call \\",
        "     --bam sample.bam \\",
        "     --ref ref.fa \\",
        "     --correction weight \\",
        "     --profile-table profiles.tsv \\",
        "     --outdir results_weighted/",
        "   Outputs: results_weighted/sample_wc-WithUpvote.fasta, .vcf, .corrections.tsv",
        "",
        "Tip: `adnacons make-toy-data --outdir toy/` writes a small dataset to try these on.",
    ]
    print("\n".join(lines))
    return 0


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def _load_profiles(args: argparse.Namespace) -> Dict[str, DamageProfile]:
    if args.profile_table:
        if args.dp3:
            raise InputValidationError("--dp3 cannot be combined with --profile-table")
        return load_profile_table(args.profile_table)
    if args.dp5 or args.dp3:
        if not (args.dp5 and args.dp3):
            raise InputValidationError("--dp5 and --dp3 must be given together")
        profile = load_profile_pair(args.dp5, args.dp3)
        return {profile.read_group: profile}
    return {}


def _write_plots(outdir: Path, run: Dict, config: RunConfig) -> Dict[str, str]:
    plots_dir = outdir / "plots"
    plots_dir.mkdir(parents=True, exist_ok=True)

    call_summary_png = plots_dir / "call_summary.png"
    coverage_png = plots_dir / "coverage_hist.png"
    freq_png = plots_dir / "call_frequency_hist.png"

    plot_call_summary(counts=run["counts"], out_png=call_summary_png)
    plot_coverage_hist(counts=run["coverage_hist"]["counts"], out_png=coverage_png)
    plot_call_frequency_hist(
        bin_edges=run["call_frequency_hist"]["bin_edges"],
        counts=run["call_frequency_hist"]["counts"],
        out_png=freq_png,
    )

    plots_rel = {
        "call_summary": str(Path("plots") / call_summary_png.name),
        "coverage_hist": str(Path("plots") / coverage_png.name),
        "call_frequency_hist": str(Path("plots") / freq_png.name),
    }
    if config.profiles:
        profiles_png = plots_dir / "damage_profiles.png"
        plot_damage_profiles(profiles=config.profiles, out_png=profiles_png)
        plots_rel["damage_profiles"] = str(Path("plots") / profiles_png.name)
    return plots_rel


def cmd_call(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "call.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("adnacons")
    logger.info("adnacons %s", __version__)

    try:
        reference = load_reference(args.ref)
        config = build_config(
            correction=args.correction,
            detection=args.detection,
            min_coverage=args.min_coverage,
            min_frequency=args.min_frequency,
            profiles=_load_profiles(args),
            sample_name=args.sample,
            vcf_records=args.vcf_records,
            write_vcf=not bool(args.no_vcf),
            min_mapq=int(args.min_mapq),
            skip_duplicates=not bool(args.keep_duplicates),
        )

        if args.dry_run:
            prefix = config.output_prefix
            print("Dry-run: inputs look OK.")
            print(f"Reference contig: {reference.contig} ({len(reference)} bp)")
            print(f"Correction: {config.correction.description}; detection: {config.detection.value}")
            print("Planned outputs:")
            print(f"  consensus -> {outdir / (prefix + '.fasta')}")
            print(f"  corrections -> {outdir / (prefix + '.corrections.tsv')}")
            if config.write_vcf:
                print(f"  vcf -> {outdir / (prefix + '.vcf')}")
            if config.correction_enabled:
                print(f"  roi -> {outdir / (prefix + '.roi.bed')}")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            if not args.no_report:
                print(f"  report.html -> {outdir / 'report.html'}")
            return 0

        run = reconstruct_bam(
            bam_path=args.bam,
            reference=reference,
            config=config,
            outdir=outdir,
            progress=True,
        )

        if not args.no_report:
            plots_rel = _write_plots(outdir, run, config)
            report_path = render_report(
                outdir=outdir,
                version=__version__,
                run=run,
                ref_path=str(args.ref),
                plots=plots_rel,
            )
            logger.info("Report written: %s", report_path)

        print(run["outputs"]["fasta"])
        return 0
    except Exception as e:
        logger.debug("call failed", exc_info=True)
        return _handle_error(e, log_path=None if args.dry_run else log_path)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "call":
        return cmd_call(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
