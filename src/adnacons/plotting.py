from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Mapping

import matplotlib.pyplot as plt

from .correction import map_profile_to_read
from .models import DamageProfile

logger = logging.getLogger(__name__)


def plot_coverage_hist(
    *,
    counts: List[int],
    out_png: str | Path,
    title: str = "Per-position coverage",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    # Trim empty tail; the last bin collects everything at or above max_bin.
    last = max((i for i, c in enumerate(counts) if c > 0), default=0)
    xs = list(range(last + 1))
    ys = [int(c) for c in counts[: last + 1]]

    plt.figure()
    plt.bar(xs, ys, width=1.0)
    plt.xlabel("Reads covering position")
    plt.ylabel("Reference positions")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_call_frequency_hist(
    *,
    bin_edges: List[float],
    counts: List[int],
    out_png: str | Path,
    title: str = "Consensus call frequency",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    widths = [bin_edges[i + 1] - bin_edges[i] for i in range(len(counts))]
    centers = [bin_edges[i] + widths[i] / 2.0 for i in range(len(counts))]

    plt.figure()
    plt.bar(centers, counts, width=widths, align="center")
    plt.xlabel("Frequency of called base")
    plt.ylabel("Reference positions")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_call_summary(
    *,
    counts: Dict[str, int],
    out_png: str | Path,
    title: str = "Position calls",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    labels = ["Called", "N", "Corrected C>T", "Corrected G>A"]
    values = [
        int(counts.get("positions_called", 0)),
        int(counts.get("positions_n", 0)),
        int(counts.get("positions_corrected_ct", 0)),
        int(counts.get("positions_corrected_ga", 0)),
    ]

    plt.figure()
    plt.bar(labels, values)
    plt.ylabel("Reference positions")
    plt.title(title)
    plt.xticks(rotation=15, ha="right")
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_damage_profiles(
    *,
    profiles: Mapping[str, DamageProfile],
    out_png: str | Path,
    read_length: int = 60,
    title: str = "Damage probability along a read",
) -> None:
    """Plot each read group's profile as laid onto a forward read of ``read_length`` bases."""
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    plt.figure()
    for rg, profile in sorted(profiles.items()):
        mapped = map_profile_to_read(read_length, profile.five_prime, profile.three_prime)
        plt.plot(range(read_length), mapped, label=rg)
    plt.xlabel("Offset in read (forward strand)")
    plt.ylabel("P(deamination)")
    plt.title(title)
    if profiles:
        plt.legend()
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()
