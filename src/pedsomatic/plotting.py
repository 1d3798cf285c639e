from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List

import matplotlib.pyplot as plt

logger = logging.getLogger(__name__)

_DECISION_LABELS = [
    ("positions_emitted", "Emitted"),
    ("suppressed_unreportable", "No alleles"),
    ("suppressed_no_alternate", "No alternate"),
    ("suppressed_no_candidate", "No candidate"),
    ("suppressed_by_model", "Model veto"),
]


def plot_decision_counts(
    *,
    counts: Dict[str, int],
    out_png: str | Path,
    title: str = "Position outcomes",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    labels = [label for _, label in _DECISION_LABELS]
    values = [int(counts.get(key, 0)) for key, _ in _DECISION_LABELS]

    plt.figure()
    plt.bar(labels, values)
    plt.ylabel("Positions")
    plt.title(title)
    plt.xticks(rotation=15, ha="right")
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_frequency_hist(
    *,
    bin_edges: List[float],
    counts: List[int],
    out_png: str | Path,
    title: str = "Somatic frequency of emitted records",
) -> None:
    """Histogram of non-zero somatic frequencies (%), one entry per somatic sample and record."""
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    widths = [bin_edges[i + 1] - bin_edges[i] for i in range(len(counts))]
    centers = [bin_edges[i] + widths[i] / 2.0 for i in range(len(counts))]

    plt.figure()
    plt.bar(centers, counts, width=widths, align="center")
    plt.xlabel("Somatic frequency (%)")
    plt.ylabel("Sample records")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_depth_proportions(
    *,
    proportions: Dict[str, float],
    out_png: str | Path,
    title: str = "Share of reference bases per sample",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    labels = list(proportions)
    values = [float(proportions[s]) for s in labels]

    plt.figure()
    plt.bar(labels, values)
    plt.ylabel("Proportion")
    plt.title(title)
    plt.xticks(rotation=30, ha="right")
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()
