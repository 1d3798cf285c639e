from __future__ import annotations

import random
from pathlib import Path
from typing import Dict, List, Tuple

import joblib
import numpy as np

from .classifier import CALIBRATION_SUFFIX, CONFIG_NAME, MODEL_SUFFIX, PairCountsMapper
from .evidence import EVIDENCE_COLUMNS, format_slots
from .models import GenotypeSlot
from .utils import ensure_outdir, write_json

TOY_CONTIG = "chr1"
TOY_SAMPLES = ["FATHER", "MOTHER", "CHILD_BLOOD", "CHILD_TUMOR"]

_BASES = "ACGT"


class ToyContrastEstimator:
    """Stand-in for a trained model, scoring the somatic/germline frequency contrast.

    Reads :class:`~pedsomatic.classifier.PairCountsMapper` features and returns
    ``predict_proba``-style rows of (P(not mutated), P(mutated)).
    """

    def __init__(self, max_slots: int = 10, midpoint: float = 0.1, slope: float = 40.0) -> None:
        self.max_slots = max_slots
        self.midpoint = midpoint
        self.slope = slope

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        X = np.asarray(X, dtype=np.float64)
        per_slot = X[:, : self.max_slots * PairCountsMapper.FEATURES_PER_SLOT].reshape(
            X.shape[0], self.max_slots, PairCountsMapper.FEATURES_PER_SLOT
        )
        contrast = per_slot[:, :, 2] - per_slot[:, :, 3]
        # reference genotypes never count as somatic evidence
        contrast = np.where(per_slot[:, :, 5] > 0, 0.0, contrast)
        score = contrast.max(axis=1)
        p = 1.0 / (1.0 + np.exp(-self.slope * (score - self.midpoint)))
        return np.column_stack([1.0 - p, p])


def _other_base(base: str, rng: random.Random) -> str:
    return rng.choice([b for b in _BASES if b != base])


def _snv_slots(ref: str, alt: str, ref_count: int, alt_count: int) -> List[GenotypeSlot]:
    slots = [GenotypeSlot(ref, ref_count, is_reference=True)]
    if alt_count > 0:
        slots.append(GenotypeSlot(alt, alt_count))
    slots.append(GenotypeSlot("N", 0, is_other=True))
    return slots


def _depth(rng: random.Random) -> int:
    return rng.randint(30, 50)


def _site_rows(
    kind: str, ref: str, alt: str, rng: random.Random
) -> Dict[str, Tuple[str, int, List[GenotypeSlot]]]:
    """Per-sample (reference, failed, slots) for one toy site of the given kind."""
    rows: Dict[str, Tuple[str, int, List[GenotypeSlot]]] = {}
    if kind == "somatic_indel":
        # deletion of the two bases following the reference base
        ref_context = ref + "CT"
        for sample in TOY_SAMPLES:
            dp = _depth(rng)
            del_count = int(dp * 0.35) if sample == "CHILD_TUMOR" else 0
            slots = [GenotypeSlot(ref_context, dp - del_count, is_indel=True, is_reference=True)]
            if del_count:
                slots.append(GenotypeSlot(ref, del_count, is_indel=True))
            slots.append(GenotypeSlot("N", 0, is_other=True))
            rows[sample] = (ref_context, 0, slots)
        return rows

    for sample in TOY_SAMPLES:
        dp = _depth(rng)
        alt_count = 0
        failed = rng.randint(0, 2)
        if kind == "inherited" and sample in ("FATHER", "CHILD_BLOOD", "CHILD_TUMOR"):
            alt_count = dp // 2
        elif kind in ("somatic", "somatic_weak_parent", "somatic_low") and sample == "CHILD_TUMOR":
            alt_count = int(dp * (0.08 if kind == "somatic_low" else 0.3))
        elif kind == "somatic_weak_parent" and sample == "FATHER":
            alt_count, failed = 1, 2
        rows[sample] = (ref, failed, _snv_slots(ref, alt, dp - alt_count, alt_count))
    return rows


def make_toy_data(*, outdir: str | Path, num_positions: int = 60) -> Dict[str, str]:
    """Create a tiny trio cohort suitable for quick demos/tests.

    The outputs include:
    - evidence.tsv (base counts for FATHER, MOTHER, CHILD_BLOOD, CHILD_TUMOR)
    - covariates.tsv (pedigree)
    - matched_reads.tsv
    - models/bestModel.joblib, models/config.json, models/bestCalibration.json

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)
    rng = random.Random(7)

    special = {
        10: "inherited",
        20: "somatic",
        30: "somatic_weak_parent",
        40: "somatic_low",
        50: "somatic_indel",
    }

    evidence_path = outdir_p / "evidence.tsv"
    lines = ["\t".join(EVIDENCE_COLUMNS)]
    for pos0 in range(num_positions):
        ref = rng.choice(_BASES)
        alt = _other_base(ref, rng)
        rows = _site_rows(special.get(pos0, "reference"), ref, alt, rng)
        for sample in TOY_SAMPLES:
            reference, failed, slots = rows[sample]
            lines.append("\t".join([TOY_CONTIG, str(pos0), sample, reference, str(failed), format_slots(slots)]))
    evidence_path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    covariates_path = outdir_p / "covariates.tsv"
    covariates_path.write_text(
        "\n".join(
            [
                "sample-id\tpatient-id\tkind-of-sample\tgender\tparents",
                "FATHER\tP1\tGermline\tMale\tN/A",
                "MOTHER\tP2\tGermline\tFemale\tN/A",
                "CHILD_BLOOD\tP3\tGermline\tFemale\tP1|P2",
                "CHILD_TUMOR\tP3\tSomatic\tFemale\tP1|P2",
            ]
        )
        + "\n",
        encoding="utf-8",
    )

    matched_path = outdir_p / "matched_reads.tsv"
    matched_path.write_text(
        "sample\tmatched_reads\n" + "".join(f"{s}\t{1_000_000 + 50_000 * i}\n" for i, s in enumerate(TOY_SAMPLES)),
        encoding="utf-8",
    )

    model_dir = ensure_outdir(outdir_p / "models")
    model_path = model_dir / f"best{MODEL_SUFFIX}"
    joblib.dump(ToyContrastEstimator(), model_path)
    write_json(
        model_dir / CONFIG_NAME,
        {"mapper": "pedsomatic.classifier:PairCountsMapper", "mapper_args": {"max_slots": 10}},
    )
    val_rng = np.random.default_rng(7)
    write_json(
        model_dir / f"best{CALIBRATION_SUFFIX}",
        {
            "train_positive_rate": 0.5,
            "validation_scores": {
                "positive": np.round(val_rng.beta(8, 1, size=200), 4).tolist(),
                "negative": np.round(val_rng.beta(1, 8, size=200), 4).tolist(),
            },
        },
    )

    summary = {
        "evidence": str(evidence_path),
        "covariates": str(covariates_path),
        "matched_reads": str(matched_path),
        "model": str(model_path),
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
