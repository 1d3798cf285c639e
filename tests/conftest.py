from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

from pedsomatic.classifier import ClassifierGapError
from pedsomatic.covariates import CovariateTable, load_covariates
from pedsomatic.models import GenotypeSlot, PositionEvidence, Prediction, SampleEvidence
from pedsomatic.pedigree import PedigreeIndex, build_pedigree_index

SAMPLES = ["S1", "S2", "S3", "S4"]
FATHER, MOTHER, SOMATIC, GERMLINE = 0, 1, 2, 3

COVARIATES = """sample-id\tpatient-id\tgender\tkind-of-sample\tparents
S1\tP1\tMale\tGermline\tN/A
S2\tP2\tFemale\tGermline\tN/A
S3\tP3\tMale\tSomatic\tP1|P2
S4\tP3\tMale\tGermline\tP1|P2
"""

SNV_LAYOUT = ("G", "A", "C", "T")


class StubClassifier:
    """Deterministic classifier: a fixed P(mutated), optionally per somatic sample."""

    def __init__(self, p_mutated: float = 0.999, per_sample: Optional[Dict[int, float]] = None) -> None:
        self.p_mutated = p_mutated
        self.per_sample = per_sample or {}
        self.calls: List[tuple] = []

    def predict(self, samples, reference_index, position, evidence, germline_index, somatic_index) -> Prediction:
        self.calls.append((somatic_index, germline_index))
        p = self.per_sample.get(somatic_index, self.p_mutated)
        return Prediction(p_mutated=p, p_not_mutated=1.0 - p)


class GapClassifier:
    """Classifier that can never build features for a pair."""

    def predict(self, samples, reference_index, position, evidence, germline_index, somatic_index) -> Prediction:
        raise ClassifierGapError("no features for this pair")


def make_sample(
    sample_index: int,
    counts: Dict[str, int],
    *,
    reference: str = "G",
    failed: int = 0,
    layout: Sequence[str] = SNV_LAYOUT,
    other: int = 0,
) -> SampleEvidence:
    slots = [GenotypeSlot(g, int(counts.get(g, 0)), is_reference=(g == reference)) for g in layout]
    slots.append(GenotypeSlot("N", other, is_other=True))
    return SampleEvidence(sample_index=sample_index, reference_genotype=reference, slots=tuple(slots), failed_count=failed)


def make_position(
    counts: Sequence[Dict[str, int]],
    *,
    failed: Optional[Sequence[int]] = None,
    reference: str = "G",
    chrom: str = "chr1",
    pos0: int = 99,
) -> PositionEvidence:
    failed = list(failed) if failed is not None else [0] * len(counts)
    samples = tuple(
        make_sample(i, c, reference=reference, failed=failed[i]) for i, c in enumerate(counts)
    )
    return PositionEvidence(chrom=chrom, pos0=pos0, reference_index=0, samples=samples)


def scenario_a_counts() -> List[Dict[str, int]]:
    """Somatic S3 shows 20 x A; parents have none; germline S4 shows a single A."""
    return [
        {"G": 20},
        {"G": 20},
        {"A": 20},
        {"G": 19, "A": 1},
    ]


@pytest.fixture
def covariates_path(tmp_path: Path) -> Path:
    p = tmp_path / "covariates.tsv"
    p.write_text(COVARIATES, encoding="utf-8")
    return p


@pytest.fixture
def covariates(covariates_path: Path) -> CovariateTable:
    return load_covariates(covariates_path)


@pytest.fixture
def pedigree(covariates: CovariateTable) -> PedigreeIndex:
    return build_pedigree_index(covariates, SAMPLES)

