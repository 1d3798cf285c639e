from __future__ import annotations

import logging
from typing import Dict, List, Sequence, Tuple

import numpy as np

from .candidates import CandidateFilter, CandidateMatrix
from .models import PedigreeLink, PositionEvidence, SampleEvidence
from .pedigree import PedigreeIndex

logger = logging.getLogger(__name__)

# Scale normalized counts into a convenient range (counts per 100 million reads).
PRIORITY_SCALE = 1e8
# Priority reported for a somatic sample without candidate genotypes.
NO_CANDIDATE_PRIORITY = -10.0


class FrequencyEstimator:
    """Largest candidate somatic frequency per somatic sample."""

    def __init__(self, candidate_filter: CandidateFilter) -> None:
        self.candidate_filter = candidate_filter

    def estimate(self, position: PositionEvidence) -> Tuple[Dict[int, float], CandidateMatrix]:
        """Return ({somatic index: frequency in [0, 1]}, recomputed candidate matrix)."""
        matrix = self.candidate_filter.compute(position)
        any_candidate = matrix.any_candidate()

        frequencies: Dict[int, float] = {}
        for sample_index in self.candidate_filter.pedigree.somatic_indices:
            frequency = 0.0
            if any_candidate:
                somatic = position.samples[sample_index]
                for slot in matrix.candidate_slots(sample_index):
                    frequency = max(frequency, somatic.frequency(slot))
            frequencies[sample_index] = frequency
        return frequencies, matrix


class PriorityScorer:
    """Pedigree-contrast priority: larger values mean more support for a somatic variation.

    Counts are normalized by each sample's number of matched reads so that deeply
    sequenced relatives do not dominate the contrast.
    """

    def __init__(self, pedigree: PedigreeIndex, matched_reads: Sequence[int]) -> None:
        self.pedigree = pedigree
        self.matched_reads = [max(1, int(n)) for n in matched_reads]

    def normalize(self, count: int, sample_index: int) -> float:
        return PRIORITY_SCALE * float(count) / float(self.matched_reads[sample_index])

    def _component(self, slot: int, somatic: SampleEvidence, other: SampleEvidence) -> float:
        return self.normalize(somatic.count(slot), somatic.sample_index) - self.normalize(
            other.count(slot), other.sample_index
        )

    def _contribution(self, slot: int, somatic: SampleEvidence, relatives: List[SampleEvidence]) -> float:
        if not relatives:
            return 0.0
        return min(self._component(slot, somatic, r) for r in relatives)

    def score_sample(self, position: PositionEvidence, link: PedigreeLink, matrix: CandidateMatrix) -> float:
        somatic = position.samples[link.somatic_index]
        parents = [position.samples[i] for i in link.parent_indices]
        germline = [position.samples[i] for i in link.germline_indices]

        priority = NO_CANDIDATE_PRIORITY
        for slot in matrix.candidate_slots(link.somatic_index):
            total = self._contribution(slot, somatic, parents) + self._contribution(slot, somatic, germline)
            priority = max(priority, total)
        return priority

    def score(self, position: PositionEvidence, matrix: CandidateMatrix) -> Dict[int, float]:
        return {link.somatic_index: self.score_sample(position, link, matrix) for link in self.pedigree.links}


class SampleDepthTracker:
    """Cumulative per-sample reference-base counts across processed positions.

    Counts start at 1 so proportions are defined before the first position.
    """

    def __init__(self, num_samples: int) -> None:
        self.counts = np.ones(num_samples, dtype=np.float64)
        self.positions_seen = 0

    def update(self, position: PositionEvidence) -> None:
        for sample in position.samples:
            # estimate sample proportion with number of reference bases that matched
            self.counts[sample.sample_index] += sample.ref_count
        self.positions_seen += 1

    def proportions(self) -> List[float]:
        total = float(self.counts.sum())
        return [float(c) / total for c in self.counts]

    def pair_proportion(self, index_a: int, index_b: int, request: int) -> float:
        """Expected share of bases for ``request`` within the (a, b) sample pair."""
        if request not in (index_a, index_b):
            raise ValueError("request must be one of index_a or index_b")
        pair_total = float(self.counts[index_a] + self.counts[index_b]) if index_a != index_b else float(
            self.counts[index_a]
        )
        return float(self.counts[request]) / pair_total
