from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .models import PositionEvidence, SampleEvidence
from .pedigree import PedigreeIndex

logger = logging.getLogger(__name__)

# A parent "has" a genotype above its own failed-base count or above this floor.
PARENT_COUNT_FLOOR = 5
# A germline relative "has" a genotype at or above this count...
GERMLINE_MIN_COUNT = 10
# ...when it also reaches this multiple of the somatic sample's failed-base count.
GERMLINE_FAILED_RATIO = 1.5
# Somatic frequency must exceed this multiple of the highest relative frequency.
FREQUENCY_FOLD = 3.0


@dataclass
class CandidateMatrix:
    """Somatic candidate flags indexed by [sample, genotype slot].

    ``strict`` is always a subset of ``candidate``.
    """

    candidate: np.ndarray
    strict: np.ndarray

    @property
    def shape(self) -> Tuple[int, int]:
        return self.candidate.shape

    def any_candidate(self) -> bool:
        return bool(self.candidate.any())

    def any_strict(self) -> bool:
        return bool(self.strict.any())

    def sample_has_candidate(self, sample_index: int) -> bool:
        return bool(self.candidate[sample_index].any())

    def candidate_slots(self, sample_index: int) -> List[int]:
        return [int(i) for i in np.flatnonzero(self.candidate[sample_index])]

    def clear_sample(self, sample_index: int) -> None:
        self.candidate[sample_index, :] = False
        self.strict[sample_index, :] = False

    def copy(self) -> "CandidateMatrix":
        return CandidateMatrix(candidate=self.candidate.copy(), strict=self.strict.copy())

    def equals(self, other: "CandidateMatrix") -> bool:
        return bool(
            np.array_equal(self.candidate, other.candidate) and np.array_equal(self.strict, other.strict)
        )


class GridPool:
    """Reusable boolean buffers for candidate grids.

    Buffers grow to the largest (samples, slots) shape seen and are reset, not
    reallocated, for each position. A matrix handed out stays valid until the next
    ``acquire``.
    """

    def __init__(self) -> None:
        self._candidate = np.zeros((0, 0), dtype=bool)
        self._strict = np.zeros((0, 0), dtype=bool)

    def acquire(self, num_samples: int, num_slots: int) -> CandidateMatrix:
        rows, cols = self._candidate.shape
        if num_samples > rows or num_slots > cols:
            shape = (max(rows, num_samples), max(cols, num_slots))
            logger.debug("Growing candidate grid buffers to %s", shape)
            self._candidate = np.zeros(shape, dtype=bool)
            self._strict = np.zeros(shape, dtype=bool)
        candidate = self._candidate[:num_samples, :num_slots]
        strict = self._strict[:num_samples, :num_slots]
        candidate.fill(False)
        strict.fill(False)
        return CandidateMatrix(candidate=candidate, strict=strict)


class CandidateFilter:
    """Decide which genotypes of each somatic sample are not explained by its relatives."""

    def __init__(
        self,
        pedigree: PedigreeIndex,
        *,
        strict_threshold_parents: int = 0,
        strict_threshold_germline: int = 10,
        pool: Optional[GridPool] = None,
    ) -> None:
        self.pedigree = pedigree
        self.strict_threshold_parents = int(strict_threshold_parents)
        self.strict_threshold_germline = int(strict_threshold_germline)
        self.pool = pool if pool is not None else GridPool()

    def compute(self, position: PositionEvidence) -> CandidateMatrix:
        """Recompute both grids from scratch for this position."""
        samples = position.samples
        matrix = self.pool.acquire(len(samples), position.max_slots)

        for link in self.pedigree.links:
            somatic = samples[link.somatic_index]
            parents = [samples[i] for i in link.parent_indices]
            germline = [samples[i] for i in link.germline_indices]
            for slot in range(somatic.num_slots):
                candidate, strict = self._classify_slot(slot, somatic, parents, germline)
                matrix.candidate[link.somatic_index, slot] = candidate
                matrix.strict[link.somatic_index, slot] = strict
        return matrix

    def _classify_slot(
        self,
        slot: int,
        somatic: SampleEvidence,
        parents: List[SampleEvidence],
        germline: List[SampleEvidence],
    ) -> Tuple[bool, bool]:
        parent_has_genotype = any(
            p.count(slot) > p.failed_count or p.count(slot) > PARENT_COUNT_FLOOR for p in parents
        )
        germline_has_genotype = any(
            g.count(slot) >= GERMLINE_MIN_COUNT and g.count(slot) >= GERMLINE_FAILED_RATIO * somatic.failed_count
            for g in germline
        )
        if parent_has_genotype or germline_has_genotype or somatic.count(slot) == 0:
            return False, False

        consulted = parents + germline
        if consulted:
            min_coverage = min(s.coverage for s in consulted)
            if min_coverage < somatic.coverage // 2:
                # not enough coverage in relatives to call this site confidently
                return False, False

        max_relative_frequency = max((s.frequency(slot) for s in consulted), default=0.0)
        if not somatic.frequency(slot) > FREQUENCY_FOLD * max_relative_frequency:
            return False, False

        strict = all(p.count(slot) <= self.strict_threshold_parents for p in parents) and all(
            g.count(slot) <= self.strict_threshold_germline for g in germline
        )
        return True, strict


def explain_candidates(position: PositionEvidence, matrix: CandidateMatrix, samples: List[str]) -> str:
    lines = []
    for sample_index, sample in enumerate(position.samples):
        for slot in matrix.candidate_slots(sample_index):
            lines.append(f"genotype {sample.slots[slot].genotype} is candidate somatic in {samples[sample_index]}")
    return "\n".join(lines)
