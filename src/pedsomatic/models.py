from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class GenotypeSlot:
    """One enumerated genotype tracked for a sample at a position.

    Attributes
    ----------
    genotype:
        Allele string (a base, or a longer string for indels).
    count:
        Number of bases that passed filters and support this genotype.
    is_indel:
        True when the genotype describes an insertion/deletion.
    is_reference:
        True when the genotype matches the reference.
    is_other:
        True for the designated catch-all slot (ambiguous/unknown bases).
    """

    genotype: str
    count: int
    is_indel: bool = False
    is_reference: bool = False
    is_other: bool = False


@dataclass(frozen=True)
class SampleEvidence:
    """Base-count evidence for one sample at one position.

    ``reference_genotype`` is the reference string for this sample at the position;
    it is longer than one base in indel contexts.
    """

    sample_index: int
    reference_genotype: str
    slots: Tuple[GenotypeSlot, ...]
    failed_count: int = 0

    @property
    def num_slots(self) -> int:
        return len(self.slots)

    @property
    def coverage(self) -> int:
        return sum(s.count for s in self.slots)

    @property
    def ref_count(self) -> int:
        return sum(s.count for s in self.slots if s.is_reference)

    @property
    def other_index(self) -> int:
        for i, s in enumerate(self.slots):
            if s.is_other:
                return i
        return -1

    def count(self, slot_index: int) -> int:
        # Slot indices beyond this sample's layout carry no evidence.
        if 0 <= slot_index < len(self.slots):
            return self.slots[slot_index].count
        return 0

    def frequency(self, slot_index: int) -> float:
        cov = self.coverage
        if cov <= 0:
            return 0.0
        return self.count(slot_index) / float(cov)


@dataclass(frozen=True)
class PositionEvidence:
    """All samples' evidence at one genomic position (0-based ``pos0``)."""

    chrom: str
    pos0: int
    reference_index: int
    samples: Tuple[SampleEvidence, ...]
    observations: Optional[Any] = None

    @property
    def max_slots(self) -> int:
        return max((s.num_slots for s in self.samples), default=0)


@dataclass(frozen=True)
class PedigreeLink:
    """Resolved relatives of one somatic sample (indices into the sample list)."""

    somatic_index: int
    father_index: Optional[int] = None
    mother_index: Optional[int] = None
    germline_indices: Tuple[int, ...] = ()

    @property
    def parent_indices(self) -> Tuple[int, ...]:
        return tuple(i for i in (self.father_index, self.mother_index) if i is not None)


@dataclass(frozen=True)
class Prediction:
    """Classifier output for one (somatic, germline) pair."""

    p_mutated: float
    p_not_mutated: float


@dataclass
class PositionCall:
    """Everything the writer needs to emit one record."""

    chrom: str
    pos0: int
    ref: str
    alts: Tuple[str, ...]
    is_indel: bool
    strict_pass: bool
    genotypes: Tuple[str, ...]
    base_counts: Tuple[str, ...]
    good_bases: Tuple[int, ...]
    failed_bases: Tuple[int, ...]
    zygosity: Tuple[str, ...]
    somatic: Dict[int, Dict[str, float]] = field(default_factory=dict)
