from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Tuple

from .models import PositionEvidence

logger = logging.getLogger(__name__)

NO_CALL = "./."

NOT_TYPED = "not-typed"
HOMOZYGOUS = "homozygous"
HETEROZYGOUS = "heterozygous"
MIXTURE = "mixture"


def zygosity_label(num_alleles: int) -> str:
    """Zygosity from the number of distinct non-catch-all alleles observed in a sample."""
    if num_alleles <= 0:
        return NOT_TYPED
    if num_alleles == 1:
        return HOMOZYGOUS
    if num_alleles == 2:
        return HETEROZYGOUS
    return MIXTURE


class ReferenceSet:
    """Reference candidates, keeping only strings not described by a longer member.

    Indel contexts report longer reference strings (``ACT``) than base contexts
    (``A``). A string that is a prefix of a member adds nothing; a member that is a
    prefix of a new string is replaced by it. The final content does not depend on
    insertion order.
    """

    def __init__(self) -> None:
        self._members: Dict[str, None] = {}

    def add(self, genotype: str) -> List[str]:
        """Add a candidate; return the members it subsumed (removed)."""
        if any(m.startswith(genotype) for m in self._members):
            return []
        removed = [m for m in self._members if m != genotype and genotype.startswith(m)]
        for m in removed:
            del self._members[m]
        self._members[genotype] = None
        return removed

    def __len__(self) -> int:
        return len(self._members)

    def __iter__(self) -> Iterator[str]:
        return iter(self._members)

    def __contains__(self, genotype: object) -> bool:
        return genotype in self._members

    def longest(self) -> str:
        best = ""
        for m in self._members:
            if len(m) > len(best):
                best = m
        return best


@dataclass(frozen=True)
class AlleleCalls:
    """Canonical alleles and per-sample calls at one position."""

    reference: str
    reference_candidates: Tuple[str, ...]
    alleles: Tuple[str, ...]
    alternates: Tuple[str, ...]
    is_indel: bool
    genotypes: Tuple[str, ...]
    base_counts: Tuple[str, ...]
    good_bases: Tuple[int, ...]
    failed_bases: Tuple[int, ...]
    zygosity: Tuple[str, ...]
    sample_alleles: Tuple[Tuple[str, ...], ...]

    @property
    def reportable(self) -> bool:
        return len(self.alleles) > 0

    @property
    def has_alternate(self) -> bool:
        return len(self.alternates) > 0

    @property
    def ambiguous_reference(self) -> bool:
        return len(self.reference_candidates) > 1


def resolve_alleles(position: PositionEvidence) -> AlleleCalls:
    """Canonicalize genotype-slot evidence into allele calls for every sample."""
    reference_set = ReferenceSet()
    alleles: Dict[str, None] = {}
    alternates: Dict[str, None] = {}
    site_has_indel = False

    genotypes: List[str] = []
    base_counts: List[str] = []
    zygosity: List[str] = []
    sample_alleles: List[Tuple[str, ...]] = []

    for sample in position.samples:
        local: Dict[str, None] = {}
        tokens: List[str] = []
        counts: List[str] = []
        observed = False

        for slot in sample.slots:
            genotype = slot.genotype
            if slot.count > 0 and not slot.is_other:
                observed = True
                if slot.is_indel:
                    site_has_indel = True
                if not slot.is_reference:
                    alternates[genotype] = None
                    removed = reference_set.add(sample.reference_genotype)
                else:
                    if slot.is_indel:
                        genotype = sample.reference_genotype
                    removed = reference_set.add(genotype)
                for r in removed:
                    alleles.pop(r, None)
                    local.pop(r, None)
                alleles[genotype] = None
                local[genotype] = None
                tokens.append(genotype)
            if slot.count > 0:
                counts.append(f"{genotype}={slot.count}")

        if observed:
            if len(local) == 1:
                # homozygous: A -> A/A
                tokens = tokens + tokens
            genotypes.append("/".join(tokens))
        else:
            genotypes.append(NO_CALL)
        base_counts.append(",".join(counts))
        zygosity.append(zygosity_label(len(local)))
        sample_alleles.append(tuple(local))

    if len(reference_set) == 0:
        reference = position.samples[0].reference_genotype if position.samples else ""
    elif len(reference_set) == 1:
        reference = next(iter(reference_set))
    else:
        reference = reference_set.longest()
        logger.error(
            "Observed multiple indel references at %s:%d: %s; using the longest (%s)",
            position.chrom,
            position.pos0 + 1,
            ", ".join(reference_set),
            reference,
        )

    return AlleleCalls(
        reference=reference,
        reference_candidates=tuple(reference_set),
        alleles=tuple(alleles),
        alternates=tuple(alternates),
        is_indel=site_has_indel,
        genotypes=tuple(genotypes),
        base_counts=tuple(base_counts),
        good_bases=tuple(s.coverage for s in position.samples),
        failed_bases=tuple(s.failed_count for s in position.samples),
        zygosity=tuple(zygosity),
        sample_alleles=tuple(sample_alleles),
    )
