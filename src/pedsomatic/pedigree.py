"""Static pedigree structure among the input samples.

For every somatic sample we resolve, once, the samples to compare it against:

- its father and mother (from the ``parents`` covariate, a ``|``-separated list of
  parent patient ids; the parent's ``gender`` decides which is which);
- every other sample of the same patient marked ``Germline``.

Example covariate table::

    sample-id  patient-id  gender  kind-of-sample  parents
    S1         P1          Male    Germline        N/A
    S2         P2          Female  Germline        N/A
    S3         P3          Male    Somatic         P1|P2
    S4         P3          Male    Germline        P1|P2

S3 is compared with S1|S2 (variations not explained by either parent) and with S4
(variations not found in the patient's germline DNA).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .covariates import (
    FEMALE,
    GENDER,
    GERMLINE,
    KIND_OF_SAMPLE,
    MALE,
    PATIENT_ID,
    CovariateTable,
)
from .models import PedigreeLink
from .validation import check_covariate_columns, check_sample_overlap

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PedigreeIndex:
    samples: Tuple[str, ...]
    links: Tuple[PedigreeLink, ...]

    @property
    def somatic_indices(self) -> Tuple[int, ...]:
        return tuple(link.somatic_index for link in self.links)


def _resolve_parent(
    table: CovariateTable,
    parent_id: str,
    sample_to_index: Dict[str, int],
) -> Tuple[Optional[int], Optional[str]]:
    """Map a parent patient id to (sample index, gender), or (None, None)."""
    candidates = [s for s in table.samples_with_value(PATIENT_ID, parent_id) if s in sample_to_index]
    if not candidates:
        return None, None
    parent_sample = candidates[0]
    return sample_to_index[parent_sample], table.value(parent_sample, GENDER)


def build_pedigree_index(table: CovariateTable, samples: Sequence[str]) -> PedigreeIndex:
    """Resolve father/mother/germline relatives for each somatic sample.

    Raises CovariateError for a covariate schema or sample-id problem. Unresolved
    parents are logged and treated as absent.
    """
    check_covariate_columns(table)
    somatic_ids = check_sample_overlap(table, samples)
    sample_to_index = {s: i for i, s in enumerate(samples)}

    links: List[PedigreeLink] = []
    for somatic_id in somatic_ids:
        somatic_index = sample_to_index[somatic_id]
        father: Optional[int] = None
        mother: Optional[int] = None

        for parent_id in table.parent_ids(somatic_id):
            parent_index, gender = _resolve_parent(table, parent_id, sample_to_index)
            if parent_index is None:
                logger.warning("Parent could not be found for id: %s (somatic sample %s)", parent_id, somatic_id)
                continue
            if gender is not None and gender.lower() == MALE.lower():
                father = parent_index
            elif gender is not None and gender.lower() == FEMALE.lower():
                mother = parent_index
            else:
                logger.warning(
                    "Parent %s of %s has gender '%s'; expected Male or Female. Ignoring this parent.",
                    samples[parent_index],
                    somatic_id,
                    gender,
                )

        germline: List[int] = []
        patient = table.value(somatic_id, PATIENT_ID)
        if patient is not None:
            for sample_id in table.samples_with_value(PATIENT_ID, patient):
                if sample_id == somatic_id or not table.has_value(sample_id, KIND_OF_SAMPLE, GERMLINE):
                    continue
                if sample_id not in sample_to_index:
                    logger.warning(
                        "Germline sample %s of patient %s has no evidence; it will not be compared.",
                        sample_id,
                        patient,
                    )
                    continue
                germline.append(sample_to_index[sample_id])

        link = PedigreeLink(
            somatic_index=somatic_index,
            father_index=father,
            mother_index=mother,
            germline_indices=tuple(germline),
        )
        logger.info(
            "Somatic sample %s: father=%s mother=%s germline=%s",
            somatic_id,
            samples[father] if father is not None else "-",
            samples[mother] if mother is not None else "-",
            ",".join(samples[i] for i in germline) or "-",
        )
        links.append(link)

    return PedigreeIndex(samples=tuple(samples), links=tuple(links))
