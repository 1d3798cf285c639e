from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from .utils import open_textmaybe_gzip

logger = logging.getLogger(__name__)

SAMPLE_ID = "sample-id"
PATIENT_ID = "patient-id"
KIND_OF_SAMPLE = "kind-of-sample"
GENDER = "gender"
PARENTS = "parents"

REQUIRED_COLUMNS = (PATIENT_ID, KIND_OF_SAMPLE, GENDER, PARENTS)

GERMLINE = "Germline"
SOMATIC = "Somatic"
MALE = "Male"
FEMALE = "Female"

PARENT_SEPARATOR = "|"
_MISSING_VALUES = {"", "N/A", "NA", "."}


class CovariateError(ValueError):
    """Raised when the covariate table cannot support pedigree resolution."""


@dataclass(frozen=True)
class CovariateTable:
    """Covariate values keyed by sample id, in file order."""

    columns: List[str]
    rows: Dict[str, Dict[str, str]]

    @property
    def sample_ids(self) -> List[str]:
        return list(self.rows)

    def value(self, sample_id: str, column: str) -> Optional[str]:
        v = self.rows.get(sample_id, {}).get(column)
        if v is None or v.strip() in _MISSING_VALUES:
            return None
        return v.strip()

    def has_value(self, sample_id: str, column: str, expected: str) -> bool:
        v = self.value(sample_id, column)
        return v is not None and v.lower() == expected.lower()

    def samples_with_value(self, column: str, expected: str) -> List[str]:
        return [s for s in self.rows if self.has_value(s, column, expected)]

    def parent_ids(self, sample_id: str) -> List[str]:
        v = self.value(sample_id, PARENTS)
        if v is None:
            return []
        return [p.strip() for p in v.split(PARENT_SEPARATOR) if p.strip() not in _MISSING_VALUES]


def load_covariates(path: str | Path) -> CovariateTable:
    """Load a tab-separated covariate table with a ``sample-id`` column."""
    with open_textmaybe_gzip(path, "rt") as fh:
        reader = csv.DictReader(fh, delimiter="\t")
        if reader.fieldnames is None:
            raise CovariateError(f"Covariate file is empty: {path}")
        columns = [c.strip() for c in reader.fieldnames]
        if SAMPLE_ID not in columns:
            raise CovariateError(
                f"Covariate file must have a '{SAMPLE_ID}' column. Found columns: {', '.join(columns)}"
            )
        rows: Dict[str, Dict[str, str]] = {}
        for row in reader:
            clean = {(k or "").strip(): (v or "") for k, v in row.items()}
            sid = clean.get(SAMPLE_ID, "").strip()
            if not sid:
                continue
            if sid in rows:
                raise CovariateError(f"Duplicate sample-id in covariate file: {sid}")
            rows[sid] = clean
    logger.info("Loaded covariates for %d samples from %s", len(rows), path)
    return CovariateTable(columns=columns, rows=rows)
