from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Sequence

from .covariates import KIND_OF_SAMPLE, REQUIRED_COLUMNS, SOMATIC, CovariateError, CovariateTable

logger = logging.getLogger(__name__)

HOME_VARIABLE = "PEDSOMATIC_HOME"
_HOME_TOKEN = "${" + HOME_VARIABLE + "}"


def check_covariate_columns(table: CovariateTable) -> None:
    """Ensure the covariate table has every column pedigree resolution needs."""
    missing = [c for c in REQUIRED_COLUMNS if c not in table.columns]
    if missing:
        raise CovariateError(
            "The covariate file must provide the following columns: "
            "patient-id, kind-of-sample={Germline|Somatic}, gender={Male|Female}, parents=P1|P2. "
            f"Missing: {', '.join(missing)}. Found: {', '.join(table.columns)}"
        )


def check_sample_overlap(table: CovariateTable, samples: Sequence[str]) -> List[str]:
    """Return the somatic sample ids; raise if they cannot be matched to input samples."""
    sample_set = set(samples)
    if not sample_set.intersection(table.sample_ids):
        raise CovariateError(
            "No sample-id in the covariate file matches an input sample. "
            f"Input samples: {', '.join(samples)}"
        )
    somatic_ids = table.samples_with_value(KIND_OF_SAMPLE, SOMATIC)
    if not somatic_ids:
        raise CovariateError("No sample has kind-of-sample=Somatic in the covariate file.")
    unmatched = [s for s in somatic_ids if s not in sample_set]
    if unmatched:
        raise CovariateError(
            "Sample ids must match between the covariate file and the evidence samples. "
            f"Mismatch detected for: {', '.join(unmatched)}"
        )
    return somatic_ids


def expand_model_path(model_path: str) -> Path:
    """Expand ``${PEDSOMATIC_HOME}`` in a model path; raise if the variable is unset."""
    if _HOME_TOKEN in model_path:
        home = os.environ.get(HOME_VARIABLE)
        if not home:
            raise FileNotFoundError(
                f"The model path refers to {_HOME_TOKEN} but {HOME_VARIABLE} is not set. "
                f"Export {HOME_VARIABLE} or pass an explicit --model-path."
            )
        model_path = model_path.replace(_HOME_TOKEN, home)
    return Path(model_path).expanduser()
