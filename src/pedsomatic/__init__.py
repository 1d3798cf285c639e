"""pedsomatic: pedigree-aware somatic variation calling from per-sample base counts.

Public API is intentionally small; most users should use the CLI:

    pedsomatic call --evidence ... --covariates ... --model-path ... --outdir ...

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
