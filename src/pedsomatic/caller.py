from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
from tqdm import tqdm

from .alleles import AlleleCalls, resolve_alleles
from .candidates import CandidateFilter, CandidateMatrix, explain_candidates
from .classifier import Calibrator, MutationClassifier, ProbabilityGate, calibrate_position
from .models import PositionCall, PositionEvidence
from .pedigree import PedigreeIndex
from .scoring import FrequencyEstimator, PriorityScorer, SampleDepthTracker
from .utils import ensure_outdir, write_json
from .writer import SomaticVcfWriter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallerConfig:
    model_p_mutated_threshold: float = 0.99
    strict_threshold_parents: int = 0
    strict_threshold_germline: int = 10
    include_bayes: bool = False
    include_fdr: bool = False
    bayes_prior: float = 2.5e-7


def should_emit(alleles: AlleleCalls, matrix: CandidateMatrix) -> bool:
    """A record is written for reportable sites with an alternate allele and a surviving candidate."""
    return alleles.reportable and alleles.has_alternate and matrix.any_candidate()


class SomaticCaller:
    """Drive the per-position decision engine.

    Positions must be processed one at a time, in genomic order. The only state
    kept across positions is the cumulative per-sample depth.
    """

    def __init__(
        self,
        *,
        pedigree: PedigreeIndex,
        classifier: Optional[MutationClassifier],
        matched_reads: Sequence[int],
        config: CallerConfig = CallerConfig(),
        bayes: Optional[Calibrator] = None,
        fdr: Optional[Calibrator] = None,
    ) -> None:
        if config.include_bayes and bayes is None:
            raise ValueError("include_bayes is set but no Bayes calibrator was provided")
        if config.include_fdr and fdr is None:
            raise ValueError("include_fdr is set but no FDR estimator was provided")
        self.pedigree = pedigree
        self.config = config
        self.candidate_filter = CandidateFilter(
            pedigree,
            strict_threshold_parents=config.strict_threshold_parents,
            strict_threshold_germline=config.strict_threshold_germline,
        )
        self.frequency_estimator = FrequencyEstimator(self.candidate_filter)
        self.priority_scorer = PriorityScorer(pedigree, matched_reads)
        self.gate = ProbabilityGate(classifier, pedigree, config.model_p_mutated_threshold)
        self.bayes = bayes if config.include_bayes else None
        self.fdr = fdr if config.include_fdr else None
        self.depth = SampleDepthTracker(len(pedigree.samples))
        self.counts: Dict[str, int] = {
            "positions_total": 0,
            "positions_emitted": 0,
            "suppressed_unreportable": 0,
            "suppressed_no_alternate": 0,
            "suppressed_no_candidate": 0,
            "suppressed_by_model": 0,
            "strict_pass": 0,
            "classifier_gaps": 0,
            "ambiguous_reference": 0,
        }

    def process(self, position: PositionEvidence) -> Optional[PositionCall]:
        """Decide whether and what to emit for one position."""
        try:
            return self._decide(position)
        finally:
            self.depth.update(position)

    def _decide(self, position: PositionEvidence) -> Optional[PositionCall]:
        self.counts["positions_total"] += 1
        alleles = resolve_alleles(position)
        if alleles.ambiguous_reference:
            self.counts["ambiguous_reference"] += 1
        if not alleles.reportable:
            self.counts["suppressed_unreportable"] += 1
            return None
        if not alleles.has_alternate:
            self.counts["suppressed_no_alternate"] += 1
            return None

        if not self.candidate_filter.compute(position).any_candidate():
            self.counts["suppressed_no_candidate"] += 1
            return None

        # the estimator re-derives the grids; everything downstream uses its matrix
        frequencies, matrix = self.frequency_estimator.estimate(position)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "%s:%d candidates:\n%s",
                position.chrom,
                position.pos0 + 1,
                explain_candidates(position, matrix, list(self.pedigree.samples)),
            )
        priorities = self.priority_scorer.score(position, matrix)
        gate_result = self.gate.apply(position, matrix)
        self.counts["classifier_gaps"] += gate_result.gaps

        if not should_emit(alleles, matrix):
            self.counts["suppressed_by_model"] += 1
            return None

        bayes = calibrate_position(gate_result, self.bayes) if self.bayes is not None else {}
        fdr = calibrate_position(gate_result, self.fdr) if self.fdr is not None else {}

        somatic: Dict[int, Dict[str, float]] = {}
        for sample_index in self.pedigree.somatic_indices:
            values: Dict[str, float] = {
                "frequency": frequencies[sample_index] * 100.0,
                "priority": priorities[sample_index],
            }
            prediction = gate_result.reported.get(sample_index)
            if prediction is not None:
                values["p_mutated"] = prediction.p_mutated
                values["p_not_mutated"] = prediction.p_not_mutated
            if sample_index in bayes:
                values["bayes"] = bayes[sample_index]
            if sample_index in fdr:
                values["fdr"] = fdr[sample_index]
            somatic[sample_index] = values

        strict_pass = matrix.any_strict()
        self.counts["positions_emitted"] += 1
        if strict_pass:
            self.counts["strict_pass"] += 1
        return PositionCall(
            chrom=position.chrom,
            pos0=position.pos0,
            ref=alleles.reference,
            alts=alleles.alternates,
            is_indel=alleles.is_indel,
            strict_pass=strict_pass,
            genotypes=alleles.genotypes,
            base_counts=alleles.base_counts,
            good_bases=alleles.good_bases,
            failed_bases=alleles.failed_bases,
            zygosity=alleles.zygosity,
            somatic=somatic,
        )


def call_somatic_variations(
    *,
    positions: Iterable[PositionEvidence],
    caller: SomaticCaller,
    writer: SomaticVcfWriter,
    outdir: str | Path,
    progress: bool = True,
) -> Dict[str, object]:
    """Main workhorse: iterate positions, write records, and return a summary dict."""
    t0 = time.time()
    outdir_path = ensure_outdir(outdir)

    frequency_bins = np.linspace(0.0, 100.0, 51)
    frequency_counts = np.zeros(len(frequency_bins) - 1, dtype=np.int64)

    it: Iterable[PositionEvidence] = positions
    if progress:
        it = tqdm(it, unit="pos", desc="Calling somatic variations")

    try:
        for position in it:
            call = caller.process(position)
            if call is None:
                continue
            writer.write(call)
            freqs = [v["frequency"] for v in call.somatic.values() if v.get("frequency", 0.0) > 0.0]
            if freqs:
                frequency_counts += np.histogram(freqs, bins=frequency_bins)[0]
    finally:
        writer.close()
    dt = time.time() - t0

    samples = list(caller.pedigree.samples)
    pair_proportions: List[Dict[str, object]] = []
    for link in caller.pedigree.links:
        for g in link.germline_indices:
            pair_proportions.append(
                {
                    "somatic": samples[link.somatic_index],
                    "germline": samples[g],
                    "somatic_proportion": caller.depth.pair_proportion(link.somatic_index, g, link.somatic_index),
                }
            )

    summary = {
        "vcf_path": str(writer.path),
        "records_written": int(writer.records_written),
        "config": asdict(caller.config),
        "samples": samples,
        "somatic_samples": [samples[i] for i in caller.pedigree.somatic_indices],
        "counts": dict(caller.counts),
        "sample_depth_proportions": dict(zip(samples, caller.depth.proportions())),
        "pair_depth_proportions": pair_proportions,
        "somatic_frequency_hist": {
            "bin_edges": frequency_bins.tolist(),
            "counts": frequency_counts.tolist(),
        },
        "runtime_seconds": float(dt),
    }
    write_json(outdir_path / "summary.json", summary)
    return summary
