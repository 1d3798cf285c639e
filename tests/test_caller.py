import json

import pysam
import pytest
from conftest import (
    SAMPLES,
    SOMATIC,
    GapClassifier,
    StubClassifier,
    make_position,
    make_sample,
    scenario_a_counts,
)

from pedsomatic.caller import CallerConfig, SomaticCaller, call_somatic_variations
from pedsomatic.classifier import BayesCalibrator, FDREstimator
from pedsomatic.evidence import EvidenceFormatError
from pedsomatic.models import PositionEvidence
from pedsomatic.writer import SomaticVcfWriter

UNIT_READS = [100_000_000] * 4


def _positions():
    return [
        make_position(scenario_a_counts(), pos0=99),
        make_position([{"G": 20}, {"G": 22}, {"G": 18}, {"G": 25}], pos0=100),
        make_position([{"G": 10, "A": 10}, {"G": 20}, {"G": 10, "A": 10}, {"G": 10, "A": 10}], pos0=101),
        make_position([{}, {}, {}, {}], pos0=102),
    ]


def _caller(pedigree, p_mutated=0.999, **config):
    return SomaticCaller(
        pedigree=pedigree,
        classifier=StubClassifier(p_mutated),
        matched_reads=UNIT_READS,
        config=CallerConfig(**config),
    )


def test_emits_only_supported_somatic_sites(pedigree):
    caller = _caller(pedigree)
    calls = [caller.process(p) for p in _positions()]

    assert calls[1:] == [None, None, None]
    call = calls[0]
    assert call is not None
    assert (call.chrom, call.pos0, call.ref, call.alts) == ("chr1", 99, "G", ("A",))
    assert call.strict_pass
    assert call.somatic[SOMATIC]["frequency"] == pytest.approx(100.0)
    assert call.somatic[SOMATIC]["priority"] == pytest.approx(39.0)
    assert call.somatic[SOMATIC]["p_mutated"] == pytest.approx(0.999)

    assert caller.counts == {
        "positions_total": 4,
        "positions_emitted": 1,
        "suppressed_unreportable": 1,
        "suppressed_no_alternate": 1,
        "suppressed_no_candidate": 1,
        "suppressed_by_model": 0,
        "strict_pass": 1,
        "classifier_gaps": 0,
        "ambiguous_reference": 0,
    }
    # depth is tracked for every position, emitted or not
    assert caller.depth.positions_seen == 4


def test_reference_only_site_is_suppressed_despite_candidates(pedigree):
    # relatives are covered only in the catch-all slot, so S3's reference slot is a candidate
    samples = tuple(
        make_sample(i, {"G": 20}) if i == SOMATIC else make_sample(i, {}, other=20) for i in range(len(SAMPLES))
    )
    position = PositionEvidence(chrom="chr1", pos0=99, reference_index=0, samples=samples)
    caller = _caller(pedigree)
    assert caller.candidate_filter.compute(position).candidate[SOMATIC, 0]

    assert caller.process(position) is None
    assert caller.counts["suppressed_no_alternate"] == 1
    assert caller.counts["suppressed_no_candidate"] == 0
    assert caller.gate.classifier.calls == []


def test_sample_without_scored_pair_is_not_emitted(pedigree):
    caller = SomaticCaller(
        pedigree=pedigree,
        classifier=GapClassifier(),
        matched_reads=UNIT_READS,
    )
    assert caller.process(make_position(scenario_a_counts())) is None
    assert caller.counts["classifier_gaps"] == 1
    assert caller.counts["suppressed_by_model"] == 1
    assert caller.counts["positions_emitted"] == 0


def test_scenario_c_position_is_not_emitted(pedigree):
    caller = _caller(pedigree, p_mutated=0.5)
    assert caller.process(make_position(scenario_a_counts())) is None
    assert caller.counts["suppressed_by_model"] == 1
    assert caller.counts["positions_emitted"] == 0


def test_threshold_is_configurable(pedigree):
    caller = _caller(pedigree, p_mutated=0.5, model_p_mutated_threshold=0.4)
    assert caller.process(make_position(scenario_a_counts())) is not None


def test_non_strict_candidate_fails_filter(pedigree):
    counts = scenario_a_counts()
    counts[0] = {"G": 20, "A": 3}
    caller = _caller(pedigree)
    call = caller.process(make_position(counts, failed=[5, 0, 0, 0]))
    assert call is not None
    assert not call.strict_pass
    assert caller.counts["strict_pass"] == 0


def test_calibrated_values_for_emitted_records(pedigree):
    caller = SomaticCaller(
        pedigree=pedigree,
        classifier=StubClassifier(0.999),
        matched_reads=UNIT_READS,
        config=CallerConfig(include_bayes=True, include_fdr=True),
        bayes=BayesCalibrator(0.5, 0.5),
        fdr=FDREstimator([0.999, 0.9], [0.1, 0.2]),
    )
    call = caller.process(make_position(scenario_a_counts()))
    assert call.somatic[SOMATIC]["bayes"] == pytest.approx(0.999)
    assert call.somatic[SOMATIC]["fdr"] == pytest.approx(0.0)


def test_missing_calibrator_is_rejected(pedigree):
    with pytest.raises(ValueError, match="Bayes"):
        SomaticCaller(
            pedigree=pedigree,
            classifier=StubClassifier(),
            matched_reads=UNIT_READS,
            config=CallerConfig(include_bayes=True),
        )


def test_call_somatic_variations_writes_outputs(pedigree, tmp_path):
    caller = _caller(pedigree)
    vcf_path = tmp_path / "somatic.vcf.gz"
    writer = SomaticVcfWriter(vcf_path, samples=SAMPLES, contigs=["chr1"], somatic_samples=["S3"])

    summary = call_somatic_variations(
        positions=iter(_positions()),
        caller=caller,
        writer=writer,
        outdir=tmp_path,
        progress=False,
    )

    assert summary["records_written"] == 1
    assert summary["somatic_samples"] == ["S3"]
    assert sum(summary["somatic_frequency_hist"]["counts"]) == 1
    assert summary["pair_depth_proportions"][0]["germline"] == "S4"
    on_disk = json.loads((tmp_path / "summary.json").read_text(encoding="utf-8"))
    assert on_disk["counts"]["positions_emitted"] == 1

    with pysam.VariantFile(str(vcf_path)) as vcf:
        records = list(vcf)
    assert [r.pos for r in records] == [100]


def test_records_survive_an_input_error(pedigree, tmp_path):
    def positions():
        yield make_position(scenario_a_counts(), pos0=99)
        raise EvidenceFormatError("Evidence is not sorted by position")

    vcf_path = tmp_path / "somatic.vcf.gz"
    writer = SomaticVcfWriter(vcf_path, samples=SAMPLES, contigs=["chr1"], somatic_samples=["S3"])
    with pytest.raises(EvidenceFormatError):
        call_somatic_variations(
            positions=positions(),
            caller=_caller(pedigree),
            writer=writer,
            outdir=tmp_path,
            progress=False,
        )

    assert not (tmp_path / "summary.json").exists()
    with pysam.VariantFile(str(vcf_path)) as vcf:
        assert [r.pos for r in vcf] == [100]
