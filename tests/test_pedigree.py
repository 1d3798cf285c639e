import logging
from pathlib import Path

import pytest
from conftest import COVARIATES, FATHER, GERMLINE, MOTHER, SAMPLES, SOMATIC

from pedsomatic.covariates import CovariateError, load_covariates
from pedsomatic.pedigree import build_pedigree_index
from pedsomatic.validation import expand_model_path


def _link(index, somatic_index):
    (link,) = [link for link in index.links if link.somatic_index == somatic_index]
    return link


def _write(tmp_path: Path, text: str) -> Path:
    p = tmp_path / "cov.tsv"
    p.write_text(text, encoding="utf-8")
    return p


def test_links_resolve_parents_and_germline(pedigree):
    assert pedigree.somatic_indices == (SOMATIC,)
    link = _link(pedigree, SOMATIC)
    assert link.father_index == FATHER
    assert link.mother_index == MOTHER
    assert link.germline_indices == (GERMLINE,)
    assert link.parent_indices == (FATHER, MOTHER)
    assert GERMLINE not in pedigree.somatic_indices


def test_sample_order_follows_evidence(covariates):
    reordered = ["S4", "S3", "S2", "S1"]
    index = build_pedigree_index(covariates, reordered)
    link = _link(index, 1)
    assert (link.father_index, link.mother_index, link.germline_indices) == (3, 2, (0,))


def test_missing_parent_is_warned_and_absent(tmp_path, caplog):
    text = COVARIATES.replace("P1|P2\n", "P1|P9\n", 1)
    table = load_covariates(_write(tmp_path, text))
    with caplog.at_level(logging.WARNING, logger="pedsomatic.pedigree"):
        index = build_pedigree_index(table, SAMPLES)
    link = _link(index, SOMATIC)
    assert link.father_index == FATHER
    assert link.mother_index is None
    assert "P9" in caplog.text


def test_missing_covariate_column_is_fatal(tmp_path):
    text = "sample-id\tpatient-id\tkind-of-sample\tgender\nS1\tP1\tGermline\tMale\n"
    table = load_covariates(_write(tmp_path, text))
    with pytest.raises(CovariateError, match="parents"):
        build_pedigree_index(table, ["S1"])


def test_unmatched_somatic_sample_is_fatal(covariates):
    with pytest.raises(CovariateError, match="S3"):
        build_pedigree_index(covariates, ["S1", "S2", "S4"])


def test_no_overlap_is_fatal(covariates):
    with pytest.raises(CovariateError, match="No sample-id"):
        build_pedigree_index(covariates, ["X1", "X2"])


def test_no_somatic_sample_is_fatal(tmp_path):
    text = COVARIATES.replace("Somatic", "Germline")
    table = load_covariates(_write(tmp_path, text))
    with pytest.raises(CovariateError, match="Somatic"):
        build_pedigree_index(table, SAMPLES)


def test_duplicate_sample_id_is_fatal(tmp_path):
    text = COVARIATES + "S1\tP1\tMale\tGermline\tN/A\n"
    with pytest.raises(CovariateError, match="Duplicate"):
        load_covariates(_write(tmp_path, text))


def test_model_path_expands_home(monkeypatch, tmp_path):
    monkeypatch.setenv("PEDSOMATIC_HOME", str(tmp_path))
    p = expand_model_path("${PEDSOMATIC_HOME}/models/bestModel.joblib")
    assert p == tmp_path / "models" / "bestModel.joblib"


def test_model_path_without_home_is_fatal(monkeypatch):
    monkeypatch.delenv("PEDSOMATIC_HOME", raising=False)
    with pytest.raises(FileNotFoundError, match="PEDSOMATIC_HOME"):
        expand_model_path("${PEDSOMATIC_HOME}/models/bestModel.joblib")
