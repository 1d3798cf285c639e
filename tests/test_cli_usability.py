import json
import os
import subprocess
import sys
from pathlib import Path
from typing import Dict, Optional

import pysam

from pedsomatic.toy_data import make_toy_data


def _run_cli(args: list[str], env: Optional[Dict[str, str]] = None) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "pedsomatic"] + args,
        check=False,
        capture_output=True,
        text=True,
        env=env,
    )


def _call_args(toy: Dict[str, str], outdir: Path) -> list[str]:
    return [
        "call",
        "--evidence",
        toy["evidence"],
        "--covariates",
        toy["covariates"],
        "--matched-reads",
        toy["matched_reads"],
        "--model-path",
        toy["model"],
        "--outdir",
        str(outdir),
        "--no-progress",
    ]


def test_quickstart_output() -> None:
    cp = _run_cli(["quickstart"])
    assert cp.returncode == 0
    assert "pedsomatic make-toy-data" in cp.stdout
    assert "pedsomatic call" in cp.stdout


def test_call_dry_run_does_not_write_outputs(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "run"
    cp = _run_cli(_call_args(toy, outdir) + ["--dry-run"])
    assert cp.returncode == 0
    assert "Dry-run" in cp.stdout
    assert "CHILD_TUMOR" in cp.stdout
    assert not (outdir / "summary.json").exists()


def test_make_toy_data_and_call(tmp_path: Path) -> None:
    toy_dir = tmp_path / "toy"
    cp = _run_cli(["make-toy-data", "--outdir", str(toy_dir)])
    assert cp.returncode == 0
    toy = json.loads(cp.stdout)

    outdir = tmp_path / "run"
    cp = _run_cli(_call_args(toy, outdir) + ["--include-bayes", "--include-fdr"])
    assert cp.returncode == 0, cp.stderr
    assert (outdir / "report.html").exists()
    assert (outdir / "plots" / "decision_counts.png").exists()
    assert (outdir / "logs" / "call.log").exists()

    summary = json.loads((outdir / "summary.json").read_text(encoding="utf-8"))
    counts = summary["counts"]
    assert counts["positions_total"] == 60
    assert counts["positions_emitted"] == 3
    assert counts["strict_pass"] == 2
    assert counts["suppressed_by_model"] == 1
    assert counts["suppressed_no_candidate"] == 1

    with pysam.VariantFile(str(outdir / "somatic.vcf.gz")) as vcf:
        records = list(vcf)
    assert [r.pos for r in records] == [21, 31, 51]
    assert [list(r.filter) for r in records] == [["PASS"], ["STRICT_SOMATIC"], ["PASS"]]
    assert records[2].info["INDEL"] is True
    tumor = records[0].samples["CHILD_TUMOR"]
    assert tumor["MP"] > 0.99
    assert tumor["BAYES"] is not None
    assert 0.0 <= tumor["FDR"] <= 1.0
    assert records[0].samples["CHILD_BLOOD"]["MP"] is None

    cp = _run_cli(_call_args(toy, outdir) + ["--resume"])
    assert cp.returncode == 0
    assert cp.stdout.strip().endswith("report.html")


def test_unloadable_model_is_fatal(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    args = _call_args(toy, tmp_path / "run")
    args[args.index("--model-path") + 1] = str(tmp_path / "missing" / "bestModel.joblib")
    cp = _run_cli(args)
    assert cp.returncode == 2
    assert "ModelLoadError" in cp.stderr
    assert "See log:" in cp.stderr
    assert not (tmp_path / "run" / "summary.json").exists()


def test_dry_run_error_does_not_point_at_a_log(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "run"
    args = _call_args(toy, outdir) + ["--dry-run"]
    args[args.index("--model-path") + 1] = str(tmp_path / "missing" / "bestModel.joblib")
    cp = _run_cli(args)
    assert cp.returncode == 2
    assert "ModelLoadError" in cp.stderr
    assert "See log:" not in cp.stderr
    assert not (outdir / "logs" / "call.log").exists()


def test_default_model_path_needs_home(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    args = _call_args(toy, tmp_path / "run")
    i = args.index("--model-path")
    del args[i : i + 2]
    env = {k: v for k, v in os.environ.items() if k != "PEDSOMATIC_HOME"}
    cp = _run_cli(args, env=env)
    assert cp.returncode == 2
    assert "PEDSOMATIC_HOME" in cp.stderr


def test_covariate_mismatch_message(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cov = Path(toy["covariates"])
    cov.write_text(cov.read_text(encoding="utf-8").replace("CHILD_TUMOR", "TUMOR_X"), encoding="utf-8")
    cp = _run_cli(_call_args(toy, tmp_path / "run"))
    assert cp.returncode == 2
    assert "CovariateError" in cp.stderr
    assert "TUMOR_X" in cp.stderr
