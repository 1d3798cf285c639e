import subprocess
import sys


def test_cli_help() -> None:
    cp = subprocess.run(
        [sys.executable, "-m", "pedsomatic", "--help"],
        check=True,
        capture_output=True,
        text=True,
    )
    assert "pedsomatic" in cp.stdout.lower()
    assert "call" in cp.stdout


def test_call_help_lists_thresholds() -> None:
    cp = subprocess.run(
        [sys.executable, "-m", "pedsomatic", "call", "--help"],
        check=True,
        capture_output=True,
        text=True,
    )
    assert "--model-p-mutated-threshold" in cp.stdout
    assert "--include-fdr" in cp.stdout
