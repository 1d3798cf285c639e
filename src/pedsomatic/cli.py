from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .caller import CallerConfig, SomaticCaller, call_somatic_variations
from .classifier import (
    DEFAULT_BAYES_PRIOR,
    MODEL_SUFFIX,
    load_bayes_calibrator,
    load_classifier,
    load_fdr_estimator,
)
from .covariates import load_covariates
from .evidence import iter_positions, load_matched_reads, scan_evidence
from .pedigree import build_pedigree_index
from .plotting import plot_decision_counts, plot_depth_proportions, plot_frequency_hist
from .report import render_report
from .toy_data import make_toy_data
from .validation import HOME_VARIABLE
from .writer import SomaticVcfWriter

DEFAULT_MODEL_PATH = "${" + HOME_VARIABLE + "}/models/somatic/bestModel.joblib"


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _probability(p: str) -> float:
    value = float(p)
    if not 0.0 <= value <= 1.0:
        raise argparse.ArgumentTypeError(f"Expected a probability in [0, 1]: {p}")
    return value


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    msg = f"{err.__class__.__name__}: {err}"
    sys.stderr.write(msg + "\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="pedsomatic",
        description=(
            "pedsomatic: pedigree-aware somatic variation calling from per-sample base counts. "
            "Compares each somatic sample with its parents and germline samples and keeps "
            "variations a pre-trained classifier believes are somatic."
        ),
    )
    p.add_argument("--version", action="version", version=f"pedsomatic {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser(
        "quickstart",
        help="Print ready-to-run recipes.",
    )

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny trio cohort (evidence, covariates, model) for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # call
    # -----------------
    c = sub.add_parser(
        "call",
        help="Call somatic variations and write a VCF, summary and HTML report.",
    )
    c.add_argument(
        "--evidence",
        required=True,
        type=_path_exists,
        help="Per-position base-count evidence (.tsv/.tsv.gz, sorted by position).",
    )
    c.add_argument(
        "--covariates",
        required=True,
        type=_path_exists,
        help="Covariate TSV with sample-id, patient-id, kind-of-sample, gender, parents.",
    )
    c.add_argument(
        "--model-path",
        default=DEFAULT_MODEL_PATH,
        help=f"Somatic classifier (<dir>/<prefix>Model.joblib). Default: {DEFAULT_MODEL_PATH}",
    )
    c.add_argument(
        "--matched-reads",
        default=None,
        type=_path_exists,
        help="Optional TSV of per-sample matched-read totals used to normalize priorities.",
    )
    c.add_argument("--outdir", required=True, help="Output directory.")
    c.add_argument("--vcf-name", default="somatic.vcf.gz", help="Output VCF file name inside outdir.")

    # Model thresholds
    c.add_argument(
        "--model-p-mutated-threshold",
        type=_probability,
        default=0.99,
        help="Candidates are kept only if P(mutated) >= this value for every germline relative.",
    )
    c.add_argument(
        "--strict-threshold-parents",
        type=int,
        default=0,
        help="Maximum parent count for a strict (FILTER=PASS) candidate.",
    )
    c.add_argument(
        "--strict-threshold-germline",
        type=int,
        default=10,
        help="Maximum germline count for a strict (FILTER=PASS) candidate.",
    )

    # Calibrators
    c.add_argument("--include-bayes", action="store_true", help="Add a Bayes-calibrated probability (BAYES).")
    c.add_argument("--include-fdr", action="store_true", help="Add an estimated false discovery rate (FDR).")
    c.add_argument(
        "--bayes-prior",
        type=_probability,
        default=DEFAULT_BAYES_PRIOR,
        help="Prior probability of a somatic mutation at a site, for --include-bayes.",
    )

    c.add_argument("--no-progress", action="store_true", help="Disable the progress bar.")
    c.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    c.add_argument("--resume", action="store_true", help="Skip if outputs already exist.")

    c.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


def cmd_quickstart() -> int:
    lines = [
        "pedsomatic quickstart (copy/paste):",
        "",
        "1) Try it on a toy trio:",
        "   pedsomatic make-toy-data --outdir toy/",
        "   pedsomatic call \\",
        "     --evidence toy/evidence.tsv \\",
        "     --covariates toy/covariates.tsv \\",
        "     --matched-reads toy/matched_reads.tsv \\",
        "     --model-path toy/models/bestModel.joblib \\",
        "     --outdir toy_run/",
        "   Outputs: toy_run/somatic.vcf.gz, toy_run/report.html, toy_run/summary.json",
        "",
        "2) Cohort run with a shared model install:",
        f"   export {HOME_VARIABLE}=/opt/pedsomatic",
        "   pedsomatic call \\",
        "     --evidence cohort.evidence.tsv.gz \\",
        "     --covariates cohort.covariates.tsv \\",
        "     --outdir results/",
        f"   (model defaults to {DEFAULT_MODEL_PATH})",
        "",
        "3) Add calibrated probabilities:",
        "   pedsomatic call ... --include-bayes --include-fdr --bayes-prior 2.5e-7",
        "",
        "Tip: use --dry-run to validate covariates, pedigree and model before a long run.",
    ]
    print("\n".join(lines))
    return 0


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def cmd_call(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "call.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("pedsomatic")
    logger.info("pedsomatic %s", __version__)

    try:
        config = CallerConfig(
            model_p_mutated_threshold=float(args.model_p_mutated_threshold),
            strict_threshold_parents=int(args.strict_threshold_parents),
            strict_threshold_germline=int(args.strict_threshold_germline),
            include_bayes=bool(args.include_bayes),
            include_fdr=bool(args.include_fdr),
            bayes_prior=float(args.bayes_prior),
        )

        samples, contigs = scan_evidence(args.evidence)
        logger.info("Evidence covers %d samples on %d contigs", len(samples), len(contigs))
        pedigree = build_pedigree_index(load_covariates(args.covariates), samples)
        model = load_classifier(args.model_path)
        bayes = load_bayes_calibrator(model, config.bayes_prior) if config.include_bayes else None
        fdr = load_fdr_estimator(model) if config.include_fdr else None

        vcf_path = outdir / args.vcf_name
        somatic_samples = [samples[i] for i in pedigree.somatic_indices]

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"Samples: {', '.join(samples)}")
            print(f"Somatic samples: {', '.join(somatic_samples)}")
            print(f"Model: {model.model_dir} (prefix={model.prefix})")
            print("Planned outputs:")
            print(f"  VCF -> {vcf_path}")
            print(f"  report.html -> {outdir / 'report.html'}")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            return 0

        if args.resume and (outdir / "summary.json").exists():
            logger.info("Resume enabled: summary.json already exists in %s", outdir)
            print(str(outdir / "report.html"))
            return 0

        matched_reads = load_matched_reads(args.matched_reads, samples)
        caller = SomaticCaller(
            pedigree=pedigree,
            classifier=model,
            matched_reads=matched_reads,
            config=config,
            bayes=bayes,
            fdr=fdr,
        )
        writer = SomaticVcfWriter(
            vcf_path,
            samples=samples,
            contigs=contigs,
            somatic_samples=somatic_samples,
            include_bayes=config.include_bayes,
            include_fdr=config.include_fdr,
            source=f"pedsomatic {__version__}",
        )

        summary = call_somatic_variations(
            positions=iter_positions(args.evidence, samples),
            caller=caller,
            writer=writer,
            outdir=outdir,
            progress=not bool(args.no_progress),
        )

        plots_dir = outdir / "plots"
        plots_dir.mkdir(parents=True, exist_ok=True)

        decision_png = plots_dir / "decision_counts.png"
        frequency_png = plots_dir / "somatic_frequency_hist.png"
        depth_png = plots_dir / "depth_proportions.png"

        plot_decision_counts(counts=summary["counts"], out_png=decision_png)
        plot_frequency_hist(
            bin_edges=summary["somatic_frequency_hist"]["bin_edges"],
            counts=summary["somatic_frequency_hist"]["counts"],
            out_png=frequency_png,
        )
        plot_depth_proportions(proportions=summary["sample_depth_proportions"], out_png=depth_png)

        plots_rel = {
            "decision_counts": str(Path("plots") / decision_png.name),
            "frequency_hist": str(Path("plots") / frequency_png.name),
            "depth_proportions": str(Path("plots") / depth_png.name),
        }

        report_path = render_report(
            outdir=outdir,
            version=__version__,
            summary=summary,
            inputs={
                "evidence": str(args.evidence),
                "covariates": str(args.covariates),
                "model": str(model.model_dir / f"{model.prefix}{MODEL_SUFFIX}"),
            },
            plots=plots_rel,
        )

        logger.info(
            "Wrote %d records (%d strict) from %d positions",
            summary["counts"]["positions_emitted"],
            summary["counts"]["strict_pass"],
            summary["counts"]["positions_total"],
        )
        logger.info("Report written: %s", report_path)
        print(str(report_path))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=None if args.dry_run else log_path)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "call":
        return cmd_call(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
