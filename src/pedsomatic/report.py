from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict

from jinja2 import Template

logger = logging.getLogger(__name__)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>pedsomatic report</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code, pre { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    h1, h2, h3 { margin-top: 1.2em; }
    table { border-collapse: collapse; margin-top: 0.6em; }
    th, td { border: 1px solid #ddd; padding: 8px; }
    th { background: #f2f2f2; text-align: left; }
    .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }
    .small { color: #666; font-size: 0.9em; }
    img { max-width: 100%; height: auto; border: 1px solid #eee; border-radius: 6px; }
  </style>
</head>
<body>

<h1>pedsomatic report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      <tr><th>Evidence</th><td><code>{{ inputs.evidence }}</code></td></tr>
      <tr><th>Covariates</th><td><code>{{ inputs.covariates }}</code></td></tr>
      <tr><th>Model</th><td><code>{{ inputs.model }}</code></td></tr>
      <tr><th>Samples</th><td>{{ samples | join(", ") }}</td></tr>
      <tr><th>Somatic samples</th><td>{{ somatic_samples | join(", ") }}</td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Settings</h3>
    <table>
      {% for key, value in config.items() %}
      <tr><th>{{ key }}</th><td>{{ value }}</td></tr>
      {% endfor %}
    </table>
  </div>
</div>

<h2>Positions</h2>
<table>
  <tr><th>Positions processed</th><td>{{ counts.positions_total }}</td></tr>
  <tr><th>Records written</th><td>{{ counts.positions_emitted }}</td></tr>
  <tr><th>FILTER=PASS (strict)</th><td>{{ counts.strict_pass }}</td></tr>
  <tr><th>No alleles</th><td>{{ counts.suppressed_unreportable }}</td></tr>
  <tr><th>No alternate allele</th><td>{{ counts.suppressed_no_alternate }}</td></tr>
  <tr><th>No somatic candidate</th><td>{{ counts.suppressed_no_candidate }}</td></tr>
  <tr><th>Vetoed by the classifier</th><td>{{ counts.suppressed_by_model }}</td></tr>
  <tr><th>Unscored pairs</th><td>{{ counts.classifier_gaps }}</td></tr>
  <tr><th>Ambiguous reference</th><td>{{ counts.ambiguous_reference }}</td></tr>
</table>

<h2>Somatic / germline depth</h2>
<table>
  <tr><th>Somatic</th><th>Germline</th><th>Somatic share of bases</th></tr>
  {% for row in pair_depth_proportions %}
  <tr><td>{{ row.somatic }}</td><td>{{ row.germline }}</td><td>{{ "%.3f" | format(row.somatic_proportion) }}</td></tr>
  {% endfor %}
</table>

<h2>Plots</h2>
<div class="grid">
  <div class="card">
    <h3>Position outcomes</h3>
    <img src="{{ plots.decision_counts }}" alt="decision counts">
  </div>
  <div class="card">
    <h3>Somatic frequency</h3>
    <img src="{{ plots.frequency_hist }}" alt="somatic frequency histogram">
  </div>
</div>
<div class="grid" style="margin-top:16px;">
  <div class="card">
    <h3>Depth per sample</h3>
    <img src="{{ plots.depth_proportions }}" alt="depth proportions">
  </div>
</div>

<h2>Outputs</h2>
<ul>
  <li><code>{{ vcf_path }}</code> (somatic variations)</li>
  <li><code>summary.json</code> (machine-readable summary)</li>
</ul>

<h2>Interpretation notes</h2>
<ul>
  <li>Records with FILTER=STRICT_SOMATIC carry candidates that are seen at low level in a parent or germline sample.</li>
  <li>MP is the lowest classifier probability of mutation across the germline relatives of a sample.</li>
  <li>PRI contrasts normalized counts with the parents and germline samples; -10 means no candidate genotype.</li>
</ul>

<hr>
<p class="small">pedsomatic {{ version }}</p>
</body>
</html>"""
)


def render_report(
    *,
    outdir: str | Path,
    version: str,
    summary: Dict[str, Any],
    inputs: Dict[str, str],
    plots: Dict[str, str],
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        inputs=inputs,
        samples=summary.get("samples", []),
        somatic_samples=summary.get("somatic_samples", []),
        config=summary.get("config", {}),
        counts=summary.get("counts", {}),
        pair_depth_proportions=summary.get("pair_depth_proportions", []),
        vcf_path=summary.get("vcf_path"),
        plots=plots,
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    return out_path
