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
  <title>adnacons Report</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code, pre { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    pre { padding: 12px; overflow-x: auto; }
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

<h1>adnacons Report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      <tr><th>BAM</th><td><code>{{ run.bam_path }}</code></td></tr>
      <tr><th>Reference</th><td><code>{{ ref_path }}</code></td></tr>
      <tr><th>Contig</th><td><code>{{ run.contig }}</code> ({{ run.contig_length }} bp)</td></tr>
      <tr><th>Sample</th><td><code>{{ run.sample_name }}</code></td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Calling</h3>
    <table>
      <tr><th>Correction mode</th><td>{{ run.correction_mode }}</td></tr>
      <tr><th>Damage detection</th><td>{{ run.detection_mode }}</td></tr>
      <tr><th>Min coverage</th><td>{{ run.min_coverage }}</td></tr>
      <tr><th>Min frequency</th><td>{{ run.min_frequency }}</td></tr>
      <tr><th>Min MAPQ</th><td>{{ run.min_mapq }}</td></tr>
      {% if run.read_groups %}
      <tr><th>Profiled read groups</th><td>{{ run.read_groups | join(", ") }}</td></tr>
      {% endif %}
    </table>
  </div>
</div>

<h2>Reads</h2>
<table>
  <tr><th>Total records seen</th><td>{{ run.read_counts.reads_total }}</td></tr>
  <tr><th>Used</th><td>{{ run.read_counts.reads_used }}</td></tr>
  <tr><th>Unmapped skipped</th><td>{{ run.read_counts.reads_unmapped }}</td></tr>
  <tr><th>Duplicates skipped</th><td>{{ run.read_counts.reads_skipped_duplicates }}</td></tr>
  <tr><th>Secondary skipped</th><td>{{ run.read_counts.reads_skipped_secondary }}</td></tr>
  <tr><th>Supplementary skipped</th><td>{{ run.read_counts.reads_skipped_supplementary }}</td></tr>
  <tr><th>Below min MAPQ</th><td>{{ run.read_counts.reads_skipped_mapq }}</td></tr>
  <tr><th>Other contigs</th><td>{{ run.read_counts.reads_other_contig }}</td></tr>
</table>

<h2>Positions</h2>
<table>
  <tr><th>Reference positions</th><td>{{ run.counts.positions_total }}</td></tr>
  <tr><th>Breadth of coverage</th><td>{{ "%.3f" | format(run.breadth_of_coverage) }}</td></tr>
  <tr><th>Called</th><td>{{ run.counts.positions_called }}</td></tr>
  <tr><th>N (coverage/frequency filter)</th><td>{{ run.counts.positions_n }}</td></tr>
  <tr><th>Corrected C&gt;T</th><td>{{ run.counts.positions_corrected_ct }}</td></tr>
  <tr><th>Corrected G&gt;A</th><td>{{ run.counts.positions_corrected_ga }}</td></tr>
</table>

<h2>Plots</h2>

<div class="grid">
  <div class="card">
    <h3>Position calls</h3>
    <img src="{{ plots.call_summary }}" alt="call summary">
  </div>
  <div class="card">
    <h3>Coverage</h3>
    <img src="{{ plots.coverage_hist }}" alt="coverage histogram">
  </div>
</div>

<div class="grid" style="margin-top:16px;">
  <div class="card">
    <h3>Call frequency</h3>
    <img src="{{ plots.call_frequency_hist }}" alt="call frequency histogram">
  </div>
  {% if plots.damage_profiles %}
  <div class="card">
    <h3>Damage profiles</h3>
    <img src="{{ plots.damage_profiles }}" alt="damage profiles">
  </div>
  {% endif %}
</div>

<h2>Outputs</h2>
<ul>
  {% for name, path in run.outputs.items() %}
  <li><code>{{ path }}</code> ({{ name }})</li>
  {% endfor %}
  <li><code>summary.json</code> (machine-readable summary)</li>
</ul>

<h2>Interpretation notes</h2>
<ul>
  <li>N marks positions below the coverage or frequency threshold.</li>
  <li>The ROI file lists a small window around every position where damage correction was applied; load it in IGV next to the BAM to review those calls.</li>
  <li>Weighting correction depends on how well the damage profiles match the library; check the profile plot for implausible curves.</li>
</ul>

<hr>
<p class="small">adnacons {{ version }}</p>
</body>
</html>"""
)


def render_report(
    *,
    outdir: str | Path,
    version: str,
    run: Dict[str, Any],
    ref_path: str,
    plots: Dict[str, str],
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    plots = dict(plots)
    plots.setdefault("damage_profiles", "")

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        run=run,
        ref_path=ref_path,
        plots=plots,
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    return out_path
