"""Write a ChainRun to disk as JSON reports."""

import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

from config import settings
from contracts import ChainRun


def run_summary(run: ChainRun) -> Dict[str, Any]:
    """Compact summary of a run for display and run_summary.json."""
    end = run.completed_at
    duration = (end - run.started_at).total_seconds() if end else None
    wave = run.wave_decision
    return {
        "run_id": run.run_id,
        "status": run.status.value,
        "current_stage": run.current_stage.value if run.current_stage else None,
        "completed_stages": [s.value for s in run.completed_stages],
        "started_at": run.started_at.isoformat(),
        "completed_at": end.isoformat() if end else None,
        "duration_seconds": round(duration, 2) if duration is not None else None,
        "wave": {
            "total": wave.total,
            "multi_wave": wave.multi_wave,
            "strategy": wave.strategy.value,
        } if wave else None,
        "context_version": run.context.version if run.context else None,
        "suggested_agents": {k: [a.value for a in v] for k, v in run.suggested_agents.items()},
        "awaiting_remediation": run.remediation.failed_gates if run.remediation else [],
        "diagnostics": run.diagnostics,
    }


def save_run(run: ChainRun, output_dir: Optional[Union[str, Path]] = None) -> Path:
    """Save run reports under <output_dir>/<run_id>/.

    Files:
        run_summary.json: status, stages, wave decision, diagnostics
        <stage>.md / <stage>.json: accepted content and full stage record
        gate_reports.json: gate results per accepted stage
        remediation.json: pending remediation request, if any
        run.json: the complete run

    Returns:
        The run's output directory.
    """
    output_path = Path(output_dir) if output_dir else settings.get_output_path()
    output_path = output_path / run.run_id
    output_path.mkdir(parents=True, exist_ok=True)

    (output_path / "run_summary.json").write_text(json.dumps(run_summary(run), indent=2, default=str))

    gate_reports = {}
    for output in run.stages:
        stage = output.stage.value
        (output_path / f"{stage}.md").write_text(output.content)
        (output_path / f"{stage}.json").write_text(output.model_dump_json(indent=2))
        if output.gate_report is not None:
            gate_reports[stage] = output.gate_report.model_dump(mode="json")
    (output_path / "gate_reports.json").write_text(json.dumps(gate_reports, indent=2))

    if run.remediation is not None:
        (output_path / "remediation.json").write_text(run.remediation.model_dump_json(indent=2))

    (output_path / "run.json").write_text(run.model_dump_json(indent=2))
    return output_path
