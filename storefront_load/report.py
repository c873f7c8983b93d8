"""
Run report: the structured outcome of one run, its console summary and its
JSON export.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from storefront_load.metrics import MetricsRegistry
from storefront_load.state import RunState
from storefront_load.thresholds import ThresholdResult

logger = logging.getLogger(__name__)

VERDICT_PASS = "pass"
VERDICT_FAIL = "fail"
VERDICT_ABORTED = "aborted"


@dataclass
class RunReport:
    profile: str
    verdict: str
    started_at: str
    finished_at: str
    duration_seconds: float
    iterations: Dict[str, int]
    metrics: Dict[str, Dict[str, Any]]
    thresholds: List[ThresholdResult] = field(default_factory=list)
    checks: Dict[str, Dict[str, int]] = field(default_factory=dict)
    abort_reason: Optional[str] = None
    stop_reason: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.verdict == VERDICT_PASS

    @property
    def assertion_failures(self) -> int:
        return sum(c["fails"] for c in self.checks.values())

    def value(self, metric: str, stat: str, default: Any = None) -> Any:
        """report.value("http_req_duration", "p(95)")"""
        return self.metrics.get(metric, {}).get("values", {}).get(stat, default)

    def failed_thresholds(self) -> List[ThresholdResult]:
        return [t for t in self.thresholds if not t.passed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profile": self.profile,
            "verdict": self.verdict,
            "abort_reason": self.abort_reason,
            "stop_reason": self.stop_reason,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_seconds": round(self.duration_seconds, 3),
            "iterations": dict(self.iterations),
            "assertion_failures": self.assertion_failures,
            "checks": self.checks,
            "thresholds": [t.to_dict() for t in self.thresholds],
            "metrics": self.metrics,
        }


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat() if timestamp else ""


def _check_counts(registry: MetricsRegistry, labels: List[str]) -> Dict[str, Dict[str, int]]:
    counts = {}
    for label in labels:
        sink = registry.sink("checks", {"check": label})
        if sink is not None:
            counts[label] = {"passes": sink.passes, "fails": sink.fails}
    return counts


def build_report(
    profile: str,
    state: RunState,
    thresholds: List[ThresholdResult],
    check_labels: Optional[List[str]] = None,
) -> RunReport:
    if state.aborted:
        verdict = VERDICT_ABORTED
    elif any(not t.passed for t in thresholds):
        verdict = VERDICT_FAIL
    else:
        verdict = VERDICT_PASS

    duration = state.elapsed
    return RunReport(
        profile=profile,
        verdict=verdict,
        started_at=_iso(state.started_at),
        finished_at=_iso(state.finished_at),
        duration_seconds=duration,
        iterations={
            "issued": state.issued,
            "completed": state.completed,
            "incomplete": state.incomplete,
            "interrupted": state.interrupted,
            "dropped": state.dropped,
        },
        metrics=state.registry.snapshot(duration),
        thresholds=list(thresholds),
        checks=_check_counts(state.registry, check_labels or []),
        abort_reason=state.abort_reason,
        stop_reason=state.stop_reason,
    )


# =============================================================================
# OUTPUT
# =============================================================================

def _fmt(value: Optional[float], pattern: str = "{:.0f}") -> str:
    if value is None:
        return "?"
    return pattern.format(value)


def _thresholds_table(report: RunReport) -> Table:
    table = Table(title="Thresholds", expand=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Condition")
    table.add_column("Observed", justify="right")
    table.add_column("Result")

    for result in report.thresholds:
        if result.no_data:
            outcome = "[dim]no data[/dim]"
        elif result.passed:
            outcome = "[green]PASS[/green]"
        else:
            outcome = "[red]FAIL[/red]" + (" [bold red](abort)[/bold red]" if result.spec.abort_on_fail else "")
        table.add_row(
            result.spec.selector,
            result.spec.condition,
            _fmt(result.observed, "{:.4g}"),
            outcome,
        )
    return table


def print_summary(report: RunReport, console: Optional[Console] = None):
    """Print the run summary panel and threshold table."""
    console = console or Console()
    it = report.iterations
    verdict_style = {"pass": "green", "fail": "red", "aborted": "bold red"}[report.verdict]

    error_rate = report.value("http_req_failed", "rate")
    checkout_ok = report.value("checkout_success_rate", "rate")
    slow_rate = report.value("degradation_rate", "rate")

    body = f"""[bold]Profile:[/bold] {report.profile}
[bold]Verdict:[/bold] [{verdict_style}]{report.verdict.upper()}[/{verdict_style}]{f"  ({report.abort_reason})" if report.abort_reason else ""}
[cyan]Duration:[/cyan]           {report.duration_seconds:.1f}s

[bold]Iterations:[/bold]
  Issued:             {it["issued"]:,}
  Completed:          [green]{it["completed"]:,}[/green]
  Incomplete:         [red]{it["incomplete"]:,}[/red]
  Interrupted:        {it["interrupted"]:,}
  Dropped:            [yellow]{it["dropped"]:,}[/yellow]

[bold]Requests:[/bold]
  Total:              {_fmt(report.value("http_reqs", "count"), "{:,.0f}")}
  RPS (actual):       {_fmt(report.value("http_reqs", "rate"), "{:.2f}")} req/s
  Error rate:         {_fmt(error_rate * 100 if error_rate is not None else None, "{:.2f}")}%
  Assertion failures: {report.assertion_failures:,}

[bold]Latency:[/bold]
  p95 duration:       {_fmt(report.value("http_req_duration", "p(95)"))}ms
  p99 duration:       {_fmt(report.value("http_req_duration", "p(99)"))}ms
  Checkout p95:       {_fmt(report.value("checkout_duration", "p(95)"))}ms
  Checkout success:   {_fmt(checkout_ok * 100 if checkout_ok is not None else None, "{:.1f}")}%
  VUs (peak):         {_fmt(report.value("vus_max", "max"))}"""

    if slow_rate is not None:
        body += f"\n  Slow req rate:      {slow_rate * 100:.2f}%"

    console.print(Panel(body, title=f"📊 {report.profile.upper()} TEST SUMMARY", border_style=verdict_style))
    if report.thresholds:
        console.print(_thresholds_table(report))


def write_report(report: RunReport, output_path: str) -> str:
    """Write the report as JSON; returns the JSON text."""
    json_str = json.dumps(report.to_dict(), indent=2)
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json_str)
    logger.info("Report saved to %s", path)
    return json_str
