"""Rich terminal views for runs, artifact versions and stage executions."""

from datetime import datetime
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from . import scores
from .runs.models import ArtifactVersion, Run, RunStatus, StageExecution

STATUS_STYLES = {
	RunStatus.COMPLETED: "green",
	RunStatus.FAILED: "red",
	RunStatus.CANCELLED: "dim",
	RunStatus.HUMAN_REVIEW: "yellow",
}


def format_duration(seconds: Optional[float]) -> str:
	"""Format a duration for display. e.g. '45ms', '1.2s', '2m 3s'."""
	if seconds is None:
		return "-"
	if seconds < 1.0:
		return f"{seconds * 1000:.0f}ms"
	if seconds < 60.0:
		return f"{seconds:.1f}s"
	minutes = int(seconds // 60)
	return f"{minutes}m {seconds % 60:.0f}s"


def format_timestamp(iso_str: Optional[str]) -> str:
	"""Format an ISO timestamp as relative time (e.g. '2m ago')."""
	if not iso_str:
		return "-"
	try:
		total_secs = int((datetime.now() - datetime.fromisoformat(iso_str)).total_seconds())
	except (ValueError, TypeError):
		return str(iso_str)[:19]
	if total_secs < 0:
		return iso_str[:19]
	if total_secs < 60:
		return f"{total_secs}s ago"
	if total_secs < 3600:
		return f"{total_secs // 60}m ago"
	if total_secs < 86400:
		return f"{total_secs // 3600}h ago"
	return f"{total_secs // 86400}d ago"


def format_score(value: Optional[float]) -> str:
	"""Unit score as '7.5/10'."""
	external = scores.to_external(value)
	return "-" if external is None else f"{external:g}/10"


def status_markup(status: RunStatus) -> str:
	style = STATUS_STYLES.get(status, "cyan")
	return f"[{style}]{status.value}[/{style}]"


def render_run_list(runs: list[Run], total: int, console: Optional[Console] = None) -> None:
	"""Render a table of runs, newest first."""
	console = console or Console()
	if not runs:
		console.print("[dim]No runs recorded yet.[/dim]")
		return

	table = Table(title=f"Runs ({len(runs)} of {total})")
	table.add_column("Run ID", style="cyan")
	table.add_column("Topic")
	table.add_column("Status")
	table.add_column("Cycle", justify="right")
	table.add_column("Score", justify="right")
	table.add_column("Started")

	for run in runs:
		table.add_row(
			run.id,
			escape(run.topic if len(run.topic) <= 40 else run.topic[:37] + "..."),
			status_markup(run.status),
			f"{run.current_cycle}/{run.max_cycles}",
			format_score(run.final_score),
			format_timestamp(run.started_at),
		)
	console.print(table)


def render_run_detail(run: Run, console: Optional[Console] = None) -> None:
	"""Render a run summary panel, its stages and its latest artifact."""
	console = console or Console()

	lines = [
		f"Topic: {escape(run.topic)}",
		f"Status: {status_markup(run.status)}",
		f"Cycle: {run.current_cycle}/{run.max_cycles}"
		+ (f" ({run.bonus_cycles} bonus)" if run.bonus_cycles else ""),
		f"Threshold: {format_score(run.quality_threshold)}",
		f"Final score: {format_score(run.final_score)}",
	]
	if run.human_review_required:
		lines.append("[yellow]Waiting for human review[/yellow]")
	if run.review_decision:
		lines.append(f"Review decision: {run.review_decision.value}")
	if run.content_discarded:
		lines.append("[dim]Content discarded by reviewer[/dim]")
	if run.status == RunStatus.FAILED:
		lines.append(f"[red]Failed in {run.failed_stage}: {escape(run.error_message or '')}[/red]")
	console.print(Panel("\n".join(lines), title=f"Run {run.id}"))

	stages = Table(title="Stages")
	stages.add_column("Stage", style="cyan")
	stages.add_column("Status")
	stages.add_column("Duration", justify="right")
	stages.add_column("Last run")
	stages.add_column("Error")
	for stage, status in run.stage_status.items():
		stages.add_row(
			stage.value,
			status.status.value,
			format_duration(status.duration_seconds),
			format_timestamp(status.last_execution),
			escape(status.error_message or ""),
		)
	console.print(stages)

	if run.quality_report:
		report = run.quality_report
		console.print(
			f"Quality: overall {report.overall_score:g}, coherence {report.coherence_score:g}, "
			f"engagement {report.engagement_score:g}, accuracy {report.accuracy_score:g} (out of 100)"
		)
	if run.artifact and not run.content_discarded:
		artifact = run.artifact
		console.print(Panel(escape(artifact.definition), title=f"Definition (cycle {artifact.cycle})"))
		console.print(Panel(escape(artifact.social_post), title="Social post"))
		console.print(f"[dim]Image prompt:[/dim] {escape(artifact.image_prompt)}")


def render_versions(versions: list[ArtifactVersion], console: Optional[Console] = None) -> None:
	console = console or Console()
	if not versions:
		console.print("[dim]No artifact versions stored.[/dim]")
		return

	table = Table(title="Artifact versions")
	table.add_column("Cycle", justify="right")
	table.add_column("Type")
	table.add_column("Claims", justify="right")
	table.add_column("Definition")
	table.add_column("Created")
	for version in versions:
		definition = version.artifact.definition
		table.add_row(
			str(version.cycle),
			version.version_type,
			str(len(version.artifact.claims)),
			escape(definition if len(definition) <= 60 else definition[:57] + "..."),
			format_timestamp(version.created_at),
		)
	console.print(table)


def render_executions(executions: list[StageExecution], console: Optional[Console] = None) -> None:
	console = console or Console()
	if not executions:
		console.print("[dim]No stage executions recorded.[/dim]")
		return

	table = Table(title="Stage executions")
	table.add_column("Cycle", justify="right")
	table.add_column("Stage", style="cyan")
	table.add_column("Result")
	table.add_column("Attempts", justify="right")
	table.add_column("Duration", justify="right")
	table.add_column("Error")
	for execution in executions:
		style = "green" if execution.success else "red"
		table.add_row(
			str(execution.cycle),
			execution.stage.value,
			f"[{style}]{'OK' if execution.success else 'FAIL'}[/{style}]",
			str(execution.attempts),
			format_duration(execution.duration_seconds),
			escape(execution.error or ""),
		)
	console.print(table)
