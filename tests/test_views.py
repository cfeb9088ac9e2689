"""Tests for Rich run views."""

from rich.console import Console

from content_refinery.runs.models import (
	ArtifactVersion,
	ContentArtifact,
	QualityReport,
	Run,
	RunStatus,
	StageExecution,
	StageName,
)
from content_refinery.views import (
	format_duration,
	format_score,
	format_timestamp,
	render_executions,
	render_run_detail,
	render_run_list,
	render_versions,
)


def _console() -> Console:
	return Console(record=True, width=160)


def _artifact() -> ContentArtifact:
	return ContentArtifact(
		cycle=2,
		definition="Edge computing moves work closer to users.",
		social_post="Latency matters.",
		image_prompt="Servers at the edge of a map",
		claims=["Edge reduces latency"],
	)


# -- utils tests --

def test_format_duration():
	"""Durations render in ms, seconds or minutes."""
	assert format_duration(None) == "-"
	assert format_duration(0.045) == "45ms"
	assert format_duration(1.23) == "1.2s"
	assert format_duration(125) == "2m 5s"


def test_format_timestamp_invalid():
	"""Unparseable timestamps are shown truncated."""
	assert format_timestamp(None) == "-"
	assert format_timestamp("garbage") == "garbage"


def test_format_score():
	"""Unit scores render on the 0-10 scale."""
	assert format_score(0.85) == "8.5/10"
	assert format_score(None) == "-"


# -- views tests --

def test_render_run_list_empty():
	"""An empty run list prints the empty-state message."""
	console = _console()
	render_run_list([], 0, console=console)
	assert "No runs recorded yet" in console.export_text()


def test_render_run_list():
	"""The run table shows each run's ID and status."""
	console = _console()
	run = Run(topic="Edge computing", status=RunStatus.COMPLETED, final_score=0.85)
	render_run_list([run], 1, console=console)

	text = console.export_text()
	assert run.id in text
	assert "COMPLETED" in text
	assert "8.5/10" in text


def test_render_failed_run_detail():
	"""A failed run shows its stage and error."""
	console = _console()
	run = Run(
		topic="Edge computing",
		status=RunStatus.FAILED,
		failed_stage="quality",
		error_message="critique failed after 4 attempt(s)",
	)
	render_run_detail(run, console=console)

	text = console.export_text()
	assert "Failed in quality" in text
	assert "generation" in text


def test_render_run_detail_with_artifact():
	"""The run detail shows the latest artifact."""
	console = _console()
	run = Run(
		topic="Edge computing",
		status=RunStatus.HUMAN_REVIEW,
		current_cycle=2,
		max_cycles=2,
		human_review_required=True,
		final_score=0.6,
		artifact=_artifact(),
		quality_report=QualityReport(overall_score=60),
	)
	render_run_detail(run, console=console)

	text = console.export_text()
	assert "Waiting for human review" in text
	assert "Edge computing moves work closer to users." in text
	assert "overall 60" in text


def test_render_versions_and_executions():
	"""Version and execution tables render their rows."""
	console = _console()
	render_versions([ArtifactVersion(
		run_id="r1", cycle=2, version_type="IMPROVED", artifact=_artifact(), created_at="2026-01-01T10:00:00",
	)], console=console)
	render_executions([StageExecution(
		run_id="r1", cycle=2, stage=StageName.QUALITY, success=False, attempts=4, error="timed out",
	)], console=console)

	text = console.export_text()
	assert "IMPROVED" in text
	assert "FAIL" in text
	assert "timed out" in text
