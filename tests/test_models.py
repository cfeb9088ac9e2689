"""Tests for run models."""

from content_refinery.runs.models import ContentArtifact, Run, RunStatus, StageName, StageState


def _artifact() -> ContentArtifact:
	return ContentArtifact(
		cycle=1,
		definition="Original definition",
		social_post="Original post",
		image_prompt="Original prompt",
		claims=["A claim"],
	)


def test_overrides_produce_new_artifact():
	"""Overrides return a new artifact and leave the original alone."""
	artifact = _artifact()

	edited = artifact.with_overrides({"definition": "Edited", "image_prompt": ""})

	assert edited is not artifact
	assert edited.definition == "Edited"
	assert edited.image_prompt == "Original prompt"
	assert edited.metadata["human_edited_fields"] == ["definition"]
	assert artifact.definition == "Original definition"
	assert "human_edited_fields" not in artifact.metadata


def test_overrides_ignore_unknown_fields():
	"""Unknown fields or no overrides return the same artifact."""
	artifact = _artifact()
	assert artifact.with_overrides({"claims": "nope"}) is artifact
	assert artifact.with_overrides({}) is artifact


def test_new_run_defaults():
	"""A new run starts INITIALIZING on cycle 1 with idle stages."""
	run = Run(topic="Edge computing")

	assert run.status == RunStatus.INITIALIZING
	assert run.current_cycle == 1
	assert run.max_cycles == 3
	assert set(run.stage_status) == set(StageName)
	assert all(s.status == StageState.IDLE for s in run.stage_status.values())


def test_finish_clears_score_unless_completed():
	"""finish() keeps the final score only for COMPLETED."""
	run = Run(topic="Edge computing", final_score=0.5)
	run.finish(RunStatus.CANCELLED)

	assert run.final_score is None
	assert run.completed_at is not None
	assert run.is_terminal

	accepted = Run(topic="Edge computing", final_score=0.8)
	accepted.finish(RunStatus.COMPLETED)
	assert accepted.final_score == 0.8
