"""Run state - models and SQLite-backed storage."""

from .models import (
	AccuracyReport,
	Claim,
	ContentArtifact,
	HumanReviewRecord,
	Improvement,
	QualityReport,
	ReviewDecision,
	Run,
	RunStatus,
	Severity,
	Source,
)
from .store import RunStateStore, RunStore

__all__ = [
	"AccuracyReport",
	"Claim",
	"ContentArtifact",
	"HumanReviewRecord",
	"Improvement",
	"QualityReport",
	"ReviewDecision",
	"Run",
	"RunStatus",
	"RunStateStore",
	"RunStore",
	"Severity",
	"Source",
]
