"""
Run Models - Pydantic schemas for refinement runs and their reports.

A Run is one end-to-end execution of the refinement loop for a topic.
Artifacts, claims and reports hang off the run and are replaced, never
mutated, as cycles progress.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def _now() -> str:
	return datetime.now().isoformat()


class RunStatus(str, Enum):
	"""State machine states of a run."""
	INITIALIZING = "INITIALIZING"
	CONTENT_GENERATION = "CONTENT_GENERATION"
	ACCURACY_CRITIQUE = "ACCURACY_CRITIQUE"
	QUALITY_CRITIQUE = "QUALITY_CRITIQUE"
	HUMAN_REVIEW = "HUMAN_REVIEW"
	COMPLETED = "COMPLETED"
	FAILED = "FAILED"
	CANCELLED = "CANCELLED"

	@property
	def is_terminal(self) -> bool:
		return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED})

# Statuses a process restart picks back up (HUMAN_REVIEW waits for a person)
RESUMABLE_STATUSES = frozenset({
	RunStatus.INITIALIZING,
	RunStatus.CONTENT_GENERATION,
	RunStatus.ACCURACY_CRITIQUE,
	RunStatus.QUALITY_CRITIQUE,
})


class ReviewDecision(str, Enum):
	"""Human reviewer decision."""
	ACCEPT = "ACCEPT"
	IMPROVE = "IMPROVE"
	REJECT = "REJECT"


class Severity(str, Enum):
	LOW = "low"
	MEDIUM = "medium"
	HIGH = "high"


class Recommendation(str, Enum):
	ACCEPT = "accept"
	IMPROVE = "improve"
	REJECT = "reject"


class StageName(str, Enum):
	"""Pipeline stages tracked per run."""
	GENERATION = "generation"
	ACCURACY = "accuracy"
	QUALITY = "quality"


class StageState(str, Enum):
	IDLE = "idle"
	RUNNING = "running"
	COMPLETED = "completed"
	ERROR = "error"


class ReviewStatus(str, Enum):
	PENDING = "pending"
	COMPLETED = "completed"


class TriggerReason(str, Enum):
	MAX_CYCLES_REACHED = "MAX_CYCLES_REACHED"


# Artifact fields a human reviewer may overwrite
EDITABLE_FIELDS = ("definition", "social_post", "image_prompt")


class Source(BaseModel):
	"""A reference supporting or contradicting a claim."""
	model_config = ConfigDict(frozen=True)

	title: str = ""
	url: str
	snippet: str = ""
	reliability: float = Field(default=0.6, ge=0.0, le=1.0)


class Claim(BaseModel):
	"""Verification outcome of one factual statement."""
	model_config = ConfigDict(frozen=True)

	statement: str
	is_verified: bool = False
	confidence: float = Field(default=0.0, ge=0.0, le=1.0)
	sources: tuple[Source, ...] = ()
	error: Optional[str] = Field(default=None, description="Set when verification errored")


class ContentArtifact(BaseModel):
	"""Output of one generation attempt."""
	cycle: int = Field(ge=1)
	definition: str
	social_post: str
	image_prompt: str
	image_url: Optional[str] = None
	claims: list[str] = Field(default_factory=list)
	metadata: dict[str, Any] = Field(default_factory=dict)
	generated_at: str = Field(default_factory=_now)

	def with_overrides(self, overrides: dict[str, str]) -> "ContentArtifact":
		"""Return a copy with reviewer edits applied to the named fields."""
		edits = {k: v for k, v in overrides.items() if k in EDITABLE_FIELDS and v}
		if not edits:
			return self
		metadata = dict(self.metadata)
		metadata["human_edited_fields"] = sorted(edits)
		return self.model_copy(update={**edits, "metadata": metadata})


class AccuracyReport(BaseModel):
	"""Aggregate of one cycle's claim verification."""
	accuracy_score: float = Field(ge=0.0, le=100.0)
	verified_claims: list[Claim] = Field(default_factory=list)
	disputed_claims: list[Claim] = Field(default_factory=list)
	sources: list[Source] = Field(default_factory=list)
	recommendations: list[str] = Field(default_factory=list)
	confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)

	@property
	def total_claims(self) -> int:
		return len(self.verified_claims) + len(self.disputed_claims)


class Improvement(BaseModel):
	"""A single improvement suggested by the quality critic."""
	target: str = "general"
	severity: Severity = Severity.LOW
	description: str
	suggestion: str = ""


class QualityReport(BaseModel):
	"""Holistic quality critique. Scores are on the 0-100 report scale."""
	overall_score: float = Field(ge=0.0, le=100.0)
	coherence_score: float = Field(default=0.0, ge=0.0, le=100.0)
	engagement_score: float = Field(default=0.0, ge=0.0, le=100.0)
	accuracy_score: float = Field(default=0.0, ge=0.0, le=100.0)
	improvements: list[Improvement] = Field(default_factory=list)
	final_recommendation: Recommendation = Recommendation.IMPROVE
	reasoning: str = ""


class StageStatus(BaseModel):
	"""Last known state of one stage for a run."""
	status: StageState = StageState.IDLE
	last_execution: Optional[str] = None
	duration_seconds: Optional[float] = None
	error_message: Optional[str] = None


class HumanReviewRecord(BaseModel):
	"""Escalation record, created on entering HUMAN_REVIEW and consumed once."""
	id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
	run_id: str
	cycle: int
	status: ReviewStatus = ReviewStatus.PENDING
	trigger_reason: TriggerReason = TriggerReason.MAX_CYCLES_REACHED
	score: Optional[float] = None
	decision: Optional[ReviewDecision] = None
	feedback: Optional[str] = None
	field_overrides: dict[str, str] = Field(default_factory=dict)
	created_at: str = Field(default_factory=_now)
	completed_at: Optional[str] = None


class StageExecution(BaseModel):
	"""Audit entry for one stage call made on behalf of a run."""
	run_id: str
	cycle: int
	stage: StageName
	success: bool
	attempts: int = 1
	duration_seconds: float = 0.0
	error: Optional[str] = None
	created_at: str = Field(default_factory=_now)


class ArtifactVersion(BaseModel):
	"""A stored artifact keyed by run and cycle."""
	run_id: str
	cycle: int
	version_type: str
	artifact: ContentArtifact
	created_at: str


class Run(BaseModel):
	"""
	One refinement run.

	Scores and thresholds are stored on the unit scale; see
	content_refinery.scores for conversions.
	"""
	id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
	topic: str = Field(min_length=1)
	status: RunStatus = RunStatus.INITIALIZING

	current_cycle: int = Field(default=1, ge=1)
	max_cycles: int = Field(default=3, ge=1)
	quality_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
	bonus_cycles: int = 0

	artifact: Optional[ContentArtifact] = None
	accuracy_report: Optional[AccuracyReport] = None
	quality_report: Optional[QualityReport] = None
	pending_feedback: Optional[str] = None

	human_review_required: bool = False
	human_review_provided: bool = False
	human_review_feedback: Optional[str] = None
	review_decision: Optional[ReviewDecision] = None
	content_discarded: bool = False

	final_score: Optional[float] = None
	failed_stage: Optional[str] = None
	error_message: Optional[str] = None

	stage_status: dict[StageName, StageStatus] = Field(
		default_factory=lambda: {stage: StageStatus() for stage in StageName}
	)

	started_at: str = Field(default_factory=_now)
	updated_at: str = Field(default_factory=_now)
	completed_at: Optional[str] = None

	@property
	def is_terminal(self) -> bool:
		return self.status.is_terminal

	def mark_stage(
		self,
		stage: StageName,
		state: StageState,
		duration_seconds: Optional[float] = None,
		error_message: Optional[str] = None,
	) -> None:
		"""Record the state of a stage on this run."""
		self.stage_status[stage] = StageStatus(
			status=state,
			last_execution=_now(),
			duration_seconds=duration_seconds,
			error_message=error_message,
		)

	def finish(self, status: RunStatus) -> None:
		"""Move to a terminal status and stamp completion time."""
		self.status = status
		self.completed_at = _now()
		if status != RunStatus.COMPLETED:
			self.final_score = None
