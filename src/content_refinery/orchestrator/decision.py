"""
Decision Engine - admission policy and feedback synthesis.

decide() is a pure function of the quality report and the cycle policy:
identical inputs always give the identical verdict and feedback text.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .. import scores
from ..runs.models import QualityReport, Run, Severity

FOCUS_SUGGESTION_LIMIT = 3


class Verdict(str, Enum):
	"""What the orchestrator does after a cycle's critiques."""
	ACCEPT = "accept"
	RETRY = "retry"
	ESCALATE = "escalate"


@dataclass(frozen=True)
class CyclePolicy:
	"""Threshold (unit scale) and cycle budget in force for a decision."""
	quality_threshold: float
	current_cycle: int
	max_cycles: int

	@classmethod
	def for_run(cls, run: Run) -> "CyclePolicy":
		return cls(
			quality_threshold=run.quality_threshold,
			current_cycle=run.current_cycle,
			max_cycles=run.max_cycles,
		)


@dataclass(frozen=True)
class Decision:
	verdict: Verdict
	score: float
	feedback: Optional[str] = None


def synthesize_feedback(report: QualityReport) -> str:
	"""
	Feedback text for the next generation attempt.

	States the score, lists every high and medium severity description
	verbatim, then a focus clause from the first three suggestions.
	"""
	high = [imp.description for imp in report.improvements if imp.severity == Severity.HIGH]
	medium = [imp.description for imp in report.improvements if imp.severity == Severity.MEDIUM]
	focus = [
		imp.suggestion
		for imp in report.improvements[:FOCUS_SUGGESTION_LIMIT]
		if imp.suggestion
	]

	parts = [f"Quality score: {scores.format_report_score(report.overall_score)}/100."]
	if high:
		parts.append(f"High priority issues: {', '.join(high)}.")
	if medium:
		parts.append(f"Medium priority issues: {', '.join(medium)}.")
	if focus:
		parts.append(f"Focus on: {', '.join(focus)}.")
	else:
		parts.append("Focus on: overall clarity, accuracy and engagement.")
	return " ".join(parts)


def decide(report: QualityReport, policy: CyclePolicy) -> Decision:
	"""
	Apply the admission threshold and cycle budget.

	Returns:
		ACCEPT when the normalized score meets the threshold, RETRY while
		cycles remain, ESCALATE once the budget is spent
	"""
	score = scores.from_report(report.overall_score)

	if scores.meets_threshold(report.overall_score, policy.quality_threshold):
		return Decision(verdict=Verdict.ACCEPT, score=score)

	feedback = synthesize_feedback(report)
	if policy.current_cycle < policy.max_cycles:
		return Decision(verdict=Verdict.RETRY, score=score, feedback=feedback)
	return Decision(verdict=Verdict.ESCALATE, score=score, feedback=feedback)
