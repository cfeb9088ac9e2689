"""Orchestrator module - Cycle driving, claim fan-out, and admission decisions."""

from .decision import CyclePolicy, Decision, Verdict, decide, synthesize_feedback
from .engine import RefinementOrchestrator, to_view
from .fanout import FanOut, FanOutStatus, FanOutSummary
from .verifier import ClaimVerifier

__all__ = [
	"RefinementOrchestrator",
	"to_view",
	"ClaimVerifier",
	"FanOut",
	"FanOutStatus",
	"FanOutSummary",
	"CyclePolicy",
	"Decision",
	"Verdict",
	"decide",
	"synthesize_feedback",
]
