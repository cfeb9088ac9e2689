"""Shared test fixtures and helpers for content-refinery tests."""

import asyncio
import re
import sqlite3
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from content_refinery.config import Config
from content_refinery.orchestrator.engine import RefinementOrchestrator
from content_refinery.runs.models import Improvement, QualityReport, Run, Severity, StageExecution
from content_refinery.runs.store import RunStore
from content_refinery.stages.contracts import StageKind

DEFAULT_CLAIMS = [
	"Quantum computers use qubits",
	"Qubits can be in superposition",
	"Shor's algorithm factors integers efficiently",
]


def make_config(tmp_path: Path, **overrides) -> Config:
	"""Config rooted in tmp_path with instant retries."""
	settings = {
		"config_dir": tmp_path / "config",
		"data_dir": tmp_path / "data",
		"retry_base_delay": 0.0,
		"retry_jitter": 0.0,
		"stage_timeout": 5.0,
	}
	settings.update(overrides)
	return Config(**settings)


def make_orchestrator(tmp_path: Path, backend: "FakeBackend", **config_overrides) -> RefinementOrchestrator:
	config = make_config(tmp_path, **config_overrides)
	return RefinementOrchestrator(store=RunStore(str(config.db_path)), backend=backend, config=config)


def make_generation(version: int = 1, claims: Optional[list[str]] = None) -> dict[str, Any]:
	return {
		"definition": f"Definition v{version}",
		"social_post": f"Social post v{version}",
		"image_prompt": f"Image prompt v{version}",
		"claims": list(claims if claims is not None else DEFAULT_CLAIMS),
	}


def make_improvements() -> list[dict[str, str]]:
	return [
		{"target": "definition", "severity": "high", "description": "Definition is vague", "suggestion": "Add a concrete example"},
		{"target": "social_post", "severity": "medium", "description": "Post lacks a hook", "suggestion": "Open with a question"},
		{"target": "image_prompt", "severity": "low", "description": "Image prompt is generic", "suggestion": "Name a visual style"},
		{"target": "general", "severity": "high", "description": "Claim 2 is unsupported", "suggestion": "Cite a source"},
	]


def make_critique(overall: float, improvements: Optional[list[dict]] = None) -> dict[str, Any]:
	return {
		"overall_score": overall,
		"coherence_score": overall,
		"engagement_score": overall,
		"accuracy_score": 0,
		"improvements": improvements if improvements is not None else make_improvements(),
		"final_recommendation": "accept" if overall >= 80 else "improve",
		"reasoning": f"Scored {overall}",
	}


def make_quality_report(overall: float, improvements: Optional[list[Improvement]] = None) -> QualityReport:
	if improvements is None:
		improvements = [Improvement(**imp) for imp in make_improvements()]
	return QualityReport(overall_score=overall, improvements=improvements)


def slug(text: str) -> str:
	return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


class FakeBackend:
	"""
	Scripted in-memory capability backend.

	GENERATE returns the next entry of generations and CRITIQUE the next
	critique score (the last entry repeats). Claim lookups and analyses are
	scripted per claim statement.
	"""

	def __init__(
		self,
		generations: Optional[list[dict]] = None,
		critique_scores: Optional[list[float]] = None,
		failing_claims: Optional[set[str]] = None,
		hanging_claims: Optional[set[str]] = None,
		disputed_claims: Optional[set[str]] = None,
		fail_kinds: Optional[set[StageKind]] = None,
		on_call: Optional[Callable[[StageKind, dict], Awaitable[None]]] = None,
	):
		self.generations = generations or [make_generation(1), make_generation(2), make_generation(3)]
		self.critique_scores = critique_scores or [90]
		self.failing_claims = failing_claims or set()
		self.hanging_claims = hanging_claims or set()
		self.disputed_claims = disputed_claims or set()
		self.fail_kinds = fail_kinds or set()
		self.on_call = on_call

		self.calls: list[tuple[StageKind, dict]] = []
		self.generate_gate: Optional[asyncio.Event] = None
		self.generate_started = asyncio.Event()
		self.started = False
		self.closed = False
		self._generate_count = 0
		self._critique_count = 0

	async def start(self) -> None:
		self.started = True

	async def close(self) -> None:
		self.closed = True

	def calls_of(self, kind: StageKind) -> list[dict]:
		return [payload for k, payload in self.calls if k == kind]

	async def call(self, kind: StageKind, payload: dict[str, Any]) -> dict[str, Any]:
		self.calls.append((kind, payload))
		if self.on_call is not None:
			await self.on_call(kind, payload)
		if kind in self.fail_kinds:
			raise RuntimeError(f"{kind.value} backend unavailable")

		if kind == StageKind.GENERATE:
			self.generate_started.set()
			if self.generate_gate is not None:
				await self.generate_gate.wait()
			index = min(self._generate_count, len(self.generations) - 1)
			self._generate_count += 1
			return dict(self.generations[index])

		if kind == StageKind.CRITIQUE:
			index = min(self._critique_count, len(self.critique_scores) - 1)
			self._critique_count += 1
			return make_critique(self.critique_scores[index])

		claim = payload["claim"]
		if kind == StageKind.LOOKUP:
			if claim in self.hanging_claims:
				await asyncio.Event().wait()
			if claim in self.failing_claims:
				raise ConnectionError(f"lookup failed for {claim}")
			return {"results": [{
				"title": claim,
				"url": f"https://en.wikipedia.org/wiki/{slug(claim)}",
				"snippet": f"About {claim}",
			}]}

		# ANALYZE
		disputed = claim in self.disputed_claims
		return {
			"is_verified": not disputed,
			"confidence": 0.3 if disputed else 0.9,
			"evidence": "scripted",
			"sources": payload["results"],
		}


class RecordingStore(RunStore):
	"""RunStore that keeps a copy of every checkpointed snapshot."""

	def __init__(self, db_path: str):
		super().__init__(db_path)
		self.snapshots: list[Run] = []

	async def upsert_run(self, run: Run) -> None:
		await super().upsert_run(run)
		self.snapshots.append(run.model_copy(deep=True))


class BrokenExecutionLogStore(RunStore):
	"""RunStore whose stage execution log always fails to write."""

	async def record_stage_execution(self, execution: StageExecution) -> None:
		raise sqlite3.OperationalError("database is locked")


def improvement(severity: Severity, description: str, suggestion: str = "") -> Improvement:
	return Improvement(severity=severity, description=description, suggestion=suggestion)
