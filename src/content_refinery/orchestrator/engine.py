"""
Refinement Orchestrator - drives runs through the refinement cycle.

Flow per cycle:
1. CONTENT_GENERATION: generate an artifact (with feedback after cycle 1)
2. ACCURACY_CRITIQUE: fan out claim verification, aggregate
3. QUALITY_CRITIQUE: holistic critique, then the decision engine
4. ACCEPT -> COMPLETED, RETRY -> next cycle, ESCALATE -> HUMAN_REVIEW

Key Principle: the run's status always names the next stage to execute
and is persisted before that stage's external call. A restarted process
picks up a run from its stored status without redoing finished stages.
"""

import asyncio
import logging
import time
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Union

from .. import scores
from ..config import Config
from ..errors import (
	InvalidRequestError,
	RunCancelledError,
	RunNotFoundError,
	StageFailedError,
	StateConflictError,
)
from ..runs.models import (
	ArtifactVersion,
	EDITABLE_FIELDS,
	HumanReviewRecord,
	ReviewDecision,
	Run,
	RunStatus,
	StageExecution,
	StageName,
	StageState,
)
from ..runs.store import RunStateStore, RunStore
from ..stages.backend import HttpCapabilityBackend
from ..stages.client import CapabilityBackend, StageClient, StageResult
from ..stages.contracts import CritiqueRequest, GenerationRequest, StageKind
from .decision import CyclePolicy, Verdict, decide, synthesize_feedback
from .verifier import ClaimVerifier

logger = logging.getLogger(__name__)

MAX_CYCLES_LIMIT = 10

# Stage a run is in while its status names it
STATUS_STAGES = {
	RunStatus.CONTENT_GENERATION: StageName.GENERATION.value,
	RunStatus.ACCURACY_CRITIQUE: StageName.ACCURACY.value,
	RunStatus.QUALITY_CRITIQUE: StageName.QUALITY.value,
}


def to_view(run: Run) -> dict[str, Any]:
	"""External snapshot of a run, with threshold and score on the 0-10 scale."""
	view = run.model_dump(mode="json")
	view["quality_threshold"] = scores.to_external(run.quality_threshold)
	view["final_score"] = scores.to_external(run.final_score)
	view["is_terminal"] = run.is_terminal
	return view


def _validate_max_cycles(value: Any) -> int:
	if isinstance(value, bool) or not isinstance(value, int):
		raise InvalidRequestError(f"max_cycles must be an integer, got {value!r}")
	if not 1 <= value <= MAX_CYCLES_LIMIT:
		raise InvalidRequestError(f"max_cycles must be between 1 and {MAX_CYCLES_LIMIT}, got {value}")
	return value


def _validate_threshold(value: Any) -> float:
	if isinstance(value, bool) or not isinstance(value, (int, float)):
		raise InvalidRequestError(f"quality_threshold must be a number, got {value!r}")
	if not scores.MIN_EXTERNAL_THRESHOLD <= value <= scores.MAX_EXTERNAL_THRESHOLD:
		raise InvalidRequestError(
			f"quality_threshold must be between {scores.MIN_EXTERNAL_THRESHOLD:g} "
			f"and {scores.MAX_EXTERNAL_THRESHOLD:g}, got {value}"
		)
	return float(value)


def _parse_decision(value: Union[str, ReviewDecision]) -> ReviewDecision:
	try:
		return ReviewDecision(value.upper() if isinstance(value, str) else value)
	except ValueError:
		choices = ", ".join(d.value for d in ReviewDecision)
		raise InvalidRequestError(f"decision must be one of {choices}, got {value!r}") from None


def _validate_overrides(overrides: Optional[dict]) -> dict[str, str]:
	if not overrides:
		return {}
	if not isinstance(overrides, dict):
		raise InvalidRequestError("field_overrides must be an object")
	unknown = sorted(set(overrides) - set(EDITABLE_FIELDS))
	if unknown:
		raise InvalidRequestError(
			f"Unknown override fields: {', '.join(unknown)} (editable: {', '.join(EDITABLE_FIELDS)})"
		)
	for key, value in overrides.items():
		if not isinstance(value, str):
			raise InvalidRequestError(f"Override for '{key}' must be a string")
	return dict(overrides)


class RefinementOrchestrator:
	"""
	Owns the refinement runs of one process.

	Each non-suspended run is driven by exactly one asyncio task. Runs in
	HUMAN_REVIEW have no driver; submit_human_review starts a fresh one.

	Usage:
		async with RefinementOrchestrator.from_config(config) as orchestrator:
			run = await orchestrator.start_run("quantum computing")
			run = await orchestrator.wait_for_run(run.id)
	"""

	def __init__(
		self,
		store: RunStateStore,
		backend: CapabilityBackend,
		config: Optional[Config] = None,
		client: Optional[StageClient] = None,
	):
		"""
		Initialize the orchestrator.

		Args:
			store: Run state store
			backend: Capability backend serving every stage
			config: Settings for defaults, retry policy and fan-out width
			client: Stage client to use instead of one built from config
		"""
		self.config = config or Config()
		self.store = store
		self.backend = backend
		self.client = client or StageClient.from_config(backend, self.config)
		self.verifier = ClaimVerifier(self.client, max_concurrency=self.config.verify_concurrency)

		self._drivers: dict[str, asyncio.Task] = {}
		self._cancel_requested: set[str] = set()
		# Runs with a review or cancellation in flight
		self._resuming: set[str] = set()

	@classmethod
	def from_config(cls, config: Config) -> "RefinementOrchestrator":
		"""Build an orchestrator with the SQLite store and the HTTP backend."""
		return cls(
			store=RunStore(str(config.db_path)),
			backend=HttpCapabilityBackend.from_config(config),
			config=config,
		)

	# --- Lifecycle ---

	async def start(self) -> None:
		"""Open the store and the backend."""
		await self.store.init()
		start_backend = getattr(self.backend, "start", None)
		if start_backend is not None:
			await start_backend()

	async def shutdown(self) -> None:
		"""
		Stop all drivers and release resources.

		Interrupted runs keep their last checkpoint and are picked up again
		by recover_runs().
		"""
		drivers = [task for task in self._drivers.values() if not task.done()]
		for task in drivers:
			task.cancel()
		if drivers:
			await asyncio.gather(*drivers, return_exceptions=True)
			logger.info(f"Stopped {len(drivers)} run driver(s)")
		self._drivers.clear()

		close_backend = getattr(self.backend, "close", None)
		if close_backend is not None:
			await close_backend()
		await self.store.close()

	async def __aenter__(self) -> "RefinementOrchestrator":
		await self.start()
		return self

	async def __aexit__(self, exc_type, exc, tb) -> None:
		await self.shutdown()

	# --- Operations ---

	async def start_run(
		self,
		topic: str,
		max_cycles: Optional[int] = None,
		quality_threshold: Optional[float] = None,
	) -> Run:
		"""
		Create a run and start driving it in the background.

		Args:
			topic: Subject to generate content about
			max_cycles: Cycle budget, 1 to 10 (default from config)
			quality_threshold: Admission threshold on the 0-10 scale (default from config)

		Returns:
			The initial run snapshot
		"""
		if not isinstance(topic, str) or not topic.strip():
			raise InvalidRequestError("topic must be a non-empty string")
		max_cycles = _validate_max_cycles(
			self.config.default_max_cycles if max_cycles is None else max_cycles
		)
		threshold = _validate_threshold(
			self.config.default_quality_threshold if quality_threshold is None else quality_threshold
		)

		run = Run(
			topic=topic.strip(),
			max_cycles=max_cycles,
			quality_threshold=scores.from_external(threshold),
		)
		await self.store.upsert_run(run)
		logger.info(
			f"Started run {run.id} for '{run.topic}' "
			f"(max_cycles={max_cycles}, threshold={threshold:g}/10)"
		)
		self._spawn(run)
		return run.model_copy(deep=True)

	async def get_run(self, run_id: str) -> Run:
		"""Current stored snapshot of a run."""
		run = await self.store.get_run(run_id)
		if run is None:
			raise RunNotFoundError(run_id)
		return run

	async def wait_for_run(self, run_id: str, timeout: Optional[float] = None) -> Run:
		"""
		Wait until the run has no active driver.

		Returns once the run is terminal or suspended in HUMAN_REVIEW.
		"""
		task = self._drivers.get(run_id)
		if task is not None:
			await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
		return await self.get_run(run_id)

	async def submit_human_review(
		self,
		run_id: str,
		decision: Union[str, ReviewDecision],
		feedback: Optional[str] = None,
		field_overrides: Optional[dict[str, str]] = None,
	) -> Run:
		"""
		Resume a run suspended in HUMAN_REVIEW.

		ACCEPT and REJECT complete the run. IMPROVE applies the field
		overrides, grants one bonus cycle and starts the next generation.

		Returns:
			The run snapshot right after the decision was recorded
		"""
		decision = _parse_decision(decision)
		overrides = _validate_overrides(field_overrides)
		if feedback is not None and not isinstance(feedback, str):
			raise InvalidRequestError("feedback must be a string")
		feedback = feedback.strip() if feedback else None

		with self._exclusive(run_id):
			run = await self.get_run(run_id)
			if run.status != RunStatus.HUMAN_REVIEW:
				raise StateConflictError(
					f"Run {run_id} is {run.status.value}, human review is only accepted in HUMAN_REVIEW"
				)
			if self._has_driver(run_id):
				raise StateConflictError(f"Run {run_id} is already being driven")

			review = await self.store.get_pending_review(run_id) or await self.store.create_review(run)
			await self.store.complete_review(review, decision, feedback, overrides)

			run.human_review_required = False
			run.human_review_provided = True
			run.human_review_feedback = feedback
			run.review_decision = decision
			if run.artifact is not None:
				run.artifact = run.artifact.with_overrides(overrides)

			if decision == ReviewDecision.ACCEPT:
				run.pending_feedback = None
				run.finish(RunStatus.COMPLETED)
			elif decision == ReviewDecision.REJECT:
				run.pending_feedback = None
				run.content_discarded = True
				run.finish(RunStatus.COMPLETED)
			else:
				self._grant_improvement_cycle(run, feedback)

			await self.store.upsert_run(run)
			logger.info(f"Run {run_id}: human review {decision.value} -> {run.status.value}")

			if run.status == RunStatus.CONTENT_GENERATION:
				self._spawn(run.model_copy(deep=True))
		return run

	async def cancel_run(self, run_id: str) -> Run:
		"""
		Cancel a non-terminal run.

		The active driver, if any, is cancelled and awaited; CANCELLED is
		then written on top of the last checkpoint.
		"""
		with self._exclusive(run_id):
			return await self._cancel(run_id)

	async def _cancel(self, run_id: str) -> Run:
		run = await self.get_run(run_id)
		if run.is_terminal:
			raise StateConflictError(f"Run {run_id} is already {run.status.value}")

		self._cancel_requested.add(run_id)
		try:
			task = self._drivers.get(run_id)
			if task is not None and not task.done():
				task.cancel()
				try:
					await task
				except asyncio.CancelledError:
					pass

			run = await self.get_run(run_id)
			if run.is_terminal:
				raise StateConflictError(f"Run {run_id} finished as {run.status.value} before cancellation")

			for stage, stage_status in run.stage_status.items():
				if stage_status.status == StageState.RUNNING:
					run.mark_stage(stage, StageState.ERROR, error_message="cancelled")
			run.human_review_required = False
			run.finish(RunStatus.CANCELLED)
			await self.store.upsert_run(run)
		finally:
			self._cancel_requested.discard(run_id)

		logger.info(f"Run {run_id} cancelled at cycle {run.current_cycle}")
		return run

	async def recover_runs(self) -> list[str]:
		"""
		Resume runs interrupted by a previous process.

		Returns:
			IDs of runs that got a new driver
		"""
		resumed = []
		for run in await self.store.list_resumable_runs():
			if self._has_driver(run.id):
				continue
			logger.info(f"Resuming run {run.id} from {run.status.value} (cycle {run.current_cycle})")
			self._spawn(run)
			resumed.append(run.id)
		return resumed

	async def list_runs(
		self,
		status: Optional[Union[str, RunStatus]] = None,
		limit: int = 20,
		offset: int = 0,
	) -> tuple[list[Run], int]:
		if status is not None:
			try:
				status = RunStatus(status.upper() if isinstance(status, str) else status)
			except ValueError:
				raise InvalidRequestError(f"Unknown run status: {status!r}") from None
		if limit < 1 or offset < 0:
			raise InvalidRequestError("limit must be positive and offset non-negative")
		return await self.store.list_runs(status=status, limit=limit, offset=offset)

	async def list_artifact_versions(self, run_id: str) -> list[ArtifactVersion]:
		await self.get_run(run_id)
		return await self.store.list_artifact_versions(run_id)

	async def list_reviews(self, run_id: str) -> list[HumanReviewRecord]:
		await self.get_run(run_id)
		return await self.store.list_reviews(run_id)

	async def list_stage_executions(self, run_id: str) -> list[StageExecution]:
		await self.get_run(run_id)
		return await self.store.list_stage_executions(run_id)

	# --- Driving ---

	@contextmanager
	def _exclusive(self, run_id: str) -> Iterator[None]:
		"""Reserve a run for one review or cancellation at a time."""
		if run_id in self._resuming:
			raise StateConflictError(f"Run {run_id} has a review or cancellation in progress")
		self._resuming.add(run_id)
		try:
			yield
		finally:
			self._resuming.discard(run_id)

	def _has_driver(self, run_id: str) -> bool:
		task = self._drivers.get(run_id)
		return task is not None and not task.done()

	def _spawn(self, run: Run) -> asyncio.Task:
		if self._has_driver(run.id):
			raise StateConflictError(f"Run {run.id} is already being driven")
		task = asyncio.create_task(self._drive(run), name=f"run-{run.id}")
		self._drivers[run.id] = task
		return task

	async def _checkpoint(self, run: Run) -> None:
		"""Persist the snapshot, then honour a pending cancellation."""
		await self.store.upsert_run(run)
		if run.id in self._cancel_requested:
			raise RunCancelledError(run.id)

	def _transition(self, run: Run, status: RunStatus) -> None:
		logger.info(f"Run {run.id}: {run.status.value} -> {status.value} (cycle {run.current_cycle})")
		run.status = status

	async def _drive(self, run: Run) -> None:
		"""Run the cycle loop until the run is terminal or suspended."""
		try:
			while not run.is_terminal and run.status != RunStatus.HUMAN_REVIEW:
				if run.status == RunStatus.INITIALIZING:
					self._transition(run, RunStatus.CONTENT_GENERATION)
					await self._checkpoint(run)
				elif run.status == RunStatus.CONTENT_GENERATION:
					await self._generate(run)
				elif run.status == RunStatus.ACCURACY_CRITIQUE:
					await self._verify_claims(run)
				elif run.status == RunStatus.QUALITY_CRITIQUE:
					await self._critique(run)
		except RunCancelledError:
			logger.info(f"Run {run.id} driver stopped at checkpoint for cancellation")
		except StageFailedError as e:
			logger.error(f"Run {run.id} failed in {e.stage} stage: {e.message}")
			run.failed_stage = e.stage
			run.error_message = e.message
			run.finish(RunStatus.FAILED)
			await self.store.upsert_run(run)
		except asyncio.CancelledError:
			logger.info(f"Run {run.id} driver cancelled during {run.status.value}")
			raise
		except Exception as e:
			logger.exception(f"Run {run.id} driver crashed during {run.status.value}")
			await self._record_crash(run, e)
		finally:
			if self._drivers.get(run.id) is asyncio.current_task():
				del self._drivers[run.id]

	async def _record_crash(self, run: Run, error: Exception) -> None:
		"""Mark a run FAILED after an unexpected driver error."""
		run.failed_stage = STATUS_STAGES.get(run.status, run.status.value)
		run.error_message = f"{type(error).__name__}: {error}"
		for stage, stage_status in run.stage_status.items():
			if stage_status.status == StageState.RUNNING:
				run.mark_stage(stage, StageState.ERROR, error_message=run.error_message)
		run.finish(RunStatus.FAILED)
		try:
			await self.store.upsert_run(run)
		except Exception:
			logger.exception(f"Run {run.id}: could not record failure, it stays resumable")

	async def _record_execution(
		self, run: Run, stage: StageName, result: Optional[StageResult] = None, duration: float = 0.0,
	) -> None:
		if result is None:
			execution = StageExecution(
				run_id=run.id, cycle=run.current_cycle, stage=stage,
				success=True, duration_seconds=duration,
			)
		else:
			execution = StageExecution(
				run_id=run.id,
				cycle=run.current_cycle,
				stage=stage,
				success=result.success,
				attempts=result.attempts,
				duration_seconds=result.duration_seconds,
				error=str(result.error) if result.error else None,
			)
		await self.store.record_stage_execution(execution)

	async def _generate(self, run: Run) -> None:
		later_cycle = run.current_cycle > 1
		request = GenerationRequest(
			topic=run.topic,
			cycle=run.current_cycle,
			max_cycles=run.max_cycles,
			previous_feedback=run.pending_feedback if later_cycle else None,
			previous_artifact=run.artifact if later_cycle else None,
		)
		run.mark_stage(StageName.GENERATION, StageState.RUNNING)
		await self._checkpoint(run)

		result = await self.client.invoke(StageKind.GENERATE, request)
		await self._record_execution(run, StageName.GENERATION, result)
		if not result.success:
			run.mark_stage(
				StageName.GENERATION, StageState.ERROR,
				duration_seconds=result.duration_seconds, error_message=str(result.error),
			)
			raise StageFailedError(StageName.GENERATION.value, str(result.error), result.attempts)

		artifact = result.value.to_artifact(run.current_cycle, run.topic)
		await self.store.append_artifact_version(run.id, run.current_cycle, artifact)

		run.artifact = artifact
		run.accuracy_report = None
		run.quality_report = None
		run.mark_stage(StageName.GENERATION, StageState.COMPLETED, duration_seconds=result.duration_seconds)
		self._transition(run, RunStatus.ACCURACY_CRITIQUE)
		await self._checkpoint(run)

	async def _verify_claims(self, run: Run) -> None:
		run.mark_stage(StageName.ACCURACY, StageState.RUNNING)
		await self._checkpoint(run)

		started = time.monotonic()
		claims = run.artifact.claims if run.artifact else []
		report = await self.verifier.verify(claims, run.current_cycle)
		duration = time.monotonic() - started
		await self._record_execution(run, StageName.ACCURACY, duration=duration)

		run.accuracy_report = report
		run.mark_stage(StageName.ACCURACY, StageState.COMPLETED, duration_seconds=duration)
		self._transition(run, RunStatus.QUALITY_CRITIQUE)
		await self._checkpoint(run)

	async def _critique(self, run: Run) -> None:
		request = CritiqueRequest(
			artifact=run.artifact,
			accuracy_report=run.accuracy_report,
			cycle=run.current_cycle,
		)
		run.mark_stage(StageName.QUALITY, StageState.RUNNING)
		await self._checkpoint(run)

		result = await self.client.invoke(StageKind.CRITIQUE, request)
		await self._record_execution(run, StageName.QUALITY, result)
		if not result.success:
			run.mark_stage(
				StageName.QUALITY, StageState.ERROR,
				duration_seconds=result.duration_seconds, error_message=str(result.error),
			)
			raise StageFailedError(StageName.QUALITY.value, str(result.error), result.attempts)

		report = result.value.model_copy(update={"accuracy_score": run.accuracy_report.accuracy_score})
		run.quality_report = report
		run.mark_stage(StageName.QUALITY, StageState.COMPLETED, duration_seconds=result.duration_seconds)

		decision = decide(report, CyclePolicy.for_run(run))
		logger.info(
			f"Run {run.id} cycle {run.current_cycle}: score "
			f"{scores.to_external(decision.score):g}/10 -> {decision.verdict.value}"
		)

		if decision.verdict == Verdict.ACCEPT:
			run.final_score = decision.score
			run.pending_feedback = None
			self._transition(run, RunStatus.COMPLETED)
			run.finish(RunStatus.COMPLETED)
			await self._checkpoint(run)
		elif decision.verdict == Verdict.RETRY:
			run.pending_feedback = decision.feedback
			run.final_score = None
			run.current_cycle += 1
			self._transition(run, RunStatus.CONTENT_GENERATION)
			await self._checkpoint(run)
		else:
			run.final_score = decision.score
			run.pending_feedback = decision.feedback
			run.human_review_required = True
			run.human_review_provided = False
			self._transition(run, RunStatus.HUMAN_REVIEW)
			await self.store.upsert_run(run)
			await self.store.create_review(run)

	def _grant_improvement_cycle(self, run: Run, reviewer_feedback: Optional[str]) -> None:
		"""Move a reviewed run into one more generation cycle."""
		if run.current_cycle >= run.max_cycles:
			run.max_cycles += 1
			run.bonus_cycles += 1
		run.current_cycle += 1

		parts = []
		if reviewer_feedback:
			parts.append(f"Reviewer feedback: {reviewer_feedback}")
		if run.quality_report is not None:
			parts.append(synthesize_feedback(run.quality_report))
		run.pending_feedback = "\n\n".join(parts) or None

		run.final_score = None
		self._transition(run, RunStatus.CONTENT_GENERATION)
