"""
Run Store - SQLite-backed run state and artifact history.

Features:
- Upsert of run snapshots (the checkpoint written around every stage)
- Append-only artifact versions keyed by (run, cycle)
- Stage execution audit log
- Human review records, consumed exactly once
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

import aiosqlite

from .models import (
	ArtifactVersion,
	ContentArtifact,
	HumanReviewRecord,
	RESUMABLE_STATUSES,
	ReviewDecision,
	ReviewStatus,
	Run,
	RunStatus,
	StageExecution,
)

logger = logging.getLogger(__name__)


class RunStateStore(Protocol):
	"""Persistence contract the orchestrator depends on."""

	async def init(self) -> None: ...

	async def close(self) -> None: ...

	async def upsert_run(self, run: Run) -> None: ...

	async def get_run(self, run_id: str) -> Optional[Run]: ...

	async def list_runs(
		self, status: Optional[RunStatus] = None, limit: int = 20, offset: int = 0,
	) -> tuple[list[Run], int]: ...

	async def list_resumable_runs(self) -> list[Run]: ...

	async def append_artifact_version(self, run_id: str, cycle: int, artifact: ContentArtifact) -> bool: ...

	async def list_artifact_versions(self, run_id: str) -> list[ArtifactVersion]: ...

	async def record_stage_execution(self, execution: StageExecution) -> None: ...

	async def list_stage_executions(self, run_id: str) -> list[StageExecution]: ...

	async def create_review(self, run: Run) -> HumanReviewRecord: ...

	async def complete_review(
		self,
		review: HumanReviewRecord,
		decision: ReviewDecision,
		feedback: Optional[str] = None,
		field_overrides: Optional[dict[str, str]] = None,
	) -> HumanReviewRecord: ...

	async def get_pending_review(self, run_id: str) -> Optional[HumanReviewRecord]: ...

	async def list_reviews(self, run_id: str) -> list[HumanReviewRecord]: ...


class RunStore:
	"""
	SQLite-backed run storage.

	Usage:
		store = RunStore("data/refinery.db")
		await store.init()

		await store.upsert_run(run)
		await store.append_artifact_version(run.id, 1, artifact)
		run = await store.get_run(run.id)

		await store.close()
	"""

	def __init__(self, db_path: str):
		"""Initialize the run store."""
		self.db_path = Path(db_path)
		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		self._db: Optional[aiosqlite.Connection] = None
		self._lock = asyncio.Lock()

	async def init(self):
		"""Open the connection and create the schema."""
		if self._db:
			return
		self._db = await aiosqlite.connect(str(self.db_path))
		self._db.row_factory = aiosqlite.Row

		await self._db.executescript("""
			CREATE TABLE IF NOT EXISTS runs (
				id TEXT PRIMARY KEY,
				topic TEXT NOT NULL,
				status TEXT NOT NULL,
				current_cycle INTEGER NOT NULL,
				data TEXT NOT NULL,
				started_at TEXT NOT NULL,
				updated_at TEXT NOT NULL
			);

			CREATE TABLE IF NOT EXISTS artifact_versions (
				run_id TEXT NOT NULL REFERENCES runs(id),
				cycle INTEGER NOT NULL,
				version_type TEXT NOT NULL,
				data TEXT NOT NULL,
				created_at TEXT NOT NULL,
				PRIMARY KEY (run_id, cycle)
			);

			CREATE TABLE IF NOT EXISTS stage_executions (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				run_id TEXT NOT NULL REFERENCES runs(id),
				cycle INTEGER NOT NULL,
				stage TEXT NOT NULL,
				success INTEGER NOT NULL,
				data TEXT NOT NULL,
				created_at TEXT NOT NULL
			);

			CREATE TABLE IF NOT EXISTS human_reviews (
				id TEXT PRIMARY KEY,
				run_id TEXT NOT NULL REFERENCES runs(id),
				status TEXT NOT NULL,
				data TEXT NOT NULL,
				created_at TEXT NOT NULL
			);

			CREATE INDEX IF NOT EXISTS idx_runs_status ON runs(status);
			CREATE INDEX IF NOT EXISTS idx_stage_executions_run ON stage_executions(run_id);
			CREATE INDEX IF NOT EXISTS idx_human_reviews_run ON human_reviews(run_id, status);
		""")
		await self._db.commit()
		logger.info(f"Run store initialized: {self.db_path}")

	async def close(self):
		"""Close the database connection."""
		if self._db:
			await self._db.close()
			self._db = None

	async def _conn(self) -> aiosqlite.Connection:
		if not self._db:
			await self.init()
		return self._db

	# --- Runs ---

	async def upsert_run(self, run: Run) -> None:
		"""Insert or replace the stored snapshot of a run."""
		db = await self._conn()
		run.updated_at = datetime.now().isoformat()

		async with self._lock:
			await db.execute(
				"""
				INSERT INTO runs (id, topic, status, current_cycle, data, started_at, updated_at)
				VALUES (?, ?, ?, ?, ?, ?, ?)
				ON CONFLICT(id) DO UPDATE SET
					status = excluded.status,
					current_cycle = excluded.current_cycle,
					data = excluded.data,
					updated_at = excluded.updated_at
				""",
				(
					run.id,
					run.topic,
					run.status.value,
					run.current_cycle,
					run.model_dump_json(),
					run.started_at,
					run.updated_at,
				),
			)
			await db.commit()
		logger.debug(f"Checkpointed run {run.id}: {run.status.value} (cycle {run.current_cycle})")

	async def get_run(self, run_id: str) -> Optional[Run]:
		"""Get a run by ID."""
		db = await self._conn()
		async with db.execute("SELECT data FROM runs WHERE id = ?", (run_id,)) as cursor:
			row = await cursor.fetchone()

		if not row:
			return None
		return Run.model_validate_json(row["data"])

	async def list_runs(
		self,
		status: Optional[RunStatus] = None,
		limit: int = 20,
		offset: int = 0,
	) -> tuple[list[Run], int]:
		"""
		List runs, newest first.

		Returns:
			Tuple of (page of runs, total matching count)
		"""
		db = await self._conn()
		where_clause = "status = ?" if status else "1=1"
		params: list = [status.value] if status else []

		async with db.execute(
			f"SELECT COUNT(*) AS n FROM runs WHERE {where_clause}", params
		) as cursor:
			total = (await cursor.fetchone())["n"]

		async with db.execute(
			f"SELECT data FROM runs WHERE {where_clause} ORDER BY started_at DESC LIMIT ? OFFSET ?",
			params + [limit, offset],
		) as cursor:
			rows = await cursor.fetchall()

		return [Run.model_validate_json(row["data"]) for row in rows], total

	async def list_resumable_runs(self) -> list[Run]:
		"""Runs interrupted mid-cycle, oldest first."""
		db = await self._conn()
		statuses = [s.value for s in RESUMABLE_STATUSES]
		placeholders = ",".join("?" * len(statuses))
		async with db.execute(
			f"SELECT data FROM runs WHERE status IN ({placeholders}) ORDER BY started_at ASC",
			statuses,
		) as cursor:
			rows = await cursor.fetchall()
		return [Run.model_validate_json(row["data"]) for row in rows]

	# --- Artifact versions ---

	async def append_artifact_version(
		self, run_id: str, cycle: int, artifact: ContentArtifact,
	) -> bool:
		"""
		Append the artifact produced in a cycle.

		Versions are append-only: an existing (run_id, cycle) entry is kept.

		Returns:
			True if a new version was stored
		"""
		db = await self._conn()
		version_type = "INITIAL" if cycle == 1 else "IMPROVED"

		async with self._lock:
			cursor = await db.execute(
				"""
				INSERT OR IGNORE INTO artifact_versions (run_id, cycle, version_type, data, created_at)
				VALUES (?, ?, ?, ?, ?)
				""",
				(run_id, cycle, version_type, artifact.model_dump_json(), datetime.now().isoformat()),
			)
			await db.commit()
			inserted = cursor.rowcount > 0

		if not inserted:
			logger.warning(f"Artifact version for run {run_id} cycle {cycle} already stored, keeping original")
		return inserted

	async def list_artifact_versions(self, run_id: str) -> list[ArtifactVersion]:
		"""All artifact versions of a run in cycle order."""
		db = await self._conn()
		async with db.execute(
			"SELECT * FROM artifact_versions WHERE run_id = ? ORDER BY cycle ASC",
			(run_id,),
		) as cursor:
			rows = await cursor.fetchall()

		return [
			ArtifactVersion(
				run_id=row["run_id"],
				cycle=row["cycle"],
				version_type=row["version_type"],
				artifact=ContentArtifact.model_validate_json(row["data"]),
				created_at=row["created_at"],
			)
			for row in rows
		]

	# --- Stage executions ---

	async def record_stage_execution(self, execution: StageExecution) -> None:
		"""Add a stage execution audit entry."""
		db = await self._conn()
		async with self._lock:
			await db.execute(
				"""
				INSERT INTO stage_executions (run_id, cycle, stage, success, data, created_at)
				VALUES (?, ?, ?, ?, ?, ?)
				""",
				(
					execution.run_id,
					execution.cycle,
					execution.stage.value,
					int(execution.success),
					execution.model_dump_json(),
					execution.created_at,
				),
			)
			await db.commit()

	async def list_stage_executions(self, run_id: str) -> list[StageExecution]:
		"""Stage execution entries for a run in insertion order."""
		db = await self._conn()
		async with db.execute(
			"SELECT data FROM stage_executions WHERE run_id = ? ORDER BY id ASC",
			(run_id,),
		) as cursor:
			rows = await cursor.fetchall()
		return [StageExecution.model_validate_json(row["data"]) for row in rows]

	# --- Human reviews ---

	async def save_review(self, review: HumanReviewRecord) -> None:
		"""Insert or update a human review record."""
		db = await self._conn()
		async with self._lock:
			await db.execute(
				"""
				INSERT INTO human_reviews (id, run_id, status, data, created_at)
				VALUES (?, ?, ?, ?, ?)
				ON CONFLICT(id) DO UPDATE SET
					status = excluded.status,
					data = excluded.data
				""",
				(review.id, review.run_id, review.status.value, review.model_dump_json(), review.created_at),
			)
			await db.commit()

	async def create_review(self, run: Run) -> HumanReviewRecord:
		"""Open a review for a run entering HUMAN_REVIEW."""
		review = HumanReviewRecord(run_id=run.id, cycle=run.current_cycle, score=run.final_score)
		await self.save_review(review)
		logger.info(f"Human review {review.id} opened for run {run.id} (cycle {run.current_cycle})")
		return review

	async def complete_review(
		self,
		review: HumanReviewRecord,
		decision: ReviewDecision,
		feedback: Optional[str] = None,
		field_overrides: Optional[dict[str, str]] = None,
	) -> HumanReviewRecord:
		"""Record the reviewer's decision and close the review."""
		completed = review.model_copy(update={
			"status": ReviewStatus.COMPLETED,
			"decision": decision,
			"feedback": feedback,
			"field_overrides": dict(field_overrides or {}),
			"completed_at": datetime.now().isoformat(),
		})
		await self.save_review(completed)
		return completed

	async def get_pending_review(self, run_id: str) -> Optional[HumanReviewRecord]:
		"""The open review for a run, if any."""
		db = await self._conn()
		async with db.execute(
			"SELECT data FROM human_reviews WHERE run_id = ? AND status = ? ORDER BY created_at DESC LIMIT 1",
			(run_id, ReviewStatus.PENDING.value),
		) as cursor:
			row = await cursor.fetchone()
		return HumanReviewRecord.model_validate_json(row["data"]) if row else None

	async def list_reviews(self, run_id: str) -> list[HumanReviewRecord]:
		"""Review history for a run, newest first."""
		db = await self._conn()
		async with db.execute(
			"SELECT data FROM human_reviews WHERE run_id = ? ORDER BY created_at DESC",
			(run_id,),
		) as cursor:
			rows = await cursor.fetchall()
		return [HumanReviewRecord.model_validate_json(row["data"]) for row in rows]
