"""Exceptions raised across the refinement pipeline."""

from typing import Optional


class RefineryError(Exception):
	"""Base class for content-refinery errors."""
	pass


class InvalidRequestError(RefineryError):
	"""Raised when caller input is rejected before any state changes."""
	pass


class RunNotFoundError(RefineryError):
	"""Raised when a run id does not exist in the store."""

	def __init__(self, run_id: str):
		super().__init__(f"Run not found: {run_id}")
		self.run_id = run_id


class StateConflictError(RefineryError):
	"""Raised when an operation does not fit the run's current status."""
	pass


class RunCancelledError(RefineryError):
	"""Raised inside a driver when its run was cancelled at a checkpoint."""

	def __init__(self, run_id: str):
		super().__init__(f"Run cancelled: {run_id}")
		self.run_id = run_id


class StageFailedError(RefineryError):
	"""Raised when a pipeline stage exhausts its retries."""

	def __init__(self, stage: str, message: str, attempts: Optional[int] = None):
		super().__init__(f"Stage '{stage}' failed: {message}")
		self.stage = stage
		self.message = message
		self.attempts = attempts
