"""
Stage Client - one call contract for every external capability.

Wraps a CapabilityBackend with a per-call timeout and retry with
exponential backoff plus jitter. Failures come back as a typed
StageResult instead of an exception, so callers decide what a failure
means for the run.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from ..config import Config
from .contracts import STAGE_CONTRACTS, StageKind

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=BaseModel)


class CapabilityBackend(Protocol):
	"""The capability set behind all stages: one entry point keyed by kind."""

	async def call(self, kind: StageKind, payload: dict[str, Any]) -> dict[str, Any]: ...


@dataclass
class StageError:
	"""Why a stage call gave up."""
	kind: StageKind
	cause: str
	attempts: int
	timed_out: bool = False

	def __str__(self) -> str:
		return f"{self.kind.value} failed after {self.attempts} attempt(s): {self.cause}"


@dataclass
class StageResult(Generic[R]):
	"""Outcome of a stage call."""
	kind: StageKind
	success: bool
	value: Optional[R] = None
	error: Optional[StageError] = None
	attempts: int = 0
	duration_seconds: float = 0.0


class StageClient:
	"""
	Invokes stage capabilities with timeout and retry.

	The retry ceiling counts retries, not attempts: max_retries=3 means up
	to four calls. Delay before retry n (0-based) is
	base_delay * 2**n + uniform(0, jitter).
	"""

	def __init__(
		self,
		backend: CapabilityBackend,
		timeout: float = 120.0,
		max_retries: int = 3,
		base_delay: float = 1.0,
		jitter: float = 1.0,
		sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
		rng: Optional[random.Random] = None,
	):
		self.backend = backend
		self.timeout = timeout
		self.max_retries = max_retries
		self.base_delay = base_delay
		self.jitter = jitter
		self._sleep = sleep
		self._rng = rng or random.Random()

	@classmethod
	def from_config(cls, backend: CapabilityBackend, config: Config) -> "StageClient":
		return cls(
			backend,
			timeout=config.stage_timeout,
			max_retries=config.max_retries,
			base_delay=config.retry_base_delay,
			jitter=config.retry_jitter,
		)

	def backoff_delay(self, attempt: int) -> float:
		"""Delay before retrying after the given 0-based failed attempt."""
		return self.base_delay * (2 ** attempt) + self._rng.uniform(0, self.jitter)

	async def invoke(
		self,
		kind: StageKind,
		request: BaseModel,
		timeout: Optional[float] = None,
	) -> StageResult:
		"""
		Call a capability and validate its response.

		Args:
			kind: Which capability to call
			request: Request model registered for kind
			timeout: Per-attempt timeout in seconds (defaults to client timeout)

		Returns:
			StageResult carrying the validated response or a StageError
		"""
		request_type, response_type = STAGE_CONTRACTS[kind]
		if not isinstance(request, request_type):
			raise TypeError(f"{kind.value} expects {request_type.__name__}, got {type(request).__name__}")

		timeout = timeout if timeout is not None else self.timeout
		payload = request.model_dump(mode="json")
		total_attempts = self.max_retries + 1
		started = time.monotonic()
		last_cause = ""
		timed_out = False

		for attempt in range(total_attempts):
			try:
				raw = await asyncio.wait_for(self.backend.call(kind, payload), timeout=timeout)
				value = response_type.model_validate(raw)
				return StageResult(
					kind=kind,
					success=True,
					value=value,
					attempts=attempt + 1,
					duration_seconds=time.monotonic() - started,
				)
			except asyncio.TimeoutError:
				timed_out = True
				last_cause = f"timed out after {timeout}s"
			except ValidationError as e:
				timed_out = False
				last_cause = f"invalid {response_type.__name__} response: {e.error_count()} error(s)"
			except Exception as e:
				timed_out = False
				last_cause = f"{type(e).__name__}: {e}"

			if attempt == total_attempts - 1:
				break

			delay = self.backoff_delay(attempt)
			logger.warning(
				f"Stage {kind.value} failed (attempt {attempt + 1}/{total_attempts}), "
				f"retrying in {delay:.2f}s: {last_cause}"
			)
			await self._sleep(delay)

		error = StageError(kind=kind, cause=last_cause, attempts=total_attempts, timed_out=timed_out)
		logger.error(f"Stage {error}")
		return StageResult(
			kind=kind,
			success=False,
			error=error,
			attempts=total_attempts,
			duration_seconds=time.monotonic() - started,
		)
