"""
Fan-out/fan-in execution of independent items.

Runs a handler over every item with at most max_concurrency in flight.
Each item is isolated: one failure never aborts the others. Results are
released only after every item has finished, in input order.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class FanOutStatus(str, Enum):
	"""Overall outcome of a fan-out."""
	COMPLETED = "completed"
	PARTIAL_FAILURE = "partial_failure"
	FAILED = "failed"


@dataclass
class ItemResult(Generic[T, R]):
	"""Result of processing a single item."""
	index: int
	item: T
	success: bool
	result: Optional[R] = None
	error: Optional[str] = None


@dataclass
class FanOutSummary(Generic[T, R]):
	"""All item results, available once the barrier is passed."""
	status: FanOutStatus
	total: int
	succeeded: int
	failed: int
	results: list[ItemResult[T, R]] = field(default_factory=list)


class FanOut(Generic[T, R]):
	"""Semaphore-gated concurrent map with per-item failure isolation."""

	def __init__(self, max_concurrency: int = 4):
		if max_concurrency < 1:
			raise ValueError("max_concurrency must be at least 1")
		self.max_concurrency = max_concurrency

	async def run(
		self,
		items: list[T],
		handler: Callable[[T], Awaitable[R]],
	) -> FanOutSummary[T, R]:
		"""
		Process every item through the handler.

		Args:
			items: Items to process
			handler: Async function applied to each item

		Returns:
			FanOutSummary with one result per item, in input order
		"""
		if not items:
			return FanOutSummary(status=FanOutStatus.COMPLETED, total=0, succeeded=0, failed=0)

		semaphore = asyncio.Semaphore(self.max_concurrency)

		async def process(index: int, item: T) -> ItemResult[T, R]:
			async with semaphore:
				try:
					return ItemResult(index=index, item=item, success=True, result=await handler(item))
				except Exception as e:
					logger.warning(f"Fan-out item {index} failed: {e}")
					return ItemResult(index=index, item=item, success=False, error=str(e) or type(e).__name__)

		# Fan out, then barrier
		results = await asyncio.gather(*(process(i, item) for i, item in enumerate(items)))

		succeeded = sum(1 for r in results if r.success)
		failed = len(results) - succeeded
		if failed == 0:
			status = FanOutStatus.COMPLETED
		elif succeeded == 0:
			status = FanOutStatus.FAILED
		else:
			status = FanOutStatus.PARTIAL_FAILURE

		return FanOutSummary(
			status=status,
			total=len(items),
			succeeded=succeeded,
			failed=failed,
			results=list(results),
		)
