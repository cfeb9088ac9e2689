"""Tests for claim verification fan-out and aggregation."""

import pytest

from content_refinery.orchestrator.verifier import (
	ClaimVerifier,
	aggregate,
	build_recommendations,
	dedupe_sources,
	source_reliability,
)
from content_refinery.runs.models import Claim, Source
from content_refinery.stages.client import StageClient
from content_refinery.stages.contracts import StageKind

from .helpers import FakeBackend


def _verifier(backend: FakeBackend, timeout: float = 5.0, concurrency: int = 4) -> ClaimVerifier:
	client = StageClient(backend, timeout=timeout, max_retries=3, base_delay=0.0, jitter=0.0)
	return ClaimVerifier(client, max_concurrency=concurrency)


def _claim(statement: str, verified: bool, confidence: float, *urls: str) -> Claim:
	return Claim(
		statement=statement,
		is_verified=verified,
		confidence=confidence,
		sources=tuple(Source(url=url) for url in urls),
	)


class TestSourceReliability:

	@pytest.mark.parametrize("url", [
		"https://en.wikipedia.org/wiki/Qubit",
		"https://www.reuters.com/technology/",
		"https://www.nature.com/articles/x",
		"https://www.nasa.gov/missions",
		"https://www.gov.uk/guidance",
		"https://web.mit.edu/news",
	])
	def test_reliable_sources(self, url):
		"""Listed publishers and gov/edu hosts are reliable."""
		assert source_reliability(url) == 0.9

	@pytest.mark.parametrize("url", [
		"https://example.com/post",
		"https://notwikipedia.org/page",
		"https://blog.medium.com/x",
		"not a url",
		"http://[broken",
		"",
	])
	def test_other_sources(self, url):
		"""Other and unparseable URLs get the default reliability."""
		assert source_reliability(url) == 0.6


class TestAggregate:

	def test_scores_follow_verified_confidence(self):
		"""Accuracy follows the confidence of verified claims."""
		report = aggregate([
			_claim("a", True, 0.8),
			_claim("b", True, 0.6),
			_claim("c", False, 0.3),
		])

		assert report.accuracy_score == pytest.approx(140 / 3)
		assert report.confidence_score == pytest.approx(0.7)
		assert len(report.verified_claims) == 2
		assert len(report.disputed_claims) == 1
		assert report.total_claims == 3

	def test_no_claims(self):
		"""An empty claim list scores zero with a recommendation."""
		report = aggregate([])

		assert report.accuracy_score == 0.0
		assert report.confidence_score == 0.0
		assert "Consider adding more verifiable claims with supporting evidence" in report.recommendations

	def test_shared_source_is_listed_once(self):
		"""A source cited by two claims is listed once."""
		shared = "https://en.wikipedia.org/wiki/Qubit"
		report = aggregate([
			_claim("a", True, 0.9, shared),
			_claim("b", True, 0.9, shared, "https://example.com/b"),
		])

		urls = [s.url for s in report.sources]
		assert urls.count(shared) == 1
		assert urls == [shared, "https://example.com/b"]

	def test_dedupe_keeps_first(self):
		"""Deduplication keeps the first occurrence of a URL."""
		first = Source(url="https://a.org", title="first")
		second = Source(url="https://a.org", title="second")

		assert dedupe_sources([first, second]) == [first]


class TestRecommendations:

	def test_low_accuracy_with_disputes(self):
		"""Low accuracy with disputes recommends revising claims."""
		disputed = [_claim("x", False, 0.0), _claim("y", False, 0.2)]
		recommendations = build_recommendations([], disputed, 0.0)

		assert recommendations == [
			"Content requires significant fact-checking and revision",
			"Review and revise 2 disputed claims",
			"Add more reliable sources to support questionable statements",
			"Consider adding more verifiable claims with supporting evidence",
		]

	def test_middle_accuracy(self):
		"""Middle accuracy asks for minor corrections."""
		recommendations = build_recommendations([_claim("x", True, 0.8)], [], 80.0)
		assert recommendations == ["Content needs minor factual corrections"]

	def test_high_accuracy(self):
		"""High accuracy gives the positive recommendation."""
		recommendations = build_recommendations([_claim("x", True, 0.95)], [], 95.0)
		assert recommendations == ["Content demonstrates high factual accuracy"]


class TestClaimVerifier:

	@pytest.mark.asyncio
	async def test_all_claims_verified(self):
		"""Claims verified at 0.9 confidence score 90 with reliable sources."""
		backend = FakeBackend()
		claims = ["Claim A", "Claim B", "Claim C"]

		report = await _verifier(backend).verify(claims, cycle=1)

		assert [c.statement for c in report.verified_claims] == claims
		assert report.disputed_claims == []
		assert report.accuracy_score == pytest.approx(90.0)
		assert len(backend.calls_of(StageKind.LOOKUP)) == 3
		assert len(backend.calls_of(StageKind.ANALYZE)) == 3
		assert all(s.reliability == 0.9 for s in report.sources)

	@pytest.mark.asyncio
	async def test_failed_claims_are_counted_as_disputed(self):
		"""k failing claims out of N give exactly k disputed and N-k verified."""
		claims = [f"Claim {i}" for i in range(6)]
		backend = FakeBackend(failing_claims={"Claim 1", "Claim 4"})

		report = await _verifier(backend).verify(claims, cycle=1)

		assert report.total_claims == 6
		assert len(report.disputed_claims) == 2
		assert len(report.verified_claims) == 4
		assert {c.statement for c in report.disputed_claims} == {"Claim 1", "Claim 4"}
		for claim in report.disputed_claims:
			assert claim.confidence == 0.0
			assert claim.sources == ()
			assert "lookup failed" in claim.error

	@pytest.mark.asyncio
	async def test_timed_out_claim_does_not_abort_fan_out(self):
		"""Five claims where the third times out on every attempt."""
		claims = [f"Claim {i}" for i in range(1, 6)]
		backend = FakeBackend(hanging_claims={"Claim 3"}, disputed_claims={"Claim 5"})

		report = await _verifier(backend, timeout=0.02).verify(claims, cycle=1)

		assert report.total_claims == 5
		errored = [c for c in report.disputed_claims if c.error]
		assert len(errored) == 1
		assert errored[0].statement == "Claim 3"
		assert errored[0].confidence == 0.0
		assert "timed out" in errored[0].error
		assert len(report.verified_claims) == 3
		assert len(backend.calls_of(StageKind.LOOKUP)) == 4 + 4

	@pytest.mark.asyncio
	async def test_content_disputed_claim_keeps_confidence(self):
		"""A claim disputed on content keeps its analysis confidence."""
		backend = FakeBackend(disputed_claims={"Claim B"})

		report = await _verifier(backend).verify(["Claim A", "Claim B"], cycle=2)

		assert len(report.disputed_claims) == 1
		disputed = report.disputed_claims[0]
		assert disputed.confidence == 0.3
		assert disputed.error is None
		assert len(disputed.sources) == 1

	@pytest.mark.asyncio
	async def test_analysis_failure_is_isolated(self):
		"""A failing analysis step disputes its claim instead of raising."""
		backend = FakeBackend()
		backend.fail_kinds = {StageKind.ANALYZE}

		report = await _verifier(backend).verify(["Claim A", "Claim B"], cycle=1)

		assert len(report.disputed_claims) == 2
		assert report.accuracy_score == 0.0
