"""
Claim Verifier - per-claim fact checking fanned out across workers.

Key Principle: one bad claim never aborts fact-checking of the others.
A claim whose lookup or analysis gives up is recorded as disputed with
zero confidence, and the report is only built once every claim is done.
"""

import logging
from typing import Optional
from urllib.parse import urlparse

from ..runs.models import AccuracyReport, Claim, Source
from ..stages.client import StageClient
from ..stages.contracts import AnalysisRequest, LookupRequest, SearchResult, StageKind
from .fanout import FanOut

logger = logging.getLogger(__name__)

HIGH_RELIABILITY = 0.9
DEFAULT_RELIABILITY = 0.6

# Encyclopedic, major news and scientific publishers
RELIABLE_DOMAINS = (
	"wikipedia.org",
	"bbc.com", "cnn.com", "reuters.com", "ap.org",
	"nature.com", "science.org", "ieee.org", "acm.org",
)
# Government and education labels (example.gov, gov.uk, mit.edu, unsw.edu.au)
RELIABLE_LABELS = frozenset({"gov", "edu"})


def source_reliability(url: str) -> float:
	"""Fixed reliability weight for a source URL."""
	try:
		hostname = (urlparse(url).hostname or "").lower()
	except ValueError:
		return DEFAULT_RELIABILITY
	if not hostname:
		return DEFAULT_RELIABILITY

	for domain in RELIABLE_DOMAINS:
		if hostname == domain or hostname.endswith("." + domain):
			return HIGH_RELIABILITY
	if RELIABLE_LABELS.intersection(hostname.split(".")):
		return HIGH_RELIABILITY
	return DEFAULT_RELIABILITY


def dedupe_sources(sources: list[Source]) -> list[Source]:
	"""Keep the first source seen for each URL."""
	seen: set[str] = set()
	unique = []
	for source in sources:
		if source.url in seen:
			continue
		seen.add(source.url)
		unique.append(source)
	return unique


def build_recommendations(
	verified: list[Claim], disputed: list[Claim], accuracy_score: float,
) -> list[str]:
	recommendations = []

	if accuracy_score < 70:
		recommendations.append("Content requires significant fact-checking and revision")
	elif accuracy_score < 85:
		recommendations.append("Content needs minor factual corrections")

	if disputed:
		recommendations.append(f"Review and revise {len(disputed)} disputed claims")
		recommendations.append("Add more reliable sources to support questionable statements")

	if not verified:
		recommendations.append("Consider adding more verifiable claims with supporting evidence")

	if accuracy_score > 90:
		recommendations.append("Content demonstrates high factual accuracy")

	return recommendations


def aggregate(claims: list[Claim]) -> AccuracyReport:
	"""Build the accuracy report from every claim of a cycle."""
	verified = [c for c in claims if c.is_verified]
	disputed = [c for c in claims if not c.is_verified]

	total_confidence = sum(c.confidence for c in verified)
	accuracy_score = (total_confidence / len(claims)) * 100 if claims else 0.0
	confidence_score = total_confidence / len(verified) if verified else 0.0

	return AccuracyReport(
		accuracy_score=min(accuracy_score, 100.0),
		verified_claims=verified,
		disputed_claims=disputed,
		sources=dedupe_sources([s for c in claims for s in c.sources]),
		recommendations=build_recommendations(verified, disputed, accuracy_score),
		confidence_score=min(confidence_score, 1.0),
	)


def _errored_claim(statement: str, error: Optional[str]) -> Claim:
	return Claim(statement=statement, is_verified=False, confidence=0.0, error=error or "verification failed")


class ClaimVerifier:
	"""
	Verifies a cycle's claims concurrently.

	Each claim is a LOOKUP call followed by an ANALYZE call through the
	stage client; at most max_concurrency claims are in flight.
	"""

	def __init__(self, client: StageClient, max_concurrency: int = 4):
		self.client = client
		self.fanout: FanOut[str, Claim] = FanOut(max_concurrency=max_concurrency)

	async def verify_claim(self, statement: str) -> Claim:
		"""Verify one claim. Stage failures produce a disputed claim."""
		lookup = await self.client.invoke(StageKind.LOOKUP, LookupRequest(claim=statement))
		if not lookup.success:
			logger.warning(f"Lookup failed for claim '{statement[:50]}': {lookup.error}")
			return _errored_claim(statement, str(lookup.error))

		analysis = await self.client.invoke(
			StageKind.ANALYZE,
			AnalysisRequest(claim=statement, results=lookup.value.results),
		)
		if not analysis.success:
			logger.warning(f"Analysis failed for claim '{statement[:50]}': {analysis.error}")
			return _errored_claim(statement, str(analysis.error))

		result = analysis.value
		return Claim(
			statement=statement,
			is_verified=result.is_verified,
			confidence=result.confidence,
			sources=tuple(self._to_source(s) for s in result.sources),
		)

	@staticmethod
	def _to_source(result: SearchResult) -> Source:
		return Source(
			title=result.title,
			url=result.url,
			snippet=result.snippet,
			reliability=source_reliability(result.url),
		)

	async def verify(self, claims: list[str], cycle: int) -> AccuracyReport:
		"""
		Fact-check all claims of a cycle.

		Args:
			claims: Claim statements from the cycle's artifact
			cycle: Cycle number, for logging

		Returns:
			AccuracyReport built after every claim finished
		"""
		logger.info(f"Verifying {len(claims)} claims for cycle {cycle}")
		summary = await self.fanout.run(claims, self.verify_claim)

		verified_claims = [
			r.result if r.success else _errored_claim(r.item, r.error)
			for r in summary.results
		]
		report = aggregate(verified_claims)

		logger.info(
			f"Cycle {cycle} accuracy: {report.accuracy_score:.1f} "
			f"({len(report.verified_claims)} verified, {len(report.disputed_claims)} disputed, "
			f"{len(report.sources)} sources)"
		)
		return report
