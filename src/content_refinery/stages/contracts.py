"""
Stage contracts - request/response models for every external capability.

Each StageKind maps to one request model and one response model. The stage
client validates responses against the registered model, so a backend only
has to return plain JSON-compatible dicts.
"""

import re
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from ..runs.models import AccuracyReport, ContentArtifact, QualityReport


class StageKind(str, Enum):
	"""External capability calls made by the pipeline."""
	GENERATE = "generate"
	LOOKUP = "lookup"
	ANALYZE = "analyze"
	CRITIQUE = "critique"


class GenerationRequest(BaseModel):
	topic: str
	cycle: int = Field(ge=1)
	max_cycles: int = Field(ge=1)
	previous_feedback: Optional[str] = None
	previous_artifact: Optional[ContentArtifact] = None


def _normalize_key(key: str) -> str:
	return re.sub(r"[\s_-]+", "", key).lower()


# Accepted spellings for each generated field, normalized
_GENERATION_ALIASES = {
	"definition": ("definition", "summary", "overview"),
	"social_post": ("socialpost", "linkedinpost", "linkedin", "post"),
	"image_prompt": ("imageprompt", "prompt", "image"),
	"claims": ("claims", "keyclaims", "bullets", "points"),
	"image_url": ("imageurl",),
}


class GeneratedContent(BaseModel):
	"""Raw generator output before it becomes a ContentArtifact."""
	definition: str = Field(min_length=1)
	social_post: str = Field(min_length=1)
	image_prompt: str = Field(min_length=1)
	claims: list[str] = Field(min_length=1)
	image_url: Optional[str] = None

	@model_validator(mode="before")
	@classmethod
	def _pick_aliases(cls, data: Any) -> Any:
		if not isinstance(data, dict):
			return data
		normalized = {_normalize_key(str(k)): v for k, v in data.items()}
		picked = {}
		for field_name, aliases in _GENERATION_ALIASES.items():
			for alias in aliases:
				if normalized.get(alias) is not None:
					picked[field_name] = normalized[alias]
					break
		return picked

	def to_artifact(self, cycle: int, topic: str) -> ContentArtifact:
		return ContentArtifact(
			cycle=cycle,
			definition=self.definition,
			social_post=self.social_post,
			image_prompt=self.image_prompt,
			image_url=self.image_url,
			claims=[c.strip() for c in self.claims if c and c.strip()],
			metadata={"topic": topic, "cycle": cycle},
		)


class SearchResult(BaseModel):
	title: str = ""
	url: str
	snippet: str = ""


class LookupRequest(BaseModel):
	claim: str


class LookupResponse(BaseModel):
	results: list[SearchResult] = Field(default_factory=list)


class AnalysisRequest(BaseModel):
	claim: str
	results: list[SearchResult] = Field(default_factory=list)


class ClaimAnalysis(BaseModel):
	is_verified: bool
	confidence: float = Field(ge=0.0, le=1.0)
	evidence: str = ""
	sources: list[SearchResult] = Field(default_factory=list)


class CritiqueRequest(BaseModel):
	artifact: ContentArtifact
	accuracy_report: AccuracyReport
	cycle: int = Field(ge=1)


STAGE_CONTRACTS: dict[StageKind, tuple[type[BaseModel], type[BaseModel]]] = {
	StageKind.GENERATE: (GenerationRequest, GeneratedContent),
	StageKind.LOOKUP: (LookupRequest, LookupResponse),
	StageKind.ANALYZE: (AnalysisRequest, ClaimAnalysis),
	StageKind.CRITIQUE: (CritiqueRequest, QualityReport),
}


def response_model(kind: StageKind) -> type[BaseModel]:
	"""Response model registered for a stage kind."""
	return STAGE_CONTRACTS[kind][1]
