"""Prompt builders for the chat-completion backend."""

import json
from typing import Any

from .contracts import StageKind

SYSTEM_PROMPTS = {
	StageKind.GENERATE: (
		"You are a professional content creator specializing in business and technology topics. "
		"Generate accurate, engaging content. Keep the definition and the social post consistent, "
		"and extract key claims that can be independently fact-checked. "
		"When previous feedback is given, address every point in it."
	),
	StageKind.LOOKUP: (
		"You are a research assistant. Search the web for evidence about the claim and "
		"return the most relevant results with their title, url and a short snippet."
	),
	StageKind.ANALYZE: (
		"You are a fact-checking specialist. Analyze claims objectively based on the "
		"search results and provide accurate assessments."
	),
	StageKind.CRITIQUE: (
		"You are a professional content quality evaluator. Score coherence, engagement, "
		"accuracy and overall quality from 0 to 100 and list concrete improvements."
	),
}


def _truncate(text: str, limit: int = 200) -> str:
	return text if len(text) <= limit else text[:limit] + "..."


def generation_prompt(payload: dict[str, Any]) -> str:
	lines = [f'Generate comprehensive content about the topic: "{payload["topic"]}".']

	feedback = payload.get("previous_feedback")
	if feedback:
		lines.append("")
		lines.append(f"Previous feedback for improvement: {feedback}")
		lines.append("Please address this feedback in your new content.")

	previous = payload.get("previous_artifact")
	if previous:
		lines.append("")
		lines.append("Previous content for reference:")
		lines.append(f"Definition: {_truncate(previous['definition'])}")
		lines.append(f"Social post: {_truncate(previous['social_post'])}")

	lines.extend([
		"",
		"Please provide:",
		"1. A comprehensive definition (150-300 words) explaining the topic clearly",
		"2. A professional social media post (100-200 words) with an engaging tone",
		"3. An image prompt for a visual representation (20-50 words)",
		"4. 3-5 key claims that can be fact-checked",
		f"This is cycle {payload['cycle']} of {payload['max_cycles']}.",
	])
	return "\n".join(lines)


def lookup_prompt(payload: dict[str, Any]) -> str:
	return f'Find sources that confirm or refute this claim: "{payload["claim"]}"'


def analysis_prompt(payload: dict[str, Any]) -> str:
	results = json.dumps(payload.get("results", [])[:5])
	return (
		"Analyze the accuracy of the following claim based on the provided search results.\n\n"
		f'Claim: "{payload["claim"]}"\n'
		f"Search results: {results}\n\n"
		"Report whether the claim is verified, a confidence between 0 and 1, "
		"the supporting or contradicting evidence, and the sources you relied on."
	)


def critique_prompt(payload: dict[str, Any]) -> str:
	artifact = payload["artifact"]
	report = payload["accuracy_report"]
	return (
		f"Evaluate the following content (cycle {payload['cycle']}).\n\n"
		f"Definition: {artifact['definition']}\n\n"
		f"Social post: {artifact['social_post']}\n\n"
		f"Image prompt: {artifact['image_prompt']}\n\n"
		f"Fact-check accuracy score: {report['accuracy_score']:.1f}/100 "
		f"({len(report['verified_claims'])} verified, {len(report['disputed_claims'])} disputed).\n"
		f"Fact-check recommendations: {'; '.join(report['recommendations']) or 'none'}\n\n"
		"Target each improvement at one of: definition, social_post, image_prompt, general."
	)


USER_PROMPTS = {
	StageKind.GENERATE: generation_prompt,
	StageKind.LOOKUP: lookup_prompt,
	StageKind.ANALYZE: analysis_prompt,
	StageKind.CRITIQUE: critique_prompt,
}


def build_messages(kind: StageKind, payload: dict[str, Any]) -> list[dict[str, str]]:
	"""System and user messages for a stage call."""
	return [
		{"role": "system", "content": SYSTEM_PROMPTS[kind]},
		{"role": "user", "content": USER_PROMPTS[kind](payload)},
	]
