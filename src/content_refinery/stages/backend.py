"""HTTP capability backend for OpenAI-compatible chat completion services."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

import httpx

from ..config import Config
from .contracts import StageKind, response_model
from .prompts import build_messages

logger = logging.getLogger(__name__)

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL)
_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


class BackendResponseError(Exception):
	"""Raised when the service answers with something that is not JSON."""
	pass


def parse_json_content(content: Optional[str]) -> dict[str, Any]:
	"""Extract the JSON object from a chat completion message body."""
	if not content:
		raise BackendResponseError("Empty completion content")
	text = _THINK_BLOCK.sub("", content).strip()
	text = _CODE_FENCE.sub("", text).strip()
	try:
		data = json.loads(text)
	except json.JSONDecodeError as e:
		raise BackendResponseError(f"Completion is not valid JSON: {e}") from e
	if not isinstance(data, dict):
		raise BackendResponseError(f"Expected a JSON object, got {type(data).__name__}")
	return data


class HttpCapabilityBackend:
	"""
	Capability set served by a chat completions endpoint.

	Every stage kind is one structured-output completion; LOOKUP also turns
	on the service's web search. The httpx client is opened by start() and
	released by close().
	"""

	def __init__(
		self,
		base_url: str,
		api_key: str = "",
		model: str = "llama-3.3-70b",
		temperature: float = 0.7,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	):
		self.base_url = base_url.rstrip("/")
		self.api_key = api_key
		self.model = model
		self.temperature = temperature
		self._transport = transport
		self._client: Optional[httpx.AsyncClient] = None

	@classmethod
	def from_config(cls, config: Config) -> HttpCapabilityBackend:
		return cls(
			base_url=config.api_base_url,
			api_key=config.api_key,
			model=config.model,
			temperature=config.temperature,
		)

	def _headers(self) -> dict[str, str]:
		headers = {"Content-Type": "application/json"}
		if self.api_key:
			headers["Authorization"] = f"Bearer {self.api_key}"
		return headers

	async def start(self) -> None:
		if self._client is None:
			# Per-call deadlines are enforced by the stage client
			self._client = httpx.AsyncClient(
				base_url=self.base_url,
				headers=self._headers(),
				timeout=None,
				transport=self._transport,
			)

	async def close(self) -> None:
		if self._client is not None:
			await self._client.aclose()
			self._client = None

	def build_request(self, kind: StageKind, payload: dict[str, Any]) -> dict[str, Any]:
		"""Chat completion body for a stage call."""
		body: dict[str, Any] = {
			"model": self.model,
			"messages": build_messages(kind, payload),
			"temperature": self.temperature,
			"response_format": {
				"type": "json_schema",
				"json_schema": {
					"name": f"{kind.value}_response",
					"strict": False,
					"schema": response_model(kind).model_json_schema(),
				},
			},
		}
		if kind == StageKind.LOOKUP:
			body["venice_parameters"] = {
				"enable_web_search": "on",
				"enable_web_citations": True,
			}
		return body

	async def call(self, kind: StageKind, payload: dict[str, Any]) -> dict[str, Any]:
		if self._client is None:
			raise RuntimeError("HttpCapabilityBackend.start() has not been called")

		response = await self._client.post("/chat/completions", json=self.build_request(kind, payload))
		response.raise_for_status()
		data = response.json()

		choices = data.get("choices") or []
		if not choices:
			raise BackendResponseError("Completion has no choices")
		usage = data.get("usage") or {}
		logger.debug(f"{kind.value} completion used {usage.get('total_tokens', '?')} tokens")
		return parse_json_content(choices[0].get("message", {}).get("content"))
