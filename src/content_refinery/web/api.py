"""JSON API endpoints for driving and inspecting refinement runs."""

from __future__ import annotations

import json

from starlette.requests import Request
from starlette.responses import JSONResponse

from ..errors import InvalidRequestError
from ..orchestrator.engine import RefinementOrchestrator, to_view


def get_orchestrator(request: Request) -> RefinementOrchestrator:
	"""Get the orchestrator from app state."""
	return request.app.state.orchestrator


async def _json_body(request: Request) -> dict:
	try:
		body = await request.json()
	except json.JSONDecodeError:
		raise InvalidRequestError("Request body must be valid JSON") from None
	if not isinstance(body, dict):
		raise InvalidRequestError("Request body must be a JSON object")
	return body


def _int_param(request: Request, name: str, default: int) -> int:
	raw = request.query_params.get(name)
	if raw is None:
		return default
	try:
		return int(raw)
	except ValueError:
		raise InvalidRequestError(f"Query parameter '{name}' must be an integer") from None


async def api_start_run(request: Request) -> JSONResponse:
	"""Start a run: {topic, max_cycles?, quality_threshold?}."""
	body = await _json_body(request)
	run = await get_orchestrator(request).start_run(
		body.get("topic", ""),
		max_cycles=body.get("max_cycles"),
		quality_threshold=body.get("quality_threshold"),
	)
	return JSONResponse(to_view(run), status_code=201)


async def api_runs(request: Request) -> JSONResponse:
	"""Page of runs, newest first, with optional status filter."""
	runs, total = await get_orchestrator(request).list_runs(
		status=request.query_params.get("status") or None,
		limit=_int_param(request, "limit", 20),
		offset=_int_param(request, "offset", 0),
	)
	return JSONResponse({"runs": [to_view(r) for r in runs], "total": total})


async def api_run_detail(request: Request) -> JSONResponse:
	run = await get_orchestrator(request).get_run(request.path_params["id"])
	return JSONResponse(to_view(run))


async def api_cancel_run(request: Request) -> JSONResponse:
	run = await get_orchestrator(request).cancel_run(request.path_params["id"])
	return JSONResponse(to_view(run))


async def api_review(request: Request) -> JSONResponse:
	"""Submit a human review: {decision, feedback?, field_overrides?}."""
	body = await _json_body(request)
	if "decision" not in body:
		raise InvalidRequestError("decision is required")
	run = await get_orchestrator(request).submit_human_review(
		request.path_params["id"],
		body["decision"],
		feedback=body.get("feedback"),
		field_overrides=body.get("field_overrides"),
	)
	return JSONResponse(to_view(run))


async def api_versions(request: Request) -> JSONResponse:
	"""Stored artifact versions in cycle order."""
	versions = await get_orchestrator(request).list_artifact_versions(request.path_params["id"])
	return JSONResponse([v.model_dump(mode="json") for v in versions])


async def api_reviews(request: Request) -> JSONResponse:
	reviews = await get_orchestrator(request).list_reviews(request.path_params["id"])
	return JSONResponse([r.model_dump(mode="json") for r in reviews])


async def api_executions(request: Request) -> JSONResponse:
	executions = await get_orchestrator(request).list_stage_executions(request.path_params["id"])
	return JSONResponse([e.model_dump(mode="json") for e in executions])
