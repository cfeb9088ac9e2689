"""Starlette app with route assembly."""

from __future__ import annotations

import contextlib
import logging
from typing import AsyncIterator

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..errors import InvalidRequestError, RunNotFoundError, StateConflictError
from ..orchestrator.engine import RefinementOrchestrator
from .api import (
	api_cancel_run,
	api_executions,
	api_review,
	api_reviews,
	api_run_detail,
	api_runs,
	api_start_run,
	api_versions,
)

logger = logging.getLogger(__name__)


async def _invalid_request(request: Request, exc: Exception) -> JSONResponse:
	return JSONResponse({"error": str(exc)}, status_code=400)


async def _not_found(request: Request, exc: Exception) -> JSONResponse:
	return JSONResponse({"error": str(exc)}, status_code=404)


async def _conflict(request: Request, exc: Exception) -> JSONResponse:
	return JSONResponse({"error": str(exc)}, status_code=409)


def build_app(orchestrator: RefinementOrchestrator, recover: bool = True) -> Starlette:
	"""
	Build and return the Starlette ASGI app.

	The orchestrator is started and shut down with the app lifespan; with
	recover=True interrupted runs are resumed on startup.
	"""

	@contextlib.asynccontextmanager
	async def lifespan(app: Starlette) -> AsyncIterator[None]:
		await orchestrator.start()
		if recover:
			resumed = await orchestrator.recover_runs()
			if resumed:
				logger.info(f"Resumed {len(resumed)} interrupted run(s)")
		try:
			yield
		finally:
			await orchestrator.shutdown()

	routes = [
		Route("/api/runs", api_runs, methods=["GET"]),
		Route("/api/runs", api_start_run, methods=["POST"]),
		Route("/api/runs/{id}", api_run_detail, methods=["GET"]),
		Route("/api/runs/{id}", api_cancel_run, methods=["DELETE"]),
		Route("/api/runs/{id}/versions", api_versions, methods=["GET"]),
		Route("/api/runs/{id}/reviews", api_reviews, methods=["GET"]),
		Route("/api/runs/{id}/executions", api_executions, methods=["GET"]),
		Route("/api/runs/{id}/review", api_review, methods=["POST"]),
	]

	app = Starlette(
		routes=routes,
		lifespan=lifespan,
		exception_handlers={
			InvalidRequestError: _invalid_request,
			RunNotFoundError: _not_found,
			StateConflictError: _conflict,
		},
	)
	app.state.orchestrator = orchestrator
	return app
