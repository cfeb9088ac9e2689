"""Web API for content-refinery runs."""

from __future__ import annotations

from ..config import Config


def create_app(config: Config) -> object:
	"""Create the Starlette ASGI application for a config."""
	from ..orchestrator.engine import RefinementOrchestrator
	from .app import build_app

	return build_app(RefinementOrchestrator.from_config(config))


def run_web_server(config: Config, host: str = "127.0.0.1", port: int = 8420) -> None:
	"""Run the API server until interrupted."""
	import uvicorn

	app = create_app(config)
	print(f"API running at http://{host}:{port}/api/runs")
	print("Press Ctrl+C to stop.")
	uvicorn.run(app, host=host, port=port, log_level="warning")
