"""Tests for the web API endpoints."""

import time

import pytest

from .helpers import FakeBackend, make_orchestrator

try:
	from starlette.testclient import TestClient

	from content_refinery.web.app import build_app

	HAS_WEB = True
except ImportError:
	HAS_WEB = False

pytestmark = pytest.mark.skipif(not HAS_WEB, reason="web dependencies not installed")

SETTLED = {"COMPLETED", "FAILED", "CANCELLED", "HUMAN_REVIEW"}


def _client(tmp_path, backend: FakeBackend) -> "TestClient":
	return TestClient(build_app(make_orchestrator(tmp_path, backend)))


def _wait_settled(client: "TestClient", run_id: str, timeout: float = 5.0) -> dict:
	"""Poll a run until it is terminal or waiting for review."""
	deadline = time.monotonic() + timeout
	while True:
		body = client.get(f"/api/runs/{run_id}").json()
		if body["status"] in SETTLED or time.monotonic() > deadline:
			return body
		time.sleep(0.02)


class TestRunsApi:

	def test_start_and_complete_run(self, tmp_path):
		"""POST /api/runs starts a run that completes."""
		with _client(tmp_path, FakeBackend(critique_scores=[90])) as client:
			resp = client.post("/api/runs", json={"topic": "Quantum computing", "quality_threshold": 8})
			assert resp.status_code == 201
			started = resp.json()
			assert started["status"] == "INITIALIZING"
			assert started["quality_threshold"] == 8.0

			run = _wait_settled(client, started["id"])
			assert run["status"] == "COMPLETED"
			assert run["final_score"] == 9.0
			assert run["is_terminal"] is True

			listing = client.get("/api/runs").json()
			assert listing["total"] == 1
			assert listing["runs"][0]["id"] == started["id"]

			versions = client.get(f"/api/runs/{started['id']}/versions").json()
			assert [v["cycle"] for v in versions] == [1]
			assert versions[0]["version_type"] == "INITIAL"

			executions = client.get(f"/api/runs/{started['id']}/executions").json()
			assert [e["stage"] for e in executions] == ["generation", "accuracy", "quality"]

	def test_list_filters_by_status(self, tmp_path):
		"""GET /api/runs filters by status."""
		with _client(tmp_path, FakeBackend(critique_scores=[90])) as client:
			run_id = client.post("/api/runs", json={"topic": "Edge computing"}).json()["id"]
			_wait_settled(client, run_id)

			assert client.get("/api/runs?status=completed").json()["total"] == 1
			assert client.get("/api/runs?status=FAILED").json()["total"] == 0

	def test_invalid_requests_return_400(self, tmp_path):
		"""Malformed requests return 400."""
		with _client(tmp_path, FakeBackend()) as client:
			assert client.post("/api/runs", json={"topic": ""}).status_code == 400
			assert client.post("/api/runs", json={"topic": "x", "max_cycles": 20}).status_code == 400
			assert client.post("/api/runs", json=["not", "an", "object"]).status_code == 400
			resp = client.post(
				"/api/runs", content=b"{not json", headers={"Content-Type": "application/json"},
			)
			assert resp.status_code == 400
			assert "error" in resp.json()
			assert client.get("/api/runs?limit=abc").status_code == 400
			assert client.get("/api/runs?status=SLEEPING").status_code == 400

	def test_missing_run_returns_404(self, tmp_path):
		"""Unknown run IDs return 404."""
		with _client(tmp_path, FakeBackend()) as client:
			assert client.get("/api/runs/missing").status_code == 404
			assert client.get("/api/runs/missing/versions").status_code == 404
			assert client.delete("/api/runs/missing").status_code == 404
			resp = client.post("/api/runs/missing/review", json={"decision": "ACCEPT"})
			assert resp.status_code == 404


class TestReviewApi:

	def test_review_flow(self, tmp_path):
		"""A suspended run is resumed through the review endpoint."""
		with _client(tmp_path, FakeBackend(critique_scores=[55])) as client:
			run_id = client.post("/api/runs", json={"topic": "Quantum computing", "max_cycles": 1}).json()["id"]

			run = _wait_settled(client, run_id)
			assert run["status"] == "HUMAN_REVIEW"
			assert run["human_review_required"] is True
			assert run["final_score"] == 5.5

			assert client.post(f"/api/runs/{run_id}/review", json={}).status_code == 400

			resp = client.post(
				f"/api/runs/{run_id}/review",
				json={"decision": "ACCEPT", "feedback": "Ship it"},
			)
			assert resp.status_code == 200
			assert resp.json()["status"] == "COMPLETED"

			reviews = client.get(f"/api/runs/{run_id}/reviews").json()
			assert reviews[0]["decision"] == "ACCEPT"
			assert reviews[0]["status"] == "completed"

			# Completed runs reject further reviews and cancellation
			assert client.post(f"/api/runs/{run_id}/review", json={"decision": "ACCEPT"}).status_code == 409
			assert client.delete(f"/api/runs/{run_id}").status_code == 409

	def test_cancel_suspended_run(self, tmp_path):
		"""DELETE cancels a suspended run."""
		with _client(tmp_path, FakeBackend(critique_scores=[55])) as client:
			run_id = client.post("/api/runs", json={"topic": "Quantum computing", "max_cycles": 1}).json()["id"]
			_wait_settled(client, run_id)

			resp = client.delete(f"/api/runs/{run_id}")
			assert resp.status_code == 200
			assert resp.json()["status"] == "CANCELLED"
