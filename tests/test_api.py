"""Tests for the HTTP API."""

import json
import os
import random
import tempfile

import pytest
from fastapi.testclient import TestClient

from launchready.api import create_app
from launchready.config import AppConfig, AuditConfig
from launchready.engine import AssessmentEngine
from launchready.models import GithubSignals
from launchready.scanner import RepoUnreachable
from launchready.store import StorageError


class FakeNarrator:
    async def complete(self, messages):
        return "**Launch Readiness Verdict**\n\nLooks stable."


class ExplodingStore:
    def create(self, session):
        raise StorageError("read-only filesystem")

    def get(self, session_id):
        raise StorageError("read-only filesystem")


@pytest.fixture
def tmpdir_path():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


def _client(tmpdir, repo=None, store=None):
    config = AppConfig(
        store_path=os.path.join(tmpdir, "sessions.jsonl"),
        audit=AuditConfig(enabled=False),
    )

    async def load_runner(url, options):
        return {
            "metrics": {
                "http_reqs": {"count": 300, "rate": 10.0},
                "http_req_duration": {"avg": 120.0, "med": 100.0, "p(95)": 180.0},
                "http_req_failed": {"value": 0.0},
            }
        }

    async def repo_scanner(url):
        if isinstance(repo, Exception):
            raise repo
        return repo or GithubSignals(framework="Express")

    engine = AssessmentEngine(
        config,
        store=store,
        load_runner=load_runner,
        repo_scanner=repo_scanner,
        narrator=FakeNarrator(),
        rng=random.Random(0),
    )
    return TestClient(create_app(config, engine))


class TestHealth:
    def test_health(self, tmpdir_path):
        resp = _client(tmpdir_path).get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestLoadTest:
    def test_create_and_fetch(self, tmpdir_path):
        client = _client(tmpdir_path)
        resp = client.post("/api/load-test", json={"target_url": "https://example.com"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["stored"] is True
        assert body["storage_error"] is None
        assert body["metrics"]["total_requests"] == 300
        assert body["narrative_message"].startswith("**Launch Readiness Verdict**")

        fetched = client.get(f"/api/load-test/{body['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["id"] == body["id"]

    def test_no_inputs(self, tmpdir_path):
        resp = _client(tmpdir_path).post("/api/load-test", json={})
        assert resp.status_code == 400

    def test_unknown_session(self, tmpdir_path):
        resp = _client(tmpdir_path).get("/api/load-test/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Report not found"

    def test_storage_failure(self, tmpdir_path):
        client = _client(tmpdir_path, store=ExplodingStore())
        resp = client.post("/api/load-test", json={"target_url": "https://example.com"})
        assert resp.status_code == 200
        assert resp.json()["stored"] is False
        assert "read-only" in resp.json()["storage_error"]
        assert client.get("/api/load-test/anything").status_code == 500

    def test_malformed_stored_record(self, tmpdir_path):
        with open(os.path.join(tmpdir_path, "sessions.jsonl"), "w") as f:
            f.write(json.dumps({"id": "broken"}) + "\n")
        resp = _client(tmpdir_path).get("/api/load-test/broken")
        assert resp.status_code == 500
        assert "malformed" in resp.json()["detail"]


class TestGithubTest:
    def test_scan(self, tmpdir_path):
        resp = _client(tmpdir_path).post(
            "/api/github-test", json={"repo_url": "https://github.com/octo/app"}
        )
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert resp.json()["metrics"]["framework"] == "Express"

    def test_rejects_non_github_url(self, tmpdir_path):
        resp = _client(tmpdir_path).post(
            "/api/github-test", json={"repo_url": "https://example.com/a/b"}
        )
        assert resp.status_code == 400

    def test_unreachable_repo(self, tmpdir_path):
        client = _client(tmpdir_path, repo=RepoUnreachable("git clone failed: not found"))
        resp = client.post("/api/github-test", json={"repo_url": "https://github.com/octo/missing"})
        assert resp.status_code == 502
        assert "not found" in resp.json()["detail"]
