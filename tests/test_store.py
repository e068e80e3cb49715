"""Tests for session storage."""

import json
import os
import tempfile

import pytest

from launchready.models import (
    BusinessInsights,
    ChartSeries,
    CicdRisk,
    GithubSignals,
    HealthSlice,
    Latency,
    Metrics,
    ScoreBreakdown,
    TestSession,
)
from launchready.store import SessionStore, StorageError, session_to_dict


def _session(session_id="abc123", github=None):
    metrics = Metrics(
        throughput=12.5,
        total_requests=100,
        failure_rate_under_test=0.1,
        server_error_rate=0.05,
        latency=Latency(p50=90.0, p95=150.0, p99=300.0, avg=100.0, max=900.0),
        vus=10,
        duration=10000,
    )
    return TestSession(
        id=session_id,
        target_url="https://example.com",
        repo_url=None,
        metrics=metrics,
        chart_series=ChartSeries(labels=["p50"], values=[90.0]),
        health_series=[HealthSlice(name="ok", value=100.0, color="#000")],
        github=github,
        browser_audit=None,
        business_insights=BusinessInsights(
            score_breakdown=ScoreBreakdown(performance=0, architecture=50, devops=20),
            stability_risk_score=23,
            conversion_loss=0.7,
            ad_spend_risk=45.0,
            collapse_point=9,
            remediations=["Do something (expected: better)"],
            cicd_risk=CicdRisk(severity="high", consequence="c", details="d"),
        ),
        narrative_message="verdict",
        created_at="2026-01-01T00:00:00Z",
        branch_status={"load": "ok", "repo": "skipped", "audit": "failed"},
        transcript=[{"role": "bot", "content": "verdict"}],
    )


class TestCreateAndGet:
    def test_round_trip(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = SessionStore(os.path.join(tmpdir, "sessions.jsonl"))
            session = _session(github=GithubSignals(framework="Express"))
            store.create(session)
            assert store.get("abc123") == session

    def test_creates_parent_directories(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "nested", "dir", "sessions.jsonl")
            SessionStore(path).create(_session())
            assert os.path.isfile(path)

    def test_append_only(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "sessions.jsonl")
            store = SessionStore(path)
            store.create(_session("one"))
            store.create(_session("two"))
            with open(path, "r") as f:
                ids = [json.loads(line)["id"] for line in f]
            assert ids == ["one", "two"]
            assert store.get("two").id == "two"

    def test_unknown_id(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = SessionStore(os.path.join(tmpdir, "sessions.jsonl"))
            assert store.get("missing") is None
            store.create(_session())
            assert store.get("missing") is None

    def test_malformed_lines_skipped(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "sessions.jsonl")
            with open(path, "w") as f:
                f.write("{bad json\n\n")
                f.write(json.dumps(session_to_dict(_session())) + "\n")
            assert SessionStore(path).get("abc123") is not None


class TestStorageErrors:
    @pytest.mark.parametrize(
        "record",
        [
            {"id": "abc123"},
            {"id": "abc123", "business_insights": {"score_breakdown": "x"}},
            {"id": "abc123", "metrics": {"latency": {"p42": 1}}, "business_insights": {}},
        ],
    )
    def test_malformed_record_with_matching_id(self, record):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "sessions.jsonl")
            with open(path, "w") as f:
                f.write(json.dumps(record) + "\n")
            with pytest.raises(StorageError, match="malformed"):
                SessionStore(path).get("abc123")


    def test_unwritable_path(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            # the store path is an existing directory
            store = SessionStore(tmpdir)
            with pytest.raises(StorageError, match="abc123"):
                store.create(_session())
