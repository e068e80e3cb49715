"""Append-only session storage in JSONL format."""

import json
import os
from dataclasses import asdict
from typing import Optional

from launchready.models import (
    BrowserAudit,
    BusinessInsights,
    ChartSeries,
    CicdRisk,
    CicdSignals,
    DockerSignals,
    GithubSignals,
    HealthSlice,
    KubernetesSignals,
    Latency,
    Metrics,
    RepoSummary,
    ScoreBreakdown,
    TestSession,
)


class StorageError(Exception):
    """Raised when a session cannot be written or read."""


class SessionStore:
    """Keyed-by-id session persistence backed by one JSONL file.

    Sessions are only ever appended; there is no update or delete path.
    """

    def __init__(self, path: str):
        self.path = path

    def create(self, session: TestSession) -> None:
        """Append a session as a single JSONL line.

        Creates the file (and parent directories) if it does not exist.

        Raises:
            StorageError: If the session cannot be written.
        """
        try:
            line = json.dumps(session_to_dict(session))
            parent = os.path.dirname(self.path)
            if parent and not os.path.isdir(parent):
                os.makedirs(parent, exist_ok=True)
            with open(self.path, "a") as f:
                f.write(line + "\n")
        except (OSError, TypeError, ValueError) as exc:
            raise StorageError(f"failed to store session {session.id}: {exc}") from exc

    def get(self, session_id: str) -> Optional[TestSession]:
        """Return the session with the given id, or None. Malformed lines are skipped."""
        if not os.path.isfile(self.path):
            return None
        try:
            with open(self.path, "r") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        raw = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if isinstance(raw, dict) and raw.get("id") == session_id:
                        return session_from_dict(raw)
        except OSError as exc:
            raise StorageError(f"failed to read sessions: {exc}") from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError(f"stored session {session_id} is malformed: {exc}") from exc
        return None


def session_to_dict(session: TestSession) -> dict:
    return asdict(session)


def session_from_dict(raw: dict) -> TestSession:
    """Rebuild a TestSession from its stored dict form."""
    return TestSession(
        id=raw["id"],
        target_url=raw.get("target_url"),
        repo_url=raw.get("repo_url"),
        metrics=metrics_from_dict(raw.get("metrics") or {}),
        chart_series=ChartSeries(**(raw.get("chart_series") or {})),
        health_series=[HealthSlice(**s) for s in raw.get("health_series", [])],
        github=_github_from_dict(raw.get("github")),
        browser_audit=BrowserAudit(**raw["browser_audit"]) if raw.get("browser_audit") else None,
        business_insights=_insights_from_dict(raw["business_insights"]),
        narrative_message=raw.get("narrative_message", ""),
        created_at=raw.get("created_at", ""),
        branch_status=raw.get("branch_status", {}),
        transcript=raw.get("transcript", []),
    )


def metrics_from_dict(raw: dict) -> Metrics:
    return Metrics(
        throughput=raw.get("throughput", 0.0),
        total_requests=raw.get("total_requests", 0),
        failure_rate_under_test=raw.get("failure_rate_under_test", 0.0),
        server_error_rate=raw.get("server_error_rate", 0.0),
        latency=Latency(**(raw.get("latency") or {})),
        vus=raw.get("vus", 0),
        duration=raw.get("duration"),
    )


def _github_from_dict(raw: Optional[dict]) -> Optional[GithubSignals]:
    if not raw:
        return None
    return GithubSignals(
        framework=raw.get("framework", "Unknown"),
        database=raw.get("database", "Unknown"),
        has_start_script=raw.get("has_start_script", False),
        dependency_count=raw.get("dependency_count", 0),
        docker=DockerSignals(**(raw.get("docker") or {})),
        kubernetes=KubernetesSignals(**(raw.get("kubernetes") or {})),
        cicd=CicdSignals(**(raw.get("cicd") or {})),
        issues=raw.get("issues", []),
        summary=RepoSummary(**(raw.get("summary") or {})),
    )


def _insights_from_dict(raw: dict) -> BusinessInsights:
    cicd_risk = raw.get("cicd_risk")
    return BusinessInsights(
        score_breakdown=ScoreBreakdown(**raw["score_breakdown"]),
        stability_risk_score=raw["stability_risk_score"],
        conversion_loss=raw.get("conversion_loss"),
        ad_spend_risk=raw.get("ad_spend_risk"),
        collapse_point=raw.get("collapse_point"),
        remediations=raw.get("remediations", []),
        cicd_risk=CicdRisk(**cicd_risk) if cicd_risk else None,
    )
