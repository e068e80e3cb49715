"""DevOps readiness and business impact scoring."""

import math
import random
from typing import List, Optional

from launchready.config import ScoringConfig
from launchready.models import (
    BrowserAudit,
    BusinessInsights,
    CicdRisk,
    GithubSignals,
    Metrics,
    RepoSummary,
    ScoreBreakdown,
)


CICD_RISK_CONSEQUENCE = (
    "Every release is deployed by hand, so a single bad change can reach "
    "customers without any automated safety check."
)
CICD_RISK_DETAILS = (
    "No CI/CD pipeline was detected in the repository. Without automated "
    "builds and tests, regressions are found by users instead of before "
    "launch, and recovering from a broken release depends on manual work."
)

_FAILURE_PHRASES = (
    "Stabilize failing requests by adding retries with backoff and circuit breakers on upstream calls",
    "Eliminate request failures by fixing server-side exceptions and enforcing timeouts on dependencies",
    "Harden the request path against errors before launch by isolating unstable upstream services",
)
_LATENCY_PHRASES = (
    "Cache hot responses and trim payloads to bring p95 latency under {target:.0f} ms",
    "Profile the slowest endpoints and move heavy work off the request path to reach p95 under {target:.0f} ms",
    "Add indexes for the slowest queries to cut p95 latency below {target:.0f} ms",
)
_THROUGHPUT_PHRASES = (
    "Scale out behind a load balancer to raise capacity toward {target:.0f} req/s",
    "Add horizontal replicas and connection pooling to reach {target:.0f} req/s",
    "Tune worker concurrency and keep-alive settings to reach {target:.0f} req/s",
)
_CICD_PHRASES = (
    "Add a CI/CD pipeline that builds and tests every change before deploy",
    "Automate builds, tests and deploys with a CI/CD workflow",
)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def summarize_signals(
    signals: GithubSignals, config: Optional[ScoringConfig] = None
) -> RepoSummary:
    """Compute the DevOps score, production readiness and risk level.

    Each of the four signals contributes its full weight or nothing.
    """
    config = config or ScoringConfig()
    score = (
        (config.docker_weight if signals.docker.present else 0)
        + (config.cicd_weight if signals.cicd.present else 0)
        + (config.kubernetes_weight if signals.kubernetes.present else 0)
        + (config.start_script_weight if signals.has_start_script else 0)
    )
    production_ready = (
        signals.has_start_script and signals.docker.present and signals.cicd.present
    )
    if score >= config.low_risk_threshold:
        risk_level = "low"
    elif score >= config.medium_risk_threshold:
        risk_level = "medium"
    else:
        risk_level = "high"
    return RepoSummary(
        devops_score=score,
        production_ready=production_ready,
        risk_level=risk_level,
    )


def conversion_loss(avg_latency_ms: float, config: ScoringConfig) -> float:
    return round(avg_latency_ms / 1000.0 * config.conversion_loss_per_second, 2)


def ad_spend_risk(metrics: Metrics, config: ScoringConfig) -> float:
    return round(
        metrics.failure_rate_under_test
        * metrics.throughput
        * config.per_request_value
        * config.peak_window_seconds,
        2,
    )


def performance_score(metrics: Metrics, config: ScoringConfig) -> int:
    if not metrics.has_traffic:
        return 0
    avg = metrics.latency.avg or 0.0
    raw = (
        100
        - config.failure_penalty * metrics.failure_rate_under_test
        - avg / config.latency_penalty_divisor
    )
    return min(100, max(0, round_half_up(raw)))


def architecture_score(audit: Optional[BrowserAudit], config: ScoringConfig) -> int:
    if audit is None:
        return config.neutral_architecture_score
    return round_half_up((audit.performance + audit.best_practices) / 2)


def devops_component(github: Optional[GithubSignals], config: ScoringConfig) -> int:
    if github is None:
        return config.missing_devops_score
    return github.summary.devops_score


def collapse_point(metrics: Metrics, config: ScoringConfig) -> int:
    """Projected VU count at which the target fails.

    Targets already failing above the threshold are projected to collapse
    just under the tested load; healthy ones to tolerate a multiple of it.
    """
    if metrics.failure_rate_under_test > config.collapse_failure_threshold:
        multiplier = config.collapse_degraded_multiplier
    else:
        multiplier = config.collapse_healthy_multiplier
    return round_half_up(metrics.vus * multiplier)


def cicd_risk(github: Optional[GithubSignals]) -> Optional[CicdRisk]:
    # a missing repository is not evidence of a missing pipeline
    if github is None or github.cicd.present:
        return None
    return CicdRisk(
        severity="high",
        consequence=CICD_RISK_CONSEQUENCE,
        details=CICD_RISK_DETAILS,
    )


def build_remediations(
    metrics: Metrics,
    github: Optional[GithubSignals],
    config: ScoringConfig,
    rng: Optional[random.Random] = None,
) -> List[str]:
    """Pick up to ``max_remediations`` suggestions from deterministic triggers.

    Only the phrasing is random. Which suggestions appear, and in which
    order, depends on the metrics alone.
    """
    rng = rng or random.Random()
    suggestions: List[str] = []

    if metrics.has_traffic:
        failure = metrics.failure_rate_under_test
        if metrics.server_error_rate > 0 or failure > config.collapse_failure_threshold:
            recovered = ad_spend_risk(metrics, config)
            suggestions.append(
                f"{rng.choice(_FAILURE_PHRASES)} "
                f"(expected: failure rate from {failure * 100:.2f}% toward 0%, "
                f"protecting ~{recovered:.2f}/day of ad spend)"
            )

        p95 = metrics.latency.p95
        if p95 is not None and p95 > config.p95_target_ms:
            excess = p95 - config.p95_target_ms
            points = excess / 1000.0 * config.conversion_loss_per_second
            phrase = rng.choice(_LATENCY_PHRASES).format(target=config.p95_target_ms)
            suggestions.append(
                f"{phrase} (expected: -{excess:.0f} ms at p95, "
                f"recovering ~{points:.2f} conversion points)"
            )

        if metrics.throughput < config.throughput_target_rps:
            if metrics.throughput > 0:
                gain = f"+{(config.throughput_target_rps / metrics.throughput - 1) * 100:.0f}%"
            else:
                gain = f"+{config.throughput_target_rps:.0f} req/s"
            phrase = rng.choice(_THROUGHPUT_PHRASES).format(target=config.throughput_target_rps)
            suggestions.append(
                f"{phrase} (expected: {gain} capacity from "
                f"{metrics.throughput:.1f} req/s)"
            )

    if github is not None and not github.cicd.present:
        suggestions.append(
            f"{rng.choice(_CICD_PHRASES)} "
            f"(expected: +{config.cicd_weight} DevOps score points)"
        )

    return suggestions[: config.max_remediations]


def score_business(
    metrics: Metrics,
    github: Optional[GithubSignals],
    audit: Optional[BrowserAudit],
    config: Optional[ScoringConfig] = None,
    rng: Optional[random.Random] = None,
) -> BusinessInsights:
    """Derive business impact from whichever branches produced data.

    Args:
        metrics: Canonical metrics; may be the "no traffic" record.
        github: Repository signals, or None when that branch is absent.
        audit: Browser audit scores, or None when that branch is absent.
        config: Scoring constants.
        rng: Random source for remediation phrasing.

    Returns:
        BusinessInsights. Traffic-derived fields stay None without traffic.
    """
    config = config or ScoringConfig()
    breakdown = ScoreBreakdown(
        performance=performance_score(metrics, config),
        architecture=architecture_score(audit, config),
        devops=devops_component(github, config),
    )
    stability = round_half_up(
        (breakdown.performance + breakdown.architecture + breakdown.devops) / 3
    )

    insights = BusinessInsights(
        score_breakdown=breakdown,
        stability_risk_score=stability,
        remediations=build_remediations(metrics, github, config, rng),
        cicd_risk=cicd_risk(github),
    )
    if metrics.has_traffic:
        insights.conversion_loss = conversion_loss(metrics.latency.avg or 0.0, config)
        insights.ad_spend_risk = ad_spend_risk(metrics, config)
        insights.collapse_point = collapse_point(metrics, config)
    return insights
