"""Assemble the plain-text context handed to the narrative service."""

from typing import List, Optional

from launchready.models import BrowserAudit, GithubSignals, Metrics

DEFAULT_MAX_CHARS = 6000


def build_context(
    target: Optional[str],
    metrics: Optional[Metrics],
    github: Optional[GithubSignals],
    audit: Optional[BrowserAudit],
    max_chars: int = DEFAULT_MAX_CHARS,
) -> str:
    """Build a deterministic, section-ordered summary of the available data.

    Sections appear in the order runtime metrics, repository signals,
    browser audit. A section whose source is None is left out entirely.
    The result is truncated to ``max_chars``.
    """
    lines = [f"Target under test: {target or 'N/A'}", ""]

    if metrics is not None:
        lines.extend(_metrics_section(metrics))
    if github is not None:
        lines.extend(_github_section(github))
    if audit is not None:
        lines.extend(_audit_section(audit))

    return "\n".join(lines).strip()[:max_chars]


def _num(value: Optional[float], unit: str = "") -> str:
    if value is None:
        return "N/A"
    return f"{value:.2f}{unit}"


def _pct(value: float) -> str:
    return f"{value * 100:.2f}%"


def _detected(flag: bool) -> str:
    return "Detected" if flag else "Not detected"


def _metrics_section(metrics: Metrics) -> List[str]:
    lines = ["Runtime Metrics (Observed):"]
    if not metrics.has_traffic:
        lines.append("- No traffic observed (zero requests completed)")
    else:
        lines.extend([
            f"- Virtual Users: {metrics.vus}",
            f"- Total Requests: {metrics.total_requests}",
            f"- Failure Rate: {_pct(metrics.failure_rate_under_test)}",
            f"- Server Error Rate (5xx): {_pct(metrics.server_error_rate)}",
            f"- p95 Latency: {_num(metrics.latency.p95, ' ms')}",
            f"- Avg Latency: {_num(metrics.latency.avg, ' ms')}",
            f"- Throughput: {metrics.throughput:.2f} req/s",
        ])
    lines.append("- Note: latency and throughput reflect response timing, not request success")
    lines.append("")
    return lines


def _github_section(github: GithubSignals) -> List[str]:
    summary = github.summary
    lines = [
        "Repository Signals (Static):",
        f"- Framework: {github.framework}",
        f"- Database: {github.database}",
        f"- Docker: {_detected(github.docker.present)}",
        f"- CI/CD: {_detected(github.cicd.present)}",
        f"- Kubernetes: {_detected(github.kubernetes.present)}",
        f"- Start Script: {_detected(github.has_start_script)}",
        f"- DevOps Score: {summary.devops_score}/100 ({summary.risk_level} risk)",
    ]
    if github.issues:
        lines.append("- Issues: " + "; ".join(github.issues))
    lines.append("")
    return lines


def _audit_section(audit: BrowserAudit) -> List[str]:
    lines = [
        "Browser Audit (Lighthouse):",
        f"- Performance: {audit.performance}/100",
        f"- Accessibility: {audit.accessibility}/100",
        f"- Best Practices: {audit.best_practices}/100",
        f"- SEO: {audit.seo}/100",
        f"- Interactivity: {audit.interactivity}/100",
    ]
    if audit.load_time_ms is not None:
        lines.append(f"- Load Time: {audit.load_time_ms:.0f} ms")
    lines.append("")
    return lines
