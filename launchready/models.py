"""Data models for load metrics, repository signals, scores, and sessions."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class Latency:
    p50: Optional[float] = None
    p95: Optional[float] = None
    p99: Optional[float] = None
    avg: Optional[float] = None
    max: Optional[float] = None


@dataclass
class Metrics:
    """Canonical, tool-version-independent load test record.

    A record with ``total_requests == 0`` means no traffic was observed:
    every rate is 0 and every latency field is None.
    """

    throughput: float = 0.0  # req/s
    total_requests: int = 0
    failure_rate_under_test: float = 0.0
    server_error_rate: float = 0.0
    latency: Latency = field(default_factory=Latency)
    vus: int = 0
    duration: Optional[int] = None  # ms

    @property
    def has_traffic(self) -> bool:
        return self.total_requests > 0


@dataclass
class ChartSeries:
    labels: List[str] = field(default_factory=list)
    values: List[float] = field(default_factory=list)
    label: str = "Latency (ms)"


@dataclass
class HealthSlice:
    name: str
    value: float
    color: str


@dataclass
class DockerSignals:
    present: bool = False
    has_cmd: bool = False
    exposes_port: bool = False


@dataclass
class KubernetesSignals:
    present: bool = False
    type: Optional[str] = None  # "raw", "helm"


@dataclass
class CicdSignals:
    present: bool = False


@dataclass
class RepoSummary:
    devops_score: int = 0
    production_ready: bool = False
    risk_level: str = "high"  # "low", "medium", "high"


@dataclass
class GithubSignals:
    framework: str = "Unknown"
    database: str = "Unknown"
    has_start_script: bool = False
    dependency_count: int = 0
    docker: DockerSignals = field(default_factory=DockerSignals)
    kubernetes: KubernetesSignals = field(default_factory=KubernetesSignals)
    cicd: CicdSignals = field(default_factory=CicdSignals)
    issues: List[str] = field(default_factory=list)
    summary: RepoSummary = field(default_factory=RepoSummary)


@dataclass
class BrowserAudit:
    performance: int
    accessibility: int
    best_practices: int
    seo: int
    interactivity: int
    load_time_ms: Optional[float] = None


@dataclass
class ScoreBreakdown:
    performance: int
    architecture: int
    devops: int


@dataclass
class CicdRisk:
    severity: str
    consequence: str
    details: str


@dataclass
class BusinessInsights:
    """Derived business impact. Traffic-derived fields are None without traffic."""

    score_breakdown: ScoreBreakdown
    stability_risk_score: int
    conversion_loss: Optional[float] = None  # percentage points
    ad_spend_risk: Optional[float] = None  # currency units/day
    collapse_point: Optional[int] = None  # virtual users
    remediations: List[str] = field(default_factory=list)
    cicd_risk: Optional[CicdRisk] = None


@dataclass
class LoadOptions:
    virtual_users: int = 100
    duration: str = "30s"


@dataclass
class TestSession:
    """One persisted, immutable assessment record."""

    __test__ = False  # not a pytest test class

    id: str
    target_url: Optional[str]
    repo_url: Optional[str]
    metrics: Metrics
    chart_series: ChartSeries
    health_series: List[HealthSlice]
    github: Optional[GithubSignals]
    browser_audit: Optional[BrowserAudit]
    business_insights: BusinessInsights
    narrative_message: str
    created_at: str
    branch_status: Dict[str, str] = field(default_factory=dict)  # "ok", "failed", "skipped"
    transcript: List[dict] = field(default_factory=list)  # each: {role, content}
