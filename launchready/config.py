"""Load and validate engine configuration files (YAML or JSON)."""

import json
import os
from dataclasses import dataclass, field, fields, replace
from typing import List, Optional, Tuple

import yaml


DEFAULT_K6_SCRIPT = os.path.join(os.path.dirname(__file__), "k6", "load_test.js")


class ConfigValidationError(Exception):
    """Raised when a configuration file fails validation."""


@dataclass(frozen=True)
class ScoringConfig:
    """Weights, thresholds and heuristic constants used by the scoring step.

    The business-impact constants are uncalibrated heuristics. They are kept
    configurable so deployments can tune them.
    """

    docker_weight: int = 30
    cicd_weight: int = 30
    kubernetes_weight: int = 20
    start_script_weight: int = 20
    low_risk_threshold: int = 70
    medium_risk_threshold: int = 40

    conversion_loss_per_second: float = 7.0
    per_request_value: float = 0.05
    peak_window_seconds: int = 14400

    failure_penalty: float = 1000.0
    latency_penalty_divisor: float = 50.0
    neutral_architecture_score: int = 50
    missing_devops_score: int = 20

    collapse_failure_threshold: float = 0.05
    collapse_degraded_multiplier: float = 0.9
    collapse_healthy_multiplier: float = 1.8

    p95_target_ms: float = 200.0
    throughput_target_rps: float = 500.0
    max_remediations: int = 3


@dataclass(frozen=True)
class RunnerConfig:
    binary: str = "k6"
    script_path: str = DEFAULT_K6_SCRIPT
    execution_mode: str = "live"  # "live" or "demo"
    virtual_users: int = 100
    duration: str = "30s"
    probe_timeout_seconds: float = 5.0
    simulated_base_latency_ms: float = 220.0
    simulated_failure_chance: float = 0.2
    simulated_requests_per_vu_second: float = 1.5


@dataclass(frozen=True)
class ScannerConfig:
    git_binary: str = "git"
    allowed_hosts: Tuple[str, ...] = ("github.com",)
    clone_timeout_seconds: float = 60.0


@dataclass(frozen=True)
class AuditConfig:
    enabled: bool = True
    endpoint: str = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"
    api_key: Optional[str] = None
    strategy: str = "mobile"


@dataclass(frozen=True)
class NarrativeConfig:
    base_url: str = "https://openrouter.ai/api/v1"
    model: str = "openai/gpt-4o-mini"
    api_key: Optional[str] = None
    max_context_chars: int = 6000
    timeout_seconds: float = 45.0


@dataclass(frozen=True)
class TimeoutConfig:
    load: float = 120.0
    repo: float = 90.0
    audit: float = 60.0


@dataclass(frozen=True)
class AppConfig:
    runner: RunnerConfig = field(default_factory=RunnerConfig)
    scanner: ScannerConfig = field(default_factory=ScannerConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    narrative: NarrativeConfig = field(default_factory=NarrativeConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    store_path: str = "sessions.jsonl"


_SECTIONS = {
    "runner": RunnerConfig,
    "scanner": ScannerConfig,
    "audit": AuditConfig,
    "narrative": NarrativeConfig,
    "scoring": ScoringConfig,
    "timeouts": TimeoutConfig,
}


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from a YAML or JSON file and apply env overrides.

    Args:
        path: Optional path to a config file. Defaults are used when omitted.

    Returns:
        A validated AppConfig instance.

    Raises:
        ConfigValidationError: If the file is missing, unreadable, or invalid.
    """
    raw = {}
    if path is not None:
        raw = _read_file(path)
    config = build_config(raw)
    return apply_env_overrides(config, os.environ)


def build_config(raw: dict) -> AppConfig:
    """Construct and validate an AppConfig from a raw dict."""
    errors: List[str] = []
    sections = {}

    unknown = sorted(set(raw) - set(_SECTIONS) - {"store_path"})
    for key in unknown:
        errors.append(f"unknown section '{key}'")

    for name, cls in _SECTIONS.items():
        section_raw = raw.get(name, {})
        if section_raw is None:
            section_raw = {}
        if not isinstance(section_raw, dict):
            errors.append(f"'{name}' must be a mapping")
            continue
        sections[name] = _parse_section(name, cls, section_raw, errors)

    store_path = raw.get("store_path", AppConfig.store_path)
    if not isinstance(store_path, str) or not store_path:
        errors.append("'store_path' must be a non-empty string")

    runner = sections.get("runner")
    if runner is not None and runner.execution_mode not in ("live", "demo"):
        errors.append("'runner.execution_mode' must be 'live' or 'demo'")

    if errors:
        raise ConfigValidationError(
            "config validation failed:\n  - " + "\n  - ".join(errors)
        )

    return AppConfig(store_path=store_path, **sections)


def apply_env_overrides(config: AppConfig, env) -> AppConfig:
    """Return a copy of config with environment variable overrides applied."""
    runner = config.runner
    if env.get("EXECUTION_MODE") in ("live", "demo"):
        runner = replace(runner, execution_mode=env["EXECUTION_MODE"])
    if env.get("K6_BINARY"):
        runner = replace(runner, binary=env["K6_BINARY"])

    narrative = config.narrative
    if env.get("OPENROUTER_API_KEY") and not narrative.api_key:
        narrative = replace(narrative, api_key=env["OPENROUTER_API_KEY"])

    audit = config.audit
    if env.get("PAGESPEED_API_KEY") and not audit.api_key:
        audit = replace(audit, api_key=env["PAGESPEED_API_KEY"])

    store_path = env.get("LAUNCHREADY_STORE") or config.store_path

    return replace(
        config,
        runner=runner,
        narrative=narrative,
        audit=audit,
        store_path=store_path,
    )


# -- internal helpers ---------------------------------------------------------


def _read_file(path: str) -> dict:
    if not os.path.isfile(path):
        raise ConfigValidationError(f"config file not found: {path}")

    ext = os.path.splitext(path)[1].lower()
    try:
        with open(path, "r") as f:
            if ext in (".yaml", ".yml"):
                raw = yaml.safe_load(f)
            elif ext == ".json":
                raw = json.load(f)
            else:
                raise ConfigValidationError(
                    f"unsupported file extension: {ext} (expected .yaml, .yml, or .json)"
                )
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigValidationError(f"failed to parse {path}: {exc}") from exc

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigValidationError("config must be a mapping/object at the top level")
    return raw


def _parse_section(name: str, cls, raw: dict, errors: List[str]):
    known = {f.name: f for f in fields(cls)}
    kwargs = {}
    for key, value in raw.items():
        if key not in known:
            errors.append(f"unknown key '{name}.{key}'")
            continue
        default = known[key].default
        if isinstance(default, tuple):
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                errors.append(f"'{name}.{key}' must be a list of strings")
                continue
            value = tuple(value)
        elif isinstance(default, bool):
            if not isinstance(value, bool):
                errors.append(f"'{name}.{key}' must be a boolean")
                continue
        elif isinstance(default, int):
            if isinstance(value, bool) or not isinstance(value, int):
                errors.append(f"'{name}.{key}' must be an integer")
                continue
            if value < 0:
                errors.append(f"'{name}.{key}' must not be negative")
                continue
        elif isinstance(default, float):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                errors.append(f"'{name}.{key}' must be a number")
                continue
            if value < 0:
                errors.append(f"'{name}.{key}' must not be negative")
                continue
            value = float(value)
        elif value is not None and not isinstance(value, str):
            errors.append(f"'{name}.{key}' must be a string")
            continue
        kwargs[key] = value
    return cls(**kwargs)
