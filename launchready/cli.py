"""CLI entry point for the launch readiness engine."""

import asyncio
import json
import logging
import sys
from dataclasses import asdict, replace

import click

from launchready.config import ConfigValidationError, load_config
from launchready.engine import AssessmentEngine, ValidationError
from launchready.models import LoadOptions
from launchready.normalizer import build_chart_series, build_health_series, normalize
from launchready.scanner import RepoUnreachable, scan_repository
from launchready.store import SessionStore, StorageError, session_to_dict


def _load_config_or_exit(path, store):
    try:
        config = load_config(path)
    except ConfigValidationError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    if store:
        config = replace(config, store_path=store)
    return config


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def main(verbose):
    """Launch Readiness Engine -- load test, scan, and score a target before launch."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


@main.command()
@click.option("--url", "target_url", default=None, help="Target URL to load test and audit.")
@click.option("--repo", "repo_url", default=None, help="Repository URL to scan.")
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(exists=True),
    help="Optional config file (YAML or JSON).",
)
@click.option("--store", default=None, type=click.Path(), help="Session store path (JSONL).")
@click.option("--vus", default=None, type=click.IntRange(min=1), help="Virtual users.")
@click.option("--duration", default=None, help="Test duration, e.g. 30s or 1m.")
def assess(target_url, repo_url, config_path, store, vus, duration):
    """Run an assessment and print the resulting session as JSON."""
    config = _load_config_or_exit(config_path, store)
    options = LoadOptions(
        virtual_users=vus or config.runner.virtual_users,
        duration=duration or config.runner.duration,
    )
    engine = AssessmentEngine(config)
    try:
        result = asyncio.run(engine.run_assessment(target_url, repo_url, options))
    except ValidationError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    for branch, error in result.errors.items():
        click.echo(f"Warning: {branch} analysis failed: {error}", err=True)
    if not result.stored:
        click.echo(f"Warning: session was not stored: {result.storage_error}", err=True)

    output = session_to_dict(result.session)
    output["stored"] = result.stored
    click.echo(json.dumps(output, indent=2))


@main.command()
@click.argument("session_id")
@click.option("--store", default=None, type=click.Path(), help="Session store path (JSONL).")
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(exists=True),
    help="Optional config file (YAML or JSON).",
)
def show(session_id, store, config_path):
    """Print a stored session."""
    config = _load_config_or_exit(config_path, store)
    try:
        session = SessionStore(config.store_path).get(session_id)
    except StorageError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    if session is None:
        click.echo(f"Error: session not found: {session_id}", err=True)
        sys.exit(1)
    click.echo(json.dumps(session_to_dict(session), indent=2))


@main.command()
@click.option("--repo", "repo_url", required=True, help="Repository URL to scan.")
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(exists=True),
    help="Optional config file (YAML or JSON).",
)
def scan(repo_url, config_path):
    """Scan a repository for deployment readiness signals."""
    config = _load_config_or_exit(config_path, None)
    try:
        signals = asyncio.run(
            scan_repository(repo_url, config.scanner, config.scoring)
        )
    except RepoUnreachable as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    click.echo(f"DevOps score: {signals.summary.devops_score} ({signals.summary.risk_level} risk)")
    click.echo("\n" + json.dumps(asdict(signals), indent=2))


@main.command("normalize")
@click.option(
    "--raw",
    "raw_path",
    required=True,
    type=click.Path(exists=True),
    help="Path to a raw k6 summary export (JSON).",
)
def normalize_cmd(raw_path):
    """Normalize a raw k6 summary into canonical metrics."""
    try:
        with open(raw_path, "r") as f:
            raw = json.load(f)
    except json.JSONDecodeError as exc:
        click.echo(f"Error: failed to parse JSON: {exc}", err=True)
        sys.exit(1)

    metrics = normalize(raw)
    output = {
        "metrics": asdict(metrics),
        "chart_series": asdict(build_chart_series(metrics)),
        "health_series": [asdict(s) for s in build_health_series(metrics)],
    }
    click.echo(json.dumps(output, indent=2))


@main.command()
@click.option("--host", default="127.0.0.1", help="Bind address.")
@click.option("--port", default=8080, type=int, help="Bind port.")
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(exists=True),
    help="Optional config file (YAML or JSON).",
)
def serve(host, port, config_path):
    """Serve the HTTP API with uvicorn."""
    import uvicorn

    from launchready.api import create_app

    config = _load_config_or_exit(config_path, None)
    uvicorn.run(create_app(config), host=host, port=port)


if __name__ == "__main__":
    main()
