"""Shallow-clone a repository and inspect it for deployment artifacts."""

import asyncio
import json
import logging
import os
import re
import shutil
import tempfile
from typing import List, Optional
from urllib.parse import urlparse

import yaml

from launchready.config import ScannerConfig, ScoringConfig
from launchready.models import GithubSignals
from launchready.scoring import summarize_signals

logger = logging.getLogger(__name__)


class RepoUnreachable(Exception):
    """Raised when a repository cannot be fetched at all."""


class MalformedArtifact(Exception):
    """Raised when a manifest or descriptor exists but cannot be parsed."""


_FRAMEWORKS = (
    ("express", "Express"),
    ("next", "Next.js"),
    ("@nestjs/core", "NestJS"),
    ("fastify", "Fastify"),
    ("koa", "Koa"),
)
_DATABASES = (
    ("mongoose", "MongoDB"),
    ("mongodb", "MongoDB"),
    ("pg", "Postgres"),
    ("mysql2", "MySQL"),
)
_K8S_DIRS = ("k8s", "manifests", "deploy", "deployment")

_CMD_RE = re.compile(r"^\s*(CMD|ENTRYPOINT)\b", re.IGNORECASE | re.MULTILINE)
_EXPOSE_RE = re.compile(r"^\s*EXPOSE\s+\d+", re.IGNORECASE | re.MULTILINE)


def validate_repo_url(repo_url: str, config: Optional[ScannerConfig] = None) -> str:
    """Check that repo_url is an http(s) URL on an allowed host.

    Raises:
        RepoUnreachable: If the URL is not acceptable.
    """
    config = config or ScannerConfig()
    if not isinstance(repo_url, str) or not repo_url.strip():
        raise RepoUnreachable("repository URL is required")
    parsed = urlparse(repo_url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise RepoUnreachable(f"invalid repository URL: {repo_url}")
    host = (parsed.hostname or "").lower()
    if config.allowed_hosts and host not in config.allowed_hosts:
        raise RepoUnreachable(f"repository host not allowed: {host}")
    if len([p for p in parsed.path.split("/") if p]) < 2:
        raise RepoUnreachable(f"repository URL must name an owner and repo: {repo_url}")
    return repo_url.strip()


async def scan_repository(
    repo_url: str,
    config: Optional[ScannerConfig] = None,
    scoring: Optional[ScoringConfig] = None,
) -> GithubSignals:
    """Clone repo_url into a private scratch directory and inspect it.

    The scratch directory is removed on every exit path.

    Args:
        repo_url: Repository to scan.
        config: Scanner settings.
        scoring: Weights used for the DevOps summary.

    Returns:
        The repository's GithubSignals.

    Raises:
        RepoUnreachable: If the URL is invalid or the clone fails.
    """
    config = config or ScannerConfig()
    url = validate_repo_url(repo_url, config)

    scratch = tempfile.mkdtemp(prefix="repo-scan-")
    try:
        checkout = os.path.join(scratch, "checkout")
        await _clone(url, checkout, config)
        signals = await asyncio.to_thread(inspect_checkout, checkout)
        signals.summary = summarize_signals(signals, scoring)
        logger.info(
            "scanned %s: devops score %d (%s risk)",
            url, signals.summary.devops_score, signals.summary.risk_level,
        )
        return signals
    finally:
        shutil.rmtree(scratch, ignore_errors=True)


def inspect_checkout(root: str) -> GithubSignals:
    """Inspect a checked-out tree for deployment artifacts.

    Looks at the root and one level of non-hidden subdirectories. Missing
    or malformed artifacts are recorded in ``issues`` and never abort the
    inspection.
    """
    signals = GithubSignals()
    subdirs = _subdirectories(root)

    _inspect_manifest(_find_file(root, subdirs, "package.json"), signals)
    _inspect_dockerfile(_find_file(root, subdirs, "Dockerfile"), signals)

    if _find_dir(root, subdirs, os.path.join(".github", "workflows")):
        signals.cicd.present = True
    else:
        signals.issues.append("CI/CD pipeline missing")

    if any(_find_dir(root, subdirs, name) for name in _K8S_DIRS):
        signals.kubernetes.present = True
        signals.kubernetes.type = "raw"
    _inspect_chart(_find_file(root, subdirs, "Chart.yaml"), signals)

    signals.summary = summarize_signals(signals)
    return signals


# -- internal helpers ---------------------------------------------------------


async def _clone(url: str, dest: str, config: ScannerConfig) -> None:
    env = dict(os.environ, GIT_TERMINAL_PROMPT="0")
    cmd = [config.git_binary, "clone", "--depth", "1", "--filter=blob:none", url, dest]
    logger.debug("running: %s", " ".join(cmd))
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
    except OSError as exc:
        raise RepoUnreachable(f"could not start git: {exc}") from exc

    try:
        _, stderr = await asyncio.wait_for(
            proc.communicate(), timeout=config.clone_timeout_seconds
        )
    except asyncio.TimeoutError as exc:
        raise RepoUnreachable(
            f"git clone timed out after {config.clone_timeout_seconds:.0f}s"
        ) from exc
    finally:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()

    if proc.returncode != 0:
        message = stderr.decode("utf-8", errors="replace").strip()
        if not message:
            message = f"exit code {proc.returncode}"
        raise RepoUnreachable(f"git clone failed: {message}")


def _subdirectories(root: str) -> List[str]:
    try:
        names = sorted(os.listdir(root))
    except OSError:
        return []
    return [
        os.path.join(root, name)
        for name in names
        if not name.startswith(".") and os.path.isdir(os.path.join(root, name))
    ]


def _find_file(root: str, subdirs: List[str], name: str) -> Optional[str]:
    for base in [root] + subdirs:
        candidate = os.path.join(base, name)
        if os.path.isfile(candidate):
            return candidate
    return None


def _find_dir(root: str, subdirs: List[str], name: str) -> bool:
    return any(os.path.isdir(os.path.join(base, name)) for base in [root] + subdirs)


def _read_text(path: str) -> str:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as exc:
        raise MalformedArtifact(f"{os.path.basename(path)} could not be read") from exc


def _load_package_json(path: str) -> dict:
    try:
        pkg = json.loads(_read_text(path))
    except json.JSONDecodeError as exc:
        raise MalformedArtifact("package.json could not be parsed") from exc
    if not isinstance(pkg, dict):
        raise MalformedArtifact("package.json could not be parsed")
    return pkg


def _inspect_manifest(path: Optional[str], signals: GithubSignals) -> None:
    if path is None:
        signals.issues.append("package.json missing")
        return
    try:
        pkg = _load_package_json(path)
    except MalformedArtifact as exc:
        logger.warning("skipping manifest %s: %s", path, exc)
        signals.issues.append(str(exc))
        return

    deps = {}
    for key in ("dependencies", "devDependencies"):
        section = pkg.get(key)
        if isinstance(section, dict):
            deps.update(section)
    signals.dependency_count = len(deps)

    scripts = pkg.get("scripts")
    if isinstance(scripts, dict):
        signals.has_start_script = bool(scripts.get("start") or scripts.get("dev"))
    if not signals.has_start_script:
        signals.issues.append("Missing start/dev script")

    for dep, name in _FRAMEWORKS:
        if dep in deps:
            signals.framework = name
            break
    for dep, name in _DATABASES:
        if dep in deps:
            signals.database = name
            break


def _inspect_dockerfile(path: Optional[str], signals: GithubSignals) -> None:
    if path is None:
        return
    signals.docker.present = True
    try:
        content = _read_text(path)
    except MalformedArtifact as exc:
        signals.issues.append(str(exc))
        return

    if _CMD_RE.search(content):
        signals.docker.has_cmd = True
    else:
        signals.issues.append("Dockerfile missing CMD/ENTRYPOINT")
    if _EXPOSE_RE.search(content):
        signals.docker.exposes_port = True
    else:
        signals.issues.append("Dockerfile missing EXPOSE")


def _inspect_chart(path: Optional[str], signals: GithubSignals) -> None:
    if path is None:
        return
    try:
        try:
            chart = yaml.safe_load(_read_text(path))
        except yaml.YAMLError as exc:
            raise MalformedArtifact("Chart.yaml could not be parsed") from exc
        if not isinstance(chart, dict):
            raise MalformedArtifact("Chart.yaml could not be parsed")
    except MalformedArtifact as exc:
        logger.warning("skipping chart %s: %s", path, exc)
        signals.issues.append(str(exc))
        return
    signals.kubernetes.present = True
    signals.kubernetes.type = "helm"
