"""Fan out to the analyzers, score the results, and persist one session."""

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from launchready.audit import PageSpeedAuditor
from launchready.config import AppConfig
from launchready.context import build_context
from launchready.models import LoadOptions, TestSession
from launchready.narrative import NO_DATA_MESSAGE, ChatCompletionClient, generate_narrative
from launchready.normalizer import build_chart_series, build_health_series, normalize
from launchready.runner import LoadRunner
from launchready.scanner import scan_repository
from launchready.scoring import score_business, summarize_signals
from launchready.store import SessionStore, StorageError

logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """Raised when an assessment request cannot be started."""


@dataclass
class BranchOutcome:
    """Settled result of one analyzer branch."""

    name: str
    value: Any = None
    error: Optional[str] = None
    skipped: bool = False

    @property
    def status(self) -> str:
        if self.skipped:
            return "skipped"
        return "failed" if self.error is not None else "ok"


@dataclass
class AssessmentResult:
    session: TestSession
    stored: bool
    storage_error: Optional[str] = None
    errors: Dict[str, str] = field(default_factory=dict)  # branch name -> error


async def settle(
    name: str,
    factory: Optional[Callable[[], Awaitable[Any]]],
    timeout: Optional[float] = None,
) -> BranchOutcome:
    """Run one branch and convert any failure or timeout into an outcome.

    A branch without a factory is skipped without running anything.
    """
    if factory is None:
        return BranchOutcome(name=name, skipped=True)
    try:
        value = await asyncio.wait_for(factory(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("%s branch timed out after %.0fs", name, timeout)
        return BranchOutcome(name=name, error=f"timed out after {timeout:.0f}s")
    except Exception as exc:
        logger.warning("%s branch failed: %s", name, exc)
        return BranchOutcome(name=name, error=str(exc) or exc.__class__.__name__)
    return BranchOutcome(name=name, value=value)


class AssessmentEngine:
    """Runs the load, repository and audit branches and builds a TestSession.

    Collaborators are injectable; by default they are built from config.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        store: Optional[SessionStore] = None,
        load_runner: Optional[Callable[[str, LoadOptions], Awaitable[dict]]] = None,
        repo_scanner: Optional[Callable[[str], Awaitable[Any]]] = None,
        auditor=None,
        narrator=None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or AppConfig()
        self.store = store or SessionStore(self.config.store_path)
        self.load_runner = load_runner or self._default_load_runner
        self.repo_scanner = repo_scanner or self._default_repo_scanner
        if auditor is None and self.config.audit.enabled:
            auditor = PageSpeedAuditor(self.config.audit, timeout=self.config.timeouts.audit)
        self.auditor = auditor
        self.narrator = narrator or ChatCompletionClient(self.config.narrative)
        self.rng = rng or random.Random()

    async def run_assessment(
        self,
        target_url: Optional[str] = None,
        repo_url: Optional[str] = None,
        options: Optional[LoadOptions] = None,
    ) -> AssessmentResult:
        """Assess a target URL and/or repository.

        Args:
            target_url: URL to load test and audit.
            repo_url: Repository to scan.
            options: Load test settings; defaults come from config.

        Returns:
            An AssessmentResult holding the session and whether it was stored.

        Raises:
            ValidationError: If neither target_url nor repo_url is given.
        """
        target_url = (target_url or "").strip() or None
        repo_url = (repo_url or "").strip() or None
        if target_url is None and repo_url is None:
            raise ValidationError("provide a target URL or a repository URL")

        options = options or LoadOptions(
            virtual_users=self.config.runner.virtual_users,
            duration=self.config.runner.duration,
        )
        timeouts = self.config.timeouts
        logger.info("starting assessment: target=%s repo=%s", target_url, repo_url)

        load, repo, audit = await asyncio.gather(
            settle(
                "load",
                (lambda: self.load_runner(target_url, options)) if target_url else None,
                timeouts.load,
            ),
            settle(
                "repo",
                (lambda: self.repo_scanner(repo_url)) if repo_url else None,
                timeouts.repo,
            ),
            settle(
                "audit",
                (lambda: self.auditor.audit(target_url))
                if target_url and self.auditor is not None
                else None,
                timeouts.audit,
            ),
        )
        logger.info(
            "analysis settled: load=%s repo=%s audit=%s",
            load.status, repo.status, audit.status,
        )

        session = await self._build_session(target_url, repo_url, load, repo, audit)
        errors = {b.name: b.error for b in (load, repo, audit) if b.error is not None}

        try:
            await asyncio.to_thread(self.store.create, session)
        except StorageError as exc:
            logger.error("session %s was not stored: %s", session.id, exc)
            return AssessmentResult(
                session=session, stored=False, storage_error=str(exc), errors=errors
            )
        logger.info("session %s stored", session.id)
        return AssessmentResult(session=session, stored=True, errors=errors)

    async def _build_session(self, target_url, repo_url, load, repo, audit) -> TestSession:
        scoring = self.config.scoring

        metrics = normalize(load.value)
        github = repo.value
        if github is not None:
            github.summary = summarize_signals(github, scoring)
        browser_audit = audit.value

        insights = score_business(metrics, github, browser_audit, scoring, self.rng)

        if load.value is None and github is None and browser_audit is None:
            narrative = NO_DATA_MESSAGE
        else:
            context = build_context(
                target_url or repo_url,
                metrics if load.value is not None else None,
                github,
                browser_audit,
                max_chars=self.config.narrative.max_context_chars,
            )
            narrative = await generate_narrative(
                context, self.narrator, timeout=self.config.narrative.timeout_seconds
            )

        return TestSession(
            id=uuid.uuid4().hex,
            target_url=target_url,
            repo_url=repo_url,
            metrics=metrics,
            chart_series=build_chart_series(metrics),
            health_series=build_health_series(metrics),
            github=github,
            browser_audit=browser_audit,
            business_insights=insights,
            narrative_message=narrative,
            created_at=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            branch_status={b.name: b.status for b in (load, repo, audit)},
            transcript=[{"role": "bot", "content": narrative}],
        )

    async def _default_load_runner(self, target_url: str, options: LoadOptions) -> dict:
        return await LoadRunner(self.config.runner).run(target_url, options)

    async def _default_repo_scanner(self, repo_url: str):
        return await scan_repository(repo_url, self.config.scanner, self.config.scoring)
