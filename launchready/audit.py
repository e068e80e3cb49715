"""Browser page-quality audit via the PageSpeed Insights API."""

import logging
from typing import Optional

import httpx

from launchready.config import AuditConfig
from launchready.models import BrowserAudit

logger = logging.getLogger(__name__)

_CATEGORIES = ("performance", "accessibility", "best-practices", "seo")


class AuditError(Exception):
    """Raised when the audit service fails or returns an unusable report."""


class PageSpeedAuditor:
    """Runs a Lighthouse audit through PageSpeed Insights."""

    def __init__(
        self,
        config: Optional[AuditConfig] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or AuditConfig()
        self.timeout = timeout
        self.transport = transport

    async def audit(self, url: str) -> BrowserAudit:
        params = [("url", url), ("strategy", self.config.strategy)]
        params.extend(("category", c) for c in _CATEGORIES)
        if self.config.api_key:
            params.append(("key", self.config.api_key))

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                resp = await client.get(self.config.endpoint, params=params)
                resp.raise_for_status()
                report = resp.json()
        except httpx.HTTPError as exc:
            raise AuditError(f"audit request failed: {exc}") from exc
        except ValueError as exc:
            raise AuditError("audit response is not JSON") from exc

        result = parse_report(report)
        logger.info("audited %s: performance %d", url, result.performance)
        return result


def parse_report(report: dict) -> BrowserAudit:
    """Extract 0-100 scores from a PageSpeed Insights v5 response."""
    lighthouse = report.get("lighthouseResult") if isinstance(report, dict) else None
    if not isinstance(lighthouse, dict):
        raise AuditError("audit response has no lighthouseResult")
    categories = lighthouse.get("categories") or {}
    audits = lighthouse.get("audits") or {}

    scores = {}
    for name in _CATEGORIES:
        category = categories.get(name)
        if not isinstance(category, dict):
            raise AuditError(f"audit response is missing category '{name}'")
        scores[name] = _percent(category.get("score"))

    interactive = audits.get("interactive") or {}
    speed_index = audits.get("speed-index") or {}
    load_time = speed_index.get("numericValue")

    return BrowserAudit(
        performance=scores["performance"],
        accessibility=scores["accessibility"],
        best_practices=scores["best-practices"],
        seo=scores["seo"],
        interactivity=_percent(interactive.get("score")),
        load_time_ms=float(load_time) if isinstance(load_time, (int, float)) else None,
    )


def _percent(score) -> int:
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        return 0
    return min(100, max(0, int(round(score * 100))))
