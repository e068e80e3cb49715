"""Narrative verdict generation through an OpenAI-compatible chat endpoint."""

import asyncio
import logging
from typing import List, Optional

import httpx

from launchready.config import NarrativeConfig

logger = logging.getLogger(__name__)


EMPTY_RESPONSE_MESSAGE = (
    "**Launch Readiness Verdict**\n\nAnalysis completed. Refer to displayed metrics."
)
SERVICE_FAILURE_MESSAGE = (
    "The launch readiness verdict could not be generated due to a temporary "
    "service issue. The measured results above are still valid."
)
NO_DATA_MESSAGE = (
    "No analysis data could be retrieved for this test. Please ensure the "
    "target URL or repository is valid and try again."
)

SYSTEM_PROMPT = """\
You are a Business Continuity Analyst. Your audience is non-technical startup founders.

Your purpose is to interpret telemetry to determine if a product is ready for users (launch readiness).

STRICT RULES:
1. NO technical jargon (e.g. "p95", "throughput", "5xx") in the main paragraphs. Use "User Experience Speed", "System Capacity" and "Error Rate".
2. NO fixes, scaling advice, or technical remediation.
3. NO mention of databases, infrastructure, or root causes.
4. If failures exist, explain the BUSINESS IMPACT (e.g. "Users will see errors").

If asked for technical help, respond:
"This interface provides business analysis only. Use the remediation list for technical next steps."
"""

USER_INSTRUCTIONS = """\
Generate the Live Audit strictly in this format:

**Launch Readiness Verdict**

Paragraph 1: Launch Suitability
State clearly whether the product is suitable for a public launch under this specific load. Describe the speed and success rate in terms of "User Experience".

Paragraph 2: Stability Reasoning
Explain what the data indicates about the product's stability, using business impact reasoning.

Paragraph 3: Unknowns
Explain what this specific test cannot tell you (e.g. security, or stability under 10x more load).

Confidence Scope:
Runtime telemetry - High
Repository signals - Medium
Production inference - Not evaluated
"""


class NarrativeServiceError(Exception):
    """Raised when the narrative service cannot produce a response."""


def build_messages(context: str) -> List[dict]:
    """One system instruction and one user message carrying the context."""
    return [
        {"role": "system", "content": SYSTEM_PROMPT.strip()},
        {"role": "user", "content": f"{context.strip()}\n\n{USER_INSTRUCTIONS.strip()}"},
    ]


class ChatCompletionClient:
    """Minimal client for ``POST {base_url}/chat/completions``."""

    def __init__(
        self,
        config: Optional[NarrativeConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or NarrativeConfig()
        self.transport = transport

    async def complete(self, messages: List[dict]) -> str:
        if not self.config.api_key:
            raise NarrativeServiceError("no API key configured for the narrative service")

        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        payload = {"model": self.config.model, "messages": messages, "stream": False}
        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout_seconds, transport=self.transport
            ) as client:
                resp = await client.post(
                    self.config.base_url.rstrip("/") + "/chat/completions",
                    headers=headers,
                    json=payload,
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as exc:
            raise NarrativeServiceError(f"narrative request failed: {exc}") from exc
        except ValueError as exc:
            raise NarrativeServiceError("narrative response is not JSON") from exc

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise NarrativeServiceError("narrative response has no message content") from exc
        return content if isinstance(content, str) else ""


async def generate_narrative(context: str, client, timeout: Optional[float] = None) -> str:
    """Ask the narrative service for a verdict, substituting fixed fallbacks.

    The response is stored verbatim; it is never parsed.
    """
    try:
        response = await asyncio.wait_for(
            client.complete(build_messages(context)), timeout=timeout
        )
    except Exception as exc:
        logger.warning("narrative generation failed: %s", exc)
        return SERVICE_FAILURE_MESSAGE

    if not isinstance(response, str) or not response.strip():
        logger.warning("narrative service returned empty text")
        return EMPTY_RESPONSE_MESSAGE
    return response.strip()
