"""Run k6 against a target, falling back to a simulated result once."""

import asyncio
import enum
import json
import logging
import os
import random
import re
import shutil
import tempfile
from typing import Optional

import httpx

from launchready.config import RunnerConfig
from launchready.models import LoadOptions

logger = logging.getLogger(__name__)

# k6 exits with 99 when thresholds are crossed; the summary is still written.
_THRESHOLDS_CROSSED = 99

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


class ToolUnavailable(Exception):
    """Raised when the load generation binary cannot be found or started."""


class RunFailed(Exception):
    """Raised when the binary ran but produced no usable output."""


class RunState(enum.Enum):
    IDLE = "idle"
    PROBE_BINARY = "probe_binary"
    REAL_RUN = "real_run"
    SIMULATE = "simulate"
    SUCCESS = "success"
    FAILED = "failed"


def parse_duration(value) -> float:
    """Convert a k6 duration ("30s", "1m30s", "500ms") or a number to seconds."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    text = str(value).strip()
    if not text:
        raise ValueError("empty duration")
    if re.fullmatch(r"\d+(?:\.\d+)?", text):
        return float(text)
    if _DURATION_RE.sub("", text):
        raise ValueError(f"invalid duration: {value!r}")
    return sum(float(n) * _UNIT_SECONDS[unit] for n, unit in _DURATION_RE.findall(text))


class LoadRunner:
    """Drives one load test through an explicit state machine.

    ``IDLE -> PROBE_BINARY -> (REAL_RUN | SIMULATE) -> (SUCCESS | FAILED)``.
    A missing binary switches to simulation exactly once. A failed real run
    is reported as RunFailed and never simulated.
    """

    def __init__(
        self,
        config: Optional[RunnerConfig] = None,
        rng: Optional[random.Random] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or RunnerConfig()
        self.rng = rng or random.Random()
        self.transport = transport
        self.state = RunState.IDLE
        self.simulated = False

    async def run(self, target_url: str, options: Optional[LoadOptions] = None) -> dict:
        """Run the load test and return the raw summary dict.

        Raises:
            RunFailed: If k6 ran but its output is missing or unusable.
        """
        options = options or LoadOptions(
            virtual_users=self.config.virtual_users, duration=self.config.duration
        )

        if self.config.execution_mode == "demo":
            logger.info("demo mode: simulating load test for %s", target_url)
            attempt = RunState.SIMULATE
        else:
            self.state = RunState.PROBE_BINARY
            try:
                version = await self._probe_binary()
                logger.info("running load test with %s", version)
                attempt = RunState.REAL_RUN
            except ToolUnavailable as exc:
                logger.warning("%s; falling back to simulation", exc)
                attempt = RunState.SIMULATE

        self.state = attempt
        try:
            if attempt is RunState.REAL_RUN:
                raw = await self._real_run(target_url, options)
            else:
                self.simulated = True
                raw = await self._simulate(target_url, options)
        except BaseException:
            self.state = RunState.FAILED
            raise

        self.state = RunState.SUCCESS
        return raw

    async def _probe_binary(self) -> str:
        binary = shutil.which(self.config.binary)
        if binary is None:
            raise ToolUnavailable(f"{self.config.binary} binary not found")
        try:
            proc = await asyncio.create_subprocess_exec(
                binary, "version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, _ = await proc.communicate()
        except OSError as exc:
            raise ToolUnavailable(f"{self.config.binary} could not be started: {exc}") from exc
        if proc.returncode != 0:
            raise ToolUnavailable(f"{self.config.binary} version exited with {proc.returncode}")
        return stdout.decode("utf-8", errors="replace").strip()

    async def _real_run(self, target_url: str, options: LoadOptions) -> dict:
        scratch = tempfile.mkdtemp(prefix="k6-run-")
        result_file = os.path.join(scratch, "summary.json")
        cmd = [
            self.config.binary, "run",
            "--summary-export", result_file,
            "--env", f"TARGET_URL={target_url}",
            "--env", f"VUS={options.virtual_users}",
            "--env", f"DURATION={options.duration}",
            self.config.script_path,
        ]
        logger.info("executing: %s", " ".join(cmd))
        proc = None
        try:
            try:
                proc = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
                _, stderr = await proc.communicate()
            except OSError as exc:
                raise RunFailed(f"k6 execution failed: {exc}") from exc

            if proc.returncode not in (0, _THRESHOLDS_CROSSED):
                tail = stderr.decode("utf-8", errors="replace").strip()[-500:]
                raise RunFailed(f"k6 exited with {proc.returncode}: {tail}")
            if not os.path.isfile(result_file):
                raise RunFailed("k6 output file not found; the test may have crashed")
            try:
                with open(result_file, "r") as f:
                    raw = json.load(f)
            except (OSError, json.JSONDecodeError) as exc:
                raise RunFailed(f"failed to read k6 output: {exc}") from exc
            if not isinstance(raw, dict):
                raise RunFailed("k6 output must be a JSON object")
            return raw
        finally:
            if proc is not None and proc.returncode is None:
                proc.kill()
                await proc.wait()
            shutil.rmtree(scratch, ignore_errors=True)

    async def _probe_target(self, target_url: str) -> bool:
        try:
            async with httpx.AsyncClient(
                timeout=self.config.probe_timeout_seconds,
                follow_redirects=True,
                transport=self.transport,
            ) as client:
                await client.get(target_url)
            return True
        except httpx.HTTPError as exc:
            logger.warning("connectivity probe to %s failed: %s", target_url, exc)
            return False

    async def _simulate(self, target_url: str, options: LoadOptions) -> dict:
        reachable = await self._probe_target(target_url)
        rng = self.rng
        cfg = self.config
        vus = max(0, int(options.virtual_users))
        duration_s = parse_duration(options.duration)

        total = max(1, round(vus * cfg.simulated_requests_per_vu_second * duration_s))
        latency = cfg.simulated_base_latency_ms * (1 + rng.uniform(-0.25, 0.25))

        if not reachable:
            failure_rate = 1.0
        elif rng.random() < cfg.simulated_failure_chance:
            failure_rate = rng.uniform(0.04, 0.12)
        else:
            failure_rate = 0.0
        failed = int(total * failure_rate)
        server_errors = int(failed * rng.uniform(0.3, 0.6)) if reachable else 0

        return {
            "simulated": True,
            "metrics": {
                "http_req_duration": {
                    "avg": latency,
                    "med": latency * 0.9,
                    "p(95)": latency * 1.5,
                    "p(99)": latency * 2.2,
                    "max": latency * 4,
                },
                "http_reqs": {"count": total, "rate": total / duration_s if duration_s else 0.0},
                "http_req_failed": {
                    "passes": failed,
                    "fails": total - failed,
                    "value": failed / total,
                },
                "server_errors": {"count": server_errors},
                "vus": {"value": vus, "min": vus, "max": vus},
            },
            "state": {"testRunDurationMs": int(duration_s * 1000)},
        }
