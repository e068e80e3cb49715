"""Tests for the load runner state machine and simulation fallback."""

import json
import os
import random
import stat
import sys
import tempfile

import httpx
import pytest

from launchready.config import RunnerConfig
from launchready.models import LoadOptions
from launchready.normalizer import normalize
from launchready.runner import LoadRunner, RunFailed, RunState, parse_duration


def _ok_transport():
    return httpx.MockTransport(lambda request: httpx.Response(200, text="ok"))


def _down_transport():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    return httpx.MockTransport(handler)


def _fake_k6(tmpdir, body):
    """Write an executable stand-in for the k6 binary."""
    path = os.path.join(tmpdir, "fake-k6")
    with open(path, "w") as f:
        f.write(f"#!{sys.executable}\n{body}")
    os.chmod(path, os.stat(path).st_mode | stat.S_IEXEC)
    return path


_WRITES_SUMMARY = """
import json, sys
args = sys.argv[1:]
if args[0] == "version":
    print("k6 v0.50.0")
    sys.exit(0)
out = args[args.index("--summary-export") + 1]
with open(out, "w") as f:
    json.dump({"metrics": {"http_reqs": {"count": 10, "rate": 2.0}}}, f)
sys.exit(EXIT_CODE)
"""


class TestParseDuration:
    @pytest.mark.parametrize(
        "value,expected",
        [("30s", 30.0), ("1m", 60.0), ("1m30s", 90.0), ("500ms", 0.5), ("2h", 7200.0), (45, 45.0), ("10", 10.0)],
    )
    def test_valid(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["", "soon", "10x", "s30"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)


class TestSimulationFallback:
    @pytest.mark.asyncio
    async def test_missing_binary_falls_back_once(self):
        config = RunnerConfig(binary="k6-binary-that-does-not-exist")
        runner = LoadRunner(config, rng=random.Random(7), transport=_ok_transport())
        raw = await runner.run("https://example.com", LoadOptions(virtual_users=20, duration="10s"))

        assert runner.state is RunState.SUCCESS
        assert runner.simulated is True
        assert raw["simulated"] is True
        metrics = normalize(raw)
        assert metrics.total_requests == 300
        assert metrics.vus == 20
        assert metrics.duration == 10000
        assert 220 * 0.75 <= metrics.latency.avg <= 220 * 1.25
        rate = metrics.failure_rate_under_test
        assert rate == 0.0 or 0.04 <= rate <= 0.12

    @pytest.mark.asyncio
    async def test_unreachable_target_fails_every_request(self):
        config = RunnerConfig(execution_mode="demo")
        runner = LoadRunner(config, rng=random.Random(1), transport=_down_transport())
        raw = await runner.run("https://unreachable.invalid", LoadOptions(virtual_users=10, duration="5s"))

        metrics = normalize(raw)
        assert metrics.failure_rate_under_test == 1.0
        assert metrics.server_error_rate == 0.0

    @pytest.mark.asyncio
    async def test_demo_mode_skips_binary_probe(self, monkeypatch):
        async def fail_probe():
            raise AssertionError("binary must not be probed in demo mode")

        runner = LoadRunner(RunnerConfig(execution_mode="demo"), transport=_ok_transport())
        monkeypatch.setattr(runner, "_probe_binary", fail_probe)
        await runner.run("https://example.com", LoadOptions(virtual_users=5, duration="2s"))
        assert runner.simulated is True

    @pytest.mark.asyncio
    async def test_failure_chance_produces_bounded_noise(self):
        config = RunnerConfig(execution_mode="demo", simulated_failure_chance=1.0)
        for seed in range(5):
            runner = LoadRunner(config, rng=random.Random(seed), transport=_ok_transport())
            raw = await runner.run("https://example.com", LoadOptions(virtual_users=100, duration="30s"))
            rate = normalize(raw).failure_rate_under_test
            assert 0.039 <= rate <= 0.12


@pytest.mark.skipif(sys.platform == "win32", reason="uses a POSIX shebang script")
class TestRealRun:
    @pytest.mark.asyncio
    async def test_successful_run(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            binary = _fake_k6(tmpdir, _WRITES_SUMMARY.replace("EXIT_CODE", "0"))
            runner = LoadRunner(RunnerConfig(binary=binary))
            raw = await runner.run("https://example.com", LoadOptions(virtual_users=1, duration="1s"))
        assert runner.state is RunState.SUCCESS
        assert runner.simulated is False
        assert raw["metrics"]["http_reqs"]["count"] == 10

    @pytest.mark.asyncio
    async def test_thresholds_crossed_still_returns_summary(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            binary = _fake_k6(tmpdir, _WRITES_SUMMARY.replace("EXIT_CODE", "99"))
            raw = await LoadRunner(RunnerConfig(binary=binary)).run("https://example.com")
        assert raw["metrics"]["http_reqs"]["rate"] == 2.0

    @pytest.mark.asyncio
    async def test_non_zero_exit_raises_without_fallback(self):
        body = (
            "import sys\n"
            "if sys.argv[1] == 'version':\n"
            "    print('k6 v0.50.0'); sys.exit(0)\n"
            "sys.stderr.write('boom'); sys.exit(107)\n"
        )
        with tempfile.TemporaryDirectory() as tmpdir:
            runner = LoadRunner(RunnerConfig(binary=_fake_k6(tmpdir, body)))
            with pytest.raises(RunFailed, match="107"):
                await runner.run("https://example.com")
        assert runner.state is RunState.FAILED
        assert runner.simulated is False

    @pytest.mark.asyncio
    async def test_missing_output_file(self):
        body = "import sys\nsys.exit(0)\n"
        with tempfile.TemporaryDirectory() as tmpdir:
            runner = LoadRunner(RunnerConfig(binary=_fake_k6(tmpdir, body)))
            with pytest.raises(RunFailed, match="output file not found"):
                await runner.run("https://example.com")
        assert runner.state is RunState.FAILED

    @pytest.mark.asyncio
    async def test_unparseable_output(self):
        body = (
            "import sys\n"
            "args = sys.argv[1:]\n"
            "if args[0] != 'version':\n"
            "    open(args[args.index('--summary-export') + 1], 'w').write('{broken')\n"
        )
        with tempfile.TemporaryDirectory() as tmpdir:
            runner = LoadRunner(RunnerConfig(binary=_fake_k6(tmpdir, body)))
            with pytest.raises(RunFailed, match="failed to read"):
                await runner.run("https://example.com")

    @pytest.mark.asyncio
    async def test_failed_version_probe_falls_back(self):
        body = "import sys\nsys.exit(1)\n"
        with tempfile.TemporaryDirectory() as tmpdir:
            runner = LoadRunner(
                RunnerConfig(binary=_fake_k6(tmpdir, body)),
                transport=_ok_transport(),
            )
            raw = await runner.run("https://example.com", LoadOptions(virtual_users=2, duration="1s"))
        assert runner.simulated is True
        assert json.dumps(raw)
