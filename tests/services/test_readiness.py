import subprocess
from types import SimpleNamespace

import pytest
import requests

import stagedeploy.services.readiness as readiness_module
from stagedeploy.errors import DeployError
from stagedeploy.models import ReadinessCheck, Target
from stagedeploy.services.readiness import HttpProbe, ReadinessProber, SshProbe


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def info(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def monotonic(self):
        return self.now

    def sleep(self, seconds):
        assert seconds > 0
        self.now += seconds


@pytest.fixture
def clock(monkeypatch):
    fake = FakeClock()
    monkeypatch.setattr(readiness_module.time, "monotonic", fake.monotonic)
    monkeypatch.setattr(readiness_module.time, "sleep", fake.sleep)
    return fake


def build_check(interval=5.0, max_attempts=3):
    target = Target(host="203.0.113.7", principal="ec2-user", credential_reference="/keys/deploy.pem")
    return ReadinessCheck(target=target, interval_seconds=interval, max_attempts=max_attempts)


def test_wait_stops_after_max_attempts(clock):
    attempts = []

    def never_ready(check, timeout):
        attempts.append(clock.now)
        return False

    prober = ReadinessProber(never_ready, logger=DummyLogger(), console=DummyConsole())
    check = build_check(interval=5.0, max_attempts=3)

    assert prober.wait(check) is False
    assert check.attempts_made == 3
    assert attempts == [0.0, 5.0, 10.0]
    assert clock.now >= 10.0
    assert clock.now <= 15.0


def test_wait_returns_as_soon_as_target_answers(clock):
    answers = iter([False, True])

    prober = ReadinessProber(lambda check, timeout: next(answers), logger=DummyLogger(), console=DummyConsole())
    check = build_check(interval=5.0, max_attempts=60)

    assert prober.wait(check) is True
    assert check.attempts_made == 2
    assert clock.now == 5.0


def test_wait_never_exceeds_budget_with_slow_probes(clock):
    timeouts = []

    def slow_probe(check, timeout):
        timeouts.append(timeout)
        clock.now += 4.0
        return False

    prober = ReadinessProber(slow_probe, logger=DummyLogger(), console=DummyConsole())
    check = build_check(interval=5.0, max_attempts=3)

    assert prober.wait(check) is False
    assert clock.now <= 15.0
    assert check.attempts_made <= 3
    assert all(timeout <= 15.0 for timeout in timeouts)


def test_ssh_probe_builds_non_interactive_command():
    probe = SshProbe(command_runner=None, logger=DummyLogger())

    command = probe.build_command(build_check())

    assert command[:3] == ["ssh", "-i", "/keys/deploy.pem"]
    assert "BatchMode=yes" in command
    assert "ConnectTimeout=5" in command
    assert "StrictHostKeyChecking=accept-new" in command
    assert command[-2:] == ["ec2-user@203.0.113.7", "echo ok"]


def test_ssh_probe_reports_exit_status():
    calls = []

    class FakeRunner:
        def __init__(self, returncode):
            self.returncode = returncode

        def run(self, cmd, **kwargs):
            calls.append(kwargs)
            return subprocess.CompletedProcess(cmd, self.returncode, stdout="", stderr="")

    assert SshProbe(FakeRunner(0), logger=DummyLogger())(build_check(), 7.0) is True
    assert SshProbe(FakeRunner(255), logger=DummyLogger())(build_check(), 7.0) is False
    assert calls[0]["check"] is False
    assert calls[0]["timeout"] == 7.0


def test_ssh_probe_treats_runner_errors_as_not_ready():
    class FailingRunner:
        def run(self, cmd, **kwargs):
            raise DeployError("Command timed out after 5s")

    assert SshProbe(FailingRunner(), logger=DummyLogger())(build_check(), 5.0) is False


def test_http_probe_formats_url_and_checks_status():
    requested = []

    class FakeResponse:
        def raise_for_status(self):
            return None

        def close(self):
            return None

    def fake_get(url, **kwargs):
        requested.append((url, kwargs["timeout"]))
        return FakeResponse()

    fake_requests = SimpleNamespace(get=fake_get, RequestException=requests.RequestException)
    probe = HttpProbe("http://{host}:8080/health", logger=DummyLogger(), requests_module=fake_requests)

    assert probe(build_check(), 2.0) is True
    assert requested == [("http://203.0.113.7:8080/health", 2.0)]


def test_http_probe_treats_request_errors_as_not_ready():
    def fake_get(url, **kwargs):
        raise requests.ConnectionError("connection refused")

    fake_requests = SimpleNamespace(get=fake_get, RequestException=requests.RequestException)
    probe = HttpProbe("http://{host}/", logger=DummyLogger(), requests_module=fake_requests)

    assert probe(build_check(), 5.0) is False
