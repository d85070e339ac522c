"""Bounded readiness polling for freshly provisioned targets."""

import time
from typing import Callable

import requests

from stagedeploy.errors import DeployError
from stagedeploy.models import ReadinessCheck

Probe = Callable[[ReadinessCheck, float], bool]


class SshProbe:
    """Considers a target ready once a non-interactive SSH command succeeds."""

    def __init__(self, command_runner, logger, connect_timeout: int = 5):
        self.command_runner = command_runner
        self.logger = logger
        self.connect_timeout = connect_timeout

    def build_command(self, check: ReadinessCheck):
        target = check.target
        return [
            "ssh",
            "-i",
            target.credential_reference,
            "-o",
            "StrictHostKeyChecking=accept-new",
            "-o",
            f"ConnectTimeout={self.connect_timeout}",
            "-o",
            "BatchMode=yes",
            f"{target.principal}@{target.host}",
            "echo ok",
        ]

    def __call__(self, check: ReadinessCheck, timeout: float) -> bool:
        try:
            result = self.command_runner.run(
                self.build_command(check),
                check=False,
                capture_output=True,
                timeout=timeout,
            )
        except DeployError as exc:
            self.logger.debug("SSH probe did not complete: %s", exc)
            return False
        return result.returncode == 0


class HttpProbe:
    """Considers a target ready once ``url_template`` answers without an error status."""

    def __init__(self, url_template: str, logger, requests_module=requests, request_timeout: float = 5.0):
        self.url_template = url_template
        self.logger = logger
        self.requests = requests_module
        self.request_timeout = request_timeout

    def __call__(self, check: ReadinessCheck, timeout: float) -> bool:
        url = self.url_template.format(host=check.target.host)
        try:
            response = self.requests.get(
                url,
                allow_redirects=True,
                timeout=min(self.request_timeout, timeout),
            )
            response.raise_for_status()
            response.close()
        except self.requests.RequestException as exc:
            self.logger.debug("HTTP probe against %s failed: %s", url, exc)
            return False
        return True


class ReadinessProber:
    """Polls a target until it answers or the attempt budget runs out.

    The whole call is bounded by ``interval_seconds * max_attempts``: sleeps
    and each probe's own timeout are capped by the remaining budget.
    """

    def __init__(self, probe: Probe, logger, console):
        self.probe = probe
        self.logger = logger
        self.console = console

    def wait(self, check: ReadinessCheck) -> bool:
        target = check.target
        budget = check.interval_seconds * check.max_attempts
        deadline = time.monotonic() + budget

        self.console.print(
            f"[yellow]Waiting for {target.principal}@{target.host} to become reachable "
            f"(up to {check.max_attempts} attempts, {check.interval_seconds:g}s apart)...[/yellow]"
        )

        while check.attempts_made < check.max_attempts:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break

            check.attempts_made += 1
            if self.probe(check, remaining):
                self.console.print(f"[green]{target.host} is reachable.[/green]")
                self.logger.info(
                    "Target %s ready after %s attempt(s).", target.host, check.attempts_made
                )
                return True

            self.logger.debug(
                "Readiness attempt %s/%s against %s failed.",
                check.attempts_made,
                check.max_attempts,
                target.host,
            )
            if check.attempts_made >= check.max_attempts:
                break

            pause = min(check.interval_seconds, deadline - time.monotonic())
            if pause <= 0:
                break
            time.sleep(pause)

        return False
