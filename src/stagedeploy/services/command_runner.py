"""Subprocess execution service for stagedeploy."""

import subprocess
import time
from typing import Dict, Iterable, List, Optional

from stagedeploy.errors import DeployError


class CommandRunner:
    """Runs engine and probe commands, turning every failure mode into DeployError."""

    def __init__(self, logger):
        self.logger = logger

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        timeout: Optional[float] = None,
        retry_count: int = 0,
        retry_backoff_seconds: float = 0.0,
        retry_on_returncodes: Optional[Iterable[int]] = None,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> subprocess.CompletedProcess:
        """Runs ``cmd`` up to ``retry_count + 1`` times.

        A non-zero exit is retried only when its code is in
        ``retry_on_returncodes`` (any code when that is empty). Timeouts are
        always retried. With ``check=False`` the last failed result is
        returned instead of raised.
        """
        display = " ".join(cmd)
        self.logger.debug("Executing%s: %s", f" in {cwd}" if cwd else "", display)

        attempts = max(1, retry_count + 1)
        retryable = set(retry_on_returncodes or ())

        for attempt in range(1, attempts + 1):
            last_attempt = attempt == attempts
            try:
                result = self._spawn(cmd, capture_output, timeout, cwd, env)
            except subprocess.TimeoutExpired as exc:
                if last_attempt:
                    raise DeployError(f"Command timed out after {timeout}s: {display}") from exc
                self._wait_before_retry(attempt, attempts, retry_backoff_seconds, f"timed out: {display}")
                continue

            if capture_output and result.stdout:
                self.logger.debug("Command output: %s", result.stdout.strip())
            if result.returncode == 0:
                return result

            message = self._failure_message(result, display, capture_output)
            if not last_attempt and (not retryable or result.returncode in retryable):
                self._wait_before_retry(attempt, attempts, retry_backoff_seconds, message)
                continue

            if check:
                raise DeployError(message)
            self.logger.debug(message)
            return result

        raise DeployError(f"Command failed after retries: {display}")

    def _spawn(self, cmd, capture_output, timeout, cwd, env) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                cmd,
                text=True,
                capture_output=capture_output,
                timeout=timeout,
                cwd=cwd,
                env=env,
            )
        except FileNotFoundError as exc:
            raise DeployError(
                f"Required command not found: {cmd[0]}. Please install it and try again."
            ) from exc
        except OSError as exc:
            raise DeployError(f"Failed to execute command: {' '.join(cmd)}. {exc}") from exc

    @staticmethod
    def _failure_message(result: subprocess.CompletedProcess, display: str, capture_output: bool) -> str:
        message = f"Command failed ({result.returncode}): {display}"
        stderr = (result.stderr or "").strip() if capture_output else ""
        return f"{message}\n{stderr}" if stderr else message

    def _wait_before_retry(self, attempt: int, attempts: int, backoff: float, reason: str):
        self.logger.warning(
            "Attempt %s/%s failed, retrying in %.1fs.\n%s",
            attempt,
            attempts,
            backoff,
            reason,
        )
        time.sleep(backoff)
