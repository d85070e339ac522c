"""Domain errors for stagedeploy."""

from typing import Optional


class DeployError(RuntimeError):
    """Raised when the deployment cannot continue safely."""


class PreflightError(DeployError):
    """Raised when a pre-flight check fails before any stage runs."""


class EngineError(DeployError):
    """Raised when an infrastructure or configuration engine call fails."""

    def __init__(self, message: str, call: Optional[str] = None):
        super().__init__(message)
        self.call = call
