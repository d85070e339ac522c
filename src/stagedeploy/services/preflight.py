"""Pre-flight checks run before any stage or engine call."""

import json
import os
import shutil
from typing import Iterable, Optional

from packaging import version

from stagedeploy.constants import DEFAULT_SETTINGS_FILE, MIN_TERRAFORM_VERSION
from stagedeploy.errors import DeployError, PreflightError
from stagedeploy.errors_catalog import actionable_error
from stagedeploy.models import Settings


class PreflightService:
    """Verifies tools, credentials and settings so a failure leaves no partial state."""

    def __init__(self, command_runner, logger, console, which=shutil.which, environ=None):
        self.command_runner = command_runner
        self.logger = logger
        self.console = console
        self.which = which
        self.environ = environ if environ is not None else os.environ

    def run(
        self,
        settings: Settings,
        tools: Iterable[str],
        require_settings: bool,
        require_credentials: bool,
        settings_path: Optional[str] = None,
    ):
        self.console.print("[blue]Running pre-flight checks...[/blue]")
        self.check_settings_file(settings, require_settings, settings_path)

        tools = list(dict.fromkeys(tools))
        if require_credentials and settings.credentials_command:
            tools.append(settings.credentials_command[0])
        self.check_tools(tools)

        if "terraform" in tools:
            self.check_terraform_version()

        self.check_environment(settings)
        if require_credentials:
            self.check_credentials(settings)

        self.console.print("[green]Pre-flight checks passed.[/green]")

    def check_settings_file(self, settings: Settings, required: bool, settings_path: Optional[str] = None):
        if settings.source_path:
            self.logger.info("Using settings file %s", settings.source_path)
            return

        path = settings_path or DEFAULT_SETTINGS_FILE
        if required:
            raise PreflightError(actionable_error("settings_missing", path=path))

        self.logger.warning("Settings file %s not found; using defaults.", path)
        self.console.print(f"[yellow]Warning:[/yellow] {path} not found, using default settings.")

    def check_tools(self, tools: Iterable[str]):
        for tool in dict.fromkeys(tools):
            if not self.which(tool):
                raise PreflightError(actionable_error("tool_missing", tool=tool))
            self.logger.debug("Found required tool: %s", tool)
        self.console.print("[green]All prerequisites installed.[/green]")

    def check_terraform_version(self):
        try:
            result = self.command_runner.run(
                ["terraform", "version", "-json"],
                capture_output=True,
            )
            found = json.loads(result.stdout).get("terraform_version", "")
        except (DeployError, ValueError, TypeError, AttributeError) as exc:
            self.logger.warning("Could not determine Terraform version: %s", exc)
            return

        try:
            found_version = version.parse(found)
        except version.InvalidVersion:
            self.logger.warning("Unrecognized Terraform version string: %r", found)
            return

        if found_version < version.parse(MIN_TERRAFORM_VERSION):
            raise PreflightError(
                actionable_error(
                    "terraform_too_old",
                    found=found,
                    required=MIN_TERRAFORM_VERSION,
                )
            )
        self.logger.debug("Terraform version %s", found)

    def check_environment(self, settings: Settings):
        missing = [name for name in settings.required_env if not self.environ.get(name)]
        if missing:
            raise PreflightError(actionable_error("env_missing", names=", ".join(missing)))

    def check_credentials(self, settings: Settings):
        command = list(settings.credentials_command)
        if not command:
            return

        env = dict(self.environ)
        if settings.aws_profile:
            env["AWS_PROFILE"] = settings.aws_profile
        if settings.region:
            env["AWS_REGION"] = settings.region

        try:
            self.command_runner.run(command, capture_output=True, env=env)
        except DeployError as exc:
            raise PreflightError(
                actionable_error("credentials_unavailable", command=" ".join(command))
            ) from exc
        self.console.print("[green]Credentials configured.[/green]")
