"""Ansible-backed configuration management engine."""

import os
from typing import Dict

from stagedeploy.constants import ANSIBLE_UNREACHABLE_RETURNCODE
from stagedeploy.errors import DeployError, EngineError
from stagedeploy.models import Inventory, Settings


class AnsibleEngine:
    """Applies the site playbook against a materialized inventory."""

    def __init__(self, settings: Settings, command_runner, logger, console, environ=None):
        self.settings = settings
        self.command_runner = command_runner
        self.logger = logger
        self.console = console
        self.environ = environ if environ is not None else os.environ

    def build_env(self) -> Dict[str, str]:
        env = dict(self.environ)
        env.setdefault("ANSIBLE_FORCE_COLOR", "1")
        if self.settings.region:
            env["AWS_REGION"] = self.settings.region
        if self.settings.aws_profile:
            env["AWS_PROFILE"] = self.settings.aws_profile
        return env

    def apply_configuration(self, inventory: Inventory):
        if not inventory.path:
            raise EngineError(
                "Inventory has not been written to disk.",
                call="ansible-playbook",
            )

        inventory_path = os.path.abspath(inventory.path)
        call = f"ansible-playbook -i {inventory_path} {self.settings.playbook}"
        self.console.print(
            f"[blue]Configuring {inventory.principal}@{inventory.host} with {self.settings.playbook}...[/blue]"
        )

        try:
            self.command_runner.run(
                ["ansible-playbook", "-i", inventory_path, self.settings.playbook],
                cwd=self.settings.ansible_dir,
                env=self.build_env(),
                retry_count=self.settings.configuration_retry_count,
                retry_backoff_seconds=self.settings.configuration_retry_backoff_seconds,
                retry_on_returncodes=[ANSIBLE_UNREACHABLE_RETURNCODE],
            )
        except DeployError as exc:
            raise EngineError(str(exc), call=call) from exc

        self.console.print("[green]Configuration applied.[/green]")

    def syntax_check(self):
        call = f"ansible-playbook --syntax-check {self.settings.playbook}"
        try:
            self.command_runner.run(
                ["ansible-playbook", "--syntax-check", self.settings.playbook],
                capture_output=True,
                cwd=self.settings.ansible_dir,
                env=self.build_env(),
            )
        except DeployError as exc:
            raise EngineError(str(exc), call=call) from exc
