import logging
import os
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

from rich.console import Console
from rich.markup import escape

from .constants import (
    DEFAULT_SETTINGS_FILE,
    MODE_CONFIGURE_ONLY,
    MODE_DESTROY,
    MODE_DRY_RUN,
    MODE_FULL_APPLY,
    MODE_LAYERED_APPLY,
    MODE_REDEPLOY,
    MODE_VALIDATE,
    MUTATING_MODES,
    OUTCOME_ABORTED,
    OUTCOME_FAILED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_SKIPPED,
    STATUS_SUCCEEDED,
    SUCCESSFUL_OUTCOMES,
    VALID_MODES,
)
from .errors import DeployError
from .models import DeploymentRun
from .services.ansible_engine import AnsibleEngine
from .services.command_runner import CommandRunner
from .services.config_loader import ConfigLoader
from .services.confirmation import ConfirmationService
from .services.inventory import InventoryService
from .services.manifest import ManifestService
from .services.preflight import PreflightService
from .services.readiness import HttpProbe, ReadinessProber, SshProbe
from .services.sequencer import StageSequencer
from .services.stage_plan import StagePlanner
from .services.terraform_engine import TerraformEngine

console = Console()
logger = logging.getLogger("stagedeploy")


class Orchestrator:
    """Mode controller: picks the stage list, runs pre-flight checks, hands off to the sequencer."""

    VALID_MODES = list(VALID_MODES)
    AUTO_APPROVED_MODES = (MODE_FULL_APPLY, MODE_DRY_RUN, MODE_CONFIGURE_ONLY, MODE_VALIDATE)
    CONFIGURING_MODES = (MODE_FULL_APPLY, MODE_LAYERED_APPLY, MODE_REDEPLOY)

    def __init__(
        self,
        mode: str,
        config_path: Optional[str] = None,
        auto_approve: bool = False,
        skip_destroy: bool = False,
        skip_deploy: bool = False,
        host: Optional[str] = None,
        user: Optional[str] = None,
        terraform_engine=None,
        configuration_engine=None,
        probe=None,
        input_func=None,
        preflight_service=None,
    ):
        if mode not in VALID_MODES:
            raise DeployError(f"Invalid mode. Supported modes: {', '.join(VALID_MODES)}")
        if (host is None) != (user is None):
            raise DeployError("--host and --user must be provided together.")
        if host is not None and mode != MODE_CONFIGURE_ONLY:
            raise DeployError("A host override is only supported when configuring an existing target.")

        self.mode = mode
        self.skip_destroy = skip_destroy
        self.skip_deploy = skip_deploy
        self.host = host
        self.user = user
        self.auto_approve = mode in self.AUTO_APPROVED_MODES or bool(auto_approve)

        self.config_path = config_path or os.path.join(os.getcwd(), DEFAULT_SETTINGS_FILE)
        self.settings = ConfigLoader().load_settings(self.config_path)
        self.deployment: Optional[DeploymentRun] = None

        self.command_runner = CommandRunner(logger=logger)
        self.preflight_service = preflight_service or PreflightService(
            command_runner=self.command_runner,
            logger=logger,
            console=console,
        )
        self.terraform_engine = terraform_engine or self._build_terraform_engine()
        self.configuration_engine = configuration_engine or AnsibleEngine(
            settings=self.settings,
            command_runner=self.command_runner,
            logger=logger,
            console=console,
        )
        # An explicit host is not a Terraform output, so neither is its credential.
        inventory_settings = replace(self.settings, credential_output=None) if host else self.settings
        self.inventory_service = InventoryService(inventory_settings, logger=logger, console=console)
        self.prober = ReadinessProber(probe or self._build_probe(), logger=logger, console=console)
        self.confirmation_service = ConfirmationService(
            logger=logger,
            console=console,
            input_func=input_func,
        )
        self.manifest_service = ManifestService(self.settings.manifest_file, logger=logger)
        self.sequencer = StageSequencer(
            confirmation_service=self.confirmation_service,
            logger=logger,
            console=console,
            manifest_service=self.manifest_service,
        )
        self.planner = StagePlanner(
            settings=self.settings,
            terraform_engine=self.terraform_engine,
            configuration_engine=self.configuration_engine,
            prober=self.prober,
            inventory_service=self.inventory_service,
            logger=logger,
            console=console,
        )

    def _build_terraform_engine(self):
        return TerraformEngine(
            settings=self.settings,
            command_runner=self.command_runner,
            logger=logger,
            console=console,
        )

    def _build_probe(self):
        if self.settings.readiness_probe == "http":
            return HttpProbe(self.settings.readiness_url, logger=logger)
        return SshProbe(self.command_runner, logger=logger)

    @property
    def uses_terraform(self) -> bool:
        return not (self.mode == MODE_CONFIGURE_ONLY and self.host)

    def preflight_requirements(self) -> Tuple[List[str], bool, bool]:
        tools: List[str] = []
        if self.uses_terraform:
            tools.append("terraform")
        if self.mode in self.CONFIGURING_MODES + (MODE_CONFIGURE_ONLY, MODE_VALIDATE):
            tools.append("ansible-playbook")
        if self.mode in self.CONFIGURING_MODES and self.settings.readiness_probe == "ssh":
            tools.append("ssh")

        require_settings = self.mode in MUTATING_MODES
        require_credentials = self.uses_terraform and self.mode != MODE_VALIDATE
        return tools, require_settings, require_credentials

    def preflight(self):
        tools, require_settings, require_credentials = self.preflight_requirements()
        self.preflight_service.run(
            self.settings,
            tools=tools,
            require_settings=require_settings,
            require_credentials=require_credentials,
            settings_path=self.config_path,
        )

    def build_run(self) -> DeploymentRun:
        stages = self.planner.build(
            self.mode,
            skip_destroy=self.skip_destroy,
            skip_deploy=self.skip_deploy,
        )
        deployment = DeploymentRun(mode=self.mode, auto_approve=self.auto_approve, stages=stages)
        if self.host:
            deployment.outputs = {
                self.settings.host_output: self.host,
                self.settings.principal_output: self.user,
            }
        return deployment

    def run(self) -> int:
        logger.info("Starting stagedeploy (%s)...", self.mode)
        if self.mode == MODE_DRY_RUN:
            console.print("[bold blue]DRY-RUN MODE: no changes will be applied.[/bold blue]")

        try:
            self.preflight()
        except DeployError as exc:
            console.print(f"[bold red]Pre-flight failed:[/bold red] {escape(str(exc))}")
            logger.error(str(exc))
            return 1

        deployment = self.build_run()
        self.deployment = deployment
        self.manifest_service.start_run(
            run_id=deployment.run_id,
            mode=deployment.mode,
            auto_approve=deployment.auto_approve,
            settings_file=self.settings.source_path,
        )

        exit_code = 1
        manifest_error: Optional[str] = None
        try:
            outcome = self.sequencer.execute(deployment)
            manifest_error = self._first_error(deployment)
            exit_code = 0 if outcome in SUCCESSFUL_OUTCOMES else 1
        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            deployment.outcome = OUTCOME_ABORTED
            manifest_error = "Operation cancelled by user."
        except DeployError as exc:
            console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
            logger.error(str(exc))
            deployment.outcome = OUTCOME_FAILED
            manifest_error = str(exc)
        finally:
            self.manifest_service.set_outputs(self.summary_outputs(deployment))
            self.manifest_service.finalize(deployment.outcome, error=manifest_error)

        self.print_summary(deployment)
        return exit_code

    @staticmethod
    def _first_error(deployment: DeploymentRun) -> Optional[str]:
        for stage in deployment.stages:
            if stage.status == STATUS_FAILED:
                return stage.error
        return None

    def summary_outputs(self, deployment: DeploymentRun) -> Dict[str, Any]:
        return {
            name: deployment.outputs[name]
            for name in self.settings.summary_outputs
            if deployment.outputs.get(name) not in (None, "")
        }

    def print_summary(self, deployment: DeploymentRun):
        styles = {
            STATUS_SUCCEEDED: "green",
            STATUS_FAILED: "red",
            STATUS_SKIPPED: "dim",
            STATUS_PENDING: "dim",
        }

        console.print("")
        console.print(f"[bold]Run {deployment.run_id} ({deployment.mode}): {deployment.outcome}[/bold]")
        for stage in deployment.stages:
            style = styles.get(stage.status, "yellow")
            console.print(f"  [{style}]{stage.order}. {stage.name}: {stage.status}[/{style}]")
            for warning in stage.warnings:
                console.print(f"     [yellow]! {escape(warning)}[/yellow]")

        outputs = self.summary_outputs(deployment)
        if outputs:
            console.print("")
            for name, value in outputs.items():
                console.print(f"  {name}: {escape(str(value))}")

        if deployment.inventory and deployment.mode != MODE_DESTROY:
            inventory = deployment.inventory
            console.print(
                f"  ssh -i {escape(inventory.credential_reference)} {inventory.principal}@{inventory.host}"
            )
