"""Stage lists for each orchestrator mode."""

from functools import partial
from typing import List, Sequence

from stagedeploy.constants import (
    KIND_CONFIGURATION_APPLY,
    KIND_CONFIGURATION_CHECK,
    KIND_INFRASTRUCTURE_APPLY,
    KIND_INFRASTRUCTURE_DESTROY,
    KIND_INFRASTRUCTURE_PLAN,
    KIND_READINESS_WAIT,
    MODE_CONFIGURE_ONLY,
    MODE_DESTROY,
    MODE_DRY_RUN,
    MODE_FULL_APPLY,
    MODE_LAYERED_APPLY,
    MODE_REDEPLOY,
    MODE_VALIDATE,
    STATUS_SKIPPED,
)
from stagedeploy.errors import DeployError
from stagedeploy.models import DeploymentRun, ReadinessCheck, Settings, Stage


class StagePlanner:
    """Builds the ordered stage list for a mode and binds each stage to its engine call."""

    def __init__(
        self,
        settings: Settings,
        terraform_engine,
        configuration_engine,
        prober,
        inventory_service,
        logger,
        console,
    ):
        self.settings = settings
        self.terraform = terraform_engine
        self.configuration = configuration_engine
        self.prober = prober
        self.inventory = inventory_service
        self.logger = logger
        self.console = console

    def build(self, mode: str, skip_destroy: bool = False, skip_deploy: bool = False) -> List[Stage]:
        if mode == MODE_LAYERED_APPLY:
            stages = self.layered_stages()
        elif mode == MODE_FULL_APPLY:
            stages = self.full_apply_stages()
        elif mode == MODE_DRY_RUN:
            stages = self.dry_run_stages()
        elif mode == MODE_DESTROY:
            stages = self.destroy_stages()
        elif mode == MODE_REDEPLOY:
            stages = self.redeploy_stages(skip_destroy=skip_destroy, skip_deploy=skip_deploy)
        elif mode == MODE_CONFIGURE_ONLY:
            stages = [self._configuration_stage()]
        elif mode == MODE_VALIDATE:
            stages = self.validate_stages()
        else:
            raise DeployError(f"Unsupported mode: {mode}")

        return self._number(stages)

    @staticmethod
    def _number(stages: List[Stage]) -> List[Stage]:
        for index, stage in enumerate(stages, start=1):
            stage.order = index
        return stages

    def layered_stages(self) -> List[Stage]:
        settings = self.settings
        stages = [
            Stage(
                name="plan_infrastructure",
                order=0,
                kind=KIND_INFRASTRUCTURE_PLAN,
                title="Infrastructure validation & planning",
                action=self.plan_infrastructure,
            ),
            self._apply_stage(
                "apply_core_infrastructure",
                "Core infrastructure",
                settings.core_targets,
                prompt="Review the plan above. Continue with core infrastructure?",
            ),
            self._readiness_stage(
                requires_confirmation=True,
                prompt="Core infrastructure applied. Continue with the readiness wait?",
            ),
            self._configuration_stage(
                requires_confirmation=True,
                prompt="Readiness check complete. Continue with configuration management?",
            ),
        ]

        if settings.followup_targets:
            stages.append(
                self._apply_stage(
                    "apply_followup_infrastructure",
                    "Follow-up infrastructure",
                    settings.followup_targets,
                    prompt=(
                        "Configuration applied. Continue with "
                        f"{', '.join(settings.followup_targets)}?"
                    ),
                )
            )

        stages.append(
            self._apply_stage(
                "reconcile_infrastructure",
                "Final reconciliation (remaining resources)",
                (),
                prompt="Continue with the final reconciliation apply?",
            )
        )
        return stages

    def full_apply_stages(self) -> List[Stage]:
        return [
            self._apply_stage("apply_infrastructure", "Infrastructure", (), requires_confirmation=False),
            self._readiness_stage(),
            self._configuration_stage(),
        ]

    def dry_run_stages(self) -> List[Stage]:
        """Layered list with every apply swapped for a plan of the same scope.

        Readiness and configuration stages are dropped: nothing is live to reach.
        """
        stages = []
        for stage in self.layered_stages():
            if stage.kind == KIND_INFRASTRUCTURE_PLAN:
                stages.append(stage)
            elif stage.kind == KIND_INFRASTRUCTURE_APPLY:
                targets = tuple(stage.details.get("targets", ()))
                stages.append(
                    Stage(
                        name="plan_" + stage.name.replace("apply_", "", 1),
                        order=0,
                        kind=KIND_INFRASTRUCTURE_PLAN,
                        title=f"{stage.title} (plan only)",
                        action=partial(self.plan_infrastructure, targets=targets),
                        details={"targets": list(targets)},
                    )
                )
        return stages

    def destroy_stages(self) -> List[Stage]:
        return [
            Stage(
                name="destroy_infrastructure",
                order=0,
                kind=KIND_INFRASTRUCTURE_DESTROY,
                title="Destroy infrastructure",
                action=self.destroy_infrastructure,
                requires_confirmation=True,
                prompt=(
                    f"This will DESTROY all infrastructure managed in {self.settings.terraform_dir}. "
                    "Continue with destruction?"
                ),
            )
        ]

    def redeploy_stages(self, skip_destroy: bool = False, skip_deploy: bool = False) -> List[Stage]:
        destroy = self.destroy_stages()
        deploy = self.full_apply_stages()

        deploy[0].requires_confirmation = True
        deploy[0].prompt = "Ready to deploy new infrastructure. Continue?"

        if skip_destroy:
            self._mark_skipped(destroy, "--skip-destroy")
        if skip_deploy:
            self._mark_skipped(deploy, "--skip-deploy")

        return destroy + deploy

    def validate_stages(self) -> List[Stage]:
        return [
            Stage(
                name="validate_infrastructure",
                order=0,
                kind=KIND_INFRASTRUCTURE_PLAN,
                title="Terraform validation",
                action=self.validate_infrastructure,
            ),
            Stage(
                name="check_configuration_syntax",
                order=0,
                kind=KIND_CONFIGURATION_CHECK,
                title="Playbook syntax check",
                action=self.check_configuration_syntax,
            ),
        ]

    @staticmethod
    def _mark_skipped(stages: List[Stage], reason: str):
        for stage in stages:
            stage.status = STATUS_SKIPPED
            stage.details["skip_reason"] = reason

    def _apply_stage(
        self,
        name: str,
        title: str,
        targets: Sequence[str],
        prompt: str = "",
        requires_confirmation: bool = True,
    ) -> Stage:
        return Stage(
            name=name,
            order=0,
            kind=KIND_INFRASTRUCTURE_APPLY,
            title=title,
            action=partial(self.apply_infrastructure, targets=tuple(targets)),
            requires_confirmation=requires_confirmation,
            prompt=prompt or None,
            details={"targets": list(targets)},
        )

    def _readiness_stage(self, requires_confirmation: bool = False, prompt: str = "") -> Stage:
        return Stage(
            name="wait_for_target",
            order=0,
            kind=KIND_READINESS_WAIT,
            title="Wait for target readiness",
            action=self.wait_for_target,
            requires_confirmation=requires_confirmation,
            prompt=prompt or None,
        )

    def _configuration_stage(self, requires_confirmation: bool = False, prompt: str = "") -> Stage:
        return Stage(
            name="apply_configuration",
            order=0,
            kind=KIND_CONFIGURATION_APPLY,
            title="Configuration management",
            action=self.apply_configuration,
            requires_confirmation=requires_confirmation,
            prompt=prompt or None,
        )

    # Stage actions. Each receives the run and the stage it is executing.

    def plan_infrastructure(self, run: DeploymentRun, stage: Stage, targets: Sequence[str] = ()):
        stage.details["changes_pending"] = self.terraform.plan(targets=list(targets) or None)

    def apply_infrastructure(self, run: DeploymentRun, stage: Stage, targets: Sequence[str] = ()):
        outputs = self.terraform.apply(targets=list(targets) or None)
        run.outputs = dict(outputs)
        stage.details["outputs"] = sorted(outputs)

    def wait_for_target(self, run: DeploymentRun, stage: Stage):
        target = self.inventory.resolve_target(self._current_outputs(run))
        check = ReadinessCheck(
            target=target,
            interval_seconds=self.settings.readiness_interval_seconds,
            max_attempts=self.settings.readiness_max_attempts,
        )

        ready = self.prober.wait(check)
        stage.details.update({"host": target.host, "attempts": check.attempts_made, "ready": ready})
        if not ready:
            stage.warn(
                f"{target.host} was not reachable after {check.attempts_made} attempt(s). "
                "Continuing; the configuration stage retries its own connections."
            )

    def apply_configuration(self, run: DeploymentRun, stage: Stage):
        run.inventory = self.inventory.materialize(self._current_outputs(run))
        stage.details["host"] = run.inventory.host
        stage.details["inventory"] = run.inventory.path
        self.configuration.apply_configuration(run.inventory)

    def destroy_infrastructure(self, run: DeploymentRun, stage: Stage):
        clean = self.terraform.destroy()
        run.outputs = {}
        stage.details["clean"] = clean
        if not clean:
            stage.warn(
                "Destroy finished with errors and some resources may remain. "
                "Re-run destroy until it reports a clean state."
            )

    def validate_infrastructure(self, run: DeploymentRun, stage: Stage):
        self.terraform.validate(backend=False)
        if not self.terraform.format_check():
            stage.warn("Some Terraform files need formatting. Run `terraform fmt -recursive`.")

    def check_configuration_syntax(self, run: DeploymentRun, stage: Stage):
        self.configuration.syntax_check()

    def _current_outputs(self, run: DeploymentRun):
        if not run.outputs:
            self.logger.info("No outputs captured in this run; reading current Terraform outputs.")
            run.outputs = dict(self.terraform.outputs())
        return run.outputs
