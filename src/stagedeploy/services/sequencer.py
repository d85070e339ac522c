"""Ordered, gated execution of a deployment run's stages."""

from rich.markup import escape

from stagedeploy.constants import (
    MODE_COMMANDS,
    OUTCOME_ABORTED,
    OUTCOME_PARTIALLY_APPLIED,
    OUTCOME_SUCCEEDED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_RUNNING,
    STATUS_SKIPPED,
    STATUS_SUCCEEDED,
)
from stagedeploy.errors import DeployError
from stagedeploy.errors_catalog import actionable_error
from stagedeploy.models import DeploymentRun, Stage


class StageSequencer:
    """Runs stages one at a time, stopping on the first failure or declined gate.

    Nothing is rolled back: stages that succeeded stay applied and recovery is
    a fresh invocation of the same mode.
    """

    def __init__(self, confirmation_service, logger, console, manifest_service=None):
        self.confirmation_service = confirmation_service
        self.logger = logger
        self.console = console
        self.manifest_service = manifest_service

    def execute(self, run: DeploymentRun) -> str:
        if run.is_terminal:
            raise DeployError(f"Run {run.run_id} already finished with outcome '{run.outcome}'.")

        for stage in run.stages:
            if stage.status == STATUS_SKIPPED:
                self._skip(stage)
                continue

            if stage.requires_confirmation:
                prompt = stage.prompt or f"Continue with {stage.title or stage.name}?"
                gate = self.confirmation_service.confirm(prompt, auto_approve=run.auto_approve)
                if not gate.approved:
                    self.console.print(
                        f"[yellow]Stopped before stage {stage.order} ({stage.name}). "
                        "Completed stages were left in place.[/yellow]"
                    )
                    self.logger.info("Run %s aborted at stage '%s'.", run.run_id, stage.name)
                    run.outcome = OUTCOME_ABORTED
                    return run.outcome

            self._ensure_prerequisites(run, stage)

            if not self._run_stage(run, stage):
                run.outcome = OUTCOME_PARTIALLY_APPLIED
                return run.outcome

        run.outcome = OUTCOME_SUCCEEDED
        return run.outcome

    def _ensure_prerequisites(self, run: DeploymentRun, stage: Stage):
        if stage.status != STATUS_PENDING:
            raise DeployError(f"Stage '{stage.name}' is not pending (status: {stage.status}).")

        unresolved = [other.name for other in run.stages_before(stage) if not other.is_resolved]
        if unresolved:
            raise DeployError(
                f"Stage '{stage.name}' cannot start before {', '.join(unresolved)} resolved."
            )

    def _skip(self, stage: Stage):
        reason = stage.details.get("skip_reason", "skipped by request")
        self.console.print(f"[dim]Skipping stage {stage.order} ({stage.name}): {reason}[/dim]")
        self.logger.info("Skipping stage '%s': %s", stage.name, reason)
        if self.manifest_service:
            self.manifest_service.stage_skipped(stage.name, stage.order, stage.kind, reason)

    def _run_stage(self, run: DeploymentRun, stage: Stage) -> bool:
        stage.status = STATUS_RUNNING
        if self.manifest_service:
            self.manifest_service.stage_started(stage.name, stage.order, stage.kind)

        self.console.print(
            f"[bold cyan]Stage {stage.order}: {stage.title or stage.name}[/bold cyan]"
        )
        self.logger.info("Stage %s (%s) started.", stage.order, stage.name)

        try:
            if stage.action is None:
                raise DeployError(f"Stage '{stage.name}' has no action bound.")
            stage.action(run, stage)
        except KeyboardInterrupt:
            self._fail(stage, "Interrupted by operator.")
            raise
        except DeployError as exc:
            self._report_failure(run, stage, exc)
            return False
        except Exception as exc:
            self.logger.exception("Unexpected error in stage '%s'", stage.name)
            self._report_failure(run, stage, exc)
            return False

        stage.status = STATUS_SUCCEEDED
        for warning in stage.warnings:
            self.console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")
            self.logger.warning(warning)
        if self.manifest_service:
            self.manifest_service.stage_finished(
                stage.name,
                STATUS_SUCCEEDED,
                warnings=stage.warnings,
                details=stage.details,
            )
        self.console.print(f"[green]Stage {stage.order} ({stage.name}) complete.[/green]")
        return True

    def _report_failure(self, run: DeploymentRun, stage: Stage, exc: Exception):
        call = getattr(exc, "call", None) or stage.name
        guidance = actionable_error(
            "stage_failed",
            stage=stage.name,
            call=call,
            command=MODE_COMMANDS.get(run.mode, "stagedeploy"),
        )
        self._fail(stage, str(exc))
        self.console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        self.console.print(f"[red]{escape(guidance)}[/red]")
        self.logger.error("%s %s", guidance, exc)

    def _fail(self, stage: Stage, error: str):
        stage.status = STATUS_FAILED
        stage.error = error
        if self.manifest_service:
            self.manifest_service.stage_finished(
                stage.name,
                STATUS_FAILED,
                warnings=stage.warnings,
                details=stage.details,
                error=error,
            )
