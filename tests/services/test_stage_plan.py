import pytest

from stagedeploy.errors import DeployError
from stagedeploy.models import DeploymentRun, Inventory, Settings
from stagedeploy.services.inventory import InventoryService
from stagedeploy.services.stage_plan import StagePlanner


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


class FakeTerraform:
    def __init__(self, outputs=None, destroy_clean=True, formatted=True):
        self.calls = []
        self.outputs_value = outputs if outputs is not None else {"public_ip": "203.0.113.7", "ssh_user": "ec2-user"}
        self.destroy_clean = destroy_clean
        self.formatted = formatted

    def plan(self, targets=None):
        self.calls.append(("plan", targets))
        return True

    def apply(self, targets=None):
        self.calls.append(("apply", targets))
        return dict(self.outputs_value)

    def destroy(self):
        self.calls.append(("destroy", None))
        return self.destroy_clean

    def outputs(self):
        self.calls.append(("outputs", None))
        return dict(self.outputs_value)

    def validate(self, backend=True):
        self.calls.append(("validate", backend))

    def format_check(self):
        return self.formatted


class FakeConfiguration:
    def __init__(self):
        self.applied = []
        self.syntax_checked = False

    def apply_configuration(self, inventory):
        self.applied.append(inventory)

    def syntax_check(self):
        self.syntax_checked = True


class FakeProber:
    def __init__(self, ready=True):
        self.ready = ready
        self.checks = []

    def wait(self, check):
        self.checks.append(check)
        check.attempts_made = 1 if self.ready else check.max_attempts
        return self.ready


class FakeInventoryService(InventoryService):
    """Resolves targets like the real service but never touches the filesystem."""

    def materialize(self, outputs):
        target = self.resolve_target(outputs)
        return Inventory(
            host=target.host,
            principal=target.principal,
            credential_reference=target.credential_reference,
            group=self.settings.inventory_group,
            path="hosts.ini",
        )


def build_planner(terraform=None, prober=None, **settings):
    values = {"ssh_private_key_file": "/keys/deploy.pem", "core_targets": ("module.core",)}
    values.update(settings)
    resolved = Settings(**values)
    terraform = terraform or FakeTerraform()
    configuration = FakeConfiguration()
    planner = StagePlanner(
        settings=resolved,
        terraform_engine=terraform,
        configuration_engine=configuration,
        prober=prober or FakeProber(),
        inventory_service=FakeInventoryService(resolved, logger=DummyLogger(), console=DummyConsole()),
        logger=DummyLogger(),
        console=DummyConsole(),
    )
    return planner, terraform, configuration


def names(stages):
    return [stage.name for stage in stages]


def run_all(planner, mode, stages):
    run = DeploymentRun(mode=mode, auto_approve=True, stages=stages)
    for stage in stages:
        if stage.status == "pending":
            stage.action(run, stage)
    return run


def test_layered_stages_follow_dependency_order():
    planner, _terraform, _configuration = build_planner()

    stages = planner.build("layered-apply")

    assert names(stages) == [
        "plan_infrastructure",
        "apply_core_infrastructure",
        "wait_for_target",
        "apply_configuration",
        "reconcile_infrastructure",
    ]
    assert [stage.order for stage in stages] == [1, 2, 3, 4, 5]
    assert [stage.requires_confirmation for stage in stages] == [False, True, True, True, True]
    assert stages[1].prompt == "Review the plan above. Continue with core infrastructure?"


def test_layered_stages_include_followup_layer_when_configured():
    planner, _terraform, _configuration = build_planner(followup_targets=("module.cost",))

    stages = planner.build("layered-apply")

    assert names(stages)[4:] == ["apply_followup_infrastructure", "reconcile_infrastructure"]
    assert stages[4].details["targets"] == ["module.cost"]


def test_layered_actions_drive_engines_in_order():
    planner, terraform, configuration = build_planner()

    run = run_all(planner, "layered-apply", planner.build("layered-apply"))

    assert terraform.calls == [("plan", None), ("apply", ["module.core"]), ("apply", None)]
    assert configuration.applied[0].host == "203.0.113.7"
    assert run.inventory.principal == "ec2-user"
    assert run.stage("plan_infrastructure").details["changes_pending"] is True


def test_dry_run_only_plans_each_layer():
    planner, terraform, configuration = build_planner(followup_targets=("module.cost",))

    stages = planner.build("dry-run")
    run_all(planner, "dry-run", stages)

    assert names(stages) == [
        "plan_infrastructure",
        "plan_core_infrastructure",
        "plan_followup_infrastructure",
        "plan_reconcile_infrastructure",
    ]
    assert all(not stage.requires_confirmation for stage in stages)
    assert [call[0] for call in terraform.calls] == ["plan"] * 4
    assert terraform.calls[1] == ("plan", ["module.core"])
    assert configuration.applied == []


def test_full_apply_is_untargeted_and_ungated():
    planner, terraform, configuration = build_planner()

    stages = planner.build("full-apply")
    run_all(planner, "full-apply", stages)

    assert names(stages) == ["apply_infrastructure", "wait_for_target", "apply_configuration"]
    assert not any(stage.requires_confirmation for stage in stages)
    assert terraform.calls == [("apply", None)]
    assert len(configuration.applied) == 1


def test_unreachable_target_is_a_warning():
    planner, _terraform, _configuration = build_planner(prober=FakeProber(ready=False), readiness_max_attempts=3)

    run = run_all(planner, "full-apply", planner.build("full-apply"))

    wait = run.stage("wait_for_target")
    assert wait.details == {"host": "203.0.113.7", "attempts": 3, "ready": False}
    assert "not reachable after 3 attempt(s)" in wait.warnings[0]


def test_destroy_partial_failure_is_a_warning():
    planner, terraform, _configuration = build_planner(terraform=FakeTerraform(destroy_clean=False))

    stages = planner.build("destroy")
    run = run_all(planner, "destroy", stages)

    assert stages[0].requires_confirmation is True
    assert run.stage("destroy_infrastructure").details["clean"] is False
    assert run.stage("destroy_infrastructure").warnings
    assert run.outputs == {}


def test_redeploy_gates_destroy_and_deploy_separately():
    planner, _terraform, _configuration = build_planner()

    stages = planner.build("redeploy")

    assert names(stages) == [
        "destroy_infrastructure",
        "apply_infrastructure",
        "wait_for_target",
        "apply_configuration",
    ]
    assert [stage.requires_confirmation for stage in stages] == [True, True, False, False]
    assert stages[1].prompt == "Ready to deploy new infrastructure. Continue?"


@pytest.mark.parametrize(
    "kwargs, skipped",
    [
        ({"skip_destroy": True}, ["destroy_infrastructure"]),
        ({"skip_deploy": True}, ["apply_infrastructure", "wait_for_target", "apply_configuration"]),
    ],
)
def test_redeploy_skip_flags_mark_stages_skipped(kwargs, skipped):
    planner, _terraform, _configuration = build_planner()

    stages = planner.build("redeploy", **kwargs)

    assert [stage.name for stage in stages if stage.status == "skipped"] == skipped


def test_configuration_reads_current_outputs_when_none_captured():
    planner, terraform, configuration = build_planner()

    run_all(planner, "configure-only", planner.build("configure-only"))

    assert terraform.calls == [("outputs", None)]
    assert configuration.applied[0].host == "203.0.113.7"


def test_validate_checks_without_backend():
    planner, terraform, configuration = build_planner(terraform=FakeTerraform(formatted=False))

    run = run_all(planner, "validate", planner.build("validate"))

    assert terraform.calls == [("validate", False)]
    assert configuration.syntax_checked is True
    assert run.stage("validate_infrastructure").warnings


def test_unknown_mode_is_rejected():
    planner, _terraform, _configuration = build_planner()

    with pytest.raises(DeployError, match="Unsupported mode"):
        planner.build("rollback")
