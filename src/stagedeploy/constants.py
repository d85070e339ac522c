"""Shared constants for stagedeploy."""

MODE_FULL_APPLY = "full-apply"
MODE_LAYERED_APPLY = "layered-apply"
MODE_DRY_RUN = "dry-run"
MODE_DESTROY = "destroy"
MODE_REDEPLOY = "redeploy"
MODE_CONFIGURE_ONLY = "configure-only"
MODE_VALIDATE = "validate"

VALID_MODES = (
    MODE_FULL_APPLY,
    MODE_LAYERED_APPLY,
    MODE_DRY_RUN,
    MODE_DESTROY,
    MODE_REDEPLOY,
    MODE_CONFIGURE_ONLY,
    MODE_VALIDATE,
)

# Modes that change infrastructure or the configured target.
MUTATING_MODES = (
    MODE_FULL_APPLY,
    MODE_LAYERED_APPLY,
    MODE_DESTROY,
    MODE_REDEPLOY,
    MODE_CONFIGURE_ONLY,
)

MODE_COMMANDS = {
    MODE_FULL_APPLY: "stagedeploy deploy",
    MODE_LAYERED_APPLY: "stagedeploy layered-deploy",
    MODE_DRY_RUN: "stagedeploy layered-deploy --dry-run",
    MODE_DESTROY: "stagedeploy destroy",
    MODE_REDEPLOY: "stagedeploy redeploy",
    MODE_CONFIGURE_ONLY: "stagedeploy configure",
    MODE_VALIDATE: "stagedeploy validate",
}

KIND_INFRASTRUCTURE_PLAN = "infrastructure-plan"
KIND_INFRASTRUCTURE_APPLY = "infrastructure-apply"
KIND_INFRASTRUCTURE_DESTROY = "infrastructure-destroy"
KIND_READINESS_WAIT = "readiness-wait"
KIND_CONFIGURATION_APPLY = "configuration-apply"
KIND_CONFIGURATION_CHECK = "configuration-check"

STATUS_PENDING = "pending"
STATUS_RUNNING = "running"
STATUS_SUCCEEDED = "succeeded"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"

RESOLVED_STATUSES = (STATUS_SUCCEEDED, STATUS_SKIPPED)

OUTCOME_PENDING = "pending"
OUTCOME_SUCCEEDED = "succeeded"
OUTCOME_PARTIALLY_APPLIED = "partially-applied"
OUTCOME_ABORTED = "aborted"
OUTCOME_FAILED = "failed"

SUCCESSFUL_OUTCOMES = (OUTCOME_SUCCEEDED, OUTCOME_ABORTED)

DEFAULT_SETTINGS_FILE = ".stagedeploy.yml"
MIN_TERRAFORM_VERSION = "1.5.0"

AFFIRMATIVE_ANSWERS = ("y", "yes")

# ansible-playbook exits with 4 when hosts are unreachable.
ANSIBLE_UNREACHABLE_RETURNCODE = 4

FILE_MODE = 0o644
