"""Shared domain models for stagedeploy."""

import os
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .constants import (
    OUTCOME_PENDING,
    RESOLVED_STATUSES,
    STATUS_PENDING,
)
from .errors import DeployError


@dataclass(frozen=True)
class Settings:
    """Deployment settings loaded once per invocation and shared by reference."""

    source_path: Optional[str] = None
    region: Optional[str] = None
    aws_profile: Optional[str] = None
    instance_type: Optional[str] = None
    ssh_allowed_cidr: Optional[str] = None
    alert_email: Optional[str] = None
    ssh_key_name: Optional[str] = None
    ssh_private_key_file: Optional[str] = None
    features: Dict[str, bool] = field(default_factory=dict)
    terraform_vars: Dict[str, Any] = field(default_factory=dict)
    terraform_dir: str = "terraform"
    ansible_dir: str = "ansible"
    playbook: str = "playbooks/site.yml"
    inventory_file: str = "inventory/hosts.ini"
    inventory_group: str = "servers"
    core_targets: Tuple[str, ...] = ()
    followup_targets: Tuple[str, ...] = ()
    host_output: str = "public_ip"
    principal_output: str = "ssh_user"
    credential_output: Optional[str] = None
    summary_outputs: Tuple[str, ...] = ("public_ip", "fqdn", "ssh_user")
    readiness_probe: str = "ssh"
    readiness_url: Optional[str] = None
    readiness_interval_seconds: float = 5.0
    readiness_max_attempts: int = 60
    configuration_retry_count: int = 1
    configuration_retry_backoff_seconds: float = 10.0
    credentials_command: Tuple[str, ...] = ("aws", "sts", "get-caller-identity")
    required_env: Tuple[str, ...] = ()
    manifest_file: str = ".stagedeploy/run-manifest.json"

    @property
    def inventory_path(self) -> str:
        return os.path.join(self.ansible_dir, self.inventory_file)


@dataclass(frozen=True)
class Target:
    """A reachable host and the principal/credential used to connect to it."""

    host: str
    principal: str
    credential_reference: str


@dataclass
class ReadinessCheck:
    target: Target
    interval_seconds: float
    max_attempts: int
    attempts_made: int = 0


@dataclass(frozen=True)
class Inventory:
    """Configuration-engine inventory derived from infrastructure outputs."""

    host: str
    principal: str
    credential_reference: str
    group: str
    path: Optional[str] = None


@dataclass
class ConfirmationGate:
    prompt: str
    resolved: bool = False
    approved: bool = False


StageAction = Callable[["DeploymentRun", "Stage"], None]


@dataclass
class Stage:
    """One ordered unit of the provisioning workflow."""

    name: str
    order: int
    kind: str
    action: Optional[StageAction] = field(default=None, repr=False, compare=False)
    title: str = ""
    requires_confirmation: bool = False
    prompt: Optional[str] = None
    status: str = STATUS_PENDING
    warnings: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self.status in RESOLVED_STATUSES

    def warn(self, message: str):
        self.warnings.append(message)


@dataclass
class DeploymentRun:
    """A single invocation of the orchestrator and its stage list."""

    mode: str
    auto_approve: bool
    stages: List[Stage]
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:10])
    outcome: str = OUTCOME_PENDING
    outputs: Dict[str, Any] = field(default_factory=dict)
    inventory: Optional[Inventory] = None

    def __post_init__(self):
        orders = [stage.order for stage in self.stages]
        if any(later <= earlier for earlier, later in zip(orders, orders[1:])):
            raise DeployError(f"Stage order must be strictly increasing, got {orders}.")

    @property
    def is_terminal(self) -> bool:
        return self.outcome != OUTCOME_PENDING

    def stage(self, name: str) -> Stage:
        for stage in self.stages:
            if stage.name == name:
                return stage
        raise KeyError(name)

    def stages_before(self, stage: Stage) -> List[Stage]:
        return [other for other in self.stages if other.order < stage.order]
