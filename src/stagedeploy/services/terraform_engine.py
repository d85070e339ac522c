"""Terraform-backed infrastructure engine."""

import json
import os
from typing import Any, Dict, List, Mapping, Optional, Sequence

from stagedeploy.errors import DeployError, EngineError
from stagedeploy.models import Settings


class TerraformEngine:
    """Drives ``terraform`` as a synchronous plan/apply/destroy collaborator."""

    PLAN_FILE = "tfplan"

    def __init__(self, settings: Settings, command_runner, logger, console, environ=None):
        self.settings = settings
        self.command_runner = command_runner
        self.logger = logger
        self.console = console
        self.environ = environ if environ is not None else os.environ
        self._initialized = False

    def build_env(self) -> Dict[str, str]:
        env = dict(self.environ)
        env["TF_IN_AUTOMATION"] = "1"

        settings = self.settings
        if settings.region:
            env["AWS_REGION"] = settings.region
        if settings.aws_profile:
            env["AWS_PROFILE"] = settings.aws_profile

        variables: Dict[str, Any] = {
            "aws_region": settings.region,
            "instance_type": settings.instance_type,
            "ssh_allowed_cidr": settings.ssh_allowed_cidr,
            "alert_email": settings.alert_email,
            "ssh_key_name": settings.ssh_key_name,
        }
        for feature, enabled in settings.features.items():
            variables[f"enable_{feature}"] = enabled
        variables.update(settings.terraform_vars)

        for name, value in variables.items():
            if value is None:
                continue
            env[f"TF_VAR_{name}"] = self._format_var(value)

        return env

    @staticmethod
    def _format_var(value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (list, dict)):
            return json.dumps(value)
        return str(value)

    @staticmethod
    def _target_args(targets: Optional[Sequence[str]]) -> List[str]:
        return [f"-target={target}" for target in targets or ()]

    def _describe(self, action: str, targets: Optional[Sequence[str]] = None) -> str:
        return " ".join(["terraform", action] + self._target_args(targets))

    def _terraform(self, args: List[str], call: str, check: bool = True, capture_output: bool = False):
        try:
            return self.command_runner.run(
                ["terraform"] + args,
                check=check,
                capture_output=capture_output,
                cwd=self.settings.terraform_dir,
                env=self.build_env(),
            )
        except DeployError as exc:
            raise EngineError(str(exc), call=call) from exc

    def init(self, backend: bool = True):
        if self._initialized and backend:
            return

        self.logger.info("Initializing Terraform in %s...", self.settings.terraform_dir)
        args = ["init", "-upgrade", "-input=false"]
        if not backend:
            args.append("-backend=false")
        self._terraform(args, call="terraform init", capture_output=True)
        if backend:
            self._initialized = True

    def validate(self, backend: bool = True):
        self.init(backend=backend)
        self.logger.info("Validating Terraform configuration...")
        self._terraform(["validate"], call="terraform validate", capture_output=True)

    def format_check(self) -> bool:
        result = self._terraform(
            ["fmt", "-check", "-recursive"],
            call="terraform fmt",
            check=False,
            capture_output=True,
        )
        return result.returncode == 0

    def plan(self, targets: Optional[Sequence[str]] = None) -> bool:
        """Plans without mutating anything; returns True when changes are pending."""
        call = self._describe("plan", targets)
        self.validate()

        self.console.print(f"[blue]Running {call}...[/blue]")
        args = ["plan", "-input=false", "-detailed-exitcode", f"-out={self.PLAN_FILE}"]
        result = self._terraform(args + self._target_args(targets), call=call, check=False)

        if result.returncode == 0:
            self.logger.info("No infrastructure changes pending.")
            return False
        if result.returncode == 2:
            self.logger.info("Infrastructure changes pending.")
            return True
        raise EngineError(f"Command failed ({result.returncode}): {call}", call=call)

    def apply(self, targets: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        call = self._describe("apply", targets)
        self.init()

        self.console.print(f"[blue]Running {call}...[/blue]")
        args = ["apply", "-input=false", "-auto-approve"] + self._target_args(targets)
        self._terraform(args, call=call)
        return self.outputs()

    def destroy(self) -> bool:
        """Tears everything down; returns False when the engine reports a partial failure."""
        self.init()

        self.console.print("[blue]Running terraform destroy...[/blue]")
        result = self._terraform(
            ["destroy", "-input=false", "-auto-approve"],
            call="terraform destroy",
            check=False,
        )
        return result.returncode == 0

    def outputs(self) -> Dict[str, Any]:
        self.init()
        result = self._terraform(
            ["output", "-json"],
            call="terraform output",
            capture_output=True,
        )
        return self.parse_outputs(result.stdout)

    @staticmethod
    def parse_outputs(raw: str) -> Dict[str, Any]:
        if not raw or not raw.strip():
            return {}

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise EngineError(f"Could not parse terraform outputs: {exc}", call="terraform output") from exc

        if not isinstance(data, Mapping):
            raise EngineError("Terraform outputs must be a JSON object.", call="terraform output")

        outputs: Dict[str, Any] = {}
        for name, entry in data.items():
            if isinstance(entry, Mapping) and "value" in entry:
                outputs[name] = entry["value"]
            else:
                outputs[name] = entry
        return outputs
