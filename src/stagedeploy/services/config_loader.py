"""Settings loader for stagedeploy."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from stagedeploy.errors import DeployError
from stagedeploy.models import Settings


class ConfigLoader:
    """Loads the YAML settings file into a Settings struct."""

    STRING_KEYS = {
        "region",
        "aws_profile",
        "instance_type",
        "ssh_allowed_cidr",
        "alert_email",
        "ssh_key_name",
        "ssh_private_key_file",
        "terraform_dir",
        "ansible_dir",
        "playbook",
        "inventory_file",
        "inventory_group",
        "host_output",
        "principal_output",
        "credential_output",
        "readiness_probe",
        "readiness_url",
        "manifest_file",
    }
    LIST_KEYS = {
        "core_targets",
        "followup_targets",
        "summary_outputs",
        "credentials_command",
        "required_env",
    }
    MAPPING_KEYS = {"features", "terraform_vars"}
    NUMBER_KEYS = {
        "readiness_interval_seconds": float,
        "readiness_max_attempts": int,
        "configuration_retry_count": int,
        "configuration_retry_backoff_seconds": float,
    }
    READINESS_PROBES = ("ssh", "http")

    @property
    def supported_keys(self):
        return self.STRING_KEYS | self.LIST_KEYS | self.MAPPING_KEYS | set(self.NUMBER_KEYS)

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise DeployError(f"Settings file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise DeployError(f"Invalid settings file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise DeployError("Settings file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.supported_keys)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise DeployError(f"Unknown settings keys: {unknown_list}")

        return parsed

    def load_settings(self, config_path: Optional[str]) -> Settings:
        """Builds Settings from ``config_path``; a missing file yields defaults.

        Whether a missing file is acceptable is decided by the pre-flight
        checks, which look at ``Settings.source_path``.
        """
        if not config_path or not Path(config_path).exists():
            return Settings()

        values = self.load(config_path)
        return Settings(source_path=str(config_path), **self._coerce(values))

    def _coerce(self, values: Dict[str, Any]) -> Dict[str, Any]:
        coerced: Dict[str, Any] = {}

        for key, value in values.items():
            if value is None:
                continue

            if key in self.STRING_KEYS:
                coerced[key] = str(value)
            elif key in self.LIST_KEYS:
                if isinstance(value, str):
                    value = [value]
                if not isinstance(value, list):
                    raise DeployError(f"Setting '{key}' must be a list of strings.")
                coerced[key] = tuple(str(item) for item in value)
            elif key in self.MAPPING_KEYS:
                if not isinstance(value, dict):
                    raise DeployError(f"Setting '{key}' must be a mapping.")
                coerced[key] = dict(value)
            else:
                coerced[key] = self._number(key, value)

        for name, enabled in coerced.get("features", {}).items():
            if not isinstance(enabled, bool):
                raise DeployError(f"Feature toggle '{name}' must be true or false.")

        if coerced.get("readiness_max_attempts", 1) < 1:
            raise DeployError("Setting 'readiness_max_attempts' must be at least 1.")
        if coerced.get("readiness_interval_seconds", 1.0) <= 0:
            raise DeployError("Setting 'readiness_interval_seconds' must be positive.")
        if coerced.get("configuration_retry_count", 0) < 0:
            raise DeployError("Setting 'configuration_retry_count' cannot be negative.")

        probe = coerced.get("readiness_probe", "ssh")
        if probe not in self.READINESS_PROBES:
            raise DeployError(
                f"Setting 'readiness_probe' must be one of: {', '.join(self.READINESS_PROBES)}."
            )
        if probe == "http" and not coerced.get("readiness_url"):
            raise DeployError("Setting 'readiness_url' is required when readiness_probe is 'http'.")

        url = coerced.get("readiness_url")
        if url:
            try:
                url.format(host="localhost")
            except (KeyError, IndexError, ValueError, AttributeError) as exc:
                raise DeployError(
                    f"Setting 'readiness_url' may only use the {{host}} placeholder, got {url!r}."
                ) from exc

        return coerced

    def _number(self, key: str, value: Any):
        if isinstance(value, bool):
            raise DeployError(f"Setting '{key}' must be a number, got {value!r}.")
        try:
            number = float(value)
        except (TypeError, ValueError) as exc:
            raise DeployError(f"Setting '{key}' must be a number, got {value!r}.") from exc

        if self.NUMBER_KEYS[key] is int:
            if not number.is_integer():
                raise DeployError(f"Setting '{key}' must be a whole number, got {value!r}.")
            return int(number)
        return number
