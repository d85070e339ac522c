"""Actionable error catalog for stagedeploy."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "settings_missing": {
        "what": "Settings file not found: {path}",
        "next": "Copy `.stagedeploy.example.yml` to `{path}` and configure it.",
    },
    "tool_missing": {
        "what": "{tool} not found.",
        "next": "Install {tool} and make sure it is on PATH, then retry.",
    },
    "terraform_too_old": {
        "what": "Terraform {found} is older than the required {required}.",
        "next": "Upgrade Terraform to {required} or newer.",
    },
    "env_missing": {
        "what": "Required environment variables are not set: {names}",
        "next": "Export the variables in your shell (use `dummy` for unused providers) and retry.",
    },
    "credentials_unavailable": {
        "what": "Cloud credentials could not be resolved with `{command}`.",
        "next": "Configure a profile or credential environment variables and retry.",
    },
    "output_missing": {
        "what": "Infrastructure output '{name}' is missing or empty.",
        "next": "Check that '{name}' is declared as an output in {terraform_dir} and that the apply succeeded.",
    },
    "stage_failed": {
        "what": "Stage '{stage}' failed during `{call}`.",
        "next": (
            "Fix the root cause (credentials, network, quota) and re-run `{command}`; "
            "completed stages converge again without changes."
        ),
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
