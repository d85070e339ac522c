"""
stagedeploy - Staged Terraform + Ansible provisioning orchestrator
"""

__version__ = "0.3.0"

from .core import DeployError, Orchestrator

__all__ = ["DeployError", "Orchestrator"]
