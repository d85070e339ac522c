"""Inventory materialization from infrastructure outputs."""

import os
import sys
import tempfile
from typing import Any, Mapping

from stagedeploy.constants import FILE_MODE
from stagedeploy.errors import DeployError
from stagedeploy.errors_catalog import actionable_error
from stagedeploy.models import Inventory, Settings, Target


class InventoryService:
    """Turns engine outputs into the configuration engine's inventory file.

    The file is rewritten from the current outputs on every call and never
    read back, so a replaced instance cannot leave a stale address behind.
    """

    def __init__(self, settings: Settings, logger, console):
        self.settings = settings
        self.logger = logger
        self.console = console

    def resolve_target(self, outputs: Mapping[str, Any]) -> Target:
        host = self._required_output(outputs, self.settings.host_output)
        principal = self._required_output(outputs, self.settings.principal_output)

        if self.settings.credential_output:
            credential = self._required_output(outputs, self.settings.credential_output)
        else:
            credential = (self.settings.ssh_private_key_file or "").strip()
            if not credential:
                raise DeployError(
                    "No credential reference available: set 'ssh_private_key_file' "
                    "or 'credential_output' in the settings file."
                )

        return Target(host=host, principal=principal, credential_reference=credential)

    def _required_output(self, outputs: Mapping[str, Any], name: str) -> str:
        value = outputs.get(name)
        if value is None or not str(value).strip():
            raise DeployError(
                actionable_error(
                    "output_missing",
                    name=name,
                    terraform_dir=self.settings.terraform_dir,
                )
            )
        return str(value).strip()

    def render(self, inventory: Inventory) -> str:
        return (
            f"[{inventory.group}]\n"
            f"{inventory.host} ansible_user={inventory.principal} "
            f"ansible_ssh_private_key_file={inventory.credential_reference}\n"
        )

    def materialize(self, outputs: Mapping[str, Any]) -> Inventory:
        target = self.resolve_target(outputs)
        record = Inventory(
            host=target.host,
            principal=target.principal,
            credential_reference=os.path.expanduser(target.credential_reference),
            group=self.settings.inventory_group,
        )

        path = self.settings.inventory_path
        self.logger.info("Generating inventory at %s", path)
        self._write(path, self.render(record))
        self.console.print(f"[green]Inventory written for {record.host}.[/green]")

        return Inventory(
            host=record.host,
            principal=record.principal,
            credential_reference=record.credential_reference,
            group=record.group,
            path=path,
        )

    def _write(self, path: str, content: str):
        directory = os.path.dirname(path) or "."
        os.makedirs(directory, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(prefix=".inventory-", suffix=".ini", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as file_obj:
                file_obj.write(content)
            if sys.platform != "win32":
                os.chmod(temp_path, FILE_MODE)
            os.replace(temp_path, path)
        except OSError as exc:
            raise DeployError(f"Could not write inventory file '{path}': {exc}") from exc
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass
