import os

import pytest

from stagedeploy.errors import DeployError
from stagedeploy.models import Settings
from stagedeploy.services.inventory import InventoryService


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


def build_service(tmp_path, **overrides):
    values = {
        "ansible_dir": str(tmp_path / "ansible"),
        "inventory_group": "quake",
        "ssh_private_key_file": "/keys/deploy.pem",
    }
    values.update(overrides)
    return InventoryService(Settings(**values), logger=DummyLogger(), console=DummyConsole())


def test_materialize_writes_single_host_inventory(tmp_path):
    service = build_service(tmp_path)

    inventory = service.materialize({"public_ip": "203.0.113.7", "ssh_user": "ec2-user"})

    content = (tmp_path / "ansible" / "inventory" / "hosts.ini").read_text(encoding="utf-8")
    assert content == (
        "[quake]\n"
        "203.0.113.7 ansible_user=ec2-user ansible_ssh_private_key_file=/keys/deploy.pem\n"
    )
    assert inventory.host == "203.0.113.7"
    assert inventory.principal == "ec2-user"
    assert inventory.path == os.path.join(str(tmp_path / "ansible"), "inventory/hosts.ini")


def test_materialize_replaces_previous_content(tmp_path):
    service = build_service(tmp_path)
    service.materialize({"public_ip": "203.0.113.7", "ssh_user": "ec2-user"})

    service.materialize({"public_ip": "198.51.100.4", "ssh_user": "ec2-user"})

    content = (tmp_path / "ansible" / "inventory" / "hosts.ini").read_text(encoding="utf-8")
    assert "198.51.100.4" in content
    assert "203.0.113.7" not in content
    assert not list((tmp_path / "ansible" / "inventory").glob(".inventory-*"))


def test_materialize_expands_home_in_credential(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    service = build_service(tmp_path, ssh_private_key_file="~/.ssh/deploy.pem")

    inventory = service.materialize({"public_ip": "203.0.113.7", "ssh_user": "ubuntu"})

    assert inventory.credential_reference == str(tmp_path / "home" / ".ssh" / "deploy.pem")


def test_credential_output_takes_precedence(tmp_path):
    service = build_service(tmp_path, credential_output="key_path")

    target = service.resolve_target(
        {"public_ip": "203.0.113.7", "ssh_user": "ubuntu", "key_path": "/keys/from-output.pem"}
    )

    assert target.credential_reference == "/keys/from-output.pem"


@pytest.mark.parametrize(
    "outputs",
    [
        {"ssh_user": "ec2-user"},
        {"public_ip": "", "ssh_user": "ec2-user"},
        {"public_ip": "   ", "ssh_user": "ec2-user"},
        {"public_ip": None, "ssh_user": "ec2-user"},
        {"public_ip": "203.0.113.7"},
    ],
)
def test_missing_outputs_fail_without_writing(tmp_path, outputs):
    service = build_service(tmp_path)

    with pytest.raises(DeployError, match="missing or empty"):
        service.materialize(outputs)

    assert not (tmp_path / "ansible" / "inventory" / "hosts.ini").exists()


def test_missing_credential_reference_fails(tmp_path):
    service = build_service(tmp_path, ssh_private_key_file=None)

    with pytest.raises(DeployError, match="credential reference"):
        service.resolve_target({"public_ip": "203.0.113.7", "ssh_user": "ec2-user"})
