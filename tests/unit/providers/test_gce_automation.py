"""Unit tests for the Compute Engine backend with mocked discovery clients."""

from unittest.mock import Mock

import pytest
from googleapiclient.errors import HttpError

from cloudcraft.config.schemas import GCEConfig, PollingConfig
from cloudcraft.domain.base.ports.automation_port import ServerArgs
from cloudcraft.domain.core.exceptions import (
    ConfigurationError,
    NoPublicAddressError,
    ProvisioningFailedError,
    ResourceNotFoundError,
    ValidationError,
)
from cloudcraft.providers.gce.automation import GCEAutomation, firewall_allowed, instance_to_result
from cloudcraft.providers.gce.exceptions import convert_http_error
from cloudcraft.providers.gce.gce_client import GCEClient

ZONE = "europe-west6-a"
SERVICE_ACCOUNT = "cloudcraft@my-project.iam.gserviceaccount.com"
FAST_POLLING = PollingConfig(instance_boot_timeout=0.5, gce_interval=0.01)


def http_error(status):
    return HttpError(Mock(status=status, reason="error"), b"")


def running_instance(**overrides):
    instance = {
        "id": "4821337",
        "name": "minecraft-test",
        "status": "RUNNING",
        "zone": f"https://www.googleapis.com/compute/v1/projects/my-project/zones/{ZONE}",
        "labels": {"cloudcraft": "true", "edition": "java"},
        "networkInterfaces": [{"accessConfigs": [{"natIP": "198.51.100.4"}]}],
    }
    instance.update(overrides)
    return instance


def scripted_compute():
    """A compute client whose operations finish immediately."""
    compute = Mock()
    compute.images().getFromFamily().execute.return_value = {"name": "ubuntu-2204-jammy-v20240110"}
    compute.disks().insert().execute.return_value = {"name": "op-disk", "zone": ZONE}
    compute.instances().insert().execute.return_value = {"name": "op-instance", "zone": ZONE}
    compute.firewalls().insert().execute.return_value = {"name": "op-firewall"}
    compute.zoneOperations().get().execute.return_value = {"status": "DONE"}
    compute.globalOperations().get().execute.return_value = {"status": "DONE"}
    compute.instances().get().execute.return_value = running_instance()
    compute.instances().list().execute.return_value = {"items": [running_instance()]}
    compute.reset_mock()
    return compute


def gce_automation(compute, oslogin=None):
    client = GCEClient(
        GCEConfig(project="my-project", service_account_email=SERVICE_ACCOUNT),
        compute=compute,
        oslogin=oslogin or Mock(),
    )
    return GCEAutomation(ZONE, polling=FAST_POLLING, gce_client=client)


def inserted(compute):
    return [name for name, _, _ in compute.mock_calls if name.endswith(").insert")]


@pytest.fixture
def gce_descriptor(make_descriptor):
    return make_descriptor({"spec": {"server": {"cloud": "gce", "region": ZONE, "size": "e2-medium"}}})


@pytest.mark.unit
@pytest.mark.gce
class TestGCEClient:

    def test_missing_project_is_configuration_error(self):
        with pytest.raises(ConfigurationError) as exc_info:
            GCEClient(GCEConfig(service_account_email=SERVICE_ACCOUNT), compute=Mock(), oslogin=Mock())

        assert exc_info.value.missing_fields == ["project"]

    def test_service_account_id(self):
        client = GCEClient(
            GCEConfig(project="my-project", service_account_email=SERVICE_ACCOUNT),
            compute=Mock(), oslogin=Mock(),
        )

        assert client.service_account_id == "cloudcraft"


@pytest.mark.unit
@pytest.mark.gce
class TestHttpErrorConversion:

    def test_not_found(self):
        error = convert_http_error(http_error(404), "Instance", "4821337")

        assert isinstance(error, ResourceNotFoundError)
        assert error.resource_id == "4821337"

    def test_bad_request(self):
        assert isinstance(convert_http_error(http_error(400)), ValidationError)

    def test_foreign_exceptions_are_not_converted(self):
        assert convert_http_error(RuntimeError("x")) is None


@pytest.mark.unit
@pytest.mark.gce
class TestCreateServer:

    def setup_method(self):
        self.compute = scripted_compute()
        self.oslogin = Mock()
        self.automation = gce_automation(self.compute, self.oslogin)

    def test_creates_instance_then_firewall(self, gce_descriptor):
        result = self.automation.create_server(ServerArgs(gce_descriptor))

        assert inserted(self.compute) == ["instances().insert", "firewalls().insert"]
        assert result.id == "4821337"
        assert result.public_ip == "198.51.100.4"
        assert result.region == ZONE
        assert result.tags == "cloudcraft=true,edition=java"
        self.oslogin.users().importSshPublicKey.assert_called_with(
            parent=f"users/{SERVICE_ACCOUNT}",
            body={"key": gce_descriptor.ssh_public_key},
        )

    def test_instance_body(self, gce_descriptor):
        self.automation.create_server(ServerArgs(gce_descriptor))

        body = self.compute.instances().insert.call_args[1]["body"]
        assert body["machineType"] == f"zones/{ZONE}/machineTypes/e2-medium"
        assert body["labels"] == {"cloudcraft": "true", "edition": "java"}
        assert body["tags"] == {"items": ["cloudcraft", "java", "minecraft-test"]}
        assert body["scheduling"]["provisioningModel"] == "STANDARD"
        assert body["networkInterfaces"][0]["accessConfigs"][0]["type"] == "ONE_TO_ONE_NAT"
        assert len(body["disks"]) == 1
        metadata = {item["key"]: item["value"] for item in body["metadata"]["items"]}
        assert metadata["enable-oslogin"] == "TRUE"
        assert metadata["startup-script"].startswith("#!/bin/bash")

    def test_spot_scheduling(self, make_descriptor):
        descriptor = make_descriptor({"spec": {"server": {"cloud": "gce", "size": "e2-medium", "spot": True}}})

        self.automation.create_server(ServerArgs(descriptor))

        scheduling = self.compute.instances().insert.call_args[1]["body"]["scheduling"]
        assert scheduling == {"provisioningModel": "SPOT", "onHostMaintenance": "TERMINATE", "automaticRestart": False}

    def test_volume_creates_disk_first(self, make_descriptor):
        descriptor = make_descriptor({"spec": {"server": {"cloud": "gce", "size": "e2-medium", "volumeSize": 20}}})

        self.automation.create_server(ServerArgs(descriptor))

        assert inserted(self.compute) == ["disks().insert", "instances().insert", "firewalls().insert"]
        disk = self.compute.disks().insert.call_args[1]["body"]
        assert disk["name"] == "minecraft-test-vol"
        assert disk["sizeGb"] == "20"
        body = self.compute.instances().insert.call_args[1]["body"]
        assert body["disks"][1] == {"source": f"zones/{ZONE}/disks/minecraft-test-vol"}

    def test_firewall_rule(self, gce_descriptor):
        self.automation.create_server(ServerArgs(gce_descriptor))

        rule = self.compute.firewalls().insert.call_args[1]["body"]
        assert rule["name"] == "minecraft-test-fw"
        assert rule["targetTags"] == ["minecraft-test"]
        assert rule["allowed"] == firewall_allowed(gce_descriptor)

    def test_failed_operation_reports_step(self, gce_descriptor):
        self.compute.zoneOperations().get().execute.return_value = {
            "status": "DONE",
            "error": {"errors": [{"code": "ZONE_RESOURCE_POOL_EXHAUSTED"}]},
        }

        with pytest.raises(ProvisioningFailedError) as exc_info:
            self.automation.create_server(ServerArgs(gce_descriptor))

        assert exc_info.value.step == "insert-instance"
        assert ("instance", "minecraft-test") in exc_info.value.orphaned_resources
        assert "ZONE_RESOURCE_POOL_EXHAUSTED" in str(exc_info.value)

    def test_running_without_address(self, gce_descriptor):
        self.compute.instances().get().execute.return_value = running_instance(networkInterfaces=[])

        with pytest.raises(NoPublicAddressError):
            self.automation.create_server(ServerArgs(gce_descriptor))


@pytest.mark.unit
@pytest.mark.gce
class TestFirewallAllowed:

    def test_ports_grouped_by_protocol(self, make_descriptor):
        descriptor = make_descriptor({"spec": {"server": {"cloud": "gce", "port": 25565}}})

        allowed = {entry["IPProtocol"]: entry["ports"] for entry in firewall_allowed(descriptor)}

        assert "22" in allowed["tcp"]
        assert "25565" in allowed["tcp"]


@pytest.mark.unit
@pytest.mark.gce
class TestDiscovery:

    def setup_method(self):
        self.compute = scripted_compute()
        self.automation = gce_automation(self.compute)

    def test_get_server(self, server_args):
        result = self.automation.get_server("4821337", server_args)

        assert result.name == "minecraft-test"
        self.compute.instances().list.assert_called_with(
            project="my-project", zone=ZONE, filter="id = 4821337"
        )

    def test_non_numeric_id(self, server_args):
        with pytest.raises(ValidationError):
            self.automation.get_server("minecraft-test", server_args)

    def test_missing_instance(self, server_args):
        self.compute.instances().list().execute.return_value = {}

        with pytest.raises(ResourceNotFoundError):
            self.automation.get_server("4821337", server_args)

    def test_list_follows_pages(self):
        other = running_instance(id="99", name="other")
        unmanaged = running_instance(id="100", name="unmanaged", labels={})
        self.compute.instances().list().execute.side_effect = [
            {"items": [running_instance()], "nextPageToken": "t"},
            {"items": [other, unmanaged]},
        ]
        self.compute.instances().list_next.side_effect = [self.compute.instances().list(), None]

        results = self.automation.list_servers()

        assert [r.id for r in results] == ["4821337", "99"]
        assert self.compute.instances().list.call_args[1]["filter"] == "labels.cloudcraft=true"

    def test_instance_to_result_without_address(self):
        assert instance_to_result(running_instance(networkInterfaces=[])).public_ip == ""


@pytest.mark.unit
@pytest.mark.gce
class TestDeleteServer:

    def setup_method(self):
        self.compute = scripted_compute()
        self.compute.instances().delete().execute.return_value = {"name": "op-del", "zone": ZONE}
        self.compute.disks().delete().execute.return_value = {"name": "op-disk-del", "zone": ZONE}
        self.compute.firewalls().delete().execute.return_value = {"name": "op-fw-del"}
        self.oslogin = Mock()
        self.oslogin.users().getLoginProfile().execute.return_value = {"sshPublicKeys": {
            "fp-1": {"key": "ssh-ed25519 AAAAOTHER other", "name": "users/sa/sshPublicKeys/fp-1"},
            "fp-2": {"key": "", "name": "users/sa/sshPublicKeys/fp-2"},
        }}
        self.compute.reset_mock()
        self.oslogin.reset_mock()
        self.automation = gce_automation(self.compute, self.oslogin)

    def test_deletes_in_order(self, server_args, ssh_public_key):
        self.oslogin.users().getLoginProfile().execute.return_value["sshPublicKeys"]["fp-2"]["key"] = ssh_public_key

        self.automation.delete_server("4821337", server_args)

        deleted = [name for name, _, _ in self.compute.mock_calls if name.endswith(").delete")]
        assert deleted == ["instances().delete", "disks().delete", "firewalls().delete"]
        self.compute.instances().delete.assert_called_with(project="my-project", zone=ZONE, instance="minecraft-test")
        self.compute.disks().delete.assert_called_with(project="my-project", zone=ZONE, disk="minecraft-test-vol")
        self.oslogin.users().sshPublicKeys().delete.assert_called_once_with(name="users/sa/sshPublicKeys/fp-2")

    def test_delete_twice_succeeds(self, server_args):
        self.compute.instances().list().execute.return_value = {"items": []}
        self.compute.disks().delete().execute.side_effect = http_error(404)
        self.compute.firewalls().delete().execute.side_effect = http_error(404)

        self.automation.delete_server("4821337", server_args)

        self.compute.instances().delete.assert_not_called()
        self.oslogin.users().sshPublicKeys().delete.assert_not_called()
