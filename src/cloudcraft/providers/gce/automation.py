"""Compute Engine backend: default network, one firewall rule and an optional data disk per server."""
import logging
import threading
from collections import defaultdict
from typing import Any, Dict, List, Optional

from googleapiclient.errors import HttpError

from cloudcraft.config.schemas import GCEConfig, PollingConfig
from cloudcraft.domain.base.ports.automation_port import ServerArgs
from cloudcraft.domain.base.ports.template_port import RenderOptions, ScriptRendererPort, bash_variant
from cloudcraft.domain.core.exceptions import (
    NoPublicAddressError,
    OperationTimeoutError,
    ResourceNotFoundError,
    ValidationError,
)
from cloudcraft.domain.server.descriptor import ResourceDescriptor
from cloudcraft.domain.server.ports import derive_firewall_ports
from cloudcraft.domain.server.tags import MARKER_TAG, MARKER_VALUE, build_tag_set, flatten_tags, is_managed
from cloudcraft.domain.server.value_objects import ResourceResult, ServerId
from cloudcraft.infrastructure.error.decorators import handle_lifecycle_errors
from cloudcraft.infrastructure.orchestration.provisioning import ProvisioningPipeline
from cloudcraft.infrastructure.orchestration.teardown import TeardownPipeline
from cloudcraft.infrastructure.resilience.poller import Deadline, PollPolicy, poll_until
from cloudcraft.providers.base.automation import BaseAutomation, ChannelFactory
from cloudcraft.providers.gce.exceptions import PROVIDER, convert_http_error
from cloudcraft.providers.gce.gce_client import COMPUTE_SCOPE, STORAGE_SCOPE, GCEClient

logger = logging.getLogger(__name__)

IMAGE_PROJECT = "ubuntu-os-cloud"
IMAGE_FAMILY = "ubuntu-2204-lts"
ARM_IMAGE_FAMILY = "ubuntu-minimal-2204-lts-arm64"
DATA_DISK_DEVICE = "sdb"
BOOT_DISK_SIZE_GB = 10
DONE = "DONE"


def disk_name(descriptor: ResourceDescriptor) -> str:
    return f"{descriptor.name}-vol"


def firewall_name(descriptor: ResourceDescriptor) -> str:
    return f"{descriptor.name}-fw"


def firewall_allowed(descriptor: ResourceDescriptor) -> List[Dict[str, Any]]:
    by_protocol: Dict[str, List[str]] = defaultdict(list)
    for port in derive_firewall_ports(descriptor):
        by_protocol[port.protocol.value].append(str(port.port))
    return [{"IPProtocol": protocol, "ports": ports} for protocol, ports in by_protocol.items()]


def nat_ip(instance: Dict[str, Any]) -> str:
    for interface in instance.get("networkInterfaces", []):
        for access in interface.get("accessConfigs", []):
            if access.get("natIP"):
                return access["natIP"]
    return ""


def instance_to_result(instance: Dict[str, Any]) -> ResourceResult:
    return ResourceResult(
        id=str(instance["id"]),
        name=instance["name"],
        region=instance.get("zone", "").rsplit("/", 1)[-1],
        public_ip=nat_ip(instance),
        tags=flatten_tags(instance.get("labels", {})),
    )


class GCEAutomation(BaseAutomation):
    """
    Compute Engine backend built on the discovery-based API client.

    Servers live in the project's default network, so there is no network
    scope step. The SSH key is imported into the service account's OS Login
    profile, and remote operations log in as ``sa_<service-account-id>``.
    """

    provider_code = PROVIDER

    def __init__(self, zone: str, gce_config: Optional[GCEConfig] = None,
                 polling: Optional[PollingConfig] = None,
                 gce_client: Optional[GCEClient] = None,
                 renderer: Optional[ScriptRendererPort] = None,
                 channel_factory: Optional[ChannelFactory] = None,
                 cancel_event: Optional[threading.Event] = None):
        super().__init__(renderer, channel_factory)
        self.gce_config = gce_config or GCEConfig()
        self.zone = zone or self.gce_config.zone
        self.polling = polling or PollingConfig()
        self.client = gce_client or GCEClient(self.gce_config)
        self.compute = self.client.compute
        self.oslogin = self.client.oslogin
        self.project = self.client.project
        self.ssh_user = f"sa_{self.client.service_account_id}"
        self.cancel_event = cancel_event

    def _operation_policy(self, timeout: Optional[float] = None) -> PollPolicy:
        return PollPolicy(
            interval=self.polling.gce_interval,
            timeout=timeout or self.polling.instance_boot_timeout,
        )

    def _wait_for_operation(self, operation: Dict[str, Any], deadline: Optional[Deadline] = None) -> Dict[str, Any]:
        name = operation["name"]
        if operation.get("zone"):
            probe = lambda: self.compute.zoneOperations().get(
                project=self.project, zone=self.zone, operation=name
            ).execute()
        else:
            probe = lambda: self.compute.globalOperations().get(
                project=self.project, operation=name
            ).execute()
        return poll_until(
            probe,
            is_success=lambda op: op.get("status") == DONE and not op.get("error"),
            is_failure=lambda op: op.get("status") == DONE and bool(op.get("error")),
            policy=self._operation_policy(),
            operation=f"operation {name}",
            deadline=deadline,
            cancel_event=self.cancel_event,
            describe=lambda op: op.get("error", {}).get("errors", op.get("status")),
        )

    # Create

    @handle_lifecycle_errors("create")
    def create_server(self, args: ServerArgs) -> ResourceResult:
        descriptor = args.descriptor
        pipeline = ProvisioningPipeline("create", PROVIDER, convert_http_error)
        deadline = Deadline(self.polling.instance_boot_timeout)
        logger.info(f"Creating {descriptor.edition.value} server {descriptor.name} in {self.zone}")

        with pipeline.step("read-ssh-key"):
            public_key = self.public_key(args)

        with pipeline.step("resolve-image"):
            family = ARM_IMAGE_FAMILY if descriptor.is_arm else IMAGE_FAMILY
            image = self.compute.images().getFromFamily(project=IMAGE_PROJECT, family=family).execute()

        with pipeline.step("import-ssh-key"):
            self.oslogin.users().importSshPublicKey(
                parent=f"users/{self.client.service_account_email}",
                body={"key": public_key},
            ).execute()
            pipeline.record("os-login-key", self.client.service_account_email)

        mount = ""
        if descriptor.volume_size > 0:
            with pipeline.step("create-disk"):
                operation = self.compute.disks().insert(
                    project=self.project,
                    zone=self.zone,
                    body={
                        "name": disk_name(descriptor),
                        "sizeGb": str(descriptor.volume_size),
                        "type": f"zones/{self.zone}/diskTypes/pd-standard",
                        "labels": build_tag_set(descriptor, include_name=False),
                    },
                ).execute()
                pipeline.record("disk", disk_name(descriptor))
                self._wait_for_operation(operation, deadline)
            mount = DATA_DISK_DEVICE

        with pipeline.step("render-startup-script"):
            startup_script = self.renderer.render(
                descriptor,
                RenderOptions(mount=mount, ssh_public_key=public_key, variant=bash_variant(descriptor.is_proxy)),
            )

        with pipeline.step("insert-instance"):
            operation = self.compute.instances().insert(
                project=self.project,
                zone=self.zone,
                body=self._instance_body(descriptor, image, startup_script),
            ).execute()
            pipeline.record("instance", descriptor.name)
            self._wait_for_operation(operation, deadline)

        with pipeline.step("create-firewall"):
            operation = self.compute.firewalls().insert(
                project=self.project,
                body={
                    "name": firewall_name(descriptor),
                    "description": f"Game and SSH ports for {descriptor.name}",
                    "network": f"projects/{self.project}/global/networks/default",
                    "allowed": firewall_allowed(descriptor),
                    "sourceRanges": ["0.0.0.0/0"],
                    "direction": "INGRESS",
                    "targetTags": [descriptor.name],
                },
            ).execute()
            pipeline.record("firewall", firewall_name(descriptor))
            self._wait_for_operation(operation, deadline)

        with pipeline.step("wait-for-running"):
            instance = self._wait_for_running(descriptor.name, deadline)

        result = instance_to_result(instance)
        logger.info(f"Server {descriptor.name} is running at {result.public_ip} ({result.id})")
        return result

    def _instance_body(self, descriptor: ResourceDescriptor, image: Dict[str, Any], startup_script: str) -> Dict[str, Any]:
        if descriptor.is_spot:
            scheduling = {
                "provisioningModel": "SPOT",
                "onHostMaintenance": "TERMINATE",
                "automaticRestart": False,
            }
        else:
            scheduling = {
                "provisioningModel": "STANDARD",
                "onHostMaintenance": "MIGRATE",
                "automaticRestart": True,
            }
        disks = [{
            "autoDelete": True,
            "boot": True,
            "type": "PERSISTENT",
            "diskSizeGb": str(BOOT_DISK_SIZE_GB),
            "initializeParams": {
                "sourceImage": f"projects/{IMAGE_PROJECT}/global/images/{image['name']}",
            },
        }]
        if descriptor.volume_size > 0:
            disks.append({"source": f"zones/{self.zone}/disks/{disk_name(descriptor)}"})

        return {
            "name": descriptor.name,
            "machineType": f"zones/{self.zone}/machineTypes/{descriptor.size}",
            "disks": disks,
            "metadata": {"items": [
                {"key": "enable-oslogin", "value": "TRUE"},
                {"key": "startup-script", "value": startup_script},
            ]},
            "scheduling": scheduling,
            "networkInterfaces": [{
                "network": "global/networks/default",
                "accessConfigs": [{"type": "ONE_TO_ONE_NAT", "name": "External NAT"}],
            }],
            "serviceAccounts": [{
                "email": self.client.service_account_email,
                "scopes": [STORAGE_SCOPE, COMPUTE_SCOPE],
            }],
            "labels": build_tag_set(descriptor, include_name=False),
            "tags": {"items": [MARKER_TAG, descriptor.edition.value, descriptor.name]},
        }

    def _wait_for_running(self, name: str, deadline: Deadline) -> Dict[str, Any]:
        probe = lambda: self.compute.instances().get(project=self.project, zone=self.zone, instance=name).execute()
        try:
            return poll_until(
                probe,
                is_success=lambda i: i.get("status") == "RUNNING" and bool(nat_ip(i)),
                is_failure=lambda i: i.get("status") in ("STOPPING", "STOPPED", "TERMINATED", "SUSPENDED"),
                policy=self._operation_policy(),
                operation=f"instance {name} to run",
                deadline=deadline,
                cancel_event=self.cancel_event,
                describe=lambda i: i.get("status"),
            )
        except OperationTimeoutError as e:
            if e.last_result and e.last_result.get("status") == "RUNNING":
                raise NoPublicAddressError(name) from e
            raise

    # Read

    def _find_instance(self, sid: ServerId) -> Dict[str, Any]:
        if not sid.primary.isdigit():
            raise ValidationError(f"Compute Engine instance ids are numeric, got '{sid.primary}'")
        try:
            response = self.compute.instances().list(
                project=self.project, zone=self.zone, filter=f"id = {sid.primary}"
            ).execute()
        except HttpError as e:
            raise convert_http_error(e, "Instance", sid.primary) from e
        items = response.get("items", [])
        if not items:
            raise ResourceNotFoundError("Instance", sid.primary, provider=PROVIDER)
        return items[0]

    @handle_lifecycle_errors("read")
    def get_server(self, server_id: str, args: ServerArgs) -> ResourceResult:
        return instance_to_result(self._find_instance(self.parse_id(server_id)))

    def resolve_public_address(self, server_id: ServerId, args: ServerArgs) -> str:
        return nat_ip(self._find_instance(server_id))

    @handle_lifecycle_errors("list")
    def list_servers(self) -> List[ResourceResult]:
        results = []
        instances = self.compute.instances()
        request = instances.list(
            project=self.project, zone=self.zone, filter=f"labels.{MARKER_TAG}={MARKER_VALUE}"
        )
        try:
            while request is not None:
                response = request.execute()
                for instance in response.get("items", []):
                    if is_managed(instance.get("labels", {})):
                        results.append(instance_to_result(instance))
                request = instances.list_next(previous_request=request, previous_response=response)
        except HttpError as e:
            raise convert_http_error(e) from e
        return results

    # Delete

    @handle_lifecycle_errors("delete")
    def delete_server(self, server_id: str, args: ServerArgs) -> None:
        sid = self.parse_id(server_id)
        descriptor = args.descriptor

        teardown = TeardownPipeline("delete", PROVIDER, convert_http_error)
        teardown.add("delete-instance", lambda: self._delete_instance(sid))
        teardown.add("delete-disk", lambda: self._delete_zonal(
            self.compute.disks().delete(project=self.project, zone=self.zone, disk=disk_name(descriptor))
        ))
        teardown.add("delete-firewall", lambda: self._wait_for_operation(
            self.compute.firewalls().delete(project=self.project, firewall=firewall_name(descriptor)).execute()
        ))
        teardown.add("remove-ssh-key", lambda: self._remove_ssh_key(args))
        teardown.run()
        logger.info(f"Server {descriptor.name} ({sid}) deleted")

    def _delete_instance(self, sid: ServerId) -> None:
        instance = self._find_instance(sid)
        operation = self.compute.instances().delete(
            project=self.project, zone=self.zone, instance=instance["name"]
        ).execute()
        self._wait_for_operation(operation)

    def _delete_zonal(self, request) -> None:
        self._wait_for_operation(request.execute())

    def _remove_ssh_key(self, args: ServerArgs) -> None:
        try:
            public_key = self.public_key(args).strip()
        except ValidationError:
            logger.info("No public key available; leaving OS Login keys in place")
            return
        profile = self.oslogin.users().getLoginProfile(
            name=f"users/{self.client.service_account_email}"
        ).execute()
        for entry in profile.get("sshPublicKeys", {}).values():
            if entry.get("key", "").strip() == public_key:
                self.oslogin.users().sshPublicKeys().delete(name=entry["name"]).execute()
