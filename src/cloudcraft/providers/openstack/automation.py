"""OpenStack backend: a private network routed to the public one, a security group and a floating IP per server."""
import base64
import functools
import logging
import threading
from typing import Any, Iterable, List, Optional

from openstack import exceptions as sdk_exceptions

from cloudcraft.config.schemas import OpenStackConfig, PollingConfig
from cloudcraft.domain.base.ports.automation_port import ServerArgs
from cloudcraft.domain.base.ports.template_port import RenderOptions, ScriptRendererPort, cloud_config_variant
from cloudcraft.domain.core.exceptions import NoPublicAddressError, ResourceNotFoundError
from cloudcraft.domain.server.descriptor import ResourceDescriptor
from cloudcraft.domain.server.ports import derive_firewall_ports
from cloudcraft.domain.server.tags import build_tag_set, flatten_tags, is_managed
from cloudcraft.domain.server.value_objects import ResourceResult, ServerId
from cloudcraft.infrastructure.error.decorators import handle_lifecycle_errors
from cloudcraft.infrastructure.orchestration.provisioning import ProvisioningPipeline
from cloudcraft.infrastructure.orchestration.teardown import TeardownPipeline
from cloudcraft.infrastructure.resilience.poller import Deadline, poll_until
from cloudcraft.providers.base.automation import BaseAutomation, ChannelFactory
from cloudcraft.providers.openstack.exceptions import PROVIDER, convert_sdk_error
from cloudcraft.providers.openstack.openstack_client import OpenStackClient

logger = logging.getLogger(__name__)

DATA_DISK_DEVICE = "vdb"
ACTIVE = "ACTIVE"
DELETED = "DELETED"
ERROR = "ERROR"


def key_pair_name(descriptor: ResourceDescriptor) -> str:
    return f"{descriptor.name}-ssh"


def network_name(descriptor: ResourceDescriptor) -> str:
    return f"{descriptor.name}-net"


def subnet_name(descriptor: ResourceDescriptor) -> str:
    return f"{descriptor.name}-subnet"


def router_name(descriptor: ResourceDescriptor) -> str:
    return f"{descriptor.name}-router"


def security_group_name(descriptor: ResourceDescriptor) -> str:
    return f"{descriptor.name}-sg"


def volume_name(descriptor: ResourceDescriptor) -> str:
    return f"{descriptor.name}-vol"


def find_image(images: Iterable[Any], name: str) -> Optional[Any]:
    # GPU variants share the base image name
    for image in images:
        if name in (image.name or "") and not image.name.endswith("vGPU"):
            return image
    return None


class OpenStackAutomation(BaseAutomation):
    """
    Nova and Neutron backend on openstacksdk.

    One implementation serves every OpenStack cloud; the registry builds it
    per provider with that provider's code and configuration section. The
    server gets a private network and subnet, a router with the public
    network as gateway, one security group with a rule per derived port, and
    a floating IP on its first port once it is ``ACTIVE``.

    Cloud images refuse root logins, so plugins are staged in ``/tmp`` and
    moved into place with sudo.
    """

    provider_code = PROVIDER
    ssh_user = "ubuntu"
    upload_staging_dir = "/tmp"

    def __init__(self, region: str, openstack_config: Optional[OpenStackConfig] = None,
                 polling: Optional[PollingConfig] = None,
                 openstack_client: Optional[OpenStackClient] = None,
                 provider_code: str = PROVIDER,
                 renderer: Optional[ScriptRendererPort] = None,
                 channel_factory: Optional[ChannelFactory] = None,
                 cancel_event: Optional[threading.Event] = None):
        super().__init__(renderer, channel_factory)
        self.config = openstack_config or OpenStackConfig()
        if region and region != self.config.region:
            self.config = self.config.model_copy(update={"region": region})
        self.region = self.config.region
        self.provider_code = provider_code
        self.polling = polling or PollingConfig()
        self.client = openstack_client or OpenStackClient(self.config)
        self.compute = self.client.compute
        self.network = self.client.network
        self.image = self.client.image
        self.ssh_user = self.config.ssh_user or self.ssh_user
        self.cancel_event = cancel_event
        self.convert_error = functools.partial(convert_sdk_error, provider=self.provider_code)

    def _to_result(self, server: Any, public_ip: str) -> ResourceResult:
        return ResourceResult(
            id=server.id,
            name=server.name,
            region=self.region,
            public_ip=public_ip,
            tags=flatten_tags(server.metadata or {}),
        )

    # Create

    @handle_lifecycle_errors("create")
    def create_server(self, args: ServerArgs) -> ResourceResult:
        descriptor = args.descriptor
        pipeline = ProvisioningPipeline("create", self.provider_code, self.convert_error)
        deadline = Deadline(self.polling.instance_boot_timeout)
        logger.info(f"Creating {descriptor.edition.value} server {descriptor.name} on {self.provider_code}")

        with pipeline.step("read-ssh-key"):
            public_key = self.public_key(args)

        with pipeline.step("resolve-image"):
            image = find_image(self.image.images(status="active"), self.config.image_name)
            if image is None:
                raise ResourceNotFoundError("Image", self.config.image_name, provider=self.provider_code)

        with pipeline.step("resolve-flavor"):
            flavor = self.compute.find_flavor(descriptor.size, ignore_missing=True)
            if flavor is None:
                raise ResourceNotFoundError("Flavor", descriptor.size, provider=self.provider_code)

        with pipeline.step("create-key-pair"):
            key_pair = self.compute.create_keypair(name=key_pair_name(descriptor), public_key=public_key)
            pipeline.record("key-pair", key_pair.name)

        with pipeline.step("create-network"):
            network = self.network.create_network(name=network_name(descriptor), admin_state_up=True)
            pipeline.record("network", network.id)

        with pipeline.step("create-subnet"):
            subnet = self.network.create_subnet(
                name=subnet_name(descriptor),
                network_id=network.id,
                cidr=self.config.subnet_cidr,
                ip_version=4,
                dns_nameservers=list(self.config.dns_nameservers),
            )
            pipeline.record("subnet", subnet.id)

        with pipeline.step("create-router"):
            public_network = self._public_network()
            router = self.network.create_router(
                name=router_name(descriptor),
                admin_state_up=True,
                external_gateway_info={"network_id": public_network.id},
            )
            pipeline.record("router", router.id)
            self.network.add_interface_to_router(router, subnet_id=subnet.id)

        with pipeline.step("create-security-group"):
            group = self.network.create_security_group(
                name=security_group_name(descriptor),
                description=f"Game and SSH ports for {descriptor.name}",
            )
            pipeline.record("security-group", group.id)
            for port in derive_firewall_ports(descriptor):
                self.network.create_security_group_rule(
                    security_group_id=group.id,
                    direction="ingress",
                    ethertype="IPv4",
                    protocol=port.protocol.value,
                    port_range_min=port.port,
                    port_range_max=port.port,
                    remote_ip_prefix="0.0.0.0/0",
                )

        volume = None
        if descriptor.volume_size > 0:
            with pipeline.step("create-volume"):
                volume = self.client.block_storage.create_volume(
                    name=volume_name(descriptor), size=descriptor.volume_size
                )
                pipeline.record("volume", volume.id)
                self._wait_for_volume(volume.id, deadline)

        with pipeline.step("render-user-data"):
            user_data = self.renderer.render(
                descriptor,
                RenderOptions(
                    mount=DATA_DISK_DEVICE if volume is not None else "",
                    ssh_public_key=public_key,
                    variant=cloud_config_variant(descriptor.is_proxy),
                ),
            )

        with pipeline.step("create-server"):
            server = self.compute.create_server(
                name=descriptor.name,
                image_id=image.id,
                flavor_id=flavor.id,
                networks=[{"uuid": network.id}],
                security_groups=[{"name": group.name}],
                key_name=key_pair.name,
                metadata=build_tag_set(descriptor, include_name=False),
                user_data=base64.b64encode(user_data.encode("utf-8")).decode("ascii"),
                block_device_mapping=self._block_device_mapping(image, volume),
            )
            pipeline.record("server", server.id)

        with pipeline.step("wait-for-active"):
            server = self._wait_for_active(server.id, deadline)

        with pipeline.step("assign-floating-ip"):
            ports = list(self.network.ports(device_id=server.id))
            if not ports:
                raise NoPublicAddressError(server.id)
            floating_ip = self.network.create_ip(floating_network_id=public_network.id, port_id=ports[0].id)
            pipeline.record("floating-ip", floating_ip.id)

        result = self._to_result(server, floating_ip.floating_ip_address)
        logger.info(f"Server {descriptor.name} is running at {result.public_ip} ({result.id})")
        return result

    def _public_network(self) -> Any:
        network = self.network.find_network(self.config.public_network, ignore_missing=True)
        if network is None:
            raise ResourceNotFoundError("Network", self.config.public_network, provider=self.provider_code)
        return network

    @staticmethod
    def _block_device_mapping(image: Any, volume: Optional[Any]) -> List[dict]:
        mapping = [{
            "boot_index": 0,
            "uuid": image.id,
            "source_type": "image",
            "destination_type": "local",
            "delete_on_termination": True,
        }]
        if volume is not None:
            mapping.append({
                "boot_index": -1,
                "uuid": volume.id,
                "source_type": "volume",
                "destination_type": "volume",
                "delete_on_termination": False,
            })
        return mapping

    def _wait_for_volume(self, volume_id: str, deadline: Deadline) -> Any:
        return poll_until(
            lambda: self.client.block_storage.get_volume(volume_id),
            is_success=lambda v: v.status == "available",
            is_failure=lambda v: v.status == "error",
            policy=self.polling.boot_policy(self.polling.openstack_interval),
            operation=f"volume {volume_id} to become available",
            deadline=deadline,
            cancel_event=self.cancel_event,
            describe=lambda v: v.status,
        )

    def _wait_for_active(self, server_id: str, deadline: Deadline) -> Any:
        return poll_until(
            lambda: self.compute.get_server(server_id),
            is_success=lambda s: s.status == ACTIVE,
            is_failure=lambda s: s.status == ERROR,
            policy=self.polling.boot_policy(self.polling.openstack_interval),
            operation=f"server {server_id} to become active",
            deadline=deadline,
            cancel_event=self.cancel_event,
            describe=lambda s: s.fault or s.status,
        )

    # Read

    def _read_server(self, sid: ServerId) -> Any:
        try:
            return self.compute.get_server(sid.primary)
        except sdk_exceptions.SDKException as e:
            raise self.convert_error(e, resource_type="Server", resource_id=sid.primary) from e

    def _floating_address(self, server_id: str) -> str:
        for port in self.network.ports(device_id=server_id):
            for floating_ip in self.network.ips(port_id=port.id):
                return floating_ip.floating_ip_address
        return ""

    @handle_lifecycle_errors("read")
    def get_server(self, server_id: str, args: ServerArgs) -> ResourceResult:
        server = self._read_server(self.parse_id(server_id))
        return self._to_result(server, self._floating_address(server.id))

    def resolve_public_address(self, server_id: ServerId, args: ServerArgs) -> str:
        return self._floating_address(self._read_server(server_id).id)

    @handle_lifecycle_errors("list")
    def list_servers(self) -> List[ResourceResult]:
        results = []
        for server in self.compute.servers(details=True):
            if is_managed(server.metadata or {}):
                results.append(self._to_result(server, self._floating_address(server.id)))
        logger.debug(f"Found {len(results)} managed servers on {self.provider_code}")
        return results

    # Delete

    @handle_lifecycle_errors("delete")
    def delete_server(self, server_id: str, args: ServerArgs) -> None:
        sid = self.parse_id(server_id)
        descriptor = args.descriptor

        teardown = TeardownPipeline("delete", self.provider_code, self.convert_error)
        teardown.add("release-floating-ip", lambda: self._release_floating_ips(sid.primary))
        teardown.add("delete-server", lambda: self.compute.delete_server(sid.primary, ignore_missing=True))
        teardown.add("wait-for-deletion", lambda: self._wait_for_deletion(sid.primary))
        teardown.add("delete-volume", lambda: self._delete_named(
            self.client.block_storage.find_volume, self.client.block_storage.delete_volume, volume_name(descriptor)
        ))
        teardown.add("delete-key-pair", lambda: self.compute.delete_keypair(
            key_pair_name(descriptor), ignore_missing=True
        ))
        teardown.add("delete-security-group", lambda: self._delete_security_group(descriptor))
        teardown.add("detach-router", lambda: self._detach_router(descriptor))
        teardown.add("delete-router", lambda: self._delete_named(
            self.network.find_router, self.network.delete_router, router_name(descriptor)
        ))
        teardown.add("delete-subnet", lambda: self._delete_named(
            self.network.find_subnet, self.network.delete_subnet, subnet_name(descriptor)
        ))
        teardown.add("delete-network", lambda: self._delete_named(
            self.network.find_network, self.network.delete_network, network_name(descriptor)
        ))
        teardown.run()
        logger.info(f"Server {descriptor.name} ({sid}) deleted")

    @staticmethod
    def _delete_named(find, delete, name: str) -> None:
        resource = find(name, ignore_missing=True)
        if resource is None:
            logger.debug(f"{name} already absent")
            return
        delete(resource, ignore_missing=True)

    def _release_floating_ips(self, server_id: str) -> None:
        for port in self.network.ports(device_id=server_id):
            for floating_ip in self.network.ips(port_id=port.id):
                self.network.delete_ip(floating_ip, ignore_missing=True)

    def _wait_for_deletion(self, server_id: str) -> None:
        def probe() -> str:
            try:
                return self.compute.get_server(server_id).status
            except sdk_exceptions.NotFoundException:
                return DELETED

        poll_until(
            probe,
            is_success=lambda status: status == DELETED,
            is_failure=lambda status: status == ERROR,
            policy=self.polling.termination_policy(),
            operation=f"server {server_id} to be deleted",
            cancel_event=self.cancel_event,
        )

    def _delete_security_group(self, descriptor: ResourceDescriptor) -> None:
        group = self.network.find_security_group(security_group_name(descriptor), ignore_missing=True)
        if group is None:
            return

        # ports of a just-deleted server keep the group in use for a while
        def probe() -> bool:
            try:
                self.network.delete_security_group(group, ignore_missing=True)
            except sdk_exceptions.ConflictException:
                return False
            return True

        poll_until(
            probe,
            is_success=bool,
            policy=self.polling.termination_policy(),
            operation=f"security group {group.id} to be released",
            cancel_event=self.cancel_event,
        )

    def _detach_router(self, descriptor: ResourceDescriptor) -> None:
        router = self.network.find_router(router_name(descriptor), ignore_missing=True)
        subnet = self.network.find_subnet(subnet_name(descriptor), ignore_missing=True)
        if router is None or subnet is None:
            return
        self.network.remove_interface_from_router(router, subnet_id=subnet.id)
