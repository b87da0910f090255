"""EC2 backend: one VPC, subnet, gateway and security groups per server."""
import base64
import logging
import threading
import uuid
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError

from cloudcraft.config.schemas import AWSConfig, PollingConfig
from cloudcraft.domain.base.ports.automation_port import ServerArgs
from cloudcraft.domain.base.ports.template_port import RenderOptions, ScriptRendererPort, cloud_config_variant
from cloudcraft.domain.core.exceptions import (
    NoPublicAddressError,
    OperationTimeoutError,
    ResourceNotFoundError,
)
from cloudcraft.domain.server.descriptor import ResourceDescriptor
from cloudcraft.domain.server.ports import derive_firewall_ports
from cloudcraft.domain.server.tags import (
    MARKER_TAG,
    MARKER_VALUE,
    NAME_TAG,
    build_tag_set,
    flatten_tags,
    is_managed,
    tags_from_aws,
    tags_to_aws,
)
from cloudcraft.domain.server.value_objects import FirewallPort, ResourceResult, ServerId
from cloudcraft.infrastructure.error.decorators import handle_lifecycle_errors
from cloudcraft.infrastructure.orchestration.provisioning import ProvisioningPipeline
from cloudcraft.infrastructure.orchestration.teardown import TeardownPipeline
from cloudcraft.infrastructure.resilience.poller import Deadline, poll_until
from cloudcraft.providers.aws.aws_client import AWSClient
from cloudcraft.providers.aws.exceptions import (
    PROVIDER,
    convert_client_error,
    is_dependency_violation,
    is_not_found,
)
from cloudcraft.providers.aws.image_resolver import UbuntuImageResolver
from cloudcraft.providers.base.automation import BaseAutomation, ChannelFactory

logger = logging.getLogger(__name__)

VPC_CIDR = "172.16.0.0/16"
SUBNET_CIDR = "172.16.10.0/24"
ROOT_DEVICE = "/dev/sda1"
TERMINATED_STATE_CODE = 48
FAILED_INSTANCE_STATES = ("shutting-down", "terminated", "stopping", "stopped")
FAILED_SPOT_STATES = ("failed", "cancelled", "closed")


def key_pair_name(descriptor: ResourceDescriptor) -> str:
    return f"{descriptor.name}-ssh"


def tag_specifications(descriptor: ResourceDescriptor, resource_type: str) -> List[Dict[str, Any]]:
    return [{"ResourceType": resource_type, "Tags": tags_to_aws(build_tag_set(descriptor))}]


def block_device_mappings(volume_size: int) -> List[Dict[str, Any]]:
    if volume_size > 0:
        return [{"DeviceName": ROOT_DEVICE, "Ebs": {"VolumeSize": volume_size}}]
    return []


def instance_to_result(instance: Dict[str, Any], region: str, server_id: str = "") -> ResourceResult:
    tags = tags_from_aws(instance.get("Tags"))
    return ResourceResult(
        id=server_id or instance["InstanceId"],
        name=tags.get(NAME_TAG, ""),
        region=region,
        public_ip=instance.get("PublicIpAddress", "") or "",
        tags=flatten_tags(tags),
    )


def encode_instance_id(instance: Dict[str, Any]) -> str:
    """Rebuild the compound id for instances launched from a spot request."""
    return ServerId(instance["InstanceId"], instance.get("SpotInstanceRequestId", "") or "").encode()


class AWSAutomation(BaseAutomation):
    """
    Reference backend on EC2.

    Create runs a provisioning pipeline (image, key pair, VPC, subnet,
    gateway, routing, security groups, instance) and waits until the
    instance is running with a public address. Spot servers get a compound
    id ``<instance>#<spot-request>``. Delete walks the same graph backwards
    and is safe to repeat.
    """

    provider_code = PROVIDER
    ssh_user = "ubuntu"

    def __init__(self, region: str, aws_config: Optional[AWSConfig] = None,
                 polling: Optional[PollingConfig] = None,
                 aws_client: Optional[AWSClient] = None,
                 renderer: Optional[ScriptRendererPort] = None,
                 channel_factory: Optional[ChannelFactory] = None,
                 cancel_event: Optional[threading.Event] = None):
        super().__init__(renderer, channel_factory)
        self.aws_config = aws_config or AWSConfig()
        self.region = region or self.aws_config.region
        self.polling = polling or PollingConfig()
        self.aws_client = aws_client or AWSClient(self.region, self.aws_config)
        self.ec2 = self.aws_client.ec2_client
        self.image_resolver = UbuntuImageResolver(
            self.ec2, self.aws_client.ssm_client, self.aws_config.image_id
        )
        self.ssh_user = self.aws_config.ssh_user or self.ssh_user
        self.cancel_event = cancel_event

    # Create

    @handle_lifecycle_errors("create")
    def create_server(self, args: ServerArgs) -> ResourceResult:
        descriptor = args.descriptor
        pipeline = ProvisioningPipeline("create", PROVIDER, convert_client_error)
        deadline = Deadline(self.polling.instance_boot_timeout)
        logger.info(f"Creating {descriptor.edition.value} server {descriptor.name} in {self.region}")

        with pipeline.step("read-ssh-key"):
            public_key = self.public_key(args)

        with pipeline.step("resolve-image"):
            image_id = self.image_resolver.resolve(arm=descriptor.is_arm)

        with pipeline.step("import-key-pair"):
            key = self.ec2.import_key_pair(
                KeyName=key_pair_name(descriptor),
                PublicKeyMaterial=public_key.encode("utf-8"),
                TagSpecifications=tag_specifications(descriptor, "key-pair"),
            )
            pipeline.record("key-pair", key["KeyName"])

        with pipeline.step("create-vpc"):
            vpc_id = self.ec2.create_vpc(
                CidrBlock=VPC_CIDR,
                TagSpecifications=tag_specifications(descriptor, "vpc"),
            )["Vpc"]["VpcId"]
            pipeline.record("vpc", vpc_id)

        with pipeline.step("create-subnet"):
            subnet_id = self.ec2.create_subnet(
                VpcId=vpc_id,
                CidrBlock=SUBNET_CIDR,
                TagSpecifications=tag_specifications(descriptor, "subnet"),
            )["Subnet"]["SubnetId"]
            pipeline.record("subnet", subnet_id)

        with pipeline.step("create-internet-gateway"):
            igw_id = self.ec2.create_internet_gateway(
                TagSpecifications=tag_specifications(descriptor, "internet-gateway"),
            )["InternetGateway"]["InternetGatewayId"]
            pipeline.record("internet-gateway", igw_id)
            self.ec2.attach_internet_gateway(InternetGatewayId=igw_id, VpcId=vpc_id)

        with pipeline.step("create-route-table"):
            route_table_id = self.ec2.create_route_table(
                VpcId=vpc_id,
                TagSpecifications=tag_specifications(descriptor, "route-table"),
            )["RouteTable"]["RouteTableId"]
            pipeline.record("route-table", route_table_id)
            self.ec2.create_route(
                RouteTableId=route_table_id,
                DestinationCidrBlock="0.0.0.0/0",
                GatewayId=igw_id,
            )
            self.ec2.associate_route_table(RouteTableId=route_table_id, SubnetId=subnet_id)

        group_ids = []
        for port in derive_firewall_ports(descriptor):
            with pipeline.step(f"create-security-group-{port.port}-{port.protocol.value}"):
                group_id = self._create_security_group(descriptor, vpc_id, port)
                pipeline.record("security-group", group_id)
                group_ids.append(group_id)

        with pipeline.step("render-user-data"):
            user_data = self.renderer.render(
                descriptor,
                RenderOptions(ssh_public_key=public_key, variant=cloud_config_variant(descriptor.is_proxy)),
            )
            encoded_user_data = base64.b64encode(user_data.encode("utf-8")).decode("ascii")

        launch_spec = {
            "ImageId": image_id,
            "KeyName": key["KeyName"],
            "InstanceType": descriptor.size,
            "UserData": encoded_user_data,
            "BlockDeviceMappings": block_device_mappings(descriptor.volume_size),
            "NetworkInterfaces": [{
                "Description": "the primary device eth0",
                "DeviceIndex": 0,
                "AssociatePublicIpAddress": True,
                "SubnetId": subnet_id,
                "Groups": group_ids,
            }],
        }

        if descriptor.is_spot:
            with pipeline.step("request-spot-instance"):
                request_id = self.ec2.request_spot_instances(
                    InstanceCount=1,
                    LaunchSpecification=launch_spec,
                    TagSpecifications=tag_specifications(descriptor, "spot-instances-request"),
                )["SpotInstanceRequests"][0]["SpotInstanceRequestId"]
                pipeline.record("spot-request", request_id)

            with pipeline.step("resolve-spot-instance"):
                instance_id = self._wait_for_spot_instance(request_id, deadline)
                pipeline.record("instance", instance_id)

            with pipeline.step("tag-instance"):
                self._tag_spot_instance(instance_id, descriptor, deadline)

            server_id = ServerId(instance_id, request_id)
        else:
            with pipeline.step("run-instance"):
                instance_id = self.ec2.run_instances(
                    MinCount=1,
                    MaxCount=1,
                    TagSpecifications=tag_specifications(descriptor, "instance"),
                    **launch_spec,
                )["Instances"][0]["InstanceId"]
                pipeline.record("instance", instance_id)
            server_id = ServerId(instance_id)

        with pipeline.step("wait-for-running"):
            instance = self._wait_for_running(instance_id, deadline)

        result = instance_to_result(instance, self.region, server_id.encode())
        logger.info(f"Server {descriptor.name} is running at {result.public_ip} ({result.id})")
        return result

    def _create_security_group(self, descriptor: ResourceDescriptor, vpc_id: str, port: FirewallPort) -> str:
        group_name = f"minecraft-{uuid.uuid4()}"
        group_id = self.ec2.create_security_group(
            GroupName=group_name,
            Description=f"{descriptor.name} {port}",
            VpcId=vpc_id,
            TagSpecifications=tag_specifications(descriptor, "security-group"),
        )["GroupId"]
        self.ec2.authorize_security_group_ingress(
            GroupId=group_id,
            IpPermissions=[{
                "IpProtocol": port.protocol.value,
                "FromPort": port.port,
                "ToPort": port.port,
                "IpRanges": [{"CidrIp": "0.0.0.0/0"}],
            }],
        )
        return group_id

    def _wait_for_spot_instance(self, request_id: str, deadline: Deadline) -> str:
        def probe() -> Dict[str, Any]:
            return self.ec2.describe_spot_instance_requests(
                SpotInstanceRequestIds=[request_id]
            )["SpotInstanceRequests"][0]

        request = poll_until(
            probe,
            is_success=lambda r: bool(r.get("InstanceId")),
            is_failure=lambda r: r.get("State") in FAILED_SPOT_STATES,
            policy=self.polling.spot_policy(),
            operation=f"spot request {request_id}",
            deadline=deadline,
            cancel_event=self.cancel_event,
            describe=lambda r: r.get("Status", {}).get("Code", r.get("State")),
        )
        return request["InstanceId"]

    def _tag_spot_instance(self, instance_id: str, descriptor: ResourceDescriptor, deadline: Deadline) -> None:
        # the instance may not be visible to CreateTags right after the request resolves
        def probe() -> bool:
            try:
                self.ec2.create_tags(Resources=[instance_id], Tags=tags_to_aws(build_tag_set(descriptor)))
            except ClientError as e:
                if is_not_found(e):
                    return False
                raise
            return True

        poll_until(
            probe,
            is_success=bool,
            policy=self.polling.spot_policy(),
            operation=f"tagging {instance_id}",
            deadline=deadline,
            cancel_event=self.cancel_event,
        )

    def _wait_for_running(self, instance_id: str, deadline: Deadline) -> Dict[str, Any]:
        def probe() -> Optional[Dict[str, Any]]:
            try:
                return self._describe_instance(instance_id)
            except ClientError as e:
                if is_not_found(e):
                    return None
                raise
            except ResourceNotFoundError:
                return None

        def state(instance: Optional[Dict[str, Any]]) -> str:
            return instance["State"]["Name"] if instance else "pending"

        try:
            return poll_until(
                probe,
                is_success=lambda i: state(i) == "running" and bool(i.get("PublicIpAddress")),
                is_failure=lambda i: state(i) in FAILED_INSTANCE_STATES,
                policy=self.polling.boot_policy(self.polling.aws_interval),
                operation=f"instance {instance_id} to run",
                deadline=deadline,
                cancel_event=self.cancel_event,
                describe=state,
            )
        except OperationTimeoutError as e:
            if state(e.last_result) == "running":
                raise NoPublicAddressError(instance_id) from e
            raise

    # Read

    def _describe_instance(self, instance_id: str) -> Dict[str, Any]:
        reservations = self.ec2.describe_instances(InstanceIds=[instance_id])["Reservations"]
        for reservation in reservations:
            for instance in reservation["Instances"]:
                return instance
        raise ResourceNotFoundError("Instance", instance_id, provider=PROVIDER)

    def _read_instance(self, sid: ServerId) -> Dict[str, Any]:
        try:
            return self._describe_instance(sid.primary)
        except ClientError as e:
            raise convert_client_error(e) from e

    @handle_lifecycle_errors("read")
    def get_server(self, server_id: str, args: ServerArgs) -> ResourceResult:
        sid = self.parse_id(server_id)
        instance = self._read_instance(sid)
        return instance_to_result(instance, self.region, sid.encode())

    def resolve_public_address(self, server_id: ServerId, args: ServerArgs) -> str:
        return self._read_instance(server_id).get("PublicIpAddress", "") or ""

    @handle_lifecycle_errors("list")
    def list_servers(self) -> List[ResourceResult]:
        results = []
        paginator = self.ec2.get_paginator("describe_instances")
        try:
            pages = paginator.paginate(
                Filters=[{"Name": f"tag:{MARKER_TAG}", "Values": [MARKER_VALUE]}]
            )
            for page in pages:
                for reservation in page["Reservations"]:
                    for instance in reservation["Instances"]:
                        if instance["State"]["Name"] == "terminated":
                            continue
                        if not is_managed(tags_from_aws(instance.get("Tags"))):
                            continue
                        results.append(
                            instance_to_result(instance, self.region, encode_instance_id(instance))
                        )
        except ClientError as e:
            raise convert_client_error(e) from e
        logger.debug(f"Found {len(results)} managed servers in {self.region}")
        return results

    # Delete

    @handle_lifecycle_errors("delete")
    def delete_server(self, server_id: str, args: ServerArgs) -> None:
        sid = self.parse_id(server_id)
        descriptor = args.descriptor
        vpc_id = self._locate_vpc(sid.primary, descriptor)

        teardown = TeardownPipeline("delete", PROVIDER, convert_client_error)
        if sid.is_compound:
            teardown.add("cancel-spot-request", lambda: self.ec2.cancel_spot_instance_requests(
                SpotInstanceRequestIds=[sid.secondary]
            ))
        teardown.add("terminate-instance", lambda: self.ec2.terminate_instances(InstanceIds=[sid.primary]))
        teardown.add("wait-for-termination", lambda: self._wait_for_termination(sid.primary))
        if vpc_id:
            teardown.add("delete-security-groups", lambda: self._delete_security_groups(vpc_id))
            teardown.add("delete-subnets", lambda: self._delete_subnets(vpc_id))
            teardown.add("delete-internet-gateways", lambda: self._delete_internet_gateways(vpc_id))
            teardown.add("delete-route-tables", lambda: self._delete_route_tables(vpc_id))
            teardown.add("delete-vpc", lambda: self.ec2.delete_vpc(VpcId=vpc_id))
        else:
            logger.info(f"No VPC left for {descriptor.name}; skipping network teardown")
        teardown.add("delete-key-pair", lambda: self._delete_key_pair(descriptor))
        teardown.run()
        logger.info(f"Server {descriptor.name} ({sid}) deleted")

    def _locate_vpc(self, instance_id: str, descriptor: ResourceDescriptor) -> str:
        """VPC of the instance, or of the tagged network when the instance is gone."""
        try:
            try:
                vpc_id = self._describe_instance(instance_id).get("VpcId", "")
            except ResourceNotFoundError:
                vpc_id = ""
            except ClientError as e:
                if not is_not_found(e):
                    raise
                vpc_id = ""
            if vpc_id:
                return vpc_id
            vpcs = self.ec2.describe_vpcs(Filters=[
                {"Name": f"tag:{MARKER_TAG}", "Values": [MARKER_VALUE]},
                {"Name": f"tag:{NAME_TAG}", "Values": [descriptor.name]},
            ])["Vpcs"]
        except ClientError as e:
            raise convert_client_error(e).annotate(phase="delete", step="locate-network") from e
        return vpcs[0]["VpcId"] if vpcs else ""

    def _wait_for_termination(self, instance_id: str) -> None:
        def probe() -> int:
            try:
                instance = self._describe_instance(instance_id)
            except ClientError as e:
                if is_not_found(e):
                    return TERMINATED_STATE_CODE
                raise
            except ResourceNotFoundError:
                return TERMINATED_STATE_CODE
            return instance["State"]["Code"] & 0xFF

        poll_until(
            probe,
            is_success=lambda code: code == TERMINATED_STATE_CODE,
            policy=self.polling.termination_policy(),
            operation=f"instance {instance_id} to terminate",
            cancel_event=self.cancel_event,
        )

    def _delete_security_groups(self, vpc_id: str) -> None:
        groups = self.ec2.describe_security_groups(
            Filters=[{"Name": "vpc-id", "Values": [vpc_id]}]
        )["SecurityGroups"]
        for group in groups:
            if group["GroupName"] == "default":
                continue
            self._delete_security_group(group["GroupId"])

    def _delete_security_group(self, group_id: str) -> None:
        # network interfaces of a just-terminated instance keep the group in use for a while
        def probe() -> bool:
            try:
                self._ignore_missing(self.ec2.delete_security_group, GroupId=group_id)
            except ClientError as e:
                if is_dependency_violation(e):
                    return False
                raise
            return True

        poll_until(
            probe,
            is_success=bool,
            policy=self.polling.termination_policy(),
            operation=f"security group {group_id} to be released",
            cancel_event=self.cancel_event,
        )

    def _delete_subnets(self, vpc_id: str) -> None:
        subnets = self.ec2.describe_subnets(Filters=[{"Name": "vpc-id", "Values": [vpc_id]}])["Subnets"]
        for subnet in subnets:
            self._ignore_missing(self.ec2.delete_subnet, SubnetId=subnet["SubnetId"])

    def _delete_internet_gateways(self, vpc_id: str) -> None:
        gateways = self.ec2.describe_internet_gateways(
            Filters=[{"Name": "attachment.vpc-id", "Values": [vpc_id]}]
        )["InternetGateways"]
        for gateway in gateways:
            gateway_id = gateway["InternetGatewayId"]
            self._ignore_missing(self.ec2.detach_internet_gateway, InternetGatewayId=gateway_id, VpcId=vpc_id)
            self._ignore_missing(self.ec2.delete_internet_gateway, InternetGatewayId=gateway_id)

    def _delete_route_tables(self, vpc_id: str) -> None:
        tables = self.ec2.describe_route_tables(
            Filters=[{"Name": "vpc-id", "Values": [vpc_id]}]
        )["RouteTables"]
        for table in tables:
            associations = table.get("Associations", [])
            if any(a.get("Main") for a in associations):
                continue
            for association in associations:
                self._ignore_missing(
                    self.ec2.disassociate_route_table,
                    AssociationId=association["RouteTableAssociationId"],
                )
            self._ignore_missing(self.ec2.delete_route_table, RouteTableId=table["RouteTableId"])

    def _delete_key_pair(self, descriptor: ResourceDescriptor) -> None:
        keys = self.ec2.describe_key_pairs(KeyNames=[key_pair_name(descriptor)])["KeyPairs"]
        for key in keys:
            self.ec2.delete_key_pair(KeyName=key["KeyName"])

    @staticmethod
    def _ignore_missing(call, **kwargs) -> None:
        try:
            call(**kwargs)
        except ClientError as e:
            if not is_not_found(e):
                raise
