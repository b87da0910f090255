"""Local VMs through the ``multipass`` command line client."""
import json
import logging
import os
import subprocess
import tempfile
import threading
from typing import Any, Dict, List, Optional, Tuple

from cloudcraft.config.schemas import MultipassConfig, PollingConfig
from cloudcraft.domain.base.ports.automation_port import ServerArgs
from cloudcraft.domain.base.ports.template_port import RenderOptions, ScriptRendererPort, cloud_config_variant
from cloudcraft.domain.core.exceptions import (
    NoPublicAddressError,
    OperationTimeoutError,
    UnsupportedOperationError,
    ValidationError,
)
from cloudcraft.domain.server.descriptor import ResourceDescriptor
from cloudcraft.domain.server.value_objects import ResourceResult, ServerId
from cloudcraft.infrastructure.error.decorators import handle_lifecycle_errors
from cloudcraft.infrastructure.orchestration.provisioning import ProvisioningPipeline
from cloudcraft.infrastructure.orchestration.teardown import TeardownPipeline
from cloudcraft.infrastructure.resilience.poller import poll_until
from cloudcraft.providers.base.automation import BaseAutomation, ChannelFactory
from cloudcraft.providers.multipass.exceptions import PROVIDER, convert_process_error

logger = logging.getLogger(__name__)


def parse_size(size: str) -> Tuple[str, str]:
    """Split a ``<cpus>-<memory>`` size such as ``2-4G``."""
    cpus, separator, memory = size.partition("-")
    if not separator or not cpus.isdigit() or not memory:
        raise ValidationError(f"Multipass size must look like '<cpus>-<memory>' (e.g. 2-4G), got '{size}'")
    return cpus, memory


class MultipassAutomation(BaseAutomation):
    """
    Runs servers as local Multipass instances.

    Instances are named after the descriptor and the name is the server id.
    Multipass has no labels, so listing is not available.
    """

    provider_code = PROVIDER

    def __init__(self, multipass_config: Optional[MultipassConfig] = None,
                 polling: Optional[PollingConfig] = None,
                 renderer: Optional[ScriptRendererPort] = None,
                 channel_factory: Optional[ChannelFactory] = None,
                 cancel_event: Optional[threading.Event] = None):
        super().__init__(renderer, channel_factory)
        self.config = multipass_config or MultipassConfig()
        self.polling = polling or PollingConfig()
        self.ssh_user = self.config.ssh_user or self.ssh_user
        self.upload_user = self.config.upload_user or None
        self.cancel_event = cancel_event

    def _run(self, *args: str) -> str:
        argv = [self.config.binary, *args]
        logger.debug(f"Running {' '.join(argv)}")
        completed = subprocess.run(argv, capture_output=True, text=True, check=True)
        return completed.stdout

    @handle_lifecycle_errors("create")
    def create_server(self, args: ServerArgs) -> ResourceResult:
        descriptor = args.descriptor
        pipeline = ProvisioningPipeline("create", PROVIDER, convert_process_error)
        logger.info(f"Creating {descriptor.edition.value} server {descriptor.name} with multipass")

        with pipeline.step("read-ssh-key"):
            public_key = self.public_key(args)
            cpus, memory = parse_size(descriptor.size)

        with pipeline.step("render-cloud-config"):
            cloud_config = self.renderer.render(
                descriptor,
                RenderOptions(ssh_public_key=public_key, variant=cloud_config_variant(descriptor.is_proxy)),
            )

        with pipeline.step("launch-instance"):
            with tempfile.NamedTemporaryFile("w", suffix=".yaml", prefix="cloudcraft-", delete=False) as f:
                f.write(cloud_config)
                cloud_init_path = f.name
            try:
                self._run(
                    "launch", self.config.image,
                    "-n", descriptor.name,
                    "--cloud-init", cloud_init_path,
                    "-c", cpus,
                    "-m", memory,
                )
            finally:
                os.remove(cloud_init_path)
            pipeline.record("instance", descriptor.name)

        with pipeline.step("wait-for-address"):
            info = self._wait_for_address(descriptor)

        result = self._to_result(descriptor, info)
        logger.info(f"Server {descriptor.name} is running at {result.public_ip}")
        return result

    def _info(self, name: str) -> Dict[str, Any]:
        try:
            output = self._run("info", name, "--format", "json")
        except subprocess.CalledProcessError as e:
            raise convert_process_error(e, name) from e
        return json.loads(output)["info"][name]

    def _wait_for_address(self, descriptor: ResourceDescriptor) -> Dict[str, Any]:
        try:
            return poll_until(
                lambda: self._info(descriptor.name),
                is_success=lambda info: bool(info.get("ipv4")),
                policy=self.polling.boot_policy(self.polling.multipass_interval),
                operation=f"instance {descriptor.name} to get an address",
                cancel_event=self.cancel_event,
                describe=lambda info: info.get("state"),
            )
        except OperationTimeoutError as e:
            raise NoPublicAddressError(descriptor.name) from e

    @staticmethod
    def _to_result(descriptor: ResourceDescriptor, info: Dict[str, Any]) -> ResourceResult:
        addresses = info.get("ipv4") or [""]
        return ResourceResult(
            id=descriptor.name,
            name=descriptor.name,
            region=PROVIDER,
            public_ip=addresses[0],
        )

    @handle_lifecycle_errors("read")
    def get_server(self, server_id: str, args: ServerArgs) -> ResourceResult:
        self.parse_id(server_id)
        return self._to_result(args.descriptor, self._info(args.descriptor.name))

    def resolve_public_address(self, server_id: ServerId, args: ServerArgs) -> str:
        addresses = self._info(args.descriptor.name).get("ipv4") or [""]
        return addresses[0]

    @handle_lifecycle_errors("list")
    def list_servers(self) -> List[ResourceResult]:
        raise UnsupportedOperationError(PROVIDER, "list_servers", "multipass instances carry no labels")

    @handle_lifecycle_errors("delete")
    def delete_server(self, server_id: str, args: ServerArgs) -> None:
        sid = self.parse_id(server_id)
        teardown = TeardownPipeline(
            "delete", PROVIDER, lambda e: convert_process_error(e, sid.primary)
        )
        teardown.add("delete-instance", lambda: self._run("delete", sid.primary))
        teardown.add("purge", lambda: self._run("purge"))
        teardown.run()
        logger.info(f"Server {sid} deleted")
