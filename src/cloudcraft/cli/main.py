"""
Main CLI module with argument parsing and command execution.

This module provides the main CLI interface including:
- Command line argument parsing
- Command routing to the provider backends
- Output formatting and exit codes
"""
import argparse
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from cloudcraft import __version__
from cloudcraft.cli.formatters import format_output
from cloudcraft.config.manager import ConfigurationManager
from cloudcraft.domain.base.ports.automation_port import AutomationPort, ServerArgs
from cloudcraft.domain.core.exceptions import DomainException
from cloudcraft.domain.server.descriptor import ResourceDescriptor
from cloudcraft.helpers.logger import setup_logging
from cloudcraft.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

FORMATS = ["json", "yaml", "table"]


class CLIError(Exception):
    """Invalid combination of command line arguments."""


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments with the resource-action structure."""
    parser = argparse.ArgumentParser(
        prog="cloudcraft",
        description="cloudcraft - Minecraft server lifecycle across cloud providers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s servers create --manifest server.yaml
  %(prog)s servers list --provider aws --region eu-central-1 --format table
  %(prog)s servers get --manifest server.yaml --id i-0abc#sir-1234
  %(prog)s servers update --manifest server.yaml --id i-0abc --ssh-key ~/.ssh/id_rsa
  %(prog)s servers delete --manifest server.yaml --id i-0abc
        """,
    )

    # Global options
    parser.add_argument("--config", help="Configuration file path")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        help="Set logging level")
    parser.add_argument("--format", choices=FORMATS, default="json", help="Output format")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="resource", help="Available resources")
    servers_parser = subparsers.add_parser("servers", help="Manage game servers")
    actions = servers_parser.add_subparsers(dest="action", help="Server actions")

    create = actions.add_parser("create", help="Provision a server from a manifest")
    _add_common(create, manifest_required=True)
    create.add_argument("--ssh-key", help="Private key used after boot")

    list_parser = actions.add_parser("list", help="List managed servers")
    _add_common(list_parser, manifest_required=False)

    get = actions.add_parser("get", help="Show one server")
    _add_common(get, manifest_required=True)
    get.add_argument("--id", required=True, help="Server id returned by create")

    update = actions.add_parser("update", help="Re-install the server software")
    _add_common(update, manifest_required=True)
    update.add_argument("--id", required=True, help="Server id returned by create")
    update.add_argument("--ssh-key", required=True, help="Private key for the remote channel")

    upload = actions.add_parser("upload", help="Upload a plugin and restart the server")
    _add_common(upload, manifest_required=True)
    upload.add_argument("--id", required=True, help="Server id returned by create")
    upload.add_argument("--ssh-key", required=True, help="Private key for the remote channel")
    upload.add_argument("--plugin", required=True, help="Local file to upload")
    upload.add_argument("--destination", required=True, help="Remote directory")

    delete = actions.add_parser("delete", help="Tear down a server and its resources")
    _add_common(delete, manifest_required=True)
    delete.add_argument("--id", required=True, help="Server id returned by create")

    return parser.parse_args(argv)


def _add_common(parser: argparse.ArgumentParser, manifest_required: bool) -> None:
    parser.add_argument("--manifest", required=manifest_required, help="Server manifest (YAML)")
    parser.add_argument("--provider", help="Provider code; defaults to spec.server.cloud of the manifest")
    parser.add_argument("--region", help="Region or zone; defaults to spec.server.region of the manifest")


def build_automation(args: argparse.Namespace, config_manager: ConfigurationManager,
                     descriptor: Optional[ResourceDescriptor]) -> AutomationPort:
    provider = args.provider or (descriptor.cloud if descriptor else "")
    if not provider:
        raise CLIError("--provider is required when no manifest is given")
    region = args.region or (descriptor.region if descriptor else "")
    return ProviderRegistry.get_instance().create_automation(provider, config_manager.app_config, region)


def execute_command(args: argparse.Namespace, automation: AutomationPort,
                    descriptor: Optional[ResourceDescriptor]) -> Dict[str, Any]:
    """Run one server action and return a serialisable result."""
    if args.action == "list":
        return {"servers": [server.to_dict() for server in automation.list_servers()]}

    server_args = ServerArgs(descriptor, os.path.expanduser(getattr(args, "ssh_key", None) or ""))

    if args.action == "create":
        return {"server": automation.create_server(server_args).to_dict()}
    if args.action == "get":
        return {"server": automation.get_server(args.id, server_args).to_dict()}
    if args.action == "update":
        automation.update_server(args.id, server_args)
        return {"message": f"Server {args.id} updated"}
    if args.action == "upload":
        automation.upload_plugin(args.id, server_args, args.plugin, args.destination)
        return {"message": f"Uploaded {os.path.basename(args.plugin)} to {args.id}:{args.destination}"}
    if args.action == "delete":
        automation.delete_server(args.id, server_args)
        return {"message": f"Server {args.id} deleted"}
    raise CLIError(f"Unknown action: {args.action}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = parse_args(argv)

    if not args.resource:
        print("Error: No resource specified. Use --help for usage information.", file=sys.stderr)
        return 1
    if not args.action:
        print(f"Error: No action specified for {args.resource}. Use --help for usage information.",
              file=sys.stderr)
        return 1

    try:
        config_manager = ConfigurationManager(args.config)
        setup_logging(config_manager.app_config.logging, args.log_level)
        descriptor = ResourceDescriptor.from_yaml(args.manifest) if args.manifest else None
        automation = build_automation(args, config_manager, descriptor)
        result = execute_command(args, automation, descriptor)
    except (DomainException, CLIError, OSError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nOperation cancelled by user.", file=sys.stderr)
        return 130

    print(format_output(result, args.format))
    return 0


if __name__ == "__main__":
    sys.exit(main())
