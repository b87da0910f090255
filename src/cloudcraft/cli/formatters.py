"""
CLI-specific formatting functions for human-readable output.

Supports JSON, YAML and Rich tables for server results.
"""
import json
from typing import Any, Dict, List

import yaml
from rich.console import Console
from rich.table import Table

SERVER_COLUMNS = [
    ("ID", "id", "cyan"),
    ("Name", "name", "green"),
    ("Region", "region", "blue"),
    ("Public IP", "public_ip", "yellow"),
    ("Tags", "tags", "magenta"),
]


def format_output(data: Any, format_type: str) -> str:
    """Format data according to the specified format type."""
    if format_type == "yaml":
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    if format_type == "table":
        return format_table_output(data)
    return json.dumps(data, indent=2, default=str)


def format_table_output(data: Any) -> str:
    """Format data as a table."""
    if isinstance(data, dict) and "servers" in data:
        return format_servers_table(data["servers"])
    if isinstance(data, dict) and "server" in data:
        return format_servers_table([data["server"]])
    if isinstance(data, dict) and "message" in data:
        return data["message"]
    return json.dumps(data, indent=2, default=str)


def format_servers_table(servers: List[Dict[str, str]]) -> str:
    if not servers:
        return "No servers found."

    table = Table(show_header=True, header_style="bold magenta")
    for title, _, style in SERVER_COLUMNS:
        table.add_column(title, style=style)
    for server in servers:
        table.add_row(*(server.get(key) or "-" for _, key, _ in SERVER_COLUMNS))

    console = Console(width=140, legacy_windows=False, force_terminal=False)
    with console.capture() as capture:
        console.print(table)
    return capture.get()
