"""cloudcraft - provider-agnostic lifecycle management for game-server VMs."""

__version__ = "0.1.0"
