"""Exception context management."""

import threading
from datetime import datetime, timezone
from typing import Any, Dict


class ExceptionContext:
    """Where and when a lifecycle failure happened, for the log record."""

    def __init__(self, operation: str, layer: str = "provider", **additional_context):
        self.operation = operation
        self.layer = layer
        self.timestamp = datetime.now(timezone.utc)
        self.thread_id = threading.get_ident()
        self.additional_context = additional_context

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "layer": self.layer,
            "timestamp": self.timestamp.isoformat(),
            "thread_id": self.thread_id,
            **self.additional_context,
        }
