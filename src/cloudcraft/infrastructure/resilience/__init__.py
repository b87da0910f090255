"""Waiting on asynchronous provider operations."""
from .poller import Deadline, PollPolicy, poll_until

__all__ = ["Deadline", "PollPolicy", "poll_until"]
