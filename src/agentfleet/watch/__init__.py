"""Polling of working-copy status for file-change and conflict events."""

from agentfleet.watch.poller import FileChange, RepositoryPoller, parse_status

__all__ = ["FileChange", "RepositoryPoller", "parse_status"]
