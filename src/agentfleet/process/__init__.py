"""Pseudo-terminal process pool."""

from agentfleet.process.pty_pool import PtyHandle, PtyPool

__all__ = ["PtyHandle", "PtyPool"]
