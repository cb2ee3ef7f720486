"""Stateless signal detectors over terminal output."""

from agentfleet.detectors.add_dir import detect_add_dir
from agentfleet.detectors.ansi import clean_for_display, normalize_terminal_text
from agentfleet.detectors.status import AgentStatus, detect_status
from agentfleet.detectors.url import DetectedUrl, detect_url

__all__ = [
    "AgentStatus",
    "DetectedUrl",
    "clean_for_display",
    "detect_add_dir",
    "detect_status",
    "detect_url",
    "normalize_terminal_text",
]
