"""Detect a directory the agent just mounted (``/add-dir`` confirmation)."""

from __future__ import annotations

import re

from agentfleet.detectors.ansi import normalize_terminal_text

ADD_DIR_PATTERN = re.compile(r"Added\s+(/[^\n]+?)\s+as a working directory")


def detect_add_dir(output: str) -> str | None:
    match = ADD_DIR_PATTERN.search(normalize_terminal_text(output))
    if not match:
        return None
    path = match.group(1).rstrip("/")
    return path or None
