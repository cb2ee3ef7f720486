"""Detect a local preview/dev-server URL in agent or server output."""

from __future__ import annotations

import re
from dataclasses import dataclass

from agentfleet.detectors.ansi import normalize_terminal_text

URL_PATTERN = re.compile(r"https?://(?:localhost|127\.0\.0\.1|0\.0\.0\.0):(\d{1,5})/?[^\s]*")
BARE_LOCALHOST_PATTERN = re.compile(r"(?:localhost|127\.0\.0\.1|0\.0\.0\.0):(\d{1,5})")
# Markdown/punctuation glued to the end of a URL, e.g. **http://localhost:5173/**
TRAILING_JUNK = re.compile(r"""[*)\]}>,"']+$""")

# Node inspector banners ("Debugger listening on ws://127.0.0.1:9229/...").
IGNORED_PORTS = frozenset({9229})


@dataclass(frozen=True, slots=True)
class DetectedUrl:
    url: str
    port: int


def detect_url(output: str) -> DetectedUrl | None:
    clean = normalize_terminal_text(output)

    for match in URL_PATTERN.finditer(clean):
        port = int(match.group(1))
        if port in IGNORED_PORTS:
            continue
        return DetectedUrl(url=TRAILING_JUNK.sub("", match.group(0)), port=port)

    for match in BARE_LOCALHOST_PATTERN.finditer(clean):
        port = int(match.group(1))
        if port in IGNORED_PORTS:
            continue
        return DetectedUrl(url=f"http://{match.group(0)}", port=port)

    return None
