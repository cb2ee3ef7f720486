"""Terminal control-sequence normalisation shared by the detectors and chat."""

from __future__ import annotations

import re

# Programs that lay text out with cursor movement instead of literal spaces
# would otherwise have adjacent words glued together once escapes are removed.
CURSOR_FORWARD = re.compile(r"\x1b\[\d*C")

_CSI = re.compile(r"\x1b\[[\x30-\x3f]*[\x20-\x2f]*[\x40-\x7e]")
_OSC = re.compile(r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)")
_CHARSET = re.compile(r"\x1b[()][A-Z0-9]")
_KEYPAD = re.compile(r"\x1b[=>]")
# C0 controls other than \t and \n, plus DEL.
_CONTROL = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")

_TABS = re.compile(r"\t")
_SPACE_RUN = re.compile(r" {2,}")
_BLANK_LINES = re.compile(r"\n[ ]*\n(?:[ ]*\n)+")


def normalize_terminal_text(text: str) -> str:
    """Cursor-forward becomes one space; every other escape/control is removed."""
    text = CURSOR_FORWARD.sub(" ", text)
    text = _CSI.sub("", text)
    text = _OSC.sub("", text)
    text = _CHARSET.sub("", text)
    text = _KEYPAD.sub("", text)
    return _CONTROL.sub("", text)


def clean_for_display(text: str) -> str:
    """Normalise terminal output into readable prose.

    On top of :func:`normalize_terminal_text`: tabs become single spaces,
    space runs collapse to one, and more than one blank line collapses to one.
    """
    text = normalize_terminal_text(text)
    text = _TABS.sub(" ", text)
    text = _SPACE_RUN.sub(" ", text)
    return _BLANK_LINES.sub("\n\n", text)


def trailing_window(output: str, size: int) -> str:
    """Normalised last *size* characters of *output*.

    Normalisation runs on a raw tail a few times larger than the window so
    that escape-heavy output still leaves *size* visible characters.
    """
    clean = normalize_terminal_text(output[-size * 4:])
    return clean[-size:]
