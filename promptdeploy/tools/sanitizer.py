"""Console output sanitization.

Raw output from package managers and dev servers is full of terminal
control sequences, carriage-return progress bars and spinner glyphs. This
module reduces it to plain text lines suitable for the terminal log.

``sanitize_output`` is idempotent: its output contains nothing it would
remove again.
"""

from __future__ import annotations

import re
from typing import Any

# CSI: ESC [ params intermediates final
_CSI_RE = re.compile(r"(?:\x1b\[|\x9b)[0-?]*[ -/]*[@-~]")
# OSC: ESC ] ... terminated by BEL or ST
_OSC_RE = re.compile(r"(?:\x1b\]|\x9d).*?(?:\x07|\x1b\\|\x9c)", re.DOTALL)
# Remaining two-character escapes (ESC 7, ESC =, ESC (B, ...)
_ESC_RE = re.compile(r"\x1b[()#][0-9A-Za-z]|\x1b[@-Z\\-_=>78]?")
# C0/C1 controls except tab, newline and carriage return
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")

SPINNER_GLYPHS = "◐◓◑◒◴◷◶◵⸨⸩"
_SPINNER_RE = re.compile("[⠀-⣿" + re.escape(SPINNER_GLYPHS) + "]")


def _coerce_text(chunk: Any) -> str:
    if chunk is None:
        return ""
    if isinstance(chunk, (bytes, bytearray)):
        return bytes(chunk).decode("utf-8", errors="replace")
    if isinstance(chunk, str):
        return chunk
    return str(chunk)


def _clean_segment(segment: str) -> str:
    segment = _CONTROL_RE.sub("", segment)
    segment = _SPINNER_RE.sub("", segment)
    return segment.strip()


def split_output_lines(chunk: Any) -> list[str]:
    """Sanitize a chunk and return its non-empty lines.

    Args:
        chunk: Raw output; bytes are decoded as UTF-8, other objects via str()

    Returns:
        Readable lines with no control sequences, spinners or blank lines
    """
    text = _coerce_text(chunk)
    text = _OSC_RE.sub("", text)
    text = _CSI_RE.sub("", text)
    text = _ESC_RE.sub("", text)
    text = text.replace("\r\n", "\n")

    lines = []
    for raw_line in text.split("\n"):
        # A bare carriage return redraws the line; keep what was drawn last.
        segments = [_clean_segment(s) for s in raw_line.split("\r")]
        drawn = [s for s in segments if s]
        if drawn:
            lines.append(drawn[-1])
    return lines


def sanitize_output(chunk: Any) -> str:
    """Sanitize a chunk of console output into trimmed readable text.

    Returns an empty string when the chunk held nothing but control
    sequences, spinner glyphs or whitespace.
    """
    return "\n".join(split_output_lines(chunk))
