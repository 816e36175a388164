"""
Source context for stack frames that point at files on this machine.

Frames get `pre_context`, `context_line` and `post_context` read from the
file named by `filename`. Dependency frames (`/node_modules/`, `site-packages`)
and frames whose filename is a URL are left untouched.
"""

import logging
import re
from pathlib import Path
from typing import Any

logger = logging.getLogger("envelope_relay.contextlines")

LINES_OF_CONTEXT = 5
MAX_LINE_LENGTH = 150
SNIP_WINDOW = 140
DEPENDENCY_MARKERS = ("/node_modules/", "/site-packages/")

_LINE_BREAK = re.compile(r"\r?\n")


def snip_line(line: str, colno: int = 0) -> str:
    """Trim a long line to a window around `colno`, marking cut ends with `{snip}`."""
    length = len(line)
    if length <= MAX_LINE_LENGTH:
        return line
    colno = min(colno, length)
    start = max(colno - 60, 0)
    if start < 5:
        start = 0
    end = min(start + SNIP_WINDOW, length)
    if end > length - 5:
        end = length
    if end == length:
        start = max(end - SNIP_WINDOW, 0)

    snipped = line[start:end]
    if start > 0:
        snipped = "{snip} " + snipped
    if end < length:
        snipped += " {snip}"
    return snipped


def add_context_lines(lines: list[str], frame: dict[str, Any], lines_of_context: int = LINES_OF_CONTEXT) -> None:
    if not lines:
        return
    colno = frame.get("colno") if isinstance(frame.get("colno"), int) else 0
    source_line = max(min(len(lines) - 1, frame["lineno"] - 1), 0)
    frame["pre_context"] = [snip_line(line) for line in lines[max(0, source_line - lines_of_context):source_line]]
    frame["context_line"] = snip_line(lines[source_line], colno)
    frame["post_context"] = [
        snip_line(line) for line in lines[source_line + 1:source_line + 1 + lines_of_context]
    ]


def _is_local_frame(frame: Any) -> bool:
    if not isinstance(frame, dict):
        return False
    filename, lineno = frame.get("filename"), frame.get("lineno")
    if not isinstance(filename, str) or not filename or not isinstance(lineno, int) or lineno < 1:
        return False
    if any(marker in filename for marker in DEPENDENCY_MARKERS):
        return False
    return "://" not in filename


def apply_source_context(stacktrace: dict[str, Any]) -> dict[str, Any]:
    """Fill in source context for every local frame, in place. Missing files are skipped."""
    frames = stacktrace.get("frames")
    for frame in frames if isinstance(frames, list) else []:
        if not _is_local_frame(frame):
            continue
        try:
            text = Path(frame["filename"]).read_text(encoding="utf-8", errors="replace")
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            logger.debug("No source for %s", frame["filename"])
            continue
        add_context_lines(_LINE_BREAK.split(text), frame)
    return stacktrace
