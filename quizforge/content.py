from __future__ import annotations

import re

CONTINUES_MARKER = "\n\n[... content continues ...]\n\n"

_TRAILING_WS_RE = re.compile(r"[ \t]+\n")
_BLANK_RUN_RE = re.compile(r"\n{3,}")


def normalize_content(text: str) -> str:
    """Tidy extracted document text: unify newlines, drop NULs, squeeze blank runs."""
    t = (text or "").replace("\r\n", "\n").replace("\r", "\n").replace("\x00", "")
    t = _TRAILING_WS_RE.sub("\n", t)
    t = _BLANK_RUN_RE.sub("\n\n", t)
    return t.strip()


def prepare_content(content: str, max_chars: int) -> str:
    """Fit ``content`` into roughly ``max_chars`` characters for a prompt.

    Short content passes through untouched. Longer content is sampled from
    three zones (start, middle, end), each about a third of the budget, so
    later sections of a document are not starved by a plain head cut. The
    zones are joined with CONTINUES_MARKER; the result is at most
    ``max_chars + 2 * len(CONTINUES_MARKER)`` long.
    """
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")
    if len(content) <= max_chars:
        return content

    third = max(1, max_chars // 3)
    total = len(content)
    head = content[:third]
    tail = content[total - third:]

    mid_start = max(third, total // 2 - third // 2)
    mid_end = min(mid_start + third, total - third)
    middle = content[mid_start:mid_end]

    return CONTINUES_MARKER.join([head, middle, tail])
