"""
Text Utilities — Shared Reply Formatting Helpers

THIS MODULE DEFINES NO COMMANDS.

Provides reusable helpers for:
- Safe truncation of long replies
- Splitting multi-line output into Discord-sized messages
"""

from __future__ import annotations

from typing import Iterable, List

__all__ = [
    "safe_truncate",
    "chunk_lines",
]


def safe_truncate(text: str, max_length: int, *, ellipsis: str = "…") -> str:
    """
    Truncate text to max_length, appending ellipsis if truncation occurs.
    If max_length is too small for ellipsis, returns a clipped ellipsis.
    """
    if max_length < 0:
        raise ValueError("max_length must be non-negative")
    if len(text) <= max_length:
        return text
    if max_length == 0:
        return ""
    if len(ellipsis) >= max_length:
        return ellipsis[:max_length]
    return text[: max_length - len(ellipsis)] + ellipsis


def chunk_lines(lines: Iterable[str], max_length: int) -> List[str]:
    """
    Join lines with newlines into as few chunks as possible, each no longer
    than max_length. A single oversized line is truncated on its own.
    """
    if max_length <= 0:
        raise ValueError("max_length must be > 0")
    chunks: List[str] = []
    current = ""
    for line in lines:
        line = safe_truncate(line, max_length)
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) <= max_length:
            current = candidate
            continue
        if current:
            chunks.append(current)
        current = line
    if current:
        chunks.append(current)
    return chunks
