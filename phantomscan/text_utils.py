from __future__ import annotations

from bisect import bisect_right
from typing import List


def trim_snippet(text: str, max_len: int = 240) -> str:
    value = text.strip()
    if len(value) <= max_len:
        return value
    return value[: max_len - 3] + "..."


class LineIndex:
    """Maps character offsets to 1-based line numbers."""

    def __init__(self, text: str):
        self.text = text
        starts: List[int] = [0]
        pos = text.find("\n")
        while pos != -1:
            starts.append(pos + 1)
            pos = text.find("\n", pos + 1)
        self._starts = starts

    def line_of(self, offset: int) -> int:
        return bisect_right(self._starts, max(0, offset))

    def line_text(self, offset: int) -> str:
        idx = self.line_of(offset) - 1
        start = self._starts[idx]
        end = self.text.find("\n", start)
        if end == -1:
            end = len(self.text)
        return self.text[start:end]

    def snippet(self, offset: int, max_len: int = 240) -> str:
        return trim_snippet(self.line_text(offset), max_len=max_len)
