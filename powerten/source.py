"""
Source text resolver.

Maps byte offsets (as reported by libclang extents) to 1-based line/column
pairs and byte ranges back to text. Line starts are computed once; each
lookup is a binary search.
"""

from __future__ import annotations
from bisect import bisect_right
from typing import List, Tuple


class SourceText:
    """
    UTF-8 source of one translation unit plus a line-start index.
    """

    def __init__(self, name: str, text: str) -> None:
        self.name = name
        self.text = text
        self.data = text.encode("utf-8")
        self._line_starts: List[int] = [0]
        newline = self.data.find(b"\n")
        while newline != -1:
            self._line_starts.append(newline + 1)
            newline = self.data.find(b"\n", newline + 1)

    @classmethod
    def from_file(cls, path: str) -> "SourceText":
        with open(path, "rb") as handle:
            raw = handle.read()
        return cls(path, raw.decode("utf-8", errors="replace"))

    @property
    def line_count(self) -> int:
        return len(self._line_starts)

    def location(self, offset: int) -> Tuple[int, int]:
        """
        Return the (line, column) of a byte offset, both 1-based.
        Offsets past the end clamp to the last line.
        """
        offset = max(0, min(offset, len(self.data)))
        line_index = bisect_right(self._line_starts, offset) - 1
        return line_index + 1, offset - self._line_starts[line_index] + 1

    def line_of(self, offset: int) -> int:
        return self.location(offset)[0]

    def slice(self, start: int, end: int) -> str:
        return self.data[start:end].decode("utf-8", errors="replace")
