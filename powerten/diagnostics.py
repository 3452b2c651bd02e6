"""
Diagnostics and their rendering.

A Diagnostic is one rule finding with its resolved position. It renders as
the `Error: <message> at line N` text line (plus an optional caret excerpt)
or as a JSON object for machine consumers.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Tuple
import json

from . import __version__
from .source import SourceText

Severity = Literal["error", "warning"]

ERROR: Severity = "error"
WARNING: Severity = "warning"


@dataclass(frozen=True)
class Diagnostic:
    """
    One finding. `line`/`column` are 1-based; 0 means the node had no
    position in the main file.
    """
    rule_id: str
    message: str
    line: int
    column: int = 0
    severity: Severity = ERROR
    file: Optional[str] = None
    span: Optional[Tuple[int, int]] = None
    show_excerpt: bool = False


# ============================================================
# ====================== TEXT OUTPUT =========================
# ============================================================

def render_excerpt(diagnostic: Diagnostic, source: SourceText) -> List[str]:
    """
    Source slice of the diagnostic's span and a caret underline of the same
    width. A span covering several lines is truncated to its first line.
    """
    if diagnostic.span is None:
        return []
    start, end = diagnostic.span
    text = source.slice(start, end)
    lines = text.splitlines()
    if not lines or not lines[0].strip():
        return []
    snippet = lines[0]
    return [snippet, "^" * len(snippet)]


def render_text(diagnostic: Diagnostic, source: Optional[SourceText] = None) -> str:
    lines = [f"{diagnostic.severity.capitalize()}: {diagnostic.message} at line {diagnostic.line}"]
    if diagnostic.show_excerpt and source is not None:
        lines.extend(render_excerpt(diagnostic, source))
    return "\n".join(lines)


# ============================================================
# ====================== JSON OUTPUT =========================
# ============================================================

def diagnostic_to_json_obj(d: Diagnostic) -> Dict[str, Any]:
    """
    Keep the field order explicit so the output stays stable.
    """
    return {
        "file": d.file,
        "rule_id": d.rule_id,
        "severity": d.severity,
        "message": d.message,
        "line": d.line,
        "column": d.column,
        "tool": "powerten",
        "version": __version__,
    }


def diagnostics_to_json(diagnostics: List[Diagnostic]) -> str:
    return json.dumps([diagnostic_to_json_obj(d) for d in diagnostics], indent=2, sort_keys=False)
