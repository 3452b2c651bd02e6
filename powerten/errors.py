"""
Exceptions that stop analysis of a run or of a single file. Rule findings
are never raised; they are collected as diagnostics.
"""

from __future__ import annotations
from typing import List, Optional


class PowertenError(Exception):
    """Base class for failures that stop analysis before it starts."""


class ConfigurationError(PowertenError):
    """The rule configuration is missing, unreadable or malformed."""


class ParseError(PowertenError):
    """
    libclang could not produce a usable translation unit. Carries the file
    name so a batch run can report it and move on to the next file.
    """

    def __init__(self, path: str, messages: Optional[List[str]] = None) -> None:
        self.path = path
        self.messages = list(messages or [])
        detail = "; ".join(self.messages) if self.messages else "unknown error"
        super().__init__(f"could not parse '{path}': {detail}")
