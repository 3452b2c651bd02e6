"""
powerten - safety-critical coding rule enforcement for C.

Parses a C translation unit with libclang, walks it once and reports
goto/setjmp/longjmp use, direct recursion, unbounded loops, heap
allocation, oversized functions and unchecked non-void call results.
"""

__version__ = "0.1.0"

from .config import FUNCTION_SIZE_LIMIT, RULE_TOGGLES, RuleConfig, load_rule_config, rule_config_from_mapping
from .diagnostics import ERROR, WARNING, Diagnostic, diagnostics_to_json, render_text
from .engine import Analyzer, TraversalState, analyze
from .errors import ConfigurationError, ParseError, PowertenError
from .rules import Rule, build_rules
from .source import SourceText
from .symbols import Symbol, SymbolTable, collect_symbols

__all__ = [
    "__version__",
    "Analyzer",
    "ConfigurationError",
    "Diagnostic",
    "ERROR",
    "FUNCTION_SIZE_LIMIT",
    "ParseError",
    "PowertenError",
    "RULE_TOGGLES",
    "Rule",
    "RuleConfig",
    "SourceText",
    "Symbol",
    "SymbolTable",
    "TraversalState",
    "WARNING",
    "analyze",
    "build_rules",
    "collect_symbols",
    "diagnostics_to_json",
    "load_rule_config",
    "render_text",
    "rule_config_from_mapping",
]
