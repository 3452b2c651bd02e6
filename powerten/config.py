"""
Rule configuration loading.

The configuration is a YAML document with a `rule_set` table holding one
mandatory boolean per rule and an optional `max_function_lines` limit:

    rule_set:
      restrict_goto: true
      restrict_setjmp: true
      restrict_longjmp: true
      restrict_recursion: true
      fixed_loop_bounds: true
      restrict_heap_allocation: true
      restrict_function_size: true
      check_return_value: true
      max_function_lines: 60

Anything missing or of the wrong type raises ConfigurationError before any
analysis runs.
"""

from __future__ import annotations
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Mapping, Tuple
import sys

import yaml

from .errors import ConfigurationError

FUNCTION_SIZE_LIMIT = 60

RULE_TOGGLES: Tuple[str, ...] = (
    # Avoid complex flow constructs
    "restrict_goto",
    "restrict_setjmp",
    "restrict_longjmp",
    "restrict_recursion",
    # Enforce loop bounds
    "fixed_loop_bounds",
    # Restrict heap allocation, e.g. malloc
    "restrict_heap_allocation",
    # Restrict function size
    "restrict_function_size",
    # Check return value of functions
    "check_return_value",
)


@dataclass(frozen=True)
class RuleConfig:
    restrict_goto: bool
    restrict_setjmp: bool
    restrict_longjmp: bool
    restrict_recursion: bool
    fixed_loop_bounds: bool
    restrict_heap_allocation: bool
    restrict_function_size: bool
    check_return_value: bool
    max_function_lines: int = FUNCTION_SIZE_LIMIT

    def is_enabled(self, toggle: str) -> bool:
        return bool(getattr(self, toggle, False))

    def enabled_toggles(self) -> List[str]:
        return [name for name in RULE_TOGGLES if self.is_enabled(name)]


def rule_config_from_mapping(raw: Any, origin: str = "<config>") -> RuleConfig:
    """
    Validate a parsed configuration document and build a RuleConfig.
    """
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"{origin}: expected a mapping with a 'rule_set' table")

    if "rule_set" not in raw:
        raise ConfigurationError(f"{origin}: missing 'rule_set' table")
    table = raw["rule_set"]
    if not isinstance(table, Mapping):
        raise ConfigurationError(f"{origin}: 'rule_set' must be a mapping")

    missing = [name for name in RULE_TOGGLES if name not in table]
    if missing:
        raise ConfigurationError(f"{origin}: missing required field(s) {missing}")

    # bool is the only accepted type; YAML 'yes'/'no' already load as bool.
    mistyped = [name for name in RULE_TOGGLES if not isinstance(table[name], bool)]
    if mistyped:
        raise ConfigurationError(f"{origin}: field(s) {mistyped} must be true or false")

    values: Dict[str, Any] = {name: table[name] for name in RULE_TOGGLES}

    if "max_function_lines" in table:
        limit = table["max_function_lines"]
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ConfigurationError(f"{origin}: 'max_function_lines' must be a positive integer")
        values["max_function_lines"] = limit

    known = {f.name for f in fields(RuleConfig)}
    unknown = sorted(str(key) for key in table if key not in known)
    if unknown:
        sys.stderr.write(f"[powerten] Ignoring unknown rule_set key(s) in {origin}: {unknown}\n")

    return RuleConfig(**values)


def load_rule_config(path: str) -> RuleConfig:
    """
    Read and validate a YAML rule configuration file.
    """
    try:
        with open(path, "r", encoding="utf-8") as handle:
            document = yaml.safe_load(handle)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"config file not found: {path}") from exc
    except OSError as exc:
        raise ConfigurationError(f"could not read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"could not parse config file {path}: {exc}") from exc

    return rule_config_from_mapping(document, origin=path)
