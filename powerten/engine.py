"""
Traversal engine.

One depth-first, pre-order walk over the tree. At every node the engine
(a) runs the enabled rules registered for the node's kind, (b) enters the
node's scope (function body, cast operand), (c) visits the children and then
restores the scope on the way back up. Diagnostics are appended in
visitation order.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set, Tuple
import sys

from .config import RuleConfig
from .diagnostics import Diagnostic
from .rules import Rule, build_rules
from .source import SourceText
from .symbols import SymbolTable, collect_symbols, register_node
from .tree import Cast, FunctionDefinition, Node, TypeSpec

_UNKNOWN_CAST = TypeSpec("<unknown>")
_SavedScope = Tuple[Optional[str], Optional[TypeSpec]]


@dataclass
class TraversalState:
    """
    Scoped context threaded through the walk. Both fields are None outside
    the construct that sets them. `source` is the resolver of the unit being
    walked and is never modified by the walk.
    """
    current_function: Optional[str] = None
    active_cast_type: Optional[TypeSpec] = None
    source: Optional[SourceText] = None


class Analyzer:
    """
    Runs the enabled rules of a RuleConfig over translation units.

    With `prepass=True` (the default) every declaration in the unit is
    registered before checking starts, so calls that precede their callee's
    declaration still resolve. With `prepass=False` declarations are
    registered as the walk reaches them and earlier calls stay unresolved.
    """

    def __init__(
        self,
        config: RuleConfig,
        rules: Optional[Sequence[Rule]] = None,
        *,
        prepass: bool = True,
    ) -> None:
        self.config = config
        self.prepass = prepass
        self._include_declarations = config.check_return_value
        self._rule_error_reported: Set[str] = set()
        self._unsupported_reported: Set[str] = set()

        candidates = build_rules(config) if rules is None else list(rules)
        self.rules: List[Rule] = []
        for rule in candidates:
            if not config.is_enabled(rule.toggle):
                continue
            if not rule.supported:
                self._notify_unsupported(rule)
                continue
            self.rules.append(rule)

        self._dispatch: Dict[str, List[Rule]] = {}
        for rule in self.rules:
            for kind in rule.triggers:
                self._dispatch.setdefault(kind, []).append(rule)

        self.state = TraversalState()
        self.symbols = SymbolTable()
        self._diagnostics: List[Diagnostic] = []

    def analyze(self, unit: Node, source: SourceText) -> List[Diagnostic]:
        self.state = TraversalState(source=source)
        if self.prepass:
            self.symbols = collect_symbols(unit, include_declarations=self._include_declarations)
        else:
            self.symbols = SymbolTable()
        self._diagnostics = []
        self._visit(unit)
        return list(self._diagnostics)

    def _visit(self, root: Node) -> None:
        """
        Iterative pre-order walk. Each node pushes an exit marker below its
        children so its scope is restored once they have all been visited.
        """
        stack: List[Tuple[bool, Node, Optional[_SavedScope]]] = [(True, root, None)]
        while stack:
            entering, node, saved = stack.pop()
            if not entering:
                self._leave_scope(saved)
                continue
            for rule in self._dispatch.get(node.kind, ()):
                self._run_rule(rule, node)
            stack.append((False, node, self._enter_scope(node)))
            stack.extend((True, child, None) for child in reversed(node.children()))

    def _enter_scope(self, node: Node) -> _SavedScope:
        state = self.state
        saved = (state.current_function, state.active_cast_type)
        if not self.prepass:
            register_node(self.symbols, node, include_declarations=self._include_declarations)
        if isinstance(node, FunctionDefinition):
            state.current_function = node.name
        elif isinstance(node, Cast):
            state.active_cast_type = node.target_type or _UNKNOWN_CAST
        return saved

    def _leave_scope(self, saved: Optional[_SavedScope]) -> None:
        if saved is not None:
            self.state.current_function, self.state.active_cast_type = saved

    def _run_rule(self, rule: Rule, node: Node) -> None:
        try:
            messages = list(rule.check(node, self.state, self.symbols))
        except Exception as exc:
            self._report_rule_error(rule, node, exc)
            return
        for message in messages:
            self._diagnostics.append(self._make_diagnostic(rule, node, message))

    def _make_diagnostic(self, rule: Rule, node: Node, message: str) -> Diagnostic:
        source = self.state.source
        line, column = 0, 0
        span = None
        if node.span is not None:
            span = (node.span.start, node.span.end)
            if source is not None:
                line, column = source.location(node.span.start)
        return Diagnostic(
            rule_id=rule.rule_id,
            message=message,
            line=line,
            column=column,
            severity=rule.severity,
            file=source.name if source is not None else None,
            span=span,
            show_excerpt=rule.show_excerpt,
        )

    def _report_rule_error(self, rule: Rule, node: Node, exc: Exception) -> None:
        """
        The rule abstains for this node; tell the user once per rule.
        """
        if rule.rule_id in self._rule_error_reported:
            return
        sys.stderr.write(
            f"[powerten] Rule '{rule.rule_id}' could not inspect {node.kind} node "
            f"({exc}); skipping it there.\n"
        )
        self._rule_error_reported.add(rule.rule_id)

    def _notify_unsupported(self, rule: Rule) -> None:
        if rule.rule_id in self._unsupported_reported:
            return
        sys.stderr.write(
            f"[powerten] Rule '{rule.rule_id}' is not supported in this build; it will not run.\n"
        )
        self._unsupported_reported.add(rule.rule_id)


def analyze(
    unit: Node,
    config: RuleConfig,
    source: SourceText,
    *,
    prepass: bool = True,
) -> List[Diagnostic]:
    """Analyze one translation unit with a fresh Analyzer."""
    return Analyzer(config, prepass=prepass).analyze(unit, source)
