"""
Rule set.

Each rule names the config toggle that enables it, the node kinds it reacts
to, and a `check` generator yielding one message per finding at the visited
node. Rules never raise on unexpected shapes; they simply yield nothing.
"""

from __future__ import annotations
from typing import TYPE_CHECKING, ClassVar, FrozenSet, Iterator, List, Optional, Tuple

from .config import FUNCTION_SIZE_LIMIT, RuleConfig
from .diagnostics import ERROR, Severity
from .symbols import SymbolTable
from .tree import Binary, Call, DoWhile, For, FunctionDefinition, Goto, Literal, Node, Unary, While

if TYPE_CHECKING:
    from .engine import TraversalState


class Rule:
    rule_id: ClassVar[str] = ""
    toggle: ClassVar[str] = ""
    triggers: ClassVar[Tuple[str, ...]] = ()
    description: ClassVar[str] = ""
    severity: ClassVar[Severity] = ERROR
    show_excerpt: ClassVar[bool] = False
    # Rules without an implementation in this build are skipped with a notice.
    supported: ClassVar[bool] = True

    def check(self, node: Node, state: "TraversalState", symbols: SymbolTable) -> Iterator[str]:
        return iter(())

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.rule_id}>"


# ============================================================
# ===================== FLOW CONSTRUCTS ======================
# ============================================================

class NoGotoRule(Rule):
    rule_id = "no-goto"
    toggle = "restrict_goto"
    triggers = (Goto.kind,)
    description = "goto statements are not allowed"

    def check(self, node: Node, state: "TraversalState", symbols: SymbolTable) -> Iterator[str]:
        if isinstance(node, Goto):
            yield "goto statement found"


class _BannedCallRule(Rule):
    triggers = (Call.kind,)
    banned: ClassVar[FrozenSet[str]] = frozenset()
    template: ClassVar[str] = "call to '{name}' found"

    def check(self, node: Node, state: "TraversalState", symbols: SymbolTable) -> Iterator[str]:
        if not isinstance(node, Call):
            return
        name = node.callee_name
        if name in self.banned:
            yield self.template.format(name=name)


class NoSetjmpRule(_BannedCallRule):
    rule_id = "no-setjmp"
    toggle = "restrict_setjmp"
    description = "setjmp is not allowed"
    banned = frozenset({"setjmp"})
    template = "setjmp call found"


class NoLongjmpRule(_BannedCallRule):
    rule_id = "no-longjmp"
    toggle = "restrict_longjmp"
    description = "longjmp is not allowed"
    banned = frozenset({"longjmp"})
    template = "longjmp call found"


class NoRecursionRule(Rule):
    """
    Direct self-calls only. Mutual recursion (f -> g -> f) is not detected
    since there is no call graph.
    """
    rule_id = "no-recursion"
    toggle = "restrict_recursion"
    triggers = (Call.kind,)
    description = "functions must not call themselves"

    def check(self, node: Node, state: "TraversalState", symbols: SymbolTable) -> Iterator[str]:
        if not isinstance(node, Call) or state.current_function is None:
            return
        if node.callee_name == state.current_function:
            yield f"recursive call to '{node.callee_name}' found"


# ============================================================
# ======================= LOOP BOUNDS ========================
# ============================================================

RELATIONAL_OPERATORS: FrozenSet[str] = frozenset({"<", "<=", ">", ">=", "=="})

_LOOP_NAMES = {While.kind: "while", DoWhile.kind: "do-while", For.kind: "for"}


def is_constant_operand(node: Optional[Node]) -> bool:
    """A numeric or character literal, optionally signed."""
    if isinstance(node, Unary) and node.operator in ("-", "+"):
        node = node.operand
    return isinstance(node, Literal) and node.literal_kind != "string"


def loop_bound_problem(condition: Optional[Node]) -> Optional[str]:
    """
    Return why `condition` does not bound the loop, or None when it is a
    relational comparison against a constant.
    """
    if condition is None:
        return "no loop condition"
    if not isinstance(condition, Binary) or condition.operator not in RELATIONAL_OPERATORS:
        return "condition is not a relational comparison"
    if not (is_constant_operand(condition.lhs) or is_constant_operand(condition.rhs)):
        return "condition has no constant bound"
    return None


class FixedLoopBoundsRule(Rule):
    rule_id = "fixed-loop-bounds"
    toggle = "fixed_loop_bounds"
    triggers = (While.kind, DoWhile.kind, For.kind)
    description = "loop conditions must compare against a constant bound"

    def check(self, node: Node, state: "TraversalState", symbols: SymbolTable) -> Iterator[str]:
        if not isinstance(node, (While, DoWhile, For)):
            return
        problem = loop_bound_problem(node.condition)
        if problem is not None:
            yield f"{_LOOP_NAMES[node.kind]} loop without a fixed bound found ({problem})"


# ============================================================
# ==================== HEAP ALLOCATION =======================
# ============================================================

HEAP_FUNCTIONS: FrozenSet[str] = frozenset({"malloc", "calloc", "realloc", "free"})


class NoHeapAllocationRule(_BannedCallRule):
    rule_id = "no-heap-allocation"
    toggle = "restrict_heap_allocation"
    description = "dynamic memory allocation is not allowed"
    show_excerpt = True
    banned = HEAP_FUNCTIONS
    template = "heap allocation call '{name}' found"


# ============================================================
# ===================== FUNCTION SIZE ========================
# ============================================================

class FunctionSizeRule(Rule):
    rule_id = "function-size-limit"
    toggle = "restrict_function_size"
    triggers = (FunctionDefinition.kind,)
    description = "functions must not exceed the line limit"

    def __init__(self, limit: int = FUNCTION_SIZE_LIMIT) -> None:
        self.limit = limit

    def check(self, node: Node, state: "TraversalState", symbols: SymbolTable) -> Iterator[str]:
        if not isinstance(node, FunctionDefinition) or node.span is None or state.source is None:
            return
        first = state.source.line_of(node.span.start)
        last = state.source.line_of(max(node.span.start, node.span.end - 1))
        length = last - first + 1
        if length > self.limit:
            name = node.name or "<anonymous>"
            yield f"function '{name}' is {length} lines long (limit {self.limit})"


# ============================================================
# ===================== RETURN VALUES ========================
# ============================================================

class ReturnValueCheckedRule(Rule):
    """
    A call to a non-void function counts as handled when any cast encloses
    it, `(void)` included. Assignment alone does not count.
    """
    rule_id = "return-value-checked"
    toggle = "check_return_value"
    triggers = (Call.kind,)
    description = "results of non-void calls must be used through a cast"
    show_excerpt = True

    def check(self, node: Node, state: "TraversalState", symbols: SymbolTable) -> Iterator[str]:
        if not isinstance(node, Call) or state.active_cast_type is not None:
            return
        symbol = symbols.lookup(node.callee_name)
        if symbol is not None and symbol.returns_value:
            yield f"return value of '{symbol.name}' is not checked"


def build_rules(config: RuleConfig) -> List[Rule]:
    """Every rule in this build, in reporting order."""
    return [
        NoGotoRule(),
        NoSetjmpRule(),
        NoLongjmpRule(),
        NoRecursionRule(),
        FixedLoopBoundsRule(),
        NoHeapAllocationRule(),
        FunctionSizeRule(config.max_function_lines),
        ReturnValueCheckedRule(),
    ]
