"""
Closed tree model consumed by the rule engine.

Every node carries a `kind` tag (used for rule dispatch), an optional byte
span into the translation unit's source, and a `children()` method listing
the sub-nodes the engine descends into, in source order. Constructs the rules
never inspect are represented by `Generic` so their children are still
visited.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import ClassVar, Iterator, List, Literal as LiteralType, Optional, Tuple


# ============================================================
# ===================== SPANS & TYPES ========================
# ============================================================

@dataclass(frozen=True)
class Span:
    start: int  # byte offset, inclusive
    end: int    # byte offset, exclusive


@dataclass(frozen=True)
class TypeSpec:
    """
    Return/cast type descriptor. Only the void/non-void distinction is
    consulted by the rules; the spelling is kept for messages and dumps.
    """
    spelling: str
    is_void: bool = False


VOID = TypeSpec("void", is_void=True)


# ============================================================
# ========================= NODES ============================
# ============================================================

@dataclass
class Node:
    span: Optional[Span] = None

    kind: ClassVar[str] = "Node"
    _summary_fields: ClassVar[Tuple[str, ...]] = ()

    def children(self) -> List["Node"]:
        return []

    def describe(self) -> str:
        parts = [self.kind]
        for name in self._summary_fields:
            value = getattr(self, name)
            if isinstance(value, TypeSpec):
                value = value.spelling
            if value is not None:
                parts.append(f"{name}={value!r}" if isinstance(value, str) else f"{name}={value}")
        if self.span is not None:
            parts.append(f"[{self.span.start}..{self.span.end}]")
        return " ".join(parts)


def _present(*nodes: Optional[Node]) -> List[Node]:
    return [node for node in nodes if node is not None]


@dataclass
class TranslationUnit(Node):
    path: str = "<memory>"
    items: List[Node] = field(default_factory=list)

    kind: ClassVar[str] = "TranslationUnit"
    _summary_fields: ClassVar[Tuple[str, ...]] = ("path",)

    def children(self) -> List[Node]:
        return list(self.items)


@dataclass
class FunctionDefinition(Node):
    name: Optional[str] = None
    return_type: Optional[TypeSpec] = None
    body: Optional[Node] = None

    kind: ClassVar[str] = "FunctionDefinition"
    _summary_fields: ClassVar[Tuple[str, ...]] = ("name", "return_type")

    def children(self) -> List[Node]:
        return _present(self.body)


@dataclass
class Declaration(Node):
    """Function declaration without a body (prototype)."""
    name: Optional[str] = None
    return_type: Optional[TypeSpec] = None

    kind: ClassVar[str] = "Declaration"
    _summary_fields: ClassVar[Tuple[str, ...]] = ("name", "return_type")


@dataclass
class VariableDeclaration(Node):
    name: Optional[str] = None
    initializer: Optional[Node] = None
    file_scope: bool = False

    kind: ClassVar[str] = "VariableDeclaration"
    _summary_fields: ClassVar[Tuple[str, ...]] = ("name",)

    def children(self) -> List[Node]:
        return _present(self.initializer)


@dataclass
class Compound(Node):
    items: List[Node] = field(default_factory=list)

    kind: ClassVar[str] = "Compound"

    def children(self) -> List[Node]:
        return list(self.items)


@dataclass
class Goto(Node):
    label: Optional[str] = None

    kind: ClassVar[str] = "Goto"
    _summary_fields: ClassVar[Tuple[str, ...]] = ("label",)


@dataclass
class While(Node):
    condition: Optional[Node] = None
    body: Optional[Node] = None

    kind: ClassVar[str] = "While"

    def children(self) -> List[Node]:
        return _present(self.condition, self.body)


@dataclass
class DoWhile(Node):
    body: Optional[Node] = None
    condition: Optional[Node] = None

    kind: ClassVar[str] = "DoWhile"

    def children(self) -> List[Node]:
        return _present(self.body, self.condition)


@dataclass
class For(Node):
    init: Optional[Node] = None
    condition: Optional[Node] = None
    step: Optional[Node] = None
    body: Optional[Node] = None

    kind: ClassVar[str] = "For"

    def children(self) -> List[Node]:
        return _present(self.init, self.condition, self.step, self.body)


@dataclass
class Call(Node):
    callee: Optional[Node] = None
    arguments: List[Node] = field(default_factory=list)

    kind: ClassVar[str] = "Call"
    _summary_fields: ClassVar[Tuple[str, ...]] = ("callee_name",)

    @property
    def callee_name(self) -> Optional[str]:
        """Name of the callee when it is a bare identifier, else None."""
        if isinstance(self.callee, Identifier):
            return self.callee.name
        return None

    def children(self) -> List[Node]:
        return _present(self.callee) + list(self.arguments)


@dataclass
class Identifier(Node):
    name: str = ""

    kind: ClassVar[str] = "Identifier"
    _summary_fields: ClassVar[Tuple[str, ...]] = ("name",)


LiteralKind = LiteralType["integer", "floating", "character", "string"]


@dataclass
class Literal(Node):
    text: str = ""
    literal_kind: LiteralKind = "integer"

    kind: ClassVar[str] = "Literal"
    _summary_fields: ClassVar[Tuple[str, ...]] = ("text", "literal_kind")


@dataclass
class Binary(Node):
    operator: Optional[str] = None
    lhs: Optional[Node] = None
    rhs: Optional[Node] = None

    kind: ClassVar[str] = "Binary"
    _summary_fields: ClassVar[Tuple[str, ...]] = ("operator",)

    def children(self) -> List[Node]:
        return _present(self.lhs, self.rhs)


@dataclass
class Unary(Node):
    operator: Optional[str] = None
    operand: Optional[Node] = None

    kind: ClassVar[str] = "Unary"
    _summary_fields: ClassVar[Tuple[str, ...]] = ("operator",)

    def children(self) -> List[Node]:
        return _present(self.operand)


@dataclass
class Cast(Node):
    target_type: Optional[TypeSpec] = None
    operand: Optional[Node] = None

    kind: ClassVar[str] = "Cast"
    _summary_fields: ClassVar[Tuple[str, ...]] = ("target_type",)

    def children(self) -> List[Node]:
        return _present(self.operand)


@dataclass
class Generic(Node):
    """Any construct no rule inspects (if, switch, return, ...)."""
    label: str = ""
    items: List[Node] = field(default_factory=list)

    kind: ClassVar[str] = "Generic"
    _summary_fields: ClassVar[Tuple[str, ...]] = ("label",)

    def children(self) -> List[Node]:
        return list(self.items)


# ============================================================
# ======================= TRAVERSAL ==========================
# ============================================================

def walk(node: Node) -> Iterator[Node]:
    """Pre-order iteration over `node` and all of its descendants."""
    stack: List[Node] = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children()))


def dump_tree(node: Node, indent: str = "  ") -> str:
    """
    Render the tree one node per line, children indented under their parent.
    """
    lines: List[str] = []
    stack: List[Tuple[Node, int]] = [(node, 0)]
    while stack:
        current, depth = stack.pop()
        lines.append(f"{indent * depth}{current.describe()}")
        stack.extend((child, depth + 1) for child in reversed(current.children()))
    return "\n".join(lines)
