"""
Symbol table.

Maps function and file-scope variable names to what is known about them.
Only the void/non-void distinction of a function's return type is kept; the
return-value rule uses it to decide whether a call produces a result.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterator, Literal, Optional

from .tree import Declaration, FunctionDefinition, Node, TypeSpec, VariableDeclaration, walk


@dataclass(frozen=True)
class Symbol:
    name: str
    kind: Literal["function", "variable"]
    return_type: Optional[TypeSpec] = None

    @property
    def returns_value(self) -> bool:
        """True for functions whose return type is known and not void."""
        if self.kind != "function" or self.return_type is None:
            return False
        return not self.return_type.is_void


class SymbolTable:
    """
    Per-run mapping name -> Symbol. Registering a name again replaces the
    previous entry (last registration wins).
    """

    def __init__(self) -> None:
        self._symbols: Dict[str, Symbol] = {}

    def register(self, name: Optional[str], return_type: Optional[TypeSpec]) -> None:
        if not name:
            return
        self._symbols[name] = Symbol(name=name, kind="function", return_type=return_type)

    def register_variable(self, name: Optional[str]) -> None:
        if not name:
            return
        self._symbols[name] = Symbol(name=name, kind="variable")

    def lookup(self, name: Optional[str]) -> Optional[Symbol]:
        if not name:
            return None
        return self._symbols.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._symbols

    def __len__(self) -> int:
        return len(self._symbols)

    def __iter__(self) -> Iterator[Symbol]:
        return iter(self._symbols.values())


def register_node(table: SymbolTable, node: Node, *, include_declarations: bool) -> None:
    """
    Record whatever `node` declares. Function definitions always register;
    prototypes only when `include_declarations` is set.
    """
    if isinstance(node, FunctionDefinition):
        table.register(node.name, node.return_type)
    elif isinstance(node, Declaration):
        if include_declarations:
            table.register(node.name, node.return_type)
    elif isinstance(node, VariableDeclaration) and node.file_scope:
        table.register_variable(node.name)


def collect_symbols(root: Node, *, include_declarations: bool = True) -> SymbolTable:
    """Declaration pre-pass: register every declaring node in visitation order."""
    table = SymbolTable()
    for node in walk(root):
        register_node(table, node, include_declarations=include_declarations)
    return table
