"""
libclang frontend.

Parses C text with libclang and translates the cursor tree of the main file
into the closed node model in `powerten.tree`. Implicit conversions and
parentheses are dropped so rules see the expression as written; explicit
C-style casts become `Cast` nodes. Function prototypes from included headers
are kept (without position) so calls to library functions resolve.

Translation runs on an explicit stack, so nesting depth in the C source is
not bounded by Python's recursion limit.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple
import os
import shlex
import sys

from clang import cindex

from .errors import ParseError
from .source import SourceText
from .tree import (
    Binary,
    Call,
    Cast,
    Compound,
    Declaration,
    DoWhile,
    For,
    FunctionDefinition,
    Generic,
    Goto,
    Identifier,
    Literal,
    Node,
    Span,
    TranslationUnit,
    TypeSpec,
    Unary,
    VariableDeclaration,
    While,
)

CLANG_ARGS_ENV = "POWERTEN_CLANG_ARGS"


def default_clang_args(extra: Optional[Sequence[str]] = None) -> List[str]:
    """
    Base clang flags, then anything from POWERTEN_CLANG_ARGS, then `extra`.
    Implicit declarations stay warnings so pre-C99 sources still parse.
    """
    base = [
        "-x",
        "c",
        "-std=c11",
        "-Wno-error=implicit-function-declaration",
        "-Wno-error=implicit-int",
    ]
    env_args = os.environ.get(CLANG_ARGS_ENV)
    if env_args:
        base.extend(shlex.split(env_args))
    if extra:
        base.extend(extra)
    return base


def libclang_available() -> bool:
    """True when the libclang shared library can be loaded."""
    try:
        cindex.Config().lib
    except (cindex.LibclangError, OSError):
        return False
    return True


def parse_source(source: SourceText, clang_args: Optional[Sequence[str]] = None) -> TranslationUnit:
    """
    Parse `source` and return its tree. Raises ParseError when libclang
    cannot load the unit or reports an error-severity diagnostic.

    Errors are not fatal once an include could not be found (the pip
    libclang wheel ships without clang's builtin headers): they are listed
    on stderr and whatever libclang recovered is analyzed.
    """
    index = cindex.Index.create()
    try:
        clang_tu = index.parse(
            source.name,
            args=default_clang_args(clang_args),
            unsaved_files=[(source.name, source.text)],
            options=0,
        )
    except cindex.TranslationUnitLoadError as exc:
        raise ParseError(source.name, [str(exc)]) from exc

    errors = [diag for diag in clang_tu.diagnostics if diag.severity >= cindex.Diagnostic.Error]
    if errors:
        missing = [diag for diag in errors if _is_missing_include(diag)]
        if not missing:
            raise ParseError(source.name, [_format_clang_diagnostic(diag) for diag in errors])
        _report_missing_includes(source.name, len(missing), errors)

    return _CursorTranslator(source).translate_unit(clang_tu.cursor)


def parse_file(path: str, clang_args: Optional[Sequence[str]] = None) -> Tuple[TranslationUnit, SourceText]:
    try:
        source = SourceText.from_file(path)
    except OSError as exc:
        raise ParseError(path, [str(exc)]) from exc
    return parse_source(source, clang_args), source


def _format_clang_diagnostic(diag: "cindex.Diagnostic") -> str:
    location = diag.location
    if location is not None and location.file is not None:
        return f"{location.file.name}:{location.line}:{location.column}: {diag.spelling}"
    return diag.spelling


def _is_missing_include(diag: "cindex.Diagnostic") -> bool:
    return "file not found" in diag.spelling


def _report_missing_includes(name: str, missing: int, errors: Sequence["cindex.Diagnostic"]) -> None:
    sys.stderr.write(
        f"[powerten] {name}: {missing} include(s) not found; "
        f"analyzing what libclang could parse ({len(errors)} error(s) ignored).\n"
    )
    for diag in errors:
        sys.stderr.write(f"[powerten]   {_format_clang_diagnostic(diag)}\n")


# ============================================================
# =================== CURSOR TRANSLATION =====================
# ============================================================

_LITERAL_KINDS = {
    cindex.CursorKind.INTEGER_LITERAL: "integer",
    cindex.CursorKind.FLOATING_LITERAL: "floating",
    cindex.CursorKind.CHARACTER_LITERAL: "character",
    cindex.CursorKind.STRING_LITERAL: "string",
}

# cindex.BinaryOperator member names -> C spelling
_BINARY_OPERATOR_SPELLINGS = {
    "Mul": "*",
    "Div": "/",
    "Rem": "%",
    "Add": "+",
    "Sub": "-",
    "Shl": "<<",
    "Shr": ">>",
    "LT": "<",
    "GT": ">",
    "LE": "<=",
    "GE": ">=",
    "EQ": "==",
    "NE": "!=",
    "And": "&",
    "Xor": "^",
    "Or": "|",
    "LAnd": "&&",
    "LOr": "||",
    "Assign": "=",
    "MulAssign": "*=",
    "DivAssign": "/=",
    "RemAssign": "%=",
    "AddAssign": "+=",
    "SubAssign": "-=",
    "ShlAssign": "<<=",
    "ShrAssign": ">>=",
    "AndAssign": "&=",
    "XorAssign": "^=",
    "OrAssign": "|=",
    "Comma": ",",
}

_TYPE_KEYWORDS = frozenset(
    {"void", "char", "short", "int", "long", "float", "double", "signed", "unsigned", "_Bool", "_Complex"}
)
_TAG_KEYWORDS = frozenset({"struct", "union", "enum"})


@dataclass
class _Pending:
    """A cursor whose children are being translated before it is built."""
    children: List["cindex.Cursor"]
    build: Callable[[List[Node]], Node]
    results: List[Node] = field(default_factory=list)


def _leaf(node: Node) -> _Pending:
    return _Pending([], lambda _: node)


def _first(nodes: List[Node]) -> Optional[Node]:
    return nodes[0] if nodes else None


class _CursorTranslator:
    def __init__(self, source: SourceText) -> None:
        self.source = source
        self.main = os.path.abspath(source.name)
        self._file_is_main: Dict[str, bool] = {}

        kinds = cindex.CursorKind
        self._handlers: Dict["cindex.CursorKind", Callable[["cindex.Cursor"], _Pending]] = {
            kinds.FUNCTION_DECL: self._function,
            kinds.VAR_DECL: self._variable,
            kinds.COMPOUND_STMT: self._compound,
            kinds.GOTO_STMT: self._goto,
            kinds.INDIRECT_GOTO_STMT: self._goto,
            kinds.WHILE_STMT: self._while,
            kinds.DO_STMT: self._do_while,
            kinds.FOR_STMT: self._for,
            kinds.CALL_EXPR: self._call,
            kinds.DECL_REF_EXPR: self._identifier,
            kinds.CSTYLE_CAST_EXPR: self._cast,
            kinds.BINARY_OPERATOR: self._binary,
            kinds.COMPOUND_ASSIGNMENT_OPERATOR: self._binary,
            kinds.UNARY_OPERATOR: self._unary,
            kinds.PAREN_EXPR: self._transparent,
            kinds.UNEXPOSED_EXPR: self._transparent,
        }
        for literal_kind in _LITERAL_KINDS:
            self._handlers[literal_kind] = self._literal

    def translate_unit(self, root: "cindex.Cursor") -> TranslationUnit:
        items: List[Node] = []
        for child in root.get_children():
            if self._in_main_file(child):
                items.append(self.translate(child))
            elif child.kind == cindex.CursorKind.FUNCTION_DECL:
                # Header prototypes (and header definitions) only contribute a signature.
                items.append(
                    Declaration(
                        span=None,
                        name=child.spelling or None,
                        return_type=_declared_return_type(child),
                    )
                )
        return TranslationUnit(
            span=Span(0, len(self.source.data)),
            path=self.source.name,
            items=items,
        )

    def translate(self, cursor: "cindex.Cursor") -> Node:
        """Post-order translation of `cursor` and everything below it."""
        stack = [self._plan(cursor)]
        while True:
            top = stack[-1]
            if len(top.results) < len(top.children):
                stack.append(self._plan(top.children[len(top.results)]))
                continue
            node = top.build(top.results)
            stack.pop()
            if not stack:
                return node
            stack[-1].results.append(node)

    def _plan(self, cursor: "cindex.Cursor") -> _Pending:
        handler = self._handlers.get(cursor.kind, self._generic)
        return handler(cursor)

    # ---------------------------------------------------- locations

    def _in_main_file(self, cursor: "cindex.Cursor") -> bool:
        location = cursor.location
        if location is None or location.file is None:
            return False
        return self._is_main(location.file.name)

    def _is_main(self, file_name: str) -> bool:
        cached = self._file_is_main.get(file_name)
        if cached is None:
            cached = os.path.abspath(file_name) == self.main
            self._file_is_main[file_name] = cached
        return cached

    def _span(self, cursor: "cindex.Cursor") -> Optional[Span]:
        extent = cursor.extent
        start, end = extent.start, extent.end
        if start.file is None or not self._is_main(start.file.name):
            return None
        return Span(start.offset, max(start.offset, end.offset))

    def _type_spec(self, ctype: Optional["cindex.Type"]) -> Optional[TypeSpec]:
        if ctype is None or ctype.kind == cindex.TypeKind.INVALID:
            return None
        canonical = ctype.get_canonical()
        return TypeSpec(ctype.spelling, is_void=canonical.kind == cindex.TypeKind.VOID)

    # ------------------------------------------------- declarations

    def _function(self, cursor: "cindex.Cursor") -> _Pending:
        span = self._span(cursor)
        name = cursor.spelling or None
        return_type = _declared_return_type(cursor)
        if not cursor.is_definition():
            return _leaf(Declaration(span=span, name=name, return_type=return_type))
        bodies = [c for c in cursor.get_children() if c.kind == cindex.CursorKind.COMPOUND_STMT]
        return _Pending(
            bodies[-1:],
            lambda done: FunctionDefinition(span=span, name=name, return_type=return_type, body=_first(done)),
        )

    def _variable(self, cursor: "cindex.Cursor") -> _Pending:
        span = self._span(cursor)
        name = cursor.spelling or None
        parent = cursor.semantic_parent
        file_scope = parent is not None and parent.kind == cindex.CursorKind.TRANSLATION_UNIT
        return _Pending(
            self._expression_children(cursor)[-1:],
            lambda done: VariableDeclaration(span=span, name=name, initializer=_first(done), file_scope=file_scope),
        )

    # --------------------------------------------------- statements

    def _compound(self, cursor: "cindex.Cursor") -> _Pending:
        span = self._span(cursor)
        return _Pending(list(cursor.get_children()), lambda done: Compound(span=span, items=list(done)))

    def _goto(self, cursor: "cindex.Cursor") -> _Pending:
        label = None
        for child in cursor.get_children():
            if child.kind == cindex.CursorKind.LABEL_REF:
                label = child.spelling
        return _leaf(Goto(span=self._span(cursor), label=label))

    def _while(self, cursor: "cindex.Cursor") -> _Pending:
        children = list(cursor.get_children())
        if len(children) < 2:
            return self._generic(cursor)
        span = self._span(cursor)
        return _Pending(children[-2:], lambda done: While(span=span, condition=done[0], body=done[1]))

    def _do_while(self, cursor: "cindex.Cursor") -> _Pending:
        children = list(cursor.get_children())
        if len(children) != 2:
            return self._generic(cursor)
        span = self._span(cursor)
        return _Pending(children, lambda done: DoWhile(span=span, body=done[0], condition=done[1]))

    def _for(self, cursor: "cindex.Cursor") -> _Pending:
        """
        libclang omits empty for-header clauses from the children, so each
        child is placed by comparing its offset with the header's `;`/`)`.
        """
        bounds = _for_header_bounds(cursor)
        if bounds is None:
            return self._generic(cursor)
        first_semi, second_semi, close_paren = bounds
        slots: Dict[str, "cindex.Cursor"] = {}
        for child in cursor.get_children():
            offset = child.extent.start.offset
            if offset < first_semi:
                slots["init"] = child
            elif offset < second_semi:
                slots["condition"] = child
            elif offset < close_paren:
                slots["step"] = child
            else:
                slots["body"] = child
        names = list(slots)
        span = self._span(cursor)
        return _Pending([slots[n] for n in names], lambda done: For(span=span, **dict(zip(names, done))))

    # -------------------------------------------------- expressions

    def _call(self, cursor: "cindex.Cursor") -> _Pending:
        span = self._span(cursor)
        children = list(cursor.get_children())
        if not children:
            # Callee hidden from libclang (e.g. builtin); keep the name if known.
            callee = Identifier(span=None, name=cursor.spelling) if cursor.spelling else None
            return _leaf(Call(span=span, callee=callee, arguments=[]))
        return _Pending(children, lambda done: Call(span=span, callee=done[0], arguments=list(done[1:])))

    def _identifier(self, cursor: "cindex.Cursor") -> _Pending:
        return _leaf(Identifier(span=self._span(cursor), name=cursor.spelling))

    def _cast(self, cursor: "cindex.Cursor") -> _Pending:
        span = self._span(cursor)
        target_type = self._type_spec(cursor.type)
        return _Pending(
            self._expression_children(cursor)[-1:],
            lambda done: Cast(span=span, target_type=target_type, operand=_first(done)),
        )

    def _binary(self, cursor: "cindex.Cursor") -> _Pending:
        children = list(cursor.get_children())
        if len(children) != 2:
            return self._generic(cursor)
        span = self._span(cursor)
        operator = _binary_operator(cursor, children[0])
        return _Pending(children, lambda done: Binary(span=span, operator=operator, lhs=done[0], rhs=done[1]))

    def _unary(self, cursor: "cindex.Cursor") -> _Pending:
        children = list(cursor.get_children())
        if len(children) != 1:
            return self._generic(cursor)
        operand = children[0]
        tokens = list(cursor.get_tokens())
        if tokens and tokens[0].extent.start.offset < operand.extent.start.offset:
            operator = tokens[0].spelling
        else:
            operator = _token_after(cursor, operand)
        span = self._span(cursor)
        return _Pending(children, lambda done: Unary(span=span, operator=operator, operand=done[0]))

    def _literal(self, cursor: "cindex.Cursor") -> _Pending:
        tokens = list(cursor.get_tokens())
        text = tokens[0].spelling if tokens else cursor.spelling
        return _leaf(Literal(span=self._span(cursor), text=text or "", literal_kind=_LITERAL_KINDS[cursor.kind]))

    def _transparent(self, cursor: "cindex.Cursor") -> _Pending:
        expressions = self._expression_children(cursor)
        if len(expressions) == 1:
            return _Pending(expressions, lambda done: done[0])
        return self._generic(cursor)

    def _generic(self, cursor: "cindex.Cursor") -> _Pending:
        span = self._span(cursor)
        label = cursor.kind.name
        return _Pending(list(cursor.get_children()), lambda done: Generic(span=span, label=label, items=list(done)))

    @staticmethod
    def _expression_children(cursor: "cindex.Cursor") -> List["cindex.Cursor"]:
        return [child for child in cursor.get_children() if child.kind.is_expression()]


def _declared_return_type(cursor: "cindex.Cursor") -> Optional[TypeSpec]:
    """
    Return type read from the single type specifier written before the
    function name. No specifier, or several of them (`unsigned int`,
    `long long`), gives None, which the symbol table treats as void.
    Pointer declarators are not part of the specifier: `void *f(void)` is void.
    """
    name_offset = cursor.location.offset
    specifiers: List[str] = []
    depth = 0
    after_tag = False
    for token in cursor.get_tokens():
        if token.extent.start.offset >= name_offset:
            break
        spelling = token.spelling
        if spelling == "(":
            depth += 1
        elif spelling == ")":
            depth -= 1
        elif depth:
            continue
        elif after_tag:
            # struct/union/enum tag name
            specifiers[-1] = f"{specifiers[-1]} {spelling}"
            after_tag = False
        elif spelling in _TAG_KEYWORDS:
            specifiers.append(spelling)
            after_tag = True
        elif spelling in _TYPE_KEYWORDS or token.kind == cindex.TokenKind.IDENTIFIER:
            specifiers.append(spelling)
    if len(specifiers) != 1:
        return None
    return TypeSpec(specifiers[0], is_void=specifiers[0] == "void")


def _binary_operator(cursor: "cindex.Cursor", lhs: "cindex.Cursor") -> Optional[str]:
    """
    Operator spelling from libclang's opcode. Bindings or libraries without
    `Cursor.binary_operator` fall back to the token after the left operand.
    """
    try:
        opcode = cursor.binary_operator
    except AttributeError:
        return _token_after(cursor, lhs)
    return _BINARY_OPERATOR_SPELLINGS.get(opcode.name) or _token_after(cursor, lhs)


def _token_after(cursor: "cindex.Cursor", operand: "cindex.Cursor") -> Optional[str]:
    """Spelling of the first token of `cursor` that follows `operand`."""
    operand_start = operand.extent.start.offset
    operand_end = operand.extent.end.offset
    for token in cursor.get_tokens():
        offset = token.extent.start.offset
        if offset >= operand_end and offset > operand_start:
            return token.spelling
    return None


def _for_header_bounds(cursor: "cindex.Cursor") -> Optional[Tuple[int, int, int]]:
    """
    Offsets of the two `;` separating the for-header clauses and of the
    closing `)`, or None when the header cannot be read from the tokens.
    """
    depth = 0
    semicolons: List[int] = []
    for token in cursor.get_tokens():
        spelling = token.spelling
        offset = token.extent.start.offset
        if spelling == "(":
            depth += 1
        elif spelling == ")":
            depth -= 1
            if depth == 0:
                if len(semicolons) == 2:
                    return semicolons[0], semicolons[1], offset
                return None
        elif spelling == ";" and depth == 1:
            semicolons.append(offset)
    return None
