import contextlib
import io
import unittest

import powerten
from powerten.rules import NoGotoRule, Rule, loop_bound_problem
from powerten.tree import (
    VOID,
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
    Span,
    TranslationUnit,
    TypeSpec,
    Unary,
    VariableDeclaration,
    While,
)

INT = TypeSpec("int")


def config_with(*enabled, **extra) -> powerten.RuleConfig:
    values = {name: name in enabled for name in powerten.RULE_TOGGLES}
    values.update(extra)
    return powerten.RuleConfig(**values)


def all_but(toggle: str, **extra) -> powerten.RuleConfig:
    return config_with(*[name for name in powerten.RULE_TOGGLES if name != toggle], **extra)


def locate(source: powerten.SourceText, fragment: str, occurrence: int = 0) -> Span:
    needle = fragment.encode("utf-8")
    start = -1
    for _ in range(occurrence + 1):
        start = source.data.index(needle, start + 1)
    return Span(start, start + len(needle))


def unit_of(source: powerten.SourceText, items) -> TranslationUnit:
    return TranslationUnit(span=Span(0, len(source.data)), path=source.name, items=list(items))


def function(source, text, name, items, return_type=VOID) -> FunctionDefinition:
    return FunctionDefinition(
        span=locate(source, text.rstrip("\n")),
        name=name,
        return_type=return_type,
        body=Compound(items=list(items)),
    )


def call(source, fragment, name, *arguments, occurrence=0) -> Call:
    return Call(
        span=locate(source, fragment, occurrence),
        callee=Identifier(name=name),
        arguments=list(arguments),
    )


# ------------------------------------------------------------------
# One snippet per rule, each containing exactly one violation.
# ------------------------------------------------------------------

def build_goto():
    text = "void f(void) {\n  goto out;\nout:\n  return;\n}\n"
    source = powerten.SourceText("goto.c", text)
    body = [Goto(span=locate(source, "goto out;"), label="out"), Generic(label="LABEL_STMT")]
    return unit_of(source, [function(source, text, "f", body)]), source


def build_setjmp():
    text = "void f(void) {\n  setjmp(env);\n}\n"
    source = powerten.SourceText("setjmp.c", text)
    body = [call(source, "setjmp(env)", "setjmp", Identifier(name="env"))]
    return unit_of(source, [function(source, text, "f", body)]), source


def build_longjmp():
    text = "void f(void) {\n  longjmp(env, 1);\n}\n"
    source = powerten.SourceText("longjmp.c", text)
    body = [call(source, "longjmp(env, 1)", "longjmp", Identifier(name="env"), Literal(text="1"))]
    return unit_of(source, [function(source, text, "f", body)]), source


def build_recursion():
    text = "int f(int n) {\n  return f(n - 1);\n}\n"
    source = powerten.SourceText("recursion.c", text)
    recursive = call(
        source,
        "f(n - 1)",
        "f",
        Binary(operator="-", lhs=Identifier(name="n"), rhs=Literal(text="1")),
    )
    body = [Generic(label="RETURN_STMT", items=[recursive])]
    return unit_of(source, [function(source, text, "f", body, return_type=INT)]), source


def build_loop():
    text = "void f(int i) {\n  while (1) { }\n}\n"
    source = powerten.SourceText("loop.c", text)
    loop = While(span=locate(source, "while (1) { }"), condition=Literal(text="1"), body=Compound())
    return unit_of(source, [function(source, text, "f", [loop])]), source


def build_heap():
    text = "void f(void) {\n  free(p);\n}\n"
    source = powerten.SourceText("heap.c", text)
    body = [call(source, "free(p)", "free", Identifier(name="p"))]
    return unit_of(source, [function(source, text, "f", body)]), source


def build_size():
    text = "void f(void) {\n  a;\n  b;\n}\n"
    source = powerten.SourceText("size.c", text)
    return unit_of(source, [function(source, text, "f", [Identifier(name="a"), Identifier(name="b")])]), source


def build_return_value():
    text = "int get(void);\nvoid f(void) {\n  get();\n}\n"
    source = powerten.SourceText("result.c", text)
    declaration = Declaration(span=locate(source, "int get(void);"), name="get", return_type=INT)
    definition = FunctionDefinition(
        span=locate(source, "void f(void) {\n  get();\n}"),
        name="f",
        return_type=VOID,
        body=Compound(items=[call(source, "get()", "get")]),
    )
    return unit_of(source, [declaration, definition]), source


RULE_CASES = [
    ("restrict_goto", "no-goto", build_goto, 2),
    ("restrict_setjmp", "no-setjmp", build_setjmp, 2),
    ("restrict_longjmp", "no-longjmp", build_longjmp, 2),
    ("restrict_recursion", "no-recursion", build_recursion, 2),
    ("fixed_loop_bounds", "fixed-loop-bounds", build_loop, 2),
    ("restrict_heap_allocation", "no-heap-allocation", build_heap, 2),
    ("restrict_function_size", "function-size-limit", build_size, 1),
    ("check_return_value", "return-value-checked", build_return_value, 3),
]


class RuleToggleTests(unittest.TestCase):
    def test_each_rule_fires_once_when_enabled(self) -> None:
        for toggle, rule_id, builder, line in RULE_CASES:
            with self.subTest(rule=rule_id):
                unit, source = builder()
                diagnostics = powerten.analyze(unit, config_with(toggle, max_function_lines=3), source)
                self.assertEqual(len(diagnostics), 1)
                self.assertEqual(diagnostics[0].rule_id, rule_id)
                self.assertEqual(diagnostics[0].line, line)
                self.assertEqual(diagnostics[0].severity, "error")
                self.assertEqual(diagnostics[0].file, source.name)

    def test_each_rule_is_silent_when_disabled(self) -> None:
        for toggle, rule_id, builder, _ in RULE_CASES:
            with self.subTest(rule=rule_id):
                unit, source = builder()
                diagnostics = powerten.analyze(unit, all_but(toggle, max_function_lines=3), source)
                self.assertEqual([d for d in diagnostics if d.rule_id == rule_id], [])

    def test_runs_are_deterministic(self) -> None:
        config = config_with(*powerten.RULE_TOGGLES, max_function_lines=3)
        for _, _, builder, _ in RULE_CASES:
            unit, source = builder()
            first = powerten.analyze(unit, config, source)
            second = powerten.analyze(unit, config, source)
            self.assertEqual(first, second)


class LoopBoundTests(unittest.TestCase):
    def check(self, condition):
        text = "void f(void) {\n  loop;\n}\n"
        source = powerten.SourceText("loop.c", text)
        loop = While(span=locate(source, "loop;"), condition=condition, body=Compound())
        unit = unit_of(source, [function(source, text, "f", [loop])])
        return powerten.analyze(unit, config_with("fixed_loop_bounds"), source)

    def test_relational_against_constant_passes(self) -> None:
        condition = Binary(operator="<", lhs=Identifier(name="i"), rhs=Literal(text="10"))
        self.assertEqual(self.check(condition), [])

    def test_constant_on_left_passes(self) -> None:
        condition = Binary(operator=">=", lhs=Literal(text="10"), rhs=Identifier(name="i"))
        self.assertEqual(self.check(condition), [])

    def test_signed_constant_counts(self) -> None:
        condition = Binary(
            operator=">",
            lhs=Identifier(name="i"),
            rhs=Unary(operator="-", operand=Literal(text="1")),
        )
        self.assertEqual(self.check(condition), [])

    def test_bare_constant_is_flagged(self) -> None:
        diagnostics = self.check(Literal(text="1"))
        self.assertEqual(len(diagnostics), 1)
        self.assertIn("not a relational comparison", diagnostics[0].message)

    def test_comparison_without_constant_is_flagged(self) -> None:
        condition = Binary(
            operator="==",
            lhs=Identifier(name="x"),
            rhs=Call(callee=Identifier(name="y")),
        )
        diagnostics = self.check(condition)
        self.assertEqual(len(diagnostics), 1)
        self.assertIn("no constant bound", diagnostics[0].message)

    def test_inequality_is_not_relational(self) -> None:
        condition = Binary(operator="!=", lhs=Identifier(name="i"), rhs=Literal(text="10"))
        self.assertEqual(len(self.check(condition)), 1)

    def test_string_literal_is_not_a_bound(self) -> None:
        condition = Binary(operator="==", lhs=Identifier(name="s"), rhs=Literal(text='"x"', literal_kind="string"))
        self.assertEqual(len(self.check(condition)), 1)

    def test_for_without_condition_and_do_while(self) -> None:
        self.assertEqual(loop_bound_problem(None), "no loop condition")
        text = "void f(void) {\n  for (;;) { }\n  do { } while (i < 3);\n}\n"
        source = powerten.SourceText("loops.c", text)
        forever = For(span=locate(source, "for (;;) { }"), body=Compound())
        bounded = DoWhile(
            span=locate(source, "do { } while (i < 3);"),
            body=Compound(),
            condition=Binary(operator="<", lhs=Identifier(name="i"), rhs=Literal(text="3")),
        )
        unit = unit_of(source, [function(source, text, "f", [forever, bounded])])
        diagnostics = powerten.analyze(unit, config_with("fixed_loop_bounds"), source)
        self.assertEqual([(d.line, d.message) for d in diagnostics], [
            (2, "for loop without a fixed bound found (no loop condition)"),
        ])


class RecursionTests(unittest.TestCase):
    def test_direct_recursion_is_flagged(self) -> None:
        unit, source = build_recursion()
        diagnostics = powerten.analyze(unit, config_with("restrict_recursion"), source)
        self.assertEqual(len(diagnostics), 1)
        self.assertEqual(diagnostics[0].message, "recursive call to 'f' found")

    def test_indirect_recursion_is_not_detected(self) -> None:
        text = "void g(void);\nvoid f(void) {\n  g();\n}\nvoid g(void) {\n  f();\n}\n"
        source = powerten.SourceText("mutual.c", text)
        unit = unit_of(source, [
            Declaration(span=locate(source, "void g(void);"), name="g", return_type=VOID),
            FunctionDefinition(
                span=locate(source, "void f(void) {\n  g();\n}"),
                name="f",
                return_type=VOID,
                body=Compound(items=[call(source, "g()", "g")]),
            ),
            FunctionDefinition(
                span=locate(source, "void g(void) {\n  f();\n}"),
                name="g",
                return_type=VOID,
                body=Compound(items=[call(source, "f()", "f")]),
            ),
        ])
        self.assertEqual(powerten.analyze(unit, config_with("restrict_recursion"), source), [])

    def test_call_outside_function_is_ignored(self) -> None:
        text = "int x = f();\n"
        source = powerten.SourceText("global.c", text)
        unit = unit_of(source, [
            VariableDeclaration(name="x", initializer=call(source, "f()", "f"), file_scope=True),
        ])
        self.assertEqual(powerten.analyze(unit, config_with("restrict_recursion"), source), [])


class FunctionSizeTests(unittest.TestCase):
    def build(self, total_lines: int):
        text = "void big(void) {\n" + "  step();\n" * (total_lines - 2) + "}\n"
        source = powerten.SourceText("big.c", text)
        definition = FunctionDefinition(
            span=Span(0, len(source.data) - 1),
            name="big",
            return_type=VOID,
            body=Compound(),
        )
        return unit_of(source, [definition]), source

    def test_exactly_the_limit_passes(self) -> None:
        unit, source = self.build(powerten.FUNCTION_SIZE_LIMIT)
        self.assertEqual(powerten.analyze(unit, config_with("restrict_function_size"), source), [])

    def test_one_line_over_the_limit_is_flagged(self) -> None:
        unit, source = self.build(powerten.FUNCTION_SIZE_LIMIT + 1)
        diagnostics = powerten.analyze(unit, config_with("restrict_function_size"), source)
        self.assertEqual(len(diagnostics), 1)
        self.assertEqual(diagnostics[0].line, 1)
        self.assertEqual(diagnostics[0].message, "function 'big' is 61 lines long (limit 60)")

    def test_configured_limit(self) -> None:
        unit, source = self.build(20)
        config = config_with("restrict_function_size", max_function_lines=19)
        self.assertEqual(len(powerten.analyze(unit, config, source)), 1)


class ReturnValueTests(unittest.TestCase):
    TEXT = "int get(void);\nvoid f(void) {\n  (void)get();\n  get();\n}\n"

    def build(self):
        source = powerten.SourceText("cast.c", self.TEXT)
        wrapped = Cast(
            span=locate(source, "(void)get()"),
            target_type=VOID,
            operand=call(source, "get()", "get"),
        )
        bare = call(source, "get()", "get", occurrence=1)
        unit = unit_of(source, [
            Declaration(span=locate(source, "int get(void);"), name="get", return_type=INT),
            FunctionDefinition(
                span=locate(source, self.TEXT[15:].rstrip("\n")),
                name="f",
                return_type=VOID,
                body=Compound(items=[wrapped, bare]),
            ),
        ])
        return unit, source

    def test_bare_call_is_flagged(self) -> None:
        unit, source = build_return_value()
        diagnostics = powerten.analyze(unit, config_with("check_return_value"), source)
        self.assertEqual(len(diagnostics), 1)
        self.assertEqual(diagnostics[0].message, "return value of 'get' is not checked")
        self.assertTrue(diagnostics[0].show_excerpt)

    def test_cast_marks_value_as_handled_and_scope_is_restored(self) -> None:
        unit, source = self.build()
        diagnostics = powerten.analyze(unit, config_with("check_return_value"), source)
        self.assertEqual([d.line for d in diagnostics], [4])

    def test_void_functions_are_not_flagged(self) -> None:
        text = "void put(void);\nvoid f(void) {\n  put();\n}\n"
        source = powerten.SourceText("void.c", text)
        unit = unit_of(source, [
            Declaration(name="put", return_type=VOID),
            function(source, text[16:], "f", [call(source, "put()", "put")]),
        ])
        self.assertEqual(powerten.analyze(unit, config_with("check_return_value"), source), [])

    def test_unknown_return_type_counts_as_void(self) -> None:
        text = "void f(void) {\n  get();\n}\n"
        source = powerten.SourceText("unknown.c", text)
        unit = unit_of(source, [
            Declaration(name="get", return_type=None),
            function(source, text, "f", [call(source, "get()", "get")]),
        ])
        self.assertEqual(powerten.analyze(unit, config_with("check_return_value"), source), [])

    def test_function_pointer_variable_shadows_function(self) -> None:
        text = "void f(void) {\n  handler();\n}\n"
        source = powerten.SourceText("pointer.c", text)
        unit = unit_of(source, [
            Declaration(name="handler", return_type=INT),
            VariableDeclaration(name="handler", file_scope=True),
            function(source, text, "f", [call(source, "handler()", "handler")]),
        ])
        self.assertEqual(powerten.analyze(unit, config_with("check_return_value"), source), [])


class SymbolResolutionModeTests(unittest.TestCase):
    TEXT = "void f(void) {\n  get();\n}\nint get(void) { return 1; }\n"

    def build(self):
        source = powerten.SourceText("forward.c", self.TEXT)
        unit = unit_of(source, [
            function(source, "void f(void) {\n  get();\n}", "f", [call(source, "get()", "get")]),
            FunctionDefinition(
                span=locate(source, "int get(void) { return 1; }"),
                name="get",
                return_type=INT,
                body=Compound(items=[Generic(label="RETURN_STMT", items=[Literal(text="1")])]),
            ),
        ])
        return unit, source

    def test_prepass_resolves_forward_calls(self) -> None:
        unit, source = self.build()
        diagnostics = powerten.analyze(unit, config_with("check_return_value"), source)
        self.assertEqual([d.line for d in diagnostics], [2])

    def test_single_pass_leaves_forward_calls_unresolved(self) -> None:
        unit, source = self.build()
        diagnostics = powerten.analyze(unit, config_with("check_return_value"), source, prepass=False)
        self.assertEqual(diagnostics, [])

    def test_single_pass_resolves_earlier_prototypes(self) -> None:
        unit, source = build_return_value()
        diagnostics = powerten.analyze(unit, config_with("check_return_value"), source, prepass=False)
        self.assertEqual(len(diagnostics), 1)


class TraversalTests(unittest.TestCase):
    def test_diagnostics_follow_visitation_order(self) -> None:
        text = (
            "void *malloc(unsigned long n);\n"
            "void f(void) {\n"
            "  goto out;\n"
            "  p = malloc(8);\n"
            "  while (1) { }\n"
            "}\n"
        )
        source = powerten.SourceText("order.c", text)
        unit = unit_of(source, [
            Declaration(name="malloc", return_type=TypeSpec("void *")),
            function(source, text[31:], "f", [
                Goto(span=locate(source, "goto out;"), label="out"),
                Binary(
                    operator="=",
                    lhs=Identifier(name="p"),
                    rhs=call(source, "malloc(8)", "malloc", Literal(text="8")),
                ),
                While(span=locate(source, "while (1) { }"), condition=Literal(text="1"), body=Compound()),
            ]),
        ])
        config = config_with(*powerten.RULE_TOGGLES, max_function_lines=3)
        diagnostics = powerten.analyze(unit, config, source)
        self.assertEqual(
            [(d.rule_id, d.line) for d in diagnostics],
            [
                ("function-size-limit", 2),
                ("no-goto", 3),
                ("no-heap-allocation", 4),
                ("return-value-checked", 4),
                ("fixed-loop-bounds", 5),
            ],
        )

    def test_state_is_scoped(self) -> None:
        seen = []

        class SpyRule(Rule):
            rule_id = "spy"
            toggle = "restrict_goto"
            triggers = (Call.kind,)

            def check(self, node, state, symbols):
                seen.append((node.callee_name, state.current_function, state.active_cast_type))
                return iter(())

        text = "void f(void) {\n  (long)(int)a();\n  b();\n}\nint c = d();\n"
        source = powerten.SourceText("spy.c", text)
        long_type = TypeSpec("long")
        int_type = TypeSpec("int")
        unit = unit_of(source, [
            function(source, "void f(void) {\n  (long)(int)a();\n  b();\n}", "f", [
                Cast(target_type=long_type, operand=Cast(target_type=int_type, operand=call(source, "a()", "a"))),
                call(source, "b()", "b"),
            ]),
            VariableDeclaration(name="c", initializer=call(source, "d()", "d"), file_scope=True),
        ])
        analyzer = powerten.Analyzer(config_with("restrict_goto"), rules=[SpyRule()])
        analyzer.analyze(unit, source)
        self.assertEqual(seen, [("a", "f", int_type), ("b", "f", None), ("d", None, None)])
        self.assertIsNone(analyzer.state.current_function)
        self.assertIsNone(analyzer.state.active_cast_type)

    def test_unsupported_rule_is_skipped_with_notice(self) -> None:
        class PendingRule(Rule):
            rule_id = "pending"
            toggle = "restrict_goto"
            triggers = (Goto.kind,)
            supported = False

            def check(self, node, state, symbols):
                yield "should never be reported"

        unit, source = build_goto()
        stderr = io.StringIO()
        with contextlib.redirect_stderr(stderr):
            analyzer = powerten.Analyzer(config_with("restrict_goto"), rules=[PendingRule()])
            diagnostics = analyzer.analyze(unit, source)
        self.assertEqual(diagnostics, [])
        self.assertIn("'pending' is not supported", stderr.getvalue())

    def test_failing_rule_abstains_without_stopping_the_run(self) -> None:
        class BrokenRule(Rule):
            rule_id = "broken"
            toggle = "restrict_goto"
            triggers = (Goto.kind,)

            def check(self, node, state, symbols):
                raise ValueError("unexpected shape")

        unit, source = build_goto()
        stderr = io.StringIO()
        with contextlib.redirect_stderr(stderr):
            analyzer = powerten.Analyzer(config_with("restrict_goto"), rules=[BrokenRule(), NoGotoRule()])
            diagnostics = analyzer.analyze(unit, source)
        self.assertEqual([d.rule_id for d in diagnostics], ["no-goto"])
        self.assertIn("Rule 'broken' could not inspect Goto node", stderr.getvalue())

    def test_deep_nesting_is_walked_without_recursion(self) -> None:
        text = "int f(void) {\n  if (a) if (b) f();\n}\nint x = f();\n"
        source = powerten.SourceText("deep.c", text)
        nested: Generic = Generic(label="IF_STMT", items=[call(source, "f()", "f"), Goto()])
        for _ in range(5000):
            nested = Generic(label="IF_STMT", items=[Identifier(name="a"), nested])
        unit = unit_of(source, [
            FunctionDefinition(span=locate(source, "int f(void)"), name="f", return_type=INT, body=Compound(items=[nested])),
            VariableDeclaration(name="x", initializer=call(source, "f()", "f", occurrence=1), file_scope=True),
        ])
        analyzer = powerten.Analyzer(config_with("restrict_goto", "restrict_recursion"))
        diagnostics = analyzer.analyze(unit, source)
        self.assertEqual(
            [(d.rule_id, d.line) for d in diagnostics],
            [("no-recursion", 2), ("no-goto", 0)],
        )
        self.assertIsNone(analyzer.state.current_function)

    def test_nodes_without_position_report_line_zero(self) -> None:
        source = powerten.SourceText("empty.c", "")
        unit = unit_of(source, [FunctionDefinition(name="f", body=Compound(items=[Goto()]))])
        diagnostics = powerten.analyze(unit, config_with("restrict_goto"), source)
        self.assertEqual([(d.line, d.span) for d in diagnostics], [(0, None)])


if __name__ == "__main__":
    unittest.main()
