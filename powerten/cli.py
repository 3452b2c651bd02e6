"""
Command-line entry point.

    powerten analyze --config ruleset.yaml src/a.c src/b.c

Exit status: 0 when no diagnostics were produced, 1 when at least one was,
2 when the configuration could not be loaded or a file could not be parsed.
"""

from __future__ import annotations
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from itertools import repeat
from typing import List, Optional, Sequence
import argparse
import sys

from .config import RuleConfig, load_rule_config
from .diagnostics import Diagnostic, diagnostics_to_json, render_text
from .engine import Analyzer
from .errors import ConfigurationError, ParseError
from .frontend import libclang_available, parse_file
from .source import SourceText
from .tree import dump_tree

EXIT_CLEAN = 0
EXIT_FINDINGS = 1
EXIT_FAILURE = 2


@dataclass
class FileResult:
    path: str
    diagnostics: List[Diagnostic] = field(default_factory=list)
    source: Optional[SourceText] = None
    error: Optional[str] = None
    tree_dump: Optional[str] = None


def analyze_file(
    path: str,
    config: RuleConfig,
    prepass: bool = True,
    clang_args: Optional[Sequence[str]] = None,
    dump: bool = False,
) -> FileResult:
    """
    Parse and check one file. Parse failures are returned, not raised, so a
    batch can carry on with the remaining files.
    """
    try:
        unit, source = parse_file(path, clang_args)
    except ParseError as exc:
        return FileResult(path=path, error=str(exc))
    diagnostics = Analyzer(config, prepass=prepass).analyze(unit, source)
    return FileResult(
        path=path,
        diagnostics=diagnostics,
        source=source,
        tree_dump=dump_tree(unit) if dump else None,
    )


def analyze_files(
    paths: Sequence[str],
    config: RuleConfig,
    *,
    prepass: bool = True,
    clang_args: Optional[Sequence[str]] = None,
    dump: bool = False,
    jobs: int = 1,
) -> List[FileResult]:
    """
    Each file gets its own Analyzer; results keep the order of `paths`.
    """
    if jobs <= 1 or len(paths) <= 1:
        return [analyze_file(path, config, prepass, clang_args, dump) for path in paths]
    with ProcessPoolExecutor(max_workers=jobs) as pool:
        return list(
            pool.map(
                analyze_file,
                paths,
                repeat(config),
                repeat(prepass),
                repeat(list(clang_args or [])),
                repeat(dump),
            )
        )


def render_results_text(results: Sequence[FileResult]) -> str:
    blocks: List[str] = []
    with_headers = len(results) > 1
    for result in results:
        lines: List[str] = []
        if with_headers:
            lines.append(f"==> {result.path} <==")
        if result.tree_dump:
            lines.append(result.tree_dump)
        lines.extend(render_text(d, result.source) for d in result.diagnostics)
        if lines:
            blocks.append("\n".join(lines))
    return "\n".join(blocks)


def _emit(text: str, out: Optional[str]) -> None:
    if out:
        with open(out, "w", encoding="utf-8") as f:
            f.write(text + "\n")
    elif text:
        print(text)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="powerten",
        description="powerten: safety-critical coding rule checks for C",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze_p = subparsers.add_parser(
        "analyze",
        help="Check one or more C translation units against the configured rules.",
    )
    analyze_p.add_argument(
        "--config",
        metavar="RULESET",
        required=True,
        help="YAML rule configuration with a 'rule_set' table.",
    )
    analyze_p.add_argument(
        "--format",
        choices=("text", "json"),
        default="text",
        help="Output format (default: text).",
    )
    analyze_p.add_argument(
        "--out",
        metavar="OUT_FILE",
        help="Write the report to this file instead of stdout.",
    )
    analyze_p.add_argument(
        "--dump-ast",
        action="store_true",
        help="Print the translated tree of each file before its diagnostics (text format).",
    )
    analyze_p.add_argument(
        "--single-pass",
        action="store_true",
        help="Resolve calls only against declarations seen earlier in the file.",
    )
    analyze_p.add_argument(
        "--jobs",
        type=int,
        default=1,
        metavar="N",
        help="Analyze files on N worker processes.",
    )
    analyze_p.add_argument(
        "--clang-arg",
        action="append",
        default=[],
        metavar="ARG",
        help="Extra argument passed to clang (repeatable), e.g. --clang-arg=-Iinclude.",
    )
    analyze_p.add_argument(
        "files",
        nargs="+",
        help="C source files to analyze.",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    if args.command == "analyze":
        try:
            config = load_rule_config(args.config)
        except ConfigurationError as exc:
            sys.stderr.write(f"[powerten] Configuration error: {exc}\n")
            return EXIT_FAILURE

        if not libclang_available():
            sys.stderr.write("[powerten] libclang could not be loaded; cannot parse C sources.\n")
            return EXIT_FAILURE

        results = analyze_files(
            args.files,
            config,
            prepass=not args.single_pass,
            clang_args=args.clang_arg,
            dump=args.dump_ast,
            jobs=args.jobs,
        )

        for result in results:
            if result.error:
                sys.stderr.write(f"[powerten] {result.error}\n")

        if args.format == "json":
            diagnostics = [d for result in results for d in result.diagnostics]
            _emit(diagnostics_to_json(diagnostics), args.out)
        else:
            _emit(render_results_text(results), args.out)

        if any(result.error for result in results):
            return EXIT_FAILURE
        if any(result.diagnostics for result in results):
            return EXIT_FINDINGS
        return EXIT_CLEAN

    # unreachable if parser is correct
    return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
