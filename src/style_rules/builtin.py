"""Built-in Python rules backed by the standard ``ast`` module.

Each rule parses every ``.py`` file under the scan root and walks the
tree for one anti-pattern.  Where the offending code sits on a single
line and the fix is purely local, the violation carries a literal
``fix`` for its ``snippet``; otherwise only a prose suggestion.
"""

from __future__ import annotations

import ast
import logging
from collections.abc import Iterator
from pathlib import Path

from src.fixer_shared.models import Certainty, Severity, Violation
from src.style_rules.base import Rule, iter_source_files, read_source

logger = logging.getLogger(__name__)

_BLOCKING_CALLS: dict[tuple[str, str], str] = {
    ("time", "sleep"): "await asyncio.sleep(...)",
    ("requests", "get"): "an async HTTP client such as httpx.AsyncClient",
    ("requests", "post"): "an async HTTP client such as httpx.AsyncClient",
    ("subprocess", "run"): "asyncio.create_subprocess_exec",
}

_MUTABLE_DEFAULTS = (ast.List, ast.Dict, ast.Set)


class AstRule(Rule):
    """A rule that visits the AST of every Python file."""

    def detect(self, root: Path) -> list[Violation]:
        violations: list[Violation] = []
        for path in iter_source_files(root, (".py",)):
            source = read_source(path)
            if source is None:
                continue
            try:
                tree = ast.parse(source, filename=str(path))
            except SyntaxError as exc:
                logger.debug("%s: cannot parse %s: %s", self.key, path, exc)
                continue
            lines = source.splitlines()
            violations.extend(self.check(path, tree, lines))
        return violations

    def check(
        self, path: Path, tree: ast.AST, lines: list[str]
    ) -> Iterator[Violation]:
        raise NotImplementedError


def _line_text(lines: list[str], lineno: int) -> str:
    if 1 <= lineno <= len(lines):
        return lines[lineno - 1]
    return ""


def _segment(lines: list[str], node: ast.AST) -> str | None:
    """Return the exact source of *node* when it spans a single line."""
    lineno = getattr(node, "lineno", None)
    end_lineno = getattr(node, "end_lineno", None)
    if lineno is None or lineno != end_lineno:
        return None
    text = _line_text(lines, lineno)
    return text[node.col_offset:node.end_col_offset]


# ---------------------------------------------------------------------------
# errors
# ---------------------------------------------------------------------------


class BareExceptRule(AstRule):
    rule_id = "bare-except"
    category = "errors"
    description = "Never use a bare except; catch Exception or a narrower type"

    def check(self, path, tree, lines):
        for node in ast.walk(tree):
            if not isinstance(node, ast.ExceptHandler) or node.type is not None:
                continue
            text = _line_text(lines, node.lineno)
            fix = None
            snippet = text.strip()
            if "except:" in text:
                snippet = "except:"
                fix = "except Exception:"
            yield self._violation(
                path,
                node.lineno,
                node.col_offset + 1,
                snippet,
                "Bare except also catches SystemExit and KeyboardInterrupt",
                suggestion="Catch Exception (or a narrower type) explicitly",
                fix=fix,
            )


class NoneComparisonRule(AstRule):
    rule_id = "none-comparison"
    category = "style"
    description = "Compare to None with 'is' / 'is not', never '==' / '!='"
    default_severity = Severity.WARNING

    def check(self, path, tree, lines):
        for node in ast.walk(tree):
            if not isinstance(node, ast.Compare) or len(node.ops) != 1:
                continue
            op = node.ops[0]
            right = node.comparators[0]
            if not isinstance(op, (ast.Eq, ast.NotEq)):
                continue
            if not (isinstance(right, ast.Constant) and right.value is None):
                continue
            snippet = _segment(lines, node)
            fix = None
            if snippet is not None:
                left = _segment(lines, node.left)
                if left is not None:
                    keyword = "is" if isinstance(op, ast.Eq) else "is not"
                    fix = f"{left} {keyword} None"
            yield self._violation(
                path,
                node.lineno,
                node.col_offset + 1,
                snippet or _line_text(lines, node.lineno).strip(),
                "Comparison to None should use identity, not equality",
                suggestion="Use 'is None' / 'is not None'",
                fix=fix,
            )


class MutableDefaultRule(AstRule):
    rule_id = "mutable-default-argument"
    category = "style"
    description = "Never use a mutable literal as a default argument value"
    default_severity = Severity.WARNING

    def check(self, path, tree, lines):
        for node in ast.walk(tree):
            if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                continue
            defaults = list(node.args.defaults) + [
                d for d in node.args.kw_defaults if d is not None
            ]
            for default in defaults:
                if not isinstance(default, _MUTABLE_DEFAULTS):
                    continue
                yield self._violation(
                    path,
                    default.lineno,
                    default.col_offset + 1,
                    _segment(lines, default) or _line_text(lines, default.lineno).strip(),
                    f"Mutable default argument in '{node.name}' is shared between calls",
                    suggestion="Default to None and create the value inside the function",
                )


# ---------------------------------------------------------------------------
# async
# ---------------------------------------------------------------------------


class BlockingCallInAsyncRule(AstRule):
    rule_id = "blocking-call-in-async"
    category = "async"
    description = "Never call blocking I/O inside an async function"

    def check(self, path, tree, lines):
        for func in ast.walk(tree):
            if not isinstance(func, ast.AsyncFunctionDef):
                continue
            for node in _walk_same_scope(func):
                if not isinstance(node, ast.Call):
                    continue
                target = node.func
                if not (
                    isinstance(target, ast.Attribute)
                    and isinstance(target.value, ast.Name)
                ):
                    continue
                replacement = _BLOCKING_CALLS.get((target.value.id, target.attr))
                if replacement is None:
                    continue
                yield self._violation(
                    path,
                    node.lineno,
                    node.col_offset + 1,
                    _segment(lines, node) or _line_text(lines, node.lineno).strip(),
                    f"Blocking call {target.value.id}.{target.attr}() inside "
                    f"async function '{func.name}'",
                    suggestion=f"Use {replacement}",
                )


def _walk_same_scope(func: ast.AST) -> Iterator[ast.AST]:
    """Walk *func*'s body without descending into nested functions."""
    stack = list(ast.iter_child_nodes(func))
    while stack:
        node = stack.pop()
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.Lambda)):
            continue
        yield node
        stack.extend(ast.iter_child_nodes(node))


# ---------------------------------------------------------------------------
# logging
# ---------------------------------------------------------------------------


class PrintCallRule(AstRule):
    rule_id = "print-call"
    category = "logging"
    description = "Use a module-level logger instead of print() in library code"
    default_severity = Severity.WARNING
    default_certainty = Certainty.POTENTIAL

    def check(self, path, tree, lines):
        if path.name.startswith("test_") or path.name in ("conftest.py", "__main__.py"):
            return
        for node in ast.walk(tree):
            if (
                isinstance(node, ast.Call)
                and isinstance(node.func, ast.Name)
                and node.func.id == "print"
            ):
                yield self._violation(
                    path,
                    node.lineno,
                    node.col_offset + 1,
                    _segment(lines, node) or _line_text(lines, node.lineno).strip(),
                    "print() bypasses the logging configuration",
                    suggestion="Use logger = logging.getLogger(__name__) and logger.info(...)",
                )


BUILTIN_RULES: list[type[AstRule]] = [
    BareExceptRule,
    NoneComparisonRule,
    MutableDefaultRule,
    BlockingCallInAsyncRule,
    PrintCallRule,
]


def builtin_rules() -> list[Rule]:
    """Instantiate every built-in rule."""
    return [cls() for cls in BUILTIN_RULES]
