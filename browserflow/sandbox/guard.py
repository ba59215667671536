"""
Static validation and compilation of extraction scripts.

Scripts are Python source run as the body of an ``async def``. Before
compilation the syntax tree is checked for anything that could reach
interpreter internals: underscore-prefixed names and attributes, attributes
that lead to frames or code objects, imports, and class definitions.
Builtins are replaced by a closed whitelist.
"""

import ast
import builtins
from typing import Any, Callable, Dict, List

from browserflow.error_handling.exceptions import SandboxError

SCRIPT_FILENAME = "<extraction>"

# Parameters of the compiled function; the only names a script starts with.
BINDINGS = ("data", "window", "document", "DOMParser", "console", "print")

FORBIDDEN_ATTRIBUTES = frozenset({
    "gi_frame", "gi_code", "gi_yieldfrom",
    "cr_frame", "cr_code", "cr_await",
    "ag_frame", "ag_code", "ag_await",
    "f_globals", "f_locals", "f_builtins", "f_back", "f_code",
    "tb_frame", "tb_next",
    "co_code", "co_consts",
    "mro", "obj",
    "format", "format_map",
})

ALLOWED_BUILTINS = (
    "abs", "all", "any", "bool", "dict", "enumerate", "filter", "float",
    "int", "isinstance", "len", "list", "map", "max", "min", "range",
    "reversed", "round", "set", "sorted", "str", "sum", "tuple", "zip",
    "Exception", "ValueError", "KeyError", "TypeError", "IndexError",
)

_TEMPLATE = "async def extraction({}):\n    pass\n".format(", ".join(BINDINGS))


def safe_builtins() -> Dict[str, Any]:
    """Fresh mapping of the whitelisted builtins."""
    return {name: getattr(builtins, name) for name in ALLOWED_BUILTINS}


class ScriptGuard(ast.NodeVisitor):
    """Collects policy violations in a parsed script."""

    def __init__(self) -> None:
        self.violations: List[str] = []

    def _reject(self, node: ast.AST, reason: str) -> None:
        line = getattr(node, "lineno", "?")
        self.violations.append(f"line {line}: {reason}")

    def _check_name(self, node: ast.AST, name: str) -> None:
        if name.startswith("_"):
            self._reject(node, f"name '{name}' is not allowed")

    def visit_Name(self, node: ast.Name) -> None:
        self._check_name(node, node.id)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("_") or node.attr in FORBIDDEN_ATTRIBUTES:
            self._reject(node, f"attribute '{node.attr}' is not allowed")
        self.generic_visit(node)

    def visit_Import(self, node: ast.Import) -> None:
        self._reject(node, "import statements are not allowed")

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        self._reject(node, "import statements are not allowed")

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self._reject(node, "class definitions are not allowed")

    def visit_Global(self, node: ast.Global) -> None:
        self._reject(node, "global declarations are not allowed")

    def visit_Nonlocal(self, node: ast.Nonlocal) -> None:
        self._reject(node, "nonlocal declarations are not allowed")

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        self._check_name(node, node.name)
        self.generic_visit(node)

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:
        self._check_name(node, node.name)
        self.generic_visit(node)

    def visit_arg(self, node: ast.arg) -> None:
        self._check_name(node, node.arg)

    def visit_keyword(self, node: ast.keyword) -> None:
        if node.arg is not None:
            self._check_name(node, node.arg)
        self.generic_visit(node)

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        if node.name:
            self._check_name(node, node.name)
        self.generic_visit(node)

    def visit_MatchClass(self, node: ast.MatchClass) -> None:
        for attr in node.kwd_attrs:
            if attr.startswith("_") or attr in FORBIDDEN_ATTRIBUTES:
                self._reject(node, f"attribute '{attr}' is not allowed")
        self.generic_visit(node)

    def visit_MatchAs(self, node: ast.MatchAs) -> None:
        if node.name:
            self._check_name(node, node.name)
        self.generic_visit(node)

    def visit_MatchStar(self, node: ast.MatchStar) -> None:
        if node.name:
            self._check_name(node, node.name)


def validate_script(source: str) -> ast.Module:
    """
    Parse ``source`` and enforce the sandbox policy.

    Raises:
        SandboxError: On syntax errors or policy violations
    """
    try:
        tree = ast.parse(source, filename=SCRIPT_FILENAME)
    except SyntaxError as exc:
        raise SandboxError(f"{exc.msg} (line {exc.lineno})", cause=exc) from exc

    guard = ScriptGuard()
    guard.visit(tree)
    if guard.violations:
        raise SandboxError(
            guard.violations[0],
            details={"violations": guard.violations},
        )
    return tree


def compile_script(source: str) -> Callable[..., Any]:
    """
    Compile a validated script into an async function of :data:`BINDINGS`.

    The script body becomes the body of the function, so top-level
    ``await`` and ``return`` work as in an async function.
    """
    tree = validate_script(source)

    wrapper = ast.parse(_TEMPLATE, filename=SCRIPT_FILENAME)
    function = wrapper.body[0]
    function.body = tree.body or [ast.Pass()]
    ast.fix_missing_locations(wrapper)

    try:
        code = compile(wrapper, SCRIPT_FILENAME, "exec")
    except SyntaxError as exc:
        raise SandboxError(f"{exc.msg} (line {exc.lineno})", cause=exc) from exc

    namespace: Dict[str, Any] = {"__builtins__": safe_builtins()}
    exec(code, namespace)
    return namespace["extraction"]
