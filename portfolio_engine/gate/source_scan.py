"""
Static Source Scans
===================

AST checks over the package source:

- layer imports: every intra-package import must target a layer the
  importing layer is allowed to use
- single ranking surface: outside decide/ranking.py nothing sorts action
  collections, sorts by rank_score, or defines a rank_* / sort_action*
  function

Both scans return violation strings; an empty list is a pass.
"""

from __future__ import annotations
from dataclasses import dataclass
import ast
from pathlib import Path
from typing import Dict, FrozenSet, Iterator, List, Optional, Tuple


PACKAGE_ROOT = Path(__file__).resolve().parent.parent

_BASE = frozenset({"contracts"})

ALLOWED_IMPORTS: Dict[str, FrozenSet[str]] = {
    "contracts": _BASE,
    "raw": _BASE | {"raw"},
    "derive": _BASE | {"raw", "derive"},
    "predict": _BASE | {"raw", "derive", "predict"},
    "decide": _BASE | {"raw", "derive", "predict", "decide"},
    "runtime": _BASE | {"raw", "derive", "predict", "decide", "runtime"},
    "gate": _BASE | {"raw", "derive", "gate"},
}

RANKING_MODULE = "decide/ranking.py"
RANKING_NAME_PREFIXES: Tuple[str, ...] = ("rank_", "sort_action")


@dataclass(frozen=True)
class SourceFile:
    path: Path
    relative: str
    layer: Optional[str]
    tree: ast.Module

    @property
    def package_parts(self) -> List[str]:
        parts = self.relative[:-len(".py")].split("/")
        return parts[:-1]


def iter_sources(package_root: Path = PACKAGE_ROOT) -> Iterator[SourceFile]:
    """Parsed .py files under the package, in path order."""
    package_root = Path(package_root)
    for path in sorted(package_root.rglob("*.py")):
        if "__pycache__" in path.parts:
            continue
        relative = path.relative_to(package_root).as_posix()
        top = relative.split("/")[0]
        layer = top if "/" in relative else None
        tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
        yield SourceFile(path=path, relative=relative, layer=layer, tree=tree)


# =============================================================================
# LAYER IMPORTS
# =============================================================================

def _import_targets(source: SourceFile, package_name: str) -> Iterator[Tuple[int, str]]:
    """(line, package-relative dotted module) for every intra-package import."""
    for node in ast.walk(source.tree):
        if isinstance(node, ast.ImportFrom):
            if node.level:
                base = source.package_parts
                if node.level > 1:
                    base = base[:len(base) - (node.level - 1)]
                module = ".".join(base + (node.module.split(".") if node.module else []))
                if not module and node.names:
                    module = node.names[0].name
                yield node.lineno, module
            elif node.module and (node.module == package_name or node.module.startswith(package_name + ".")):
                yield node.lineno, node.module[len(package_name) + 1:]
        elif isinstance(node, ast.Import):
            for alias in node.names:
                if alias.name.startswith(package_name + "."):
                    yield node.lineno, alias.name[len(package_name) + 1:]


def scan_layer_imports(
    package_root: Path = PACKAGE_ROOT,
    allowed: Optional[Dict[str, FrozenSet[str]]] = None,
) -> List[str]:
    """
    Imports that cross a layer boundary.

    Files directly under the package root are the public surface and
    are not checked. A subpackage missing from `allowed` may only
    import contracts and itself.
    """
    package_root = Path(package_root)
    allowed = allowed or ALLOWED_IMPORTS
    package_name = package_root.name
    violations: List[str] = []
    for source in iter_sources(package_root):
        if source.layer is None:
            continue
        permitted = allowed.get(source.layer, _BASE | {source.layer})
        for line, module in _import_targets(source, package_name):
            target = module.split(".")[0] if module else ""
            if target not in permitted:
                violations.append(
                    f"{source.relative}:{line}: layer '{source.layer}' imports "
                    f"'{module or package_name}' (allowed: {', '.join(sorted(permitted))})"
                )
    return violations


# =============================================================================
# SINGLE RANKING SURFACE
# =============================================================================

def _names_in(node: ast.AST) -> Iterator[str]:
    for child in ast.walk(node):
        if isinstance(child, ast.Name):
            yield child.id
        elif isinstance(child, ast.Attribute):
            yield child.attr
        elif isinstance(child, ast.Constant) and isinstance(child.value, str):
            yield child.value


def _mentions_actions(node: ast.AST) -> bool:
    return any("action" in name.lower() for name in _names_in(node))


def _keyed_on_rank_score(call: ast.Call) -> bool:
    for keyword in call.keywords:
        if keyword.arg == "key" and any(n == "rank_score" for n in _names_in(keyword.value)):
            return True
    return False


def _sort_violation(call: ast.Call) -> Optional[str]:
    func = call.func
    if isinstance(func, ast.Name) and func.id == "sorted":
        if call.args and _mentions_actions(call.args[0]):
            return "sorted() over an actions collection"
        if _keyed_on_rank_score(call):
            return "sorted() keyed on rank_score"
    elif isinstance(func, ast.Attribute) and func.attr == "sort":
        if _mentions_actions(func.value):
            return ".sort() on an actions collection"
        if _keyed_on_rank_score(call):
            return ".sort() keyed on rank_score"
    return None


def scan_single_ranking_surface(
    package_root: Path = PACKAGE_ROOT,
    ranking_module: str = RANKING_MODULE,
) -> List[str]:
    """Sorting or ranking of actions anywhere but the ranking module."""
    violations: List[str] = []
    for source in iter_sources(package_root):
        if source.relative == ranking_module:
            continue
        for node in ast.walk(source.tree):
            if isinstance(node, ast.Call):
                problem = _sort_violation(node)
                if problem:
                    violations.append(f"{source.relative}:{node.lineno}: {problem}")
            elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                if node.name.startswith(RANKING_NAME_PREFIXES):
                    violations.append(
                        f"{source.relative}:{node.lineno}: ranking function '{node.name}' "
                        f"defined outside {ranking_module}"
                    )
    return violations

