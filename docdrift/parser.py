"""Structure extraction: turn source files into :class:`CodeFile` models.

Each supported language is handled by a :class:`StructureExtractor`
implementation registered in an :class:`ExtractorRegistry`:

- :class:`PythonExtractor` uses the built-in ``ast`` module.
- :class:`TreeSitterExtractor` uses Tree-sitter grammars for TypeScript,
  TSX and JavaScript.

Extraction helpers are pure: every visitor returns a fresh
:class:`_Collected` for its subtree and callers concatenate the results.
"""

from __future__ import annotations

import ast
import dataclasses
import hashlib
import importlib
import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from .models import (
    ClassInfo,
    CodeFile,
    FunctionSignature,
    ImportedName,
    ImportInfo,
    InterfaceInfo,
    ParameterInfo,
    PropertyInfo,
    TypeInfo,
    Unsupported,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Language <-> file-extension mapping (extensible)
# ---------------------------------------------------------------------------
LANGUAGE_MAP: Dict[str, str] = {
    ".py": "python",
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".tsx": "tsx",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
}

SKIP_DIRS: Set[str] = {
    ".venv", "venv", "__pycache__", "node_modules", ".git",
    "site-packages", ".tox", ".pytest_cache", "build", "dist",
    ".mypy_cache", ".ruff_cache", "htmlcov", ".eggs",
    ".docdrift", ".next",
}
SKIP_DIR_SUFFIXES = (".egg-info",)

CodeFileResult = Union[CodeFile, Unsupported]


def is_skipped_dir(name: str) -> bool:
    return name in SKIP_DIRS or name.endswith(SKIP_DIR_SUFFIXES)


def detect_language(file_path: Path) -> Optional[str]:
    return LANGUAGE_MAP.get(file_path.suffix.lower())


def content_hash(raw: bytes) -> str:
    """SHA-256 hex digest of raw file bytes."""
    return hashlib.sha256(raw).hexdigest()


def scan_doc_comment(lines: Sequence[str], decl_index: int, markers: Tuple[str, ...]) -> Optional[str]:
    """Collect the comment block directly above line ``decl_index`` (0-based).

    Scans backwards while lines start with one of *markers* and stops at the
    first non-comment line.
    """
    collected: List[str] = []
    idx = decl_index - 1
    while idx >= 0:
        stripped = lines[idx].strip()
        if not stripped or not stripped.startswith(markers):
            break
        collected.append(stripped)
        idx -= 1
    if not collected:
        return None
    return "\n".join(reversed(collected))


@dataclass
class _Collected:
    """Entities found in one subtree."""

    functions: List[FunctionSignature] = field(default_factory=list)
    classes: List[ClassInfo] = field(default_factory=list)
    interfaces: List[InterfaceInfo] = field(default_factory=list)
    types: List[TypeInfo] = field(default_factory=list)
    imports: List[ImportInfo] = field(default_factory=list)
    exports: List[str] = field(default_factory=list)

    def __add__(self, other: "_Collected") -> "_Collected":
        return _Collected(
            functions=self.functions + other.functions,
            classes=self.classes + other.classes,
            interfaces=self.interfaces + other.interfaces,
            types=self.types + other.types,
            imports=self.imports + other.imports,
            exports=self.exports + other.exports,
        )


def _merge(parts: Iterable[_Collected]) -> _Collected:
    return sum(parts, _Collected())


# ===================================================================
# Abstract Extractor Interface
# ===================================================================

class StructureExtractor(ABC):
    """Base class for per-language structure extractors."""

    languages: Tuple[str, ...] = ()

    def supports_language(self, language: str) -> bool:
        return language in self.languages

    @abstractmethod
    def _collect(self, source: str, language: str) -> _Collected:
        """Parse *source* and return its entities. May raise on parse failure."""
        ...

    def extract(self, file_path: Path, language: Optional[str] = None, display_path: Optional[str] = None) -> CodeFileResult:
        """Extract a :class:`CodeFile` from *file_path*.

        Never raises for unreadable or unparsable input: unsupported files
        yield :class:`Unsupported`, parse failures yield an empty model.
        """
        language = language or detect_language(file_path)
        if language is None or not self.supports_language(language):
            return Unsupported(path=str(file_path), reason=f"unsupported language for {file_path.suffix or file_path.name}")

        try:
            raw = file_path.read_bytes()
            mtime = file_path.stat().st_mtime
        except OSError as exc:
            logger.warning("Cannot read %s: %s", file_path, exc)
            return Unsupported(path=str(file_path), reason=f"unreadable: {exc}")

        return self.extract_source(
            raw,
            language,
            display_path or str(file_path),
            last_modified=datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat(),
        )

    def extract_source(self, raw: bytes, language: str, path: str, last_modified: str = "") -> CodeFile:
        source = raw.decode("utf-8", errors="replace")
        try:
            collected = self._collect(source, language)
        except Exception as exc:
            logger.warning("Failed to parse %s (%s): %s", path, language, exc)
            collected = _Collected()

        complexity = sum(f.complexity for f in collected.functions)
        complexity += sum(m.complexity for c in collected.classes for m in c.methods)

        return CodeFile(
            path=path,
            language=language,
            functions=collected.functions,
            classes=collected.classes,
            interfaces=collected.interfaces,
            types=collected.types,
            imports=collected.imports,
            exports=collected.exports,
            content_hash=content_hash(raw),
            last_modified=last_modified,
            lines_of_code=len(source.split("\n")),
            complexity=complexity,
        )


# ===================================================================
# Python (ast)
# ===================================================================

_PY_BRANCH_NODES: Tuple[type, ...] = (
    ast.If, ast.IfExp, ast.For, ast.AsyncFor, ast.While, ast.ExceptHandler,
) + ((ast.match_case,) if hasattr(ast, "match_case") else ())


def _unparse(node: Optional[ast.AST]) -> Optional[str]:
    if node is None:
        return None
    return ast.unparse(node)


def _python_visibility(name: str) -> str:
    if name.startswith("__") and name.endswith("__"):
        return "public"
    if name.startswith("__"):
        return "private"
    if name.startswith("_"):
        return "protected"
    return "public"


def _python_all(tree: ast.Module) -> Optional[List[str]]:
    """Return the names listed in ``__all__``, or None when it is not defined."""
    names: Optional[List[str]] = None
    for stmt in tree.body:
        value: Optional[ast.AST] = None
        if isinstance(stmt, ast.Assign) and any(
            isinstance(t, ast.Name) and t.id == "__all__" for t in stmt.targets
        ):
            value = stmt.value
            names = []
        elif isinstance(stmt, ast.AugAssign) and isinstance(stmt.target, ast.Name) and stmt.target.id == "__all__":
            value = stmt.value
            names = names or []
        if isinstance(value, (ast.List, ast.Tuple)) and names is not None:
            names.extend(
                elt.value for elt in value.elts
                if isinstance(elt, ast.Constant) and isinstance(elt.value, str)
            )
    return names


def _ast_collect_calls(node: ast.AST) -> List[str]:
    names: List[str] = []

    class _CV(ast.NodeVisitor):
        def visit_Call(self, call_node: ast.Call) -> None:
            n = _ast_name_from_expr(call_node.func)
            if n and n not in names:
                names.append(n)
            self.generic_visit(call_node)

    _CV().visit(node)
    return names


def _ast_name_from_expr(expr: ast.AST) -> Optional[str]:
    if isinstance(expr, ast.Name):
        return expr.id
    if isinstance(expr, ast.Attribute):
        parts: List[str] = []
        current: ast.AST = expr
        while isinstance(current, ast.Attribute):
            parts.append(current.attr)
            current = current.value
        if isinstance(current, ast.Name):
            parts.append(current.id)
        return ".".join(reversed(parts)) if parts else None
    if isinstance(expr, ast.Call):
        return _ast_name_from_expr(expr.func)
    return None


def python_complexity(node: ast.AST) -> int:
    return 1 + sum(1 for sub in ast.walk(node) if isinstance(sub, _PY_BRANCH_NODES))


class PythonExtractor(StructureExtractor):
    """Extractor for Python sources built on the standard ``ast`` module.

    Public module-level names are exported unless ``__all__`` is defined, in
    which case only the names it lists are. Classes deriving from
    ``Protocol`` are reported as interfaces.
    """

    languages = ("python",)

    def _collect(self, source: str, language: str) -> _Collected:
        tree = ast.parse(source)
        lines = source.splitlines()
        all_names = _python_all(tree)

        def exported(name: str) -> bool:
            if all_names is not None:
                return name in all_names
            return not name.startswith("_")

        collected = _merge(self._visit_stmt(stmt, lines, exported) for stmt in tree.body)
        if all_names is not None:
            exports = list(all_names)
        else:
            exports = [
                name for name in self._top_level_names(collected)
                if not name.startswith("_")
            ]
        return dataclasses.replace(collected, exports=exports)

    @staticmethod
    def _top_level_names(collected: _Collected) -> List[str]:
        entities: List[Tuple[int, str]] = [(f.start_line, f.name) for f in collected.functions]
        entities += [(c.start_line, c.name) for c in collected.classes]
        entities += [(i.start_line, i.name) for i in collected.interfaces]
        entities += [(t.start_line, t.name) for t in collected.types]
        return [name for _, name in sorted(entities)]

    def _visit_stmt(self, stmt: ast.stmt, lines: List[str], exported: Any) -> _Collected:
        if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
            return _Collected(functions=[
                self._function(stmt, lines, is_exported=exported(stmt.name))
            ])
        if isinstance(stmt, ast.ClassDef):
            return self._class(stmt, lines, exported(stmt.name))
        if isinstance(stmt, (ast.Import, ast.ImportFrom)):
            return _Collected(imports=self._imports(stmt))
        if isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
            annotation = _unparse(stmt.annotation) or ""
            if annotation.split(".")[-1] == "TypeAlias" and stmt.value is not None:
                return _Collected(types=[self._type_alias(stmt, stmt.target.id, stmt.value, lines, exported)])
        type_alias = getattr(ast, "TypeAlias", None)
        if type_alias is not None and isinstance(stmt, type_alias):
            return _Collected(types=[self._type_alias(stmt, stmt.name.id, stmt.value, lines, exported)])
        return _Collected()

    # -- functions -------------------------------------------------------

    def _function(
        self,
        node: Union[ast.FunctionDef, ast.AsyncFunctionDef],
        lines: List[str],
        is_exported: bool,
        is_method: bool = False,
    ) -> FunctionSignature:
        return FunctionSignature(
            name=node.name,
            parameters=self._parameters(node.args, is_method),
            return_type=_unparse(node.returns),
            is_async=isinstance(node, ast.AsyncFunctionDef),
            is_exported=is_exported,
            is_public=_python_visibility(node.name) == "public",
            doc_comment=self._doc(node, lines),
            start_line=node.lineno,
            end_line=getattr(node, "end_lineno", node.lineno) or node.lineno,
            complexity=python_complexity(node),
            dependencies=_ast_collect_calls(node),
        )

    @staticmethod
    def _parameters(args: ast.arguments, is_method: bool) -> List[ParameterInfo]:
        positional = list(args.posonlyargs) + list(args.args)
        defaults: List[Optional[ast.expr]] = [None] * (len(positional) - len(args.defaults))
        defaults += list(args.defaults)

        params: List[ParameterInfo] = []
        for index, (arg, default) in enumerate(zip(positional, defaults)):
            if is_method and index == 0 and arg.arg in ("self", "cls"):
                continue
            params.append(ParameterInfo(
                name=arg.arg,
                type=_unparse(arg.annotation),
                optional=default is not None,
                default=_unparse(default),
            ))
        if args.vararg is not None:
            params.append(ParameterInfo(f"*{args.vararg.arg}", _unparse(args.vararg.annotation), True))
        for arg, default in zip(args.kwonlyargs, args.kw_defaults):
            params.append(ParameterInfo(
                name=arg.arg,
                type=_unparse(arg.annotation),
                optional=default is not None,
                default=_unparse(default),
            ))
        if args.kwarg is not None:
            params.append(ParameterInfo(f"**{args.kwarg.arg}", _unparse(args.kwarg.annotation), True))
        return params

    @staticmethod
    def _doc(node: ast.AST, lines: List[str]) -> Optional[str]:
        docstring = None
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            docstring = ast.get_docstring(node)
        if docstring:
            return docstring
        first_line = min(
            [node.lineno] + [d.lineno for d in getattr(node, "decorator_list", [])]
        )
        return scan_doc_comment(lines, first_line - 1, ("#",))

    # -- classes ---------------------------------------------------------

    def _class(self, node: ast.ClassDef, lines: List[str], is_exported: bool) -> _Collected:
        bases = [b for b in (_unparse(base) for base in node.bases) if b and b != "object"]
        methods = [
            self._function(stmt, lines, is_exported and _python_visibility(stmt.name) == "public", is_method=True)
            for stmt in node.body
            if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef))
        ]
        properties = self._class_properties(node)
        end_line = getattr(node, "end_lineno", node.lineno) or node.lineno

        protocol_bases = [b for b in bases if b.split(".")[-1].split("[")[0] == "Protocol"]
        if protocol_bases:
            return _Collected(interfaces=[InterfaceInfo(
                name=node.name,
                is_exported=is_exported,
                extends=[b for b in bases if b not in protocol_bases],
                properties=properties,
                methods=methods,
                doc_comment=self._doc(node, lines),
                start_line=node.lineno,
                end_line=end_line,
            )])

        return _Collected(classes=[ClassInfo(
            name=node.name,
            is_exported=is_exported,
            extends=bases[0] if bases else None,
            implements=bases[1:],
            methods=methods,
            properties=properties,
            doc_comment=self._doc(node, lines),
            start_line=node.lineno,
            end_line=end_line,
        )])

    @staticmethod
    def _class_properties(node: ast.ClassDef) -> List[PropertyInfo]:
        found: Dict[str, PropertyInfo] = {}
        for stmt in node.body:
            if isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
                annotation = _unparse(stmt.annotation) or ""
                name = stmt.target.id
                found.setdefault(name, PropertyInfo(
                    name=name,
                    type=annotation,
                    is_static="ClassVar" in annotation,
                    is_readonly="Final" in annotation,
                    visibility=_python_visibility(name),
                ))
            elif isinstance(stmt, ast.Assign):
                for target in stmt.targets:
                    if isinstance(target, ast.Name):
                        found.setdefault(target.id, PropertyInfo(
                            name=target.id,
                            is_static=True,
                            is_readonly=target.id.isupper(),
                            visibility=_python_visibility(target.id),
                        ))
            elif isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)) and stmt.name == "__init__":
                for sub in ast.walk(stmt):
                    target = None
                    annotation = None
                    if isinstance(sub, ast.Assign) and len(sub.targets) == 1:
                        target = sub.targets[0]
                    elif isinstance(sub, ast.AnnAssign):
                        target, annotation = sub.target, _unparse(sub.annotation)
                    if (
                        isinstance(target, ast.Attribute)
                        and isinstance(target.value, ast.Name)
                        and target.value.id == "self"
                    ):
                        found.setdefault(target.attr, PropertyInfo(
                            name=target.attr,
                            type=annotation,
                            visibility=_python_visibility(target.attr),
                        ))
        return list(found.values())

    # -- types / imports -------------------------------------------------

    def _type_alias(self, stmt: ast.stmt, name: str, value: ast.AST, lines: List[str], exported: Any) -> TypeInfo:
        return TypeInfo(
            name=name,
            is_exported=exported(name),
            definition=_unparse(value) or "",
            doc_comment=scan_doc_comment(lines, stmt.lineno - 1, ("#",)),
            start_line=stmt.lineno,
            end_line=getattr(stmt, "end_lineno", stmt.lineno) or stmt.lineno,
        )

    @staticmethod
    def _imports(stmt: Union[ast.Import, ast.ImportFrom]) -> List[ImportInfo]:
        if isinstance(stmt, ast.Import):
            return [
                ImportInfo(
                    source=alias.name,
                    names=[ImportedName(alias.name, alias.asname)],
                    start_line=stmt.lineno,
                )
                for alias in stmt.names
            ]
        source = "." * (stmt.level or 0) + (stmt.module or "")
        return [ImportInfo(
            source=source,
            names=[ImportedName(alias.name, alias.asname) for alias in stmt.names],
            start_line=stmt.lineno,
        )]


# ===================================================================
# TypeScript / JavaScript (Tree-sitter)
# ===================================================================

_TS_BRANCH_NODES: Set[str] = {
    "if_statement",
    "ternary_expression",
    "for_statement",
    "for_in_statement",
    "while_statement",
    "do_statement",
    "switch_case",
    "catch_clause",
}
_TS_COMMENT_MARKERS = ("/**", "/*", "*", "//")
_TS_FUNCTION_VALUES = {"arrow_function", "function_expression", "function", "generator_function"}


def _text(node: Any) -> str:
    if node is None:
        return ""
    return node.text.decode("utf-8")


def _type_text(annotation: Any) -> Optional[str]:
    """Strip the leading ``:`` from a type annotation node."""
    if annotation is None:
        return None
    text = _text(annotation).strip()
    if text.startswith(":"):
        text = text[1:].strip()
    return text or None


def _has_token(node: Any, token: str) -> bool:
    return any(child.type == token for child in node.children)


def ts_complexity(node: Any) -> int:
    count = 1
    stack = list(node.children)
    while stack:
        current = stack.pop()
        if current.type in _TS_BRANCH_NODES:
            count += 1
        stack.extend(current.children)
    return count


def _ts_calls(node: Any) -> List[str]:
    names: List[str] = []
    stack = [node]
    while stack:
        current = stack.pop()
        if current.type == "call_expression":
            func = current.child_by_field_name("function")
            if func is not None and func.type in ("identifier", "member_expression"):
                name = _text(func)
                if name not in names:
                    names.append(name)
        stack.extend(reversed(current.children))
    return names


def _ts_visibility(node: Any, name: str) -> str:
    for child in node.children:
        if child.type == "accessibility_modifier":
            return _text(child).strip()
    if name.startswith("#") or name.startswith("_"):
        return "private"
    return "public"


class TreeSitterExtractor(StructureExtractor):
    """Extractor for TypeScript, TSX and JavaScript built on Tree-sitter.

    Grammars come from the per-language ``tree-sitter-*`` packages. A
    grammar that fails to load simply leaves its language unsupported.
    By default a tree containing syntax errors is treated as a parse
    failure; pass ``tolerant=True`` to keep whatever could be recovered.
    """

    # language -> (module, factory function)
    _GRAMMAR_MODULES: Dict[str, Tuple[str, str]] = {
        "typescript": ("tree_sitter_typescript", "language_typescript"),
        "tsx": ("tree_sitter_typescript", "language_tsx"),
        "javascript": ("tree_sitter_javascript", "language"),
    }

    def __init__(self, languages: Optional[Sequence[str]] = None, tolerant: bool = False) -> None:
        self.tolerant = tolerant
        self._languages: Dict[str, Any] = {}
        self._init_languages(languages or list(self._GRAMMAR_MODULES))
        self.languages = tuple(self._languages)

    def _init_languages(self, requested: Sequence[str]) -> None:
        try:
            from tree_sitter import Language  # type: ignore[import-untyped]
        except ImportError:
            logger.warning(
                "tree-sitter is not installed -- TypeScript/JavaScript extraction unavailable. "
                "Install with: pip install tree-sitter tree-sitter-typescript tree-sitter-javascript"
            )
            return

        for lang in requested:
            spec = self._GRAMMAR_MODULES.get(lang)
            if spec is None:
                logger.warning("No grammar module mapped for language '%s'", lang)
                continue
            mod_name, factory = spec
            try:
                mod = importlib.import_module(mod_name)
                self._languages[lang] = Language(getattr(mod, factory)())
                logger.debug("Loaded tree-sitter grammar for %s", lang)
            except ImportError:
                logger.warning(
                    "Grammar package '%s' not installed for language '%s'. Install with: pip install %s",
                    mod_name, lang, mod_name.replace("_", "-"),
                )
            except Exception as exc:
                logger.warning("Could not load tree-sitter grammar for %s: %s", lang, exc)

    def _collect(self, source: str, language: str) -> _Collected:
        from tree_sitter import Parser as TSParser  # type: ignore[import-untyped]

        # A fresh parser per call keeps extraction safe across worker threads.
        parser = TSParser(self._languages[language])
        tree = parser.parse(source.encode("utf-8"))
        root = tree.root_node
        if root.has_error and not self.tolerant:
            raise SyntaxError("tree-sitter reported syntax errors")

        lines = source.splitlines()
        collected = _merge(self._visit_top_level(child, lines) for child in root.children)
        return self._apply_export_clauses(collected)

    @staticmethod
    def _apply_export_clauses(collected: _Collected) -> _Collected:
        """Mark entities named in ``export { a, b }`` clauses as exported."""
        local = set(collected.exports)
        if not local:
            return collected

        def mark(entity: Any) -> Any:
            if entity.name in local and not entity.is_exported:
                return dataclasses.replace(entity, is_exported=True)
            return entity

        return dataclasses.replace(
            collected,
            functions=[mark(f) for f in collected.functions],
            classes=[mark(c) for c in collected.classes],
            interfaces=[mark(i) for i in collected.interfaces],
            types=[mark(t) for t in collected.types],
        )

    # -- top level -------------------------------------------------------

    def _visit_top_level(self, node: Any, lines: List[str]) -> _Collected:
        if node.type == "export_statement":
            return self._visit_export(node, lines)
        if node.type == "import_statement":
            return _Collected(imports=[self._import(node)])
        return self._visit_declaration(node, node, lines, exported=False)

    def _visit_export(self, node: Any, lines: List[str]) -> _Collected:
        declaration = node.child_by_field_name("declaration")
        if declaration is not None:
            collected = self._visit_declaration(declaration, node, lines, exported=True)
            return dataclasses.replace(collected, exports=collected.exports + self._declared_names(collected))

        exports: List[str] = []
        for child in node.named_children:
            if child.type == "export_clause":
                for spec in child.named_children:
                    if spec.type != "export_specifier":
                        continue
                    alias = spec.child_by_field_name("alias")
                    exports.append(_text(alias or spec.child_by_field_name("name")))
        if node.child_by_field_name("source") is not None:
            # Re-exports do not mark local entities; record the names only.
            return _Collected(exports=[f"{name}" for name in exports])
        value = node.child_by_field_name("value")
        if value is not None and _has_token(node, "default"):
            exports.append("default")
        return _Collected(exports=exports)

    @staticmethod
    def _declared_names(collected: _Collected) -> List[str]:
        return (
            [f.name for f in collected.functions]
            + [c.name for c in collected.classes]
            + [i.name for i in collected.interfaces]
            + [t.name for t in collected.types]
        )

    def _visit_declaration(self, node: Any, outer: Any, lines: List[str], exported: bool) -> _Collected:
        kind = node.type
        if kind in ("function_declaration", "generator_function_declaration"):
            return _Collected(functions=[self._function(node, outer, lines, exported)])
        if kind in ("class_declaration", "abstract_class_declaration", "class"):
            return _Collected(classes=[self._class(node, outer, lines, exported)])
        if kind == "interface_declaration":
            return _Collected(interfaces=[self._interface(node, outer, lines, exported)])
        if kind == "type_alias_declaration":
            return _Collected(types=[self._type_alias(node, outer, lines, exported)])
        if kind in ("lexical_declaration", "variable_declaration") and exported:
            return _Collected(functions=self._function_bindings(node, outer, lines))
        return _Collected()

    # -- functions -------------------------------------------------------

    def _function(
        self,
        node: Any,
        outer: Any,
        lines: List[str],
        exported: bool,
        name: Optional[str] = None,
        is_public: bool = True,
    ) -> FunctionSignature:
        params_node = node.child_by_field_name("parameters")
        if params_node is None:
            params_node = node.child_by_field_name("parameter")
        body = node.child_by_field_name("body")
        return FunctionSignature(
            name=name or _text(node.child_by_field_name("name")),
            parameters=self._parameters(params_node),
            return_type=_type_text(node.child_by_field_name("return_type")),
            is_async=_has_token(node, "async"),
            is_exported=exported,
            is_public=is_public,
            doc_comment=scan_doc_comment(lines, outer.start_point[0], _TS_COMMENT_MARKERS),
            start_line=outer.start_point[0] + 1,
            end_line=outer.end_point[0] + 1,
            complexity=ts_complexity(node),
            dependencies=_ts_calls(body) if body is not None else [],
        )

    def _function_bindings(self, node: Any, outer: Any, lines: List[str]) -> List[FunctionSignature]:
        functions: List[FunctionSignature] = []
        for declarator in node.named_children:
            if declarator.type != "variable_declarator":
                continue
            value = declarator.child_by_field_name("value")
            if value is None or value.type not in _TS_FUNCTION_VALUES:
                continue
            signature = self._function(
                value, outer, lines, exported=True,
                name=_text(declarator.child_by_field_name("name")),
            )
            if signature.return_type is None:
                signature = dataclasses.replace(
                    signature, return_type=self._binding_return_type(declarator),
                )
            functions.append(signature)
        return functions

    @staticmethod
    def _binding_return_type(declarator: Any) -> Optional[str]:
        """Return type from an annotated binding such as ``const f: () => T``."""
        annotation = _type_text(declarator.child_by_field_name("type"))
        if annotation and "=>" in annotation:
            return annotation.rsplit("=>", 1)[1].strip()
        return None

    @staticmethod
    def _parameters(params_node: Any) -> List[ParameterInfo]:
        if params_node is None:
            return []
        if params_node.type == "identifier":
            return [ParameterInfo(name=_text(params_node))]

        params: List[ParameterInfo] = []
        for child in params_node.named_children:
            kind = child.type
            if kind == "comment":
                continue
            if kind in ("required_parameter", "optional_parameter"):
                pattern = child.child_by_field_name("pattern")
                value = child.child_by_field_name("value")
                params.append(ParameterInfo(
                    name=_text(pattern),
                    type=_type_text(child.child_by_field_name("type")),
                    optional=kind == "optional_parameter" or value is not None,
                    default=_text(value) if value is not None else None,
                ))
            elif kind == "assignment_pattern":
                params.append(ParameterInfo(
                    name=_text(child.child_by_field_name("left")),
                    optional=True,
                    default=_text(child.child_by_field_name("right")),
                ))
            elif kind == "rest_pattern":
                params.append(ParameterInfo(name=_text(child), optional=True))
            else:
                params.append(ParameterInfo(name=_text(child)))
        return params

    # -- classes / interfaces / types -------------------------------------

    def _class(self, node: Any, outer: Any, lines: List[str], exported: bool) -> ClassInfo:
        extends: Optional[str] = None
        implements: List[str] = []
        for child in node.children:
            if child.type != "class_heritage":
                continue
            clauses = [c for c in child.named_children if c.type in ("extends_clause", "implements_clause")]
            if not clauses and child.named_children:
                extends = _text(child.named_children[0])
            for clause in clauses:
                if clause.type == "extends_clause":
                    value = clause.child_by_field_name("value")
                    if value is None and clause.named_children:
                        value = clause.named_children[0]
                    extends = _text(value) or None
                else:
                    implements.extend(_text(t) for t in clause.named_children if t.type != "comment")

        methods: List[FunctionSignature] = []
        properties: List[PropertyInfo] = []
        body = node.child_by_field_name("body")
        for member in (body.named_children if body is not None else []):
            if member.type in ("method_definition", "method_signature", "abstract_method_signature"):
                name = _text(member.child_by_field_name("name"))
                visibility = _ts_visibility(member, name)
                methods.append(self._function(
                    member, member, lines,
                    exported=exported and visibility == "public",
                    name=name,
                    is_public=visibility == "public",
                ))
            elif member.type in ("public_field_definition", "field_definition"):
                name_node = member.child_by_field_name("name") or member.child_by_field_name("property")
                name = _text(name_node)
                properties.append(PropertyInfo(
                    name=name,
                    type=_type_text(member.child_by_field_name("type")),
                    is_static=_has_token(member, "static"),
                    is_readonly=_has_token(member, "readonly"),
                    visibility=_ts_visibility(member, name),
                ))

        return ClassInfo(
            name=_text(node.child_by_field_name("name")),
            is_exported=exported,
            extends=extends,
            implements=implements,
            methods=methods,
            properties=properties,
            doc_comment=scan_doc_comment(lines, outer.start_point[0], _TS_COMMENT_MARKERS),
            start_line=outer.start_point[0] + 1,
            end_line=outer.end_point[0] + 1,
        )

    def _interface(self, node: Any, outer: Any, lines: List[str], exported: bool) -> InterfaceInfo:
        extends: List[str] = []
        for child in node.named_children:
            if child.type in ("extends_type_clause", "extends_clause"):
                extends.extend(_text(t) for t in child.named_children if t.type != "comment")

        methods: List[FunctionSignature] = []
        properties: List[PropertyInfo] = []
        body = node.child_by_field_name("body")
        for member in (body.named_children if body is not None else []):
            if member.type == "method_signature":
                methods.append(self._function(
                    member, member, lines, exported=exported,
                    name=_text(member.child_by_field_name("name")),
                ))
            elif member.type == "property_signature":
                name = _text(member.child_by_field_name("name"))
                properties.append(PropertyInfo(
                    name=name,
                    type=_type_text(member.child_by_field_name("type")),
                    is_readonly=_has_token(member, "readonly"),
                    visibility="public",
                ))

        return InterfaceInfo(
            name=_text(node.child_by_field_name("name")),
            is_exported=exported,
            extends=extends,
            properties=properties,
            methods=methods,
            doc_comment=scan_doc_comment(lines, outer.start_point[0], _TS_COMMENT_MARKERS),
            start_line=outer.start_point[0] + 1,
            end_line=outer.end_point[0] + 1,
        )

    @staticmethod
    def _type_alias(node: Any, outer: Any, lines: List[str], exported: bool) -> TypeInfo:
        return TypeInfo(
            name=_text(node.child_by_field_name("name")),
            is_exported=exported,
            definition=_text(node.child_by_field_name("value")),
            doc_comment=scan_doc_comment(lines, outer.start_point[0], _TS_COMMENT_MARKERS),
            start_line=outer.start_point[0] + 1,
            end_line=outer.end_point[0] + 1,
        )

    # -- imports ---------------------------------------------------------

    @staticmethod
    def _import(node: Any) -> ImportInfo:
        source = _text(node.child_by_field_name("source")).strip("'\"`")
        names: List[ImportedName] = []
        is_default = False
        for child in node.named_children:
            if child.type != "import_clause":
                continue
            for part in child.named_children:
                if part.type == "identifier":
                    names.append(ImportedName(_text(part)))
                    is_default = True
                elif part.type == "named_imports":
                    for spec in part.named_children:
                        if spec.type != "import_specifier":
                            continue
                        alias = spec.child_by_field_name("alias")
                        names.append(ImportedName(
                            _text(spec.child_by_field_name("name")),
                            _text(alias) if alias is not None else None,
                        ))
                elif part.type == "namespace_import":
                    idents = [c for c in part.named_children if c.type == "identifier"]
                    names.append(ImportedName("*", _text(idents[0]) if idents else None))
        return ImportInfo(
            source=source,
            names=names,
            is_default=is_default,
            start_line=node.start_point[0] + 1,
        )


# ===================================================================
# Registry
# ===================================================================

class ExtractorRegistry:
    """Maps languages to extractors and runs project-wide scans.

    Adding a language means registering another :class:`StructureExtractor`;
    nothing downstream of :class:`CodeFile` changes.
    """

    def __init__(self, extractors: Optional[Iterable[StructureExtractor]] = None) -> None:
        self._by_language: Dict[str, StructureExtractor] = {}
        for extractor in (extractors if extractors is not None else default_extractors()):
            self.register(extractor)

    def register(self, extractor: StructureExtractor) -> None:
        for language in extractor.languages:
            self._by_language[language] = extractor

    def languages(self) -> List[str]:
        return sorted(self._by_language)

    def supported_extensions(self) -> List[str]:
        return sorted(ext for ext, lang in LANGUAGE_MAP.items() if lang in self._by_language)

    def extract(
        self,
        file_path: Path,
        language: Optional[str] = None,
        project_root: Optional[Path] = None,
    ) -> CodeFileResult:
        language = language or detect_language(file_path)
        extractor = self._by_language.get(language or "")
        if extractor is None:
            return Unsupported(
                path=str(file_path),
                reason=f"no extractor available for language '{language or file_path.suffix}'",
            )
        display = None
        if project_root is not None:
            display = file_path.relative_to(project_root).as_posix()
        return extractor.extract(file_path, language, display_path=display)

    def iter_source_files(self, project_root: Path) -> List[Path]:
        extensions = set(self.supported_extensions())
        files = [
            path for path in project_root.rglob("*")
            if path.is_file()
            and path.suffix.lower() in extensions
            and not any(is_skipped_dir(part) for part in path.relative_to(project_root).parts[:-1])
        ]
        return sorted(files)

    def scan_project(
        self,
        project_root: Path,
        workers: int = 1,
        before_each: Optional[Callable[[], None]] = None,
    ) -> Dict[str, CodeFile]:
        """Extract every supported file under *project_root*.

        Keys are POSIX paths relative to the root. ``workers > 1`` runs
        extraction on a thread pool; the result does not depend on it.
        *before_each* is called before every file and may raise to stop the scan.
        """
        files = self.iter_source_files(project_root)

        def run(path: Path) -> CodeFileResult:
            if before_each is not None:
                before_each()
            return self.extract(path, project_root=project_root)

        if workers > 1 and len(files) > 1:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                results = list(pool.map(run, files))
        else:
            results = [run(path) for path in files]

        scanned: Dict[str, CodeFile] = {}
        for result in results:
            if isinstance(result, CodeFile):
                scanned[result.path] = result
            else:
                logger.debug("Skipping %s: %s", result.path, result.reason)
        return scanned


def default_extractors() -> List[StructureExtractor]:
    return [PythonExtractor(), TreeSitterExtractor()]


@lru_cache(maxsize=1)
def default_registry() -> ExtractorRegistry:
    return ExtractorRegistry()


def extract(file_path: Path, language: Optional[str] = None) -> CodeFileResult:
    """Extract one file with the default extractors."""
    return default_registry().extract(Path(file_path), language)
