"""Markdown documentation extraction.

Splits Markdown files into heading-delimited sections and records which
code symbols and source files each section mentions. References are
textual only; nothing is resolved against the code.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .freshness import read_freshness, split_frontmatter
from .models import CodeExample, DocumentationFile, DocumentationSection

logger = logging.getLogger(__name__)

DOC_EXTENSIONS = {".md", ".mdx", ".markdown"}
SOURCE_EXTENSIONS = ("ts", "tsx", "js", "jsx", "mjs", "cjs", "py", "go", "rs", "java", "rb")

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_FENCE_RE = re.compile(r"^\s*(```|~~~)\s*([\w+-]*)")
_HEADING_FUNC_RE = re.compile(r"^(?:`)?(?:async\s+|def\s+|function\s+)?([a-z_][A-Za-z0-9_]*)\s*\(")
_HEADING_TYPE_RE = re.compile(r"^(?:`)?(?:interface|type|protocol)\s+([A-Z][A-Za-z0-9_]*)", re.IGNORECASE)
_HEADING_CLASS_RE = re.compile(r"^(?:`)?(?:class\s+)?([A-Z][A-Za-z0-9_]*)")
_INLINE_SYMBOL_RE = re.compile(r"`([A-Za-z_][A-Za-z0-9_]*)(?:\(\))?`")
_EXT_GROUP = "|".join(SOURCE_EXTENSIONS)
_LINK_RE = re.compile(rf"\[[^\]]*\]\(([^)\s]+?\.(?:{_EXT_GROUP}))(?:#[^)]*)?\)")
_INLINE_FILE_RE = re.compile(rf"`([^`\s]+\.(?:{_EXT_GROUP}))`")
_CODE_CALL_RE = re.compile(r"\b([a-z_][A-Za-z0-9_]*)\s*\(")
_CODE_TYPE_RE = re.compile(r"\b([A-Z][A-Za-z0-9_]*)\b")

_CATEGORY_HINTS: List[Tuple[str, Tuple[str, ...]]] = [
    ("tutorial", ("tutorial", "tutorials", "getting-started")),
    ("how-to", ("how-to", "howto", "guides", "guide")),
    ("reference", ("reference", "api")),
    ("explanation", ("explanation", "concepts", "architecture")),
]


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _dedupe(items: List[str]) -> List[str]:
    return list(dict.fromkeys(items))


def guess_category(path: str) -> Optional[str]:
    parts = [p.lower() for p in Path(path).parts]
    for category, hints in _CATEGORY_HINTS:
        if any(part in hints or Path(part).stem in hints for part in parts):
            return category
    return None


def symbols_in_code(code: str) -> List[str]:
    """Function calls and capitalised identifiers in a code example."""
    symbols = [m.group(1) for m in _CODE_CALL_RE.finditer(code)]
    symbols += [m.group(1) for m in _CODE_TYPE_RE.finditer(code)]
    return _dedupe(symbols)


def heading_references(title: str) -> Tuple[List[str], List[str], List[str]]:
    """(functions, classes, types) named by a heading."""
    func = _HEADING_FUNC_RE.match(title)
    if func:
        return [func.group(1)], [], []
    type_match = _HEADING_TYPE_RE.match(title)
    if type_match:
        return [], [], [type_match.group(1)]
    cls = _HEADING_CLASS_RE.match(title)
    if cls:
        return [], [cls.group(1)], []
    return [], [], []


class _SectionBuilder:
    def __init__(self, title: str, start_line: int) -> None:
        self.title = title
        self.start_line = start_line
        self.lines: List[str] = []
        self.functions, self.classes, self.types = heading_references(title)
        self.examples: List[CodeExample] = []

    def add_inline_symbols(self, line: str) -> None:
        for match in _INLINE_SYMBOL_RE.finditer(line):
            symbol = match.group(1)
            if symbol[0].isupper():
                self.classes.append(symbol)
            else:
                self.functions.append(symbol)


class MarkdownDocExtractor:
    """Default documentation extractor for Markdown trees.

    Args:
        project_root: Code paths found in links are made relative to this
            root so they line up with :class:`CodeFile` paths.
    """

    def __init__(self, project_root: Optional[Path] = None) -> None:
        self.project_root = Path(project_root).resolve() if project_root else None

    def extract(self, docs_path: Path) -> Dict[str, DocumentationFile]:
        docs_path = Path(docs_path)
        if docs_path.is_file():
            files = [docs_path]
        elif docs_path.is_dir():
            files = sorted(
                p for p in docs_path.rglob("*")
                if p.is_file() and p.suffix.lower() in DOC_EXTENSIONS
                and "node_modules" not in p.parts
            )
        else:
            logger.warning("Documentation path %s does not exist", docs_path)
            return {}

        docs: Dict[str, DocumentationFile] = {}
        for path in files:
            doc = self.extract_file(path)
            if doc is not None:
                docs[doc.file_path] = doc
        return docs

    def doc_key(self, path: Path) -> str:
        resolved = path.resolve()
        if self.project_root is not None:
            try:
                return resolved.relative_to(self.project_root).as_posix()
            except ValueError:
                pass
        return path.as_posix()

    def extract_file(self, path: Path) -> Optional[DocumentationFile]:
        try:
            text = path.read_text(encoding="utf-8")
            mtime = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc).isoformat()
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Failed to analyze documentation %s: %s", path, exc)
            return None

        freshness = read_freshness(text)
        last_updated = str(freshness.get("last_updated") or mtime)
        key = self.doc_key(path)
        sections = self.extract_sections(text, key, last_updated)

        return DocumentationFile(
            file_path=key,
            content_hash=_sha256(text),
            referenced_code=self.code_references(text, path),
            last_updated=last_updated,
            sections=sections,
        )

    def extract_sections(self, text: str, file_path: str, last_updated: str = "") -> List[DocumentationSection]:
        _, body, offset = split_frontmatter(text)
        lines = body.split("\n")
        category = guess_category(file_path)
        sections: List[DocumentationSection] = []
        current: Optional[_SectionBuilder] = None
        fence: Optional[Tuple[str, str, List[str]]] = None

        def finish(builder: _SectionBuilder, end_index: int) -> None:
            content = "\n".join(builder.lines)
            sections.append(DocumentationSection(
                file_path=file_path,
                section_title=builder.title,
                content=content,
                content_hash=_sha256(content),
                referenced_code_files=self.code_references(content, None),
                referenced_functions=_dedupe(builder.functions),
                referenced_classes=_dedupe(builder.classes),
                referenced_types=_dedupe(builder.types),
                category=category,
                last_updated=last_updated,
                has_code_examples=bool(builder.examples),
                code_examples=builder.examples,
                start_line=builder.start_line + offset + 1,
                end_line=end_index + offset + 1,
            ))

        for index, line in enumerate(lines):
            if fence is not None:
                marker, language, code = fence
                if current is not None:
                    current.lines.append(line)
                if line.strip().startswith(marker):
                    if current is not None:
                        source = "\n".join(code)
                        current.examples.append(CodeExample(
                            language=language or "text",
                            code=source,
                            referenced_symbols=symbols_in_code(source),
                        ))
                    fence = None
                else:
                    code.append(line)
                continue

            fence_match = _FENCE_RE.match(line)
            if fence_match:
                fence = (fence_match.group(1), fence_match.group(2), [])
                if current is not None:
                    current.lines.append(line)
                continue

            heading = _HEADING_RE.match(line)
            if heading:
                if current is not None:
                    finish(current, index - 1)
                current = _SectionBuilder(heading.group(2).strip(), index)
                continue

            if current is not None:
                current.lines.append(line)
                current.add_inline_symbols(line)

        if current is not None:
            finish(current, len(lines) - 1)
        return sections

    def code_references(self, text: str, doc_path: Optional[Path]) -> List[str]:
        """Source files named by links or inline code, normalised to project paths."""
        refs: List[str] = []
        for match in _LINK_RE.finditer(text):
            refs.append(self._normalise(match.group(1), doc_path))
        for match in _INLINE_FILE_RE.finditer(text):
            refs.append(self._normalise(match.group(1), None))
        return _dedupe(refs)

    def _normalise(self, ref: str, doc_path: Optional[Path]) -> str:
        if "://" in ref:
            return ref
        if doc_path is not None and self.project_root is not None and not ref.startswith("/"):
            candidate = Path(os.path.normpath(doc_path.resolve().parent / ref))
            try:
                return candidate.relative_to(self.project_root).as_posix()
            except ValueError:
                pass
        return ref[2:] if ref.startswith("./") else ref.lstrip("/")
