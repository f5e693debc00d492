"""DiffEngine for previewing and applying documentation suggestions."""

from __future__ import annotations

import difflib
import logging
import re
from pathlib import Path
from typing import Iterable, Optional

from .errors import SuggestionApplyError
from .models import DriftSuggestion

logger = logging.getLogger(__name__)


class DiffEngine:
    """Renders suggestions as unified diffs and writes them into doc files."""

    def __init__(self, docs_root: Optional[Path] = None):
        """Initialize DiffEngine.

        Args:
            docs_root: Base directory for relative ``doc_file`` paths.
        """
        self.docs_root = Path(docs_root) if docs_root else None

    def create_diff(self, original: str, modified: str, filename: str = "file") -> str:
        """Create unified diff between two versions.

        Args:
            original: Original content
            modified: Modified content
            filename: Name of file for diff header

        Returns:
            Unified diff string
        """
        original_lines = original.splitlines(keepends=True)
        modified_lines = modified.splitlines(keepends=True)

        diff = difflib.unified_diff(
            original_lines,
            modified_lines,
            fromfile=f"a/{filename}",
            tofile=f"b/{filename}",
            lineterm=""
        )

        return "".join(line if line.endswith("\n") else line + "\n" for line in diff)

    def render_suggestion(self, suggestion: DriftSuggestion) -> str:
        return self.create_diff(
            suggestion.current_content,
            suggestion.suggested_content,
            suggestion.doc_file,
        )

    def preview(self, suggestions: Iterable[DriftSuggestion]) -> str:
        """Generate a preview of every suggestion.

        Returns:
            Formatted preview string
        """
        lines = []
        for suggestion in suggestions:
            lines.append(f"{'=' * 60}")
            lines.append(f"[{suggestion.doc_file}] {suggestion.section} (confidence {suggestion.confidence:.0%})")
            lines.append(f"{'=' * 60}")
            lines.append(suggestion.reasoning)
            lines.append("")
            lines.append(self.render_suggestion(suggestion).rstrip("\n"))
            lines.append("")
        return "\n".join(lines)

    def resolve(self, doc_file: str) -> Path:
        path = Path(doc_file)
        if path.is_absolute() or self.docs_root is None:
            return path
        return self.docs_root / path

    def apply_suggestion(self, suggestion: DriftSuggestion, dry_run: bool = False) -> Path:
        """Replace the section body in its file with the suggested content.

        The section is located by its heading and must still hold the content
        the suggestion was computed from.

        Raises:
            SuggestionApplyError: section missing, content changed, or I/O failure.
        """
        path = self.resolve(suggestion.doc_file)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise SuggestionApplyError(f"Cannot read {path}: {exc}") from exc

        heading = re.compile(rf"^#{{1,6}}[ \t]+{re.escape(suggestion.section)}[ \t]*#*[ \t]*$", re.MULTILINE)
        match = heading.search(text)
        if match is None:
            raise SuggestionApplyError(f"Section '{suggestion.section}' not found in {suggestion.doc_file}")

        start = match.end() + 1 if text[match.end():match.end() + 1] == "\n" else match.end()
        if not text.startswith(suggestion.current_content, start):
            raise SuggestionApplyError(
                f"Section '{suggestion.section}' in {suggestion.doc_file} changed since it was analysed"
            )

        updated = text[:start] + suggestion.suggested_content + text[start + len(suggestion.current_content):]
        if dry_run:
            return path
        try:
            path.write_text(updated, encoding="utf-8")
        except OSError as exc:
            raise SuggestionApplyError(f"Cannot write {path}: {exc}") from exc
        logger.debug("Applied suggestion to %s#%s", suggestion.doc_file, suggestion.section)
        return path
