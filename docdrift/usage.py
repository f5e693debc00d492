"""Derive usage counts for priority scoring from a structural snapshot."""

from __future__ import annotations

from collections import Counter
from typing import Dict, Optional, Set

from .models import CodeFile, DocumentationFile, Snapshot, UsageMetadata


class UsageMetadataCollector:
    """Count how often each project symbol is called, instantiated or imported.

    Sources, in order: call dependencies recorded on functions and methods,
    import statements, and symbol references in documentation sections.
    """

    def collect(self, snapshot: Snapshot) -> UsageMetadata:
        return self.collect_from(snapshot.files, snapshot.documentation, snapshot.project_path)

    def collect_from(
        self,
        files: Dict[str, CodeFile],
        documentation: Optional[Dict[str, DocumentationFile]] = None,
        project_path: str = "",
    ) -> UsageMetadata:
        function_names: Set[str] = set()
        class_names: Set[str] = set()
        exported: Set[str] = set()
        for code_file in files.values():
            function_names.update(f.name for f in code_file.functions)
            class_names.update(c.name for c in code_file.classes)
            exported.update(code_file.exports)

        calls: Counter = Counter()
        instantiations: Counter = Counter()
        imports: Counter = Counter()

        for code_file in files.values():
            callables = list(code_file.functions)
            for cls in code_file.classes:
                callables.extend(cls.methods)
            for func in callables:
                for dependency in func.dependencies:
                    leaf = dependency.split(".")[-1]
                    if leaf in class_names:
                        instantiations[leaf] += 1
                    elif leaf in function_names:
                        calls[leaf] += 1

            for imp in code_file.imports:
                for imported in imp.names:
                    name = imported.name
                    if not name or name == "*":
                        continue
                    imports[name] += 1
                    if name in class_names:
                        instantiations[name] += 1
                    elif name in function_names or name in exported:
                        calls[name] += 1

        for doc in (documentation or {}).values():
            for section in doc.sections:
                calls.update(section.referenced_functions)
                instantiations.update(section.referenced_classes)

        return UsageMetadata(
            file_path=project_path,
            function_calls=dict(calls),
            class_instantiations=dict(instantiations),
            imports=dict(imports),
        )
