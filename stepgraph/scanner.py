"""
File scanner: source excerpts and context-argument detection.

The trace builder only talks to the ``FileScanner`` protocol; the
``SourceScanner`` here serves it from the raw bytes of one Go file.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Protocol, Tuple

from stepgraph.go_ast import Field, get_selector_of_expr
from stepgraph.model import MethodKind

# Context parameter types (by unqualified type name) and the kind of body they mark
CONTEXT_TYPES: Dict[str, MethodKind] = {
    "InitializationContext": MethodKind.EXECUTION,
    "ExecutionContext": MethodKind.EXECUTION,
    "MigrationContext": MethodKind.MIGRATION,
    "ConstructionContext": MethodKind.CONSTRUCTION,
}


class FileScanner(Protocol):
    def excerpt(self, start: int, end: int, max_len: int) -> str:
        ...

    def find_context_arg(self, params: List[Field]) -> Optional[Tuple[MethodKind, str]]:
        ...


def find_context_arg(params: List[Field]) -> Optional[Tuple[MethodKind, str]]:
    """Return the kind and name of the first context-typed parameter, if any."""
    for param in params:
        _, type_name = get_selector_of_expr(param.type)
        kind = CONTEXT_TYPES.get(type_name)
        if kind is None:
            continue
        name = param.names[0] if param.names else ""
        return kind, name
    return None


class SourceScanner:
    """Serves excerpts from the bytes of a single source file."""

    def __init__(self, source: bytes, path: str = ""):
        self.source = source
        self.path = path

    def excerpt(self, start: int, end: int, max_len: int) -> str:
        if max_len <= 0 or start >= end:
            return ""
        text = self.source[start:end].decode("utf-8", errors="ignore")
        text = " ".join(text.replace("\t", " ").split())
        if len(text) <= max_len:
            return text
        if max_len <= 3:
            return text[:max_len]
        return text[: max_len - 3] + "..."

    def find_context_arg(self, params: List[Field]) -> Optional[Tuple[MethodKind, str]]:
        return find_context_arg(params)
