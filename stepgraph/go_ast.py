"""
Expression tree for Go method bodies.

A small, front-end independent mirror of the Go syntax nodes the trace
builder cares about. Every node carries the byte span it was parsed from
(``pos``/``end``) so the excerpt service can fall back to source text.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class Node:
    pos: int = field(default=0, kw_only=True)
    end: int = field(default=0, kw_only=True)


# Expressions

@dataclass
class Expr(Node):
    pass


@dataclass
class Ident(Expr):
    name: str


@dataclass
class BasicLit(Expr):
    value: str  # verbatim literal text, quotes included


@dataclass
class SelectorExpr(Expr):
    x: Optional[Expr]
    sel: Optional[Ident]


@dataclass
class CallExpr(Expr):
    fun: Expr
    args: List[Expr] = field(default_factory=list)


@dataclass
class KeyValueExpr(Expr):
    key: Expr
    value: Expr


@dataclass
class CompositeLit(Expr):
    type: Optional[Expr]
    elts: List[Expr] = field(default_factory=list)


@dataclass
class ParenExpr(Expr):
    x: Expr


@dataclass
class IndexExpr(Expr):
    x: Expr
    index: Optional[Expr] = None


@dataclass
class SliceExpr(Expr):
    x: Expr


@dataclass
class TypeAssertExpr(Expr):
    x: Expr
    type: Optional[Expr] = None


@dataclass
class StarExpr(Expr):
    x: Expr


@dataclass
class UnaryExpr(Expr):
    op: str
    x: Expr


@dataclass
class BinaryExpr(Expr):
    x: Expr
    op: str
    y: Expr


@dataclass
class BadExpr(Expr):
    """Anything the front-end could not map onto a known node."""
    kind: str = ""


@dataclass
class Field(Node):
    names: List[str]
    type: Optional[Expr]


@dataclass
class FieldList(Node):
    list: List[Field] = field(default_factory=list)


@dataclass
class FuncLit(Expr):
    params: Optional[FieldList]
    body: "BlockStmt"


# Statements

@dataclass
class Stmt(Node):
    pass


@dataclass
class BlockStmt(Stmt):
    list: List[Stmt] = field(default_factory=list)


@dataclass
class ExprStmt(Stmt):
    x: Expr


@dataclass
class ReturnStmt(Stmt):
    results: List[Expr] = field(default_factory=list)


@dataclass
class IfStmt(Stmt):
    cond: Expr
    body: BlockStmt
    else_: Optional[Stmt] = None  # BlockStmt or IfStmt


@dataclass
class CaseClause(Stmt):
    list: List[Expr]  # empty for ``default``
    body: List[Stmt] = field(default_factory=list)


@dataclass
class SwitchStmt(Stmt):
    tag: Optional[Expr]
    body: List[CaseClause] = field(default_factory=list)


@dataclass
class ForStmt(Stmt):
    body: BlockStmt


@dataclass
class OtherStmt(Stmt):
    kind: str = ""


def get_selector_of_expr(expr: Optional[Expr]) -> tuple[str, str]:
    """
    Split a (possibly qualified) reference into ``(qualifier, name)``.

    ``s.stepNext`` gives ``("s", "stepNext")``, ``stepNext`` gives
    ``("", "stepNext")``. Pointer, index and generic wrappers around a type
    are looked through. Anything else gives ``("", "")``.
    """
    if isinstance(expr, Ident):
        return "", expr.name
    if isinstance(expr, SelectorExpr):
        sel = expr.sel.name if expr.sel is not None else ""
        return _dotted_name(expr.x), sel
    if isinstance(expr, (StarExpr, IndexExpr, ParenExpr)):
        return get_selector_of_expr(expr.x)
    return "", ""


def _dotted_name(expr: Optional[Expr]) -> str:
    if isinstance(expr, Ident):
        return expr.name
    if isinstance(expr, SelectorExpr):
        base = _dotted_name(expr.x)
        sel = expr.sel.name if expr.sel is not None else ""
        if base and sel:
            return base + "." + sel
        return base or sel
    return ""
