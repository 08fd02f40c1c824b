"""
Condensed rendering of Go expressions under a length budget.

Guard conditions and call arguments are kept as short, shape-preserving
text (``s.count>0``, ``(...).Ready()``, ``Foo{}``) rather than verbatim
source. The budget is threaded through every recursive call; binary
expressions give the right operand first pick.
"""
from __future__ import annotations

import json
from typing import List, Optional, Sequence

from stepgraph.go_ast import (
    BasicLit,
    BinaryExpr,
    CallExpr,
    CompositeLit,
    Expr,
    FuncLit,
    Ident,
    IndexExpr,
    ParenExpr,
    SelectorExpr,
    SliceExpr,
    StarExpr,
    TypeAssertExpr,
    UnaryExpr,
)
from stepgraph.scanner import FileScanner

ELLIPSIS = "..."
MIN_SEGMENT_LEN = 3
COND_SEPARATOR = ", "

# Unary operators kept as a prefix; the rest render as their operand
_PREFIX_OPS = {"!", "^", "-", "<-"}


def shorten_cond(cond: Expr, max_len: int, scanner: Optional[FileScanner] = None) -> str:
    """
    Render ``cond`` in at most ``max_len`` characters.

    Falls back to a source excerpt only when the structural rendering is
    empty.
    """
    s = _shorten_cond(cond, max_len)
    if not s and scanner is not None:
        s = scanner.excerpt(cond.pos, cond.end, max_len)
    return _clamp(s, max_len)


def shorten_args(args: Sequence[Expr], max_len: int, scanner: Optional[FileScanner] = None) -> str:
    if not args:
        return ""
    return shorten_cond(args[0], max_len, scanner)


def _clamp(s: str, max_len: int) -> str:
    if len(s) <= max_len:
        return s
    if max_len <= len(ELLIPSIS):
        return ELLIPSIS[: max(max_len, 0)]
    return s[: max_len - len(ELLIPSIS)] + ELLIPSIS


def _shorten_cond(cond: Optional[Expr], max_len: int) -> str:
    if isinstance(cond, SelectorExpr):
        if cond.sel is None:
            return _shorten_cond(cond.x, max_len)
        s = cond.sel.name
        if len(s) >= max_len:
            if cond.x is not None:
                return "(...)." + s
            return s
        if cond.x is None:
            return s
        return _shorten_cond(cond.x, max_len - len(s) - 1) + "." + s
    if isinstance(cond, Ident):
        return cond.name
    if isinstance(cond, CallExpr):
        return _shorten_cond(cond.fun, max_len - 2) + "()"
    if isinstance(cond, BasicLit):
        return cond.value
    if isinstance(cond, FuncLit):
        return "func(){}"
    if isinstance(cond, CompositeLit):
        return _shorten_cond(cond.type, max_len - 2) + "{}"
    if isinstance(cond, ParenExpr):
        return "(" + _shorten_cond(cond.x, max_len - 2) + ")"
    if isinstance(cond, (IndexExpr, SliceExpr)):
        return _shorten_cond(cond.x, max_len - 2) + "[]"
    if isinstance(cond, (TypeAssertExpr, StarExpr)):
        return _shorten_cond(cond.x, max_len)
    if isinstance(cond, UnaryExpr):
        if cond.op in _PREFIX_OPS:
            return cond.op + _shorten_cond(cond.x, max_len - len(cond.op))
        return _shorten_cond(cond.x, max_len)
    if isinstance(cond, BinaryExpr):
        s = cond.op + _shorten_cond(cond.y, max_len - 1 - len(cond.op))
        if len(s) >= max_len:
            return ELLIPSIS + s
        return _shorten_cond(cond.x, max_len - len(s)) + s
    return "(...)"


def build_condition(
    conds: List[Expr],
    inverted: bool,
    max_len: int,
    scanner: Optional[FileScanner] = None,
) -> str:
    """
    Render a guard frame as ``[a, b]``, or ``![a, b]`` when inverted.

    The first condition always gets the full budget. Later ones are added
    while they fit; the first one that does not is replaced by ``...``.
    """
    text = shorten_cond(conds[0], max_len, scanner)
    truncated = False
    for c in conds[1:]:
        budget = max_len - len(text) - len(COND_SEPARATOR)
        if budget > MIN_SEGMENT_LEN:
            cs = shorten_cond(c, budget, scanner)
            if cs and len(cs) <= budget:
                text += COND_SEPARATOR + cs
                continue
        truncated = True
        break

    if truncated:
        if len(text) + len(ELLIPSIS) <= max_len:
            text += ELLIPSIS
        else:
            text = text[: max(max_len - len(ELLIPSIS), 0)] + ELLIPSIS

    quoted = json.dumps(text, ensure_ascii=False)
    s = "[" + quoted[1:-1] + "]"
    if inverted:
        return "!" + s
    return s
