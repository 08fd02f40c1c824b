"""
Call-chain links.

``ctx.Sleep().ThenJump(s.stepNext)`` becomes a linked list of
``StateUpdate`` links read from the tail: ``ThenJump`` -> ``Sleep``.
A link called directly on the context argument is a *context* link and
has no parent.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Optional

from stepgraph.go_ast import (
    CallExpr,
    CompositeLit,
    Expr,
    Ident,
    ParenExpr,
    SelectorExpr,
    StarExpr,
    UnaryExpr,
    get_selector_of_expr,
)


@dataclass(eq=False)
class StateUpdate:
    name: str
    args: List[Expr] = field(default_factory=list)
    parent: Optional["StateUpdate"] = None
    is_call: bool = False
    is_context: bool = False

    def has_name(self) -> bool:
        return bool(self.name)

    def chain(self) -> Iterator["StateUpdate"]:
        """This link and then its receivers, innermost last."""
        su: Optional[StateUpdate] = self
        while su is not None and su.has_name():
            yield su
            su = su.parent

    def full_name(self) -> str:
        return ".".join(reversed([su.name for su in self.chain()]))


def has_name(su: Optional[StateUpdate]) -> bool:
    return su is not None and su.has_name()


def build_state_update(expr: Optional[Expr], ctx_name: str = "") -> Optional[StateUpdate]:
    """Turn a returned/evaluated expression into its call-chain tail link."""
    if expr is None:
        return None

    if isinstance(expr, ParenExpr):
        return build_state_update(expr.x, ctx_name)

    if isinstance(expr, CallExpr):
        fun = expr.fun
        while isinstance(fun, ParenExpr):
            fun = fun.x
        if isinstance(fun, SelectorExpr) and fun.sel is not None:
            su = _link_on(fun.x, fun.sel.name, ctx_name)
        else:
            _, name = get_selector_of_expr(fun)
            if not name:
                return None
            su = StateUpdate(name=name)
        su.args = list(expr.args)
        su.is_call = True
        return su

    if isinstance(expr, SelectorExpr) and expr.sel is not None:
        return _link_on(expr.x, expr.sel.name, ctx_name)

    if isinstance(expr, Ident):
        return StateUpdate(name=expr.name)

    if isinstance(expr, (UnaryExpr, StarExpr)) and isinstance(expr.x, CompositeLit):
        return build_state_update(expr.x, ctx_name)

    if isinstance(expr, CompositeLit):
        x, sel = get_selector_of_expr(expr.type)
        if not sel:
            return None
        return StateUpdate(name=(x + "." if x else "") + sel + "{}")

    return None


def _link_on(receiver: Optional[Expr], name: str, ctx_name: str) -> StateUpdate:
    if ctx_name and isinstance(receiver, Ident) and receiver.name == ctx_name:
        return StateUpdate(name=name, is_context=True)
    return StateUpdate(name=name, parent=build_state_update(receiver, ctx_name))
