"""
Execution trace: turns a step body into transitions.

``ExecTrace`` walks one body and, for every state update it returns,
classifies the tail of the call chain (``Jump``, ``Stop``,
``ThenRepeatOrJump``, ``CallSubroutine`` ...) into a ``MethodTransition``
on the step being traced. Closures and literals standing for "the next
step" become synthesized sub-steps that are traced recursively.

Nothing here raises for shapes it does not understand: they end up as
``<unknown>``, ``DYNAMIC <expr>`` or a dropped transition.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from stepgraph.chain import StateUpdate, build_state_update, has_name
from stepgraph.condense import build_condition, shorten_args, shorten_cond
from stepgraph.config import SETTINGS, Settings
from stepgraph.go_ast import (
    BinaryExpr,
    BlockStmt,
    CompositeLit,
    Expr,
    ExprStmt,
    FieldList,
    ForStmt,
    FuncLit,
    IfStmt,
    KeyValueExpr,
    ReturnStmt,
    Stmt,
    SwitchStmt,
    UnaryExpr,
    get_selector_of_expr,
)
from stepgraph.logging_utils import get_logger
from stepgraph.model import (
    STOP,
    UNKNOWN,
    MethodDecl,
    MethodKind,
    MethodTransition,
    Target,
)
from stepgraph.scanner import FileScanner

logger = get_logger(__name__)

DELAYED_START = "DelayedStart"
PREPARE_PREFIX = "Prepare"
SET_DEFAULT_MIGRATION = "SetDefaultMigration"
SLOT_STEP_TYPE = "SlotStep"

# Statement-level verbs that fire a prepared adapter call
ADAPTER_START_VERBS = {"Start", "Send", "Call", "TryCall"}


class Verb(Enum):
    """Chain-link verbs with a dedicated meaning; everything else is GENERIC"""
    CALL_SUBROUTINE = "CallSubroutine"
    ERROR = "Error"
    STAY = "Stay"
    STOP = "Stop"
    REPLACE = "Replace"
    REPLACE_WITH = "ReplaceWith"
    THEN_REPEAT_OR_ELSE = "ThenRepeatOrElse"  # legacy
    THEN_REPEAT_OR_JUMP = "ThenRepeatOrJump"
    THEN_REPEAT_OR_JUMP_EXT = "ThenRepeatOrJumpExt"
    REPEAT = "Repeat"
    RESTORE_STEP = "RestoreStep"
    GENERIC = ""

    @classmethod
    def of(cls, name: str) -> "Verb":
        if name == "Errorf":
            return cls.ERROR
        if not name:
            return cls.GENERIC
        try:
            return cls(name)
        except ValueError:
            return cls.GENERIC

    # Families of generic verbs, matched by name shape

    @staticmethod
    def is_then(name: str) -> bool:
        """``ThenJump``, ``ThenRepeat`` ...: the tail of a conditional operation"""
        return name.startswith("Then")

    @staticmethod
    def is_ext(name: str) -> bool:
        """``JumpExt``, ``ThenJumpExt`` ...: the argument is a slot step"""
        return name.endswith("Ext")

    @staticmethod
    def is_wait(name: str) -> bool:
        """Operations that park the step until woken up"""
        return name == "Sleep" or name.startswith("Wait")


@dataclass
class GuardFrame:
    """Conditions guarding the statements currently being walked"""
    conds: List[Expr] = field(default_factory=list)
    inverted: bool = False


class ExecTrace:
    """Trace context for one body. Owned by a single parse; never shared."""

    def __init__(
        self,
        md: MethodDecl,
        scanner: FileScanner,
        settings: Optional[Settings] = None,
    ):
        self.md = md
        self.fs = scanner
        self.settings = settings or SETTINGS
        self.frames: List[GuardFrame] = []
        self.migration: Optional[Expr] = None

    # Body walking

    def parse_body(self, body: BlockStmt) -> None:
        self._walk_stmts(body.list)

    def _walk_stmts(self, stmts: List[Stmt]) -> None:
        for stmt in stmts:
            self._walk_stmt(stmt)

    def _walk_stmt(self, stmt: Stmt) -> None:
        if isinstance(stmt, ReturnStmt):
            if stmt.results:
                su = build_state_update(stmt.results[0], self.md.context_arg_name)
                if su is not None:
                    self.add_transition(su)
        elif isinstance(stmt, ExprStmt):
            self._walk_expr_stmt(stmt.x)
        elif isinstance(stmt, IfStmt):
            self._walk_guarded(GuardFrame([stmt.cond]), stmt.body.list)
            if stmt.else_ is not None:
                self._walk_guarded(GuardFrame([stmt.cond], inverted=True), [stmt.else_])
        elif isinstance(stmt, SwitchStmt):
            self._walk_switch(stmt)
        elif isinstance(stmt, BlockStmt):
            self._walk_stmts(stmt.list)
        elif isinstance(stmt, ForStmt):
            self._walk_stmts(stmt.body.list)

    def _walk_guarded(self, frame: GuardFrame, stmts: List[Stmt]) -> None:
        self.frames.append(frame)
        try:
            self._walk_stmts(stmts)
        finally:
            self.frames.pop()

    def _walk_switch(self, stmt: SwitchStmt) -> None:
        all_values = [v for clause in stmt.body for v in clause.list]
        for clause in stmt.body:
            if clause.list:
                frame = GuardFrame([self._case_cond(stmt.tag, v) for v in clause.list])
            elif all_values:
                frame = GuardFrame([self._case_cond(stmt.tag, v) for v in all_values], inverted=True)
            else:
                self._walk_stmts(clause.body)
                continue
            self._walk_guarded(frame, clause.body)

    @staticmethod
    def _case_cond(tag: Optional[Expr], value: Expr) -> Expr:
        if tag is None:
            return value
        return BinaryExpr(tag, "==", value, pos=value.pos, end=value.end)

    def _walk_expr_stmt(self, expr: Expr) -> None:
        su = build_state_update(expr, self.md.context_arg_name)
        if su is None:
            return
        if su.name == SET_DEFAULT_MIGRATION and su.is_context and su.args:
            self.migration = su.args[0]
        elif su.name in ADAPTER_START_VERBS:
            start, prep = self._extract_adapter_call(su)
            if prep is not None:
                self.add_adapter_call(start, prep)

    def nearest_cond(self) -> Optional[GuardFrame]:
        if not self.frames:
            return None
        return self.frames[-1]

    # Transitions

    def add_transition(self, su: StateUpdate) -> None:
        mt = MethodTransition()
        frame = self.nearest_cond()
        if frame is not None and frame.conds:
            mt.condition = build_condition(
                frame.conds, frame.inverted, self.settings.max_cond_len, self.fs
            )
        if self.migration is not None:
            mt.migration = self.get_inline_func_expr(self.migration, MethodKind.MIGRATION)
        else:
            mt.inherit_migration = True

        if self.md.method_kind in (MethodKind.DECLARATION_INIT, MethodKind.CONSTRUCTION):
            mt.transition = Target.step(su.full_name())
        elif not self.add_context_op_transition(su, mt):
            if not mt.transition:
                logger.debug(f"{self.md.name}: no transition for '{su.name}'")
                return
            mt.transition = UNKNOWN

        if mt.is_empty():
            logger.debug(f"{self.md.name}: dropped empty transition for '{su.name}'")
            return
        self.md.add_transition(mt)

    def add_context_op_transition(self, su: StateUpdate, mt: MethodTransition) -> bool:
        """
        Classify ``su`` into ``mt``.

        Returns False when the link could not be turned into a transition;
        whatever target was set before failing is kept for the caller to
        report as unknown.
        """
        verb = Verb.of(su.name)

        if verb is Verb.CALL_SUBROUTINE:
            if len(su.args) != 3:
                return False
            # this step -> subroutine SM -> exit step
            mt.operation = "CallSubroutine"
            mh = self.get_inline_func_expr(su.args[1], MethodKind.MIGRATION)
            if mh:
                mt.migration = mh
                mt.inherit_migration = False
            name = (
                self.md.name + "." + self._subroutine_ref(su.args[0])
                + "." + str(len(self.md.sub_steps) + 1)
            )
            mt.transition = Target.step(name)

            mds = self.build_sub_step(name, None, MethodKind.OTHER)
            mds.add_migration(mt.migration)
            mds.is_subroutine = True

            exit_step = self.get_inline_func_expr(su.args[2], MethodKind.EXECUTION)
            mds.add_transition(MethodTransition(transition=Target.step(exit_step)))

            # the hook belongs to the subroutine; caller settings move to the exit step
            mt.migration = ""
            mt.hidden_propagate = exit_step
            return True

        if verb is Verb.ERROR:
            mt.operation = "Error"
            mt.transition = STOP
            mt.inherit_migration = False
            return True

        if verb is Verb.STAY:
            mt.operation = ""
            return False

        if verb is Verb.STOP:
            mt.transition = STOP
            mt.inherit_migration = False
            return True

        if verb in (Verb.REPLACE, Verb.REPLACE_WITH):
            if not su.args:
                return False
            kind = MethodKind.CONSTRUCTION if verb is Verb.REPLACE else MethodKind.OTHER
            mt.operation = "Replace"
            mt.transition = Target.step(self.get_inline_func_expr(su.args[0], kind))
            mt.inherit_migration = False
            return bool(mt.transition)

        if verb is Verb.THEN_REPEAT_OR_ELSE:
            # unsupported, kept only to flag the call site
            mt.operation, adapter = self.build_operation(su.parent)
            mt.delayed_start = bool(adapter)
            mt.transition = Target.step("<ThenRepeatOrElse>")
            return False

        if verb is Verb.THEN_REPEAT_OR_JUMP:
            mt.operation, adapter = self.build_operation(su.parent)
            mt.delayed_start = bool(adapter)
            if not su.args:
                return False
            self.md.add_transition(self._copy(mt))  # the repeat, target still empty
            mt.transition = Target.step(self.get_inline_func_expr(su.args[0], MethodKind.EXECUTION))
            return bool(mt.transition)

        if verb is Verb.THEN_REPEAT_OR_JUMP_EXT:
            mt.operation, adapter = self.build_operation(su.parent)
            mt.delayed_start = bool(adapter)
            self.md.add_transition(self._copy(mt))
            return self._slot_step_transition(su, mt)

        if verb is Verb.REPEAT:
            if not su.args:
                return False
            mt.operation = "Repeat(" + shorten_args(su.args, self.settings.max_arg_len, self.fs) + ")"
            return True

        if verb is Verb.RESTORE_STEP:
            mt.wait_transition = True
            mt.operation = su.name
            return self._slot_step_transition(su, mt)

        if Verb.is_then(su.name):
            if su.parent is not None and Verb.is_wait(su.parent.name):
                mt.wait_transition = True
            mt.operation, adapter = self.build_operation(su.parent)
            mt.delayed_start = bool(adapter)

        if Verb.is_ext(su.name):
            return self._slot_step_transition(su, mt)
        if not su.args:  # repeat and similar ops
            return True
        mt.transition = Target.step(self.get_inline_func_expr(su.args[0], MethodKind.EXECUTION))
        return bool(mt.transition)

    def _slot_step_transition(self, su: StateUpdate, mt: MethodTransition) -> bool:
        if not su.args:
            return False
        mt.transition, mh = self.get_slot_step_expr(su.args[0])
        if mh:
            mt.migration = mh
            mt.inherit_migration = False
        return bool(mt.transition)

    @staticmethod
    def _copy(mt: MethodTransition) -> MethodTransition:
        return MethodTransition(**vars(mt))

    def _subroutine_ref(self, expr: Expr) -> str:
        if isinstance(expr, UnaryExpr) and expr.op == "&":
            expr = expr.x
        if isinstance(expr, CompositeLit):
            x, sel = get_selector_of_expr(expr.type)
            return (x + "." if x else "") + sel + "{}"
        return self.get_inline_func_expr(expr, MethodKind.OTHER)

    # Inline references

    def get_slot_step_expr(self, expr: Expr) -> Tuple[Target, str]:
        """Resolve a ``SlotStep{Transition: ..., Migration: ...}`` argument."""
        if isinstance(expr, CompositeLit):
            _, sel = get_selector_of_expr(expr.type)
            if sel == SLOT_STEP_TYPE:
                transition = migration = ""
                for el in expr.elts:
                    if not isinstance(el, KeyValueExpr):
                        continue
                    xkey, key = get_selector_of_expr(el.key)
                    if xkey:
                        continue
                    if key == "Transition":
                        transition = self.get_inline_func_expr(el.value, MethodKind.EXECUTION)
                    elif key == "Migration":
                        migration = self.get_inline_func_expr(el.value, MethodKind.MIGRATION)
                return Target.step(transition), migration

        _, sel = get_selector_of_expr(expr)
        if not sel:
            sel = shorten_cond(expr, self.settings.max_arg_len, self.fs)
        logger.debug(f"{self.md.name}: dynamic step expression '{sel}'")
        return Target.dynamic(sel), ""

    def get_inline_func_expr(self, expr: Optional[Expr], kind: MethodKind) -> str:
        """
        Name the step (or migration hook) ``expr`` stands for.

        Closures and typed literals are turned into sub-steps of the traced
        declaration; every call synthesizes a new one. Returns "" when the
        expression cannot be named.
        """
        if isinstance(expr, UnaryExpr):
            if not kind.has_state_update() and expr.op == "&":
                return self.get_inline_func_expr(expr.x, kind)
        elif isinstance(expr, CompositeLit):
            if kind is MethodKind.OTHER:
                x, sel = get_selector_of_expr(expr.type)
                name = (x + "." if x else "") + sel + "{}"
                mds = self.build_sub_step(name, None, kind)
                mds.is_subroutine = True
                return name
        elif isinstance(expr, FuncLit):
            name = self.md.name + "." + str(len(self.md.sub_steps) + 1)
            mds = self.build_sub_step(name, expr.params, kind)
            mds.parse_func_body(expr.body, self.fs, self.settings)
            return name

        x, sel = get_selector_of_expr(expr)
        if x:
            return x + "." + sel
        if sel != "nil":
            return sel
        return ""

    def build_sub_step(self, name: str, params: Optional[FieldList], kind: MethodKind) -> MethodDecl:
        md = MethodDecl(
            name=name,
            state_machine_id=self.md.state_machine_id,
            receiver_type=self.md.receiver_type,
            receiver_name=self.md.receiver_name,
            method_kind=kind,
        )
        if kind.has_context_arg() and params is not None:
            found = self.fs.find_context_arg(params.list)
            if found is not None and found[0] is kind:
                md.context_arg_name = found[1]
        md.has_update_slot = kind.has_state_update()

        self.md.sub_steps.append(md)
        logger.debug(f"{self.md.name}: synthesized sub-step '{name}'")
        return md

    # Operations and adapters

    def format_update_name(self, su: StateUpdate) -> str:
        if not su.args and not su.is_call:
            return su.name
        return su.name + "(" + shorten_args(su.args, self.settings.max_arg_len, self.fs) + ")"

    def build_call_chain(self, su: Optional[StateUpdate]) -> str:
        if not has_name(su):
            return ""
        return ".".join(reversed([self.format_update_name(link) for link in su.chain()]))

    def build_operation(self, su: Optional[StateUpdate]) -> Tuple[str, str]:
        """
        Describe the operation a ``Then*`` verb is chained on.

        Returns ``(operation, adapter)``; ``adapter`` is set only for the
        delayed-start adapter idiom.
        """
        if not has_name(su):
            return "", ""

        links = list(su.chain())
        root = links[-1]
        if root.is_context and all(link.name != DELAYED_START for link in links):
            s = root.name
            for link in reversed(links[:-1]):
                s += "." + self.format_update_name(link)
            return s, ""

        op = DELAYED_START
        if su.name == op:
            pass
        elif su.parent is not None and su.parent.name == op and not su.args:
            op = su.name
            su = su.parent
        else:
            return "", ""

        start, prep = self._extract_adapter_call(su)
        if prep is not None:
            prep_name, adapter = self.get_adapter_call_names(start, prep)
            self.md.add_adapter(adapter)
            return prep_name + "." + op, adapter

        return "", ""

    @staticmethod
    def _extract_adapter_call(
        start: StateUpdate,
    ) -> Tuple[Optional[StateUpdate], Optional[StateUpdate]]:
        su = start.parent
        while has_name(su):
            if su.is_call and su.name.startswith(PREPARE_PREFIX):
                return start, su
            su = su.parent
        return None, None

    def get_adapter_call_names(self, start: StateUpdate, prep: StateUpdate) -> Tuple[str, str]:
        adapter = self.build_call_chain(prep.parent)

        receiver = prep.parent
        prep.parent = None
        try:
            prep_name = self.build_call_chain(start.parent)
        finally:
            prep.parent = receiver

        return prep_name, adapter

    def add_adapter_call(self, start: StateUpdate, prep: StateUpdate) -> None:
        prep_name, adapter = self.get_adapter_call_names(start, prep)
        self.md.add_adapter_call(start.name, prep_name, adapter)
