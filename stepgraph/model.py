"""
Step graph model: method declarations, transitions and the per-file graph.

This is the output artifact of the trace builder. Sentinel targets are kept
as a tagged value internally and only turned into their exact text
(``<stop>``, ``<unknown>``, ``DYNAMIC <expr>``) when serialized.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional

if TYPE_CHECKING:
    from stepgraph.config import Settings
    from stepgraph.go_ast import BlockStmt
    from stepgraph.scanner import FileScanner


class StepGraphError(Exception):
    """Base class for host-side errors (never raised for analysis failures)."""


class DuplicateStepError(StepGraphError):
    """A top-level step was registered twice for the same state machine."""


class MethodKind(Enum):
    """How calls inside a body are interpreted"""
    OTHER = 0
    DECLARATION_INIT = 1
    CONSTRUCTION = 2
    EXECUTION = 3
    MIGRATION = 4

    def has_context_arg(self) -> bool:
        return self is not MethodKind.OTHER

    def has_state_update(self) -> bool:
        return self in (MethodKind.EXECUTION, MethodKind.MIGRATION)


class TargetKind(Enum):
    STAY = "stay"
    STEP = "step"
    STOP = "stop"
    UNKNOWN = "unknown"
    DYNAMIC = "dynamic"


@dataclass(frozen=True)
class Target:
    """Destination of a transition."""
    kind: TargetKind = TargetKind.STAY
    name: str = ""

    @staticmethod
    def step(name: str) -> "Target":
        if not name:
            return STAY
        return Target(TargetKind.STEP, name)

    @staticmethod
    def dynamic(expr: str) -> "Target":
        return Target(TargetKind.DYNAMIC, expr)

    def __bool__(self) -> bool:
        return self.kind is not TargetKind.STAY

    def __str__(self) -> str:
        if self.kind is TargetKind.STEP:
            return self.name
        if self.kind is TargetKind.STOP:
            return "<stop>"
        if self.kind is TargetKind.UNKNOWN:
            return "<unknown>"
        if self.kind is TargetKind.DYNAMIC:
            return "DYNAMIC " + self.name
        return ""


STAY = Target()
STOP = Target(TargetKind.STOP)
UNKNOWN = Target(TargetKind.UNKNOWN)


@dataclass
class MethodTransition:
    """One edge: the effect of one recognized chain link"""
    condition: str = ""
    operation: str = ""
    transition: Target = STAY
    migration: str = ""
    inherit_migration: bool = False
    delayed_start: bool = False
    wait_transition: bool = False
    hidden_propagate: str = ""

    @property
    def transition_target(self) -> str:
        return str(self.transition)

    def is_empty(self) -> bool:
        return not self.transition and not self.operation and not self.condition

    def to_dict(self) -> Dict[str, Any]:
        return {
            "condition": self.condition,
            "operation": self.operation,
            "transition": self.transition_target,
            "migration": self.migration,
            "inheritMigration": self.inherit_migration,
            "delayedStart": self.delayed_start,
            "waitTransition": self.wait_transition,
            "hiddenPropagate": self.hidden_propagate,
        }


@dataclass
class AdapterCall:
    """A statement-level call into an adapter, e.g. ``...PrepareAsync(fn).Start()``"""
    kind: str
    prep_name: str
    adapter: str

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind, "prepName": self.prep_name, "adapter": self.adapter}


@dataclass
class MethodDecl:
    """
    One named step of a state machine.

    Created once, filled by the single trace that owns it and never removed.
    Sub-steps are synthesized from closures and literals found in the body.
    """
    name: str
    state_machine_id: str = ""
    receiver_type: str = ""
    receiver_name: str = ""
    method_kind: MethodKind = MethodKind.OTHER
    context_arg_name: str = ""
    has_update_slot: bool = False
    sub_steps: List["MethodDecl"] = field(default_factory=list)
    transitions: List[MethodTransition] = field(default_factory=list)
    adapters: Dict[str, None] = field(default_factory=dict)  # ordered set
    adapter_calls: List[AdapterCall] = field(default_factory=list)
    migration: str = ""
    is_subroutine: bool = False

    def add_transition(self, mt: MethodTransition) -> None:
        self.transitions.append(mt)

    def add_adapter(self, adapter: str) -> None:
        if adapter:
            self.adapters.setdefault(adapter, None)

    def add_adapter_call(self, kind: str, prep_name: str, adapter: str) -> None:
        self.add_adapter(adapter)
        self.adapter_calls.append(AdapterCall(kind, prep_name, adapter))

    def add_migration(self, migration: str) -> None:
        if migration:
            self.migration = migration

    def parse_func_body(
        self,
        body: "BlockStmt",
        scanner: "FileScanner",
        settings: Optional["Settings"] = None,
    ) -> None:
        """Trace ``body`` and record its transitions on this declaration."""
        from stepgraph.trace import ExecTrace

        ExecTrace(self, scanner, settings).parse_body(body)

    def iter_steps(self) -> Iterator["MethodDecl"]:
        """This step followed by all of its sub-steps, depth first."""
        yield self
        for sub in self.sub_steps:
            yield from sub.iter_steps()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "stateMachine": self.state_machine_id,
            "receiverType": self.receiver_type,
            "receiverName": self.receiver_name,
            "methodKind": self.method_kind.name,
            "contextArg": self.context_arg_name,
            "hasUpdateSlot": self.has_update_slot,
            "isSubroutine": self.is_subroutine,
            "migration": self.migration,
            "adapters": sorted(self.adapters),
            "adapterCalls": [c.to_dict() for c in self.adapter_calls],
            "transitions": [t.to_dict() for t in self.transitions],
            "subSteps": [s.to_dict() for s in self.sub_steps],
        }


@dataclass
class StateMachineGraph:
    """All traced steps of one input file, keyed by state machine and step name."""
    source: str = ""
    decls: Dict[tuple, MethodDecl] = field(default_factory=dict)

    def add_decl(self, md: MethodDecl) -> MethodDecl:
        key = (md.state_machine_id, md.name)
        if key in self.decls:
            raise DuplicateStepError(
                f"Step '{md.name}' already registered for state machine '{md.state_machine_id}'"
            )
        self.decls[key] = md
        return md

    def get(self, state_machine_id: str, name: str) -> Optional[MethodDecl]:
        return self.decls.get((state_machine_id, name))

    def state_machines(self) -> Dict[str, List[MethodDecl]]:
        """Top-level steps grouped by owning state machine, in discovery order"""
        grouped: Dict[str, List[MethodDecl]] = {}
        for md in self.decls.values():
            grouped.setdefault(md.state_machine_id, []).append(md)
        return grouped

    def iter_steps(self) -> Iterator[MethodDecl]:
        for md in self.decls.values():
            yield from md.iter_steps()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "stateMachines": {
                sm: [md.to_dict() for md in steps]
                for sm, steps in self.state_machines().items()
            },
        }

    def to_json(self, indent: int = 2) -> str:
        """Convert to JSON string"""
        return json.dumps(self.to_dict(), indent=indent)
