"""
Go front-end for the step tracer.

Parses Go source with tree-sitter, converts method bodies into the
``go_ast`` tree and traces every step method it finds:

- methods (or functions) with an ``ExecutionContext``/``MigrationContext``/
  ``ConstructionContext``/``InitializationContext`` parameter
- ``GetInitStateFor`` declaration methods, whose returned step is the
  machine's entry point

NO type checking is done; recognition is purely syntactic.
"""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional

from tree_sitter import Language, Node, Parser
from tree_sitter_go import language as go_language

from stepgraph import go_ast as ga
from stepgraph.config import SETTINGS, Settings
from stepgraph.logging_utils import get_logger
from stepgraph.model import MethodDecl, MethodKind, StateMachineGraph, StepGraphError
from stepgraph.scanner import SourceScanner

logger = get_logger(__name__)

DECLARATION_INIT_METHOD = "GetInitStateFor"

_LITERAL_TYPES = {
    "int_literal",
    "float_literal",
    "imaginary_literal",
    "rune_literal",
    "interpreted_string_literal",
    "raw_string_literal",
}
_IDENT_TYPES = {
    "identifier",
    "field_identifier",
    "type_identifier",
    "package_identifier",
    "true",
    "false",
    "nil",
    "iota",
}
_CASE_TYPES = {"expression_case", "default_case"}
_TYPE_CASE_TYPES = {"type_case", "default_case"}
_COMM_CASE_TYPES = {"communication_case", "default_case"}


class FrontendError(StepGraphError):
    """A source file could not be read."""


def _set_parser_language(parser: Parser) -> None:
    """Set the Go language for the tree-sitter parser."""
    raw = go_language()
    lang: Language
    if isinstance(raw, Language):
        lang = raw
    else:
        lang = Language(raw)  # type: ignore[arg-type]

    if hasattr(parser, "set_language"):
        parser.set_language(lang)  # type: ignore[attr-defined]
    else:
        parser.language = lang  # type: ignore[assignment]


def _node_text(source_bytes: bytes, node: Node) -> str:
    """Extract text from a tree-sitter node."""
    return source_bytes[node.start_byte : node.end_byte].decode("utf-8", errors="ignore")


class GoFrontend:
    """Builds a ``StateMachineGraph`` per Go file."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or SETTINGS
        self.parser = Parser()
        _set_parser_language(self.parser)

    def extract_file(self, path: Path) -> StateMachineGraph:
        try:
            source = path.read_bytes()
        except OSError as e:
            raise FrontendError(f"Cannot read {path}: {e}") from e
        return self.extract_source(source, str(path))

    def extract_source(self, source: bytes | str, name: str = "") -> StateMachineGraph:
        if isinstance(source, str):
            source = source.encode("utf-8")
        tree = self.parser.parse(source)
        converter = _Converter(source)
        scanner = SourceScanner(source, name)
        graph = StateMachineGraph(source=name)

        package = ""
        for node in tree.root_node.named_children:
            if node.type == "package_clause":
                pkg = node.named_children[0] if node.named_children else None
                package = _node_text(source, pkg) if pkg is not None else ""
            elif node.type in {"method_declaration", "function_declaration"}:
                md = self._declare(converter, scanner, node, package)
                if md is None:
                    continue
                body = node.child_by_field_name("body")
                if body is None:
                    continue
                graph.add_decl(md)
                md.parse_func_body(converter.block(body), scanner, self.settings)
                logger.debug(f"Traced {md.state_machine_id}.{md.name}: {len(md.transitions)} transitions")

        return graph

    def _declare(
        self,
        converter: "_Converter",
        scanner: SourceScanner,
        node: Node,
        package: str,
    ) -> Optional[MethodDecl]:
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return None
        name = converter.text(name_node)

        receiver_type = receiver_name = ""
        receiver = node.child_by_field_name("receiver")
        if receiver is not None:
            fields = converter.params(receiver).list
            if fields:
                receiver_name = fields[0].names[0] if fields[0].names else ""
                _, receiver_type = ga.get_selector_of_expr(fields[0].type)

        params = converter.params(node.child_by_field_name("parameters"))
        found = scanner.find_context_arg(params.list)
        if found is not None:
            kind, ctx_name = found
        elif receiver_type and name == DECLARATION_INIT_METHOD:
            kind, ctx_name = MethodKind.DECLARATION_INIT, ""
        else:
            return None

        sm_id = receiver_type
        if package and receiver_type:
            sm_id = package + "." + receiver_type

        return MethodDecl(
            name=name,
            state_machine_id=sm_id,
            receiver_type=receiver_type,
            receiver_name=receiver_name,
            method_kind=kind,
            context_arg_name=ctx_name,
            has_update_slot=kind.has_state_update(),
        )


def iter_go_files(root: Path, settings: Optional[Settings] = None) -> Iterable[Path]:
    """Go sources under ``root`` (or ``root`` itself), skipping excluded directories."""
    settings = settings or SETTINGS
    if root.is_file():
        yield root
        return
    for path in sorted(root.rglob("*")):
        if not path.is_file() or path.suffix not in settings.go_exts:
            continue
        if any(part in settings.exclude_dirs for part in path.relative_to(root).parts[:-1]):
            continue
        yield path


class _Converter:
    """tree-sitter Go nodes -> ``go_ast`` nodes"""

    def __init__(self, source: bytes):
        self.source = source

    def text(self, node: Node) -> str:
        return _node_text(self.source, node)

    def _span(self, node: Node) -> dict:
        return {"pos": node.start_byte, "end": node.end_byte}

    # Parameters

    def params(self, node: Optional[Node]) -> ga.FieldList:
        if node is None:
            return ga.FieldList()
        fields: List[ga.Field] = []
        for child in node.named_children:
            if child.type not in {"parameter_declaration", "variadic_parameter_declaration"}:
                continue
            names = [self.text(n) for n in child.children_by_field_name("name")]
            type_node = child.child_by_field_name("type")
            fields.append(
                ga.Field(names, self.expr(type_node) if type_node is not None else None, **self._span(child))
            )
        return ga.FieldList(fields, **self._span(node))

    # Statements

    def block(self, node: Node) -> ga.BlockStmt:
        return ga.BlockStmt(self._stmts(node.named_children), **self._span(node))

    def _stmts(self, nodes: Iterable[Node]) -> List[ga.Stmt]:
        out: List[ga.Stmt] = []
        for n in nodes:
            if n.type == "statement_list":
                out.extend(self._stmts(n.named_children))
            elif n.type != "comment":
                out.append(self.stmt(n))
        return out

    def stmt(self, node: Node) -> ga.Stmt:
        t = node.type
        span = self._span(node)

        if t == "return_statement":
            results: List[ga.Expr] = []
            for child in node.named_children:
                if child.type == "expression_list":
                    results.extend(self.expr(c) for c in child.named_children)
                elif child.type != "comment":
                    results.append(self.expr(child))
            return ga.ReturnStmt(results, **span)

        if t == "expression_statement":
            return ga.ExprStmt(self.expr(node.named_children[0]), **span)

        if t == "if_statement":
            cond = node.child_by_field_name("condition")
            cons = node.child_by_field_name("consequence")
            alt = node.child_by_field_name("alternative")
            return ga.IfStmt(
                self.expr(cond),
                self.block(cons) if cons is not None else ga.BlockStmt(),
                self.stmt(alt) if alt is not None else None,
                **span,
            )

        if t == "expression_switch_statement":
            value = node.child_by_field_name("value")
            clauses = [self._case(c, "value") for c in node.named_children if c.type in _CASE_TYPES]
            return ga.SwitchStmt(self.expr(value) if value is not None else None, clauses, **span)

        if t == "type_switch_statement":
            # case types act as the guard values of the switched expression
            value = node.child_by_field_name("value")
            clauses = [self._case(c, "type") for c in node.named_children if c.type in _TYPE_CASE_TYPES]
            return ga.SwitchStmt(self.expr(value) if value is not None else None, clauses, **span)

        if t == "select_statement":
            clauses = [
                self._case(c, "communication") for c in node.named_children if c.type in _COMM_CASE_TYPES
            ]
            return ga.SwitchStmt(None, clauses, **span)

        if t == "labeled_statement":
            inner = [c for c in node.named_children if c.type not in {"label_name", "comment"}]
            if inner:
                return self.stmt(inner[0])
            return ga.OtherStmt(kind=t, **span)

        if t == "block":
            return self.block(node)

        if t == "for_statement":
            body = node.child_by_field_name("body")
            return ga.ForStmt(self.block(body) if body is not None else ga.BlockStmt(), **span)

        return ga.OtherStmt(kind=t, **span)

    def _case(self, node: Node, value_field: str) -> ga.CaseClause:
        value_nodes = node.children_by_field_name(value_field)
        values: List[ga.Expr] = []
        for v in value_nodes:
            if v.type == "expression_list":
                values.extend(self.expr(c) for c in v.named_children)
            elif v.type in {"send_statement", "receive_statement"}:
                values.append(self._communication(v))
            else:
                values.append(self.expr(v))
        spans = {(v.start_byte, v.end_byte) for v in value_nodes}
        body_nodes = [c for c in node.named_children if (c.start_byte, c.end_byte) not in spans]
        return ga.CaseClause(values, self._stmts(body_nodes), **self._span(node))

    def _communication(self, node: Node) -> ga.Expr:
        """``v := <-ch`` gives ``<-ch``; ``ch <- v`` gives a ``<-`` binary."""
        if node.type == "receive_statement":
            return self.expr(node.child_by_field_name("right"))
        return ga.BinaryExpr(
            self.expr(node.child_by_field_name("channel")),
            "<-",
            self.expr(node.child_by_field_name("value")),
            **self._span(node),
        )

    # Expressions

    def expr(self, node: Optional[Node]) -> ga.Expr:
        if node is None:
            return ga.BadExpr()
        t = node.type
        span = self._span(node)

        if t in _IDENT_TYPES:
            return ga.Ident(self.text(node), **span)
        if t in _LITERAL_TYPES:
            return ga.BasicLit(self.text(node), **span)

        if t == "selector_expression":
            operand = node.child_by_field_name("operand")
            fld = node.child_by_field_name("field")
            return ga.SelectorExpr(
                self.expr(operand) if operand is not None else None,
                ga.Ident(self.text(fld), **self._span(fld)) if fld is not None else None,
                **span,
            )
        if t == "qualified_type":
            pkg = node.child_by_field_name("package")
            name = node.child_by_field_name("name")
            return ga.SelectorExpr(
                self.expr(pkg) if pkg is not None else None,
                ga.Ident(self.text(name), **self._span(name)) if name is not None else None,
                **span,
            )
        if t == "call_expression":
            fn = node.child_by_field_name("function")
            args = node.child_by_field_name("arguments")
            arg_nodes = args.named_children if args is not None else []
            return ga.CallExpr(
                self.expr(fn),
                [self.expr(a) for a in arg_nodes if a.type != "comment"],
                **span,
            )
        if t == "func_literal":
            params = node.child_by_field_name("parameters")
            body = node.child_by_field_name("body")
            return ga.FuncLit(
                self.params(params),
                self.block(body) if body is not None else ga.BlockStmt(),
                **span,
            )
        if t == "composite_literal":
            type_node = node.child_by_field_name("type")
            body = node.child_by_field_name("body")
            return ga.CompositeLit(
                self.expr(type_node) if type_node is not None else None,
                self._elements(body),
                **span,
            )
        if t == "literal_value":
            return ga.CompositeLit(None, self._elements(node), **span)
        if t == "literal_element":
            inner = node.named_children
            return self.expr(inner[0]) if inner else ga.BadExpr(kind=t, **span)
        if t == "parenthesized_expression":
            return ga.ParenExpr(self.expr(node.named_children[0]), **span)
        if t == "index_expression":
            operand = node.child_by_field_name("operand")
            index = node.child_by_field_name("index")
            return ga.IndexExpr(
                self.expr(operand), self.expr(index) if index is not None else None, **span
            )
        if t == "generic_type":
            return ga.IndexExpr(self.expr(node.child_by_field_name("type")), **span)
        if t == "slice_expression":
            return ga.SliceExpr(self.expr(node.child_by_field_name("operand")), **span)
        if t == "type_assertion_expression":
            type_node = node.child_by_field_name("type")
            return ga.TypeAssertExpr(
                self.expr(node.child_by_field_name("operand")),
                self.expr(type_node) if type_node is not None else None,
                **span,
            )
        if t == "pointer_type":
            return ga.StarExpr(self.expr(node.named_children[-1]), **span)
        if t == "unary_expression":
            op_node = node.child_by_field_name("operator")
            op = self.text(op_node) if op_node is not None else ""
            operand = self.expr(node.child_by_field_name("operand"))
            if op == "*":
                return ga.StarExpr(operand, **span)
            return ga.UnaryExpr(op, operand, **span)
        if t == "binary_expression":
            op_node = node.child_by_field_name("operator")
            return ga.BinaryExpr(
                self.expr(node.child_by_field_name("left")),
                self.text(op_node) if op_node is not None else "",
                self.expr(node.child_by_field_name("right")),
                **span,
            )

        return ga.BadExpr(kind=t, **span)

    def _elements(self, node: Optional[Node]) -> List[ga.Expr]:
        if node is None:
            return []
        elts: List[ga.Expr] = []
        for child in node.named_children:
            if child.type == "keyed_element":
                parts = [c for c in child.named_children if c.type != "comment"]
                if len(parts) >= 2:
                    elts.append(
                        ga.KeyValueExpr(self.expr(parts[0]), self.expr(parts[-1]), **self._span(child))
                    )
                continue
            if child.type != "comment":
                elts.append(self.expr(child))
        return elts
