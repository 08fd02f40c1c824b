import unittest

from astbuild import call, closure, composite, ctx_chain, ident, ret, sel, sel_on, step, stmt, trace

from stepgraph.chain import build_state_update
from stepgraph.go_ast import (
    BasicLit,
    BlockStmt,
    CaseClause,
    CompositeLit,
    IfStmt,
    SwitchStmt,
    UnaryExpr,
)
from stepgraph.model import MethodKind, TargetKind
from stepgraph.scanner import SourceScanner
from stepgraph.trace import ExecTrace, Verb


class TestVerb(unittest.TestCase):
    def test_known_and_generic_verbs(self):
        self.assertIs(Verb.of("Stop"), Verb.STOP)
        self.assertIs(Verb.of("Errorf"), Verb.ERROR)
        self.assertIs(Verb.of("ThenJump"), Verb.GENERIC)
        self.assertIs(Verb.of("Jump"), Verb.GENERIC)

    def test_generic_verb_families(self):
        self.assertTrue(Verb.is_then("ThenJump"))
        self.assertFalse(Verb.is_then("Jump"))
        self.assertTrue(Verb.is_ext("JumpExt"))
        self.assertFalse(Verb.is_ext("Jump"))
        self.assertTrue(Verb.is_wait("Sleep"))
        self.assertTrue(Verb.is_wait("WaitAny"))
        self.assertFalse(Verb.is_wait("Poll"))

    def test_then_after_non_wait_is_not_a_wait_transition(self):
        md = trace(step(), ret(ctx_chain(("Poll",), ("ThenJump", sel("s", "next")))))
        mt = md.transitions[0]
        self.assertFalse(mt.wait_transition)
        self.assertEqual(mt.transition_target, "s.next")


class TestTerminalVerbs(unittest.TestCase):
    def test_stop_without_guard(self):
        md = trace(step(), ret(ctx_chain(("Stop",))))
        self.assertEqual(len(md.transitions), 1)
        mt = md.transitions[0]
        self.assertEqual(mt.transition_target, "<stop>")
        self.assertEqual(mt.condition, "")
        self.assertFalse(mt.inherit_migration)

    def test_error_with_guard_still_stops(self):
        for verb in ("Error", "Errorf"):
            md = trace(
                step(),
                IfStmt(sel("s", "failed"), BlockStmt([ret(ctx_chain((verb, ident("err"))))])),
            )
            mt = md.transitions[0]
            self.assertEqual(mt.transition_target, "<stop>")
            self.assertEqual(mt.operation, "Error")
            self.assertEqual(mt.condition, "[s.failed]")
            self.assertFalse(mt.inherit_migration)

    def test_stay_never_appends(self):
        md = trace(
            step(),
            IfStmt(sel("s", "busy"), BlockStmt([ret(ctx_chain(("Stay",)))])),
            ret(ctx_chain(("Stay",))),
        )
        self.assertEqual(md.transitions, [])

    def test_jump_to_named_step(self):
        md = trace(step(), ret(ctx_chain(("Jump", sel("s", "stepNext")))))
        mt = md.transitions[0]
        self.assertEqual(mt.transition_target, "s.stepNext")
        self.assertTrue(mt.inherit_migration)

    def test_jump_to_nil_is_dropped(self):
        md = trace(step(), ret(ctx_chain(("Jump", ident("nil")))))
        self.assertEqual(md.transitions, [])


class TestRepeatVerbs(unittest.TestCase):
    def test_then_repeat_or_jump_emits_repeat_then_jump(self):
        md = trace(step(), ret(ctx_chain(("ThenRepeatOrJump", sel("s", "stepNext")))))
        self.assertEqual(len(md.transitions), 2)
        self.assertEqual(md.transitions[0].transition_target, "")
        self.assertEqual(md.transitions[1].transition_target, "s.stepNext")

    def test_then_repeat_or_jump_ext_only_repeats(self):
        md = trace(step(), ret(ctx_chain(("Poll",), ("ThenRepeatOrJumpExt",))))
        self.assertEqual(len(md.transitions), 1)
        self.assertEqual(md.transitions[0].transition_target, "")
        self.assertEqual(md.transitions[0].operation, "Poll")

    def test_repeat_operation(self):
        md = trace(step(), ret(ctx_chain(("Repeat", BasicLit("10")))))
        mt = md.transitions[0]
        self.assertEqual(mt.operation, "Repeat(10)")
        self.assertEqual(mt.transition_target, "")

    def test_restore_step_is_wait_transition(self):
        slot = composite(sel("smachine", "SlotStep"), Transition=sel("s", "stepBack"))
        md = trace(step(), ret(ctx_chain(("RestoreStep", slot))))
        mt = md.transitions[0]
        self.assertTrue(mt.wait_transition)
        self.assertEqual(mt.operation, "RestoreStep")
        self.assertEqual(mt.transition_target, "s.stepBack")

    def test_legacy_repeat_or_else_is_unknown(self):
        md = trace(step(), ret(ctx_chain(("Sleep",), ("ThenRepeatOrElse", sel("s", "x")))))
        mt = md.transitions[0]
        self.assertEqual(mt.transition_target, "<unknown>")
        self.assertEqual(mt.operation, "Sleep")


class TestThenVerbs(unittest.TestCase):
    def test_sleep_marks_wait_transition(self):
        md = trace(step(), ret(ctx_chain(("Sleep",), ("ThenJump", sel("s", "stepNext")))))
        mt = md.transitions[0]
        self.assertTrue(mt.wait_transition)
        self.assertEqual(mt.operation, "Sleep")
        self.assertEqual(mt.transition_target, "s.stepNext")

    def test_wait_family_marks_wait_transition(self):
        md = trace(step(), ret(ctx_chain(("WaitAny", sel("s", "link")), ("ThenRepeat",))))
        mt = md.transitions[0]
        self.assertTrue(mt.wait_transition)
        self.assertEqual(mt.operation, "WaitAny")
        self.assertEqual(mt.transition_target, "")

    def test_then_ext_uses_slot_step(self):
        slot = composite(
            sel("smachine", "SlotStep"),
            Transition=sel("s", "stepNext"),
            Migration=sel("s", "migrateNext"),
        )
        md = trace(step(), ret(ctx_chain(("Yield",), ("ThenJumpExt", slot))))
        mt = md.transitions[0]
        self.assertEqual(mt.transition_target, "s.stepNext")
        self.assertEqual(mt.migration, "s.migrateNext")
        self.assertFalse(mt.inherit_migration)

    def test_slot_step_with_only_migration_is_not_a_transition(self):
        slot = composite(sel("smachine", "SlotStep"), Migration=sel("s", "migrateNext"))
        md = trace(step(), ret(ctx_chain(("JumpExt", slot))))
        self.assertEqual(md.transitions, [])

    def test_dynamic_slot_step(self):
        md = trace(
            step(),
            ret(ctx_chain(("JumpExt", ident("next")))),
            ret(ctx_chain(("JumpExt", call(sel("s", "pick"))))),
        )
        self.assertEqual(md.transitions[0].transition_target, "DYNAMIC next")
        self.assertIs(md.transitions[0].transition.kind, TargetKind.DYNAMIC)
        self.assertEqual(md.transitions[1].transition_target, "DYNAMIC s.pick()")


class TestReplace(unittest.TestCase):
    def test_replace_with_reference(self):
        md = trace(step(), ret(ctx_chain(("Replace", sel("s", "construct")))))
        mt = md.transitions[0]
        self.assertEqual(mt.operation, "Replace")
        self.assertEqual(mt.transition_target, "s.construct")
        self.assertFalse(mt.inherit_migration)

    def test_replace_with_literal_becomes_subroutine_step(self):
        lit = UnaryExpr("&", CompositeLit(ident("SMOther")))
        md = trace(step(), ret(ctx_chain(("ReplaceWith", lit))))
        self.assertEqual(md.transitions[0].transition_target, "SMOther{}")
        self.assertEqual([s.name for s in md.sub_steps], ["SMOther{}"])
        self.assertTrue(md.sub_steps[0].is_subroutine)

    def test_unresolvable_replace_is_dropped(self):
        md = trace(step(), ret(ctx_chain(("Replace", ident("nil")))))
        self.assertEqual(md.transitions, [])


class TestCallSubroutine(unittest.TestCase):
    def test_three_arguments(self):
        md = trace(
            step(),
            ret(ctx_chain((
                "CallSubroutine",
                UnaryExpr("&", CompositeLit(ident("SMChild"))),
                sel("s", "migrateChild"),
                sel("s", "stepAfterChild"),
            ))),
        )
        self.assertEqual(len(md.sub_steps), 1)
        sub = md.sub_steps[0]
        self.assertEqual(sub.name, "stepRun.SMChild{}.1")
        self.assertTrue(sub.is_subroutine)
        self.assertEqual(sub.migration, "s.migrateChild")
        self.assertEqual(len(sub.transitions), 1)
        self.assertEqual(sub.transitions[0].transition_target, "s.stepAfterChild")

        mt = md.transitions[0]
        self.assertEqual(mt.operation, "CallSubroutine")
        self.assertEqual(mt.transition_target, "stepRun.SMChild{}.1")
        self.assertEqual(mt.hidden_propagate, "s.stepAfterChild")
        self.assertEqual(mt.migration, "")

    def test_wrong_arity_records_nothing(self):
        md = trace(
            step(),
            ret(ctx_chain(("CallSubroutine", sel("s", "child"), sel("s", "stepAfter")))),
        )
        self.assertEqual(md.transitions, [])
        self.assertEqual(md.sub_steps, [])


class TestInlineSteps(unittest.TestCase):
    def test_closure_becomes_traced_sub_step(self):
        fn = closure(ret(ctx_chain(("Stop",))))
        md = trace(step(), ret(ctx_chain(("Jump", fn))))
        self.assertEqual(md.transitions[0].transition_target, "stepRun.1")
        sub = md.sub_steps[0]
        self.assertEqual(sub.name, "stepRun.1")
        self.assertIs(sub.method_kind, MethodKind.EXECUTION)
        self.assertEqual(sub.context_arg_name, "ctx")
        self.assertTrue(sub.has_update_slot)
        self.assertEqual(sub.transitions[0].transition_target, "<stop>")

    def test_same_closure_twice_gives_two_sub_steps(self):
        fn = closure(ret(ctx_chain(("Stop",))))
        md = trace(
            step(),
            IfStmt(ident("ok"), BlockStmt([ret(ctx_chain(("Jump", fn)))])),
            ret(ctx_chain(("Jump", fn))),
        )
        self.assertEqual([s.name for s in md.sub_steps], ["stepRun.1", "stepRun.2"])

    def test_address_of_kept_for_state_update_kinds(self):
        md = step()
        et = ExecTrace(md, SourceScanner(b""))
        ref = UnaryExpr("&", sel("s", "x"))
        self.assertEqual(et.get_inline_func_expr(ref, MethodKind.EXECUTION), "")
        self.assertEqual(et.get_inline_func_expr(ref, MethodKind.CONSTRUCTION), "s.x")


class TestGuardsAndMigration(unittest.TestCase):
    def test_if_else_conditions(self):
        md = trace(
            step(),
            IfStmt(
                sel("s", "ready"),
                BlockStmt([ret(ctx_chain(("Jump", sel("s", "a"))))]),
                BlockStmt([ret(ctx_chain(("Jump", sel("s", "b"))))]),
            ),
        )
        self.assertEqual([t.condition for t in md.transitions], ["[s.ready]", "![s.ready]"])

    def test_switch_conditions(self):
        md = trace(
            step(),
            SwitchStmt(sel("s", "mode"), [
                CaseClause([BasicLit("1")], [ret(ctx_chain(("Jump", sel("s", "a"))))]),
                CaseClause([], [ret(ctx_chain(("Stop",)))]),
            ]),
        )
        self.assertEqual(
            [t.condition for t in md.transitions], ["[s.mode==1]", "![s.mode==1]"]
        )

    def test_default_migration_applies_to_later_transitions(self):
        md = trace(
            step(),
            ret(ctx_chain(("Jump", sel("s", "a")))),
            stmt(ctx_chain(("SetDefaultMigration", sel("s", "migrate")))),
            ret(ctx_chain(("Jump", sel("s", "b")))),
        )
        first, second = md.transitions
        self.assertTrue(first.inherit_migration)
        self.assertEqual(first.migration, "")
        self.assertFalse(second.inherit_migration)
        self.assertEqual(second.migration, "s.migrate")

    def test_closure_migration_is_resolved_per_transition(self):
        hook = closure(ret(ctx_chain(("Stay",))), ctx_type="MigrationContext")
        md = trace(
            step(),
            stmt(ctx_chain(("SetDefaultMigration", hook))),
            IfStmt(ident("ok"), BlockStmt([ret(ctx_chain(("Jump", sel("s", "a"))))])),
            ret(ctx_chain(("Jump", sel("s", "b")))),
        )
        self.assertEqual([s.name for s in md.sub_steps], ["stepRun.1", "stepRun.2"])
        self.assertTrue(all(s.method_kind is MethodKind.MIGRATION for s in md.sub_steps))
        self.assertEqual([t.migration for t in md.transitions], ["stepRun.1", "stepRun.2"])


class TestDeclarationKinds(unittest.TestCase):
    def test_declaration_init_uses_full_name(self):
        md = trace(step("GetInitStateFor", MethodKind.DECLARATION_INIT), ret(sel("s", "stepInit")))
        self.assertEqual(md.transitions[0].transition_target, "s.stepInit")

    def test_construction_uses_full_name(self):
        md = trace(
            step("construct", MethodKind.CONSTRUCTION),
            ret(UnaryExpr("&", CompositeLit(ident("SMDemo")))),
        )
        self.assertEqual(md.transitions[0].transition_target, "SMDemo{}")


class TestAdapters(unittest.TestCase):
    def test_delayed_start_adapter_operation(self):
        md = trace(
            step(),
            ret(ctx_chain(
                ("SomeAdapter",),
                ("PrepareAsync",),
                ("DelayedStart",),
                ("ThenJump", sel("s", "stepNext")),
            )),
        )
        self.assertEqual(list(md.adapters), ["SomeAdapter()"])
        mt = md.transitions[0]
        self.assertEqual(mt.operation, "PrepareAsync().DelayedStart")
        self.assertTrue(mt.delayed_start)
        self.assertEqual(mt.transition_target, "s.stepNext")

    def test_delayed_start_followed_by_sleep(self):
        md = trace(
            step(),
            ret(ctx_chain(
                ("SomeAdapter",),
                ("PrepareAsync", ident("fn")),
                ("DelayedStart",),
                ("Sleep",),
                ("ThenJump", sel("s", "stepNext")),
            )),
        )
        mt = md.transitions[0]
        self.assertEqual(mt.operation, "PrepareAsync(fn).Sleep")
        self.assertTrue(mt.wait_transition)
        self.assertTrue(mt.delayed_start)

    def test_statement_adapter_call(self):
        prep = call(sel("s", "adapter", "PrepareAsync"), ident("ctx"))
        md = trace(step(), stmt(call(sel_on(prep, "Start"))))
        self.assertEqual(list(md.adapters), ["s.adapter"])
        self.assertEqual(len(md.adapter_calls), 1)
        ac = md.adapter_calls[0]
        self.assertEqual((ac.kind, ac.prep_name, ac.adapter), ("Start", "PrepareAsync(ctx)", "s.adapter"))

    def test_adapter_names_restore_chain(self):
        expr = ctx_chain(("SomeAdapter",), ("PrepareAsync",), ("DelayedStart",))
        su = build_state_update(expr, "ctx")
        et = ExecTrace(step(), SourceScanner(b""))
        prep = su.parent
        receiver = prep.parent
        et.get_adapter_call_names(su, prep)
        self.assertIs(prep.parent, receiver)


if __name__ == "__main__":
    unittest.main()
