"""Tests for RuleExecutor: selection, ordering, handlers and failure policies."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from sync_reconciler.sync.errors import RuleAbortRun
from sync_reconciler.sync.locks import LockManager
from sync_reconciler.sync.models import (
    Mapping,
    MutationType,
    Rule,
    RuleTiming,
    RuleType,
)
from sync_reconciler.sync.rules import RuleContext, RuleExecutor, select_rules

from conftest import build_sync


@pytest.fixture
def context() -> RuleContext:
    return RuleContext(
        synchronization=build_sync(),
        origin_id="1",
        action=MutationType.CREATE,
        source={"id": "1", "name": "Ada"},
    )


def rule(rule_id: str, **kwargs) -> Rule:
    kwargs.setdefault("type", RuleType.ERROR)
    return Rule(id=rule_id, **kwargs)


class TestSelectRules:
    def test_sorted_by_order_then_id(self):
        rules = [rule("b", order=1), rule("a", order=1), rule("c", order=0)]
        selected = select_rules(rules, RuleTiming.BEFORE, MutationType.CREATE)
        assert [r.id for r in selected] == ["c", "a", "b"]

    def test_filters_timing(self):
        rules = [rule("a"), rule("b", timing=RuleTiming.AFTER)]
        selected = select_rules(rules, RuleTiming.AFTER, MutationType.UPDATE)
        assert [r.id for r in selected] == ["b"]

    def test_rules_without_action_skip_deletes(self):
        rules = [rule("any"), rule("del", action=MutationType.DELETE)]
        assert [
            r.id for r in select_rules(rules, RuleTiming.BEFORE, MutationType.DELETE)
        ] == ["del"]
        assert [
            r.id for r in select_rules(rules, RuleTiming.BEFORE, MutationType.UPDATE)
        ] == ["any"]

    def test_action_specific_rule(self):
        rules = [rule("create-only", action=MutationType.CREATE)]
        assert select_rules(rules, RuleTiming.BEFORE, MutationType.UPDATE) == []


class TestFailurePolicies:
    def _error(self, policy: str) -> Rule:
        return rule(
            "fail",
            configuration={"message": "denied", "code": 403, "on_failure": policy},
        )

    def test_abort_object_returns_error(self, context):
        result = RuleExecutor().run_rules(
            [self._error("abort-object")], RuleTiming.BEFORE, context
        )
        assert not result.ok
        assert result.error.rule_id == "fail"
        assert result.error.code == 403
        assert "denied" in str(result.error)

    def test_default_policy_is_abort_object(self, context):
        result = RuleExecutor().run_rules(
            [rule("fail", configuration={"message": "x"})], RuleTiming.BEFORE, context
        )
        assert result.error.policy == "abort-object"

    def test_continue_records_warning(self, context):
        result = RuleExecutor().run_rules(
            [self._error("continue")], RuleTiming.BEFORE, context
        )
        assert result.ok
        assert context.warnings == ["Rule 'fail' failed: denied"]

    def test_abort_run_raises(self, context):
        with pytest.raises(RuleAbortRun) as exc_info:
            RuleExecutor().run_rules([self._error("abort-run")], RuleTiming.BEFORE, context)
        assert exc_info.value.policy == "abort-run"

    def test_later_rules_do_not_run_after_abort(self, context):
        collaborator = MagicMock(return_value=None)
        executor = RuleExecutor(collaborators={"download": collaborator})
        rules = [
            self._error("abort-object"),
            rule("later", type=RuleType.DOWNLOAD, order=1),
        ]
        executor.run_rules(rules, RuleTiming.BEFORE, context)
        collaborator.assert_not_called()

    def test_nested_error_configuration(self, context):
        result = RuleExecutor().run_rules(
            [rule("fail", configuration={"error": {"message": "nested", "code": 422}})],
            RuleTiming.BEFORE,
            context,
        )
        assert result.error.code == 422
        assert "nested" in str(result.error)


class TestConditions:
    def test_rule_skipped_when_condition_fails(self, context):
        conditional = rule(
            "fail",
            conditions={"==": [{"var": "source.name"}, "Bob"]},
            configuration={"message": "x"},
        )
        assert RuleExecutor().run_rules([conditional], RuleTiming.BEFORE, context).ok

    def test_condition_sees_context(self, context):
        conditional = rule(
            "fail",
            conditions={"==": [{"var": "action"}, "create"]},
            configuration={"message": "x"},
        )
        assert not RuleExecutor().run_rules([conditional], RuleTiming.BEFORE, context).ok


class TestHandlers:
    def test_mapping_rule_rewrites_source(self, context):
        mapping = Mapping(id="short", mapping={"n": "name"})
        executor = RuleExecutor(mapping_resolver={"short": mapping}.__getitem__)
        executor.run_rules(
            [rule("m", type=RuleType.MAPPING, configuration={"mapping": "short"})],
            RuleTiming.BEFORE,
            context,
        )
        assert context.source == {"n": "Ada"}

    def test_after_mapping_rule_rewrites_target(self, context):
        context.target = {"name": "Ada"}
        mapping = Mapping(id="short", mapping={"n": "name"})
        executor = RuleExecutor(mapping_resolver={"short": mapping}.__getitem__)
        executor.run_rules(
            [
                rule(
                    "m",
                    type=RuleType.MAPPING,
                    timing=RuleTiming.AFTER,
                    configuration={"mapping": "short"},
                )
            ],
            RuleTiming.AFTER,
            context,
        )
        assert context.target == {"n": "Ada"}
        assert context.source == {"id": "1", "name": "Ada"}

    def test_mapping_rule_without_mapping_fails(self, context):
        result = RuleExecutor().run_rules(
            [rule("m", type=RuleType.MAPPING)], RuleTiming.BEFORE, context
        )
        assert "no resolvable mapping" in str(result.error)

    def test_collaborator_result_path(self, context):
        collaborator = MagicMock(return_value="token-1")
        executor = RuleExecutor(collaborators={"authentication": collaborator})
        executor.run_rules(
            [
                rule(
                    "auth",
                    type=RuleType.AUTHENTICATION,
                    configuration={"result_path": "auth.token"},
                )
            ],
            RuleTiming.BEFORE,
            context,
        )
        assert context.source["auth"] == {"token": "token-1"}
        collaborator.assert_called_once()

    def test_collaborator_merge(self, context):
        executor = RuleExecutor(
            collaborators={"enrich": lambda r, ctx: {"extra": True}}
        )
        executor.run_rules(
            [
                rule(
                    "e",
                    type=RuleType.EXTEND_INPUT,
                    configuration={"collaborator": "enrich", "merge": True},
                )
            ],
            RuleTiming.BEFORE,
            context,
        )
        assert context.source == {"id": "1", "name": "Ada", "extra": True}

    def test_collaborator_result_stored_in_extra(self, context):
        executor = RuleExecutor(collaborators={"download": lambda r, ctx: b"data"})
        executor.run_rules(
            [rule("dl", type=RuleType.DOWNLOAD)], RuleTiming.BEFORE, context
        )
        assert context.extra == {"dl": b"data"}

    def test_missing_collaborator_fails(self, context):
        result = RuleExecutor().run_rules(
            [rule("up", type=RuleType.UPLOAD)], RuleTiming.BEFORE, context
        )
        assert "No collaborator registered for 'upload'" in str(result.error)

    def test_script_rule(self, context):
        scripts = MagicMock()
        scripts.run.return_value = {"source": {"id": "1", "scripted": True}}
        executor = RuleExecutor(script_evaluator=scripts)
        executor.run_rules(
            [rule("s", type=RuleType.SCRIPT, configuration={"script": "x"})],
            RuleTiming.BEFORE,
            context,
        )
        assert context.source == {"id": "1", "scripted": True}
        script, data = scripts.run.call_args.args
        assert script == "x"
        assert data["origin_id"] == "1"

    def test_script_rule_without_evaluator_fails(self, context):
        result = RuleExecutor().run_rules(
            [rule("s", type=RuleType.JAVASCRIPT)], RuleTiming.BEFORE, context
        )
        assert "No script evaluator configured" in str(result.error)

    def test_script_must_return_object(self, context):
        scripts = MagicMock()
        scripts.run.return_value = "nope"
        result = RuleExecutor(script_evaluator=scripts).run_rules(
            [rule("s", type=RuleType.SCRIPT)], RuleTiming.BEFORE, context
        )
        assert "did not return an object" in str(result.error)


class TestLocking:
    def test_lock_taken_and_released(self, context):
        locks = LockManager()
        executor = RuleExecutor(lock_manager=locks)
        executor.run_rules([rule("l", type=RuleType.LOCKING)], RuleTiming.BEFORE, context)
        assert locks.is_locked("people", "1")

        executor.release_locks(context)
        assert not locks.is_locked("people", "1")
        assert context.locks == []

    def test_held_lock_fails_object(self, context):
        locks = LockManager()
        locks.acquire("people", "1")
        result = RuleExecutor(lock_manager=locks).run_rules(
            [rule("l", type=RuleType.LOCKING)], RuleTiming.BEFORE, context
        )
        assert "is locked" in str(result.error)


class TestHandlerTable:
    def test_every_rule_type_has_a_handler(self):
        executor = RuleExecutor()
        assert set(executor._handlers) == set(RuleType)
