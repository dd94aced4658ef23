"""Tests for trigger evaluation — schedule matching, branch and path filters."""

from datetime import UTC, datetime

import pytest

from nightshift.core.config import DEFAULT_PATHS_IGNORE
from nightshift.core.errors import PipelineDefinitionError
from nightshift.orchestration.triggers import (
    PushEvent,
    PushTrigger,
    ScheduledTrigger,
    ScheduleTick,
    TriggerKind,
    evaluate_trigger,
    normalize_branch,
)

RULES = [
    ScheduledTrigger("10 3 * * *"),
    PushTrigger(branches=("main",), paths_ignore=tuple(DEFAULT_PATHS_IGNORE)),
]


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class TestEvents:
    def test_push_event_normalizes_ref_and_paths(self):
        ev = PushEvent("refs/heads/main", ["./src/main.rs", "docs\\a.md"], commit="abc")
        assert ev.branch == "main"
        assert ev.changed_files == ("src/main.rs", "docs/a.md")
        assert ev.kind == TriggerKind.PUSH

    def test_normalize_branch(self):
        assert normalize_branch("refs/heads/release/1.0") == "release/1.0"
        assert normalize_branch("main") == "main"

    def test_schedule_tick_kind(self):
        assert ScheduleTick(datetime(2024, 1, 1, tzinfo=UTC)).kind == TriggerKind.SCHEDULED


# ---------------------------------------------------------------------------
# Scheduled trigger
# ---------------------------------------------------------------------------


class TestScheduledTrigger:
    def test_invalid_cron_rejected(self):
        with pytest.raises(PipelineDefinitionError):
            ScheduledTrigger("not a cron")

    def test_matches_nightly_minute(self):
        rule = ScheduledTrigger("10 3 * * *")
        assert rule.matches(ScheduleTick(datetime(2024, 1, 1, 3, 10, tzinfo=UTC)))
        assert rule.matches(ScheduleTick(datetime(2024, 1, 1, 3, 10, 42, tzinfo=UTC)))
        assert not rule.matches(ScheduleTick(datetime(2024, 1, 1, 3, 11, tzinfo=UTC)))

    def test_naive_time_is_utc(self):
        assert ScheduledTrigger("10 3 * * *").matches(ScheduleTick(datetime(2024, 1, 1, 3, 10)))

    def test_tick_for_other_expression_does_not_match(self):
        tick = ScheduleTick(datetime(2024, 1, 1, 3, 10, tzinfo=UTC), cron="0 0 * * *")
        assert not ScheduledTrigger("10 3 * * *").matches(tick)

    def test_next_fire(self):
        rule = ScheduledTrigger("10 3 * * *")
        after = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        assert rule.next_fire(after) == datetime(2024, 1, 2, 3, 10, tzinfo=UTC)

    def test_next_fire_is_strictly_after(self):
        rule = ScheduledTrigger("10 3 * * *")
        at = datetime(2024, 1, 1, 3, 10, tzinfo=UTC)
        assert rule.next_fire(at) == datetime(2024, 1, 2, 3, 10, tzinfo=UTC)

    def test_previous_fire_includes_boundary(self):
        rule = ScheduledTrigger("10 3 * * *")
        at = datetime(2024, 1, 1, 3, 10, tzinfo=UTC)
        assert rule.previous_fire(at) == at
        assert rule.previous_fire(datetime(2024, 1, 1, 3, 9, tzinfo=UTC)) == datetime(
            2023, 12, 31, 3, 10, tzinfo=UTC
        )


# ---------------------------------------------------------------------------
# Push trigger
# ---------------------------------------------------------------------------


class TestPushTrigger:
    def test_requires_a_branch(self):
        with pytest.raises(PipelineDefinitionError):
            PushTrigger(branches=())

    def test_branch_glob(self):
        rule = PushTrigger(branches=("release/*",))
        assert rule.branch_matches("release/1.0")
        assert not rule.branch_matches("main")

    def test_ignored_files(self):
        rule = PushTrigger(paths_ignore=("docs/**",))
        assert rule.ignored_files(["docs/a.md", "src/x.rs"]) == ["docs/a.md"]


# ---------------------------------------------------------------------------
# evaluate_trigger
# ---------------------------------------------------------------------------


class TestEvaluateTrigger:
    def test_scheduled_tick_admitted(self):
        decision = evaluate_trigger(RULES, ScheduleTick(datetime(2024, 1, 1, 3, 10, tzinfo=UTC)))
        assert decision.admitted
        assert decision.kind == TriggerKind.SCHEDULED

    def test_scheduled_tick_off_schedule_rejected(self):
        decision = evaluate_trigger(RULES, ScheduleTick(datetime(2024, 1, 1, 4, 0, tzinfo=UTC)))
        assert not decision.admitted
        assert decision.reason == "no schedule matches tick"

    def test_docs_only_push_rejected(self):
        decision = evaluate_trigger(RULES, PushEvent("main", ["docs/readme.md"]))
        assert not decision.admitted
        assert decision.reason == "all changed files match paths-ignore"

    def test_mixed_push_admitted(self):
        decision = evaluate_trigger(RULES, PushEvent("main", ["docs/readme.md", "src/main.rs"]))
        assert decision.admitted
        assert decision.kind == TriggerKind.PUSH

    def test_other_branch_rejected(self):
        decision = evaluate_trigger(RULES, PushEvent("feature-x", ["src/main.rs"]))
        assert not decision.admitted
        assert "not filtered in" in decision.reason

    def test_empty_change_set_rejected(self):
        assert not evaluate_trigger(RULES, PushEvent("main", [])).admitted

    @pytest.mark.parametrize(
        "changed",
        [
            [".cirrus.yml"],
            ["ci/build-docs.sh", "ci/generate-docs.py", "ci/subst-release-info.py"],
            [".github/workflows/pages.yml", "README.md", "term/README.md"],
            ["docs/a/b/c.png"],
        ],
    )
    def test_every_ignore_entry_is_honored(self, changed):
        assert not evaluate_trigger(RULES, PushEvent("main", changed)).admitted

    @pytest.mark.parametrize(
        "changed",
        [["Cargo.lock"], ["ci/deploy.sh"], [".github/workflows/nightly.yml"], ["docs.rs"]],
    )
    def test_non_ignored_file_admits(self, changed):
        assert evaluate_trigger(RULES, PushEvent("main", changed)).admitted

    def test_adding_ignored_files_never_changes_admission(self):
        base = ["src/lib.rs"]
        assert evaluate_trigger(RULES, PushEvent("main", base)).admitted
        assert evaluate_trigger(RULES, PushEvent("main", base + ["docs/x.md", "y.md"])).admitted

    def test_pipeline_without_push_rule(self):
        decision = evaluate_trigger([ScheduledTrigger("10 3 * * *")], PushEvent("main", ["a.rs"]))
        assert not decision.admitted
        assert decision.reason == "pipeline has no push trigger"

    def test_decision_carries_commit(self):
        decision = evaluate_trigger(RULES, PushEvent("main", ["src/a.rs"], commit="deadbeef"))
        assert decision.commit == "deadbeef"
        assert decision.to_dict() == {"admitted": True, "kind": "push", "reason": "push to main"}

    def test_evaluation_is_pure(self):
        event = PushEvent("main", ["src/a.rs"])
        assert evaluate_trigger(RULES, event) == evaluate_trigger(RULES, event)
