from ralphloop.budget import BudgetSnapshot, BudgetStatus
from ralphloop.config_loader import PromptConfig
from ralphloop.prompts import PromptComposer
from ralphloop.state import IterationState, IterationStatus
from ralphloop.task_spec import parse_task

TASK_WITH_TESTS = parse_task(
    "---\ntest_command: make test\n---\n- [x] one\n- [ ] two\n- [ ] three\n"
)
TASK_NO_TESTS = parse_task("- [ ] one\n")


def _budget(allocated=0, status=BudgetStatus.HEALTHY) -> BudgetSnapshot:
    return BudgetSnapshot(
        allocated_tokens=allocated,
        warn_threshold=64_000,
        critical_threshold=76_000,
        capacity=80_000,
        status=status,
    )


def test_prompt_is_a_pure_function_of_inputs():
    composer = PromptComposer()
    state = IterationState(iteration=2, status=IterationStatus.ACTIVE, started_at="2026-01-01T00:00:00Z")
    args = (state, TASK_WITH_TESTS, _budget(), "FAILED test_x", "### Sign: x")
    assert composer.iteration_prompt(*args) == composer.iteration_prompt(*args)


def test_prompt_announces_next_iteration_and_criteria():
    msg = PromptComposer().iteration_prompt(
        IterationState(iteration=2), TASK_WITH_TESTS, _budget(), None, ""
    )
    assert "Ralph Iteration 3" in msg
    assert "2 of 3 criteria remaining" in msg
    assert "`make test`" in msg
    assert "Tests determine completion, not checkboxes" in msg
    assert "(no learned signs yet)" in msg
    assert "CONTEXT" not in msg


def test_prompt_without_test_command():
    msg = PromptComposer().iteration_prompt(IterationState(), TASK_NO_TESTS, _budget(), None, "")
    assert "Test-Driven Completion" not in msg
    assert "When ALL criteria are [x]: `RALPH_COMPLETE`" in msg


def test_budget_warnings():
    composer = PromptComposer()
    warn = composer.iteration_prompt(
        IterationState(), TASK_NO_TESTS, _budget(70_000, BudgetStatus.WARNING), None, ""
    )
    crit = composer.iteration_prompt(
        IterationState(), TASK_NO_TESTS, _budget(77_000, BudgetStatus.CRITICAL), None, ""
    )
    assert "CONTEXT WARNING: 70,000 tokens" in warn
    assert "CONTEXT CRITICAL" in crit


def test_last_test_output_is_truncated():
    output = "\n".join(f"line {i}" for i in range(100))
    msg = PromptComposer(PromptConfig(test_output_lines=5)).iteration_prompt(
        IterationState(), TASK_WITH_TESTS, _budget(), output, ""
    )
    assert "### Last Test Output:" in msg
    assert "line 4" in msg
    assert "line 5\n" not in msg
    assert "(truncated)" in msg


def test_learned_guardrails_are_included():
    msg = PromptComposer().iteration_prompt(
        IterationState(), TASK_NO_TESTS, _budget(), None, "### Sign: Do not loop"
    )
    assert "## Guardrails\n### Sign: Do not loop" in msg


def test_failure_message_carries_exit_and_output():
    msg = PromptComposer(PromptConfig(failure_output_lines=2)).test_failure_message(
        "make test", "a\nb\nc\n", "3"
    )
    assert "TESTS FAILED" in msg
    assert "Exit code: 3" in msg
    assert "a\nb" in msg
    assert ".last_test_output" in msg


def test_resume_message_names_iteration():
    assert '"Continue Ralph from iteration 7"' in PromptComposer.resume_message(7)
