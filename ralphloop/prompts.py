"""
RALPH Prompt Composer

Builds every message RALPH sends to the agent. Pure functions of their
inputs: no file or process I/O happens here, so the same state always
yields the same text.
"""

from __future__ import annotations

from ralphloop.budget import BudgetSnapshot, BudgetStatus
from ralphloop.config_loader import PromptConfig, WorkspaceConfig
from ralphloop.state import IterationState
from ralphloop.task_spec import TaskSpec
from ralphloop.verifier import head_lines


class PromptComposer:
    def __init__(
        self,
        prompt: PromptConfig | None = None,
        workspace: WorkspaceConfig | None = None,
    ):
        self.prompt = prompt or PromptConfig()
        self.workspace = workspace or WorkspaceConfig()

    @property
    def _task_file(self) -> str:
        return self.workspace.task_file

    @property
    def _state_dir(self) -> str:
        return self.workspace.state_dir

    def context_warning(self, budget: BudgetSnapshot) -> str:
        if budget.status is BudgetStatus.CRITICAL:
            return (
                f"🔴 CONTEXT CRITICAL: {budget.allocated_tokens:,} tokens used of "
                f"{budget.capacity:,}. Wrap up, commit, and update progress.md."
            )
        if budget.status is BudgetStatus.WARNING:
            return f"⚠️ CONTEXT WARNING: {budget.allocated_tokens:,} tokens used. Approaching limit."
        return ""

    def iteration_prompt(
        self,
        state: IterationState,
        task: TaskSpec,
        budget: BudgetSnapshot,
        last_test_output: str | None,
        learned_guardrails: str,
    ) -> str:
        """The instruction payload injected at the start of an iteration."""
        iteration = state.iteration + 1
        sections = [f"🔄 **Ralph Iteration {iteration}**"]

        warning = self.context_warning(budget)
        if warning:
            sections.append(warning)

        sections.append(
            "## Your Task\n"
            f"Read {self._task_file} for the task description and completion criteria.\n"
            f"{task.unchecked_count} of {len(task.criteria)} criteria remaining."
        )
        sections.append(
            "## Key Files\n"
            f"- `{self._state_dir}/progress.md` - What's been done\n"
            f"- `{self._state_dir}/guardrails.md` - Signs to follow\n"
            f"- `{self._state_dir}/edits.jsonl` - Edit history"
        )

        if task.test_command:
            block = (
                "## ⚠️ IMPORTANT: Test-Driven Completion\n"
                f"**Test command:** `{task.test_command}`\n\n"
                "- Run tests AFTER making changes\n"
                "- Task is NOT complete until tests pass\n"
                "- Checking boxes is not enough - tests must verify"
            )
            if last_test_output:
                excerpt = head_lines(last_test_output, self.prompt.test_output_lines)
                block += f"\n\n### Last Test Output:\n```\n{excerpt}\n```"
            sections.append(block)

        steps = [
            "Read progress.md to see what's done",
            f"Work on the next unchecked criterion in {self._task_file}",
        ]
        if task.test_command:
            steps.append(f"Run tests: `{task.test_command}`")
            steps.append("If tests pass, check off the criterion")
            steps.append("Repeat until all criteria pass tests")
            steps.append("When ALL criteria are [x] AND tests pass: `RALPH_COMPLETE`")
        else:
            steps.append("Check off the criterion when it is done")
            steps.append("When ALL criteria are [x]: `RALPH_COMPLETE`")
        steps.append("If stuck 3+ times on same issue: `RALPH_GUTTER`")
        sections.append(
            "## Ralph Protocol\n" + "\n".join(f"{i}. {s}" for i, s in enumerate(steps, start=1))
        )

        sections.append(f"## Guardrails\n{learned_guardrails or '(no learned signs yet)'}")

        if task.test_command:
            sections.append("**Remember: Tests determine completion, not checkboxes.**")

        return "\n\n".join(sections)

    def continue_message(self, next_iteration: int, task: TaskSpec) -> str:
        msg = (
            f"🔄 Iteration {next_iteration}\n\n"
            f"{task.unchecked_count} criteria remaining. "
            f"Continue working on the next unchecked item in {self._task_file}."
        )
        if task.test_command:
            msg += (
                f"\n\n**Run tests after changes:** `{task.test_command}`\n"
                "Tests must pass for the task to be complete."
            )
        return msg

    def test_failure_message(self, command: str, output: str, exit_label: str) -> str:
        excerpt = head_lines(
            output,
            self.prompt.failure_output_lines,
            hint=f"see {self._state_dir}/.last_test_output for full output",
        )
        return (
            "🚨 TESTS FAILED - TASK IS NOT COMPLETE\n\n"
            "You checked all criteria but the tests do not pass.\n"
            f"Test command: {command}\n"
            f"Exit code: {exit_label}\n\n"
            f"Output:\n{excerpt}\n\n"
            "**Checked boxes alone do not complete the task. Fix the code until "
            "tests pass, running the test command after each fix.**"
        )

    @staticmethod
    def read_critical_messages() -> tuple[str, str]:
        """(user message, agent message) when a read pushes context to critical."""
        return (
            "⚠️ Ralph: Context is critically full. Consider starting a fresh conversation.",
            "CONTEXT CRITICAL: You are approaching context limits. "
            "Wrap up current work, commit, and suggest starting fresh.",
        )

    @staticmethod
    def resume_message(iteration: int) -> str:
        return f'⚠️ Context full. Start a NEW conversation: "Continue Ralph from iteration {iteration}"'
