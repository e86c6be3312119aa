"""
RALPH Controller — the decision engine.

It is NOT smart. It is deterministic.

Each lifecycle hook is a one-shot call from the host runtime. The
controller re-reads everything it needs from the workspace, acts, and
persists the result before returning:

  - before-prompt: compose the iteration's instructions
  - before-read:   feed the context budget (never blocks)
  - after-edit:    feed the thrash detector
  - stop:          verify completion and pick the next transition

Stop transitions, in priority order:
  1. All criteria checked → run the test command (if any) → Complete / ContinueFixing
  2. Iteration ceiling reached → MaxedOut
  3. Context critical or gutter risk HIGH → Handoff / AwaitingHuman
  4. Otherwise → Continuing
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable

from loguru import logger

from ralphloop.audit_logger import AuditLogger
from ralphloop.budget import (
    BudgetSnapshot,
    BudgetStatus,
    ContextAccess,
    ContextBudgetTracker,
    TokenEstimator,
    byte_heuristic,
)
from ralphloop.config_loader import RalphConfig, handoff_credential, load_config
from ralphloop.event_bus import EventBus
from ralphloop.failures import (
    FailureEntry,
    FailureLog,
    FailurePattern,
    FailureRecord,
    GutterRisk,
    VerificationFailureNote,
)
from ralphloop.handoff import HandoffLauncher
from ralphloop.hooks import Decision, HookName, HookRequest, HookResponse
from ralphloop.prompts import PromptComposer
from ralphloop.state import IterationState, IterationStatus, utc_now
from ralphloop.task_spec import MissingTask, TaskSpec, read_task
from ralphloop.thrash import EditRecord, EditThrashDetector
from ralphloop.verifier import TestOutcome, head_lines, run_test_command
from ralphloop.workspace import Journal, Workspace


class Outcome(str, Enum):
    COMPLETE = "complete"
    CONTINUE_FIXING = "continue_fixing"
    MAXED_OUT = "maxed_out"
    HANDOFF_TRIGGERED = "handoff_triggered"
    AWAITING_HUMAN = "awaiting_human"
    CONTINUING = "continuing"
    PASSTHROUGH = "passthrough"


@dataclass
class StopResult:
    outcome: Outcome
    response: HookResponse
    state: IterationState | None = None
    test_outcome: TestOutcome | None = None

    @property
    def decision(self) -> Decision | None:
        return self.response.decision


class Controller:
    """
    The RALPH brainstem.

    One instance per workspace root. Holds no state between hook calls
    beyond configuration; collaborators are rebuilt per call so a session
    rotation between calls is always observed.
    """

    def __init__(
        self,
        root: Path,
        config: RalphConfig | None = None,
        handoff: HandoffLauncher | None = None,
        estimator: TokenEstimator = byte_heuristic,
        bus: EventBus | None = None,
    ):
        self.root = root.resolve()
        self.config = config or load_config(self.root)
        self.workspace = Workspace(self.root, self.config)
        self.composer = PromptComposer(self.config.prompt, self.config.workspace)
        self.handoff = handoff or HandoffLauncher(self.config.handoff, handoff_credential(self.config))
        self.estimator = estimator
        self.bus = bus or EventBus()
        self._audit = AuditLogger(self.workspace.events_path, self.bus)

    # -----------------------------------------------------------------------
    # Collaborators
    # -----------------------------------------------------------------------

    def budget_tracker(self) -> ContextBudgetTracker:
        return ContextBudgetTracker(
            Journal(self.workspace.context_journal_path, ContextAccess),
            self.workspace.session().session_id,
            self.config.context,
            self.estimator,
        )

    def failure_log(self) -> FailureLog:
        return FailureLog(
            Journal(self.workspace.failures_journal_path, FailureEntry),
            self.workspace.session().session_id,
        )

    def thrash_detector(self) -> EditThrashDetector:
        return EditThrashDetector(
            Journal(self.workspace.edits_journal_path, EditRecord),
            self.failure_log(),
            self.workspace.session().session_id,
            self.config.thrash,
        )

    def _load_task(self) -> TaskSpec | None:
        try:
            task = read_task(self.workspace.task_path)
        except MissingTask:
            logger.debug(f"[CONTROLLER] No task file at {self.workspace.task_path}; passing through")
            return None
        self.workspace.ensure()
        return task

    # -----------------------------------------------------------------------
    # Dispatch
    # -----------------------------------------------------------------------

    def handle(self, hook: HookName, request: HookRequest) -> HookResponse:
        if hook is HookName.BEFORE_PROMPT:
            return self.before_prompt()
        if hook is HookName.BEFORE_READ:
            return self.before_read(request.resource_path, request.resource_content, request.size)
        if hook is HookName.AFTER_EDIT:
            return self.after_edit(request.resource_path, request.edit_spans())
        return self.on_stop().response

    # -----------------------------------------------------------------------
    # before-prompt
    # -----------------------------------------------------------------------

    def before_prompt(self) -> HookResponse:
        task = self._load_task()
        if task is None:
            return HookResponse(continue_=True)

        state = self.workspace.state_store().load()
        budget = self.budget_tracker().snapshot()
        last_output = self.workspace.read_last_test_output() if task.test_command else None
        message = self.composer.iteration_prompt(
            state,
            task,
            budget,
            last_output,
            self.workspace.guardrails().learned_text(),
        )

        iteration = state.iteration + 1
        self.workspace.append_progress(
            f"\n---\n\n### 🔄 Iteration {iteration} Started\n**Time:** {utc_now()}\n"
        )
        self.bus.emit("iteration_started", HookName.BEFORE_PROMPT.value, iteration, {
            "criteria_remaining": task.unchecked_count,
            "context_status": budget.status.value,
        })
        return HookResponse(continue_=True, agent_message=message)

    # -----------------------------------------------------------------------
    # before-read
    # -----------------------------------------------------------------------

    def before_read(
        self,
        resource: str,
        content: str | None = None,
        size: int | None = None,
    ) -> HookResponse:
        task = self._load_task()
        if task is None:
            return HookResponse(continue_=True, permission="allow")

        resource_id = resource
        if resource and not Path(resource).is_absolute():
            resource_id = str(self.root / resource)

        result = self.budget_tracker().record_read(resource_id, content, size)
        iteration = self.workspace.state_store().load().iteration
        self.bus.emit("resource_read", HookName.BEFORE_READ.value, iteration, {
            "resource": resource_id,
            "estimated_tokens": result.entry.estimated_tokens,
            "allocated_tokens": result.snapshot.allocated_tokens,
            "status": result.snapshot.status.value,
        })

        if result.wrap_up:
            user_msg, agent_msg = self.composer.read_critical_messages()
            return HookResponse(
                continue_=True,
                permission="allow",
                user_message=user_msg,
                agent_message=agent_msg,
            )
        return HookResponse(continue_=True, permission="allow")

    # -----------------------------------------------------------------------
    # after-edit
    # -----------------------------------------------------------------------

    def after_edit(self, file_path: str, spans: Iterable[tuple[str, str]]) -> HookResponse:
        task = self._load_task()
        if task is None:
            return HookResponse()

        iteration = self.workspace.state_store().load().iteration
        outcome = self.thrash_detector().record_edit(file_path, spans, iteration)
        record = outcome.record

        self.workspace.append_progress(
            f"\n### Edit: {Path(file_path).name}\n"
            f"- Time: {record.timestamp}\n"
            f"- Change: {record.chars} chars {record.change_type.value}\n"
            f"- Path: {file_path}\n"
        )
        self.bus.emit("file_edited", HookName.AFTER_EDIT.value, iteration, {
            "file": file_path,
            "change_type": record.change_type.value,
            "chars": record.chars,
            "edit_count": outcome.edit_count,
        })

        if outcome.thrashing:
            self.bus.emit("thrashing_detected", HookName.AFTER_EDIT.value, iteration, {
                "file": file_path,
                "edit_count": outcome.edit_count,
                "gutter_risk": outcome.gutter_risk.value,
            })
            self.workspace.guardrails().add(
                trigger=f"Before editing {file_path} again",
                instruction=(
                    "This file has been rewritten repeatedly without progress. Stop, re-read "
                    "the failing test output, and change approach instead of re-editing."
                ),
                added_after=f"Iteration {iteration} - file thrashing ({outcome.edit_count} edits)",
                title=f"Thrashing on {Path(file_path).name}",
            )
            if outcome.gutter_risk is GutterRisk.HIGH:
                logger.warning("[CONTROLLER] Gutter risk HIGH; next stop will rotate context")

        return HookResponse()

    # -----------------------------------------------------------------------
    # stop
    # -----------------------------------------------------------------------

    def on_stop(self) -> StopResult:
        task = self._load_task()
        if task is None:
            return StopResult(Outcome.PASSTHROUGH, HookResponse(decision=Decision.STOP))

        state = self.workspace.state_store().load()

        # 1. Completion always comes first, even with context exhausted
        if task.all_checked:
            if not task.criteria:
                logger.warning("[CONTROLLER] Task file has no checklist criteria")
            if not task.test_command:
                return self._complete(state, task, None)

            outcome = run_test_command(
                task.test_command,
                self.root,
                timeout=self.config.tests.timeout_seconds,
                shell=self.config.tests.shell,
            )
            self.workspace.write_last_test_output(outcome.output)
            if outcome.passed:
                return self._complete(state, task, outcome)
            return self._continue_fixing(state, task, outcome)

        # 2. Iteration ceiling
        if task.max_iterations > 0 and state.iteration >= task.max_iterations:
            return self._maxed_out(state, task)

        # 3. Context / gutter exhaustion
        budget = self.budget_tracker().snapshot()
        risk = self.failure_log().gutter_risk(self.config.thrash.gutter_threshold)
        if budget.status is BudgetStatus.CRITICAL or risk is GutterRisk.HIGH:
            return self._exhausted(state, task, budget.allocated_tokens, risk)

        # 4. Normal continuation
        return self._continue(state, task, budget)

    # -----------------------------------------------------------------------
    # Transitions
    # -----------------------------------------------------------------------

    def _complete(self, state: IterationState, task: TaskSpec, outcome: TestOutcome | None) -> StopResult:
        now = utc_now()
        verified = outcome is not None
        new_state = state.model_copy(update={
            "status": IterationStatus.COMPLETE,
            "completed_at": now,
        })

        if verified:
            self.workspace.append_progress(
                f"\n---\n\n## 🎉 RALPH COMPLETE (Tests Verified)\n"
                f"- Iteration: {state.iteration}\n"
                f"- Time: {now}\n"
                f"- Test command: {task.test_command}\n"
                f"- Result: ✅ PASSED\n"
            )
            note = "✅ Task completed - verified by tests."
            user_msg = "✅ Ralph: task complete, verified by tests."
        else:
            self.workspace.append_progress(
                f"\n---\n\n## 🎉 RALPH COMPLETE (No Test Verification)\n"
                f"- Iteration: {state.iteration}\n"
                f"- Time: {now}\n"
                f"- Warning: No test_command defined - completion not verified\n"
            )
            note = "✅ Task completed (unverified - no test command)."
            user_msg = "⚠️ Ralph: all criteria checked, but no test_command is defined - completion is unverified."
            logger.warning("[CONTROLLER] Completing without test verification")

        self.workspace.state_store().save(new_state, note)
        self.bus.emit("complete", HookName.STOP.value, state.iteration, {
            "verified": verified,
            "test_command": task.test_command,
        })
        if verified:
            self.bus.emit("tests_passed", HookName.STOP.value, state.iteration, {
                "duration_ms": outcome.duration_ms,
            })

        return StopResult(
            Outcome.COMPLETE,
            HookResponse(decision=Decision.STOP, user_message=user_msg),
            new_state,
            outcome,
        )

    def _continue_fixing(self, state: IterationState, task: TaskSpec, outcome: TestOutcome) -> StopResult:
        now = utc_now()
        command = task.test_command or ""
        failures = self.failure_log()
        session_id = failures.session_id

        excerpt = head_lines(outcome.output, self.config.prompt.failure_output_lines)
        self.workspace.append_progress(
            f"\n---\n\n### ❌ Tests FAILED (Iteration {state.iteration})\n"
            f"- Time: {now}\n"
            f"- Test command: {command}\n"
            f"- Exit code: {outcome.exit_label}\n\n"
            f"```\n{excerpt}\n```\n\n"
            "**Criteria are checked but tests fail. The task is NOT complete.**\n"
        )
        failures.append(VerificationFailureNote(
            command=command,
            exit_code=outcome.exit_code,
            timed_out=outcome.timed_out,
            iteration=state.iteration,
            session_id=session_id,
        ))

        streak = failures.consecutive_test_failures(command)
        if streak >= self.config.thrash.gutter_threshold:
            failures.append(FailureRecord(
                pattern=FailurePattern.REPEATED_COMMAND_FAILURE,
                subject=command,
                occurrence_count=streak,
                iteration=state.iteration,
                session_id=session_id,
            ))
            self.workspace.guardrails().add(
                trigger=f"When `{command}` keeps failing",
                instruction=(
                    "The same test command failed repeatedly after all criteria were checked. "
                    "Uncheck the criteria that are not really done and fix the root cause first."
                ),
                added_after=f"Iteration {state.iteration} - {streak} consecutive test failures",
                title="Repeated test failure",
            )

        new_state = IterationState(
            iteration=state.iteration + 1,
            status=IterationStatus.ACTIVE,
            started_at=now,
        )
        self.workspace.state_store().save(
            new_state, f"Iteration {new_state.iteration} - Fixing test failures..."
        )
        self.bus.emit("tests_failed", HookName.STOP.value, state.iteration, {
            "exit_code": outcome.exit_code,
            "timed_out": outcome.timed_out,
            "launch_error": outcome.launch_error,
            "consecutive_failures": streak,
        })

        return StopResult(
            Outcome.CONTINUE_FIXING,
            HookResponse(
                decision=Decision.BLOCK,
                user_message="⚠️ Tests failed. Ralph is continuing to fix.",
                agent_message=self.composer.test_failure_message(command, outcome.output, outcome.exit_label),
            ),
            new_state,
            outcome,
        )

    def _maxed_out(self, state: IterationState, task: TaskSpec) -> StopResult:
        self.workspace.append_progress(
            f"\n---\n\n## 🛑 Max Iterations Reached\n"
            f"- Iteration: {state.iteration}\n"
            f"- Max allowed: {task.max_iterations}\n"
            f"- Criteria remaining: {task.unchecked_count}\n"
        )
        new_state = state.model_copy(update={"status": IterationStatus.MAX_ITERATIONS_REACHED})
        self.workspace.state_store().save(new_state)
        self.bus.emit("max_iterations_reached", HookName.STOP.value, state.iteration, {
            "max_iterations": task.max_iterations,
            "criteria_remaining": task.unchecked_count,
        })
        logger.warning(f"[CONTROLLER] Max iterations ({task.max_iterations}) reached")

        return StopResult(
            Outcome.MAXED_OUT,
            HookResponse(
                decision=Decision.STOP,
                user_message=(
                    f"🛑 Ralph stopped: max iterations ({task.max_iterations}) reached with "
                    f"{task.unchecked_count} criteria remaining."
                ),
            ),
            new_state,
        )

    def _exhausted(
        self,
        state: IterationState,
        task: TaskSpec,
        allocated: int,
        risk: GutterRisk,
    ) -> StopResult:
        self.workspace.append_progress(
            f"\n---\n\n## ⚠️ Context Limit (Iteration {state.iteration})\n"
            f"- Time: {utc_now()}\n"
            f"- Context: {allocated} tokens\n"
            f"- Gutter risk: {risk.value}\n"
            f"- Criteria remaining: {task.unchecked_count}\n"
        )
        self.bus.emit("context_exhausted", HookName.STOP.value, state.iteration, {
            "allocated_tokens": allocated,
            "gutter_risk": risk.value,
        })

        if self.handoff.launch(self.root):
            self.bus.emit("handoff_triggered", HookName.STOP.value, state.iteration, {})
            return StopResult(
                Outcome.HANDOFF_TRIGGERED,
                HookResponse(
                    decision=Decision.STOP,
                    user_message="🌩️ Context full. Cloud Agent spawned to continue.",
                ),
                state,
            )

        return StopResult(
            Outcome.AWAITING_HUMAN,
            HookResponse(
                decision=Decision.STOP,
                user_message=self.composer.resume_message(state.iteration),
            ),
            state,
        )

    def _continue(self, state: IterationState, task: TaskSpec, budget: BudgetSnapshot) -> StopResult:
        now = utc_now()
        self.workspace.append_progress(
            f"\n---\n\n## Iteration {state.iteration} Summary\n"
            f"- Ended: {now}\n"
            f"- Context: {budget.allocated_tokens} tokens ({budget.status.value})\n"
            f"- Criteria remaining: {task.unchecked_count}\n"
            f"- Status: Continuing...\n"
        )
        new_state = IterationState(
            iteration=state.iteration + 1,
            status=IterationStatus.ACTIVE,
            started_at=now,
        )
        self.workspace.state_store().save(new_state)
        self.bus.emit("continuing", HookName.STOP.value, new_state.iteration, {
            "criteria_remaining": task.unchecked_count,
        })

        return StopResult(
            Outcome.CONTINUING,
            HookResponse(
                decision=Decision.BLOCK,
                agent_message=self.composer.continue_message(new_state.iteration, task),
            ),
            new_state,
        )
