"""
Iteration loop for one generation session.

State machine::

    IDLE -> THINKING -> EXECUTING -> THINKING | WAITING_FOR_USER | COMPLETED | FAILED

Each turn asks the decision engine for one decision and dispatches it.
Tool failures (validation, ordering, internal errors, timeouts) become
failed steps and the loop moves on; anything escaping the turn itself
(decision transport, session store) fails the session.  Every entry point
returns a ``GenerationResult`` and never raises.

The store is written at session start, after every step and on every
pause or terminal transition.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Optional, TypeVar

from cardforge.agent.context import ExecutionContext
from cardforge.agent.decision import DecisionEngine
from cardforge.agent.merge import merge_result
from cardforge.agent.planning import (
    apply_adjustment,
    finish_task,
    ordering_violations,
    refresh_task_statuses,
    resolve_task,
)
from cardforge.errors import DependencyOrderingViolation, IterationBudgetExceeded
from cardforge.llm.client import ChatCompletion
from cardforge.schemas.agent_schemas import (
    DecisionAction,
    ExecutionResult,
    GenerationResult,
    PlanTask,
    SessionStatus,
    Step,
    StepStatus,
    TaskStatus,
    ToolDecision,
    ToolType,
)
from cardforge.store.base import SessionStore
from cardforge.tools.registry import ToolRegistry
from cardforge.utils.logging_config import SessionAdapter, get_logger
from cardforge.utils.output_validator import MIN_SUPPLEMENTS, completeness_problems

T = TypeVar("T")

DEFAULT_CLARIFICATION = "Could you clarify what you would like the character and world to be?"


class AgentEngine:
    def __init__(
        self,
        context: ExecutionContext,
        registry: ToolRegistry,
        chat_client: ChatCompletion,
        store: SessionStore,
        max_iterations: int = 50,
        timeout_ms: int = 300_000,
        enforce_task_ordering: bool = True,
        min_supplements: int = MIN_SUPPLEMENTS,
    ):
        self.context = context
        self.registry = registry
        self.store = store
        self.max_iterations = max_iterations
        self.timeout_s = timeout_ms / 1000
        self.enforce_task_ordering = enforce_task_ordering
        self.min_supplements = min_supplements
        self.decision_engine = DecisionEngine(chat_client, registry, max_iterations, min_supplements)
        self.logger = SessionAdapter(get_logger("cardforge.engine"), context.session_id)
        self._lock = asyncio.Lock()
        # Messages before this index are already in the store
        self._persisted_messages = len(context.message_history)

    @property
    def session_id(self) -> str:
        return self.context.session_id

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def start(self, user_request: str) -> GenerationResult:
        """Run a fresh session on *user_request*."""
        if self.context.status is not SessionStatus.IDLE:
            return self._rejected(f"Session already started (status: {self.context.status.value})")
        self.context.research_state.main_objective = user_request
        self.context.add_message("user", user_request, "user_input")
        return await self._run()

    async def resume(self, user_response: str) -> GenerationResult:
        """Feed the user's answer back in and continue the loop.

        Only valid while the session waits for the user; otherwise nothing
        about the session changes.
        """
        if self.context.status is not SessionStatus.WAITING_FOR_USER:
            return self._rejected(
                f"Session is not waiting for user input (status: {self.context.status.value})"
            )
        if self.busy:
            return self._rejected("Session is already processing a turn")
        self.context.pending_question = None
        self.context.add_message("user", user_response, "user_input")
        return await self._run()

    def _rejected(self, reason: str) -> GenerationResult:
        self.logger.info("entry_rejected | %s", reason)
        return GenerationResult.failed(self.session_id, reason, status=self.context.status)

    async def _run(self) -> GenerationResult:
        async with self._lock:
            try:
                self.context.status = SessionStatus.THINKING
                await self.store.update_status(self.session_id, SessionStatus.THINKING)
                await self._flush_messages()
                return await self._loop()
            except Exception as exc:
                self.logger.exception("orchestration_failed", extra={"event_type": "session_failed"})
                return await self._finish_failed(f"Generation aborted: {str(exc) or type(exc).__name__}",
                                                 persist_errors_ok=True)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _loop(self) -> GenerationResult:
        ctx = self.context
        while True:
            if ctx.iterations >= self.max_iterations:
                return await self._finish_failed(str(IterationBudgetExceeded(self.max_iterations)),
                                                 persist_errors_ok=True)

            ctx.iterations += 1
            ctx.status = SessionStatus.THINKING
            self.logger.info("turn_started", extra={"iteration": ctx.iterations})
            decision = await self._with_timeout(self.decision_engine.decide(ctx))

            ctx.status = SessionStatus.EXECUTING
            outcome = await self._dispatch(decision)
            if outcome is not None:
                return outcome

            if self._ready_to_complete():
                return await self._finish_completed()

    def _ready_to_complete(self) -> bool:
        if self.context.research_state.open_tasks():
            return False
        return not completeness_problems(self.context.generation_output, self.min_supplements)

    async def _dispatch(self, decision: ToolDecision) -> Optional[GenerationResult]:
        if decision.reasoning:
            self.context.add_message("agent", decision.reasoning, "agent_thinking")
        if decision.task_adjustment is not None:
            added = apply_adjustment(self.context.research_state, decision.task_adjustment)
            if added:
                self.logger.info("plan_adjusted | added=%s", added)

        action = decision.action
        if action is DecisionAction.USE_TOOL:
            if decision.tool_type is ToolType.ASK_USER:
                params = decision.parameters
                return await self._ask_user(decision, params.get("question") or decision.message,
                                            params.get("options") or decision.options)
            return await self._use_tool(decision)
        if action is DecisionAction.ASK_USER:
            return await self._ask_user(decision, decision.message or decision.parameters.get("question"),
                                        decision.options or decision.parameters.get("options"))
        if action is DecisionAction.COMPLETE_TASK:
            return await self._complete_task(decision)
        return await self._request_clarification(decision)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def _use_tool(self, decision: ToolDecision) -> Optional[GenerationResult]:
        ctx = self.context
        tool = self.registry.get(decision.tool)
        if tool is None:
            error = f"Unknown tool: {decision.tool}"
            ctx.add_message("system", error, "tool_failure")
            self.logger.info("unknown_tool | tool=%s", decision.tool, extra={"tool": decision.tool})
            await self._record_step(decision, StepStatus.FAILED, error=error)
            return None

        tool_type = tool.tool_type
        task = resolve_task(ctx.research_state, tool_type, decision.task_id)
        if self.enforce_task_ordering:
            problems = ordering_violations(ctx, tool_type, task)
            if problems:
                violation = DependencyOrderingViolation(
                    task.id if task else tool_type.value, [],
                    message="; ".join(problems),
                )
                ctx.add_message("system", f"{tool_type.value} rejected: {violation}", "tool_failure")
                self.logger.info("ordering_violation | tool=%s | %s", tool_type.value, violation,
                                 extra={"tool": tool_type.value})
                await self._record_step(decision, StepStatus.FAILED, task=task, error=str(violation))
                return None

        if task is not None:
            task.status = TaskStatus.EXECUTING
        result = await self._execute_tool(tool_type, decision.parameters)
        merge_result(ctx, tool_type, result)

        if task is not None:
            finish_task(ctx, task, result.success, self.min_supplements)
        refresh_task_statuses(ctx, self.min_supplements)

        if result.success:
            ctx.add_message("agent", _describe_result(tool_type, result), "tool_result")
        else:
            ctx.add_message("system", result.error or f"{tool_type.value} failed", "tool_failure")
        await self._record_step(
            decision,
            StepStatus.COMPLETED if result.success else StepStatus.FAILED,
            task=task,
            output=result.model_dump(mode="json"),
            error=result.error,
        )

        if tool_type is ToolType.COMPLETE and result.success and result.result.get("finished"):
            problems = completeness_problems(ctx.generation_output, self.min_supplements)
            if not problems:
                return await self._finish_completed()
            ctx.add_message("system", "Completion rejected, still missing: " + "; ".join(problems),
                            "system_info")
        return None

    async def _execute_tool(self, tool_type: ToolType, parameters: Dict[str, Any]) -> ExecutionResult:
        try:
            return await self._with_timeout(
                self.registry.dispatch(tool_type, self.context, parameters)
            )
        except TimeoutError:
            self.logger.warning("tool_timeout | tool=%s", tool_type.value, extra={"tool": tool_type.value})
            return ExecutionResult.fail(f"{tool_type.value} failed: timed out after {self.timeout_s:g}s")

    async def _ask_user(self, decision: ToolDecision, question: Optional[str],
                        options: Optional[List[str]]) -> Optional[GenerationResult]:
        params: Dict[str, Any] = {"question": question}
        if options:
            params["options"] = options
        result = await self._execute_tool(ToolType.ASK_USER, params)
        if not result.success:
            self.context.add_message("system", result.error or "ASK_USER failed", "tool_failure")
            await self._record_step(decision, StepStatus.FAILED, tool=ToolType.ASK_USER,
                                    params=params, output=result.model_dump(mode="json"),
                                    error=result.error)
            return None

        payload = result.result
        self.context.pending_question = payload["question"]
        self.context.add_message("agent", payload["message"], "agent_question")
        await self._record_step(decision, StepStatus.COMPLETED, tool=ToolType.ASK_USER,
                                params=params, output=result.model_dump(mode="json"))
        return await self._pause(payload["message"], payload["options"])

    async def _request_clarification(self, decision: ToolDecision) -> GenerationResult:
        message = decision.message or decision.reasoning or DEFAULT_CLARIFICATION
        self.context.pending_question = None
        self.context.add_message("agent", message, "agent_question")
        await self._record_step(decision, StepStatus.COMPLETED, output={"message": message})
        return await self._pause(message, decision.options)

    async def _complete_task(self, decision: ToolDecision) -> GenerationResult:
        ctx = self.context
        if decision.result is not None:
            ctx.generation_output = decision.result
        await self._record_step(decision, StepStatus.COMPLETED,
                                output={"adopted_result": decision.result is not None})

        problems = completeness_problems(ctx.generation_output, self.min_supplements)
        if not problems:
            return await self._finish_completed()
        return await self._finish_failed(
            "Generation ended before the output was complete: " + "; ".join(problems),
            persist_errors_ok=True,
        )

    # ------------------------------------------------------------------
    # Transitions and checkpoints
    # ------------------------------------------------------------------

    async def _pause(self, message: str, options: Optional[List[str]]) -> GenerationResult:
        self.context.status = SessionStatus.WAITING_FOR_USER
        await self._checkpoint_terminal(SessionStatus.WAITING_FOR_USER)
        self.logger.info("waiting_for_user", extra={"event_type": "paused"})
        return GenerationResult.waiting(self.session_id, message, options)

    async def _finish_completed(self) -> GenerationResult:
        ctx = self.context
        ctx.status = SessionStatus.COMPLETED
        card = ctx.generation_output.character_data
        ctx.add_message(
            "agent",
            f"Generation complete: {card.name or 'character'} with "
            f"{len(ctx.generation_output.worldbook_data.entries())} worldbook entries.",
            "system_info",
        )
        await self._checkpoint_terminal(SessionStatus.COMPLETED)
        self.logger.info("session_completed", extra={"event_type": "session_completed",
                                                      "iteration": ctx.iterations})
        return GenerationResult.succeeded(self.session_id, ctx.generation_output)

    async def _finish_failed(self, error: str, persist_errors_ok: bool = False) -> GenerationResult:
        ctx = self.context
        ctx.status = SessionStatus.FAILED
        ctx.pending_question = None
        ctx.add_message("system", f"Generation failed: {error}", "system_info")
        try:
            await self._checkpoint_terminal(SessionStatus.FAILED)
        except Exception:
            if not persist_errors_ok:
                raise
            # The store may be what broke; the caller still gets a result
            self.logger.exception("failure_checkpoint_failed")
        self.logger.warning("session_failed | %s", error, extra={"event_type": "session_failed",
                                                                 "iteration": ctx.iterations})
        return GenerationResult.failed(self.session_id, error, output=ctx.generation_output)

    async def _record_step(
        self,
        decision: ToolDecision,
        status: StepStatus,
        *,
        task: Optional[PlanTask] = None,
        tool: Optional[ToolType] = None,
        params: Optional[Dict[str, Any]] = None,
        output: Any = None,
        error: Optional[str] = None,
    ) -> Step:
        ctx = self.context
        step = Step(
            execution_order=ctx.next_execution_order(),
            action=decision.action,
            tool=tool or decision.tool_type,
            task_id=task.id if task else decision.task_id,
            input=params if params is not None else dict(decision.parameters),
            output=output,
            status=status,
            reasoning=decision.reasoning,
            error=error,
        )
        ctx.steps.append(step)
        await self.store.add_step(self.session_id, step)
        await self._flush_messages()
        await self.store.update_output(self.session_id, ctx.generation_output)
        await self.store.save_snapshot(self.session_id, ctx.snapshot())
        return step

    async def _checkpoint_terminal(self, status: SessionStatus) -> None:
        await self._flush_messages()
        await self.store.update_output(self.session_id, self.context.generation_output)
        await self.store.save_snapshot(self.session_id, self.context.snapshot())
        await self.store.update_status(self.session_id, status)

    async def _flush_messages(self) -> None:
        pending = self.context.message_history[self._persisted_messages:]
        for message in pending:
            await self.store.add_message(self.session_id, message)
            self._persisted_messages += 1

    async def _with_timeout(self, awaitable: Awaitable[T]) -> T:
        async with asyncio.timeout(self.timeout_s):
            return await awaitable


def _describe_result(tool_type: ToolType, result: ExecutionResult) -> str:
    payload = result.result or {}
    if tool_type is ToolType.CHARACTER:
        missing = payload.get("missing_fields") or []
        text = f"Character updated: {', '.join(payload.get('updated_fields', []))}."
        return text + (f" Still missing: {', '.join(missing)}." if missing else " Card complete.")
    if tool_type in (ToolType.STATUS, ToolType.USER_SETTING, ToolType.WORLD_VIEW, ToolType.SUPPLEMENT):
        entry = payload["entry"]
        return f"{tool_type.value} entry '{entry.comment}' written (insert_order {entry.insert_order})."
    if tool_type is ToolType.SEARCH:
        return payload.get("summary", "Search finished.")
    if tool_type is ToolType.REFLECT:
        return f"Plan extended with {len(payload.get('new_tasks', []))} tasks."
    if tool_type is ToolType.COMPLETE:
        return payload.get("message", "")
    return f"{tool_type.value} succeeded."
