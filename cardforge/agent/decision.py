"""
Decision engine: one chat completion per turn, parsed into a ``ToolDecision``.

Parsing is parse-or-default.  ``parse_decision`` returns ``ParseOk`` or
``ParseErr``; ``DecisionEngine.decide`` substitutes ``fallback_decision()``
for every ``ParseErr`` so bad model output can never stop the loop from
terminating.  Transport errors from the chat client are not caught here.
"""
from __future__ import annotations

import dataclasses
import logging
import time
from typing import Union

from pydantic import ValidationError

from cardforge.agent.context import ExecutionContext
from cardforge.agent.prompts import get_prompt
from cardforge.errors import DecisionParseError
from cardforge.llm.client import ChatCompletion
from cardforge.schemas.agent_schemas import (
    CHARACTER_REQUIRED_FIELDS,
    EntryKind,
    ToolDecision,
    fallback_decision,
)
from cardforge.tools.registry import ToolRegistry
from cardforge.utils.json_extractor import load_json_object
from cardforge.utils.output_validator import MIN_SUPPLEMENTS, completeness_problems

logger = logging.getLogger("cardforge.decision")

KNOWLEDGE_PREVIEW = 5
RECENT_MESSAGES = 5


@dataclasses.dataclass(frozen=True)
class ParseOk:
    decision: ToolDecision


@dataclasses.dataclass(frozen=True)
class ParseErr:
    reason: str


ParseResult = Union[ParseOk, ParseErr]


def _decode(text: str) -> ToolDecision:
    data, reason = load_json_object(text)
    if data is None:
        raise DecisionParseError(reason)
    try:
        return ToolDecision.model_validate(data)
    except ValidationError as exc:
        detail = "; ".join(
            f"{'.'.join(str(p) for p in e['loc']) or 'decision'}: {e['msg']}"
            for e in exc.errors()[:3]
        )
        logger.warning("decision_parse_failed | strategy=validation | %s", detail)
        raise DecisionParseError(f"invalid decision: {detail}") from exc


def parse_decision(text: str) -> ParseResult:
    try:
        return ParseOk(_decode(text))
    except DecisionParseError as exc:
        return ParseErr(str(exc))


def parse_or_default(text: str) -> ToolDecision:
    result = parse_decision(text)
    if isinstance(result, ParseOk):
        return result.decision
    logger.warning("decision_fallback | reason=%s", result.reason)
    return fallback_decision()


class DecisionEngine:
    def __init__(self, chat_client: ChatCompletion, registry: ToolRegistry,
                 max_iterations: int, min_supplements: int = MIN_SUPPLEMENTS):
        self._client = chat_client
        self._registry = registry
        self._max_iterations = max_iterations
        self._min_supplements = min_supplements

    async def decide(self, context: ExecutionContext) -> ToolDecision:
        system_prompt, human_prompt = self.build_prompts(context)
        start = time.monotonic()
        text = await self._client.complete(system_prompt, human_prompt, context.llm_config)
        decision = parse_or_default(text)
        logger.info(
            "decision_made | action=%s | tool=%s", decision.action.value,
            decision.tool,
            extra={"session_id": context.session_id, "action": decision.action.value,
                   "iteration": context.iterations,
                   "duration_ms": int((time.monotonic() - start) * 1000)},
        )
        return decision

    def build_prompts(self, context: ExecutionContext) -> tuple[str, str]:
        system_prompt = get_prompt("decision_system").format(tools=self._registry.describe())

        card = context.generation_output.character_data
        missing = card.missing_fields()
        completed = [f for f in CHARACTER_REQUIRED_FIELDS if f not in missing]
        state = context.research_state

        human_prompt = get_prompt("decision_human").format(
            objective=state.main_objective or "(none)",
            character_progress=round(100 * len(completed) / len(CHARACTER_REQUIRED_FIELDS)),
            completed_fields=", ".join(completed) or "none",
            missing_fields=", ".join(missing) or "none",
            worldbook_progress=self._worldbook_progress(context),
            completion_status=self._completion_status(context),
            task_queue=_format_tasks(state.task_queue) or "(empty)",
            completed_tasks=_format_tasks(state.completed_tasks) or "(none)",
            knowledge_count=len(state.knowledge_base),
            knowledge_summary=_format_knowledge(state.knowledge_base) or "(none yet)",
            recent_conversation=_format_messages(context.message_history) or "(no messages)",
            iteration=context.iterations,
            max_iterations=self._max_iterations,
        )
        return system_prompt, human_prompt

    def _worldbook_progress(self, context: ExecutionContext) -> str:
        worldbook = context.generation_output.worldbook_data
        lines = []
        for kind in (EntryKind.STATUS, EntryKind.USER_SETTING, EntryKind.WORLD_VIEW):
            mark = "x" if worldbook.slot(kind) is not None else " "
            lines.append(f"[{mark}] {kind.value.upper()}")
        count = len(worldbook.supplements)
        mark = "x" if count >= self._min_supplements else " "
        lines.append(f"[{mark}] SUPPLEMENT ({count}/{self._min_supplements})")
        if worldbook.supplements:
            lines.append("Supplement keys so far: " + "; ".join(
                ", ".join(e.keys) for e in worldbook.supplements))
        return "\n".join(lines)

    def _completion_status(self, context: ExecutionContext) -> str:
        problems = completeness_problems(context.generation_output, self._min_supplements)
        if not problems:
            return "All requirements met. Call COMPLETE with finished=true."
        return "Not complete:\n" + "\n".join(f"- {p}" for p in problems)


def _format_tasks(tasks) -> str:
    lines = []
    for task in sorted(tasks, key=lambda t: t.priority):
        line = (f"- [{task.id}] {task.tool.value} (priority {task.priority}, "
                f"{task.status.value}): {task.description}")
        if task.dependencies:
            line += f" (depends on: {', '.join(task.dependencies)})"
        lines.append(line)
    return "\n".join(lines)


def _format_knowledge(entries) -> str:
    return "\n".join(
        f"- {e.source}: {e.content[:100]}..." for e in entries[:KNOWLEDGE_PREVIEW]
    )


def _format_messages(messages) -> str:
    return "\n".join(
        f"{m.role} ({m.type}): {m.content[:300]}" for m in messages[-RECENT_MESSAGES:]
    )
