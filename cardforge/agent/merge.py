"""Result merge table: tool kind -> how a successful result lands in the context."""
from __future__ import annotations

from typing import Any, Callable, Dict

from cardforge.agent.context import ExecutionContext
from cardforge.schemas.agent_schemas import (
    EntryKind,
    ExecutionResult,
    PlanTask,
    ToolType,
    WorldbookEntry,
)

MergeHandler = Callable[[ExecutionContext, Dict[str, Any]], None]


def _merge_knowledge(context: ExecutionContext, result: Dict[str, Any]) -> None:
    context.add_knowledge(list(result.get("knowledge_entries", [])))


def _merge_character(context: ExecutionContext, result: Dict[str, Any]) -> None:
    card = context.generation_output.character_data
    context.generation_output.character_data = card.model_copy(update=result["character_data"])


def _merge_structural(context: ExecutionContext, result: Dict[str, Any]) -> None:
    entry: WorldbookEntry = result["entry"]
    # One slot per kind: a rewrite replaces the previous entry
    setattr(context.generation_output.worldbook_data, entry.kind.value, entry)


def _merge_supplement(context: ExecutionContext, result: Dict[str, Any]) -> None:
    entry: WorldbookEntry = result["entry"]
    if entry.kind is not EntryKind.SUPPLEMENT:
        raise ValueError(f"SUPPLEMENT produced a {entry.kind.value} entry")
    context.generation_output.worldbook_data.supplements.append(entry)


def _merge_tasks(context: ExecutionContext, result: Dict[str, Any]) -> None:
    for spec in result.get("new_tasks", []):
        context.research_state.task_queue.append(PlanTask.from_spec(spec))


def _no_merge(context: ExecutionContext, result: Dict[str, Any]) -> None:
    return None


MERGE_HANDLERS: Dict[ToolType, MergeHandler] = {
    ToolType.SEARCH: _merge_knowledge,
    ToolType.ASK_USER: _no_merge,
    ToolType.CHARACTER: _merge_character,
    ToolType.STATUS: _merge_structural,
    ToolType.USER_SETTING: _merge_structural,
    ToolType.WORLD_VIEW: _merge_structural,
    ToolType.SUPPLEMENT: _merge_supplement,
    ToolType.REFLECT: _merge_tasks,
    ToolType.COMPLETE: _no_merge,
}

_unhandled = set(ToolType) - set(MERGE_HANDLERS)
if _unhandled:
    raise RuntimeError(f"No merge handler for tool kinds: {sorted(t.value for t in _unhandled)}")


def merge_result(context: ExecutionContext, tool: ToolType, result: ExecutionResult) -> None:
    if not result.success:
        return
    MERGE_HANDLERS[tool](context, result.result or {})
