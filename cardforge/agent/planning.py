"""
Plan/task bookkeeping.

Tasks whose completion can be read off the output (character fields,
worldbook slots, supplement count) are refreshed from the output after each
step; the rest complete or fail with the step that ran them.  Dependencies
are how Character -> Worldbook ordering is expressed.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from cardforge.agent.context import ExecutionContext
from cardforge.schemas.agent_schemas import (
    EntryKind,
    GenerationOutput,
    PlanTask,
    ResearchState,
    TaskAdjustment,
    TaskStatus,
    ToolType,
)

logger = logging.getLogger("cardforge.planning")

CHARACTER_TASK_ID = "task_character"
STATUS_TASK_ID = "task_status"
USER_SETTING_TASK_ID = "task_user_setting"
WORLD_VIEW_TASK_ID = "task_world_view"
SUPPLEMENT_TASK_ID = "task_supplements"

# Tools that need a complete character card regardless of what the plan says
REQUIRES_CHARACTER = frozenset({ToolType.STATUS, ToolType.USER_SETTING, ToolType.WORLD_VIEW})

_SLOT_FOR_TOOL = {
    ToolType.STATUS: EntryKind.STATUS,
    ToolType.USER_SETTING: EntryKind.USER_SETTING,
    ToolType.WORLD_VIEW: EntryKind.WORLD_VIEW,
}

OUTPUT_DERIVED_TOOLS = frozenset({ToolType.CHARACTER, ToolType.SUPPLEMENT, *_SLOT_FOR_TOOL})


def default_plan(objective: str) -> List[PlanTask]:
    return [
        PlanTask(id=CHARACTER_TASK_ID, tool=ToolType.CHARACTER, priority=1,
                 description=f"Build the character card for: {objective[:200]}"),
        PlanTask(id=STATUS_TASK_ID, tool=ToolType.STATUS, priority=2,
                 dependencies=[CHARACTER_TASK_ID],
                 description="Write the STATUS entry"),
        PlanTask(id=USER_SETTING_TASK_ID, tool=ToolType.USER_SETTING, priority=2,
                 dependencies=[CHARACTER_TASK_ID],
                 description="Write the USER_SETTING entry"),
        PlanTask(id=WORLD_VIEW_TASK_ID, tool=ToolType.WORLD_VIEW, priority=2,
                 dependencies=[CHARACTER_TASK_ID],
                 description="Write the WORLD_VIEW entry"),
        PlanTask(id=SUPPLEMENT_TASK_ID, tool=ToolType.SUPPLEMENT, priority=3,
                 dependencies=[WORLD_VIEW_TASK_ID],
                 description="Write at least five SUPPLEMENT entries keyed on world view elements"),
    ]


def task_satisfied(task: PlanTask, output: GenerationOutput, min_supplements: int) -> bool:
    if task.tool is ToolType.CHARACTER:
        return output.character_data.is_complete()
    if task.tool is ToolType.SUPPLEMENT:
        return len(output.worldbook_data.supplements) >= min_supplements
    kind = _SLOT_FOR_TOOL.get(task.tool)
    return kind is not None and output.worldbook_data.slot(kind) is not None


def _archive(state: ResearchState, task: PlanTask) -> None:
    state.task_queue = [t for t in state.task_queue if t.id != task.id]
    state.completed_tasks.append(task)


def refresh_task_statuses(context: ExecutionContext, min_supplements: int) -> None:
    """Complete every output-derived task the output now satisfies."""
    state = context.research_state
    for task in list(state.task_queue):
        if task.tool in OUTPUT_DERIVED_TOOLS and task_satisfied(task, context.generation_output, min_supplements):
            task.status = TaskStatus.COMPLETED
            _archive(state, task)


def finish_task(context: ExecutionContext, task: PlanTask, success: bool, min_supplements: int) -> None:
    """Settle the task a step ran for."""
    state = context.research_state
    if task.tool in OUTPUT_DERIVED_TOOLS:
        # Partial progress (e.g. two of eight fields) leaves the task open
        if not task_satisfied(task, context.generation_output, min_supplements):
            task.status = TaskStatus.PENDING
        return
    task.status = TaskStatus.COMPLETED if success else TaskStatus.FAILED
    _archive(state, task)


def resolve_task(state: ResearchState, tool: ToolType,
                 task_id: Optional[str] = None) -> Optional[PlanTask]:
    """The open task a ``use_tool`` call of *tool* works on, if any."""
    if task_id:
        task = state.find_task(task_id)
        if task is not None and task.tool is tool and task.status is not TaskStatus.COMPLETED:
            return task
    candidates = [t for t in state.open_tasks() if t.tool is tool]
    if not candidates:
        return None
    return min(candidates, key=lambda t: t.priority)


def unmet_dependencies(state: ResearchState, task: PlanTask) -> List[str]:
    unmet = []
    for dep_id in task.dependencies:
        dep = state.find_task(dep_id)
        if dep is None or dep.status is not TaskStatus.COMPLETED:
            unmet.append(dep_id)
    return unmet


def ordering_violations(context: ExecutionContext, tool: ToolType,
                        task: Optional[PlanTask]) -> List[str]:
    """Reasons the tool may not run yet; empty when it may."""
    problems = []
    if tool in REQUIRES_CHARACTER:
        missing = context.generation_output.character_data.missing_fields()
        if missing:
            problems.append(
                f"{tool.value} needs a complete character card first "
                f"(missing: {', '.join(missing)})"
            )
    if tool is ToolType.SUPPLEMENT and context.generation_output.worldbook_data.world_view is None:
        problems.append("SUPPLEMENT entries need the WORLD_VIEW entry first")
    if task is not None:
        unmet = unmet_dependencies(context.research_state, task)
        if unmet:
            problems.append(f"task {task.id} waits on unfinished tasks: {', '.join(unmet)}")
    return problems


def apply_adjustment(state: ResearchState, adjustment: TaskAdjustment) -> List[str]:
    """Apply a decision's plan change; returns ids of tasks it added."""
    added = []
    for task_id in adjustment.remove_task_ids:
        before = len(state.task_queue)
        state.task_queue = [t for t in state.task_queue if t.id != task_id]
        if len(state.task_queue) == before:
            logger.info("adjustment_remove_unknown | task_id=%s", task_id)
            continue
        # A removed task no longer gates its dependents
        for task in state.task_queue:
            if task_id in task.dependencies:
                task.dependencies = [d for d in task.dependencies if d != task_id]
                logger.info("adjustment_dependency_dropped | task_id=%s | removed=%s", task.id, task_id)

    for spec in adjustment.add_tasks:
        unknown = [d for d in spec.dependencies if state.find_task(d) is None]
        if unknown:
            logger.info("adjustment_task_skipped | unknown_dependencies=%s", unknown)
            continue
        task = PlanTask.from_spec(spec)
        state.task_queue.append(task)
        added.append(task.id)
    return added
