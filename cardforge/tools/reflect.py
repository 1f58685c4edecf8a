"""REFLECT tool: lets the model extend its own plan."""
from __future__ import annotations

from typing import Any, Dict, List

from pydantic import ValidationError

from cardforge.errors import ParameterValidationError
from cardforge.schemas.agent_schemas import (
    ExecutionResult,
    ParameterType,
    TaskSpec,
    ToolParameter,
    ToolType,
)
from cardforge.tools.base import BaseTool


class ReflectTool(BaseTool):
    tool_type = ToolType.REFLECT
    name = "Reflect"
    description = (
        "Review progress and add follow-up tasks to the plan. Each new task names "
        "a tool, a description and optionally parameters, dependencies (ids of "
        "existing tasks) and a priority (1 is most urgent)."
    )
    parameters = [
        ToolParameter(name="new_tasks", type=ParameterType.ARRAY, required=True,
                      description="Array of {description, tool, parameters?, dependencies?, priority?}"),
        ToolParameter(name="reasoning", type=ParameterType.STRING,
                      description="Why these tasks are needed"),
    ]

    async def do_work(self, context, parameters: Dict[str, Any]) -> ExecutionResult:
        raw_tasks = parameters["new_tasks"]
        if not raw_tasks:
            raise ParameterValidationError("new_tasks must contain at least one task")

        specs: List[TaskSpec] = []
        for index, raw in enumerate(raw_tasks):
            if not isinstance(raw, dict):
                raise ParameterValidationError(f"new_tasks[{index}] must be an object")
            try:
                spec = TaskSpec(**raw)
            except ValidationError as exc:
                first = exc.errors()[0]
                loc = ".".join(str(p) for p in first.get("loc", []))
                raise ParameterValidationError(
                    f"new_tasks[{index}].{loc}: {first.get('msg', 'invalid')}"
                ) from exc

            unknown = [d for d in spec.dependencies
                       if context.research_state.find_task(d) is None]
            if unknown:
                raise ParameterValidationError(
                    f"new_tasks[{index}] depends on unknown tasks: {', '.join(unknown)}"
                )
            specs.append(spec)

        return ExecutionResult.ok({
            "new_tasks": specs,
            "reasoning": parameters.get("reasoning", ""),
        })
