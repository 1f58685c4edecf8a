"""Tool registry: tool kind → executor, built once and shared by every session."""
from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from cardforge.schemas.agent_schemas import ExecutionResult, ToolInfo, ToolType
from cardforge.tools.base import BaseTool

if TYPE_CHECKING:
    from cardforge.agent.context import ExecutionContext

logger = logging.getLogger("cardforge.registry")


def parse_tool_type(tool_id: Union[ToolType, str, None]) -> Optional[ToolType]:
    if isinstance(tool_id, ToolType):
        return tool_id
    if not isinstance(tool_id, str):
        return None
    try:
        return ToolType(tool_id.strip().upper())
    except ValueError:
        return None


class ToolRegistry:
    def __init__(self, tools: Optional[List[BaseTool]] = None):
        self._tools: Dict[ToolType, BaseTool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: BaseTool) -> None:
        """Register *tool*; a second registration for the same kind replaces the first."""
        if tool.tool_type in self._tools:
            logger.info("tool_replaced | tool=%s", tool.tool_type.value)
        self._tools[tool.tool_type] = tool

    def get(self, tool_id: Union[ToolType, str, None]) -> Optional[BaseTool]:
        tool_type = parse_tool_type(tool_id)
        if tool_type is None:
            return None
        return self._tools.get(tool_type)

    def list_tools(self) -> List[ToolInfo]:
        return [tool.info() for tool in self._tools.values()]

    def describe(self) -> str:
        """Tool declarations as the JSON the decision prompt embeds verbatim."""
        return json.dumps(
            [info.model_dump(mode="json") for info in self.list_tools()],
            indent=2,
            ensure_ascii=False,
        )

    async def dispatch(
        self,
        tool_id: Union[ToolType, str, None],
        context: "ExecutionContext",
        parameters: Dict[str, Any],
    ) -> ExecutionResult:
        tool = self.get(tool_id)
        if tool is None:
            return ExecutionResult.fail(f"Unknown tool: {tool_id}")
        return await tool.execute(context, parameters)

    def __contains__(self, tool_id: object) -> bool:
        return self.get(tool_id) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self._tools)
