"""
Tool executor base class.

Every tool declares its kind, a model-facing description and a parameter
schema.  ``execute`` validates parameters before any work and converts
every failure (validation or internal) into a failed ``ExecutionResult``;
nothing a tool does may raise past this boundary.
"""
from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from cardforge.errors import ParameterValidationError
from cardforge.schemas.agent_schemas import (
    ExecutionResult,
    KnowledgeEntry,
    ParameterType,
    ToolInfo,
    ToolParameter,
    ToolType,
)

if TYPE_CHECKING:
    from cardforge.agent.context import ExecutionContext

logger = logging.getLogger("cardforge.tools")


def _matches_type(value: Any, expected: ParameterType) -> bool:
    if expected is ParameterType.STRING:
        return isinstance(value, str)
    if expected is ParameterType.NUMBER:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected is ParameterType.BOOLEAN:
        return isinstance(value, bool)
    if expected is ParameterType.OBJECT:
        return isinstance(value, dict)
    return isinstance(value, list)


def split_delimited(value: Any, delimiter: str) -> Any:
    """Turn a delimiter-joined string into a list of trimmed, non-empty items."""
    if isinstance(value, str):
        return [part.strip() for part in value.split(delimiter) if part.strip()]
    if isinstance(value, list):
        return [str(part).strip() for part in value if str(part).strip()]
    return value


class BaseTool(ABC):
    """Abstract base for all generation tools."""

    tool_type: ToolType
    name: str
    description: str
    parameters: List[ToolParameter] = []

    def info(self) -> ToolInfo:
        return ToolInfo(
            id=self.tool_type,
            name=self.name,
            description=self.description,
            parameters=list(self.parameters),
        )

    def normalize(self, parameters: Dict[str, Any]) -> Dict[str, Any]:
        """Coerce lenient model input (e.g. joined strings) before validation."""
        return parameters

    def validate(self, parameters: Dict[str, Any]) -> Optional[str]:
        """Return a human-readable problem, or ``None`` when parameters are usable."""
        for param in self.parameters:
            value = parameters.get(param.name)
            if value is None:
                if param.required:
                    return f"missing required parameter '{param.name}'"
                continue
            if not _matches_type(value, param.type):
                return (
                    f"parameter '{param.name}' must be of type {param.type.value}, "
                    f"got {type(value).__name__}"
                )
        return None

    async def execute(self, context: "ExecutionContext", parameters: Dict[str, Any]) -> ExecutionResult:
        params = self.normalize(dict(parameters or {}))
        problem = self.validate(params)
        if problem is not None:
            logger.info("tool_validation_failed | tool=%s | %s", self.tool_type.value, problem,
                        extra={"session_id": context.session_id, "tool": self.tool_type.value})
            return self.failure(problem)

        start = time.monotonic()
        try:
            result = await self.do_work(context, params)
        except ParameterValidationError as exc:
            logger.info("tool_validation_failed | tool=%s | %s", self.tool_type.value, exc,
                        extra={"session_id": context.session_id, "tool": self.tool_type.value})
            return self.failure(str(exc))
        except Exception as exc:
            logger.exception("tool_execution_failed | tool=%s", self.tool_type.value,
                             extra={"session_id": context.session_id, "tool": self.tool_type.value})
            return self.failure(str(exc) or type(exc).__name__)

        logger.info(
            "tool_executed | tool=%s | success=%s", self.tool_type.value, result.success,
            extra={"session_id": context.session_id, "tool": self.tool_type.value,
                   "duration_ms": int((time.monotonic() - start) * 1000)},
        )
        return result

    @abstractmethod
    async def do_work(self, context: "ExecutionContext", parameters: Dict[str, Any]) -> ExecutionResult:
        """Perform the tool's one bounded action on already-validated parameters."""
        ...

    def failure(self, message: str) -> ExecutionResult:
        return ExecutionResult.fail(f"{self.tool_type.value} failed: {message}")

    @staticmethod
    def create_knowledge_entry(source: str, content: str, url: Optional[str] = None,
                               relevance: int = 70) -> KnowledgeEntry:
        return KnowledgeEntry(
            source=source,
            content=content,
            url=url,
            relevance=max(0, min(100, int(relevance))),
        )
