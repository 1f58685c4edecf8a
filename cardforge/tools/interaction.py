"""ASK_USER and COMPLETE: the two tools that talk about the session itself."""
from __future__ import annotations

import logging
from typing import Any, Dict, List

from cardforge.schemas.agent_schemas import ExecutionResult, ParameterType, ToolParameter, ToolType
from cardforge.tools.base import BaseTool

logger = logging.getLogger("cardforge.tools")

MAX_OPTIONS = 3
MIN_OPTIONS = 2


def format_question(question: str, options: List[str]) -> str:
    if not options:
        return question
    lines = [question, "", "Suggested answers:"]
    lines.extend(f"{i}. {opt}" for i, opt in enumerate(options, 1))
    return "\n".join(lines)


class AskUserTool(BaseTool):
    tool_type = ToolType.ASK_USER
    name = "Ask User"
    description = (
        "Pause and ask the user a question when the request is ambiguous or a "
        "creative choice should be theirs. Optionally offer 2-3 suggested answers."
    )
    parameters = [
        ToolParameter(name="question", type=ParameterType.STRING, required=True,
                      description="The question to ask"),
        ToolParameter(name="options", type=ParameterType.ARRAY,
                      description="2-3 suggested answers"),
    ]

    async def do_work(self, context, parameters: Dict[str, Any]) -> ExecutionResult:
        question = parameters["question"].strip()
        if not question:
            return self.failure("question must not be empty")

        options = [str(o).strip() for o in parameters.get("options") or [] if str(o).strip()]
        if len(options) > MAX_OPTIONS:
            options = options[:MAX_OPTIONS]
        elif len(options) < MIN_OPTIONS and options:
            logger.info("ask_user_options_dropped | count=%d", len(options))
            options = []

        return ExecutionResult.ok({
            "question": question,
            "options": options,
            "message": format_question(question, options),
            "waiting_for_user": True,
        })


class CompleteTool(BaseTool):
    tool_type = ToolType.COMPLETE
    name = "Complete"
    description = (
        "Declare the generation finished. Set finished=true only once the character "
        "card and every required worldbook entry exist; otherwise the session keeps going."
    )
    parameters = [
        ToolParameter(name="finished", type=ParameterType.BOOLEAN, required=True,
                      description="true when the card and worldbook are done"),
    ]

    def normalize(self, parameters: Dict[str, Any]) -> Dict[str, Any]:
        finished = parameters.get("finished")
        if isinstance(finished, str) and finished.strip().lower() in ("true", "false"):
            parameters["finished"] = finished.strip().lower() == "true"
        return parameters

    async def do_work(self, context, parameters: Dict[str, Any]) -> ExecutionResult:
        finished = parameters["finished"]
        message = (
            "Session completion confirmed. Ready to end session."
            if finished else "Session not ready for completion."
        )
        return ExecutionResult.ok({"finished": finished, "message": message})
