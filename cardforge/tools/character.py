"""CHARACTER tool: builds the character card a few fields at a time."""
from __future__ import annotations

from typing import Any, Dict

from cardforge.errors import ParameterValidationError
from cardforge.schemas.agent_schemas import ExecutionResult, ParameterType, ToolParameter, ToolType
from cardforge.tools.base import BaseTool, split_delimited

TEXT_FIELDS = (
    "name", "description", "personality", "scenario",
    "first_mes", "mes_example", "creator_notes",
)


class CharacterTool(BaseTool):
    tool_type = ToolType.CHARACTER
    name = "Character Builder"
    description = (
        "Create or update the character card. Provide any subset of the fields; "
        "repeated calls merge into the existing card, so build it incrementally. "
        "All eight of name, description, personality, scenario, first_mes, "
        "mes_example, creator_notes and tags must be filled before any worldbook "
        "entry can be written."
    )
    parameters = [
        ToolParameter(name="name", type=ParameterType.STRING,
                      description="Character name"),
        ToolParameter(name="description", type=ParameterType.STRING,
                      description="Appearance, background and defining traits"),
        ToolParameter(name="personality", type=ParameterType.STRING,
                      description="Temperament, habits, speech style"),
        ToolParameter(name="scenario", type=ParameterType.STRING,
                      description="Situation the roleplay opens in"),
        ToolParameter(name="first_mes", type=ParameterType.STRING,
                      description="Opening message written in the character's voice"),
        ToolParameter(name="mes_example", type=ParameterType.STRING,
                      description="Example dialogue using <START> separators"),
        ToolParameter(name="creator_notes", type=ParameterType.STRING,
                      description="Notes for whoever uses the card"),
        ToolParameter(name="tags", type=ParameterType.ARRAY,
                      description="Tags as an array or a comma separated string"),
        ToolParameter(name="alternate_greetings", type=ParameterType.ARRAY,
                      description="Extra greetings as an array or a '|' separated string"),
    ]

    def normalize(self, parameters: Dict[str, Any]) -> Dict[str, Any]:
        if "tags" in parameters:
            parameters["tags"] = split_delimited(parameters["tags"], ",")
        if "alternate_greetings" in parameters:
            parameters["alternate_greetings"] = split_delimited(parameters["alternate_greetings"], "|")
        return parameters

    async def do_work(self, context, parameters: Dict[str, Any]) -> ExecutionResult:
        updates: Dict[str, Any] = {}
        for field in TEXT_FIELDS:
            value = parameters.get(field)
            if isinstance(value, str) and value.strip():
                updates[field] = value.strip()
        for field in ("tags", "alternate_greetings"):
            if parameters.get(field):
                updates[field] = parameters[field]

        if not updates:
            raise ParameterValidationError(
                "CHARACTER tool requires at least one character field to be provided."
            )

        merged = context.generation_output.character_data.model_copy(update=updates)
        return ExecutionResult.ok({
            "character_data": updates,
            "updated_fields": sorted(updates),
            "missing_fields": merged.missing_fields(),
        })
