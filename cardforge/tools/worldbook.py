"""
Worldbook tools.

STATUS, USER_SETTING and WORLD_VIEW each write the single constant entry of
their kind; the activation values are fixed per kind.  SUPPLEMENT adds
keyword-triggered entries that expand on elements of the world view.
"""
from __future__ import annotations

import dataclasses
from typing import Any, Dict, Tuple

from cardforge.errors import ParameterValidationError
from cardforge.schemas.agent_schemas import (
    EntryKind,
    ExecutionResult,
    ParameterType,
    ToolParameter,
    ToolType,
    WorldbookEntry,
)
from cardforge.tools.base import BaseTool

SUPPLEMENT_MIN_INSERT_ORDER = 10
SUPPLEMENT_POSITION = 2


@dataclasses.dataclass(frozen=True)
class EntryRules:
    kind: EntryKind
    tag: str
    keys: Tuple[str, ...]
    keysecondary: Tuple[str, ...]
    insert_order: int
    position: int = 0
    constant: bool = True


STRUCTURAL_RULES: Dict[ToolType, EntryRules] = {
    ToolType.STATUS: EntryRules(
        kind=EntryKind.STATUS,
        tag="status",
        keys=("status", "current", "state", "condition", "situation"),
        keysecondary=("info", "update", "check"),
        insert_order=1,
    ),
    ToolType.USER_SETTING: EntryRules(
        kind=EntryKind.USER_SETTING,
        tag="user_setting",
        keys=("user", "player", "character", "protagonist", "you"),
        keysecondary=("yourself", "personal", "background"),
        insert_order=2,
    ),
    ToolType.WORLD_VIEW: EntryRules(
        kind=EntryKind.WORLD_VIEW,
        tag="world_view",
        keys=("world", "universe", "realm", "setting", "reality"),
        keysecondary=("background", "lore", "foundation"),
        insert_order=3,
    ),
}

_STRUCTURAL_DESCRIPTIONS = {
    ToolType.STATUS: (
        "Write the STATUS worldbook entry: the live status panel shown every turn "
        "(time, location, condition, relationships). Content must be wrapped in "
        "<status>...</status>. Requires a complete character card."
    ),
    ToolType.USER_SETTING: (
        "Write the USER_SETTING worldbook entry: who the user plays, their background "
        "and relation to the character. Content must be wrapped in "
        "<user_setting>...</user_setting>. Requires a complete character card."
    ),
    ToolType.WORLD_VIEW: (
        "Write the WORLD_VIEW worldbook entry: the world's rules, history, places and "
        "factions. Content must be wrapped in <world_view>...</world_view>. Named "
        "elements here become the keys of SUPPLEMENT entries. Requires a complete "
        "character card."
    ),
}


class StructuralEntryTool(BaseTool):
    """One tool per structural entry kind; rules come from ``STRUCTURAL_RULES``."""

    parameters = [
        ToolParameter(name="content", type=ParameterType.STRING, required=True,
                      description="Entry body wrapped in the kind's XML tag"),
        ToolParameter(name="comment", type=ParameterType.STRING, required=True,
                      description="Must be the entry kind name, e.g. STATUS"),
    ]

    def __init__(self, tool_type: ToolType, min_length: int = 300):
        if tool_type not in STRUCTURAL_RULES:
            raise ValueError(f"{tool_type} is not a structural worldbook entry")
        self.tool_type = tool_type
        self.rules = STRUCTURAL_RULES[tool_type]
        self.min_length = min_length
        self.name = f"{tool_type.value.replace('_', ' ').title()} Entry"
        self.description = (
            f"{_STRUCTURAL_DESCRIPTIONS[tool_type]} "
            f"Minimum length {min_length} characters; comment must be '{tool_type.value}'."
        )

    async def do_work(self, context, parameters: Dict[str, Any]) -> ExecutionResult:
        content = parameters["content"].strip()
        comment = parameters["comment"].strip()

        if comment.upper() != self.tool_type.value:
            raise ParameterValidationError(
                f"comment must be '{self.tool_type.value}', got '{comment}'"
            )

        open_tag, close_tag = f"<{self.rules.tag}>", f"</{self.rules.tag}>"
        open_idx = content.find(open_tag)
        close_idx = content.rfind(close_tag)
        if open_idx == -1 or close_idx == -1 or close_idx < open_idx:
            raise ParameterValidationError(
                f"content must be wrapped in {open_tag}...{close_tag} tags"
            )

        if len(content) < self.min_length:
            raise ParameterValidationError(
                f"content must be at least {self.min_length} characters, got {len(content)}"
            )

        entry = WorldbookEntry(
            kind=self.rules.kind,
            keys=list(self.rules.keys),
            keysecondary=list(self.rules.keysecondary),
            comment=self.tool_type.value,
            content=content,
            constant=self.rules.constant,
            insert_order=self.rules.insert_order,
            position=self.rules.position,
        )
        return ExecutionResult.ok({"entry": entry})


class SupplementTool(BaseTool):
    tool_type = ToolType.SUPPLEMENT
    name = "Supplement Entry"
    description = (
        "Add a keyword-triggered worldbook entry expanding one named element of the "
        "WORLD_VIEW entry (a place, faction, item, person). 'keys' must be a non-empty "
        "array of trigger keywords taken from the world view. At least five supplements "
        f"are required. insert_order is raised to {SUPPLEMENT_MIN_INSERT_ORDER} if lower."
    )
    parameters = [
        ToolParameter(name="keys", type=ParameterType.ARRAY, required=True,
                      description="Trigger keywords taken from the world view"),
        ToolParameter(name="content", type=ParameterType.STRING, required=True,
                      description="Detailed description of the element"),
        ToolParameter(name="comment", type=ParameterType.STRING, required=True,
                      description="Short label for the entry"),
        ToolParameter(name="insert_order", type=ParameterType.NUMBER,
                      description=f"Ordering weight, minimum {SUPPLEMENT_MIN_INSERT_ORDER}"),
    ]

    def normalize(self, parameters: Dict[str, Any]) -> Dict[str, Any]:
        order = parameters.get("insert_order")
        if isinstance(order, str) and order.strip().lstrip("-").isdigit():
            parameters["insert_order"] = int(order.strip())
        return parameters

    async def do_work(self, context, parameters: Dict[str, Any]) -> ExecutionResult:
        keys = [str(k).strip() for k in parameters["keys"] if str(k).strip()]
        if not keys:
            raise ParameterValidationError(
                "SUPPLEMENT tool requires 'keys' parameter as a non-empty array of trigger keywords."
            )

        content = parameters["content"].strip()
        comment = parameters["comment"].strip()
        if not content:
            raise ParameterValidationError("content must not be empty")
        if not comment:
            raise ParameterValidationError("comment must not be empty")

        requested = parameters.get("insert_order") or SUPPLEMENT_MIN_INSERT_ORDER
        entry = WorldbookEntry(
            kind=EntryKind.SUPPLEMENT,
            keys=keys,
            keysecondary=[],
            comment=comment,
            content=content,
            constant=False,
            insert_order=max(int(requested), SUPPLEMENT_MIN_INSERT_ORDER),
            position=SUPPLEMENT_POSITION,
        )
        return ExecutionResult.ok({"entry": entry})
