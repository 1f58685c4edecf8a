"""Default tool set."""

from __future__ import annotations

from typing import Callable, Optional

from cardforge.tools.registry import ToolRegistry


def build_default_registry(
    structural_min_length: Optional[int] = None,
    search_client_factory: Optional[Callable] = None,
) -> ToolRegistry:
    """Build the registry holding one executor per tool kind.

    Imports are deferred to keep this module lightweight at import time.
    """
    from cardforge.config import get_settings
    from cardforge.schemas.agent_schemas import ToolType
    from cardforge.tools.character import CharacterTool
    from cardforge.tools.interaction import AskUserTool, CompleteTool
    from cardforge.tools.reflect import ReflectTool
    from cardforge.tools.search import SearchTool
    from cardforge.tools.worldbook import StructuralEntryTool, SupplementTool

    if structural_min_length is None:
        structural_min_length = get_settings().structural_min_length

    return ToolRegistry([
        SearchTool(client_factory=search_client_factory),
        AskUserTool(),
        CharacterTool(),
        StructuralEntryTool(ToolType.STATUS, min_length=structural_min_length),
        StructuralEntryTool(ToolType.USER_SETTING, min_length=structural_min_length),
        StructuralEntryTool(ToolType.WORLD_VIEW, min_length=structural_min_length),
        SupplementTool(),
        ReflectTool(),
        CompleteTool(),
    ])
