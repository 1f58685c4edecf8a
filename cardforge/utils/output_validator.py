"""
Generation output validator.

Checks the character card and worldbook against the rules a finished
session must satisfy.  Every check returns human-readable problems rather
than raising, so callers can feed them back to the model.

Usage:
    from cardforge.utils.output_validator import completeness_problems

    problems = completeness_problems(context.generation_output)
    if not problems:
        ...  # the session may complete
"""
from typing import List, Optional
import logging

from cardforge.schemas.agent_schemas import (
    EntryKind,
    GenerationOutput,
    WorldbookData,
    WorldbookEntry,
)

logger = logging.getLogger("cardforge.validator")

MIN_SUPPLEMENTS = 5

# kind -> (constant, insert_order, position); None insert_order means ">= 10"
ENTRY_RULES = {
    EntryKind.STATUS: (True, 1, 0),
    EntryKind.USER_SETTING: (True, 2, 0),
    EntryKind.WORLD_VIEW: (True, 3, 0),
    EntryKind.SUPPLEMENT: (False, None, 2),
}


def entry_problems(entry: WorldbookEntry) -> List[str]:
    """Activation-rule violations for a single entry."""
    constant, insert_order, position = ENTRY_RULES[entry.kind]
    label = f"{entry.kind.value} entry '{entry.comment}'"
    problems = []
    if entry.constant is not constant:
        problems.append(f"{label}: constant must be {str(constant).lower()}")
    if insert_order is None:
        if entry.insert_order < 10:
            problems.append(f"{label}: insert_order must be at least 10")
    elif entry.insert_order != insert_order:
        problems.append(f"{label}: insert_order must be {insert_order}")
    if entry.position != position:
        problems.append(f"{label}: position must be {position}")
    if entry.kind is EntryKind.SUPPLEMENT and not entry.keys:
        problems.append(f"{label}: keys must not be empty")
    if not entry.content.strip():
        problems.append(f"{label}: content must not be empty")
    return problems


def worldbook_problems(worldbook: WorldbookData, min_supplements: int = MIN_SUPPLEMENTS) -> List[str]:
    problems = []
    for kind in (EntryKind.STATUS, EntryKind.USER_SETTING, EntryKind.WORLD_VIEW):
        entry: Optional[WorldbookEntry] = worldbook.slot(kind)
        if entry is None:
            problems.append(f"missing {kind.value} entry")
        elif entry.kind is not kind:
            problems.append(f"{kind.value} slot holds a {entry.kind.value} entry")
        else:
            problems.extend(entry_problems(entry))

    if len(worldbook.supplements) < min_supplements:
        problems.append(
            f"need at least {min_supplements} supplement entries, have {len(worldbook.supplements)}"
        )
    for entry in worldbook.supplements:
        if entry.kind is not EntryKind.SUPPLEMENT:
            problems.append(f"supplement list holds a {entry.kind.value} entry")
        else:
            problems.extend(entry_problems(entry))
    return problems


def completeness_problems(output: GenerationOutput, min_supplements: int = MIN_SUPPLEMENTS) -> List[str]:
    """Everything that stops *output* from counting as complete; empty when done."""
    problems = []
    missing = output.character_data.missing_fields()
    if missing:
        problems.append(f"character missing fields: {', '.join(missing)}")
    problems.extend(worldbook_problems(output.worldbook_data, min_supplements))
    return problems


def is_complete(output: GenerationOutput, min_supplements: int = MIN_SUPPLEMENTS) -> bool:
    return not completeness_problems(output, min_supplements)
