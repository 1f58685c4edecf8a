"""Export records handed to downstream card/worldbook renderers."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

from cardforge.schemas.agent_schemas import GenerationOutput, WorldbookData

EXPORT_VERSION = "1.0"


def export_character(output: GenerationOutput) -> Dict[str, Any]:
    card = output.character_data
    return {
        "name": card.name or "",
        "description": card.description or "",
        "personality": card.personality or "",
        "scenario": card.scenario or "",
        "first_mes": card.first_mes or "",
        "mes_example": card.mes_example or "",
        "creator_notes": card.creator_notes or "",
        "tags": list(card.tags),
        "alternate_greetings": list(card.alternate_greetings),
    }


def export_worldbook(worldbook: WorldbookData) -> List[Dict[str, Any]]:
    """Entries in insert order; ``uid`` is the entry's position in the export."""
    entries = sorted(worldbook.entries(), key=lambda e: e.insert_order)
    return [
        {
            "id": entry.id,
            "uid": uid,
            "keys": list(entry.keys),
            "keysecondary": list(entry.keysecondary),
            "comment": entry.comment,
            "content": entry.content,
            "constant": entry.constant,
            "selective": entry.selective,
            "insert_order": entry.insert_order,
            "position": entry.position,
            "disable": entry.disable,
            "probability": entry.probability,
            "useProbability": entry.use_probability,
        }
        for uid, entry in enumerate(entries)
    ]


def export_session(session_id: str, title: str, output: GenerationOutput) -> Dict[str, Any]:
    return {
        "session_id": session_id,
        "title": title,
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "version": EXPORT_VERSION,
        "character": export_character(output),
        "worldbook": export_worldbook(output.worldbook_data),
    }
