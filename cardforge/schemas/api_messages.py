"""
Request/response payloads for the ``/sessions`` REST surface.

Request bodies are validated by FastAPI directly; ``validate_payload`` is
kept for callers (scripts, tests) that hand in raw dicts.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, Field, ValidationError

from cardforge.schemas.agent_schemas import SessionStatus

logger = logging.getLogger("cardforge.schemas")

# ---------------------------------------------------------------------------
# Hard limits
# ---------------------------------------------------------------------------
MAX_REQUEST_CHARS = 100_000


class LLMOverrides(BaseModel):
    """Per-session overrides on top of the configured provider."""
    llm_type: Optional[str] = Field(default=None, pattern="^(gemini|ollama)$")
    model_name: Optional[str] = Field(default=None, max_length=200)
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    search_api_key: Optional[str] = None


class StartGenerationRequest(BaseModel):
    request: str = Field(..., min_length=1, max_length=MAX_REQUEST_CHARS)
    title: Optional[str] = Field(default=None, max_length=200)
    llm: Optional[LLMOverrides] = None


class ContinueGenerationRequest(BaseModel):
    response: str = Field(..., min_length=1, max_length=MAX_REQUEST_CHARS)


class SessionSummary(BaseModel):
    id: str
    title: str
    status: SessionStatus
    iterations: int
    has_result: bool
    created_at: str
    updated_at: str


class GenerationStats(BaseModel):
    total: int
    completed: int
    failed: int
    success_rate: float
    average_iterations: float
    status_breakdown: Dict[str, int]


class ExportedSession(BaseModel):
    session_id: str
    title: str
    exported_at: str
    version: str
    character: Dict[str, Any]
    worldbook: List[Dict[str, Any]]


PAYLOAD_MODELS: Dict[str, Type[BaseModel]] = {
    "start": StartGenerationRequest,
    "continue": ContinueGenerationRequest,
}


def validate_payload(kind: str, payload: dict) -> tuple[bool, dict | str]:
    """Validate *payload* against the model registered for *kind*.

    Returns ``(True, cleaned_dict)`` on success or ``(False, error_message)``.
    """
    model_cls = PAYLOAD_MODELS.get(kind)
    if model_cls is None:
        return False, f"Unknown payload kind: {kind}"

    try:
        validated = model_cls(**payload)
        return True, validated.model_dump(exclude_none=True)
    except ValidationError as exc:
        errors = exc.errors()
        msgs = []
        for err in errors[:3]:
            loc = ".".join(str(p) for p in err.get("loc", []))
            msgs.append(f"{loc}: {err.get('msg', 'invalid')}")
        detail = "; ".join(msgs)
        logger.warning("payload_validation_failed | kind=%s | %s", kind, detail)
        return False, f"Invalid payload for '{kind}': {detail}"
