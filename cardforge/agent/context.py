"""Per-session state threaded through every decision and tool call."""

from __future__ import annotations

import dataclasses
from typing import Any, Optional

from cardforge.schemas.agent_schemas import (
    GenerationOutput,
    KnowledgeEntry,
    LLMConfig,
    Message,
    MessageRole,
    MessageType,
    ResearchState,
    SessionStatus,
    Step,
)


@dataclasses.dataclass
class ExecutionContext:
    """Bundles everything one session's loop owns.

    Created by the service when a session starts (or is rehydrated from the
    store) and handed to the engine, which passes it by reference to tools.
    Tools may only extend the collections their effect covers.
    """
    session_id: str
    llm_config: LLMConfig
    title: str = ""
    status: SessionStatus = SessionStatus.IDLE
    generation_output: GenerationOutput = dataclasses.field(default_factory=GenerationOutput)
    research_state: ResearchState = dataclasses.field(default_factory=ResearchState)
    message_history: list[Message] = dataclasses.field(default_factory=list)
    steps: list[Step] = dataclasses.field(default_factory=list)
    iterations: int = 0
    pending_question: Optional[str] = None
    knowledge_base_limit: int = 50

    def add_message(self, role: MessageRole, content: str,
                    type: MessageType = "system_info") -> Message:
        message = Message(role=role, content=content, type=type)
        self.message_history.append(message)
        return message

    def add_knowledge(self, entries: list[KnowledgeEntry]) -> None:
        """Append entries, evicting the oldest beyond the configured bound."""
        kb = self.research_state.knowledge_base
        kb.extend(entries)
        overflow = len(kb) - self.knowledge_base_limit
        if overflow > 0:
            del kb[:overflow]

    def next_execution_order(self) -> int:
        return (self.steps[-1].execution_order + 1) if self.steps else 1

    def snapshot(self) -> dict[str, Any]:
        """Resumable state that is not already stored as messages/steps/output."""
        return {
            "research_state": self.research_state.model_dump(mode="json"),
            "iterations": self.iterations,
            "pending_question": self.pending_question,
            "llm_config": self.llm_config.model_dump(mode="json", exclude={"api_key", "search_api_key"}),
        }
