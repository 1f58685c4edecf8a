"""Session store contract shared by the SQL and in-memory backends."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from cardforge.schemas.agent_schemas import GenerationOutput, Message, SessionStatus, Step


class SessionRecord(BaseModel):
    id: str
    title: str
    status: SessionStatus = SessionStatus.IDLE
    user_request: str = ""
    output: Optional[GenerationOutput] = None
    snapshot: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SessionStore(Protocol):
    async def create_session(self, title: str, user_request: str = "") -> SessionRecord: ...

    async def get_session(self, session_id: str) -> Optional[SessionRecord]: ...

    async def list_sessions(self) -> List[SessionRecord]: ...

    async def delete_session(self, session_id: str) -> bool: ...

    async def clear_all(self) -> int: ...

    async def add_message(self, session_id: str, message: Message) -> None: ...

    async def add_step(self, session_id: str, step: Step) -> None: ...

    async def update_status(self, session_id: str, status: SessionStatus) -> None: ...

    async def update_output(self, session_id: str, output: GenerationOutput) -> None: ...

    async def save_snapshot(self, session_id: str, snapshot: Dict[str, Any]) -> None: ...

    async def get_history(self, session_id: str) -> List[Message]: ...

    async def get_steps(self, session_id: str) -> List[Step]: ...

    async def clear_current_steps(self, session_id: str) -> None: ...
