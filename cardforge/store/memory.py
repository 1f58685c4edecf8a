"""In-process session store, used by tests and the ``memory`` backend."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from cardforge.errors import SessionNotFoundError
from cardforge.schemas.agent_schemas import GenerationOutput, Message, SessionStatus, Step
from cardforge.store.base import SessionRecord


class InMemorySessionStore:
    def __init__(self):
        self._sessions: Dict[str, SessionRecord] = {}
        self._messages: Dict[str, List[Message]] = {}
        self._steps: Dict[str, List[Step]] = {}

    def _record(self, session_id: str) -> SessionRecord:
        record = self._sessions.get(session_id)
        if record is None:
            raise SessionNotFoundError(session_id)
        record.updated_at = datetime.now(timezone.utc)
        return record

    async def create_session(self, title: str, user_request: str = "") -> SessionRecord:
        record = SessionRecord(id=str(uuid.uuid4()), title=title, user_request=user_request)
        self._sessions[record.id] = record
        self._messages[record.id] = []
        self._steps[record.id] = []
        return record.model_copy(deep=True)

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        record = self._sessions.get(session_id)
        return record.model_copy(deep=True) if record else None

    async def list_sessions(self) -> List[SessionRecord]:
        records = sorted(self._sessions.values(), key=lambda r: r.updated_at, reverse=True)
        return [r.model_copy(deep=True) for r in records]

    async def delete_session(self, session_id: str) -> bool:
        self._messages.pop(session_id, None)
        self._steps.pop(session_id, None)
        return self._sessions.pop(session_id, None) is not None

    async def clear_all(self) -> int:
        count = len(self._sessions)
        self._sessions.clear()
        self._messages.clear()
        self._steps.clear()
        return count

    async def add_message(self, session_id: str, message: Message) -> None:
        self._record(session_id)
        self._messages[session_id].append(message.model_copy(deep=True))

    async def add_step(self, session_id: str, step: Step) -> None:
        self._record(session_id)
        self._steps[session_id].append(step.model_copy(deep=True))

    async def update_status(self, session_id: str, status: SessionStatus) -> None:
        self._record(session_id).status = status

    async def update_output(self, session_id: str, output: GenerationOutput) -> None:
        self._record(session_id).output = output.model_copy(deep=True)

    async def save_snapshot(self, session_id: str, snapshot: Dict[str, Any]) -> None:
        self._record(session_id).snapshot = dict(snapshot)

    async def get_history(self, session_id: str) -> List[Message]:
        self._record(session_id)
        return [m.model_copy(deep=True) for m in self._messages[session_id]]

    async def get_steps(self, session_id: str) -> List[Step]:
        self._record(session_id)
        return sorted((s.model_copy(deep=True) for s in self._steps[session_id]),
                      key=lambda s: s.execution_order)

    async def clear_current_steps(self, session_id: str) -> None:
        self._record(session_id)
        self._steps[session_id] = []
