"""SQLAlchemy-backed session store."""
from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardforge.errors import SessionNotFoundError
from cardforge.models import GenerationSession, SessionMessage, SessionStep
from cardforge.schemas.agent_schemas import GenerationOutput, Message, SessionStatus, Step
from cardforge.store.base import SessionRecord


def _to_record(row: GenerationSession) -> SessionRecord:
    return SessionRecord(
        id=row.id,
        title=row.title,
        status=SessionStatus(row.status),
        user_request=row.user_request or "",
        output=GenerationOutput.model_validate(row.output) if row.output else None,
        snapshot=row.snapshot or {},
        created_at=row.created_at,
        updated_at=row.updated_at or row.created_at,
    )


class SqlSessionStore:
    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        if session_factory is None:
            from cardforge.database import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self._session_factory = session_factory

    async def _get_row(self, db: AsyncSession, session_id: str) -> GenerationSession:
        row = await db.get(GenerationSession, session_id)
        if row is None:
            raise SessionNotFoundError(session_id)
        return row

    async def create_session(self, title: str, user_request: str = "") -> SessionRecord:
        async with self._session_factory() as db:
            row = GenerationSession(
                id=str(uuid.uuid4()),
                title=title,
                status=SessionStatus.IDLE.value,
                user_request=user_request,
                snapshot={},
            )
            db.add(row)
            await db.commit()
            await db.refresh(row)
            return _to_record(row)

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        async with self._session_factory() as db:
            row = await db.get(GenerationSession, session_id)
            return _to_record(row) if row else None

    async def list_sessions(self) -> List[SessionRecord]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(GenerationSession).order_by(desc(GenerationSession.updated_at))
            )
            return [_to_record(row) for row in result.scalars().all()]

    async def delete_session(self, session_id: str) -> bool:
        async with self._session_factory() as db:
            row = await db.get(GenerationSession, session_id)
            if row is None:
                return False
            await db.execute(delete(SessionStep).where(SessionStep.session_id == session_id))
            await db.execute(delete(SessionMessage).where(SessionMessage.session_id == session_id))
            await db.execute(delete(GenerationSession).where(GenerationSession.id == session_id))
            await db.commit()
            return True

    async def clear_all(self) -> int:
        async with self._session_factory() as db:
            count = await db.scalar(select(func.count()).select_from(GenerationSession))
            await db.execute(delete(SessionStep))
            await db.execute(delete(SessionMessage))
            await db.execute(delete(GenerationSession))
            await db.commit()
            return count or 0

    async def add_message(self, session_id: str, message: Message) -> None:
        async with self._session_factory() as db:
            await self._get_row(db, session_id)
            sequence = await db.scalar(
                select(func.coalesce(func.max(SessionMessage.sequence), 0))
                .where(SessionMessage.session_id == session_id)
            )
            db.add(SessionMessage(
                id=message.id,
                session_id=session_id,
                sequence=(sequence or 0) + 1,
                role=message.role,
                message_type=message.type,
                content=message.content,
                created_at=message.timestamp,
            ))
            await db.commit()

    async def add_step(self, session_id: str, step: Step) -> None:
        data = step.model_dump(mode="json")
        async with self._session_factory() as db:
            await self._get_row(db, session_id)
            db.add(SessionStep(
                id=step.id,
                session_id=session_id,
                execution_order=step.execution_order,
                action=step.action.value,
                tool=step.tool.value if step.tool else None,
                task_id=step.task_id,
                input=data["input"],
                output={"value": data["output"]} if data["output"] is not None else None,
                status=step.status.value,
                reasoning=step.reasoning,
                error=step.error,
                created_at=step.timestamp,
            ))
            await db.commit()

    async def update_status(self, session_id: str, status: SessionStatus) -> None:
        async with self._session_factory() as db:
            row = await self._get_row(db, session_id)
            row.status = status.value
            await db.commit()

    async def update_output(self, session_id: str, output: GenerationOutput) -> None:
        async with self._session_factory() as db:
            row = await self._get_row(db, session_id)
            row.output = output.model_dump(mode="json")
            await db.commit()

    async def save_snapshot(self, session_id: str, snapshot: Dict[str, Any]) -> None:
        async with self._session_factory() as db:
            row = await self._get_row(db, session_id)
            row.snapshot = dict(snapshot)
            await db.commit()

    async def get_history(self, session_id: str) -> List[Message]:
        async with self._session_factory() as db:
            await self._get_row(db, session_id)
            result = await db.execute(
                select(SessionMessage)
                .where(SessionMessage.session_id == session_id)
                .order_by(SessionMessage.sequence)
            )
            return [
                Message(id=m.id, role=m.role, type=m.message_type,
                        content=m.content, timestamp=m.created_at)
                for m in result.scalars().all()
            ]

    async def get_steps(self, session_id: str) -> List[Step]:
        async with self._session_factory() as db:
            await self._get_row(db, session_id)
            result = await db.execute(
                select(SessionStep)
                .where(SessionStep.session_id == session_id)
                .order_by(SessionStep.execution_order)
            )
            return [
                Step(
                    id=s.id,
                    execution_order=s.execution_order,
                    action=s.action,
                    tool=s.tool,
                    task_id=s.task_id,
                    input=s.input or {},
                    output=(s.output or {}).get("value"),
                    status=s.status,
                    reasoning=s.reasoning or "",
                    error=s.error,
                    timestamp=s.created_at,
                )
                for s in result.scalars().all()
            ]

    async def clear_current_steps(self, session_id: str) -> None:
        async with self._session_factory() as db:
            await self._get_row(db, session_id)
            await db.execute(delete(SessionStep).where(SessionStep.session_id == session_id))
            await db.commit()
