"""
Service facade over the live-engine map.

One ``AgentService`` is built at startup with the shared tool registry and
session store.  It owns the map of live engines (session id -> engine),
guarded by an ``asyncio.Lock`` for create/get/delete.  Sessions that are not
live (e.g. after a restart) are rehydrated from the store on first access.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from cardforge.agent.context import ExecutionContext
from cardforge.agent.engine import AgentEngine
from cardforge.agent.planning import default_plan
from cardforge.config import Settings, get_settings
from cardforge.errors import SessionNotFoundError
from cardforge.llm.client import ChatCompletion, create_chat_client
from cardforge.schemas.agent_schemas import (
    CHARACTER_REQUIRED_FIELDS,
    GenerationOutput,
    GenerationResult,
    LLMConfig,
    Message,
    ResearchState,
    SessionProgress,
    SessionStatus,
    Step,
)
from cardforge.schemas.api_messages import GenerationStats
from cardforge.store.base import SessionRecord, SessionStore
from cardforge.tools.registry import ToolRegistry
from cardforge.utils.card_export import export_session
from cardforge.utils.output_validator import completeness_problems

logger = logging.getLogger("cardforge.service")

DEFAULT_TITLE = "Character & Worldbook Generation"


class AgentService:
    def __init__(
        self,
        registry: ToolRegistry,
        store: SessionStore,
        settings: Optional[Settings] = None,
        chat_client_factory: Callable[[LLMConfig], ChatCompletion] = create_chat_client,
    ):
        self.registry = registry
        self.store = store
        self.settings = settings or get_settings()
        self._chat_client_factory = chat_client_factory
        self._engines: Dict[str, AgentEngine] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Engine lifecycle
    # ------------------------------------------------------------------

    def _build_engine(self, context: ExecutionContext) -> AgentEngine:
        return AgentEngine(
            context=context,
            registry=self.registry,
            chat_client=self._chat_client_factory(context.llm_config),
            store=self.store,
            max_iterations=self.settings.max_iterations,
            timeout_ms=self.settings.timeout_ms,
            enforce_task_ordering=self.settings.enforce_task_ordering,
            min_supplements=self.settings.min_supplement_entries,
        )

    def _new_context(self, session_id: str, title: str, request: str,
                     llm_config: LLMConfig) -> ExecutionContext:
        context = ExecutionContext(
            session_id=session_id,
            llm_config=llm_config,
            title=title,
            knowledge_base_limit=self.settings.knowledge_base_limit,
        )
        context.research_state = ResearchState(main_objective=request,
                                               task_queue=default_plan(request))
        return context

    async def _rehydrate(self, record: SessionRecord) -> ExecutionContext:
        snapshot = record.snapshot or {}
        llm_config = LLMConfig.from_settings(self.settings, **snapshot.get("llm_config", {}))
        context = ExecutionContext(
            session_id=record.id,
            llm_config=llm_config,
            title=record.title,
            status=record.status,
            generation_output=record.output or GenerationOutput(),
            research_state=ResearchState.model_validate(snapshot.get("research_state") or {}),
            message_history=await self.store.get_history(record.id),
            steps=await self.store.get_steps(record.id),
            iterations=snapshot.get("iterations", 0),
            pending_question=snapshot.get("pending_question"),
            knowledge_base_limit=self.settings.knowledge_base_limit,
        )
        logger.info("session_rehydrated | session_id=%s | status=%s", record.id, record.status.value)
        return context

    async def get_engine(self, session_id: str) -> Optional[AgentEngine]:
        async with self._lock:
            engine = self._engines.get(session_id)
        if engine is not None:
            return engine

        record = await self.store.get_session(session_id)
        if record is None:
            return None
        engine = self._build_engine(await self._rehydrate(record))
        async with self._lock:
            # Another caller may have rehydrated it meanwhile; keep the first
            return self._engines.setdefault(session_id, engine)

    async def _require_engine(self, session_id: str) -> AgentEngine:
        engine = await self.get_engine(session_id)
        if engine is None:
            raise SessionNotFoundError(session_id)
        return engine

    def live_session_ids(self) -> List[str]:
        return list(self._engines)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def start_generation(
        self,
        request: str,
        title: Optional[str] = None,
        llm_overrides: Optional[Dict[str, Any]] = None,
    ) -> GenerationResult:
        llm_config = LLMConfig.from_settings(self.settings, **(llm_overrides or {}))
        try:
            record = await self.store.create_session(title or DEFAULT_TITLE, user_request=request)
        except Exception as exc:
            logger.exception("session_create_failed")
            # No session exists yet, so the result carries an empty id
            return GenerationResult.failed("", f"Could not create session: {str(exc) or type(exc).__name__}")

        engine = self._build_engine(self._new_context(record.id, record.title, request, llm_config))
        async with self._lock:
            self._engines[record.id] = engine
        logger.info("generation_started | session_id=%s", record.id)
        return await engine.start(request)

    async def continue_generation(self, session_id: str, user_response: str) -> GenerationResult:
        engine = await self._require_engine(session_id)
        return await engine.resume(user_response)

    async def restart_generation(self, session_id: str) -> GenerationResult:
        """Throw away steps and output and run the original request again."""
        engine = await self._require_engine(session_id)
        if engine.busy:
            return GenerationResult.failed(session_id, "Session is already processing a turn",
                                           status=engine.context.status)
        record = await self.store.get_session(session_id)
        if record is None:
            raise SessionNotFoundError(session_id)

        await self.store.clear_current_steps(session_id)
        context = self._new_context(session_id, record.title, record.user_request,
                                    engine.context.llm_config)
        await self.store.update_output(session_id, context.generation_output)
        context.message_history = await self.store.get_history(session_id)
        fresh = self._build_engine(context)
        async with self._lock:
            self._engines[session_id] = fresh
        logger.info("generation_restarted | session_id=%s", session_id)
        return await fresh.start(record.user_request)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_session_status(self, session_id: str) -> SessionProgress:
        engine = await self._require_engine(session_id)
        ctx = engine.context
        output = ctx.generation_output
        missing = output.character_data.missing_fields()
        worldbook = output.worldbook_data
        return SessionProgress(
            session_id=session_id,
            title=ctx.title,
            status=ctx.status,
            iterations=ctx.iterations,
            max_iterations=engine.max_iterations,
            character_progress=round(
                100 * (len(CHARACTER_REQUIRED_FIELDS) - len(missing)) / len(CHARACTER_REQUIRED_FIELDS)
            ),
            completed_fields=[f for f in CHARACTER_REQUIRED_FIELDS if f not in missing],
            missing_fields=missing,
            has_status=worldbook.status is not None,
            has_user_setting=worldbook.user_setting is not None,
            has_world_view=worldbook.world_view is not None,
            supplement_count=len(worldbook.supplements),
            is_complete=not completeness_problems(output, engine.min_supplements),
            has_result=ctx.status is SessionStatus.COMPLETED,
            pending_question=ctx.pending_question,
        )

    async def list_sessions(self) -> List[SessionRecord]:
        return await self.store.list_sessions()

    async def get_messages(self, session_id: str) -> List[Message]:
        await self._require_record(session_id)
        return await self.store.get_history(session_id)

    async def get_steps(self, session_id: str) -> List[Step]:
        await self._require_record(session_id)
        return await self.store.get_steps(session_id)

    async def get_research_state(self, session_id: str) -> ResearchState:
        engine = await self._require_engine(session_id)
        return engine.context.research_state

    async def get_generation_output(self, session_id: str) -> GenerationOutput:
        engine = await self._require_engine(session_id)
        return engine.context.generation_output

    async def export_session(self, session_id: str) -> Dict[str, Any]:
        record = await self._require_record(session_id)
        return export_session(session_id, record.title, record.output or GenerationOutput())

    async def get_generation_stats(self) -> GenerationStats:
        records = await self.store.list_sessions()
        breakdown: Dict[str, int] = {}
        for record in records:
            breakdown[record.status.value] = breakdown.get(record.status.value, 0) + 1

        total = len(records)
        completed = breakdown.get(SessionStatus.COMPLETED.value, 0)
        iterations = [r.snapshot.get("iterations", 0) for r in records]
        return GenerationStats(
            total=total,
            completed=completed,
            failed=breakdown.get(SessionStatus.FAILED.value, 0),
            success_rate=(completed / total) if total else 0.0,
            average_iterations=(sum(iterations) / total) if total else 0.0,
            status_breakdown=breakdown,
        )

    async def _require_record(self, session_id: str) -> SessionRecord:
        record = await self.store.get_session(session_id)
        if record is None:
            raise SessionNotFoundError(session_id)
        return record

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete_session(self, session_id: str) -> bool:
        """Drop the live engine and the stored session.

        An in-flight turn is not interrupted; it keeps running against its
        own context.
        """
        async with self._lock:
            engine = self._engines.pop(session_id, None)
        if engine is not None and engine.busy:
            logger.warning("session_deleted_while_busy | session_id=%s", session_id)
        deleted = await self.store.delete_session(session_id)
        return deleted or engine is not None

    async def clear_all_sessions(self) -> int:
        async with self._lock:
            self._engines.clear()
        return await self.store.clear_all()
