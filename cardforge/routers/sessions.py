"""Generation session REST endpoints."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request

from cardforge.agent.service import AgentService
from cardforge.errors import SessionNotFoundError
from cardforge.schemas.agent_schemas import (
    GenerationOutput,
    GenerationResult,
    Message,
    ResearchState,
    SessionProgress,
    Step,
    ToolInfo,
)
from cardforge.schemas.api_messages import (
    ContinueGenerationRequest,
    ExportedSession,
    GenerationStats,
    SessionSummary,
    StartGenerationRequest,
)

router = APIRouter()


def get_service(request: Request) -> AgentService:
    return request.app.state.service


@router.get("/tools", response_model=List[ToolInfo])
async def list_tools(service: AgentService = Depends(get_service)):
    return service.registry.list_tools()


@router.post("/sessions", response_model=GenerationResult)
async def start_generation(body: StartGenerationRequest, service: AgentService = Depends(get_service)):
    overrides = body.llm.model_dump(exclude_none=True) if body.llm else None
    return await service.start_generation(body.request, title=body.title, llm_overrides=overrides)


@router.get("/sessions", response_model=List[SessionSummary])
async def list_sessions(service: AgentService = Depends(get_service)):
    records = await service.list_sessions()
    return [
        {
            "id": r.id,
            "title": r.title,
            "status": r.status,
            "iterations": r.snapshot.get("iterations", 0),
            "has_result": r.output is not None and r.status.value == "completed",
            "created_at": r.created_at.isoformat(),
            "updated_at": r.updated_at.isoformat(),
        }
        for r in records
    ]


@router.get("/sessions/stats", response_model=GenerationStats)
async def generation_stats(service: AgentService = Depends(get_service)):
    return await service.get_generation_stats()


@router.delete("/sessions")
async def clear_sessions(service: AgentService = Depends(get_service)):
    return {"deleted": await service.clear_all_sessions()}


@router.get("/sessions/{session_id}", response_model=SessionProgress)
async def session_status(session_id: str, service: AgentService = Depends(get_service)):
    try:
        return await service.get_session_status(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")


@router.post("/sessions/{session_id}/continue", response_model=GenerationResult)
async def continue_generation(session_id: str, body: ContinueGenerationRequest,
                              service: AgentService = Depends(get_service)):
    try:
        return await service.continue_generation(session_id, body.response)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")


@router.post("/sessions/{session_id}/restart", response_model=GenerationResult)
async def restart_generation(session_id: str, service: AgentService = Depends(get_service)):
    try:
        return await service.restart_generation(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")


@router.get("/sessions/{session_id}/messages", response_model=List[Message])
async def session_messages(session_id: str, service: AgentService = Depends(get_service)):
    try:
        return await service.get_messages(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")


@router.get("/sessions/{session_id}/steps", response_model=List[Step])
async def session_steps(session_id: str, service: AgentService = Depends(get_service)):
    try:
        return await service.get_steps(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")


@router.get("/sessions/{session_id}/research", response_model=ResearchState)
async def research_state(session_id: str, service: AgentService = Depends(get_service)):
    try:
        return await service.get_research_state(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")


@router.get("/sessions/{session_id}/output", response_model=GenerationOutput)
async def generation_output(session_id: str, service: AgentService = Depends(get_service)):
    try:
        return await service.get_generation_output(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")


@router.get("/sessions/{session_id}/export", response_model=ExportedSession)
async def export_session(session_id: str, service: AgentService = Depends(get_service)):
    try:
        return await service.export_session(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str, service: AgentService = Depends(get_service)):
    if not await service.delete_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"status": "deleted", "session_id": session_id}
