"""Shared test doubles and builders for the generation loop tests."""

import json
from typing import List, Optional, Union

from cardforge.agent.context import ExecutionContext
from cardforge.agent.engine import AgentEngine
from cardforge.agent.planning import default_plan
from cardforge.agent.service import AgentService
from cardforge.config import Settings
from cardforge.schemas.agent_schemas import LLMConfig, ResearchState
from cardforge.store.memory import InMemorySessionStore
from cardforge.tools import build_default_registry
from cardforge.utils.search_client import SearchHit

MIN_LENGTH = 300


class ScriptedChatClient:
    """Returns canned responses in order; raises any response that is an exception."""

    def __init__(self, responses: List[Union[str, Exception]], default: Optional[str] = None):
        self.responses = list(responses)
        self.default = default
        self.calls = []

    async def complete(self, system_prompt, human_prompt, config):
        self.calls.append((system_prompt, human_prompt, config))
        if not self.responses:
            if self.default is None:
                raise AssertionError("chat client called more often than scripted")
            return self.default
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeSearchClient:
    def __init__(self, results=None, failing=()):
        self.results = results or {}
        self.failing = set(failing)
        self.queries = []

    async def search(self, query):
        self.queries.append(query)
        if query in self.failing:
            raise RuntimeError(f"search backend down for {query}")
        return [SearchHit(**hit) for hit in self.results.get(query, [])]


def decision(action, **fields) -> str:
    return json.dumps({"action": action, "reasoning": f"{action} step", **fields})


def tool_call(tool, **parameters) -> str:
    return decision("use_tool", tool=tool, parameters=parameters)


def character_params(**overrides) -> dict:
    params = {
        "name": "Sam Marlowe",
        "description": "A rumpled private eye with a bad knee and a good memory.",
        "personality": "Wry, patient, allergic to lies.",
        "scenario": "A rainy night in Bay City; a client walks in with a missing sister.",
        "first_mes": "*looks up from the bottle* Door was open. Talk.",
        "mes_example": "<START>\n{{user}}: Are you the detective?\n{{char}}: Depends who's asking.",
        "creator_notes": "Best with slow-burn mysteries.",
        "tags": "noir, detective, 1940s",
    }
    params.update(overrides)
    return params


def structural_content(tag: str, length: int = MIN_LENGTH + 20) -> str:
    body = ("Rain hammers the neon of Bay City. " * 20)[:length]
    return f"<{tag}>\n{body}\n</{tag}>"


def supplement_params(index: int, **overrides) -> dict:
    params = {
        "keys": [f"place{index}", f"alias{index}"],
        "content": f"Details about place {index}: smoky bars, crooked cops, wet alleys.",
        "comment": f"Place {index}",
    }
    params.update(overrides)
    return params


def happy_path_script() -> List[str]:
    """Decisions that build a complete card and worldbook in nine turns."""
    return [
        tool_call("CHARACTER", **character_params()),
        tool_call("STATUS", content=structural_content("status"), comment="STATUS"),
        tool_call("USER_SETTING", content=structural_content("user_setting"), comment="USER_SETTING"),
        tool_call("WORLD_VIEW", content=structural_content("world_view"), comment="WORLD_VIEW"),
    ] + [tool_call("SUPPLEMENT", **supplement_params(i)) for i in range(5)]


def make_context(session_id: str = "session-1", objective: str = "Create a noir detective character",
                 search_api_key: Optional[str] = None) -> ExecutionContext:
    context = ExecutionContext(
        session_id=session_id,
        llm_config=LLMConfig(model_name="test-model", search_api_key=search_api_key),
        title="Test Session",
    )
    context.research_state = ResearchState(main_objective=objective, task_queue=default_plan(objective))
    return context


async def make_engine(responses, max_iterations: int = 20, enforce_task_ordering: bool = True,
                      store=None, search_client=None, timeout_ms: int = 300_000, **context_kwargs):
    """Engine over a fresh in-memory session; returns (engine, store, chat_client)."""
    store = store or InMemorySessionStore()
    record = await store.create_session("Test Session", user_request="Create a noir detective character")
    context = make_context(session_id=record.id, **context_kwargs)
    client = ScriptedChatClient(responses)
    registry = build_default_registry(
        structural_min_length=MIN_LENGTH,
        search_client_factory=(lambda key: search_client) if search_client else None,
    )
    engine = AgentEngine(
        context=context,
        registry=registry,
        chat_client=client,
        store=store,
        max_iterations=max_iterations,
        timeout_ms=timeout_ms,
        enforce_task_ordering=enforce_task_ordering,
    )
    return engine, store, client


def make_settings(**overrides) -> Settings:
    values = dict(session_store="memory", google_api_key="", google_api_keys="", tavily_api_key="",
                  max_iterations=20, structural_min_length=MIN_LENGTH)
    values.update(overrides)
    return Settings(**values)


def make_service(scripts, store=None, **settings):
    """Service whose n-th engine gets the n-th script; returns (service, clients)."""
    scripts = list(scripts)
    clients = []

    def factory(config):
        client = ScriptedChatClient(scripts.pop(0) if scripts else [])
        clients.append(client)
        return client

    service = AgentService(
        build_default_registry(structural_min_length=MIN_LENGTH),
        store or InMemorySessionStore(),
        settings=make_settings(**settings),
        chat_client_factory=factory,
    )
    return service, clients
