"""
Pydantic models for the generation loop: tools, decisions, plan state,
knowledge, transcript, and the character/worldbook output.

Field names mirror the export records so ``model_dump()`` of the output can
be handed to downstream renderers with only key renames (see
``cardforge.utils.card_export``).
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _new_id(prefix: str = "") -> str:
    return f"{prefix}{uuid.uuid4().hex[:12]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class SessionStatus(str, Enum):
    IDLE = "idle"
    THINKING = "thinking"
    EXECUTING = "executing"
    WAITING_FOR_USER = "waiting_for_user"
    COMPLETED = "completed"
    FAILED = "failed"


class ToolType(str, Enum):
    """Closed set of tool kinds the decision engine may select."""
    SEARCH = "SEARCH"
    ASK_USER = "ASK_USER"
    CHARACTER = "CHARACTER"
    STATUS = "STATUS"
    USER_SETTING = "USER_SETTING"
    WORLD_VIEW = "WORLD_VIEW"
    SUPPLEMENT = "SUPPLEMENT"
    REFLECT = "REFLECT"
    COMPLETE = "COMPLETE"


class DecisionAction(str, Enum):
    USE_TOOL = "use_tool"
    ASK_USER = "ask_user"
    COMPLETE_TASK = "complete_task"
    REQUEST_CLARIFICATION = "request_clarification"


class TaskStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class ParameterType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"


class EntryKind(str, Enum):
    STATUS = "status"
    USER_SETTING = "user_setting"
    WORLD_VIEW = "world_view"
    SUPPLEMENT = "supplement"


# ---------------------------------------------------------------------------
# Tool declaration surface
# ---------------------------------------------------------------------------

class ToolParameter(BaseModel):
    name: str
    type: ParameterType
    required: bool = False
    description: str = ""


class ToolInfo(BaseModel):
    """What the decision engine is told about a tool."""
    id: ToolType
    name: str
    description: str
    parameters: List[ToolParameter] = Field(default_factory=list)


class ExecutionResult(BaseModel):
    """Outcome of one tool call.  ``result`` is tool specific."""
    success: bool
    result: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, result: Any = None) -> "ExecutionResult":
        return cls(success=True, result=result)

    @classmethod
    def fail(cls, error: str) -> "ExecutionResult":
        return cls(success=False, error=error)


# ---------------------------------------------------------------------------
# Plan / task state
# ---------------------------------------------------------------------------

def _coerce_tool_type(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().upper()
    return value


class TaskSpec(BaseModel):
    """A task as proposed by the model, before it gets an id."""
    model_config = ConfigDict(extra="ignore")

    description: str
    tool: ToolType
    parameters: Dict[str, Any] = Field(default_factory=dict)
    dependencies: List[str] = Field(default_factory=list)
    priority: int = 5
    reasoning: Optional[str] = None

    @field_validator("tool", mode="before")
    @classmethod
    def normalize_tool(cls, value: Any) -> Any:
        return _coerce_tool_type(value)


class PlanTask(TaskSpec):
    id: str = Field(default_factory=lambda: _new_id("task_"))
    status: TaskStatus = TaskStatus.PENDING

    @classmethod
    def from_spec(cls, spec: TaskSpec) -> "PlanTask":
        return cls(**spec.model_dump())


class TaskAdjustment(BaseModel):
    """Optional plan change carried by a decision."""
    model_config = ConfigDict(extra="ignore")

    reasoning: str = ""
    add_tasks: List[TaskSpec] = Field(default_factory=list)
    remove_task_ids: List[str] = Field(default_factory=list)


class KnowledgeEntry(BaseModel):
    id: str = Field(default_factory=lambda: _new_id("kb_"))
    source: str
    content: str
    url: Optional[str] = None
    relevance: int = Field(default=70, ge=0, le=100)


class ResearchState(BaseModel):
    main_objective: str = ""
    task_queue: List[PlanTask] = Field(default_factory=list)
    completed_tasks: List[PlanTask] = Field(default_factory=list)
    knowledge_base: List[KnowledgeEntry] = Field(default_factory=list)

    def find_task(self, task_id: str) -> Optional[PlanTask]:
        for task in (*self.task_queue, *self.completed_tasks):
            if task.id == task_id:
                return task
        return None

    def open_tasks(self) -> List[PlanTask]:
        return [t for t in self.task_queue
                if t.status in (TaskStatus.PENDING, TaskStatus.EXECUTING)]


# ---------------------------------------------------------------------------
# Output: character + worldbook
# ---------------------------------------------------------------------------

CHARACTER_REQUIRED_FIELDS = (
    "name", "description", "personality", "scenario",
    "first_mes", "mes_example", "creator_notes", "tags",
)


class CharacterData(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    personality: Optional[str] = None
    scenario: Optional[str] = None
    first_mes: Optional[str] = None
    mes_example: Optional[str] = None
    creator_notes: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    alternate_greetings: List[str] = Field(default_factory=list)

    def missing_fields(self) -> List[str]:
        missing = []
        for field in CHARACTER_REQUIRED_FIELDS:
            value = getattr(self, field)
            if isinstance(value, list):
                if not value:
                    missing.append(field)
            elif not (value and value.strip()):
                missing.append(field)
        return missing

    def is_complete(self) -> bool:
        return not self.missing_fields()


class WorldbookEntry(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: EntryKind
    keys: List[str] = Field(default_factory=list)
    keysecondary: List[str] = Field(default_factory=list)
    comment: str
    content: str
    constant: bool
    selective: bool = True
    insert_order: int
    position: int
    disable: bool = False
    probability: int = 100
    use_probability: bool = True


class WorldbookData(BaseModel):
    """Structural entries live in fixed slots so each can exist at most once."""
    status: Optional[WorldbookEntry] = None
    user_setting: Optional[WorldbookEntry] = None
    world_view: Optional[WorldbookEntry] = None
    supplements: List[WorldbookEntry] = Field(default_factory=list)

    def entries(self) -> List[WorldbookEntry]:
        fixed = [e for e in (self.status, self.user_setting, self.world_view) if e is not None]
        return fixed + list(self.supplements)

    def slot(self, kind: EntryKind) -> Optional[WorldbookEntry]:
        return getattr(self, kind.value) if kind is not EntryKind.SUPPLEMENT else None


class GenerationOutput(BaseModel):
    character_data: CharacterData = Field(default_factory=CharacterData)
    worldbook_data: WorldbookData = Field(default_factory=WorldbookData)


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------

class ToolDecision(BaseModel):
    """Structured answer to "what should happen next"."""
    model_config = ConfigDict(extra="ignore")

    action: DecisionAction
    # Raw id as the model wrote it; resolved against the registry at dispatch
    tool: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)
    reasoning: str = ""
    task_id: Optional[str] = None
    message: Optional[str] = None
    options: List[str] = Field(default_factory=list)
    result: Optional[GenerationOutput] = None
    is_complete: bool = False
    task_adjustment: Optional[TaskAdjustment] = None

    @field_validator("tool", mode="before")
    @classmethod
    def normalize_tool(cls, value: Any) -> Any:
        return _coerce_tool_type(value)

    @field_validator("action", mode="before")
    @classmethod
    def normalize_action(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("parameters", mode="before")
    @classmethod
    def null_parameters(cls, value: Any) -> Any:
        return {} if value is None else value

    @model_validator(mode="after")
    def tool_required_for_use_tool(self) -> "ToolDecision":
        if self.action is DecisionAction.USE_TOOL and not self.tool:
            raise ValueError("use_tool decisions must name a tool")
        return self

    @property
    def tool_type(self) -> Optional[ToolType]:
        """The named tool kind, or ``None`` when the id is not a known kind."""
        try:
            return ToolType(self.tool) if self.tool else None
        except ValueError:
            return None


FALLBACK_REASONING = "fallback: unparseable decision"


def fallback_decision() -> ToolDecision:
    """Safe default used whenever model output cannot be parsed."""
    return ToolDecision(
        action=DecisionAction.COMPLETE_TASK,
        is_complete=True,
        reasoning=FALLBACK_REASONING,
    )


# ---------------------------------------------------------------------------
# Transcript
# ---------------------------------------------------------------------------

MessageRole = Literal["user", "agent", "system"]
MessageType = Literal[
    "user_input", "agent_thinking", "agent_action", "agent_question",
    "tool_result", "tool_failure", "system_info",
]


class Message(BaseModel):
    id: str = Field(default_factory=lambda: _new_id("msg_"))
    role: MessageRole
    content: str
    type: MessageType = "system_info"
    timestamp: datetime = Field(default_factory=_utcnow)


class Step(BaseModel):
    id: str = Field(default_factory=lambda: _new_id("step_"))
    execution_order: int
    action: DecisionAction
    tool: Optional[ToolType] = None
    task_id: Optional[str] = None
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Any = None
    status: StepStatus
    reasoning: str = ""
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

class LLMConfig(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    llm_type: Literal["gemini", "ollama"] = "gemini"
    model_name: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    temperature: float = 0.7
    max_tokens: Optional[int] = None
    search_api_key: Optional[str] = None

    @classmethod
    def from_settings(cls, settings, **overrides: Any) -> "LLMConfig":
        values: Dict[str, Any] = {
            "llm_type": settings.llm_type,
            "model_name": settings.model_name,
            "api_key": settings.google_api_key or None,
            "base_url": (settings.llm_base_url
                         or (settings.ollama_base_url if settings.llm_type == "ollama" else None)),
            "temperature": settings.temperature,
            "max_tokens": settings.max_output_tokens,
            "search_api_key": settings.tavily_api_key or None,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


# ---------------------------------------------------------------------------
# Public results
# ---------------------------------------------------------------------------

class GenerationResult(BaseModel):
    """What every public entry point returns.

    Exactly one of ``success``, ``error`` and ``needs_user_input`` describes
    the outcome.  A paused session doubles as the continuation marker:
    ``session_id`` plus ``needs_user_input=True``.
    """
    session_id: str
    status: SessionStatus
    success: bool = False
    needs_user_input: bool = False
    message: Optional[str] = None
    options: List[str] = Field(default_factory=list)
    output: Optional[GenerationOutput] = None
    error: Optional[str] = None

    @classmethod
    def succeeded(cls, session_id: str, output: GenerationOutput,
                  status: SessionStatus = SessionStatus.COMPLETED) -> "GenerationResult":
        return cls(session_id=session_id, status=status, success=True, output=output)

    @classmethod
    def failed(cls, session_id: str, error: str,
               status: SessionStatus = SessionStatus.FAILED,
               output: Optional[GenerationOutput] = None) -> "GenerationResult":
        return cls(session_id=session_id, status=status, error=error, output=output)

    @classmethod
    def waiting(cls, session_id: str, message: str,
                options: Optional[List[str]] = None) -> "GenerationResult":
        return cls(
            session_id=session_id,
            status=SessionStatus.WAITING_FOR_USER,
            needs_user_input=True,
            message=message,
            options=options or [],
        )


class SessionProgress(BaseModel):
    session_id: str
    title: str
    status: SessionStatus
    iterations: int
    max_iterations: int
    character_progress: int
    completed_fields: List[str]
    missing_fields: List[str]
    has_status: bool
    has_user_setting: bool
    has_world_view: bool
    supplement_count: int
    is_complete: bool
    has_result: bool
    pending_question: Optional[str] = None
