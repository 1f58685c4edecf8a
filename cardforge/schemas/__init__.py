# Generation loop schemas
from .agent_schemas import (
    SessionStatus,
    ToolType,
    DecisionAction,
    TaskStatus,
    StepStatus,
    ParameterType,
    EntryKind,
    # Tool declaration surface
    ToolParameter,
    ToolInfo,
    ExecutionResult,
    # Plan state
    TaskSpec,
    PlanTask,
    TaskAdjustment,
    KnowledgeEntry,
    ResearchState,
    # Output
    CHARACTER_REQUIRED_FIELDS,
    CharacterData,
    WorldbookEntry,
    WorldbookData,
    GenerationOutput,
    # Decisions
    ToolDecision,
    FALLBACK_REASONING,
    fallback_decision,
    # Transcript
    Message,
    Step,
    LLMConfig,
    GenerationResult,
    SessionProgress,
)

# REST payloads
from .api_messages import (
    LLMOverrides,
    StartGenerationRequest,
    ContinueGenerationRequest,
    SessionSummary,
    GenerationStats,
    ExportedSession,
    validate_payload,
)
