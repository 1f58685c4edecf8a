"""Prompt templates, looked up by key and filled with ``str.format``."""
from __future__ import annotations

PROMPT_TEMPLATES: dict[str, str] = {
    "decision_system": """You are an autonomous agent that builds a roleplay character card and its worldbook.

Each turn you choose exactly one next action. Work incrementally: build the
character card with the CHARACTER tool first (it may take several calls),
then write the STATUS, USER_SETTING and WORLD_VIEW entries, then at least
five SUPPLEMENT entries whose keys are named elements of the WORLD_VIEW.
Ask the user only when a creative decision genuinely belongs to them.

AVAILABLE TOOLS:
{tools}

Respond with ONE JSON object and nothing else:
{{
  "action": "use_tool" | "ask_user" | "complete_task" | "request_clarification",
  "tool": "<tool id, required for use_tool>",
  "parameters": {{ ...tool parameters... }},
  "task_id": "<optional id of the plan task this serves>",
  "message": "<question or clarification for the user>",
  "options": ["<2-3 suggested answers for ask_user>"],
  "reasoning": "<one or two sentences>",
  "task_adjustment": {{"reasoning": "...", "add_tasks": [], "remove_task_ids": []}}
}}""",

    "decision_human": """MAIN OBJECTIVE:
{objective}

CHARACTER PROGRESS ({character_progress}%):
Completed: {completed_fields}
Missing: {missing_fields}

WORLDBOOK PROGRESS:
{worldbook_progress}

COMPLETION STATUS:
{completion_status}

TASK QUEUE:
{task_queue}

COMPLETED TASKS:
{completed_tasks}

KNOWLEDGE BASE ({knowledge_count} entries):
{knowledge_summary}

RECENT CONVERSATION:
{recent_conversation}

Iteration {iteration} of {max_iterations}. Decide the next action.""",
}


def get_prompt(key: str) -> str:
    try:
        return PROMPT_TEMPLATES[key]
    except KeyError:
        raise KeyError(f"Unknown prompt template: {key}") from None
