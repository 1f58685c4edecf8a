"""
Tests for the generation loop: termination, pause/resume, ordering and
resilience against bad model output.
"""

import asyncio
import json

from cardforge.schemas.agent_schemas import SessionStatus, StepStatus, ToolType
from cardforge.store.memory import InMemorySessionStore

from fakes import (
    character_params,
    decision,
    happy_path_script,
    make_engine,
    structural_content,
    tool_call,
)


def start(responses, request="Create a noir detective character", **kwargs):
    """Run a fresh engine on *responses*; returns (result, engine, store, client)."""
    async def scenario():
        engine, store, client = await make_engine(responses, **kwargs)
        result = await engine.start(request)
        return result, engine, store, client
    return asyncio.run(scenario())


def assert_single_outcome(result):
    outcomes = [result.success, result.error is not None, result.needs_user_input]
    assert outcomes.count(True) == 1, result


class FailingStatusStore(InMemorySessionStore):
    """Store that cannot persist the FAILED status."""

    async def update_status(self, session_id, status):
        if status is SessionStatus.FAILED:
            raise RuntimeError("database gone")
        await super().update_status(session_id, status)


class SlowSearchClient:
    async def search(self, query):
        await asyncio.sleep(5)
        return []


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

class TestCompletion:

    def test_happy_path_completes_with_worldbook_invariants(self):
        result, engine, _, client = start(happy_path_script())

        assert_single_outcome(result)
        assert result.success is True
        assert result.status is SessionStatus.COMPLETED
        assert engine.context.iterations == 9
        assert len(client.calls) == 9

        worldbook = result.output.worldbook_data
        for entry, order in ((worldbook.status, 1), (worldbook.user_setting, 2), (worldbook.world_view, 3)):
            assert entry.constant is True
            assert entry.insert_order == order
            assert entry.position == 0
        assert len(worldbook.supplements) == 5
        assert all(not e.constant and e.insert_order >= 10 and e.position == 2
                   for e in worldbook.supplements)
        assert result.output.character_data.tags == ["noir", "detective", "1940s"]

    def test_plan_fully_archived(self):
        _, engine, _, _ = start(happy_path_script())
        state = engine.context.research_state
        assert state.task_queue == []
        assert {t.id for t in state.completed_tasks} == {
            "task_character", "task_status", "task_user_setting", "task_world_view", "task_supplements",
        }

    def test_execution_order_strictly_increases(self):
        _, engine, _, _ = start(happy_path_script())
        orders = [s.execution_order for s in engine.context.steps]
        assert orders == list(range(1, 10))

    def test_store_receives_steps_messages_and_output(self):
        async def scenario():
            engine, store, _ = await make_engine(happy_path_script())
            await engine.start("Create a noir detective character")
            sid = engine.session_id
            return (await store.get_session(sid), await store.get_steps(sid),
                    await store.get_history(sid), engine)

        record, steps, history, engine = asyncio.run(scenario())
        assert record.status is SessionStatus.COMPLETED
        assert record.output == engine.context.generation_output
        assert record.snapshot["iterations"] == 9
        assert "api_key" not in record.snapshot["llm_config"]
        assert len(steps) == 9
        assert history[0].role == "user"
        assert history[0].content == "Create a noir detective character"
        assert len(history) == len(engine.context.message_history)

    def test_start_twice_rejected(self):
        async def scenario():
            engine, _, _ = await make_engine(happy_path_script())
            await engine.start("Create a noir detective character")
            return await engine.start("Another one"), engine

        result, engine = asyncio.run(scenario())
        assert result.success is False
        assert "already started" in result.error
        assert result.status is SessionStatus.COMPLETED
        assert engine.context.iterations == 9

    def test_complete_tool_finishes_when_output_complete(self):
        script = happy_path_script()
        # Leave the supplements task open so auto-completion does not kick in
        script.insert(0, decision("use_tool", tool="REFLECT", parameters={
            "new_tasks": [{"description": "Double-check slang", "tool": "SEARCH"}],
        }))
        script.append(tool_call("COMPLETE", finished=True))
        result, engine, _, client = start(script)
        assert result.success is True
        assert len(client.calls) == 11
        assert engine.context.steps[-1].tool is ToolType.COMPLETE


# ---------------------------------------------------------------------------
# Termination guarantees
# ---------------------------------------------------------------------------

class TestTermination:

    def test_iteration_budget_fails_session(self):
        async def scenario():
            engine, _, client = await make_engine([], max_iterations=5)
            client.default = tool_call("SEARCH", query="noir")
            return await engine.start("Create a noir detective character"), client

        result, client = asyncio.run(scenario())
        assert_single_outcome(result)
        assert result.status is SessionStatus.FAILED
        assert result.error == "Maximum iterations reached without completion"
        assert len(client.calls) <= 5
        assert result.output is not None

    def test_iteration_budget_survives_store_failure(self):
        async def scenario():
            engine, _, client = await make_engine([], max_iterations=2, store=FailingStatusStore())
            client.default = tool_call("SEARCH", query="noir")
            return await engine.start("Create a noir detective character"), engine

        result, engine = asyncio.run(scenario())
        assert_single_outcome(result)
        assert result.error == "Maximum iterations reached without completion"
        failed = [m for m in engine.context.message_history if m.content.startswith("Generation failed")]
        assert len(failed) == 1

    def test_unparseable_output_terminates_same_turn(self):
        result, engine, _, client = start(["I am not sure what to do next, sorry!"])
        assert_single_outcome(result)
        assert len(client.calls) == 1
        assert result.status is SessionStatus.FAILED
        assert result.error.startswith("Generation ended before the output was complete")
        assert result.output is not None
        assert engine.context.steps[0].reasoning == "fallback: unparseable decision"

    def test_fallback_after_character_lists_missing_entries(self):
        result, _, _, _ = start([
            tool_call("CHARACTER", **character_params()),
            "{{{ not json",
        ])
        assert result.success is False
        assert "missing status entry" in result.error
        assert "character missing fields" not in result.error

    def test_complete_task_with_result_adopts_it(self):
        async def scenario():
            donor, _, _ = await make_engine(happy_path_script())
            done = await donor.start("Create a noir detective character")
            payload = {"action": "complete_task", "reasoning": "done",
                       "result": done.output.model_dump(mode="json")}
            engine, _, _ = await make_engine([json.dumps(payload)])
            return await engine.start("Create a noir detective character")

        result = asyncio.run(scenario())
        assert result.success is True
        assert len(result.output.worldbook_data.supplements) == 5

    def test_transport_error_fails_session(self):
        result, engine, _, _ = start([ConnectionError("network down")])
        assert_single_outcome(result)
        assert result.success is False
        assert result.status is SessionStatus.FAILED
        assert "network down" in result.error
        assert engine.context.message_history[-1].content.startswith("Generation failed:")

    def test_decision_timeout_fails_session(self):
        class HangingClient:
            async def complete(self, system_prompt, human_prompt, config):
                await asyncio.sleep(5)

        async def scenario():
            engine, _, _ = await make_engine([], timeout_ms=50)
            engine.decision_engine._client = HangingClient()
            return await engine.start("Create a noir detective character")

        result = asyncio.run(scenario())
        assert result.status is SessionStatus.FAILED
        assert result.error == "Generation aborted: TimeoutError"


# ---------------------------------------------------------------------------
# Failed steps do not stop the loop
# ---------------------------------------------------------------------------

class TestFailedSteps:

    def test_failed_tool_step_then_recovery(self):
        script = [tool_call("CHARACTER")] + happy_path_script()
        result, engine, _, _ = start(script)
        assert result.success is True
        first = engine.context.steps[0]
        assert first.status is StepStatus.FAILED
        assert "requires at least one character field" in first.error
        failures = [m for m in engine.context.message_history if m.type == "tool_failure"]
        assert len(failures) == 1

    def test_unknown_tool_is_a_failed_step(self):
        result, engine, _, client = start([
            tool_call("CHARACTER", **character_params()),
            tool_call("WORLDBOOK", content="everything at once"),
            tool_call("STATUS", content=structural_content("status"), comment="STATUS"),
            "nonsense",
        ])
        steps = engine.context.steps
        assert len(client.calls) == 4
        assert steps[1].status is StepStatus.FAILED
        assert steps[1].error == "Unknown tool: WORLDBOOK"
        assert steps[1].tool is None
        assert steps[2].status is StepStatus.COMPLETED
        assert engine.context.generation_output.worldbook_data.status is not None
        assert result.status is SessionStatus.FAILED

    def test_empty_supplement_keys_leave_no_entry(self):
        script = happy_path_script()[:4] + [
            tool_call("SUPPLEMENT", keys=[], content="The docks.", comment="Docks"),
            "nonsense",
        ]
        result, engine, _, _ = start(script)
        assert engine.context.steps[4].status is StepStatus.FAILED
        assert "non-empty array" in engine.context.steps[4].error
        assert engine.context.generation_output.worldbook_data.supplements == []
        assert result.status is SessionStatus.FAILED

    def test_complete_on_incomplete_output_continues(self):
        result, engine, _, client = start([
            tool_call("COMPLETE", finished=True),
            "nonsense",
        ])
        assert len(client.calls) == 2
        assert any(m.content.startswith("Completion rejected") for m in engine.context.message_history)
        assert result.status is SessionStatus.FAILED

    def test_tool_timeout_is_a_failed_step(self):
        result, engine, _, client = start(
            [tool_call("SEARCH", query="noir"), "nonsense"],
            timeout_ms=100, search_client=SlowSearchClient(), search_api_key="k",
        )
        step = engine.context.steps[0]
        assert step.status is StepStatus.FAILED
        assert "timed out" in step.error
        assert len(client.calls) == 2

    def test_search_without_key_is_a_failed_step(self):
        _, engine, _, _ = start([tool_call("SEARCH", query="noir"), "nonsense"])
        assert engine.context.steps[0].status is StepStatus.FAILED
        assert "API key not configured" in engine.context.steps[0].error

    def test_structural_rewrite_replaces_entry(self):
        script = happy_path_script()[:4] + [
            tool_call("STATUS", content=structural_content("status", length=400), comment="STATUS"),
            "nonsense",
        ]
        _, engine, _, _ = start(script)
        worldbook = engine.context.generation_output.worldbook_data
        assert len([e for e in worldbook.entries() if e.comment == "STATUS"]) == 1
        assert len(worldbook.status.content) > 400


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------

class TestOrdering:

    def test_world_view_rejected_until_character_exists(self):
        world_view = tool_call("WORLD_VIEW", content=structural_content("world_view"), comment="WORLD_VIEW")
        result, engine, _, _ = start([
            world_view,
            tool_call("CHARACTER", name="Sam Marlowe", description="A rumpled private eye."),
            world_view,
            tool_call("CHARACTER", **character_params()),
            world_view,
            "nonsense",
        ])
        steps = engine.context.steps
        assert steps[0].status is StepStatus.FAILED
        assert "complete character card" in steps[0].error
        assert steps[1].status is StepStatus.COMPLETED
        assert steps[2].status is StepStatus.FAILED
        assert steps[4].status is StepStatus.COMPLETED
        card = engine.context.generation_output.character_data
        assert card.name == "Sam Marlowe"
        assert engine.context.generation_output.worldbook_data.world_view is not None
        assert result.status is SessionStatus.FAILED

    def test_supplement_needs_world_view(self):
        _, engine, _, _ = start([
            tool_call("CHARACTER", **character_params()),
            tool_call("SUPPLEMENT", keys=["docks"], content="The docks.", comment="Docks"),
            "nonsense",
        ])
        assert engine.context.steps[1].status is StepStatus.FAILED
        assert "WORLD_VIEW" in engine.context.steps[1].error

    def test_ordering_can_be_disabled(self):
        _, engine, _, _ = start([
            tool_call("WORLD_VIEW", content=structural_content("world_view"), comment="WORLD_VIEW"),
            "nonsense",
        ], enforce_task_ordering=False)
        assert engine.context.steps[0].status is StepStatus.COMPLETED
        assert engine.context.generation_output.worldbook_data.world_view is not None

    def test_removed_task_releases_its_dependents(self):
        adjusted = decision(
            "use_tool", tool="CHARACTER", parameters=character_params(),
            task_adjustment={"reasoning": "card is simple", "remove_task_ids": ["task_character"]},
        )
        _, engine, _, _ = start([
            adjusted,
            tool_call("STATUS", content=structural_content("status"), comment="STATUS"),
            "nonsense",
        ])
        steps = engine.context.steps
        assert steps[1].status is StepStatus.COMPLETED, steps[1].error
        queue = engine.context.research_state.task_queue
        assert all("task_character" not in t.dependencies for t in queue)

    def test_adjustment_with_unknown_dependency_skipped(self):
        adjusted = decision(
            "use_tool", tool="CHARACTER", parameters=character_params(),
            task_adjustment={"reasoning": "add research",
                             "add_tasks": [{"description": "Look up slang", "tool": "SEARCH",
                                            "dependencies": ["task_missing"]}]},
        )
        _, engine, _, _ = start([adjusted, "nonsense"])
        assert all(t.tool is not ToolType.SEARCH for t in engine.context.research_state.task_queue)


# ---------------------------------------------------------------------------
# Pause / resume
# ---------------------------------------------------------------------------

class TestPauseResume:

    def test_ask_user_pauses(self):
        result, engine, store, _ = start([decision("ask_user", message="What genre?")])
        assert_single_outcome(result)
        assert result.needs_user_input is True
        assert result.status is SessionStatus.WAITING_FOR_USER
        assert "What genre?" in result.message
        assert engine.context.status is SessionStatus.WAITING_FOR_USER
        assert engine.context.pending_question == "What genre?"

    def test_ask_user_tool_form_carries_options(self):
        result, _, _, _ = start([tool_call("ASK_USER", question="Which era?",
                                           options=["1920s", "1940s", "1970s", "Now"])])
        assert result.needs_user_input
        assert result.options == ["1920s", "1940s", "1970s"]

    def test_resume_continues_to_completion(self):
        async def scenario():
            engine, store, client = await make_engine(
                [decision("ask_user", message="What genre?")] + happy_path_script()
            )
            paused = await engine.start("Create a character")
            done = await engine.resume("Noir, please")
            return paused, done, engine

        paused, done, engine = asyncio.run(scenario())
        assert paused.needs_user_input
        assert done.success is True
        assert engine.context.iterations == 10
        assert engine.context.pending_question is None
        user_messages = [m.content for m in engine.context.message_history if m.role == "user"]
        assert user_messages == ["Create a character", "Noir, please"]

    def test_resume_outside_waiting_state_changes_nothing(self):
        async def scenario():
            engine, _, client = await make_engine(happy_path_script())
            await engine.start("Create a noir detective character")
            before = engine.context.generation_output.model_copy(deep=True)
            history_len = len(engine.context.message_history)
            calls = len(client.calls)
            result = await engine.resume("hello?")
            return result, engine, before, history_len, calls, client

        result, engine, before, history_len, calls, client = asyncio.run(scenario())
        assert result.success is False
        assert "not waiting for user input" in result.error
        assert result.status is SessionStatus.COMPLETED
        assert engine.context.generation_output == before
        assert len(engine.context.message_history) == history_len
        assert len(client.calls) == calls

    def test_resume_on_fresh_session_rejected(self):
        async def scenario():
            engine, _, _ = await make_engine([])
            return await engine.resume("hi"), engine

        result, engine = asyncio.run(scenario())
        assert result.error is not None
        assert engine.context.status is SessionStatus.IDLE

    def test_request_clarification_pauses_without_pending_question(self):
        result, engine, _, _ = start([decision("request_clarification", message="Which era?")])
        assert result.needs_user_input
        assert result.message == "Which era?"
        assert engine.context.status is SessionStatus.WAITING_FOR_USER
        assert engine.context.pending_question is None

    def test_iteration_budget_spans_resumes(self):
        async def scenario():
            engine, _, client = await make_engine(
                [decision("ask_user", message="Genre?"), decision("ask_user", message="Era?")],
                max_iterations=2,
            )
            await engine.start("Create a character")
            await engine.resume("Noir")
            return await engine.resume("1940s"), client

        result, client = asyncio.run(scenario())
        assert result.error == "Maximum iterations reached without completion"
        assert len(client.calls) == 2
