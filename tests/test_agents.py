"""
Tests for agents and clones.
"""

import asyncio

import pytest

from automcm.agents.base import Agent, build_system_prompt
from automcm.agents.clones import CloneSpawner
from automcm.agents.modeler import build_model_request, extract_code
from automcm.agents.researcher import build_research_request
from automcm.errors import ConfigurationError, ProviderRequestError
from automcm.models import CloneStatus

from conftest import StubClient, event_types


class TestAgentConversation:
    """Test transcript ownership and the request window."""

    @pytest.mark.asyncio
    async def test_history_grows_by_two_per_exchange(self):
        agent = Agent("modeler", client=StubClient("reply"))

        await agent.send_message("first")
        await agent.send_message("second")

        assert [m.role for m in agent.history] == ["user", "assistant", "user", "assistant"]
        assert agent.history[2].content == "second"
        assert len(agent.client.calls[1]["conversation"]) == 3

    @pytest.mark.asyncio
    async def test_system_prompt_carries_role(self):
        agent = Agent("writer", client=StubClient())
        await agent.send_message("hi")

        prompt = agent.client.calls[0]["system_prompt"]
        assert prompt.startswith("You are an AI agent working in AutoMCM")
        assert "WRITER MODE ACTIVE" in prompt
        assert build_system_prompt("general") == build_system_prompt("unknown-role")

    @pytest.mark.asyncio
    async def test_failed_call_keeps_user_message(self):
        client = StubClient(ProviderRequestError("boom", status_code=500))
        agent = Agent("general", client=client)

        with pytest.raises(ProviderRequestError):
            await agent.send_message("question")

        assert len(agent.history) == 1
        assert agent.history[0].content == "question"

    @pytest.mark.asyncio
    async def test_window_caps_request_not_history(self):
        agent = Agent("general", client=StubClient("ok"), max_history=3)
        for i in range(4):
            await agent.send_message(f"m{i}")

        window = agent.client.calls[-1]["conversation"]
        assert len(agent.history) == 8
        assert window[0].role == "user"
        assert len(window) <= 3
        assert window[-1].content == "m3"

    @pytest.mark.asyncio
    async def test_options_forwarded(self):
        agent = Agent("writer", client=StubClient())
        await agent.send_message("x", max_tokens=10)
        assert agent.client.calls[0]["options"] == {"max_tokens": 10}

    @pytest.mark.asyncio
    async def test_clear_history(self):
        agent = Agent("general", client=StubClient())
        await agent.send_message("x")
        agent.clear_history()
        assert agent.history == ()


class TestCloneSpawner:
    """Test clone lifecycle and fan-out."""

    def test_spawn_and_complete(self, bus, events):
        spawner = CloneSpawner(lambda role: Agent(role, client=StubClient()), bus=bus)

        clone = spawner.spawn("researcher", "Find papers")
        other = spawner.spawn("researcher", "Find papers")

        assert clone.id != other.id
        assert clone.id.startswith("researcher-")
        assert clone.agent is not other.agent
        assert len(spawner.get_clones()) == 2

        spawner.complete(clone)
        spawner.complete(clone)

        assert clone.status is CloneStatus.completed
        assert spawner.get_clones() == [other]
        assert len(spawner.all_clones()) == 2
        assert event_types(events) == ["clone-spawned", "clone-spawned", "clone-completed"]

    @pytest.mark.asyncio
    async def test_run_completes_clone_on_failure(self):
        spawner = CloneSpawner(lambda role: Agent(role, client=StubClient(RuntimeError("down"))))

        with pytest.raises(RuntimeError):
            await spawner.run("modeler", "Implement", "plan")

        assert spawner.get_clones() == []
        assert spawner.all_clones()[0].status is CloneStatus.completed

    @pytest.mark.asyncio
    async def test_fan_in_preserves_task_order(self):
        """Slowest task first: results still come back in input order."""
        delays = {"task-1": 0.06, "task-2": 0.01, "task-3": 0.03}
        finished = []

        def factory(role):
            delay = delays[role]

            def reply(text):
                finished.append(text)
                return text

            return Agent(role, client=StubClient(reply, delay=delay))

        spawner = CloneSpawner(factory)
        tasks = [{"role": task_id, "task": f"do {task_id}", "message": task_id} for task_id in delays]

        results = await spawner.execute_parallel(tasks)

        assert finished == ["task-2", "task-3", "task-1"]
        assert [r.result.message for r in results] == ["task-1", "task-2", "task-3"]
        assert [r.task for r in results] == ["do task-1", "do task-2", "do task-3"]
        assert spawner.get_clones() == []

    @pytest.mark.asyncio
    async def test_fan_out_runs_concurrently(self):
        spawner = CloneSpawner(lambda role: Agent(role, client=StubClient("done", delay=0.05)))
        tasks = [{"role": "researcher", "task": str(i), "message": str(i)} for i in range(5)]

        loop = asyncio.get_running_loop()
        started = loop.time()
        await spawner.execute_parallel(tasks)

        assert loop.time() - started < 0.2

    @pytest.mark.asyncio
    async def test_partial_failure(self):
        def factory(role):
            reply = RuntimeError("bad task") if role == "broken" else "fine"
            return Agent(role, client=StubClient(reply))

        spawner = CloneSpawner(factory)
        tasks = [
            {"role": "ok", "task": "a", "message": "a"},
            {"role": "broken", "task": "b", "message": "b"},
        ]

        results = await spawner.execute_parallel(tasks)
        assert results[0].result.message == "fine"
        assert isinstance(results[1].error, RuntimeError)

        with pytest.raises(RuntimeError, match="bad task"):
            await spawner.execute_parallel(tasks, raise_on_error=True)

    @pytest.mark.asyncio
    async def test_agent_construction_failure_stays_with_its_task(self):
        """A role whose config cannot be built fails alone; sibling clones still finish."""
        finished = []

        def factory(role):
            if role == "unconfigured":
                raise ConfigurationError("No API key for modeler")

            def reply(text):
                finished.append(text)
                return text

            return Agent(role, client=StubClient(reply, delay=0.02))

        spawner = CloneSpawner(factory)
        tasks = [
            {"role": "researcher", "task": "a", "message": "a"},
            {"role": "unconfigured", "task": "b", "message": "b"},
            {"role": "writer", "task": "c", "message": "c"},
        ]

        results = await spawner.execute_parallel(tasks)

        assert sorted(finished) == ["a", "c"]
        assert isinstance(results[1].error, ConfigurationError)
        assert results[1].clone_id is None
        assert [r.result.message for r in (results[0], results[2])] == ["a", "c"]
        assert spawner.get_clones() == []
        assert len(spawner.all_clones()) == 2


class TestRolePrompts:
    def test_extract_code_preference(self):
        assert extract_code("```python\na = 1\n```") == "a = 1\n"
        assert extract_code("```py\nb = 2\n```") == "b = 2\n"
        assert extract_code("```\nc = 3\n```") == "c = 3\n"
        assert extract_code("no code here") is None
        assert extract_code(None) is None
        assert extract_code("```python\n   \n```") is None

    def test_model_request_lists_data_only_when_present(self):
        empty = build_model_request("PLAN", {"data_dir": "/w/data", "file_count": 0, "files": []})
        assert "PLAN" in empty
        assert "Available Data Files" not in empty

        with_data = build_model_request(
            "PLAN", {"data_dir": "/w/data", "file_count": 1, "files": [{"name": "a.csv"}]}
        )
        assert "Available Data Files" in with_data
        assert "a.csv" in with_data

    def test_research_request(self):
        text = build_research_request("PROBLEM", "PARSED", ["ARIMA", "regression analysis"])
        assert text.index("PROBLEM") < text.index("PARSED")
        assert "ARIMA, regression analysis" in text
        assert "none identified" in build_research_request("P", "A", [])
