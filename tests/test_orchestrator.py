"""
Tests for the master orchestrator: planning, modeling and writing phases.
"""

import pytest

from automcm.errors import CollaboratorError, PhasePreconditionError, ProviderRequestError
from automcm.models import ArtifactKind, Phase, ProblemMeta
from automcm.workflows.checkpoint import state_path
from automcm.workflows.orchestrator import (
    EXPERIMENTS_ARTIFACT,
    MODELING_ARTIFACT,
    PLANNING_ARTIFACT,
    SENSITIVITY_ARTIFACT,
    VISUALIZATIONS_ARTIFACT,
    WRITING_ARTIFACT,
    Orchestrator,
)

from conftest import MODEL_REPLY, FakeCompiler, FakeSandbox, StubAgentFactory, event_types

PROBLEM = "Optimize vehicle routing to minimize response time"


def make_paper(figures: int) -> str:
    body = " ".join(["word"] * 6000)
    figure_blocks = "\n".join(
        f"\\begin{{figure}}\\includegraphics{{fig{i}.png}}\\caption{{F{i}}}\\end{{figure}}"
        for i in range(figures)
    )
    return (
        "\\documentclass{article}\n\\begin{document}\n"
        f"\\section{{Introduction}}\n{body}\n"
        f"\\section{{Experimental Validation}}\n{figure_blocks}\n"
        "\\end{document}"
    )


async def make_orchestrator(path, agents, bus=None, sandbox=None, compiler=None) -> Orchestrator:
    orch = Orchestrator(
        path,
        bus=bus,
        agent_factory=agents,
        sandbox=sandbox or FakeSandbox(),
        compiler=compiler or FakeCompiler(),
    )
    await orch.initialize_workspace(ProblemMeta(title="Test"))
    return orch


class TestInitialization:
    @pytest.mark.asyncio
    async def test_scaffold(self, orchestrator, workspace_path):
        for name in ("models", "figures", "sections", "references", "data", "artifacts"):
            assert (workspace_path / name).is_dir()
        automcm = (workspace_path / "AUTOMCM.md").read_text()
        assert "# AUTOMCM: Test Problem" in automcm
        assert "Variable Registry" in automcm
        assert (workspace_path / "paper.tex").read_text().startswith("\\documentclass[12pt]{article}")
        assert (workspace_path / "artifacts" / "index.json").exists()
        assert orchestrator.initialized
        assert orchestrator.phase is Phase.idle

    @pytest.mark.asyncio
    async def test_reinitialize_keeps_files(self, orchestrator, workspace_path, stub_agents):
        (workspace_path / "AUTOMCM.md").write_text("custom")
        again = await make_orchestrator(workspace_path, stub_agents)
        assert again.initialized
        assert (workspace_path / "AUTOMCM.md").read_text() == "custom"

    @pytest.mark.asyncio
    async def test_phases_require_initialization(self, tmp_path, stub_agents):
        orch = Orchestrator(tmp_path, agent_factory=stub_agents, sandbox=FakeSandbox(), compiler=FakeCompiler())
        with pytest.raises(PhasePreconditionError):
            await orch.execute_planning_phase(PROBLEM)
        with pytest.raises(PhasePreconditionError):
            await orch.execute_writing_phase()
        assert stub_agents.agents == []


class TestPlanningPhase:
    """A planning run produces one artifact with the step outputs in order."""

    @pytest.mark.asyncio
    async def test_planning_artifact_contains_steps_in_order(self, orchestrator, workspace_path, stub_agents):
        result = await orchestrator.execute_planning_phase(PROBLEM)

        plans = orchestrator.store.get_by_kind(ArtifactKind.plan)
        assert [p.name for p in plans] == [PLANNING_ARTIFACT]

        content = await orchestrator.store.read_artifact(PLANNING_ARTIFACT)
        positions = [
            content.index("# Problem Analysis Summary"),
            content.index("PARSE-STUB"),
            content.index("RESEARCH-STUB"),
            content.index("PLAN-STUB"),
        ]
        assert positions == sorted(positions)

        assert result.parse == "PARSE-STUB"
        assert result.research == "RESEARCH-STUB"
        assert result.plan == "PLAN-STUB"
        assert (workspace_path / "problem.md").read_text() == PROBLEM

    @pytest.mark.asyncio
    async def test_each_step_sees_previous_output(self, orchestrator, stub_agents):
        await orchestrator.execute_planning_phase(PROBLEM)

        parse_request, plan_request = stub_agents.requests("general")
        (research_request,) = stub_agents.requests("researcher")
        assert PROBLEM in parse_request
        assert "optimization" in parse_request
        assert "PARSE-STUB" in research_request
        assert "RESEARCH-STUB" in plan_request
        # Parse and plan share the master transcript
        assert len(orchestrator.master.history) == 4

    @pytest.mark.asyncio
    async def test_checkpoint_and_events(self, orchestrator, workspace_path, events):
        await orchestrator.execute_planning_phase(PROBLEM)

        assert state_path(workspace_path).exists()
        assert orchestrator.state.planning_complete
        assert orchestrator.state.analysis["problem"]["model_types"][0] == "optimization"
        types = event_types(events)
        assert types.count("phase-change") == 1
        assert "clone-spawned" in types
        assert "artifact-created" in types
        assert "Planning phase complete" in (workspace_path / "AUTOMCM.md").read_text()

        restarted = await make_orchestrator(workspace_path, StubAgentFactory())
        assert restarted.state.planning_complete
        assert restarted.state.planning.plan == "PLAN-STUB"

    @pytest.mark.asyncio
    async def test_empty_problem_rejected(self, orchestrator, stub_agents):
        with pytest.raises(PhasePreconditionError):
            await orchestrator.execute_planning_phase("   ")
        assert stub_agents.calls == []

    @pytest.mark.asyncio
    async def test_provider_failure_propagates(self, workspace_path):
        agents = StubAgentFactory(replies={"researcher": ProviderRequestError("down", status_code=503)})
        orch = await make_orchestrator(workspace_path, agents)

        with pytest.raises(ProviderRequestError):
            await orch.execute_planning_phase(PROBLEM)

        assert not orch.store.exists(PLANNING_ARTIFACT)
        assert orch.get_clones() == []


class TestModelingGate:
    """Modeling refuses to start without a plan, before any clone exists."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("plan", [None, "", "   ", "null"])
    async def test_missing_plan(self, orchestrator, stub_agents, plan):
        with pytest.raises(PhasePreconditionError):
            await orchestrator.execute_modeling_phase(plan)
        assert orchestrator.spawner.all_clones() == []
        assert "modeler" not in stub_agents.roles()

    @pytest.mark.asyncio
    async def test_missing_plan_checked_before_initialization(self, tmp_path, stub_agents):
        orch = Orchestrator(tmp_path, agent_factory=stub_agents, sandbox=FakeSandbox(), compiler=FakeCompiler())
        with pytest.raises(PhasePreconditionError, match="plan"):
            await orch.execute_modeling_phase("null")

    @pytest.mark.asyncio
    async def test_requires_planning_artifact(self, orchestrator):
        with pytest.raises(PhasePreconditionError, match=PLANNING_ARTIFACT):
            await orchestrator.execute_modeling_phase("A real plan")
        assert orchestrator.spawner.all_clones() == []


class TestModelingPhase:
    @pytest.mark.asyncio
    async def test_full_modeling_run(self, orchestrator, fake_sandbox, events):
        await orchestrator.execute_planning_phase(PROBLEM)
        result = await orchestrator.execute_modeling_phase("PLAN-STUB")

        assert result.model == MODEL_REPLY
        assert result.code_extracted
        assert fake_sandbox.modes == [
            "baseline", "parameter_sweep", "scenario_comparison", "edge_cases", "visualizations", "sensitivity",
        ]
        for name in ("model.py", EXPERIMENTS_ARTIFACT, VISUALIZATIONS_ARTIFACT, SENSITIVITY_ARTIFACT, MODELING_ARTIFACT):
            assert orchestrator.store.exists(name), name

        code = await orchestrator.store.read_artifact("model.py")
        assert "def run_model" in code
        sensitivity = orchestrator.store.get_by_name(SENSITIVITY_ARTIFACT)
        assert [p["name"] for p in sensitivity.metadata["parameters"]] == ["growth_rate", "capacity"]

        document = await orchestrator.store.read_artifact(MODELING_ARTIFACT)
        assert document.index("## 1. Approved Plan") < document.index("PLAN-STUB") < document.index("## 2. Model Implementation")
        assert "baseline output" in document
        assert orchestrator.state.modeling_complete
        assert orchestrator.phase is Phase.modeling

    @pytest.mark.asyncio
    async def test_failed_experiments_saved_as_partial(self, workspace_path):
        sandbox = FakeSandbox(failing=("parameter_sweep",))
        orch = await make_orchestrator(workspace_path, StubAgentFactory(replies={"modeler": MODEL_REPLY}), sandbox=sandbox)
        await orch.execute_planning_phase(PROBLEM)

        result = await orch.execute_modeling_phase("plan")

        record = orch.store.get_by_name(EXPERIMENTS_ARTIFACT)
        assert record.metadata["status"] == "partial"
        assert "parameter_sweep blew up" in await orch.store.read_artifact(EXPERIMENTS_ARTIFACT)
        assert result.experiments is None
        assert result.sensitivity == "sensitivity output"
        assert orch.store.exists(MODELING_ARTIFACT)

    @pytest.mark.asyncio
    async def test_sandbox_unavailable_degrades(self, workspace_path):
        sandbox = FakeSandbox(error=CollaboratorError("Cannot start python3"))
        orch = await make_orchestrator(
            workspace_path, StubAgentFactory(replies={"modeler": MODEL_REPLY}), sandbox=sandbox
        )
        await orch.execute_planning_phase(PROBLEM)

        result = await orch.execute_modeling_phase("plan")

        assert result.code_extracted
        assert (result.experiments, result.visualizations, result.sensitivity) == (None, None, None)
        document = await orch.store.read_artifact(MODELING_ARTIFACT)
        assert document.count("Not performed") == 3

    @pytest.mark.asyncio
    async def test_reply_without_code(self, workspace_path):
        sandbox = FakeSandbox()
        orch = await make_orchestrator(
            workspace_path, StubAgentFactory(replies={"modeler": "Only prose, no code."}), sandbox=sandbox
        )
        await orch.execute_planning_phase(PROBLEM)

        result = await orch.execute_modeling_phase("plan")

        assert result.code_extracted is False
        assert sandbox.modes == []
        assert not orch.store.exists("model.py")
        assert orch.store.exists(MODELING_ARTIFACT)

    @pytest.mark.asyncio
    async def test_visualizations_skipped_when_figures_exist(self, orchestrator, workspace_path, fake_sandbox):
        for i in range(6):
            (workspace_path / "figures" / f"existing_{i}.png").write_bytes(b"png")
        await orchestrator.execute_planning_phase(PROBLEM)

        result = await orchestrator.execute_modeling_phase("plan")

        assert "visualizations" not in fake_sandbox.modes
        assert result.visualizations is None

    @pytest.mark.asyncio
    async def test_data_files_listed_for_modeler(self, orchestrator, workspace_path, stub_agents):
        (workspace_path / "data" / "calls.csv").write_text("t,calls\n0,3\n")
        await orchestrator.execute_planning_phase(PROBLEM)

        await orchestrator.execute_modeling_phase("plan")

        (request,) = stub_agents.requests("modeler")
        assert "calls.csv" in request


class TestWritingPhase:
    @pytest.mark.asyncio
    async def test_writing_without_modeling_still_runs(self, orchestrator, workspace_path, stub_agents):
        result = await orchestrator.execute_writing_phase()

        first_request = stub_agents.requests("writer")[0]
        assert "Experiment Results" not in first_request
        assert "No figures found" in first_request
        assert result.paper
        assert orchestrator.store.exists(WRITING_ARTIFACT)
        assert "Short" in (workspace_path / "paper.tex").read_text()
        assert orchestrator.phase is Phase.idle
        assert orchestrator.get_clones() == []

    @pytest.mark.asyncio
    async def test_complete_paper_not_expanded(self, workspace_path):
        paper = make_paper(figures=5)
        agents = StubAgentFactory(replies={"writer": f"```latex\n{paper}\n```"})
        orch = await make_orchestrator(workspace_path, agents)

        result = await orch.execute_writing_phase()

        assert result.validation.is_complete
        assert result.expanded is False
        assert len(agents.requests("writer")) == 1

    @pytest.mark.asyncio
    async def test_incomplete_paper_expanded_once(self, workspace_path, bus, events):
        short, full = make_paper(figures=2), make_paper(figures=5)
        agents = StubAgentFactory(replies={"writer": [f"```latex\n{short}\n```", f"```latex\n{full}\n```"]})
        orch = await make_orchestrator(workspace_path, agents, bus=bus)

        result = await orch.execute_writing_phase()

        writer_requests = agents.requests("writer")
        assert len(writer_requests) == 2
        assert "Figures: 2" in writer_requests[1]
        assert result.expanded is True
        assert result.validation.figure_count == 5
        assert (workspace_path / "paper.tex").read_text() == full
        assert orch.store.get_by_name("paper.tex").version == 2
        assert event_types(events).count("paper-validation") == 2

    @pytest.mark.asyncio
    async def test_still_incomplete_after_expansion_is_not_retried(self, orchestrator, stub_agents):
        result = await orchestrator.execute_writing_phase()

        assert result.expanded is True
        assert result.validation.is_complete is False
        assert len(stub_agents.requests("writer")) == 2

    @pytest.mark.asyncio
    async def test_compile_and_recompile(self, workspace_path):
        compiler = FakeCompiler(installed=True)
        orch = await make_orchestrator(workspace_path, StubAgentFactory(), compiler=compiler)

        result = await orch.execute_writing_phase()

        assert result.compiled is True
        assert len(compiler.compiled) == 2

    @pytest.mark.asyncio
    async def test_missing_compiler_is_a_warning(self, orchestrator, events):
        result = await orchestrator.execute_writing_phase()

        assert result.compiled is False
        warnings = [e["payload"]["message"] for e in events if e["event_type"] == "log" and e["payload"]["type"] == "warning"]
        assert any("not installed" in message for message in warnings)

    @pytest.mark.asyncio
    async def test_writer_sees_modeling_results(self, orchestrator, stub_agents):
        await orchestrator.execute_planning_phase(PROBLEM)
        await orchestrator.execute_modeling_phase("PLAN-STUB")

        await orchestrator.execute_writing_phase()

        request = stub_agents.requests("writer")[0]
        assert "### Model Implementation" in request
        assert "### Experiment Results" in request
        assert "### Sensitivity Analysis" in request
        assert orchestrator.state.writing_complete


class TestParallel:
    @pytest.mark.asyncio
    async def test_execute_parallel(self, orchestrator):
        results = await orchestrator.execute_parallel([
            {"role": "researcher", "task": "papers", "message": "find papers"},
            {"role": "researcher", "task": "data", "message": "find data"},
        ])
        assert [r.task for r in results] == ["papers", "data"]
        assert all(r.error is None for r in results)
        assert orchestrator.get_clones() == []
