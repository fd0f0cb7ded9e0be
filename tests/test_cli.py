"""
Tests for the command-line entrypoint.
"""

import asyncio
import json

import pytest

from automcm import __version__
from automcm.cli import build_parser, main
from automcm.models import ArtifactKind, WorkflowState
from automcm.services.agent_service import AgentService
from automcm.storage import ArtifactStore
from automcm.workflows.checkpoint import state_path
from automcm.workflows.orchestrator import Orchestrator

from conftest import FakeCompiler, FakeSandbox, StubAgentFactory


@pytest.fixture
def stubbed_service(monkeypatch):
    agents = StubAgentFactory(replies={"general": ["PARSE-STUB", "PLAN-STUB"], "researcher": "RESEARCH-STUB"})

    def orchestrator_factory(path, **kwargs):
        return Orchestrator(path, sandbox=FakeSandbox(), compiler=FakeCompiler(), **kwargs)

    def service(**kwargs):
        return AgentService(agent_factory=agents, orchestrator_factory=orchestrator_factory, retry_delay=0, **kwargs)

    monkeypatch.setattr("automcm.cli.AgentService", service)
    return agents


class TestParser:
    def test_subcommands(self):
        parser = build_parser()

        args = parser.parse_args(["run", "problem.md", "-w", "ws", "--problem-id", "B", "--year", "2024", "--retries", "1"])
        assert (args.command, args.problem, args.workspace, args.problem_id, args.year, args.retries) == (
            "run", "problem.md", "ws", "B", 2024, 1,
        )

        args = parser.parse_args(["artifacts", "--kind", "figure", "--json"])
        assert args.kind == "figure"
        assert args.json is True
        assert args.workspace.endswith("default")

    def test_invalid_kind(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["artifacts", "--kind", "poem"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_version(self, capsys):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--version"])
        assert __version__ in capsys.readouterr().out


class TestCommands:
    def test_status_without_checkpoint(self, tmp_path, capsys):
        assert main(["status", "-w", str(tmp_path)]) == 0
        assert "No workflow checkpoint" in capsys.readouterr().out

    def test_status(self, tmp_path, capsys):
        state_path(tmp_path).write_text(
            WorkflowState(planning_complete=True, problem_title="Wildfires").model_dump_json()
        )

        assert main(["status", "-w", str(tmp_path)]) == 0
        out = capsys.readouterr().out
        assert "Wildfires" in out
        assert "Planning: complete" in out
        assert "Modeling: pending" in out

        assert main(["status", "-w", str(tmp_path), "--json"]) == 0
        assert json.loads(capsys.readouterr().out)["planning_complete"] is True

    def test_artifacts(self, tmp_path, capsys):
        async def populate():
            store = ArtifactStore(tmp_path)
            await store.initialize()
            await store.save_artifact("model.py", ArtifactKind.code, "x = 1", description="Model")
            await store.save_artifact("fig.png", ArtifactKind.figure, b"png", description="Figure")

        asyncio.run(populate())

        assert main(["artifacts", "-w", str(tmp_path)]) == 0
        out = capsys.readouterr().out
        assert "model.py" in out
        assert "2 artifacts: code=1, figure=1" in out

        assert main(["artifacts", "-w", str(tmp_path), "--kind", "figure", "--json"]) == 0
        records = json.loads(capsys.readouterr().out)
        assert [r["name"] for r in records] == ["fig.png"]

    def test_artifacts_without_index(self, tmp_path, capsys):
        assert main(["artifacts", "-w", str(tmp_path)]) == 0
        assert "No artifact index" in capsys.readouterr().out

    def test_providers_json(self, capsys):
        assert main(["providers", "--json"]) == 0
        assert set(json.loads(capsys.readouterr().out)) == {"anthropic", "openai", "google"}

    def test_missing_problem_file(self, tmp_path, capsys):
        workspace = tmp_path / "ws"
        assert main(["plan", str(tmp_path / "missing.md"), "-w", str(workspace)]) == 1
        assert "Problem file not found" in capsys.readouterr().err
        assert not workspace.exists()

    def test_undecodable_problem_file(self, tmp_path, capsys):
        problem = tmp_path / "problem.txt"
        problem.write_bytes(b"Optimize \xff\xfe routing")

        assert main(["run", str(problem), "-w", str(tmp_path / "ws")]) == 1
        assert "not UTF-8" in capsys.readouterr().err

    def test_plan_streams_events(self, tmp_path, capsys, stubbed_service):
        problem = tmp_path / "problem.md"
        problem.write_text("Minimize wait times at a hospital emergency department")
        workspace = tmp_path / "ws"

        assert main(["plan", str(problem), "-w", str(workspace), "--retries", "0"]) == 0

        out = capsys.readouterr().out
        assert "==> phase: planning" in out
        assert "[OK] Planning phase complete" in out
        assert "+ planning-phase-result.md v1 (plan)" in out
        assert out.rstrip().endswith("PLAN-STUB")
        assert (workspace / "artifacts" / "planning-phase-result.md").exists()
        assert (workspace / "problem-metadata.json").exists()
