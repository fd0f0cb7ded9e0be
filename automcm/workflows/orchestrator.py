"""
Master orchestrator: drives Planning -> Modeling -> Writing for one workspace.

Phase errors are logged with their traceback and re-raised; retries and
``error`` events belong to ``services.agent_service.AgentService``.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from ..agents.base import Agent, AgentFactory, make_agent_factory
from ..agents.clones import Clone, CloneSpawner, ParallelResult
from ..agents.modeler import build_model_request, extract_code
from ..agents.planner import build_parse_request, build_plan_request
from ..agents.researcher import build_research_request
from ..agents.writer import build_expansion_request, build_paper_request, extract_latex, validate_paper
from ..errors import ArtifactWriteError, CollaboratorError, PhasePreconditionError
from ..memory.event_bus import EventBus, WorkflowLogger
from ..models import (
    ArtifactKind,
    ModelingResult,
    PaperValidation,
    Phase,
    PlanningResult,
    ProblemMeta,
    WorkflowState,
    WritingResult,
)
from ..storage import ArtifactStore
from ..tools.analyzer import ProblemAnalyzer, summarize
from ..tools.experiments import ModelExperiments
from ..tools.latex import LatexCompiler
from ..tools.sandbox import PythonSandbox
from ..workspace import Workspace
from .checkpoint import load_workflow_state, save_workflow_state
from .documents import modeling_document, planning_document, writing_document

logger = logging.getLogger(__name__)

PLANNING_ARTIFACT = "planning-phase-result.md"
MODELING_ARTIFACT = "modeling-phase-result.md"
WRITING_ARTIFACT = "writing-phase-result.md"
EXPERIMENTS_ARTIFACT = "experiment-results.txt"
VISUALIZATIONS_ARTIFACT = "visualization-summary.txt"
SENSITIVITY_ARTIFACT = "sensitivity-analysis.txt"

# Visualization generation is skipped once this many figures exist
FIGURE_TARGET = 6
CONTEXT_MODEL_CHARS = 5000


def is_missing_plan(plan: Optional[str]) -> bool:
    return plan is None or not plan.strip() or plan.strip() == "null"


class Orchestrator:
    """
    Master agent for one workspace.

    Owns the artifact store, the clone registry and the current phase. At
    most one orchestrator may drive a given workspace path at a time.
    """

    def __init__(
        self,
        workspace_path: Union[str, Path],
        *,
        bus: Optional[EventBus] = None,
        workflow_logger: Optional[WorkflowLogger] = None,
        agent_factory: Optional[AgentFactory] = None,
        analyzer: Optional[ProblemAnalyzer] = None,
        sandbox: Optional[PythonSandbox] = None,
        compiler: Optional[LatexCompiler] = None,
    ):
        self.workspace = Workspace(workspace_path)
        self.bus = bus or EventBus()
        self.log = workflow_logger or WorkflowLogger(self.bus)
        self.agent_factory = agent_factory or make_agent_factory()
        self.analyzer = analyzer or ProblemAnalyzer()
        self.sandbox = sandbox or PythonSandbox(self.workspace.path)
        self.compiler = compiler or LatexCompiler(self.workspace.path)
        self.store = ArtifactStore(self.workspace.path, bus=self.bus)
        self.spawner = CloneSpawner(self.agent_factory, bus=self.bus)
        self.state = WorkflowState()
        self.phase = Phase.idle
        self._master: Optional[Agent] = None
        self._initialized = False

    @property
    def master(self) -> Agent:
        """The orchestrator's own general-role agent, created on first use."""
        if self._master is None:
            self._master = self.agent_factory("general")
        return self._master

    @property
    def initialized(self) -> bool:
        return self._initialized

    def set_phase(self, phase: Phase) -> None:
        """Set the current phase, publishing ``phase-change`` when it changes."""
        if phase == self.phase:
            return
        self.phase = phase
        self.bus.publish("phase-change", {"phase": phase.value})

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise PhasePreconditionError("Workspace not initialized; call initialize_workspace first")

    async def initialize_workspace(self, problem: Optional[ProblemMeta] = None) -> Dict[str, Any]:
        """
        Scaffold the workspace, load the artifact index and the checkpoint.

        Args:
            problem: Problem metadata written into AUTOMCM.md

        Returns:
            Workspace info plus the restored checkpoint
        """
        problem = problem or ProblemMeta()
        info = await self.workspace.initialize(problem)
        await self.store.initialize()
        self.state = await load_workflow_state(self.workspace.path)
        if self.state.problem_title is None:
            self.state.problem_title = problem.title
        self._initialized = True
        logger.info(f"Orchestrator ready for {self.workspace.path}")
        return {**info, "state": self.state.model_dump(mode="json")}

    async def _checkpoint(self) -> None:
        self.state.phase = self.phase
        await save_workflow_state(self.workspace.path, self.state)

    # Planning

    async def execute_planning_phase(self, problem_text: str) -> PlanningResult:
        """
        Analyze, parse, research and plan, then persist one planning artifact.

        Steps run strictly in order; each prompt embeds the previous output.

        Raises:
            PhasePreconditionError: Workspace not initialized or empty problem text
            ProviderRequestError: Any of the LLM calls failed
        """
        self._require_initialized()
        if not problem_text or not problem_text.strip():
            raise PhasePreconditionError("Problem statement is empty")

        self.set_phase(Phase.planning)
        try:
            await asyncio.to_thread(
                (self.workspace.path / "problem.md").write_text, problem_text, encoding="utf-8"
            )

            self.log.info("Step 1/4: Analyzing problem (keyword analysis and similar solutions)")
            analysis = self.analyzer.analyze(problem_text)
            rag_summary = summarize(analysis)

            self.log.info("Step 2/4: Parsing problem details")
            parse = await self.master.send_message(build_parse_request(problem_text, rag_summary))

            self.log.info("Step 3/4: Researching approaches")
            research = await self.spawner.run(
                "researcher",
                "Find relevant papers and approaches",
                build_research_request(problem_text, parse.message, analysis.techniques),
            )

            self.log.info("Step 4/4: Proposing detailed approach")
            plan = await self.master.send_message(build_plan_request(problem_text, rag_summary, research.message))

            result = PlanningResult(
                rag_analysis=rag_summary,
                parse=parse.message,
                research=research.message,
                plan=plan.message,
            )
            await self.store.save_artifact(
                PLANNING_ARTIFACT,
                ArtifactKind.plan,
                planning_document(result),
                description="Planning phase results awaiting approval",
                generated_by="master",
                metadata={"phase": "planning"},
            )

            self.state.planning_complete = True
            self.state.planning = result
            self.state.analysis["problem"] = analysis.to_dict()
            await self._checkpoint()
            await self.workspace.log_progress("Planning phase complete")
        except Exception:
            logger.exception("Planning phase failed")
            raise

        self.log.success(f"Plan saved to artifacts/{PLANNING_ARTIFACT}")
        return result

    # Modeling

    async def execute_modeling_phase(self, plan: Optional[str]) -> ModelingResult:
        """
        Implement the approved plan and run best-effort analyses on the code.

        Only a missing plan or a failed code-generation call aborts the
        phase. Experiments, visualizations and sensitivity analysis are
        logged as warnings when they fail.

        Raises:
            PhasePreconditionError: Missing/empty/"null" plan, no planning
                artifact, or workspace not initialized
            ProviderRequestError: The modeler clone's request failed
        """
        if is_missing_plan(plan):
            raise PhasePreconditionError("No approved plan provided; run the planning phase first")
        self._require_initialized()
        if not self.store.exists(PLANNING_ARTIFACT):
            raise PhasePreconditionError(f"{PLANNING_ARTIFACT} not found; run the planning phase first")

        self.set_phase(Phase.modeling)
        try:
            self.log.info("Step 1: Implementing model")
            response = await self.spawner.run(
                "modeler",
                "Implement mathematical model",
                build_model_request(plan, self.workspace.data_summary()),
            )

            result = ModelingResult(model=response.message)
            code = extract_code(response.message)
            if code is None:
                self.log.warning("No Python code found in modeler reply; skipping experiments")
            else:
                result.code_extracted = True
                await self.store.save_artifact(
                    "model.py",
                    ArtifactKind.code,
                    code,
                    description="Model implementation",
                    generated_by="modeler",
                    metadata={"phase": "modeling"},
                )
                experiments = ModelExperiments(self.sandbox)
                result.experiments = await self._run_experiments(experiments, code)
                result.visualizations = await self._generate_visualizations(experiments, code)
                result.sensitivity = await self._run_sensitivity(experiments, code)

            await self.store.save_artifact(
                MODELING_ARTIFACT,
                ArtifactKind.model,
                modeling_document(
                    plan,
                    response.message,
                    experiments=result.experiments,
                    visualizations=result.visualizations,
                    sensitivity=result.sensitivity,
                ),
                description="Modeling phase results",
                generated_by="master",
                metadata={"phase": "modeling"},
            )

            self.state.modeling_complete = True
            self.state.modeling = result
            await self._checkpoint()
            await self.workspace.log_progress("Modeling phase complete")
        except Exception:
            logger.exception("Modeling phase failed")
            raise

        self.log.success(f"Model saved to artifacts/{MODELING_ARTIFACT}")
        return result

    async def _run_experiments(self, experiments: ModelExperiments, code: str) -> Optional[str]:
        self.log.info("Step 2: Running comprehensive experiments")
        try:
            suite = await experiments.run_experiments(code)
            if suite.success:
                await self.store.save_artifact(
                    EXPERIMENTS_ARTIFACT,
                    ArtifactKind.experiments,
                    suite.summary,
                    description="Baseline, sweep, scenario and edge-case experiments",
                    generated_by="modeler",
                    metadata={"phase": "modeling"},
                )
                self.log.success(f"Experiments complete ({len(suite.runs)} runs)")
                return suite.summary

            self.log.warning(f"Experiments encountered errors: {suite.error}")
            await self.store.save_artifact(
                EXPERIMENTS_ARTIFACT,
                ArtifactKind.experiments,
                f"Experiments encountered errors:\n{suite.error}\n\nStdout:\n{suite.summary}",
                description="Partial experiment results",
                generated_by="modeler",
                metadata={"phase": "modeling", "status": "partial"},
            )
        except ArtifactWriteError:
            raise
        except Exception as exc:
            self.log.warning(f"Experiments failed: {exc}, continuing")
        return None

    async def _generate_visualizations(self, experiments: ModelExperiments, code: str) -> Optional[str]:
        existing = self.workspace.figure_files()
        if len(existing) >= FIGURE_TARGET:
            self.log.info(f"Step 3: Skipping visualizations, {len(existing)} figures already in figures/")
            return None

        self.log.info("Step 3: Generating visualizations")
        try:
            outcome = await experiments.generate_visualizations(code)
            if not outcome.success:
                self.log.warning(f"Visualization generation had issues: {(outcome.error or '')[-300:]}")
                return None
            await self.store.save_artifact(
                VISUALIZATIONS_ARTIFACT,
                ArtifactKind.visualizations,
                outcome.output,
                description="Generated figures",
                generated_by="modeler",
                metadata={"phase": "modeling", "figures": self.workspace.figure_files()},
            )
            self.log.success("Visualizations generated")
            return outcome.output
        except ArtifactWriteError:
            raise
        except Exception as exc:
            self.log.warning(f"Visualization generation failed: {exc}, continuing")
            return None

    async def _run_sensitivity(self, experiments: ModelExperiments, code: str) -> Optional[str]:
        self.log.info("Step 4: Running sensitivity analysis")
        try:
            outcome = await experiments.sensitivity_analysis(code)
            if not outcome.success:
                self.log.warning(f"Sensitivity analysis had issues: {(outcome.error or '')[-300:]}")
                return None
            await self.store.save_artifact(
                SENSITIVITY_ARTIFACT,
                ArtifactKind.analysis,
                outcome.output,
                description="Automated parameter sensitivity analysis",
                generated_by="modeler",
                metadata={"phase": "modeling", "parameters": outcome.parameters},
            )
            self.log.success(f"Sensitivity analysis complete ({len(outcome.parameters)} parameters)")
            return outcome.output
        except ArtifactWriteError:
            raise
        except Exception as exc:
            self.log.warning(f"Sensitivity analysis failed: {exc}, continuing")
            return None

    # Writing

    async def execute_writing_phase(self) -> WritingResult:
        """
        Draft the paper, compile it, and expand it once if it falls short.

        Runs without modeling artifacts; the writer then gets no results
        context. Compilation problems never abort the phase.

        Raises:
            PhasePreconditionError: Workspace not initialized
            ProviderRequestError: A writer request failed
        """
        self._require_initialized()
        self.set_phase(Phase.writing)
        clone = self.spawner.spawn("writer", "Write paper sections")
        try:
            context = await self._gather_modeling_context()

            self.log.info("Step 1: Writing competition paper")
            response = await clone.agent.send_message(build_paper_request(context))
            latex = extract_latex(response.message)
            await self._write_paper(latex, description="Competition paper")

            await self.store.save_artifact(
                WRITING_ARTIFACT,
                ArtifactKind.document,
                writing_document(response.message),
                description="Writing phase results",
                generated_by="writer",
                metadata={"phase": "writing"},
            )

            self.log.info("Step 2: Compiling paper")
            compiled = await self._compile()

            self.log.info("Step 3: Validating paper completeness")
            validation = self._report_validation(latex)
            expanded = False
            if not validation.is_complete:
                expanded = True
                self.log.warning("Paper needs expansion, requesting additional content")
                expansion = await clone.agent.send_message(build_expansion_request(validation))
                latex = extract_latex(expansion.message)
                await self._write_paper(latex, description="Competition paper (expanded)")
                validation = self._report_validation(latex)
                if compiled:
                    self.log.info("Re-compiling expanded paper")
                    if not await self._compile():
                        self.log.warning("Re-compilation of the expanded paper failed")

            result = WritingResult(paper=response.message, compiled=compiled, expanded=expanded, validation=validation)
            self.state.writing_complete = True
            self.state.writing = result
            self.set_phase(Phase.idle)
            await self._checkpoint()
            await self.workspace.log_progress("Writing phase complete")
        except Exception:
            logger.exception("Writing phase failed")
            raise
        finally:
            self.spawner.complete(clone)

        self.log.success("Writing phase complete")
        return result

    async def _gather_modeling_context(self) -> str:
        parts = ["## MODELING RESULTS AND ARTIFACTS\n"]
        sections = (
            (MODELING_ARTIFACT, "Model Implementation", CONTEXT_MODEL_CHARS),
            (EXPERIMENTS_ARTIFACT, "Experiment Results", None),
            (SENSITIVITY_ARTIFACT, "Sensitivity Analysis", None),
            (VISUALIZATIONS_ARTIFACT, "Generated Visualizations", None),
        )
        for name, heading, limit in sections:
            if not self.store.exists(name):
                continue
            content = await self.store.read_artifact(name)
            parts.append(f"### {heading}\n\n{content[:limit] if limit else content}\n")

        figures = self.workspace.figure_files()
        if figures:
            listing = "\n".join(f"- {name}" for name in figures)
            parts.append(f"### Available Figures\n\nFound {len(figures)} figures in figures/ directory:\n\n{listing}\n")
        else:
            parts.append("### Available Figures\n\nNo figures found in figures/ directory.\n")

        parts.append(
            "\n---\n\nUSE THE ABOVE RESULTS AND FIGURES IN YOUR PAPER. "
            "Reference specific experiments, findings, and figures.\n"
        )
        return "\n".join(parts)

    async def _write_paper(self, latex: str, description: str) -> None:
        path = self.workspace.paper_path
        tmp = path.with_name(".paper.tex.tmp")

        def _write():
            tmp.write_text(latex, encoding="utf-8")
            os.replace(tmp, path)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise ArtifactWriteError(f"Failed to write {path}: {exc}") from exc
        await self.store.register(
            "paper.tex",
            ArtifactKind.latex,
            path,
            description=description,
            generated_by="writer",
            metadata={"phase": "writing"},
        )

    async def _compile(self) -> bool:
        if not self.compiler.is_installed():
            self.log.warning(
                f"LaTeX ({self.compiler.command}) not installed; skipping PDF compilation. "
                "Paper is available as LaTeX source: paper.tex"
            )
            return False
        try:
            outcome = await self.compiler.compile(self.workspace.paper_path)
        except CollaboratorError as exc:
            self.log.warning(f"PDF compilation error (LaTeX file still available): {exc}")
            return False
        if outcome.success:
            self.log.success("PDF compiled successfully")
        else:
            self.log.warning(f"PDF compilation failed (LaTeX file still available): {outcome.errors[:3]}")
        return outcome.success

    def _report_validation(self, latex: str) -> PaperValidation:
        validation = validate_paper(latex)
        self.log.info(
            f"Paper validation: ~{validation.estimated_pages} pages, {validation.figure_count} figures, "
            f"{validation.table_count} tables, {validation.equation_count} equations, "
            f"{validation.section_count} sections"
        )
        self.bus.publish("paper-validation", validation.model_dump())
        return validation

    # Clones

    async def execute_parallel(self, tasks: Sequence[Dict[str, str]]) -> List[ParallelResult]:
        """Fan out ``{role, task, message}`` dicts to clones; results keep input order."""
        results = await self.spawner.execute_parallel(tasks)
        self.log.success(f"All {len(results)} parallel tasks completed")
        return results

    def get_clones(self) -> List[Clone]:
        return self.spawner.get_clones()
