"""
Agent service: the facade UIs and the CLI drive workflows through.

Wraps the orchestrator's phase calls with the planning retry/timeout
policy and turns their outcome into events on the shared EventBus.
"""

import asyncio
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, TypeVar, Union

from ..agents.base import AgentFactory
from ..agents.writer import MAX_EQUATIONS, extract_equations
from ..core.config import settings
from ..errors import AutoMCMError, ConfigurationError, PhasePreconditionError, PhaseTimeoutError, ProviderRequestError
from ..memory.event_bus import EventBus, WorkflowLogger
from ..models import (
    ArtifactRecord,
    ModelingResult,
    Phase,
    PlanningResult,
    ProblemMeta,
    ServiceStatus,
    WorkflowResult,
    WorkflowState,
    WritingResult,
)
from ..workflows.orchestrator import (
    EXPERIMENTS_ARTIFACT,
    MODELING_ARTIFACT,
    SENSITIVITY_ARTIFACT,
    Orchestrator,
    is_missing_plan,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

OrchestratorFactory = Callable[..., Orchestrator]

# Errors that a retry cannot fix
FATAL_ERRORS = (ConfigurationError, PhasePreconditionError)


class AgentService:
    """
    Facade over one orchestrator at a time.

    Only planning is retried and time-boxed; modeling and writing fail
    straight through because they leave files behind.
    """

    def __init__(
        self,
        *,
        bus: Optional[EventBus] = None,
        agent_factory: Optional[AgentFactory] = None,
        orchestrator_factory: OrchestratorFactory = Orchestrator,
        planning_retries: Optional[int] = None,
        planning_timeout: Optional[float] = None,
        retry_delay: Optional[float] = None,
    ):
        self.bus = bus or EventBus()
        self.log = WorkflowLogger(self.bus, name="automcm.service")
        self.agent_factory = agent_factory
        self.orchestrator_factory = orchestrator_factory
        self.planning_retries = settings.PLANNING_RETRIES if planning_retries is None else planning_retries
        self.planning_timeout = planning_timeout or settings.PLANNING_TIMEOUT_SECONDS
        self.retry_delay = settings.PLANNING_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        self.orchestrator: Optional[Orchestrator] = None
        self.is_running = False
        self.stop_requested = False

    @property
    def current_phase(self) -> Phase:
        return self.orchestrator.phase if self.orchestrator else Phase.idle

    def _require_orchestrator(self) -> Orchestrator:
        if self.orchestrator is None:
            raise PhasePreconditionError("Workspace not initialized")
        return self.orchestrator

    def _report_failure(self, label: str, exc: BaseException) -> None:
        """Emit the single error log line and ``error`` event for a fatal failure."""
        self.log.error(f"{label} failed: {exc}")
        self.bus.publish(
            "error",
            {"phase": self.current_phase.value, "type": type(exc).__name__, "message": str(exc)},
        )

    def reserve(self) -> None:
        """
        Mark the service busy, or fail if a phase already holds it.

        Raises:
            PhasePreconditionError: If a phase or workflow is running
        """
        if self.is_running:
            raise PhasePreconditionError("A phase is already running for this workspace")
        self.is_running = True

    @contextmanager
    def _exclusive(self, reserved: bool = False) -> Iterator[None]:
        # A rejected caller never reaches the finally, so the holder keeps the flag
        if not reserved:
            self.reserve()
        try:
            yield
        finally:
            self.is_running = False

    async def initialize_workspace(
        self,
        workspace_path: Union[str, Path],
        problem: Optional[ProblemMeta] = None,
    ) -> Dict[str, Any]:
        """
        Create the orchestrator for ``workspace_path`` and scaffold the workspace.

        Raises:
            ConfigurationError: If the LLM configuration cannot be loaded
            PhasePreconditionError: If another phase is running
        """
        with self._exclusive():
            return await self._initialize(workspace_path, problem)

    async def _initialize(self, workspace_path: Union[str, Path], problem: Optional[ProblemMeta]) -> Dict[str, Any]:
        self.log.info("Initializing workspace")
        try:
            kwargs: Dict[str, Any] = {"bus": self.bus, "workflow_logger": self.log}
            if self.agent_factory is not None:
                kwargs["agent_factory"] = self.agent_factory
            orchestrator = self.orchestrator_factory(workspace_path, **kwargs)
            result = await orchestrator.initialize_workspace(problem)
        except Exception as exc:
            self._report_failure("Initialization", exc)
            raise

        self.orchestrator = orchestrator
        self.stop_requested = False
        self.bus.publish("phase-change", {"phase": orchestrator.phase.value})
        self.log.success("Workspace initialized")
        return result

    async def _with_timeout(self, awaitable: Awaitable[T], phase: str, timeout: float) -> T:
        """Abandon ``awaitable`` after ``timeout`` seconds; the remote call may still finish server-side."""
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise PhaseTimeoutError(phase, timeout) from exc

    async def execute_planning_phase(self, problem_text: str, retries: Optional[int] = None) -> PlanningResult:
        """
        Run planning with up to ``retries`` extra attempts.

        Each attempt is time-boxed; a timeout counts as a failed attempt.
        Configuration and precondition errors are not retried, nor are
        provider rejections a retry cannot change (4xx other than 429).

        Args:
            problem_text: Problem statement
            retries: Extra attempts after the first (default PLANNING_RETRIES)

        Returns:
            PlanningResult from the successful attempt

        Raises:
            The last attempt's error once every attempt has failed
        """
        with self._exclusive():
            return await self._plan(problem_text, retries)

    async def _plan(self, problem_text: str, retries: Optional[int] = None) -> PlanningResult:
        retries = self.planning_retries if retries is None else retries
        logger.info(f"Planning requested: {len(problem_text)} chars, {retries} retries allowed")
        try:
            orchestrator = self._require_orchestrator()
        except PhasePreconditionError as exc:
            self._report_failure("Planning", exc)
            raise

        for attempt in range(retries + 1):
            orchestrator.set_phase(Phase.planning)
            if attempt:
                self.log.warning(f"Retry attempt {attempt}/{retries}")
            else:
                self.log.info("Starting planning phase")

            try:
                result = await self._with_timeout(
                    orchestrator.execute_planning_phase(problem_text),
                    "planning",
                    self.planning_timeout,
                )
            except FATAL_ERRORS as exc:
                self._report_failure("Planning", exc)
                raise
            except Exception as exc:
                if isinstance(exc, ProviderRequestError) and not exc.retryable:
                    self._report_failure("Planning", exc)
                    raise
                if attempt >= retries:
                    self._report_failure(f"Planning (after {retries + 1} attempts)", exc)
                    raise
                self.log.warning(f"Planning attempt failed: {exc}")
                await asyncio.sleep(self.retry_delay)
                continue

            self.log.success("Planning phase complete")
            self.bus.publish("planning-complete", result.model_dump())
            return result

    async def execute_modeling_phase(self, plan: Optional[str]) -> ModelingResult:
        """Run modeling once and publish the result-derived events."""
        with self._exclusive():
            return await self._model(plan)

    async def _model(self, plan: Optional[str]) -> ModelingResult:
        try:
            orchestrator = self._require_orchestrator()
            if is_missing_plan(plan):
                raise PhasePreconditionError("No plan provided. Please complete planning phase first.")
            logger.info(f"Modeling requested with a {len(plan)} char plan")
            self.log.info("Starting modeling phase")
            result = await orchestrator.execute_modeling_phase(plan)
        except Exception as exc:
            self._report_failure("Modeling", exc)
            raise

        self.log.success("Modeling phase complete")
        self.bus.publish("modeling-complete", result.model_dump())
        await self._emit_modeling_results()
        return result

    async def _emit_modeling_results(self) -> None:
        """Publish sensitivity/experiment output, extracted equations and validation status."""
        store = self._require_orchestrator().store
        try:
            sensitivity = store.get_by_name(SENSITIVITY_ARTIFACT) if store.exists(SENSITIVITY_ARTIFACT) else None
            if sensitivity is not None:
                content = await store.read_artifact(SENSITIVITY_ARTIFACT)
                self.bus.publish("sensitivity-results", {"content": content, "artifact": sensitivity.model_dump(mode="json")})
                self.log.info("Sensitivity analysis results available")

            if store.exists(EXPERIMENTS_ARTIFACT):
                record = store.get_by_name(EXPERIMENTS_ARTIFACT)
                content = await store.read_artifact(EXPERIMENTS_ARTIFACT)
                self.bus.publish("experiment-results", {"content": content, "artifact": record.model_dump(mode="json")})

            equations: List[Dict[str, Any]] = []
            has_model = store.exists(MODELING_ARTIFACT)
            if has_model:
                equations += extract_equations(await store.read_artifact(MODELING_ARTIFACT))
            if store.exists("paper.tex"):
                equations += extract_equations(await store.read_artifact("paper.tex"))

            unique: List[Dict[str, Any]] = []
            for equation in equations:
                if all(e["latex"] != equation["latex"] for e in unique):
                    unique.append(equation)
            if unique:
                self.bus.publish("equations-extracted", unique[:MAX_EQUATIONS])
                self.log.info(f"{len(unique)} equations extracted")

            self.bus.publish("validation-update", {
                "dimensional": "pass" if sensitivity else "pending",
                "sensitivity": "pass" if sensitivity else "pending",
                "variable": "pass" if has_model else "pending",
            })
        except AutoMCMError as exc:
            self.log.warning(f"Could not emit modeling results: {exc}")

    async def execute_writing_phase(self) -> WritingResult:
        with self._exclusive():
            return await self._write()

    async def _write(self) -> WritingResult:
        try:
            orchestrator = self._require_orchestrator()
            self.log.info("Starting writing phase")
            result = await orchestrator.execute_writing_phase()
        except Exception as exc:
            self._report_failure("Writing", exc)
            raise
        finally:
            if self.orchestrator is not None:
                self.orchestrator.set_phase(Phase.idle)

        self.log.success("Writing phase complete")
        self.bus.publish("writing-complete", result.model_dump())
        return result

    async def run_complete_workflow(
        self,
        workspace_path: Union[str, Path],
        problem: Optional[ProblemMeta],
        problem_text: str,
        reserved: bool = False,
    ) -> WorkflowResult:
        """
        Initialize, plan, model and write in sequence, holding the service
        busy from the first phase to the last.

        The failing phase has already published its ``error`` event, so a
        failure here only adds a log line before re-raising.

        Args:
            reserved: The caller already holds the service through ``reserve()``
        """
        with self._exclusive(reserved=reserved):
            self.log.info("Starting complete MCM workflow")
            try:
                await self._initialize(workspace_path, problem)
                plan = await self._plan(problem_text)
                model = await self._model(plan.plan)
                paper = await self._write()
            except Exception as exc:
                self.log.error(f"Workflow failed: {exc}")
                raise

        result = WorkflowResult(plan=plan, model=model, paper=paper)
        self.log.success("Complete workflow finished")
        self.bus.publish("workflow-complete", result.model_dump())
        return result

    def get_artifacts(self) -> List[ArtifactRecord]:
        if self.orchestrator is None:
            return []
        return self.orchestrator.store.list_artifacts()

    def get_checkpoint(self) -> WorkflowState:
        return self._require_orchestrator().state

    def get_status(self) -> ServiceStatus:
        return ServiceStatus(
            is_running=self.is_running,
            phase=self.current_phase,
            has_workspace=self.orchestrator is not None,
        )

    def stop(self) -> None:
        """
        Flag a stop request. In-flight calls are not cancelled, so the
        service stays busy until the running phase returns.
        """
        self.stop_requested = True
        self.log.warning("Stopping execution")
