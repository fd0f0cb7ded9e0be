"""Clone registry: role-tagged sub-agents spawned per delegated task."""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from ..llm_providers import ProviderResponse
from ..memory.event_bus import EventBus
from ..models import CloneStatus
from .base import Agent, AgentFactory

logger = logging.getLogger(__name__)


@dataclass
class Clone:
    id: str
    role: str
    task: str
    agent: Agent
    status: CloneStatus = CloneStatus.running

    def summary(self) -> Dict[str, Any]:
        return {"id": self.id, "role": self.role, "task": self.task, "status": self.status.value}


@dataclass
class ParallelResult:
    role: str
    task: str
    clone_id: Optional[str] = None
    result: Optional[ProviderResponse] = None
    error: Optional[BaseException] = None


class CloneSpawner:
    """
    Creates and tracks clones for one orchestrator.

    Each clone owns a fresh Agent from ``agent_factory``; no conversation
    state is shared between clones.
    """

    def __init__(self, agent_factory: AgentFactory, bus: Optional[EventBus] = None):
        self._agent_factory = agent_factory
        self.bus = bus
        self._clones: Dict[str, Clone] = {}

    def spawn(self, role: str, task: str) -> Clone:
        clone_id = f"{role}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"
        clone = Clone(id=clone_id, role=role, task=task, agent=self._agent_factory(role))
        self._clones[clone_id] = clone
        logger.info(f"Spawned {role} clone {clone_id} for: {task[:50]}")
        if self.bus is not None:
            self.bus.publish("clone-spawned", clone.summary())
        return clone

    def complete(self, clone: Clone) -> None:
        if clone.status is CloneStatus.completed:
            return
        clone.status = CloneStatus.completed
        if self.bus is not None:
            self.bus.publish("clone-completed", clone.summary())

    def get(self, clone_id: str) -> Optional[Clone]:
        return self._clones.get(clone_id)

    def get_clones(self) -> List[Clone]:
        """Clones still running."""
        return [c for c in self._clones.values() if c.status is CloneStatus.running]

    def all_clones(self) -> List[Clone]:
        return list(self._clones.values())

    async def run(self, role: str, task: str, message: str, **options: Any) -> ProviderResponse:
        """Spawn a clone, send one message, and mark it completed either way."""
        clone = self.spawn(role, task)
        try:
            return await clone.agent.send_message(message, **options)
        finally:
            self.complete(clone)

    async def execute_parallel(
        self,
        tasks: Sequence[Dict[str, str]],
        raise_on_error: bool = False,
    ) -> List[ParallelResult]:
        """
        Fan out one clone per task and wait for all of them.

        Args:
            tasks: Dicts with ``role``, ``task`` and ``message``
            raise_on_error: Re-raise the first failure (in input order)
                after every task has finished

        Returns:
            One ParallelResult per task, in input order
        """
        logger.info(f"Executing {len(tasks)} tasks in parallel")

        async def _run_one(item: Dict[str, str]) -> ParallelResult:
            outcome = ParallelResult(role=item["role"], task=item["task"])
            clone = None
            try:
                clone = self.spawn(item["role"], item["task"])
                outcome.clone_id = clone.id
                outcome.result = await clone.agent.send_message(item["message"])
            except Exception as exc:
                logger.warning(f"Task {item['task'][:50]!r} ({item['role']}) failed: {exc}")
                outcome.error = exc
            finally:
                if clone is not None:
                    self.complete(clone)
            return outcome

        results = list(await asyncio.gather(*(_run_one(item) for item in tasks)))

        if raise_on_error:
            for outcome in results:
                if outcome.error is not None:
                    raise outcome.error
        return results
