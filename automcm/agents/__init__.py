"""
Agents for the modeling workflow.

- Agent: one role-specific conversation over a provider client
- Researcher / Modeler / Writer: role prompts and reply parsing
- CloneSpawner: role-tagged sub-agents spawned per task, with fan-out
"""

from .base import Agent, AgentFactory, build_system_prompt, make_agent_factory
from .clones import Clone, CloneSpawner, ParallelResult


__all__ = [
    "Agent",
    "AgentFactory",
    "build_system_prompt",
    "make_agent_factory",
    "Clone",
    "CloneSpawner",
    "ParallelResult",
]
