import asyncio
import re
from typing import Any, Callable, Dict, List, Optional, Union

import pytest
import pytest_asyncio

from automcm.agents.base import Agent
from automcm.llm_providers import (
    ProviderClient,
    ProviderConfig,
    ProviderKind,
    ProviderResponse,
    TokenUsage,
)
from automcm.memory.event_bus import EventBus
from automcm.models import ProblemMeta
from automcm.tools.latex import CompileResult
from automcm.tools.sandbox import SandboxResult
from automcm.workflows.orchestrator import Orchestrator

TEST_CONFIG = ProviderConfig(provider="anthropic", api_key="test-key")

Reply = Union[str, BaseException, Callable[[str], Any]]


class StubClient(ProviderClient):
    """Provider client that answers from a fixed reply instead of the network."""

    kind = ProviderKind.ANTHROPIC

    def __init__(self, reply: Reply = "OK", config: ProviderConfig = TEST_CONFIG, delay: float = 0.0):
        super().__init__(config, timeout=1.0)
        self.reply = reply
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []

    async def send_message(self, conversation, system_prompt, **options):
        self.calls.append({
            "conversation": list(conversation),
            "system_prompt": system_prompt,
            "options": options,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        message = self.reply(conversation[-1].content) if callable(self.reply) else self.reply
        if isinstance(message, BaseException):
            raise message
        return ProviderResponse(message=message, usage=TokenUsage(10, 20), stop_reason="end_turn")


class StubAgentFactory:
    """
    Role -> Agent factory over StubClient.

    ``replies`` maps a role to a string, an exception, a callable of the
    request text, or a list consumed in order (the last item repeats).
    """

    def __init__(self, replies: Optional[Dict[str, Any]] = None, default: Reply = "OK"):
        self.replies = {role: list(v) if isinstance(v, list) else v for role, v in (replies or {}).items()}
        self.default = default
        self.agents: List[Agent] = []
        self.calls: List[tuple] = []

    def _next(self, role: str, text: str) -> Any:
        self.calls.append((role, text))
        value = self.replies.get(role, self.default)
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
        if callable(value) and not isinstance(value, BaseException):
            value = value(text)
        return value

    def __call__(self, role: str) -> Agent:
        agent = Agent(role, client=StubClient(lambda text: self._next(role, text)))
        self.agents.append(agent)
        return agent

    def roles(self) -> List[str]:
        return [a.role for a in self.agents]

    def requests(self, role: str) -> List[str]:
        return [text for r, text in self.calls if r == role]


_MODE = re.compile(r'^MODE = "(\w+)"', re.MULTILINE)


class FakeSandbox:
    """Records harness modes; ``failing`` modes exit non-zero."""

    def __init__(self, failing: tuple = (), error: Optional[BaseException] = None):
        self.failing = set(failing)
        self.error = error
        self.modes: List[str] = []

    async def execute(self, code: str, timeout: Optional[float] = None) -> SandboxResult:
        match = _MODE.search(code)
        mode = match.group(1) if match else "unknown"
        self.modes.append(mode)
        if self.error is not None:
            raise self.error
        if mode in self.failing:
            return SandboxResult(success=False, stdout="", stderr=f"{mode} blew up", exit_code=1)
        return SandboxResult(success=True, stdout=f"{mode} output", stderr="", exit_code=0)


class FakeCompiler:
    def __init__(self, installed: bool = False, success: bool = True):
        self.command = "pdflatex"
        self.installed = installed
        self.success = success
        self.compiled: List[str] = []

    def is_installed(self) -> bool:
        return self.installed

    async def compile(self, tex_path, passes: int = 2) -> CompileResult:
        self.compiled.append(str(tex_path))
        if self.success:
            return CompileResult(success=True, pdf_path=str(tex_path).replace(".tex", ".pdf"))
        return CompileResult(success=False, errors=["Undefined control sequence."])


MODEL_REPLY = """Model formulation:

$$\\frac{dP}{dt} = r P (1 - P / K)$$

```python
import numpy as np

growth_rate = 0.3
capacity = 1000.0

def run_model():
    p = 10.0
    for _ in range(50):
        p += growth_rate * p * (1 - p / capacity)
    return p

print(run_model())
```
"""


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def events(bus):
    received: List[Dict[str, Any]] = []
    bus.on("*", received.append)
    return received


@pytest.fixture
def stub_agents():
    return StubAgentFactory(
        replies={
            "general": ["PARSE-STUB", "PLAN-STUB"],
            "researcher": "RESEARCH-STUB",
            "modeler": MODEL_REPLY,
            "writer": "```latex\n\\documentclass{article}\\begin{document}Short\\end{document}\n```",
        }
    )


@pytest.fixture
def fake_sandbox():
    return FakeSandbox()


@pytest.fixture
def fake_compiler():
    return FakeCompiler()


@pytest.fixture
def workspace_path(tmp_path):
    return tmp_path / "workspace"


@pytest_asyncio.fixture
async def orchestrator(workspace_path, bus, stub_agents, fake_sandbox, fake_compiler):
    orch = Orchestrator(
        workspace_path,
        bus=bus,
        agent_factory=stub_agents,
        sandbox=fake_sandbox,
        compiler=fake_compiler,
    )
    await orch.initialize_workspace(ProblemMeta(title="Test Problem", problem_id="A", year=2024))
    return orch


def event_types(events: List[Dict[str, Any]]) -> List[str]:
    return [e["event_type"] for e in events]
