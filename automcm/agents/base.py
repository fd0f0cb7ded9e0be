"""
Agent: a role-specific participant in the workflow.

Binds one ProviderClient to a system prompt and owns the conversation
transcript. Roles differ only in prompt text and, through
``llm.task_overrides``, in which provider config they use.
"""

import logging
from typing import Any, Callable, List, Optional, Tuple

from ..core.config import settings
from ..llm_providers import (
    ConversationMessage,
    LLMConfig,
    ProviderClient,
    ProviderConfig,
    ProviderFactory,
    ProviderResponse,
)
from .modeler import MODELER_PROMPT
from .researcher import RESEARCHER_PROMPT
from .writer import WRITER_PROMPT

logger = logging.getLogger(__name__)

BASE_PROMPT = """You are an AI agent working in AutoMCM, a specialized workspace for Mathematical Contest in Modeling (MCM/ICM).

WORKSPACE STRUCTURE:
- problem.md: Contains the ACTUAL MCM problem statement (extracted from PDF)
- AUTOMCM.md: Project constitution with standards and templates
  - Variable registry with symbols, definitions, units, and constraints
  - Modeling assumptions
  - Code standards
  - LaTeX configuration
  - Deliverables checklist

CRITICAL RULES:
1. The problem statement in user messages is the REAL problem (from problem.md)
2. AUTOMCM.md provides standards/templates, NOT the problem statement
3. All variables must be registered in the Variable Registry
4. All code must follow the defined code standards
5. All equations must be dimensionally consistent
6. Document all assumptions"""

ROLE_PROMPTS = {
    "researcher": RESEARCHER_PROMPT,
    "modeler": MODELER_PROMPT,
    "writer": WRITER_PROMPT,
    "general": "",
}


def build_system_prompt(role: str) -> str:
    return BASE_PROMPT + ROLE_PROMPTS.get(role, "")


class Agent:
    """
    Conversation owner for one role.

    The transcript is append-only. ``max_history`` bounds only the window
    sent to the provider; ``history`` always holds every message.
    """

    def __init__(
        self,
        role: str = "general",
        client: Optional[ProviderClient] = None,
        *,
        llm_config: Optional[LLMConfig] = None,
        max_history: Optional[int] = None,
        **client_kwargs: Any,
    ):
        self.role = role
        if client is None:
            config = (llm_config or LLMConfig.from_settings()).for_role(role)
            client = ProviderFactory.create(config, **client_kwargs)
        self.client = client
        self.system_prompt = build_system_prompt(role)
        self.max_history = max_history if max_history is not None else settings.MAX_HISTORY_MESSAGES
        self._history: List[ConversationMessage] = []

    @property
    def provider_config(self) -> ProviderConfig:
        return self.client.config

    @property
    def history(self) -> Tuple[ConversationMessage, ...]:
        return tuple(self._history)

    def clear_history(self) -> None:
        self._history = []

    def _request_window(self) -> List[ConversationMessage]:
        if not self.max_history or len(self._history) <= self.max_history:
            return list(self._history)
        window = self._history[-self.max_history:]
        # Providers expect the conversation to open with a user turn
        while window and window[0].role != "user":
            window = window[1:]
        return window

    async def send_message(self, text: str, **options: Any) -> ProviderResponse:
        """
        Send a user message and record the reply.

        Args:
            text: User message
            **options: ``max_tokens`` / ``temperature`` overrides for this call

        Returns:
            ProviderResponse with message, usage and stop reason

        Raises:
            ProviderRequestError: If the provider call fails; the user
                message stays in the transcript
        """
        tag = self.role.upper()
        self._history.append(ConversationMessage(role="user", content=text))
        window = self._request_window()
        logger.info(f"[{tag}] Sending {len(text)} chars ({len(window)}/{len(self._history)} messages in window)")

        try:
            response = await self.client.send_message(window, self.system_prompt, **options)
        except Exception as exc:
            logger.error(f"[{tag}] Error sending message: {exc}")
            raise

        self._history.append(ConversationMessage(role="assistant", content=response.message))
        logger.info(
            f"[{tag}] Response received: {len(response.message)} chars, "
            f"tokens in={response.usage.input_tokens} out={response.usage.output_tokens}"
        )
        return response


AgentFactory = Callable[[str], Agent]


def make_agent_factory(
    llm_config: Optional[LLMConfig] = None,
    max_history: Optional[int] = None,
    **client_kwargs: Any,
) -> AgentFactory:
    """
    Build a role -> Agent factory bound to one LLM configuration.

    The config is loaded once here, so an invalid provider in the YAML file
    fails before any phase starts.
    """
    config = llm_config or LLMConfig.from_settings()

    def factory(role: str) -> Agent:
        return Agent(role, llm_config=config, max_history=max_history, **client_kwargs)

    return factory
