"""
LLM Provider Support

Provides a uniform ``send_message`` contract over remote text-generation
endpoints:
- Anthropic (alias: claude)
- OpenAI (alias: gpt)
- Google Gemini (alias: gemini)

Each client translates the conversation and system prompt into the
provider's wire shape, issues the HTTP request with httpx, and normalizes
the reply to ``ProviderResponse``. Provider kinds are a closed enum;
``ProviderFactory`` is the registry that maps a kind to its client class.
"""

import logging
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Type

import httpx

from .core.config import Settings, load_llm_file, settings
from .errors import ConfigurationError, ProviderRequestError, UnsupportedProviderError

logger = logging.getLogger(__name__)


class ProviderKind(str, Enum):
    """Supported LLM providers."""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GOOGLE = "google"

    @classmethod
    def parse(cls, value: Any) -> "ProviderKind":
        """Resolve a case-insensitive identifier or alias to a provider kind."""
        if isinstance(value, ProviderKind):
            return value
        key = str(value or "").strip().lower()
        kind = PROVIDER_ALIASES.get(key)
        if kind is None:
            raise UnsupportedProviderError(value, supported=PROVIDER_ALIASES.keys())
        return kind


PROVIDER_ALIASES: Dict[str, ProviderKind] = {
    "anthropic": ProviderKind.ANTHROPIC,
    "claude": ProviderKind.ANTHROPIC,
    "openai": ProviderKind.OPENAI,
    "gpt": ProviderKind.OPENAI,
    "google": ProviderKind.GOOGLE,
    "gemini": ProviderKind.GOOGLE,
}

DEFAULT_BASE_URLS = {
    ProviderKind.ANTHROPIC: "https://api.anthropic.com",
    ProviderKind.OPENAI: "https://api.openai.com",
    ProviderKind.GOOGLE: "https://generativelanguage.googleapis.com",
}

# Default model mappings for each provider
DEFAULT_MODELS = {
    ProviderKind.ANTHROPIC: "claude-3-5-sonnet-latest",
    ProviderKind.OPENAI: "gpt-4o",
    ProviderKind.GOOGLE: "gemini-1.5-pro",
}

DEFAULT_MAX_TOKENS = 8192
DEFAULT_TEMPERATURE = 0.7

# Keys accepted in the YAML ``llm`` section and in ``task_overrides.<role>``
CONFIG_KEYS = ("provider", "api_key", "base_url", "model", "max_tokens", "temperature")


@dataclass(frozen=True)
class ProviderConfig:
    """Immutable configuration for one provider client."""
    provider: ProviderKind
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model: Optional[str] = None
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = DEFAULT_TEMPERATURE

    def __post_init__(self):
        object.__setattr__(self, "provider", ProviderKind.parse(self.provider))
        try:
            object.__setattr__(self, "max_tokens", int(self.max_tokens))
            object.__setattr__(self, "temperature", float(self.temperature))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid numeric LLM setting: {exc}") from exc

    @property
    def effective_base_url(self) -> str:
        return (self.base_url or DEFAULT_BASE_URLS[self.provider]).rstrip("/")

    @property
    def effective_model(self) -> str:
        return self.model or DEFAULT_MODELS[self.provider]

    def merged(self, override: Optional[Dict[str, Any]]) -> "ProviderConfig":
        """
        Apply a partial override field by field.

        Fields that are absent, None or empty in the override keep this
        config's value.

        Args:
            override: Mapping with any subset of ``CONFIG_KEYS``

        Returns:
            A new ProviderConfig
        """
        if not override:
            return self
        changes = {
            key: value
            for key, value in override.items()
            if key in CONFIG_KEYS and value is not None and value != ""
        }
        return replace(self, **changes) if changes else self

    def redacted(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["provider"] = self.provider.value
        data["api_key"] = "***" if self.api_key else None
        return data


@dataclass
class LLMConfig:
    """Primary provider config plus partial per-role overrides."""
    primary: ProviderConfig
    task_overrides: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def for_role(self, role: str) -> ProviderConfig:
        return self.primary.merged(self.task_overrides.get(role))

    @classmethod
    def from_settings(cls, app_settings: Optional[Settings] = None) -> "LLMConfig":
        """
        Build the LLM configuration from the environment and the optional YAML file.

        YAML values win over environment values. Override provider kinds are
        validated here so a typo fails at load time rather than mid-workflow.

        Raises:
            ConfigurationError: For unknown providers or malformed files
        """
        s = app_settings or settings
        values: Dict[str, Any] = {
            "provider": s.LLM_PROVIDER,
            "api_key": s.LLM_API_KEY,
            "base_url": s.LLM_BASE_URL,
            "model": s.LLM_MODEL,
            "max_tokens": s.LLM_MAX_TOKENS,
            "temperature": s.LLM_TEMPERATURE,
        }
        overrides: Dict[str, Dict[str, Any]] = {}

        if s.LLM_CONFIG_FILE:
            llm = load_llm_file(s.LLM_CONFIG_FILE)
            for key in CONFIG_KEYS:
                if llm.get(key) not in (None, ""):
                    values[key] = llm[key]
            raw_overrides = llm.get("task_overrides") or {}
            if not isinstance(raw_overrides, dict):
                raise ConfigurationError("llm.task_overrides must be a mapping of role -> settings")
            for role, override in raw_overrides.items():
                if not isinstance(override, dict):
                    raise ConfigurationError(f"llm.task_overrides.{role} must be a mapping")
                unknown = set(override) - set(CONFIG_KEYS)
                if unknown:
                    logger.warning(f"Ignoring unknown keys in task_overrides.{role}: {sorted(unknown)}")
                if override.get("provider"):
                    ProviderKind.parse(override["provider"])
                overrides[str(role)] = {k: v for k, v in override.items() if k in CONFIG_KEYS}

        return cls(primary=ProviderConfig(**values), task_overrides=overrides)


@dataclass(frozen=True)
class ConversationMessage:
    role: str  # "user" | "assistant"
    content: str


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True)
class ProviderResponse:
    message: str
    usage: TokenUsage
    stop_reason: Optional[str] = None


class ProviderClient:
    """
    Base class for provider clients.

    Subclasses implement ``send_message``; ``_request`` handles transport,
    HTTP error mapping and the JSON content-type guard.
    """

    kind: ProviderKind

    def __init__(
        self,
        config: ProviderConfig,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self.config = config
        self._http_client = http_client
        self.timeout = timeout if timeout is not None else settings.LLM_REQUEST_TIMEOUT_SECONDS

    async def send_message(
        self,
        conversation: Sequence[ConversationMessage],
        system_prompt: str,
        **options: Any,
    ) -> ProviderResponse:
        raise NotImplementedError

    def _option(self, options: Dict[str, Any], key: str) -> Any:
        value = options.get(key)
        return value if value is not None else getattr(self.config, key)

    async def _request(
        self,
        endpoint: str,
        body: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.config.effective_base_url}{endpoint}"
        logger.debug(f"POST {url} ({self.kind.value}, model={self.config.effective_model})")

        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, json=body, headers=headers, params=params)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=body, headers=headers, params=params)
        except httpx.TimeoutException as exc:
            raise ProviderRequestError(
                f"{self.kind.value} request timed out: {exc}", provider=self.kind.value
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderRequestError(
                f"{self.kind.value} request failed: {exc}", provider=self.kind.value
            ) from exc

        content_type = response.headers.get("content-type", "")
        is_json = "application/json" in content_type

        if not response.is_success:
            error_body: Any = response.text[:500]
            if is_json:
                try:
                    error_body = response.json()
                except ValueError:
                    pass
            logger.error(f"{self.kind.value} API error {response.status_code}: {error_body}")
            raise ProviderRequestError(
                f"API request failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
                body=error_body,
                provider=self.kind.value,
            )

        # Guards against HTML error pages served with a 2xx status
        if not is_json:
            raise ProviderRequestError(
                f"Expected JSON response but got {content_type or 'no content-type'}",
                status_code=response.status_code,
                body=response.text[:500],
                provider=self.kind.value,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise ProviderRequestError(
                f"Invalid JSON from {self.kind.value}: {exc}",
                status_code=response.status_code,
                body=response.text[:500],
                provider=self.kind.value,
            ) from exc

    def _malformed(self, payload: Any, exc: Exception) -> ProviderRequestError:
        return ProviderRequestError(
            f"Malformed {self.kind.value} response: missing {exc}",
            body=payload,
            provider=self.kind.value,
        )


class AnthropicClient(ProviderClient):
    kind = ProviderKind.ANTHROPIC

    async def send_message(self, conversation, system_prompt, **options):
        payload = await self._request(
            "/v1/messages",
            {
                "model": self.config.effective_model,
                "system": system_prompt,
                "messages": [{"role": m.role, "content": m.content} for m in conversation],
                "max_tokens": self._option(options, "max_tokens"),
                "temperature": self._option(options, "temperature"),
            },
            headers={
                "x-api-key": self.config.api_key or "",
                "anthropic-version": "2023-06-01",
            },
        )
        try:
            return ProviderResponse(
                message=payload["content"][0]["text"],
                usage=TokenUsage(
                    input_tokens=payload["usage"]["input_tokens"],
                    output_tokens=payload["usage"]["output_tokens"],
                ),
                stop_reason=payload.get("stop_reason"),
            )
        except (KeyError, IndexError, TypeError) as exc:
            raise self._malformed(payload, exc) from exc


class OpenAIClient(ProviderClient):
    kind = ProviderKind.OPENAI

    async def send_message(self, conversation, system_prompt, **options):
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend({"role": m.role, "content": m.content} for m in conversation)
        payload = await self._request(
            "/v1/chat/completions",
            {
                "model": self.config.effective_model,
                "messages": messages,
                "max_tokens": self._option(options, "max_tokens"),
                "temperature": self._option(options, "temperature"),
            },
            headers={"Authorization": f"Bearer {self.config.api_key}"},
        )
        try:
            choice = payload["choices"][0]
            return ProviderResponse(
                message=choice["message"]["content"],
                usage=TokenUsage(
                    input_tokens=payload["usage"]["prompt_tokens"],
                    output_tokens=payload["usage"]["completion_tokens"],
                ),
                stop_reason=choice.get("finish_reason"),
            )
        except (KeyError, IndexError, TypeError) as exc:
            raise self._malformed(payload, exc) from exc


class GeminiClient(ProviderClient):
    """Gemini has no system field here; the prompt is prepended to the first turn."""

    kind = ProviderKind.GOOGLE

    async def send_message(self, conversation, system_prompt, **options):
        contents: List[Dict[str, Any]] = []
        for index, message in enumerate(conversation):
            text = message.content
            if index == 0 and system_prompt:
                text = f"{system_prompt}\n\n{text}"
            contents.append({
                "role": "model" if message.role == "assistant" else "user",
                "parts": [{"text": text}],
            })

        payload = await self._request(
            f"/v1beta/models/{self.config.effective_model}:generateContent",
            {
                "contents": contents,
                "generationConfig": {
                    "maxOutputTokens": self._option(options, "max_tokens"),
                    "temperature": self._option(options, "temperature"),
                },
            },
            params={"key": self.config.api_key or ""},
        )
        try:
            usage = payload.get("usageMetadata") or {}
            candidate = payload["candidates"][0]
            return ProviderResponse(
                message=candidate["content"]["parts"][0]["text"],
                usage=TokenUsage(
                    input_tokens=usage.get("promptTokenCount", 0),
                    output_tokens=usage.get("candidatesTokenCount", 0),
                ),
                stop_reason=candidate.get("finishReason", "stop"),
            )
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise self._malformed(payload, exc) from exc


class ProviderFactory:
    """Registry of provider clients keyed by ProviderKind."""

    _registry: Dict[ProviderKind, Type[ProviderClient]] = {
        ProviderKind.ANTHROPIC: AnthropicClient,
        ProviderKind.OPENAI: OpenAIClient,
        ProviderKind.GOOGLE: GeminiClient,
    }

    @classmethod
    def register(cls, kind: ProviderKind, client_cls: Type[ProviderClient]) -> None:
        cls._registry[kind] = client_cls

    @classmethod
    def create(cls, config: ProviderConfig, **client_kwargs: Any) -> ProviderClient:
        """
        Instantiate the client for a config.

        Raises:
            ConfigurationError: If no API key is configured
            UnsupportedProviderError: If the kind has no registered client
        """
        client_cls = cls._registry.get(config.provider)
        if client_cls is None:
            raise UnsupportedProviderError(config.provider, supported=cls.supported_providers())
        if not config.api_key:
            raise ConfigurationError(
                f"No API key configured for provider '{config.provider.value}' (set LLM_API_KEY or llm.api_key)"
            )
        return client_cls(config, **client_kwargs)

    @staticmethod
    def supported_providers() -> List[str]:
        return list(PROVIDER_ALIASES.keys())


def validate_provider_config(config: ProviderConfig) -> Dict[str, Any]:
    """
    Validate that the required configuration is present for a provider.

    Args:
        config: Effective provider configuration

    Returns:
        Dict with 'valid' bool and 'missing' list of missing config keys
    """
    missing = []
    if not config.api_key:
        missing.append("api_key")
    return {
        "valid": len(missing) == 0,
        "missing": missing,
        "provider": config.provider.value,
    }


def list_available_providers(llm_config: Optional[LLMConfig] = None) -> Dict[str, Dict[str, Any]]:
    """
    List all providers and their configuration status.

    A provider counts as configured when the primary config or some role
    override selects it with an API key.

    Returns:
        Dict mapping provider names to their validation status
    """
    candidates = []
    if llm_config is not None:
        candidates.append(llm_config.primary)
        candidates.extend(llm_config.for_role(role) for role in llm_config.task_overrides)

    providers = {}
    for kind in ProviderKind:
        selected = [c for c in candidates if c.provider == kind]
        configured = any(validate_provider_config(c)["valid"] for c in selected)
        providers[kind.value] = {
            "configured": configured,
            "selected": bool(selected),
            "aliases": sorted(a for a, k in PROVIDER_ALIASES.items() if k == kind and a != kind.value),
            "default_model": DEFAULT_MODELS[kind],
            "default_base_url": DEFAULT_BASE_URLS[kind],
        }
    return providers
