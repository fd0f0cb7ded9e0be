import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings

from ..errors import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
    }

    # Primary LLM configuration (per-role overrides live in LLM_CONFIG_FILE)
    LLM_PROVIDER: str = Field(default="anthropic", description="anthropic|claude, openai|gpt, google|gemini")
    LLM_API_KEY: str | None = Field(default=None, description="API key for the primary provider")
    LLM_BASE_URL: str | None = Field(default=None, description="Override the provider's default endpoint")
    LLM_MODEL: str | None = Field(default=None, description="Model identifier (provider default when unset)")
    LLM_MAX_TOKENS: int = Field(default=8192)
    LLM_TEMPERATURE: float = Field(default=0.7)
    LLM_CONFIG_FILE: str | None = Field(default=None, description="Optional YAML file with llm: and llm.task_overrides")
    LLM_REQUEST_TIMEOUT_SECONDS: float = Field(default=600.0)

    # Agent conversation window; None keeps the full transcript in every request
    MAX_HISTORY_MESSAGES: int | None = Field(default=None, ge=2)

    # Planning phase retry policy
    PLANNING_RETRIES: int = Field(default=2, ge=0)
    PLANNING_TIMEOUT_SECONDS: float = Field(default=300.0, gt=0)
    PLANNING_RETRY_DELAY_SECONDS: float = Field(default=2.0, ge=0)

    # External collaborators
    SANDBOX_TIMEOUT_SECONDS: float = Field(default=120.0, gt=0)
    PYTHON_COMMAND: str = Field(default="python3")
    LATEX_COMMAND: str = Field(default="pdflatex")
    PDFTOTEXT_COMMAND: str = Field(default="pdftotext")

    # HTTP API
    CORS_ALLOW_ORIGINS: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    # Runtime
    WORKSPACE_ROOT: str = Field(default="./workspace")
    LOG_LEVEL: str = Field(default="INFO")


settings = Settings()


_ENV_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)(:-([^}]*))?\}")


def _substitute_env(value: str) -> str:
    def repl(match: re.Match[str]) -> str:
        var = match.group(1)
        default = match.group(3) or ""
        return os.getenv(var, default)

    return _ENV_PATTERN.sub(repl, value)


def _resolve_env(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: _resolve_env(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_resolve_env(v) for v in obj]
    if isinstance(obj, str):
        return _substitute_env(obj)
    return obj


def load_llm_file(path: str | Path) -> Dict[str, Any]:
    """
    Load the ``llm:`` section of a YAML configuration file.

    ``${VAR}`` and ``${VAR:-default}`` references are substituted from the
    environment after parsing.

    Args:
        path: YAML file path

    Returns:
        The resolved ``llm`` mapping (empty when the file has none)

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    file_path = Path(path)
    if not file_path.exists():
        raise ConfigurationError(f"LLM config file not found: {file_path}")
    try:
        with file_path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {file_path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"{file_path} must contain a mapping at the top level")

    llm = _resolve_env(data.get("llm") or {})
    if not isinstance(llm, dict):
        raise ConfigurationError(f"'llm' in {file_path} must be a mapping")
    return llm


def configure_logging(level: Optional[str] = None) -> None:
    """Install a single stream handler on the root logger."""
    root = logging.getLogger()
    level_name = (level or settings.LOG_LEVEL).upper()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    # Replace rather than stack handlers when called twice (CLI + app factory)
    for handler in list(root.handlers):
        if getattr(handler, "_automcm", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    handler._automcm = True  # type: ignore[attr-defined]
    root.addHandler(handler)
