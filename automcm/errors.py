"""Error taxonomy shared by providers, agents, the artifact store and the orchestrator."""

from typing import Any, Iterable, Optional


class AutoMCMError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(AutoMCMError):
    """Invalid or incomplete configuration. Fatal, never retried."""


class UnsupportedProviderError(ConfigurationError):
    """Provider identifier is not one of the registered provider kinds."""

    def __init__(self, provider: Any, supported: Iterable[str] = ()):
        self.provider = provider
        self.supported = list(supported)
        message = f"Unsupported LLM provider: {provider!r}"
        if self.supported:
            message += f" (supported: {', '.join(self.supported)})"
        super().__init__(message)


class ProviderRequestError(AutoMCMError):
    """
    A provider call failed: HTTP error status, transport failure,
    non-JSON response or a payload missing the expected fields.

    Attributes:
        status_code: HTTP status, or None when no response was received
        body: Parsed JSON error body, or truncated raw text
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Any = None,
        provider: Optional[str] = None,
    ):
        self.status_code = status_code
        self.body = body
        self.provider = provider
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


class PhasePreconditionError(AutoMCMError):
    """A phase was invoked before its inputs exist (workspace, plan, planning artifact)."""


class PhaseTimeoutError(AutoMCMError):
    """A time-boxed phase attempt did not finish in time."""

    def __init__(self, phase: str, timeout: float):
        self.phase = phase
        self.timeout = timeout
        super().__init__(f"{phase} phase timed out after {timeout:g}s")


class ArtifactNotFoundError(AutoMCMError):
    """Requested artifact has no file on disk."""

    def __init__(self, name: str, reason: str = ""):
        self.name = name
        message = f"Artifact not found: {name}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class ArtifactReadError(AutoMCMError):
    """Artifact exists but its content cannot be read as text."""

    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Cannot read artifact {name} as text: {reason}")


class ArtifactWriteError(AutoMCMError):
    """Artifact content or the artifact index could not be written (or the index could not be loaded)."""


class CollaboratorError(AutoMCMError):
    """An external tool (sandbox interpreter, LaTeX compiler) could not be started."""
