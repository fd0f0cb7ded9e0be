import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from . import __version__
from .core.config import configure_logging, settings
from .errors import AutoMCMError
from .llm_providers import LLMConfig, ProviderFactory, list_available_providers, validate_provider_config
from .middleware.error_handler import (
    automcm_exception_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from .routers import workspaces
from .routers.workspaces import WorkspaceRegistry

logger = logging.getLogger(__name__)


def create_app(registry: Optional[WorkspaceRegistry] = None) -> FastAPI:
    """
    Build the HTTP app.

    Args:
        registry: Workspace registry; defaults to one rooted at WORKSPACE_ROOT

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="AutoMCM API",
        description="Planning, modeling and paper-writing workflows for mathematical modeling contests",
        version=__version__,
        default_response_class=ORJSONResponse,
    )
    app.state.registry = registry or WorkspaceRegistry(settings.WORKSPACE_ROOT)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(AutoMCMError, automcm_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(workspaces.router)

    @app.get("/health", response_class=ORJSONResponse)
    async def health():
        """Health check endpoint."""
        return {
            "status": "ok",
            "version": __version__,
            "workspace_root": str(app.state.registry.root),
            "workspaces": len(app.state.registry.ids()),
        }

    @app.get("/providers", response_class=ORJSONResponse)
    async def get_providers():
        """Status of the configured LLM providers, per role."""
        llm_config = LLMConfig.from_settings()
        current = validate_provider_config(llm_config.primary)
        return {
            "current_provider": llm_config.primary.provider.value,
            "current_model": llm_config.primary.effective_model,
            "current_valid": current["valid"],
            "current_missing": current["missing"],
            "roles": {
                role: llm_config.for_role(role).redacted()
                for role in ("general", "researcher", "modeler", "writer")
            },
            "supported": ProviderFactory.supported_providers(),
            "providers": list_available_providers(llm_config),
        }

    logger.info(f"AutoMCM API ready (workspaces under {app.state.registry.root})")
    return app


configure_logging()
app = create_app()
