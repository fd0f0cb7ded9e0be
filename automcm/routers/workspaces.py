"""API endpoints for workspaces: phases, artifacts, checkpoint and the event stream."""

import json
import logging
import mimetypes
import re
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, List, Optional, Union

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import ORJSONResponse, StreamingResponse

from ..errors import AutoMCMError
from ..memory.event_bus import EventBus
from ..models import (
    ArtifactKind,
    ArtifactListResponse,
    InitializeWorkspaceRequest,
    ModelingRequest,
    ModelingResult,
    PlanningRequest,
    PlanningResult,
    ServiceStatus,
    WorkflowRunRequest,
    WorkflowState,
    WritingResult,
)
from ..services.agent_service import AgentService

logger = logging.getLogger(__name__)

_WORKSPACE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$")


class WorkspaceRegistry:
    """
    One AgentService (and so one orchestrator and one event bus) per workspace id.

    Workspaces live under ``root``; independent workspaces share nothing.
    """

    def __init__(self, root: Union[str, Path], service_factory: Callable[[], AgentService] = AgentService):
        self.root = Path(root)
        self.service_factory = service_factory
        self._services: Dict[str, AgentService] = {}

    def path_for(self, workspace_id: str) -> Path:
        if not _WORKSPACE_ID.match(workspace_id) or ".." in workspace_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid workspace id: {workspace_id}")
        return self.root / workspace_id

    def get(self, workspace_id: str) -> AgentService:
        service = self._services.get(workspace_id)
        if service is None or service.orchestrator is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not initialized")
        return service

    def get_or_create(self, workspace_id: str) -> AgentService:
        self.path_for(workspace_id)
        if workspace_id not in self._services:
            self._services[workspace_id] = self.service_factory()
        return self._services[workspace_id]

    def ids(self) -> List[str]:
        return sorted(self._services)


def get_registry(request: Request) -> WorkspaceRegistry:
    return request.app.state.registry


router = APIRouter(prefix="/workspaces", tags=["workspaces"])


@router.get("", response_class=ORJSONResponse)
async def list_workspaces(registry: WorkspaceRegistry = Depends(get_registry)):
    return {"workspaces": registry.ids()}


@router.post("/{workspace_id}", status_code=status.HTTP_201_CREATED, response_class=ORJSONResponse)
async def initialize_workspace(
    workspace_id: str,
    body: Optional[InitializeWorkspaceRequest] = None,
    registry: WorkspaceRegistry = Depends(get_registry),
):
    """Create (or reopen) a workspace and restore its checkpoint."""
    path = registry.path_for(workspace_id)
    service = registry.get_or_create(workspace_id)
    body = body or InitializeWorkspaceRequest()
    return await service.initialize_workspace(path, body.problem)


@router.post("/{workspace_id}/planning", response_model=PlanningResult, response_class=ORJSONResponse)
async def run_planning(
    workspace_id: str,
    body: PlanningRequest,
    registry: WorkspaceRegistry = Depends(get_registry),
):
    service = registry.get(workspace_id)
    return await service.execute_planning_phase(body.problem_text, retries=body.retries)


@router.post("/{workspace_id}/modeling", response_model=ModelingResult, response_class=ORJSONResponse)
async def run_modeling(
    workspace_id: str,
    body: Optional[ModelingRequest] = None,
    registry: WorkspaceRegistry = Depends(get_registry),
):
    """Run modeling on the given plan, or on the checkpointed plan when none is sent."""
    service = registry.get(workspace_id)
    plan = body.plan if body else None
    if plan is None:
        planning = service.get_checkpoint().planning
        plan = planning.plan if planning else None
    return await service.execute_modeling_phase(plan)


@router.post("/{workspace_id}/writing", response_model=WritingResult, response_class=ORJSONResponse)
async def run_writing(workspace_id: str, registry: WorkspaceRegistry = Depends(get_registry)):
    service = registry.get(workspace_id)
    return await service.execute_writing_phase()


async def _run_workflow(service: AgentService, path: Path, body: WorkflowRunRequest) -> None:
    try:
        await service.run_complete_workflow(path, body.problem, body.problem_text, reserved=True)
    except AutoMCMError as exc:
        # Already published as an error event
        logger.warning(f"Workflow in {path} failed: {exc}")


@router.post("/{workspace_id}/run", status_code=status.HTTP_202_ACCEPTED, response_class=ORJSONResponse)
async def run_workflow(
    workspace_id: str,
    body: WorkflowRunRequest,
    bg: BackgroundTasks,
    registry: WorkspaceRegistry = Depends(get_registry),
):
    """Start the complete workflow in the background; follow it on /events."""
    path = registry.path_for(workspace_id)
    service = registry.get_or_create(workspace_id)
    # Claimed before responding so a second /run is rejected
    service.reserve()
    bg.add_task(_run_workflow, service, path, body)
    return {"status": "accepted", "workspace_id": workspace_id}


@router.post("/{workspace_id}/stop", response_class=ORJSONResponse)
async def stop(workspace_id: str, registry: WorkspaceRegistry = Depends(get_registry)):
    registry.get(workspace_id).stop()
    return {"status": "stopping", "workspace_id": workspace_id}


@router.get("/{workspace_id}/status", response_model=ServiceStatus, response_class=ORJSONResponse)
async def get_status(workspace_id: str, registry: WorkspaceRegistry = Depends(get_registry)):
    return registry.get(workspace_id).get_status()


@router.get("/{workspace_id}/checkpoint", response_model=WorkflowState, response_class=ORJSONResponse)
async def get_checkpoint(workspace_id: str, registry: WorkspaceRegistry = Depends(get_registry)):
    return registry.get(workspace_id).get_checkpoint()


@router.get("/{workspace_id}/clones", response_class=ORJSONResponse)
async def list_clones(workspace_id: str, registry: WorkspaceRegistry = Depends(get_registry)):
    orchestrator = registry.get(workspace_id).orchestrator
    return {
        "running": [c.summary() for c in orchestrator.get_clones()],
        "all": [c.summary() for c in orchestrator.spawner.all_clones()],
    }


@router.get("/{workspace_id}/artifacts", response_model=ArtifactListResponse, response_class=ORJSONResponse)
async def list_artifacts(
    workspace_id: str,
    kind: Optional[ArtifactKind] = Query(default=None, description="Only artifacts of this kind"),
    q: Optional[str] = Query(default=None, description="Case-insensitive search on name, description and kind"),
    registry: WorkspaceRegistry = Depends(get_registry),
):
    store = registry.get(workspace_id).orchestrator.store
    if q:
        artifacts = store.search(q)
    elif kind:
        artifacts = store.get_by_kind(kind)
    else:
        artifacts = store.list_artifacts()
    return ArtifactListResponse(artifacts=artifacts, stats=store.get_stats())


@router.get("/{workspace_id}/artifacts/{name:path}")
async def read_artifact(workspace_id: str, name: str, registry: WorkspaceRegistry = Depends(get_registry)):
    store = registry.get(workspace_id).orchestrator.store
    data = await store.read_artifact_bytes(name)
    media_type, _ = mimetypes.guess_type(name)
    if media_type is None or name.endswith((".md", ".tex", ".py", ".txt")):
        media_type = "text/plain; charset=utf-8"
    return Response(content=data, media_type=media_type)


@router.delete("/{workspace_id}/artifacts/{artifact_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_artifact(workspace_id: str, artifact_id: str, registry: WorkspaceRegistry = Depends(get_registry)):
    store = registry.get(workspace_id).orchestrator.store
    if not await store.delete(artifact_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Artifact not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


async def event_stream(bus: EventBus, event_types: Optional[List[str]] = None) -> AsyncIterator[str]:
    """Format bus events as server-sent events."""
    async for event in bus.subscribe(event_types):
        yield f"event: {event['event_type']}\ndata: {json.dumps(event, default=str)}\n\n"


@router.get("/{workspace_id}/events")
async def stream_events(
    workspace_id: str,
    types: Optional[str] = Query(default=None, description="Comma-separated event types"),
    registry: WorkspaceRegistry = Depends(get_registry),
):
    """
    Subscribe to workflow events via SSE.

    The workspace service is created on demand so a client can subscribe
    before starting a run.
    """
    registry.path_for(workspace_id)
    service = registry.get_or_create(workspace_id)
    event_types = [t.strip() for t in types.split(",") if t.strip()] if types else None
    headers = {"Cache-Control": "no-cache", "Connection": "keep-alive"}
    return StreamingResponse(
        event_stream(service.bus, event_types),
        media_type="text/event-stream",
        headers=headers,
    )
