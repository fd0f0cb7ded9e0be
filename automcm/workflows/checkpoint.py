"""Workflow checkpoint stored as ``<workspace>/.workflow-state.json``."""

import asyncio
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Union

from pydantic import ValidationError

from ..errors import ArtifactWriteError
from ..models import WorkflowState

logger = logging.getLogger(__name__)

STATE_FILE = ".workflow-state.json"


def state_path(workspace_path: Union[str, Path]) -> Path:
    return Path(workspace_path) / STATE_FILE


async def load_workflow_state(workspace_path: Union[str, Path]) -> WorkflowState:
    """Read the checkpoint; a missing or unreadable file yields a fresh state."""
    path = state_path(workspace_path)
    if not path.exists():
        return WorkflowState()
    try:
        raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
        return WorkflowState.model_validate_json(raw)
    except (OSError, ValidationError) as exc:
        logger.warning(f"Ignoring unreadable workflow state {path}: {exc}")
        return WorkflowState()


async def save_workflow_state(workspace_path: Union[str, Path], state: WorkflowState) -> WorkflowState:
    path = state_path(workspace_path)
    state.updated_at = datetime.now(timezone.utc).isoformat()
    data = state.model_dump_json(indent=2)
    tmp = path.with_name(f"{STATE_FILE}.tmp")

    def _write():
        tmp.write_text(data, encoding="utf-8")
        os.replace(tmp, path)

    try:
        await asyncio.to_thread(_write)
    except OSError as exc:
        raise ArtifactWriteError(f"Failed to write workflow state: {exc}") from exc
    return state
