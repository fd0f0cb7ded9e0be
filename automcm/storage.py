import asyncio
import json
import logging
import os
import secrets
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import ArtifactNotFoundError, ArtifactReadError, ArtifactWriteError
from .memory.event_bus import EventBus
from .models import ArtifactKind, ArtifactRecord

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _generate_id() -> str:
    return f"artifact_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def _write_atomic(path: Path, data: Union[str, bytes]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{secrets.token_hex(4)}.tmp")
    if isinstance(data, bytes):
        tmp.write_bytes(data)
    else:
        tmp.write_text(data, encoding="utf-8")
    os.replace(tmp, path)


class ArtifactStore:
    """
    Versioned registry of files produced by a workflow.

    Content lives under ``<workspace>/artifacts``; metadata lives in
    ``artifacts/index.json`` as an ordered list of records. Re-registering
    a path bumps its version and keeps its id. One store instance owns the
    index of one workspace.
    """

    def __init__(self, workspace_path: Union[str, Path], bus: Optional[EventBus] = None):
        self.workspace_path = Path(workspace_path).resolve()
        self.artifacts_path = self.workspace_path / "artifacts"
        self.index_path = self.artifacts_path / "index.json"
        self.bus = bus
        self._artifacts: List[ArtifactRecord] = []
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create the artifacts directory and load the existing index."""
        await asyncio.to_thread(self.artifacts_path.mkdir, parents=True, exist_ok=True)
        if not self.index_path.exists():
            self._artifacts = []
            await self._save_index(self._artifacts)
            return
        try:
            raw = await asyncio.to_thread(self.index_path.read_text, encoding="utf-8")
            self._artifacts = [ArtifactRecord.model_validate(item) for item in json.loads(raw)]
        except (OSError, ValueError) as exc:
            raise ArtifactWriteError(f"Cannot load artifact index {self.index_path}: {exc}") from exc
        logger.info(f"Loaded {len(self._artifacts)} artifacts from {self.index_path}")

    def _resolve(self, name: str) -> Path:
        path = (self.artifacts_path / name).resolve()
        if not path.is_relative_to(self.workspace_path):
            raise ArtifactWriteError(f"Artifact name escapes the workspace: {name}")
        return path

    async def save_artifact(
        self,
        name: str,
        kind: Union[ArtifactKind, str],
        content: Union[str, bytes],
        description: str = "",
        generated_by: str = "unknown",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ArtifactRecord:
        """
        Write content to ``artifacts/<name>`` and register it.

        Args:
            name: Artifact name, also its path relative to the artifacts directory
            kind: Artifact kind
            content: Text or bytes to write
            description: Human-readable description
            generated_by: Producing agent label
            metadata: Arbitrary JSON-serializable metadata

        Returns:
            The registered record (version 1 for a new name)

        Raises:
            ArtifactWriteError: If the content or index cannot be written
        """
        path = self._resolve(name)
        try:
            await asyncio.to_thread(_write_atomic, path, content)
        except OSError as exc:
            raise ArtifactWriteError(f"Failed to write artifact {name}: {exc}") from exc

        return await self.register(
            name=name,
            kind=kind,
            path=path,
            description=description,
            generated_by=generated_by,
            metadata=metadata,
        )

    async def register(
        self,
        name: str,
        kind: Union[ArtifactKind, str],
        path: Union[str, Path],
        description: str = "",
        generated_by: str = "unknown",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ArtifactRecord:
        """Record an artifact already on disk and publish ``artifact-created``; same path means a new version."""
        path_str = str(Path(path).resolve())
        async with self._lock:
            record = ArtifactRecord(
                id=_generate_id(),
                name=name,
                kind=ArtifactKind(kind),
                path=path_str,
                description=description,
                generated_by=generated_by,
                metadata=dict(metadata or {}),
                timestamp=_now(),
                version=1,
            )

            records = list(self._artifacts)
            for index, existing in enumerate(records):
                if existing.path == path_str:
                    record.version = existing.version + 1
                    record.id = existing.id
                    records[index] = record
                    break
            else:
                records.append(record)

            # Memory follows the index only once the index is on disk
            await self._save_index(records)
            self._artifacts = records

        logger.info(f"Registered artifact {name} v{record.version} ({record.kind.value})")
        if self.bus is not None:
            self.bus.publish(
                "artifact-created",
                {"kind": record.kind.value, "name": name, "metadata": record.metadata, "version": record.version},
            )
        return record

    def get_by_name(self, name: str) -> Optional[ArtifactRecord]:
        for record in reversed(self._artifacts):
            if record.name == name:
                return record
        return None

    async def read_artifact(self, name: str) -> str:
        """
        Return the text content of the latest version of ``name``.

        Raises:
            ArtifactNotFoundError: If the artifact has no file on disk
            ArtifactReadError: If the content is not UTF-8 text (use ``read_artifact_bytes``)
        """
        data = await self.read_artifact_bytes(name)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ArtifactReadError(name, f"{exc.reason} at byte {exc.start}") from exc

    async def read_artifact_bytes(self, name: str) -> bytes:
        record = self.get_by_name(name)
        path = Path(record.path) if record else self._resolve(name)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise ArtifactNotFoundError(name, reason=str(path)) from exc
        except OSError as exc:
            raise ArtifactNotFoundError(name, reason=str(exc)) from exc

    def exists(self, name: str) -> bool:
        record = self.get_by_name(name)
        return record is not None and Path(record.path).exists()

    def list_artifacts(self) -> List[ArtifactRecord]:
        return list(self._artifacts)

    def get_by_id(self, artifact_id: str) -> Optional[ArtifactRecord]:
        return next((a for a in self._artifacts if a.id == artifact_id), None)

    def get_by_kind(self, kind: Union[ArtifactKind, str]) -> List[ArtifactRecord]:
        kind = ArtifactKind(kind)
        return [a for a in self._artifacts if a.kind == kind]

    def get_figures(self) -> List[ArtifactRecord]:
        return self.get_by_kind(ArtifactKind.figure)

    def get_code(self) -> List[ArtifactRecord]:
        return self.get_by_kind(ArtifactKind.code)

    def search(self, query: str) -> List[ArtifactRecord]:
        """Case-insensitive match on name, description and kind."""
        q = query.lower()
        return [
            a for a in self._artifacts
            if q in a.name.lower() or q in a.description.lower() or q in a.kind.value
        ]

    async def delete(self, artifact_id: str) -> bool:
        """
        Remove an artifact record and its file.

        Returns:
            True if deleted, False if not found
        """
        async with self._lock:
            record = self.get_by_id(artifact_id)
            if record is None:
                return False
            try:
                await asyncio.to_thread(Path(record.path).unlink, missing_ok=True)
            except OSError as exc:
                raise ArtifactWriteError(f"Failed to delete {record.name}: {exc}") from exc
            records = [a for a in self._artifacts if a.id != artifact_id]
            await self._save_index(records)
            self._artifacts = records
        logger.info(f"Deleted artifact {record.name}")
        return True

    def get_stats(self) -> Dict[str, Any]:
        by_kind: Dict[str, int] = {}
        for a in self._artifacts:
            by_kind[a.kind.value] = by_kind.get(a.kind.value, 0) + 1
        return {"total": len(self._artifacts), "by_kind": by_kind}

    async def _save_index(self, records: List[ArtifactRecord]) -> None:
        data = json.dumps([a.model_dump(mode="json") for a in records], indent=2)
        try:
            await asyncio.to_thread(_write_atomic, self.index_path, data)
        except OSError as exc:
            raise ArtifactWriteError(f"Failed to write artifact index: {exc}") from exc
