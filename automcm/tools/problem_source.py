"""Problem statement extraction from text, markdown or PDF files."""

import asyncio
import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

import orjson

from ..core.config import settings
from ..errors import CollaboratorError
from .sandbox import run_process

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = {".md", ".markdown", ".txt", ".tex"}

_BLANK_RUNS = re.compile(r"\n{3,}")


@dataclass
class ProblemSource:
    text: str
    page_count: int
    extracted_at: str
    source_path: str

    def metadata(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("text")
        return data


def clean_text(text: str) -> str:
    return _BLANK_RUNS.sub("\n\n", text.replace("\r\n", "\n").replace("\f", "\n")).strip()


class ProblemExtractor:
    """
    Turns a problem file into plain text. PDFs go through ``pdftotext``
    (poppler), everything else is read as UTF-8 text.
    """

    def __init__(self, pdftotext_command: Optional[str] = None, timeout: float = 60.0):
        self.command = pdftotext_command or settings.PDFTOTEXT_COMMAND
        self.timeout = timeout

    async def extract(self, path: Union[str, Path]) -> ProblemSource:
        """
        Extract the problem statement from ``path``.

        Raises:
            CollaboratorError: If the file is missing, unreadable, not UTF-8,
                empty, of an unknown type or ``pdftotext`` fails
        """
        path = Path(path)
        if not path.is_file():
            raise CollaboratorError(f"Problem file not found: {path}")

        suffix = path.suffix.lower()
        if suffix == ".pdf":
            raw, pages = await self._extract_pdf(path)
        elif suffix in TEXT_SUFFIXES or not suffix:
            try:
                raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
            except UnicodeDecodeError as exc:
                raise CollaboratorError(f"Problem file is not UTF-8 text: {path} ({exc.reason} at byte {exc.start})") from exc
            except OSError as exc:
                raise CollaboratorError(f"Cannot read problem file {path}: {exc}") from exc
            pages = 1
        else:
            raise CollaboratorError(f"Unsupported problem file type: {suffix}")

        text = clean_text(raw)
        if not text:
            raise CollaboratorError(f"No text could be extracted from {path}")

        logger.info(f"Extracted {len(text)} characters ({pages} pages) from {path}")
        return ProblemSource(
            text=text,
            page_count=pages,
            extracted_at=datetime.now(timezone.utc).isoformat(),
            source_path=str(path.resolve()),
        )

    async def _extract_pdf(self, path: Path):
        result = await run_process(
            [self.command, "-layout", "-enc", "UTF-8", str(path.resolve()), "-"],
            cwd=path.parent,
            timeout=self.timeout,
        )
        if not result.success:
            raise CollaboratorError(f"PDF extraction failed: {result.stderr.strip()[:300] or 'no output'}")
        # pdftotext ends every page with a form feed
        pages = max(result.stdout.count("\f"), 1)
        return result.stdout, pages


async def save_problem_metadata(workspace_path: Union[str, Path], source: ProblemSource) -> Path:
    """Write ``problem-metadata.json``; the statement itself lands in ``problem.md`` during planning."""
    metadata_file = Path(workspace_path) / "problem-metadata.json"

    def _write():
        metadata_file.parent.mkdir(parents=True, exist_ok=True)
        metadata_file.write_bytes(orjson.dumps(source.metadata(), option=orjson.OPT_INDENT_2))

    await asyncio.to_thread(_write)
    return metadata_file
