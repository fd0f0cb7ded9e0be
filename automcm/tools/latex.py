"""LaTeX compiler wrapper. Compile failures never abort the writing phase."""

import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from ..core.config import settings
from .sandbox import run_process

logger = logging.getLogger(__name__)

_ERROR_LINE = re.compile(r"^! (.+)$", re.MULTILINE)


@dataclass
class CompileResult:
    success: bool
    errors: List[str] = field(default_factory=list)
    pdf_path: Optional[str] = None


class LatexCompiler:
    def __init__(self, workspace_path: Union[str, Path], command: Optional[str] = None, timeout: float = 180.0):
        self.workspace_path = Path(workspace_path)
        self.command = command or settings.LATEX_COMMAND
        self.timeout = timeout

    def is_installed(self) -> bool:
        return shutil.which(self.command) is not None

    async def compile(self, tex_path: Union[str, Path], passes: int = 2) -> CompileResult:
        """
        Compile ``tex_path`` in non-interactive mode (two passes for references).

        Raises:
            CollaboratorError: If the compiler cannot be started
        """
        tex_path = Path(tex_path)
        argv = [self.command, "-interaction=nonstopmode", "-halt-on-error", tex_path.name]
        result = None
        for _ in range(passes):
            result = await run_process(argv, cwd=tex_path.parent, timeout=self.timeout)
            if not result.success:
                break

        pdf_path = tex_path.with_suffix(".pdf")
        if result is not None and result.success and pdf_path.exists():
            logger.info(f"Compiled {pdf_path}")
            return CompileResult(success=True, pdf_path=str(pdf_path))

        errors = _ERROR_LINE.findall(result.stdout if result else "") or [
            (result.stderr if result else "") or "compilation failed"
        ]
        logger.warning(f"LaTeX compilation failed: {errors[:3]}")
        return CompileResult(success=False, errors=errors)
