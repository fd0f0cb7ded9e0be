"""Run generated Python in a subprocess under a wall-clock limit."""

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from ..core.config import settings
from ..errors import CollaboratorError

logger = logging.getLogger(__name__)


@dataclass
class SandboxResult:
    success: bool
    stdout: str
    stderr: str
    exit_code: Optional[int]
    timed_out: bool = False


async def run_process(
    argv: List[str],
    cwd: Union[str, Path],
    timeout: float,
) -> SandboxResult:
    """
    Run a command, capturing output, and kill it on timeout.

    Raises:
        CollaboratorError: If the executable cannot be started
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd),
        )
    except OSError as exc:
        raise CollaboratorError(f"Cannot start {argv[0]}: {exc}") from exc

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(f"Command timed out after {timeout}s: {' '.join(argv)[:100]}")
        proc.kill()
        await proc.wait()
        return SandboxResult(
            success=False,
            stdout="",
            stderr=f"[TIMEOUT] Command exceeded {timeout}s limit and was killed",
            exit_code=None,
            timed_out=True,
        )

    return SandboxResult(
        success=proc.returncode == 0,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
        exit_code=proc.returncode,
    )


class PythonSandbox:
    """
    Executes code from a temp file under ``<workspace>/models`` with the
    workspace as working directory, so ``figures/...`` paths resolve.
    """

    def __init__(
        self,
        workspace_path: Union[str, Path],
        python_command: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.workspace_path = Path(workspace_path)
        self.python_command = python_command or settings.PYTHON_COMMAND
        self.timeout = timeout or settings.SANDBOX_TIMEOUT_SECONDS

    async def execute(self, code: str, timeout: Optional[float] = None) -> SandboxResult:
        models_dir = self.workspace_path / "models"
        models_dir.mkdir(parents=True, exist_ok=True)
        temp_file = models_dir / f"temp_{int(time.time() * 1000)}_{secrets.token_hex(3)}.py"
        await asyncio.to_thread(temp_file.write_text, code, encoding="utf-8")
        try:
            result = await run_process(
                [self.python_command, str(temp_file)],
                cwd=self.workspace_path,
                timeout=timeout or self.timeout,
            )
        finally:
            temp_file.unlink(missing_ok=True)

        if not result.success and not result.timed_out:
            logger.warning(f"Sandbox exited with code {result.exit_code}: {result.stderr[-300:]}")
        return result
