import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .models import ProblemMeta

logger = logging.getLogger(__name__)

SUBDIRS = ("models", "figures", "sections", "references", "data", "artifacts")

_AUTOMCM_TEMPLATE = """# AUTOMCM: {title}

- **Contest**: MCM/ICM {year}
- **Problem**: {problem_id}
- **Created**: {timestamp}

## Problem Statement
See problem.md.

## Variable Registry
| Symbol | Definition | Units | Constraints |
|--------|------------|-------|-------------|

## Assumptions

## Code Standards
- Python 3, numpy/scipy/matplotlib only
- Figures saved to figures/ at 300 DPI

## LaTeX Configuration
- Main file: paper.tex
- Sections: sections/

## Deliverables
- [ ] Summary sheet
- [ ] Model and assumptions
- [ ] Experimental validation
- [ ] Sensitivity analysis
- [ ] Paper (paper.tex / paper.pdf)

## Progress Log
"""

_PAPER_SKELETON = r"""\documentclass[12pt]{article}
\usepackage{amsmath,amssymb}
\usepackage{graphicx}
\usepackage{hyperref}

\title{MCM Paper}
\author{Team}
\date{\today}

\begin{document}
\maketitle

\end{document}
"""


class Workspace:
    """On-disk layout of one problem's workspace."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).resolve()

    @property
    def automcm_path(self) -> Path:
        return self.path / "AUTOMCM.md"

    @property
    def paper_path(self) -> Path:
        return self.path / "paper.tex"

    @property
    def figures_dir(self) -> Path:
        return self.path / "figures"

    @property
    def data_dir(self) -> Path:
        return self.path / "data"

    def exists(self) -> bool:
        return self.automcm_path.exists()

    async def initialize(self, problem: Optional[ProblemMeta] = None) -> Dict[str, Any]:
        """Create subdirectories, AUTOMCM.md and a paper skeleton; existing files are kept."""
        problem = problem or ProblemMeta()
        await asyncio.to_thread(self._scaffold, problem)
        logger.info(f"Workspace ready: {self.path}")
        return {"path": str(self.path), "automcm": str(self.automcm_path), "subdirs": list(SUBDIRS)}

    def _scaffold(self, problem: ProblemMeta) -> None:
        for name in SUBDIRS:
            (self.path / name).mkdir(parents=True, exist_ok=True)
        if not self.automcm_path.exists():
            self.automcm_path.write_text(
                _AUTOMCM_TEMPLATE.format(
                    title=problem.title,
                    year=problem.year or datetime.now().year,
                    problem_id=problem.problem_id or "TBD",
                    timestamp=datetime.now(timezone.utc).isoformat(),
                ),
                encoding="utf-8",
            )
        if not self.paper_path.exists():
            self.paper_path.write_text(_PAPER_SKELETON, encoding="utf-8")

    async def log_progress(self, message: str) -> None:
        line = f"- {datetime.now(timezone.utc).isoformat()}: {message}\n"

        def _append():
            with self.automcm_path.open("a", encoding="utf-8") as f:
                f.write(line)

        await asyncio.to_thread(_append)

    def figure_files(self) -> List[str]:
        if not self.figures_dir.exists():
            return []
        return sorted(p.name for p in self.figures_dir.glob("*.png"))

    def data_summary(self) -> Dict[str, Any]:
        files = []
        if self.data_dir.exists():
            for p in sorted(self.data_dir.iterdir()):
                if p.is_file() and not p.name.startswith("."):
                    files.append({
                        "name": p.name,
                        "type": p.suffix.lstrip(".") or "unknown",
                        "size": f"{p.stat().st_size / 1024:.2f} KB",
                    })
        return {"data_dir": str(self.data_dir), "file_count": len(files), "files": files}
