"""
Modeler role: formulate the model and implement it as self-contained Python.

The modeler clone's reply is mined for a code block; experiments,
visualizations and sensitivity analysis all run against that code.
"""

import json
import logging
import re
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

MODELER_PROMPT = """

MODELER-CODER MODE ACTIVE:
Your focus is on developing mathematical models and implementing them in code.
- First propose formulation in LaTeX
- Then implement in Python with dimensional checks
- Run tests and generate visualizations immediately
- Ensure variable names match LaTeX symbols from registry
- Validate dimensional consistency using SymPy"""

# Tried in order: ```python, ```py, then an untagged fence
_CODE_PATTERNS = (
    re.compile(r"```python\n(.*?)```", re.DOTALL),
    re.compile(r"```py\n(.*?)```", re.DOTALL),
    re.compile(r"```\n(.*?)```", re.DOTALL),
)


def extract_code(message: Optional[str]) -> Optional[str]:
    """
    Extract the first Python code block from an LLM reply.

    Args:
        message: Reply text

    Returns:
        The code, or None when no non-empty block is found
    """
    if not message:
        return None
    for pattern in _CODE_PATTERNS:
        match = pattern.search(message)
        if match and match.group(1).strip():
            logger.info(f"Extracted {len(match.group(1))} chars of Python code")
            return match.group(1)
    logger.warning("No Python code block found in modeler reply")
    return None


def build_model_request(plan: str, data_summary: Optional[Dict[str, Any]] = None) -> str:
    """
    Build the modeler clone's implementation request.

    Args:
        plan: The approved plan text
        data_summary: Output of ``Workspace.data_summary()``; listed only when files exist

    Returns:
        Message text for ``Agent.send_message``
    """
    data_context = ""
    if data_summary and data_summary.get("file_count", 0) > 0:
        data_context = (
            "\n\n## Available Data Files\n\n"
            "You have access to the following data files in the workspace:\n"
            f"{json.dumps(data_summary, indent=2)}\n\n"
            f"All files are located in: {data_summary['data_dir']}\n"
            "You can read and process these files in your implementation."
        )

    return f"""Implement this approved plan:
{plan}

CRITICAL - SUBMISSION REQUIREMENTS:
This is for an MCM competition paper. You MUST create comprehensive experimental validation.

IMPORTANT - CODE REQUIREMENTS:
- Write COMPLETE, SELF-CONTAINED Python code in a SINGLE code block
- DO NOT import modules that don't exist (no "from analysis import", no "from utils import", etc.)
- ONLY use standard libraries: numpy, pandas, matplotlib, scipy, sklearn, networkx
- ALL functions and models must be defined WITHIN the code block
- Code must be executable as-is without external dependencies

Required Deliverables:
1. Python code for the complete model implementation
   - Define ALL functions inline
   - Include realistic synthetic data generation if no data provided
2. Multiple experiments (minimum 5): baseline, parameter sensitivity,
   scenario comparison, edge cases, validation against known results
3. Rich visualizations (minimum 5 figures) saved to figures/ at 300 DPI,
   with axis labels, units and legends
4. Quantitative results: numerical tables, key metrics, documented parameters
{data_context}

CRITICAL: Your code must be SELF-CONTAINED and EXECUTABLE."""
