"""Markdown summaries persisted at the end of each phase."""

from datetime import datetime, timezone
from typing import Optional

from ..models import PlanningResult

NOT_PERFORMED = "Not performed"


def _header(title: str, status: str) -> str:
    return f"""# AutoMCM {title}

**Generated**: {datetime.now(timezone.utc).isoformat()}
**Version**: 1.0
**Status**: {status}

---
"""


def planning_document(result: PlanningResult) -> str:
    """Sections appear in the order the planning steps ran."""
    return _header("Planning Phase Results", "Awaiting Approval") + f"""
## 1. RAG Analysis

{result.rag_analysis}

---

## 2. Problem Parsing

{result.parse}

---

## 3. Research Findings

{result.research}

---

## 4. Proposed Approach

{result.plan}

---

## Approval Checklist

- [ ] Problem understanding is accurate
- [ ] Research findings are relevant
- [ ] Proposed approach is feasible
- [ ] All deliverables are addressed
- [ ] Timeline and resources are reasonable

**Next Step**: Approve to proceed to the modeling phase
"""


def modeling_document(
    plan: str,
    model: str,
    experiments: Optional[str] = None,
    visualizations: Optional[str] = None,
    sensitivity: Optional[str] = None,
) -> str:
    return _header("Modeling Phase Results", "Implementation Complete") + f"""
## 1. Approved Plan

{plan}

---

## 2. Model Implementation

{model}

---

## 3. Comprehensive Experiments

{experiments or NOT_PERFORMED}

---

## 4. Comprehensive Visualizations

{visualizations or NOT_PERFORMED}

---

## 5. Sensitivity Analysis (Automated)

{sensitivity or NOT_PERFORMED}

---

## Validation Checklist

- [ ] Code runs without errors
- [ ] Model produces expected outputs
- [ ] Comprehensive experiments completed (4+ types)
- [ ] Visualizations are generated (6+ figures)
- [ ] Sensitivity analysis completed
- [ ] Results are reasonable

**Next Step**: Proceed to writing phase
"""


def writing_document(paper: str) -> str:
    return _header("Writing Phase Results", "Writing Complete") + f"""
## Paper Output

{paper}

---

## Deliverables Checklist

- [ ] All LaTeX sections are complete
- [ ] References are properly formatted
- [ ] Figures and tables are included
- [ ] Summary sheet is created (if required)
- [ ] Paper compiles without errors
- [ ] Document follows MCM/ICM formatting standards

**Next Step**: Review and compile LaTeX document
"""
