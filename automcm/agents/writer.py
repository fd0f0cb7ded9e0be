"""
Writer role: competition paper in LaTeX.

Holds the writer's prompts, LaTeX extraction from replies, the paper
completeness policy and the equation extractor used for UI events.
"""

import logging
import math
import re
from typing import Any, Dict, List

from ..models import PaperValidation

logger = logging.getLogger(__name__)

WRITER_PROMPT = """

WRITER MODE ACTIVE:
Your focus is on writing the competition paper in LaTeX.
- Use AUTOMCM.md Variable Registry for all symbols
- Every equation must reference registered variables
- Follow the specified LaTeX template
- Compile iteratively and fix errors
- Ensure all figures are referenced correctly"""

# Completeness thresholds
WORDS_PER_PAGE = 450
MIN_PAGES = 12
MIN_FIGURES = 4

_FENCED_LATEX = re.compile(r"```(?:latex|tex)?[ \t]*\n?(.*?)```", re.DOTALL)
_FIGURE = re.compile(r"\\begin\{figure\*?\}")
_TABLE = re.compile(r"\\begin\{table\*?\}")
_EQUATION = re.compile(r"\\begin\{(?:equation|align)\*?\}")
_SECTION = re.compile(r"\\section\*?\{")
_EXPERIMENTAL_HEADING = re.compile(
    r"\\section\*?\{[^}]*(?:experiment|result|validation)[^}]*\}"
    r"|^#{1,3}[ \t]+.*(?:experiment|result|validation)",
    re.IGNORECASE | re.MULTILINE,
)


def extract_latex(message: str) -> str:
    """
    Pull a LaTeX document out of a writer reply.

    Tries a fenced block, then a bare document, then a
    ``\\documentclass``..``\\end{document}`` span; otherwise wraps the
    reply in a minimal article so a compilable file always exists.
    """
    match = _FENCED_LATEX.search(message)
    if match and match.group(1).strip():
        return match.group(1).strip()

    if "\\documentclass" in message and "\\begin{document}" in message:
        start = message.find("\\documentclass")
        end = message.rfind("\\end{document}")
        if end != -1:
            return message[start:end + len("\\end{document}")].strip()
        return message[start:].strip()

    logger.warning("No LaTeX content found in writer reply, using basic template")
    return (
        "\\documentclass[12pt]{article}\n"
        "\\usepackage{amsmath, amsfonts, graphicx}\n"
        "\\title{Mathematical Modeling Paper}\n"
        "\\author{Team}\n"
        "\\date{\\today}\n"
        "\\begin{document}\n"
        "\\maketitle\n"
        "\\section{Introduction}\n"
        f"{message}\n"
        "\\end{document}"
    )


def validate_paper(content: str) -> PaperValidation:
    """
    Judge a paper against the submission thresholds.

    Complete iff ``ceil(words / 450) >= 12``, at least 4 figure
    environments, and an experiment/result/validation section heading.
    """
    word_count = len(content.split())
    estimated_pages = math.ceil(word_count / WORDS_PER_PAGE)
    figure_count = len(_FIGURE.findall(content))
    has_experimental = bool(_EXPERIMENTAL_HEADING.search(content))

    return PaperValidation(
        word_count=word_count,
        estimated_pages=estimated_pages,
        figure_count=figure_count,
        table_count=len(_TABLE.findall(content)),
        equation_count=len(_EQUATION.findall(content)),
        section_count=len(_SECTION.findall(content)),
        has_experimental_section=has_experimental,
        is_complete=estimated_pages >= MIN_PAGES and figure_count >= MIN_FIGURES and has_experimental,
    )


def build_paper_request(modeling_context: str) -> str:
    return f"""Write a COMPLETE, SUBMISSION-READY MCM/ICM competition paper.

{modeling_context}

---

PAPER WRITING INSTRUCTIONS:

CRITICAL REQUIREMENTS FOR MCM SUBMISSION:
- Target length: 15-20 pages (excluding references)
- Must include ALL generated figures from figures/ directory
- Must include detailed experimental results with quantitative analysis
- Must demonstrate thorough validation and testing

Required Structure:
1. Preamble: \\documentclass[12pt]{{article}}, amsmath, graphicx, booktabs
2. Title page with a one-page summary sheet
3. Introduction (2-3 pages): background, literature, approach, roadmap
4. Problem analysis (1-2 pages)
5. Assumptions and justifications (1 page)
6. Model development (3-4 pages): numbered equations, variable table
7. Solution methodology (2-3 pages)
8. EXPERIMENTAL VALIDATION (4-5 pages): one subsection per experiment,
   sensitivity results, scenario comparisons, edge cases, results tables
9. Results discussion (2-3 pages)
10. Strengths and weaknesses (1 page)
11. Conclusion (1 page)
12. References

FIGURES AND TABLES:
- Include ALL generated figures (minimum 5), each in a figure environment
  with \\includegraphics, a descriptive caption and a label
- Reference every figure in the text with \\ref{{fig:...}}
- Build results tables with booktabs

Reference variables from the AUTOMCM.md variable registry.
Output the COMPLETE LaTeX code in a code block."""


def build_expansion_request(validation: PaperValidation) -> str:
    """Build the single expansion request for an incomplete paper."""
    if validation.estimated_pages < MIN_PAGES:
        length = (
            "Adding more detailed content to reach 15-20 pages: expand the introduction and "
            "literature review, add derivations, discuss each experimental result, add a "
            "sensitivity analysis discussion and model verification subsections"
        )
    else:
        length = "Content length is adequate"

    if validation.figure_count < MIN_FIGURES:
        figures = (
            "Include MORE figures from the figures/ directory, each with a descriptive caption, "
            "a figure environment and a reference in the text"
        )
    else:
        figures = "Figure count is adequate"

    if not validation.has_experimental_section:
        experiments = (
            "Add a comprehensive EXPERIMENTAL VALIDATION section (3-4 pages) with experiment "
            "subsections, quantitative results tables and scenario comparisons"
        )
    else:
        experiments = "Experimental section exists"

    return f"""The current paper needs expansion to meet MCM submission standards.

Current status:
- Estimated pages: {validation.estimated_pages} (target: 15-20)
- Figures: {validation.figure_count} (minimum: 5)
- Tables: {validation.table_count}
- Has experimental validation: {'Yes' if validation.has_experimental_section else 'No'}

Please EXPAND the paper by:
1. {length}
2. {figures}
3. {experiments}
4. Adding depth everywhere: derivations, algorithm steps, interpretation of results
5. Adding results tables with quantitative outcomes from experiments

Please output the COMPLETE EXPANDED LaTeX document in a code block."""


_DISPLAY_MATH = re.compile(r"\$\$(.*?)\$\$", re.DOTALL)
_ENVIRONMENT_MATH = re.compile(r"\\begin\{(equation|align)\*?\}(.*?)\\end\{\1\*?\}", re.DOTALL)
_INLINE_MATH = re.compile(r"(?<!\$)\$([^$\n]+)\$(?!\$)")
_LABEL = re.compile(r"\\label\{([^}]+)\}")

MAX_EQUATIONS = 30


def extract_equations(content: str) -> List[Dict[str, Any]]:
    """
    Collect equations from markdown or LaTeX.

    Display math, equation/align environments (label split out) and inline
    math longer than five characters, de-duplicated by LaTeX source and
    capped at 30.
    """
    found: List[Dict[str, Any]] = []

    for match in _DISPLAY_MATH.finditer(content):
        found.append({"latex": match.group(1).strip(), "label": ""})

    for match in _ENVIRONMENT_MATH.finditer(content):
        body = match.group(2).strip()
        label = _LABEL.search(body)
        found.append({
            "latex": _LABEL.sub("", body).strip(),
            "label": label.group(1) if label else "",
        })

    stripped = _DISPLAY_MATH.sub("", content)
    for match in _INLINE_MATH.finditer(stripped):
        latex = match.group(1).strip()
        if len(latex) > 5:
            found.append({"latex": latex, "label": ""})

    unique: List[Dict[str, Any]] = []
    seen = set()
    for equation in found:
        if equation["latex"] and equation["latex"] not in seen:
            seen.add(equation["latex"])
            unique.append(equation)
    return unique[:MAX_EQUATIONS]
