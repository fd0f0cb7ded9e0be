"""
Researcher role: literature, datasets and historical solutions.

Spawned as a clone during planning, after the problem has been parsed.
"""

from typing import Iterable

RESEARCHER_PROMPT = """

RESEARCHER MODE ACTIVE:
Your focus is on finding relevant academic papers, datasets, and historical MCM solutions.
- Search Google Scholar, arXiv, and MCM archives
- Output markdown summaries with proper citations
- Identify applicable mathematical techniques
- Find relevant datasets and data sources"""


def build_research_request(problem_text: str, parsed_analysis: str, techniques: Iterable[str]) -> str:
    """
    Build the researcher clone's task message.

    Args:
        problem_text: The actual problem statement
        parsed_analysis: The master agent's restatement of the problem
        techniques: Techniques suggested by local keyword analysis

    Returns:
        Message text for ``Agent.send_message``
    """
    suggested = ", ".join(techniques) or "none identified"
    return f"""ACTUAL PROBLEM CONTEXT:
{problem_text}

PARSED ANALYSIS:
{parsed_analysis}

Based on THIS SPECIFIC PROBLEM above, find:
1. Relevant academic papers
2. Similar MCM solutions
3. Applicable mathematical techniques

Suggested techniques from analysis:
{suggested}"""
