"""
Planning prompts sent through the master agent.

Parsing and the final plan are both master-agent turns, so the plan
request sees the parse in the master's own transcript.
"""


def build_parse_request(problem_text: str, rag_summary: str) -> str:
    """
    Ask the master agent to restate the actual problem.

    Args:
        problem_text: The problem statement
        rag_summary: Markdown from ``tools.analyzer.summarize``

    Returns:
        Message text for ``Agent.send_message``
    """
    return f"""IMPORTANT: The following is the ACTUAL MCM problem statement. Parse this problem and extract:
1. Problem type
2. Key requirements
3. Deliverables
4. Key concepts and challenges

THE ACTUAL PROBLEM STATEMENT:
=============================
{problem_text}
=============================

Context from similar solutions:
{rag_summary}

Provide a detailed analysis of THIS SPECIFIC PROBLEM above."""


def build_plan_request(problem_text: str, rag_summary: str, research: str) -> str:
    return f"""Based on the research findings, propose a detailed approach for THIS SPECIFIC PROBLEM:

PROBLEM STATEMENT:
{problem_text}

RAG Analysis:
{rag_summary}

Research:
{research}

Propose a detailed plan that includes:
1. Mathematical model type (specific to this problem)
2. Implementation strategy
3. Validation approach
4. Potential challenges
5. Data requirements"""
