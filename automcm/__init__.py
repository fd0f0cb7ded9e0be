"""
AutoMCM: multi-agent workflow for mathematical modeling contests.

Phases:
- Planning: local problem analysis, LLM parse, researcher clone, structured plan
- Modeling: modeler clone writes code, experiments/visualizations/sensitivity run in a sandbox
- Writing: writer clone drafts the paper, optional compile, one bounded expansion round

Everything a phase produces lands in the workspace artifact store, which
publishes events to any observer (CLI, HTTP/SSE).
"""

__version__ = "0.2.0"
