"""
Local problem analysis: keyword classification plus lookup of similar
historical solutions. No LLM calls; the output seeds the planning prompts.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

KEYWORD_MAP: Dict[str, List[str]] = {
    "optimization": ["optimize", "maximize", "minimize", "best", "optimal", "efficient", "improve"],
    "differential_equations": ["change over time", "rate of", "dynamics", "growth", "decay", "population", "spread"],
    "statistical": ["predict", "forecast", "estimate", "probability", "likelihood", "trend", "correlation"],
    "network": ["network", "graph", "route", "path", "flow", "connectivity", "shortest"],
    "simulation": ["simulate", "model behavior", "scenario", "what-if", "monte carlo", "agent"],
    "machine_learning": ["learn", "pattern", "classify", "cluster", "neural", "predict from data"],
}

TECHNIQUE_MAP: Dict[str, List[str]] = {
    "optimization": ["linear programming", "genetic algorithms", "gradient descent", "dynamic programming"],
    "differential_equations": ["Runge-Kutta methods", "Euler method", "system dynamics", "bifurcation analysis"],
    "statistical": ["regression analysis", "ARIMA", "hypothesis testing", "Monte Carlo simulation"],
    "network": ["Dijkstra algorithm", "maximum flow", "graph theory", "network analysis"],
    "simulation": ["agent-based modeling", "discrete event simulation", "system dynamics", "Monte Carlo"],
    "machine_learning": ["neural networks", "random forests", "SVM", "clustering (k-means)"],
}

ARCHETYPES: Dict[str, Dict[str, str]] = {
    "optimization": {"name": "Constrained Optimization", "description": "Objective plus constraints, solved with LP/MIP or metaheuristics"},
    "differential_equations": {"name": "Dynamical System", "description": "ODE/PDE model of state evolution, integrated numerically"},
    "statistical": {"name": "Statistical Forecasting", "description": "Regression or time-series model with uncertainty bounds"},
    "network": {"name": "Network Flow", "description": "Weighted graph with shortest-path or flow formulation"},
    "simulation": {"name": "Agent-Based Simulation", "description": "Stochastic simulation of interacting agents over scenarios"},
    "machine_learning": {"name": "Data-Driven Model", "description": "Supervised or unsupervised learning on available data"},
}

DOMAIN_KEYWORDS = [
    "climate", "energy", "health", "economics", "traffic", "population",
    "environment", "sustainability", "finance", "ecology", "urban", "agriculture",
]

HISTORICAL_SOLUTIONS: List[Dict[str, Any]] = [
    {
        "id": "mcm2023-a-outstanding", "year": 2023, "problem": "A", "award": "Outstanding Winner",
        "title": "Wordle Strategies",
        "summary": "Information theory approach using entropy maximization to find optimal Wordle starting words",
        "keywords": ["optimization", "information theory", "game strategy", "entropy"],
        "model_types": ["optimization", "probabilistic"],
        "techniques": ["entropy maximization", "information gain", "decision trees"],
    },
    {
        "id": "mcm2023-b-finalist", "year": 2023, "problem": "B", "award": "Finalist",
        "title": "Drought-Stricken Plant Communities",
        "summary": "Differential equation model for plant population dynamics under water stress",
        "keywords": ["differential equations", "ecology", "sustainability", "dynamics"],
        "model_types": ["differential_equations", "simulation"],
        "techniques": ["Lotka-Volterra", "bifurcation analysis", "sensitivity analysis"],
    },
    {
        "id": "mcm2022-c-meritorious", "year": 2022, "problem": "C", "award": "Meritorious Winner",
        "title": "Trading Strategies in Cryptocurrency",
        "summary": "ARIMA + machine learning for price prediction and portfolio optimization",
        "keywords": ["time series", "prediction", "finance", "machine learning"],
        "model_types": ["statistical", "machine_learning"],
        "techniques": ["ARIMA", "LSTM", "Markowitz portfolio theory", "backtesting"],
    },
    {
        "id": "mcm2021-d-outstanding", "year": 2021, "problem": "D", "award": "Outstanding Winner",
        "title": "Optimal Music Festival Venue Layout",
        "summary": "Graph theory + agent-based simulation for crowd flow optimization",
        "keywords": ["graph theory", "optimization", "simulation", "logistics"],
        "model_types": ["network", "simulation"],
        "techniques": ["Dijkstra algorithm", "agent-based modeling", "queueing theory"],
    },
    {
        "id": "mcm2020-e-finalist", "year": 2020, "problem": "E", "award": "Finalist",
        "title": "Optimal Fishing Strategies for Sustainability",
        "summary": "System dynamics model balancing economic and ecological factors",
        "keywords": ["system dynamics", "sustainability", "multi-objective", "ecology"],
        "model_types": ["differential_equations", "optimization"],
        "techniques": ["system dynamics", "Pareto optimization", "Monte Carlo simulation"],
    },
]


@dataclass
class ProblemAnalysis:
    keywords: List[str] = field(default_factory=list)
    model_types: List[str] = field(default_factory=list)
    techniques: List[str] = field(default_factory=list)
    archetypes: List[Dict[str, str]] = field(default_factory=list)
    historical_solutions: List[Dict[str, Any]] = field(default_factory=list)
    deliverables: List[str] = field(default_factory=list)
    data_needs: List[str] = field(default_factory=list)
    complexity: str = "medium"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SolutionDatabase:
    """Read-only lookup over historical solved problems."""

    def __init__(self, solutions: Optional[List[Dict[str, Any]]] = None):
        self.solutions = list(solutions if solutions is not None else HISTORICAL_SOLUTIONS)

    def smart_search(self, keywords: List[str], model_type: Optional[str] = None, limit: int = 5) -> List[Dict[str, Any]]:
        results = self.solutions
        if model_type:
            results = [s for s in results if model_type in s["model_types"]]

        scored = []
        for sol in results:
            score = 0.0
            for term in (k.lower() for k in keywords):
                if any(term in k.lower() for k in sol["keywords"]):
                    score += 2
                if term in sol["title"].lower():
                    score += 1
                if term in sol["summary"].lower():
                    score += 0.5
            scored.append({**sol, "relevance_score": score})

        if keywords:
            scored = [s for s in scored if s["relevance_score"] > 0] or scored
        scored.sort(key=lambda s: s["relevance_score"], reverse=True)
        return scored[:limit]


class ProblemAnalyzer:
    def __init__(self, database: Optional[SolutionDatabase] = None):
        self.database = database or SolutionDatabase()

    def analyze(self, problem_text: str) -> ProblemAnalysis:
        text = problem_text.lower()
        model_types = self._model_types(text)
        keywords = [k for k in DOMAIN_KEYWORDS if k in text]
        keywords += [category for category in model_types if category not in keywords]

        analysis = ProblemAnalysis(
            keywords=keywords,
            model_types=model_types,
            techniques=self._techniques(text, model_types),
            archetypes=[{"type": t, **ARCHETYPES[t]} for t in model_types if t in ARCHETYPES],
            historical_solutions=self.database.smart_search(keywords, model_types[0] if model_types else None),
            deliverables=self._deliverables(text),
            data_needs=self._data_needs(text),
            complexity=self._complexity(text, model_types),
        )
        logger.info(
            f"Problem analysis: types={analysis.model_types or 'none'}, "
            f"complexity={analysis.complexity}, {len(analysis.historical_solutions)} similar solutions"
        )
        return analysis

    @staticmethod
    def _model_types(text: str) -> List[str]:
        scores = {}
        for model_type, words in KEYWORD_MAP.items():
            score = sum(1 for word in words if word in text)
            if score:
                scores[model_type] = score
        return [t for t, _ in sorted(scores.items(), key=lambda item: item[1], reverse=True)][:3]

    @staticmethod
    def _techniques(text: str, model_types: List[str]) -> List[str]:
        techniques: List[str] = []
        for model_type in model_types:
            techniques.extend(TECHNIQUE_MAP.get(model_type, []))
        if "time series" in text or "forecast" in text:
            techniques += ["ARIMA", "exponential smoothing"]
        if "spatial" in text or "geographic" in text:
            techniques += ["spatial analysis", "GIS methods"]
        if "uncertainty" in text or "risk" in text:
            techniques += ["sensitivity analysis", "uncertainty quantification"]
        return list(dict.fromkeys(techniques))[:5]

    @staticmethod
    def _deliverables(text: str) -> List[str]:
        rules = [
            (("model", "formulation"), "Mathematical model with clear assumptions"),
            (("predict", "forecast"), "Prediction results with confidence intervals"),
            (("sensitivity", "robust"), "Sensitivity analysis (±20% parameter variation)"),
            (("visualiz", "plot", "graph"), "Visualizations (time series, heatmaps, etc.)"),
            (("recommend", "suggest", "policy"), "Recommendations and policy implications"),
        ]
        found = [label for words, label in rules if any(w in text for w in words)]
        return found or ["Mathematical model", "Validation and testing", "Results and visualizations", "Summary sheet (1 page)"]

    @staticmethod
    def _data_needs(text: str) -> List[str]:
        rules = [
            (("climate", "weather"), "Climate data (NOAA, NASA)"),
            (("population", "demographic"), "Population data (Census, World Bank)"),
            (("economic", "finance", "market"), "Economic data (Federal Reserve, World Bank)"),
            (("health", "disease", "epidemic"), "Health data (WHO, CDC)"),
            (("traffic", "transport"), "Transportation data (DOT, local transit authorities)"),
            (("energy",), "Energy data (EIA, IEA)"),
        ]
        found = [label for words, label in rules if any(w in text for w in words)]
        return found or ["Domain-specific datasets", "Historical data for validation"]

    @staticmethod
    def _complexity(text: str, model_types: List[str]) -> str:
        if any(w in text for w in ("simple", "basic", "introductory")):
            return "low"
        if len(model_types) > 2:
            return "high"
        if any(w in text for w in ("multi-objective", "trade-off", "stochastic", "uncertainty", "random", "nonlinear", "chaotic")):
            return "high"
        return "medium"


def summarize(analysis: ProblemAnalysis) -> str:
    """Render an analysis as the markdown block embedded in planning prompts."""

    def bullets(items: List[str], default: str, prefix: str = "- ") -> str:
        return "\n".join(f"{prefix}{item}" for item in items) if items else default

    archetypes = [f"**{a['name']}**: {a['description']}" for a in analysis.archetypes]
    solutions = [
        f"**{s['title']}** ({s['year']}, {s['award']}): {s['summary']}"
        for s in analysis.historical_solutions
    ]
    return f"""# Problem Analysis Summary

## Identified Characteristics
- **Model Types**: {', '.join(analysis.model_types) or 'Not identified'}
- **Complexity**: {analysis.complexity}
- **Keywords**: {', '.join(analysis.keywords) or 'None'}

## Suggested Approaches
{bullets(archetypes, '- No specific archetypes identified')}

## Recommended Techniques
{bullets(analysis.techniques, '- Basic modeling techniques')}

## Deliverables
{bullets(analysis.deliverables, '- [ ] Mathematical model', prefix='- [ ] ')}

## Data Requirements
{bullets(analysis.data_needs, '- Domain-specific datasets')}

## Similar Historical Solutions
{bullets(solutions, '- No similar solutions found in database')}"""
