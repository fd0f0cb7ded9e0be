"""
Experiment, visualization and sensitivity harnesses for generated model code.

Model code is reduced to its definitions (imports, functions, classes and
top-level constant assignments), embedded in a harness script, and run in
the sandbox. The harness locates an entry function, rebinds detected
parameters and records how the entry's output moves.
"""

import ast
import json
import logging
from dataclasses import dataclass, field
from string import Template
from typing import Any, Dict, List, Optional

from .sandbox import PythonSandbox, SandboxResult

logger = logging.getLogger(__name__)

EXPERIMENTS = ("baseline", "parameter_sweep", "scenario_comparison", "edge_cases")

_EXCLUDED_NAMES = {"i", "j", "k", "x", "y", "z", "t", "n", "fig", "ax", "plt", "np", "pd"}
MAX_PARAMETERS = 5


def extract_definitions(code: str) -> str:
    """
    Drop top-level execution from model code.

    Returns the code unchanged when it does not parse, so the sandbox
    reports the syntax error itself.
    """
    try:
        tree = ast.parse(code)
    except SyntaxError:
        return code
    kept = [
        node for node in tree.body
        if isinstance(node, (ast.Import, ast.ImportFrom, ast.FunctionDef, ast.AsyncFunctionDef,
                             ast.ClassDef, ast.Assign, ast.AnnAssign))
    ]
    return ast.unparse(ast.Module(body=kept, type_ignores=[]))


def _numeric_constant(node: ast.AST) -> Optional[float]:
    if isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.USub):
        value = _numeric_constant(node.operand)
        return -value if value is not None else None
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return float(node.value)
    return None


def extract_parameters(code: str) -> List[Dict[str, Any]]:
    """Top-level numeric assignments that look like model parameters (at most five)."""
    try:
        tree = ast.parse(code)
    except SyntaxError:
        return []

    params: List[Dict[str, Any]] = []
    seen = set()
    for node in tree.body:
        if not isinstance(node, ast.Assign) or len(node.targets) != 1:
            continue
        target = node.targets[0]
        value = _numeric_constant(node.value)
        if not isinstance(target, ast.Name) or value is None:
            continue
        name = target.id
        if name in seen or name in _EXCLUDED_NAMES or len(name) < 2:
            continue
        seen.add(name)
        params.append({"name": name, "value": value, "unit": "dimensionless"})
    return params[:MAX_PARAMETERS]


_HARNESS = Template('''
import json
import os
import sys

MODE = "$mode"
PARAMETERS = json.loads($parameters)
ENTRY_CANDIDATES = ("run_model", "simulate", "solve", "model", "run", "main")

os.makedirs("figures", exist_ok=True)
_ns = {"__name__": "automcm_model"}
exec(compile($model_code, "model.py", "exec"), _ns)

try:
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt
except ImportError:
    plt = None


def _entry():
    for name in ENTRY_CANDIDATES:
        if callable(_ns.get(name)):
            return name, _ns[name]
    for name, fn in _ns.items():
        code = getattr(fn, "__code__", None)
        if name.startswith("_") or code is None or getattr(fn, "__module__", None) != "automcm_model":
            continue
        if code.co_argcount == len(fn.__defaults__ or ()):
            return name, fn
    return None, None


def _scalar(value):
    if isinstance(value, dict) and value:
        value = next(iter(value.values()))
    if isinstance(value, (tuple, list)) and value and not isinstance(value[0], (int, float)):
        value = value[0]
    try:
        import numpy as np
        arr = np.asarray(value, dtype=float).ravel()
        return float(arr[-1]) if arr.size else None
    except (ImportError, TypeError, ValueError):
        try:
            return float(value)
        except (TypeError, ValueError):
            return None


def _evaluate(overrides):
    saved = {name: _ns.get(name) for name in overrides}
    _ns.update(overrides)
    try:
        return _scalar(ENTRY())
    finally:
        _ns.update(saved)


def _save(fig, name):
    path = os.path.join("figures", name)
    fig.savefig(path, dpi=300, bbox_inches="tight")
    plt.close(fig)
    print(f"Saved: {path}")


ENTRY_NAME, ENTRY = _entry()
print("=" * 60)
print(f"{MODE.upper().replace('_', ' ')}")
print("=" * 60)
if ENTRY is None:
    print("No callable model entry point found (expected run_model/simulate/solve/model/main)")
    sys.exit(3)
print(f"Entry point: {ENTRY_NAME}()")
NOMINAL = {p["name"]: p["value"] for p in PARAMETERS}
base = _evaluate({})
print(f"Baseline output: {base}")

if MODE == "baseline":
    for name, value in NOMINAL.items():
        print(f"  {name} = {value}")

elif MODE in ("parameter_sweep", "sensitivity"):
    rows = []
    for name, nominal in NOMINAL.items():
        values = [nominal * (0.8 + 0.04 * step) for step in range(11)]
        outputs = [_evaluate({name: v}) for v in values]
        low, high = outputs[0], outputs[-1]
        coefficient = None
        if low is not None and high is not None and values[-1] != values[0]:
            coefficient = (high - low) / (values[-1] - values[0])
        relative = None
        if coefficient is not None and base:
            relative = (high - low) / base * 100
        rows.append((name, nominal, coefficient, relative))
        if MODE == "parameter_sweep":
            print(f"{name}: " + ", ".join(f"{v:.4g}->{o}" for v, o in zip(values, outputs)))
            if plt is not None and all(o is not None for o in outputs):
                fig, ax = plt.subplots(figsize=(8, 5))
                ax.plot(values, outputs, marker="o")
                ax.set_xlabel(name)
                ax.set_ylabel("model output")
                ax.set_title(f"Parameter sweep: {name}")
                ax.grid(True, alpha=0.3)
                _save(fig, f"sweep_{name}.png")
    if MODE == "sensitivity":
        print("Parameter | Nominal | Sensitivity coefficient | Relative change (%)")
        for name, nominal, coefficient, relative in rows:
            print(f"{name} | {nominal:.4g} | {coefficient if coefficient is None else round(coefficient, 6)} | "
                  f"{relative if relative is None else round(relative, 2)}")
        print("Range: +/-20% around nominal values")

elif MODE == "scenario_comparison":
    scenarios = {
        "low": {k: v * 0.8 for k, v in NOMINAL.items()},
        "nominal": {},
        "high": {k: v * 1.2 for k, v in NOMINAL.items()},
    }
    results = {label: _evaluate(overrides) for label, overrides in scenarios.items()}
    for label, value in results.items():
        print(f"{label}: {value}")
    if plt is not None and all(v is not None for v in results.values()):
        fig, ax = plt.subplots(figsize=(8, 5))
        ax.bar(list(results), list(results.values()), color=["#2E86AB", "#555555", "#A23B72"])
        ax.set_ylabel("model output")
        ax.set_title("Scenario comparison")
        _save(fig, "scenario_comparison.png")

elif MODE == "edge_cases":
    for name, nominal in NOMINAL.items():
        for label, value in (("zero", 0.0), ("tiny", nominal * 0.01), ("large", nominal * 10)):
            try:
                print(f"{name}={value:.4g} ({label}): {_evaluate({name: value})}")
            except Exception as exc:
                print(f"{name}={value:.4g} ({label}): raised {type(exc).__name__}: {exc}")

elif MODE == "visualizations":
    if plt is None:
        print("matplotlib not available, no figures generated")
        sys.exit(4)
    raw = ENTRY()
    try:
        import numpy as np
        series = np.asarray(raw, dtype=float)
    except (ImportError, TypeError, ValueError):
        series = None
    if series is not None and series.ndim >= 1 and series.size > 1:
        fig, ax = plt.subplots(figsize=(10, 6))
        ax.plot(series if series.ndim == 1 else series.reshape(series.shape[0], -1))
        ax.set_xlabel("step")
        ax.set_ylabel("model output")
        ax.set_title("Model output")
        ax.grid(True, alpha=0.3)
        _save(fig, "model_output.png")
    if NOMINAL:
        names, spans = [], []
        for name, nominal in NOMINAL.items():
            low, high = _evaluate({name: nominal * 0.8}), _evaluate({name: nominal * 1.2})
            if low is not None and high is not None:
                names.append(name)
                spans.append((low, high))
        if spans:
            fig, ax = plt.subplots(figsize=(8, 5))
            for row, (low, high) in enumerate(spans):
                ax.barh(row, high - low, left=low, color="#2E86AB")
            ax.set_yticks(range(len(names)))
            ax.set_yticklabels(names)
            ax.axvline(base if base is not None else 0, color="black", linewidth=1)
            ax.set_title("Tornado chart (+/-20%)")
            _save(fig, "tornado.png")
''')


def build_harness(mode: str, model_code: str, parameters: List[Dict[str, Any]]) -> str:
    return _HARNESS.substitute(
        mode=mode,
        parameters=repr(json.dumps(parameters)),
        model_code=repr(extract_definitions(model_code)),
    )


@dataclass
class ExperimentRun:
    name: str
    success: bool
    stdout: str
    stderr: str


@dataclass
class ExperimentSuite:
    success: bool
    runs: List[ExperimentRun] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def summary(self) -> str:
        ok = sum(1 for r in self.runs if r.success)
        lines = [f"Experiments: {len(self.runs)} total, {ok} successful, {len(self.runs) - ok} failed", ""]
        for run in self.runs:
            lines.append(f"=== {run.name} ({'ok' if run.success else 'failed'}) ===")
            lines.append(run.stdout.strip() or "(no output)")
            if not run.success and run.stderr.strip():
                lines.append("--- stderr ---")
                lines.append(run.stderr.strip()[-2000:])
            lines.append("")
        return "\n".join(lines)


@dataclass
class AnalysisOutcome:
    success: bool
    output: str = ""
    error: Optional[str] = None
    parameters: List[Dict[str, Any]] = field(default_factory=list)


class ModelExperiments:
    """Runs the harnesses for one piece of model code."""

    def __init__(self, sandbox: PythonSandbox):
        self.sandbox = sandbox

    async def _run(self, mode: str, code: str, parameters: List[Dict[str, Any]]) -> SandboxResult:
        logger.info(f"Running {mode} harness ({len(parameters)} parameters)")
        return await self.sandbox.execute(build_harness(mode, code, parameters))

    async def run_experiments(self, code: str) -> ExperimentSuite:
        parameters = extract_parameters(code)
        suite = ExperimentSuite(success=True)
        for name in EXPERIMENTS:
            result = await self._run(name, code, parameters)
            suite.runs.append(ExperimentRun(name, result.success, result.stdout, result.stderr))
            if not result.success and suite.error is None:
                suite.success = False
                suite.error = f"{name}: {result.stderr.strip()[-500:] or f'exit code {result.exit_code}'}"
        return suite

    async def generate_visualizations(self, code: str) -> AnalysisOutcome:
        parameters = extract_parameters(code)
        result = await self._run("visualizations", code, parameters)
        return AnalysisOutcome(
            success=result.success,
            output=result.stdout,
            error=None if result.success else result.stderr,
            parameters=parameters,
        )

    async def sensitivity_analysis(self, code: str) -> AnalysisOutcome:
        parameters = extract_parameters(code)
        if not parameters:
            return AnalysisOutcome(success=False, error="No parameters to analyze")
        result = await self._run("sensitivity", code, parameters)
        return AnalysisOutcome(
            success=result.success,
            output=result.stdout,
            error=None if result.success else result.stderr,
            parameters=parameters,
        )
