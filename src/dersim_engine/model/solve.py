"""Model solving and result extraction."""

import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

import linopy
import numpy as np

from dersim_engine.core.constants import (
    COL_BES_CHARGE_KW,
    COL_BES_DISCHARGE_KW,
    COL_BES_SOC_KWH,
    COL_GRID_EXPORT_KW,
    COL_GRID_IMPORT_KW,
    COL_NET_DEMAND_KW,
    COL_PV_GENERATION_KW,
    COL_SHIFT_DOWN_KW,
    COL_SHIFT_UP_KW,
    LOG_FILE_SOLVERS,
)
from dersim_engine.core.errors import (
    ConfigurationError,
    InfeasibleOrUnsolvedError,
    TimeLimitNoSolutionError,
)
from dersim_engine.core.schemas import RunConfig, SolveStats
from dersim_engine.model.sets import HorizonWindow
from dersim_engine.tariff.profiles import DemandChargeKey

logger = logging.getLogger(__name__)

# Solver option names understood by each backend
TIME_LIMIT_OPTIONS = {
    "highs": "time_limit",
    "gurobi": "TimeLimit",
    "cplex": "timelimit",
    "glpk": "tmlim",
    "cbc": "sec",
}
GAP_OPTIONS = {
    "highs": "mip_rel_gap",
    "gurobi": "MIPGap",
    "cplex": "mip.tolerances.mipgap",
}

# Time-indexed model variables and the result columns they fill
TIME_VARIABLES = {
    "net_demand": COL_NET_DEMAND_KW,
    "pv_generation": COL_PV_GENERATION_KW,
    "bes_charge": COL_BES_CHARGE_KW,
    "bes_discharge": COL_BES_DISCHARGE_KW,
    "bes_soc": COL_BES_SOC_KWH,
    "shift_up": COL_SHIFT_UP_KW,
    "shift_down": COL_SHIFT_DOWN_KW,
}


class SolveStatus(str, Enum):
    """Solver outcome as seen by the simulator."""

    OPTIMAL = "OPTIMAL"
    TIME_LIMIT = "TIME_LIMIT"
    OTHER = "OTHER"


@dataclass(frozen=True)
class SegmentSolution:
    """Solved values of one segment.

    Attributes:
        columns: Result column name to per-interval values
        peak_demands: Demand-charge key to solved peak (kW)
        tier_energy: Tier block id to solved energy (kWh)
        capacities: Sized capacities in capacity expansion (kW)
        objective_value: Objective value of the segment
    """

    columns: Mapping[str, np.ndarray]
    peak_demands: Mapping[DemandChargeKey, float] = field(default_factory=dict)
    tier_energy: Mapping[int, float] = field(default_factory=dict)
    capacities: Mapping[str, float] = field(default_factory=dict)
    objective_value: float = 0.0


def classify_status(model: linopy.Model) -> SolveStatus:
    """Map linopy's termination condition onto the simulator's status set."""
    condition = str(getattr(model, "termination_condition", "")).lower()
    if condition == "optimal":
        return SolveStatus.OPTIMAL
    if condition == "time_limit":
        return SolveStatus.TIME_LIMIT
    return SolveStatus.OTHER


def has_candidate_solution(model: linopy.Model) -> bool:
    """Whether the solver returned at least one primal solution."""
    try:
        objective = model.objective.value
        values = model.solution["net_demand"].values
    except (AttributeError, KeyError, ValueError):
        return False
    if objective is None or not math.isfinite(objective):
        return False
    return bool(np.isfinite(values).all())


def solver_options(run_config: RunConfig) -> dict:
    """Backend-specific solver options for the configured limits."""
    options = {}
    name = run_config.solver_name.lower()
    if name in TIME_LIMIT_OPTIONS:
        options[TIME_LIMIT_OPTIONS[name]] = run_config.solver_time_limit_seconds
    if name in GAP_OPTIONS:
        options[GAP_OPTIONS[name]] = run_config.solver_gap_tolerance
    return options


def solve_model(
    model: linopy.Model,
    run_config: RunConfig,
    window: HorizonWindow,
    log_path: Optional[Path] = None,
) -> tuple[SegmentSolution, SolveStats]:
    """Solve a segment model and extract its solution.

    Args:
        model: Built linopy Model
        run_config: Run configuration with solver settings
        window: Segment parameters the model was built from
        log_path: Optional solver log file

    Returns:
        Tuple of (segment_solution, solve_stats)

    Raises:
        ConfigurationError: If a log file is requested from a solver that cannot write one
        TimeLimitNoSolutionError: If the time limit was hit before any solution was found
        InfeasibleOrUnsolvedError: For any other non-optimal outcome
    """
    solver_name = run_config.solver_name.lower()
    kwargs = solver_options(run_config)
    if log_path is not None:
        if solver_name not in LOG_FILE_SOLVERS:
            raise ConfigurationError(f"Solver '{solver_name}' does not support solver log files")
        log_path.parent.mkdir(parents=True, exist_ok=True)
        kwargs["log_fn"] = str(log_path)

    start_time = time.time()
    try:
        model.solve(solver_name=solver_name, **kwargs)
    except Exception as e:
        raise InfeasibleOrUnsolvedError(
            f"Solver failed on {window.start_date}..{window.end_date}: {e}"
        ) from e
    solve_time = time.time() - start_time

    status = classify_status(model)
    if status is SolveStatus.TIME_LIMIT:
        if not has_candidate_solution(model):
            raise TimeLimitNoSolutionError(
                f"No feasible solution found within {run_config.solver_time_limit_seconds}s "
                f"for {window.start_date}..{window.end_date}"
            )
        logger.warning(
            "Time limit reached for %s..%s; using best solution found",
            window.start_date,
            window.end_date,
        )
    elif status is not SolveStatus.OPTIMAL:
        raise InfeasibleOrUnsolvedError(
            f"Failed to solve {window.start_date}..{window.end_date}: "
            f"status={model.status}, termination={model.termination_condition}"
        )

    solution = extract_solution(model, window)

    stats = SolveStats(
        segment_start=window.start_date,
        segment_end=window.end_date,
        num_time_steps=window.num_time_steps,
        objective_value=solution.objective_value,
        solve_time_seconds=solve_time,
        solver_status=str(model.status),
        solver_termination_condition=str(model.termination_condition),
    )
    logger.debug(
        "Solved %s..%s in %.2fs (objective %.4f)",
        window.start_date,
        window.end_date,
        solve_time,
        solution.objective_value,
    )

    return solution, stats


def extract_solution(model: linopy.Model, window: HorizonWindow) -> SegmentSolution:
    """Read solved values by variable name; absent resources are reported as zero."""
    n = window.num_time_steps
    solved = model.solution

    columns = {}
    for name, column in TIME_VARIABLES.items():
        if name in solved:
            columns[column] = np.asarray(solved[name].values, dtype=float)
        else:
            columns[column] = np.zeros(n)

    if "grid_import" in solved:
        columns[COL_GRID_IMPORT_KW] = np.asarray(solved["grid_import"].values, dtype=float)
        columns[COL_GRID_EXPORT_KW] = np.asarray(solved["grid_export"].values, dtype=float)
    else:
        columns[COL_GRID_IMPORT_KW] = np.clip(columns[COL_NET_DEMAND_KW], 0.0, None)
        columns[COL_GRID_EXPORT_KW] = np.zeros(n)

    peak_demands = {}
    if "peak_demand" in solved:
        peaks = solved["peak_demand"].values
        peak_demands = {key: float(peaks[i]) for key, i in window.demand_charge_ids.items()}

    tier_energy = {}
    if "tier_energy" in solved:
        values = solved["tier_energy"]
        tier_energy = {
            int(tier): float(energy)
            for tier, energy in zip(values.coords["tier"].values, values.values)
        }

    capacities = {}
    for name in ("pv_capacity", "bes_power_capacity", "bes_energy_capacity"):
        if name in solved:
            capacities[name] = float(solved[name].values)

    return SegmentSolution(
        columns=columns,
        peak_demands=peak_demands,
        tier_energy=tier_energy,
        capacities=capacities,
        objective_value=float(model.objective.value),
    )
