"""Annual simulation runner for a run bundle.

Compiles the tariff once, simulates the year segment by segment, then bills the
result against the no-DER baseline.
"""

import logging
from pathlib import Path

from dersim_engine.core.baseline import compute_baseline_time_series
from dersim_engine.core.billing import (
    TOTAL_ROW,
    calculate_electricity_bill,
    compute_investment_costs,
)
from dersim_engine.core.constants import BILL_TOTAL_CHARGE
from dersim_engine.core.metrics import compute_metrics
from dersim_engine.core.profiles import prepare_profiles
from dersim_engine.core.schemas import ProblemMode
from dersim_engine.core.validate import validate_dispatch_result, validate_timeseries
from dersim_engine.io.bundle import LOG_DIR, load_bundle, write_results
from dersim_engine.runners.horizon import (
    SimulationResult,
    compute_tiered_energy,
    run_simulation,
)
from dersim_engine.tariff.profiles import compile_rate_profiles

logger = logging.getLogger(__name__)


def run_annual_simulation(bundle_path: str | Path) -> tuple[SimulationResult, dict]:
    """Run a full-year simulation on a bundle and write results back into it.

    Args:
        bundle_path: Path to run bundle

    Returns:
        Tuple of (simulation_result, metrics)
    """
    bundle_path = Path(bundle_path)
    logger.info("Loading bundle from %s", bundle_path)
    site_config, run_config, tariff_config, timeseries = load_bundle(bundle_path)

    validate_timeseries(timeseries)
    profiles = prepare_profiles(timeseries, site_config, run_config)

    logger.info(
        "Site %s, run %s: %d intervals of %d minutes in %d",
        site_config.site_id,
        run_config.run_id,
        len(profiles),
        run_config.interval_minutes,
        run_config.year,
    )

    compiled = compile_rate_profiles(tariff_config, run_config.year, run_config.interval_minutes)

    log_dir = bundle_path / LOG_DIR if run_config.save_solver_log else None
    result = run_simulation(compiled, profiles, run_config, tariff_config, site_config, log_dir)

    investment_costs = compute_investment_costs(result.capacities, run_config, site_config)
    if run_config.problem_mode is ProblemMode.CAPACITY_EXPANSION:
        energy_capacity = investment_costs.get("storage_energy_capacity_kwh", 0.0)
    else:
        energy_capacity = site_config.storage.energy_capacity_kwh

    validate_dispatch_result(result.time_series, site_config, energy_capacity)

    bill = calculate_electricity_bill(
        result.time_series, compiled, run_config, tariff_config, site_config, result.tiered_energy
    )

    baseline = compute_baseline_time_series(profiles)
    baseline_tiers = compute_tiered_energy(baseline, run_config, tariff_config)
    baseline_bill = calculate_electricity_bill(
        baseline, compiled, run_config, tariff_config, site_config, baseline_tiers
    )

    metrics = compute_metrics(
        result.time_series, baseline, bill, baseline_bill, run_config, energy_capacity
    )

    logger.info(
        "Annual bill $%.2f (baseline $%.2f, savings %.1f%%)",
        bill.loc[TOTAL_ROW, BILL_TOTAL_CHARGE],
        baseline_bill.loc[TOTAL_ROW, BILL_TOTAL_CHARGE],
        metrics["savings_pct"],
    )

    write_results(
        bundle_path,
        result.time_series,
        bill,
        result.segment_stats,
        run_config,
        metrics=metrics,
        baseline_bill=baseline_bill,
        tiered_energy=result.tiered_energy,
        investment_costs=investment_costs,
    )

    return result, metrics
