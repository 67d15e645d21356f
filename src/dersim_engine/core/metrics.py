"""Metrics comparing a simulated year against the no-DER baseline."""

import pandas as pd

from dersim_engine.core.billing import TOTAL_ROW
from dersim_engine.core.constants import (
    BILL_DEMAND_CHARGE,
    BILL_ENERGY_CHARGE,
    BILL_TOTAL_CHARGE,
    COL_BES_CHARGE_KW,
    COL_BES_DISCHARGE_KW,
    COL_GRID_EXPORT_KW,
    COL_GRID_IMPORT_KW,
    COL_NET_DEMAND_KW,
    COL_PV_GENERATION_KW,
)
from dersim_engine.core.schemas import RunConfig


def compute_metrics(
    optimal: pd.DataFrame,
    baseline: pd.DataFrame,
    optimal_bill: pd.DataFrame,
    baseline_bill: pd.DataFrame,
    run_config: RunConfig,
    energy_capacity_kwh: float,
) -> dict:
    """Compute metrics comparing optimal vs baseline operation.

    Args:
        optimal: Simulated time series
        baseline: Baseline time series
        optimal_bill: Bill of the simulated time series
        baseline_bill: Bill of the baseline time series
        run_config: Run configuration
        energy_capacity_kwh: Battery energy capacity (0 without storage)

    Returns:
        Dictionary of metrics
    """
    dt = run_config.interval_hours

    optimal_cost = float(optimal_bill.loc[TOTAL_ROW, BILL_TOTAL_CHARGE])
    baseline_cost = float(baseline_bill.loc[TOTAL_ROW, BILL_TOTAL_CHARGE])
    savings = baseline_cost - optimal_cost
    savings_pct = (savings / baseline_cost * 100) if baseline_cost != 0 else 0.0

    optimal_peak_kw = float(optimal[COL_NET_DEMAND_KW].max())
    baseline_peak_kw = float(baseline[COL_NET_DEMAND_KW].max())

    battery_throughput_kwh = float(
        ((optimal[COL_BES_CHARGE_KW] + optimal[COL_BES_DISCHARGE_KW]) * dt).sum()
    )
    # Approximate cycles (throughput / (2 * capacity))
    battery_cycles = (
        battery_throughput_kwh / (2 * energy_capacity_kwh) if energy_capacity_kwh > 0 else 0.0
    )

    return {
        "optimal_cost": optimal_cost,
        "baseline_cost": baseline_cost,
        "savings": savings,
        "savings_pct": savings_pct,
        "optimal_energy_charge": float(optimal_bill.loc[TOTAL_ROW, BILL_ENERGY_CHARGE]),
        "optimal_demand_charge": float(optimal_bill.loc[TOTAL_ROW, BILL_DEMAND_CHARGE]),
        "optimal_peak_kw": optimal_peak_kw,
        "baseline_peak_kw": baseline_peak_kw,
        "peak_reduction_kw": baseline_peak_kw - optimal_peak_kw,
        "battery_throughput_kwh": battery_throughput_kwh,
        "battery_cycles": battery_cycles,
        "pv_generation_kwh": float((optimal[COL_PV_GENERATION_KW] * dt).sum()),
        "total_import_kwh": float((optimal[COL_GRID_IMPORT_KW] * dt).sum()),
        "total_export_kwh": float((optimal[COL_GRID_EXPORT_KW] * dt).sum()),
    }
