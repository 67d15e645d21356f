"""Baseline (no-DER) time series for comparison.

Without PV, storage or demand shifting, the site simply draws its base demand
from the grid in every interval.
"""

import pandas as pd

from dersim_engine.core.constants import (
    COL_BES_CHARGE_KW,
    COL_BES_DISCHARGE_KW,
    COL_BES_SOC_KWH,
    COL_DEMAND_KW,
    COL_GRID_EXPORT_KW,
    COL_GRID_IMPORT_KW,
    COL_NET_DEMAND_KW,
    COL_PV_GENERATION_KW,
    COL_SHIFT_DOWN_KW,
    COL_SHIFT_UP_KW,
)


def compute_baseline_time_series(profiles: pd.DataFrame) -> pd.DataFrame:
    """Compute the counterfactual time series with every DER idle.

    Args:
        profiles: Year-long input profiles with demand_kw

    Returns:
        DataFrame with the same columns as simulated results
    """
    demand = profiles[COL_DEMAND_KW]
    result = pd.DataFrame(index=profiles.index)

    result[COL_DEMAND_KW] = demand
    result[COL_NET_DEMAND_KW] = demand
    result[COL_GRID_IMPORT_KW] = demand
    for col in [
        COL_GRID_EXPORT_KW,
        COL_PV_GENERATION_KW,
        COL_BES_CHARGE_KW,
        COL_BES_DISCHARGE_KW,
        COL_BES_SOC_KWH,
        COL_SHIFT_UP_KW,
        COL_SHIFT_DOWN_KW,
    ]:
        result[col] = 0.0

    return result
