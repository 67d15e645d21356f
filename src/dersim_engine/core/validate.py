"""Input and result validation beyond Pydantic schemas."""

from typing import Mapping

import pandas as pd

from dersim_engine.core.constants import (
    COL_BES_CHARGE_KW,
    COL_BES_DISCHARGE_KW,
    COL_BES_SOC_KWH,
    COL_GRID_EXPORT_KW,
    COL_GRID_IMPORT_KW,
    COL_PV_GENERATION_KW,
    COL_SHIFT_DOWN_KW,
    COL_SHIFT_UP_KW,
    COL_SOLAR_CAPACITY_FACTOR,
    NUMERICAL_TOLERANCE,
    OPTIONAL_INPUT_COLUMNS,
    REQUIRED_INPUT_COLUMNS,
)


class ValidationError(Exception):
    """Raised when validation fails."""

    pass


def validate_timeseries(df: pd.DataFrame) -> None:
    """Validate input timeseries dataframe.

    Args:
        df: Input timeseries with datetime index

    Raises:
        ValidationError: If validation fails
    """
    # Check required columns
    missing_cols = set(REQUIRED_INPUT_COLUMNS) - set(df.columns)
    if missing_cols:
        raise ValidationError(f"Missing required columns: {missing_cols}")

    if not isinstance(df.index, pd.DatetimeIndex):
        raise ValidationError("Timeseries must have DatetimeIndex")

    if not df.index.is_monotonic_increasing:
        raise ValidationError("Timestamps must be monotonic increasing")

    if df.index.has_duplicates:
        raise ValidationError("Duplicate timestamps found")

    present = REQUIRED_INPUT_COLUMNS + [c for c in OPTIONAL_INPUT_COLUMNS if c in df.columns]

    if df[present].isna().any().any():
        nan_cols = df[present].columns[df[present].isna().any()].tolist()
        raise ValidationError(f"NaN values found in columns: {nan_cols}")

    for col in present:
        if col.endswith("_kw") and (df[col] < 0).any():
            raise ValidationError(f"Column {col} contains negative values")

    if COL_SOLAR_CAPACITY_FACTOR in df.columns:
        cf = df[COL_SOLAR_CAPACITY_FACTOR]
        if ((cf < 0) | (cf > 1)).any():
            raise ValidationError("Solar capacity factor must lie within [0, 1]")


def validate_dispatch_result(df: pd.DataFrame, site_config, energy_capacity_kwh: float) -> None:
    """Validate that a simulated time series satisfies physical limits.

    Args:
        df: Time series results
        site_config: SiteConfig instance
        energy_capacity_kwh: Battery energy capacity used in the simulation

    Raises:
        ValidationError: If constraints are violated
    """
    for col in [
        COL_GRID_IMPORT_KW,
        COL_GRID_EXPORT_KW,
        COL_PV_GENERATION_KW,
        COL_BES_CHARGE_KW,
        COL_BES_DISCHARGE_KW,
        COL_SHIFT_UP_KW,
        COL_SHIFT_DOWN_KW,
    ]:
        if (df[col] < -NUMERICAL_TOLERANCE).any():
            raise ValidationError(f"{col} has negative values")

    storage = site_config.storage
    if storage.enabled:
        # Relative tolerance keeps large batteries from tripping on solver noise
        tol = NUMERICAL_TOLERANCE * max(1.0, energy_capacity_kwh)
        min_soc = storage.soc_min * energy_capacity_kwh
        max_soc = storage.soc_max * energy_capacity_kwh

        if (df[COL_BES_SOC_KWH] < min_soc - tol).any():
            raise ValidationError(f"SOC below minimum: {min_soc} kWh")

        if (df[COL_BES_SOC_KWH] > max_soc + tol).any():
            raise ValidationError(f"SOC above maximum: {max_soc} kWh")


def validate_monthly_peak_progression(
    previous: Mapping, current: Mapping, tolerance: float = NUMERICAL_TOLERANCE
) -> None:
    """Check that carried monthly peaks never decrease within a month.

    Args:
        previous: Demand-charge key to peak (kW) carried into the segment
        current: Demand-charge key to peak (kW) carried out of the segment

    Raises:
        ValidationError: If any carried peak decreased
    """
    for key, prior in previous.items():
        if key not in current:
            continue
        if current[key] < prior - tolerance * max(1.0, abs(prior)):
            raise ValidationError(
                f"Monthly peak for {key} decreased from {prior:.6f} to {current[key]:.6f} kW"
            )
