"""Align input profiles with the simulated year and interval length."""

import numpy as np
import pandas as pd

from dersim_engine.core.constants import (
    COL_DEMAND_KW,
    COL_SHIFT_DOWN_CAPACITY_KW,
    COL_SHIFT_UP_CAPACITY_KW,
    COL_SOLAR_CAPACITY_FACTOR,
)
from dersim_engine.core.dates import days_in_year, year_timestamps
from dersim_engine.core.schemas import RunConfig, SiteConfig
from dersim_engine.core.validate import ValidationError


def adjust_resolution(values: np.ndarray, target_length: int) -> np.ndarray:
    """Resample a profile to a new number of intervals over the same year.

    Finer profiles are averaged down. Coarser profiles are linearly interpolated
    up, with the final interval interpolating towards the first value.

    Args:
        values: Profile values
        target_length: Required number of intervals

    Returns:
        Profile with exactly `target_length` values

    Raises:
        ValidationError: If the lengths are not related by an integer factor
    """
    values = np.asarray(values, dtype=float)
    n = len(values)
    if n == target_length:
        return values

    if n > target_length:
        if n % target_length != 0:
            raise ValidationError(f"Cannot average {n} values down to {target_length}")
        return values.reshape(target_length, n // target_length).mean(axis=1)

    if target_length % n != 0:
        raise ValidationError(f"Cannot interpolate {n} values up to {target_length}")
    factor = target_length // n
    following = np.roll(values, -1)
    weights = np.arange(factor) / factor
    return (values[:, None] + (following - values)[:, None] * weights[None, :]).ravel()


def align_profile(values, year: int, interval_minutes: int) -> np.ndarray:
    """Resample a year-long profile of any supported resolution to the run interval."""
    target_length = days_in_year(year) * 24 * 60 // interval_minutes
    return adjust_resolution(values, target_length)


def prepare_profiles(timeseries: pd.DataFrame, site: SiteConfig, run: RunConfig) -> pd.DataFrame:
    """Build the year-long input profiles the simulator slices from.

    Shift capacity falls back to `shift_percent` of base demand when no explicit
    capacity columns are provided.

    Args:
        timeseries: Raw input timeseries (any supported resolution)
        site: Site configuration
        run: Run configuration

    Returns:
        DataFrame indexed by the run's interval timestamps
    """
    index = year_timestamps(run.year, run.interval_minutes)
    profiles = pd.DataFrame(index=index)
    profiles[COL_DEMAND_KW] = align_profile(
        timeseries[COL_DEMAND_KW].to_numpy(), run.year, run.interval_minutes
    )

    if site.solar.enabled:
        if COL_SOLAR_CAPACITY_FACTOR not in timeseries.columns:
            raise ValidationError(f"Solar is enabled but '{COL_SOLAR_CAPACITY_FACTOR}' is missing")
        profiles[COL_SOLAR_CAPACITY_FACTOR] = align_profile(
            timeseries[COL_SOLAR_CAPACITY_FACTOR].to_numpy(), run.year, run.interval_minutes
        )

    if site.demand.shift_enabled:
        for column in (COL_SHIFT_UP_CAPACITY_KW, COL_SHIFT_DOWN_CAPACITY_KW):
            if column in timeseries.columns:
                profiles[column] = align_profile(
                    timeseries[column].to_numpy(), run.year, run.interval_minutes
                )
            else:
                profiles[column] = site.demand.shift_percent * profiles[COL_DEMAND_KW]

    return profiles
