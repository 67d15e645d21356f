"""Shared fixtures for building tariffs, profiles and configurations."""

import numpy as np
import pandas as pd
import pytest

from dersim_engine.core.constants import COL_DEMAND_KW, COL_SOLAR_CAPACITY_FACTOR
from dersim_engine.core.dates import year_timestamps
from dersim_engine.core.schemas import OptimizationHorizon, RunConfig, TariffConfig

ALL_MONTHS = list(range(1, 13))


@pytest.fixture
def make_tariff():
    """Factory for tariffs; defaults to a flat single-season energy rate."""

    def _make(rate: float = 0.10, **overrides) -> TariffConfig:
        config = {
            "tariff_name": "test",
            "months_by_season": {"all": ALL_MONTHS},
            "energy_tou_rates": {"all": [{"start": 0, "end": 24, "rate": rate, "label": "flat"}]},
        }
        config.update(overrides)
        return TariffConfig(**config)

    return _make


@pytest.fixture
def tou_rates():
    """Summer/winter energy rates with a 4-9pm peak."""
    return {
        "summer": [
            {"start": 0, "end": 16, "rate": 0.25, "label": "off-peak"},
            {"start": 16, "end": 21, "rate": 0.45, "label": "peak"},
            {"start": 21, "end": 24, "rate": 0.25, "label": "off-peak"},
        ],
        "winter": [
            {"start": 0, "end": 16, "rate": 0.20, "label": "off-peak"},
            {"start": 16, "end": 21, "rate": 0.30, "label": "peak"},
            {"start": 21, "end": 24, "rate": 0.20, "label": "off-peak"},
        ],
    }


@pytest.fixture
def seasons():
    return {"summer": [6, 7, 8, 9], "winter": [1, 2, 3, 4, 5, 10, 11, 12]}


@pytest.fixture
def make_run():
    """Factory for run configurations."""

    def _make(year: int = 2023, horizon=OptimizationHorizon.DAY, **overrides) -> RunConfig:
        return RunConfig(
            run_id="test_run", year=year, optimization_horizon=horizon, **overrides
        )

    return _make


@pytest.fixture
def make_profiles():
    """Factory for year-long input profiles at the run interval.

    Pass `solar_capacity_factor="clear_sky"` for a simple daylight shape.
    """

    def _make(
        year: int = 2023,
        interval_minutes: int = 60,
        demand=None,
        solar_capacity_factor=None,
    ) -> pd.DataFrame:
        index = year_timestamps(year, interval_minutes)
        hour = np.asarray(index.hour, dtype=float)
        if demand is None:
            demand = 10.0 + 5.0 * np.sin((hour - 6) * np.pi / 12) ** 2
        elif np.isscalar(demand):
            demand = np.full(len(index), float(demand))
        profiles = pd.DataFrame({COL_DEMAND_KW: demand}, index=index)

        if solar_capacity_factor is not None:
            if isinstance(solar_capacity_factor, str):
                solar_capacity_factor = np.clip(np.sin((hour - 6) * np.pi / 12), 0, None)
            profiles[COL_SOLAR_CAPACITY_FACTOR] = solar_capacity_factor
        return profiles

    return _make
