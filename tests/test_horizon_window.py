"""Test slicing of compiled tariffs and profiles into horizon windows."""

import dataclasses
import math
from datetime import date

import numpy as np
import pandas as pd
import pytest

from dersim_engine.core.constants import MONTHLY_MAXIMUM_LABEL
from dersim_engine.core.errors import ConfigurationError
from dersim_engine.core.profiles import prepare_profiles
from dersim_engine.core.schemas import (
    OptimizationHorizon,
    SiteConfig,
    StorageConfig,
    TieredBaselineType,
)
from dersim_engine.model.sets import (
    CarryState,
    HorizonWindow,
    build_horizon_window,
    window_months,
)
from dersim_engine.tariff.profiles import DemandChargeKey, DemandChargeKind, compile_rate_profiles

YEAR = 2023
FEB_MAX = DemandChargeKey(DemandChargeKind.MONTHLY, MONTHLY_MAXIMUM_LABEL, 2)
JAN_MAX = DemandChargeKey(DemandChargeKind.MONTHLY, MONTHLY_MAXIMUM_LABEL, 1)


@pytest.fixture
def demand_tariff(make_tariff):
    """Flat energy rate with a monthly maximum and a daily 4-9pm demand charge."""
    return make_tariff(
        monthly_maximum_demand_rates={"all": 10.0},
        daily_demand_tou_rates={
            "all": [
                {"start": 0, "end": 16, "rate": 0.0, "label": ""},
                {"start": 16, "end": 21, "rate": 2.0, "label": "peak"},
                {"start": 21, "end": 24, "rate": 0.0, "label": ""},
            ]
        },
    )


@pytest.fixture
def site_config():
    return SiteConfig(site_id="test_site")


@pytest.fixture
def window_for(make_run, make_profiles, site_config):
    """Build a window for the given tariff, horizon and dates."""

    def _build(tariff, horizon, start, end, carry=None, site=None, interval=60):
        run = make_run(horizon=horizon, interval_minutes=interval)
        site = site or site_config
        compiled = compile_rate_profiles(tariff, YEAR, interval)
        profiles = prepare_profiles(
            make_profiles(YEAR, interval, solar_capacity_factor="clear_sky"), site, run
        )
        carry = carry or CarryState.initial(site.storage)
        return build_horizon_window(start, end, carry, compiled, profiles, run, tariff, site)

    return _build


def test_day_window_spreads_monthly_charges(window_for, demand_tariff):
    """DAY windows keep the day's daily charges and 1/days of the monthly ones."""
    window = window_for(demand_tariff, OptimizationHorizon.DAY, date(YEAR, 2, 10), date(YEAR, 2, 10))

    daily = DemandChargeKey(DemandChargeKind.DAILY, "peak", 2, 10)
    assert window.num_time_steps == 24
    assert set(window.demand_prices) == {FEB_MAX, daily}
    assert window.demand_prices[FEB_MAX] == pytest.approx(10.0 / 28)
    assert window.demand_prices[daily] == pytest.approx(2.0)
    assert window.demand_charge_ids == {FEB_MAX: 0, daily: 1}
    assert window.demand_masks[daily].sum() == 5


def test_month_window_keeps_month_charges_unscaled(window_for, demand_tariff):
    """MONTH windows include the month's monthly and daily charges at full rate."""
    window = window_for(
        demand_tariff, OptimizationHorizon.MONTH, date(YEAR, 2, 1), date(YEAR, 2, 28)
    )

    assert window.num_time_steps == 28 * 24
    assert window.num_demand_charge_periods == 1 + 28
    assert window.demand_prices[FEB_MAX] == pytest.approx(10.0)
    assert all(key.month == 2 for key in window.demand_prices)
    assert window.previous_monthly_peaks is None


def test_year_window_includes_every_charge(window_for, demand_tariff):
    """YEAR windows carry every demand charge of the year."""
    window = window_for(
        demand_tariff, OptimizationHorizon.YEAR, date(YEAR, 1, 1), date(YEAR, 12, 31)
    )

    assert window.num_time_steps == 8760
    assert window.num_demand_charge_periods == 12 + 365
    assert window.demand_prices[JAN_MAX] == pytest.approx(10.0)
    assert window.demand_charge_keys[0] == JAN_MAX


def test_charge_scaling_applied(window_for, make_tariff):
    """Overall and per-type scaling multiply energy and demand prices."""
    tariff = make_tariff(
        rate=0.2,
        monthly_maximum_demand_rates={"all": 10.0},
        all_charge_scaling=2.0,
        energy_charge_scaling=0.5,
        demand_charge_scaling=1.5,
    )
    window = window_for(tariff, OptimizationHorizon.DAY, date(YEAR, 2, 10), date(YEAR, 2, 10))

    assert np.allclose(window.energy_prices, 0.2 * 2.0 * 0.5)
    assert window.demand_prices[FEB_MAX] == pytest.approx(10.0 * 2.0 * 1.5 / 28)


def test_tou_scaling_applied_to_peak_energy_and_nem_prices(
    window_for, make_tariff, tou_rates, seasons
):
    tariff = make_tariff(
        months_by_season=seasons,
        energy_tou_rates=tou_rates,
        nem_enabled=True,
        tou_energy_charge_scaling=2.0,
    )
    window = window_for(tariff, OptimizationHorizon.DAY, date(YEAR, 7, 12), date(YEAR, 7, 12))

    assert window.energy_prices[17] == pytest.approx(0.90)
    assert window.energy_prices[10] == pytest.approx(0.25)
    assert np.allclose(window.nem_prices, window.energy_prices)


def test_day_window_carries_previous_monthly_peaks(window_for, demand_tariff):
    """Monthly peaks from earlier days apply; other months and daily charges start at zero."""
    carry = CarryState(monthly_peaks={FEB_MAX: 42.0, JAN_MAX: 99.0})
    window = window_for(
        demand_tariff, OptimizationHorizon.DAY, date(YEAR, 2, 10), date(YEAR, 2, 10), carry=carry
    )

    daily = DemandChargeKey(DemandChargeKind.DAILY, "peak", 2, 10)
    assert window.previous_monthly_peaks == {FEB_MAX: 42.0, daily: 0.0}


def test_nem_window_price_by_horizon(window_for, make_tariff, tou_rates, seasons):
    """Sub-year NEM 2.0 windows credit exports at the energy price; YEAR uses the net price."""
    tariff = make_tariff(
        months_by_season=seasons,
        energy_tou_rates=tou_rates,
        nem_enabled=True,
        nem_version=2,
        nem_non_bypassable_charge=0.02,
    )

    day = window_for(tariff, OptimizationHorizon.DAY, date(YEAR, 7, 12), date(YEAR, 7, 12))
    month = window_for(tariff, OptimizationHorizon.MONTH, date(YEAR, 7, 1), date(YEAR, 7, 31))
    year = window_for(tariff, OptimizationHorizon.YEAR, date(YEAR, 1, 1), date(YEAR, 12, 31))

    assert np.allclose(day.nem_prices, day.energy_prices)
    assert np.allclose(month.nem_prices, month.energy_prices)
    assert np.allclose(year.nem_prices, year.energy_prices - 0.02)


def test_tier_blocks_scaled_to_day(window_for, make_tariff):
    """Monthly tier bounds are divided by the days in the month for DAY windows."""
    tariff = make_tariff(
        energy_tiered_rates={"all": [{"lower_bound": 0, "price": 0.0}, {"lower_bound": 280, "price": 0.05}]}
    )
    window = window_for(tariff, OptimizationHorizon.DAY, date(YEAR, 2, 10), date(YEAR, 2, 10))

    assert [block.tier_id for block in window.tiered_energy_rates] == [1, 2]
    first, second = window.tiered_energy_rates
    assert first.upper_bound == pytest.approx(10.0)
    assert second.lower_bound == pytest.approx(10.0)
    assert math.isinf(second.upper_bound)
    assert second.price == 0.05


def test_tier_blocks_scaled_to_month(window_for, make_tariff):
    """Daily tier bounds are multiplied by the days in the month for MONTH windows."""
    tariff = make_tariff(
        energy_tiered_rates={"all": [{"lower_bound": 0, "price": 0.0}, {"lower_bound": 10, "price": 0.05}]},
        tiered_baseline_type=TieredBaselineType.DAILY,
    )
    window = window_for(tariff, OptimizationHorizon.MONTH, date(YEAR, 4, 1), date(YEAR, 4, 30))

    assert window.tiered_energy_rates[0].width == pytest.approx(300.0)
    assert all(block.month == 4 for block in window.tiered_energy_rates)


def test_tiers_rejected_for_year_horizon(window_for, make_tariff):
    tariff = make_tariff(
        energy_tiered_rates={"all": [{"lower_bound": 0, "price": 0.0}, {"lower_bound": 10, "price": 0.05}]}
    )

    with pytest.raises(ConfigurationError):
        window_for(tariff, OptimizationHorizon.YEAR, date(YEAR, 1, 1), date(YEAR, 12, 31))


def test_series_lengths_match(window_for, make_tariff):
    """Every time-indexed series in a window has one value per interval."""
    tariff = make_tariff(monthly_maximum_demand_rates={"all": 10.0}, nem_enabled=True)
    site = SiteConfig(
        site_id="test_site",
        solar={"enabled": True, "power_capacity": 10.0},
        demand={"shift_enabled": True},
    )
    run_interval = 15
    window = window_for(
        tariff,
        OptimizationHorizon.DAY,
        date(YEAR, 3, 5),
        date(YEAR, 3, 5),
        site=site,
        interval=run_interval,
    )

    n = window.num_time_steps
    assert n == 96
    for series in (
        window.demand,
        window.energy_prices,
        window.nem_prices,
        window.shift_up_capacity,
        window.shift_down_capacity,
    ):
        assert len(series) == n
    for mask in window.demand_masks.values():
        assert len(mask) == n
    assert window.interval_hours == 0.25


def test_initial_soc_from_carry(window_for, demand_tariff):
    """The carried SOC fraction becomes absolute SOC in the window."""
    site = SiteConfig(
        site_id="test_site",
        storage=StorageConfig(enabled=True, power_capacity=5.0, energy_capacity=20.0),
    )
    window = window_for(
        demand_tariff,
        OptimizationHorizon.DAY,
        date(YEAR, 2, 10),
        date(YEAR, 2, 10),
        carry=CarryState(soc_fraction=0.25),
        site=site,
    )

    assert window.bes_initial_soc_fraction == 0.25
    assert window.bes_initial_soc == pytest.approx(5.0)


def test_window_rejects_mismatched_lengths():
    timestamps = pd.date_range("2023-01-01", periods=24, freq="h")

    with pytest.raises(ValueError, match="energy_prices"):
        HorizonWindow(
            start_date=date(YEAR, 1, 1),
            end_date=date(YEAR, 1, 1),
            horizon=OptimizationHorizon.DAY,
            interval_minutes=60,
            timestamps=timestamps,
            demand=np.ones(24),
            energy_prices=np.ones(23),
        )


def test_window_rejects_sparse_demand_charge_ids():
    timestamps = pd.date_range("2023-01-01", periods=24, freq="h")

    with pytest.raises(ValueError, match="dense"):
        HorizonWindow(
            start_date=date(YEAR, 1, 1),
            end_date=date(YEAR, 1, 1),
            horizon=OptimizationHorizon.DAY,
            interval_minutes=60,
            timestamps=timestamps,
            demand=np.ones(24),
            energy_prices=np.ones(24),
            demand_prices={JAN_MAX: 1.0},
            demand_masks={JAN_MAX: np.ones(24)},
            demand_charge_ids={JAN_MAX: 1},
        )


def test_carry_state_is_immutable():
    carry = CarryState(soc_fraction=0.5, monthly_peaks={JAN_MAX: 10.0})

    with pytest.raises(dataclasses.FrozenInstanceError):
        carry.soc_fraction = 0.1
    with pytest.raises(TypeError):
        carry.monthly_peaks[JAN_MAX] = 5.0


def test_window_months():
    assert window_months(date(YEAR, 2, 10), date(YEAR, 2, 10)) == [2]
    assert window_months(date(YEAR, 4, 1), date(YEAR, 4, 30)) == [4]
    assert window_months(date(YEAR, 1, 1), date(YEAR, 12, 31)) == list(range(1, 13))
