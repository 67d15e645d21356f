"""Test the per-segment dispatch model on small single-day problems."""

from datetime import date

import numpy as np
import pandas as pd
import pytest

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
    MONTHLY_MAXIMUM_LABEL,
)
from dersim_engine.core.errors import ConfigurationError
from dersim_engine.core.profiles import prepare_profiles
from dersim_engine.core.schemas import OptimizationHorizon, ProblemMode, SiteConfig
from dersim_engine.model.build import build_model
from dersim_engine.model.sets import CarryState, HorizonWindow, build_horizon_window
from dersim_engine.model.solve import solve_model
from dersim_engine.tariff.profiles import (
    DemandChargeKey,
    DemandChargeKind,
    compile_rate_profiles,
)

YEAR = 2023
DAY = date(YEAR, 7, 12)
TOL = 1e-6


@pytest.fixture
def solve_day(make_run, make_profiles):
    """Build and solve a single-day model, returning (window, solution, model)."""

    def _solve(tariff, site, demand=None, carry=None, interval=60, **run_overrides):
        run = make_run(interval_minutes=interval, **run_overrides)
        timeseries = make_profiles(YEAR, interval, demand=demand, solar_capacity_factor="clear_sky")
        profiles = prepare_profiles(timeseries, site, run)
        compiled = compile_rate_profiles(tariff, YEAR, interval)
        carry = carry or CarryState.initial(site.storage)
        window = build_horizon_window(DAY, DAY, carry, compiled, profiles, run, tariff, site)
        model = build_model(window, run, tariff, site)
        solution, _ = solve_model(model, run, window)
        return window, solution, model

    return _solve


@pytest.fixture
def storage_site():
    return SiteConfig(
        site_id="test_site",
        storage={
            "enabled": True,
            "power_capacity": 5.0,
            "energy_capacity": 10.0,
            "soc_min": 0.1,
            "soc_max": 0.9,
            "soc_initial": 0.5,
            "charge_eff": 0.95,
            "discharge_eff": 0.95,
        },
    )


def test_flat_rate_without_assets_passes_demand_through(solve_day, make_tariff):
    """With no DERs, net demand equals demand and the cost is price times energy."""
    window, solution, _ = solve_day(make_tariff(rate=0.10), SiteConfig(site_id="test_site"))

    net = solution.columns[COL_NET_DEMAND_KW]
    assert window.num_time_steps == 24
    assert np.allclose(net, window.demand, atol=TOL)
    assert solution.objective_value == pytest.approx(0.10 * window.demand.sum(), rel=1e-6)
    assert np.allclose(solution.columns[COL_GRID_IMPORT_KW], window.demand, atol=TOL)


def test_net_demand_balance_holds(solve_day, make_tariff, tou_rates, seasons, storage_site):
    """Net demand equals demand less PV plus shifts plus battery flows."""
    site = storage_site.model_copy(
        update={
            "solar": storage_site.solar.model_copy(update={"enabled": True, "power_capacity": 8.0}),
            "demand": storage_site.demand.model_copy(update={"shift_enabled": True}),
        }
    )
    tariff = make_tariff(months_by_season=seasons, energy_tou_rates=tou_rates)
    window, solution, _ = solve_day(tariff, site)

    c = solution.columns
    rebuilt = (
        window.demand
        - c[COL_PV_GENERATION_KW]
        + c[COL_SHIFT_UP_KW]
        - c[COL_SHIFT_DOWN_KW]
        + c[COL_BES_CHARGE_KW]
        - c[COL_BES_DISCHARGE_KW]
    )
    assert np.allclose(c[COL_NET_DEMAND_KW], rebuilt, atol=1e-5)


def test_no_export_without_net_metering(solve_day, make_tariff):
    """Without net metering, PV is curtailed rather than exported."""
    site = SiteConfig(site_id="test_site", solar={"enabled": True, "power_capacity": 100.0})
    window, solution, _ = solve_day(make_tariff(), site, demand=5.0)

    net = solution.columns[COL_NET_DEMAND_KW]
    assert (net >= -TOL).all(), f"Net demand exported: min {net.min():.3f} kW"
    assert np.allclose(solution.columns[COL_GRID_EXPORT_KW], 0.0)
    # Midday PV covers all demand
    assert net[12] == pytest.approx(0.0, abs=TOL)


def test_exports_bounded_by_pv_with_net_metering(solve_day, make_tariff):
    """With net metering, exports never exceed simultaneous PV output."""
    site = SiteConfig(site_id="test_site", solar={"enabled": True, "power_capacity": 100.0})
    tariff = make_tariff(nem_enabled=True, nem_version=1)
    window, solution, _ = solve_day(tariff, site, demand=5.0)

    c = solution.columns
    net, pv = c[COL_NET_DEMAND_KW], c[COL_PV_GENERATION_KW]
    assert (net >= -pv - TOL).all()
    assert (c[COL_GRID_EXPORT_KW] <= pv + TOL).all()
    assert c[COL_GRID_EXPORT_KW].max() > 50.0
    assert np.allclose(c[COL_GRID_IMPORT_KW] - c[COL_GRID_EXPORT_KW], net, atol=TOL)


def test_nonimport_storage_requires_pv(make_run, make_tariff):
    """Restricting charging to PV without a PV system is rejected."""
    site = SiteConfig(
        site_id="test_site",
        storage={"enabled": True, "power_capacity": 5.0, "energy_capacity": 10.0, "nonimport": True},
    )
    window = HorizonWindow(
        start_date=DAY,
        end_date=DAY,
        horizon=OptimizationHorizon.DAY,
        interval_minutes=60,
        timestamps=pd.date_range(DAY, periods=24, freq="h"),
        demand=np.full(24, 5.0),
        energy_prices=np.full(24, 0.1),
        bes_initial_soc=5.0,
        bes_initial_soc_fraction=0.5,
    )

    with pytest.raises(ConfigurationError):
        build_model(window, make_run(), make_tariff(), site)


def test_nonimport_storage_charges_from_pv_only(solve_day, make_tariff, tou_rates, seasons):
    """Battery charging is bounded by PV output when imports may not charge it."""
    site = SiteConfig(
        site_id="test_site",
        solar={"enabled": True, "power_capacity": 4.0},
        storage={"enabled": True, "power_capacity": 5.0, "energy_capacity": 20.0, "nonimport": True},
    )
    tariff = make_tariff(months_by_season=seasons, energy_tou_rates=tou_rates)
    _, solution, _ = solve_day(tariff, site)

    c = solution.columns
    assert (c[COL_BES_CHARGE_KW] <= c[COL_PV_GENERATION_KW] + TOL).all()
    # No sunlight before 6am
    assert np.allclose(c[COL_BES_CHARGE_KW][:6], 0.0, atol=TOL)


def test_soc_within_bounds(solve_day, make_tariff, tou_rates, seasons, storage_site):
    """SOC stays inside [soc_min, soc_max] of energy capacity."""
    tariff = make_tariff(months_by_season=seasons, energy_tou_rates=tou_rates)
    _, solution, _ = solve_day(tariff, storage_site)

    soc = solution.columns[COL_BES_SOC_KWH]
    assert (soc >= 1.0 - TOL).all(), f"SOC below minimum. Min SOC: {soc.min():.3f} kWh"
    assert (soc <= 9.0 + TOL).all(), f"SOC above maximum. Max SOC: {soc.max():.3f} kWh"


def test_soc_dynamics_and_final_soc(solve_day, make_tariff, tou_rates, seasons, storage_site):
    """SOC follows charge/discharge flows with efficiencies and ends no lower than it started."""
    tariff = make_tariff(months_by_season=seasons, energy_tou_rates=tou_rates)
    window, solution, _ = solve_day(tariff, storage_site)

    c = solution.columns
    soc = c[COL_BES_SOC_KWH]
    previous = np.concatenate([[window.bes_initial_soc], soc[:-1]])
    expected = previous + 0.95 * c[COL_BES_CHARGE_KW] - c[COL_BES_DISCHARGE_KW] / 0.95
    assert np.allclose(soc, expected, atol=1e-5)
    assert soc[-1] >= window.bes_initial_soc - TOL

    # Peak-hour arbitrage happens
    assert c[COL_BES_DISCHARGE_KW][16:21].sum() > 1.0


def test_soc_dynamics_scale_with_interval(solve_day, make_tariff, tou_rates, seasons, storage_site):
    """Power flows are converted to energy with the interval length."""
    tariff = make_tariff(months_by_season=seasons, energy_tou_rates=tou_rates)
    window, solution, _ = solve_day(tariff, storage_site, interval=15)

    c = solution.columns
    soc = c[COL_BES_SOC_KWH]
    previous = np.concatenate([[window.bes_initial_soc], soc[:-1]])
    expected = previous + 0.25 * (0.95 * c[COL_BES_CHARGE_KW] - c[COL_BES_DISCHARGE_KW] / 0.95)
    assert window.num_time_steps == 96
    assert np.allclose(soc, expected, atol=1e-5)


def test_shift_balances_over_horizon_and_rolling_windows(solve_day, make_tariff, tou_rates, seasons):
    """Shifted demand nets to zero overall and never runs a deficit over any window."""
    duration = 4
    site = SiteConfig(
        site_id="test_site",
        demand={"shift_enabled": True, "shift_duration": duration, "shift_percent": 0.3},
    )
    tariff = make_tariff(months_by_season=seasons, energy_tou_rates=tou_rates)
    window, solution, _ = solve_day(tariff, site)

    up = solution.columns[COL_SHIFT_UP_KW]
    down = solution.columns[COL_SHIFT_DOWN_KW]
    balance = up - down

    assert balance.sum() == pytest.approx(0.0, abs=1e-5)
    for end in range(duration - 1, window.num_time_steps):
        assert balance[end - duration + 1 : end + 1].sum() >= -1e-5

    # Disjoint windows tile the day, so their sums add up to the whole-day balance
    tiled = sum(balance[start : start + duration].sum() for start in range(0, 24, duration))
    assert tiled == pytest.approx(balance.sum(), abs=1e-5)

    assert (up <= window.shift_up_capacity + TOL).all()
    assert (down <= window.shift_down_capacity + TOL).all()


def test_demand_charge_respects_carried_peak(solve_day, make_tariff):
    """DAY peaks start from the peak already accrued earlier in the month."""
    key = DemandChargeKey(DemandChargeKind.MONTHLY, MONTHLY_MAXIMUM_LABEL, DAY.month)
    tariff = make_tariff(monthly_maximum_demand_rates={"all": 10.0})
    site = SiteConfig(site_id="test_site")

    _, solution, _ = solve_day(tariff, site, carry=CarryState(monthly_peaks={key: 50.0}))
    assert solution.peak_demands[key] == pytest.approx(50.0, abs=1e-5)

    _, fresh, _ = solve_day(tariff, site)
    assert fresh.peak_demands[key] == pytest.approx(15.0, abs=1e-5)


def test_storage_shaves_demand_peak(solve_day, make_tariff, storage_site):
    """A demand charge makes the battery flatten the daily peak."""
    tariff = make_tariff(
        daily_demand_tou_rates={"all": [{"start": 0, "end": 24, "rate": 50.0, "label": "all"}]}
    )
    window, solution, _ = solve_day(tariff, storage_site)

    key = DemandChargeKey(DemandChargeKind.DAILY, "all", DAY.month, DAY.day)
    peak = solution.peak_demands[key]
    assert peak < window.demand.max() - 0.5
    assert solution.columns[COL_NET_DEMAND_KW].max() <= peak + TOL


def test_capacity_expansion_sizes_assets(solve_day, make_tariff):
    """Cheap PV is built, expensive PV is not, and the sized capacity respects its cap."""
    cheap = SiteConfig(
        site_id="test_site",
        solar={"enabled": True, "capital_cost": 0.01, "maximum_power_capacity": 50.0, "lifespan": 1},
    )
    expensive = SiteConfig(
        site_id="test_site",
        solar={"enabled": True, "capital_cost": 1000.0, "lifespan": 1},
    )
    tariff = make_tariff(rate=0.10)

    _, built, _ = solve_day(tariff, cheap, problem_mode=ProblemMode.CAPACITY_EXPANSION)
    _, skipped, _ = solve_day(tariff, expensive, problem_mode=ProblemMode.CAPACITY_EXPANSION)

    assert 0.0 < built.capacities["pv_capacity"] <= 50.0 + TOL
    assert skipped.capacities["pv_capacity"] == pytest.approx(0.0, abs=TOL)
    assert (built.columns[COL_PV_GENERATION_KW] >= -TOL).all()


def test_capacity_expansion_sizes_storage_energy_without_duration(
    solve_day, make_tariff, tou_rates, seasons
):
    """Without a duration, energy capacity is its own decision and bounds the SOC."""
    site = SiteConfig(
        site_id="test_site",
        storage={
            "enabled": True,
            "maximum_power_capacity": 5.0,
            "maximum_energy_capacity": 8.0,
            "power_capital_cost": 0.01,
            "energy_capital_cost": 0.01,
            "lifespan": 1,
        },
    )
    tariff = make_tariff(months_by_season=seasons, energy_tou_rates=tou_rates)
    _, solution, model = solve_day(tariff, site, problem_mode=ProblemMode.CAPACITY_EXPANSION)

    assert "bes_energy_capacity" in model.variables
    energy = solution.capacities["bes_energy_capacity"]
    assert energy == pytest.approx(8.0, abs=1e-5)
    assert 0.0 < solution.capacities["bes_power_capacity"] <= 5.0 + TOL
    assert (solution.columns[COL_BES_SOC_KWH] <= energy + TOL).all()
    assert solution.columns[COL_BES_SOC_KWH][-1] >= 0.5 * energy - TOL


def test_dispatch_storage_requires_energy_or_duration(make_run, make_tariff):
    """Fixed storage without an energy capacity or a duration is rejected."""
    site = SiteConfig(site_id="test_site", storage={"enabled": True, "power_capacity": 5.0})
    window = HorizonWindow(
        start_date=DAY,
        end_date=DAY,
        horizon=OptimizationHorizon.DAY,
        interval_minutes=60,
        timestamps=pd.date_range(DAY, periods=24, freq="h"),
        demand=np.full(24, 5.0),
        energy_prices=np.full(24, 0.1),
    )

    with pytest.raises(ConfigurationError):
        build_model(window, make_run(), make_tariff(), site)


def test_day_window_splits_energy_into_tiers(solve_day, make_tariff):
    """A 300 kWh day fills the daily share of the monthly first tier, then the second."""
    tariff = make_tariff(
        rate=0.10,
        energy_tiered_rates={
            "all": [{"lower_bound": 0, "price": 0.0}, {"lower_bound": 310, "price": 0.05}]
        },
    )
    window, solution, _ = solve_day(tariff, SiteConfig(site_id="test_site"), demand=12.5)

    # July has 31 days, so the first tier holds 310 / 31 kWh per day
    assert window.tiered_energy_rates[0].upper_bound == pytest.approx(10.0)
    assert solution.tier_energy == pytest.approx({1: 10.0, 2: 290.0}, abs=1e-5)
    assert solution.objective_value == pytest.approx(0.10 * 300 + 0.05 * 290, rel=1e-6)
