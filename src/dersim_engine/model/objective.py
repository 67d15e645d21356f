"""Optimization objective function."""

import linopy
import pandas as pd
import xarray as xr

from dersim_engine.core.schemas import ProblemMode, RunConfig, SiteConfig
from dersim_engine.model.build import PERIOD, TIER, time_array
from dersim_engine.model.sets import HorizonWindow


def capital_recovery_factor(run: RunConfig, lifespan: int) -> float:
    """Annualisation factor for an up-front capital cost.

    Uses the real discount rate when given, else derives it from the nominal
    discount and inflation rates, else falls back to straight-line amortisation.

    Args:
        run: Run configuration holding the finance settings
        lifespan: Asset lifespan in years, used when no amortisation period is set

    Returns:
        Fraction of the capital cost charged per year
    """
    period = run.amortization_period_years or lifespan

    rate = run.real_discount_rate
    if rate is None and run.nominal_discount_rate is not None and run.inflation_rate is not None:
        rate = (run.nominal_discount_rate - run.inflation_rate) / (1 + run.inflation_rate)

    if rate is None or abs(rate) < 1e-12:
        return 1.0 / period

    growth = (1 + rate) ** period
    return rate * growth / (growth - 1)


def annualized_solar_cost_per_kw(run: RunConfig, site: SiteConfig) -> float:
    """Yearly $/kW of PV capacity: amortised capital net of ITC plus fixed O&M."""
    solar = site.solar
    crf = capital_recovery_factor(run, solar.lifespan)
    return crf * solar.capital_cost * (1 - solar.investment_tax_credit) + solar.fixed_om_cost


def annualized_storage_cost_per_kw(run: RunConfig, site: SiteConfig) -> float:
    """Yearly $/kW of storage power capacity.

    With a fixed duration the energy capacity it implies is priced in as well.
    """
    storage = site.storage
    crf = capital_recovery_factor(run, storage.lifespan)
    capital = storage.power_capital_cost + storage.energy_capital_cost * (storage.duration or 0.0)
    return crf * capital * (1 - storage.investment_tax_credit) + storage.fixed_om_cost


def annualized_storage_cost_per_kwh(run: RunConfig, site: SiteConfig) -> float:
    """Yearly $/kWh of independently sized storage energy capacity."""
    storage = site.storage
    crf = capital_recovery_factor(run, storage.lifespan)
    return crf * storage.energy_capital_cost * (1 - storage.investment_tax_credit)


def add_objective(
    model: linopy.Model, window: HorizonWindow, run: RunConfig, site: SiteConfig
) -> None:
    """Add unified cost minimization objective.

    Objective = energy_cost - nem_revenue + demand_charges + shift_cost
                + tiered_energy_cost (+ annualised investment in capacity expansion)

    Energy terms are converted from power with the interval length in hours.

    Args:
        model: linopy Model
        window: Segment parameters
        run: Run configuration
        site: Site configuration
    """
    v = model.variables
    dt = window.interval_hours

    grid_energy = v["grid_import"] if "grid_import" in v else v["net_demand"]
    objective = (grid_energy * time_array(window.energy_prices, window)).sum() * dt

    if "grid_export" in v:
        objective = objective - (v["grid_export"] * time_array(window.nem_prices, window)).sum() * dt

    if "peak_demand" in v:
        keys = window.demand_charge_keys
        prices = xr.DataArray(
            [window.demand_prices[key] for key in keys],
            coords=[pd.RangeIndex(len(keys), name=PERIOD)],
        )
        objective = objective + (v["peak_demand"] * prices).sum()

    if "shift_up" in v:
        demand = site.demand
        objective = objective + (
            v["shift_up"].sum() * demand.shift_up_cost
            + v["shift_down"].sum() * demand.shift_down_cost
        ) * dt

    if "tier_energy" in v:
        prices = xr.DataArray(
            [block.price for block in window.tiered_energy_rates],
            coords=[pd.Index([block.tier_id for block in window.tiered_energy_rates], name=TIER)],
        )
        objective = objective + (v["tier_energy"] * prices).sum()

    if run.problem_mode is ProblemMode.CAPACITY_EXPANSION:
        if "pv_capacity" in v:
            objective = objective + v["pv_capacity"] * annualized_solar_cost_per_kw(run, site)
        if "bes_power_capacity" in v:
            objective = objective + v["bes_power_capacity"] * annualized_storage_cost_per_kw(
                run, site
            )
        if "bes_energy_capacity" in v:
            objective = objective + v["bes_energy_capacity"] * annualized_storage_cost_per_kwh(
                run, site
            )

    model.add_objective(objective, sense="min")
