"""Build the per-segment dispatch model using linopy."""

import linopy
import numpy as np
import pandas as pd
import xarray as xr

from dersim_engine.core.errors import ConfigurationError
from dersim_engine.core.schemas import ProblemMode, RunConfig, SiteConfig, TariffConfig
from dersim_engine.model.sets import HorizonWindow

TIME = "time"
PERIOD = "period"
TIER = "tier"


def time_array(values, window: HorizonWindow) -> xr.DataArray:
    """Wrap a per-interval array so it aligns with the model's time coordinate."""
    return xr.DataArray(
        np.asarray(values, dtype=float),
        coords=[pd.RangeIndex(window.num_time_steps, name=TIME)],
    )


def exports_enabled(window: HorizonWindow, tariff: TariffConfig, site: SiteConfig) -> bool:
    """Net metering with on-site PV allows exports up to simultaneous PV output."""
    return tariff.nem_enabled and site.solar.enabled and window.nem_prices is not None


def build_model(
    window: HorizonWindow, run: RunConfig, tariff: TariffConfig, site: SiteConfig
) -> linopy.Model:
    """Build the cost-minimizing dispatch model for one horizon segment.

    Args:
        window: Segment parameters
        run: Run configuration
        tariff: Tariff configuration
        site: Site configuration

    Returns:
        linopy.Model instance ready for solving
    """
    sizing = run.problem_mode is ProblemMode.CAPACITY_EXPANSION
    storage = site.storage
    unsized = storage.energy_capacity is None and storage.duration is None
    if storage.enabled and not sizing and unsized:
        raise ConfigurationError("Dispatch-only storage needs an energy_capacity or a duration")

    model = linopy.Model()
    time = pd.RangeIndex(window.num_time_steps, name=TIME)

    # Net demand is free; its sign is restricted by the non-export constraint
    model.add_variables(lower=-np.inf, coords=[time], name="net_demand")

    if exports_enabled(window, tariff, site):
        model.add_variables(lower=0, coords=[time], name="grid_import")
        model.add_variables(lower=0, coords=[time], name="grid_export")

    if site.solar.enabled:
        model.add_variables(lower=0, coords=[time], name="pv_generation")
        if sizing:
            model.add_variables(
                lower=0,
                upper=site.solar.maximum_power_capacity
                if site.solar.maximum_power_capacity is not None
                else np.inf,
                name="pv_capacity",
            )

    if storage.enabled:
        model.add_variables(lower=0, coords=[time], name="bes_charge")
        model.add_variables(lower=0, coords=[time], name="bes_discharge")
        model.add_variables(lower=0, coords=[time], name="bes_soc")
        if sizing:
            model.add_variables(
                lower=0,
                upper=storage.maximum_power_capacity
                if storage.maximum_power_capacity is not None
                else np.inf,
                name="bes_power_capacity",
            )
            # Without a duration, energy capacity is sized independently of power
            if storage.duration is None:
                model.add_variables(
                    lower=0,
                    upper=storage.maximum_energy_capacity
                    if storage.maximum_energy_capacity is not None
                    else np.inf,
                    name="bes_energy_capacity",
                )

    if site.demand.shift_enabled:
        model.add_variables(
            lower=0, upper=time_array(window.shift_up_capacity, window), name="shift_up"
        )
        model.add_variables(
            lower=0, upper=time_array(window.shift_down_capacity, window), name="shift_down"
        )

    if window.num_demand_charge_periods > 0:
        periods = pd.RangeIndex(window.num_demand_charge_periods, name=PERIOD)
        model.add_variables(lower=0, coords=[periods], name="peak_demand")

    if window.num_tiers > 0:
        tiers = pd.Index([block.tier_id for block in window.tiered_energy_rates], name=TIER)
        model.add_variables(lower=0, coords=[tiers], name="tier_energy")

    from dersim_engine.model.constraints import (
        add_demand_charge_constraints,
        add_net_demand_balance,
        add_nonexport_constraints,
        add_shiftable_demand_constraints,
        add_solar_constraints,
        add_storage_constraints,
        add_tiered_energy_constraints,
    )

    add_net_demand_balance(model, window)
    add_nonexport_constraints(model, window, tariff, site)
    if site.solar.enabled:
        add_solar_constraints(model, window, site, sizing)
    if site.storage.enabled:
        add_storage_constraints(model, window, site, sizing)
    if site.demand.shift_enabled:
        add_shiftable_demand_constraints(model, window, site.demand.shift_duration)
    if window.num_demand_charge_periods > 0:
        add_demand_charge_constraints(model, window)
    if window.num_tiers > 0:
        add_tiered_energy_constraints(model, window)

    from dersim_engine.model.objective import add_objective

    add_objective(model, window, run, site)

    return model
