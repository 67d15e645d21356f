"""Optimization model constraints.

Every helper reads the variables it needs from the model by name, so the
variables must have been created by `build_model` first.
"""

import linopy
import numpy as np
import pandas as pd
import xarray as xr

from dersim_engine.core.errors import ConfigurationError
from dersim_engine.core.schemas import SiteConfig, TariffConfig
from dersim_engine.model.build import PERIOD, TIME, TIER, exports_enabled, time_array
from dersim_engine.model.sets import HorizonWindow


def net_import(model: linopy.Model):
    """Grid import expression: the import split when exports exist, else net demand."""
    if "grid_import" in model.variables:
        return model.variables["grid_import"]
    return model.variables["net_demand"]


def add_net_demand_balance(model: linopy.Model, window: HorizonWindow) -> None:
    """Define net demand from base demand and every dispatched resource.

    net_demand = demand - pv + shift_up - shift_down + charge - discharge

    Args:
        model: linopy Model
        window: Segment parameters
    """
    v = model.variables
    lhs = 1 * v["net_demand"]
    if "pv_generation" in v:
        lhs = lhs + v["pv_generation"]
    if "shift_up" in v:
        lhs = lhs - v["shift_up"] + v["shift_down"]
    if "bes_charge" in v:
        lhs = lhs - v["bes_charge"] + v["bes_discharge"]

    model.add_constraints(lhs == time_array(window.demand, window), name="net_demand_balance")


def add_nonexport_constraints(
    model: linopy.Model, window: HorizonWindow, tariff: TariffConfig, site: SiteConfig
) -> None:
    """Limit exports: none without net metering, at most PV output with it.

    Args:
        model: linopy Model
        window: Segment parameters
        tariff: Tariff configuration
        site: Site configuration
    """
    v = model.variables
    net_demand = v["net_demand"]

    if not exports_enabled(window, tariff, site):
        model.add_constraints(net_demand >= 0, name="net_demand_nonexport")
        return

    pv = v["pv_generation"]
    model.add_constraints(net_demand + pv >= 0, name="net_demand_nonexport")
    model.add_constraints(
        net_demand - v["grid_import"] + v["grid_export"] == 0, name="import_export_balance"
    )
    model.add_constraints(v["grid_export"] - pv <= 0, name="export_upper_bound")


def add_solar_constraints(
    model: linopy.Model, window: HorizonWindow, site: SiteConfig, sizing: bool
) -> None:
    """Bound PV output by capacity factor times (fixed or sized) capacity."""
    pv = model.variables["pv_generation"]
    cf = time_array(window.solar_capacity_factor, window)

    if sizing:
        model.add_constraints(
            pv - model.variables["pv_capacity"] * cf <= 0, name="pv_upper_bound"
        )
    else:
        model.add_constraints(pv <= cf * site.solar.power_capacity, name="pv_upper_bound")


def add_storage_constraints(
    model: linopy.Model, window: HorizonWindow, site: SiteConfig, sizing: bool
) -> None:
    """Add battery SOC dynamics and limits.

    SOC[t] = (1 - loss) * SOC[t-1] + charge_eff * dt * charge[t] - dt / discharge_eff * discharge[t]

    The SOC before the first step is the carried-over SOC. The final SOC may not
    fall below it.

    Args:
        model: linopy Model
        window: Segment parameters
        site: Site configuration
        sizing: Whether storage capacities are decision variables

    Raises:
        ConfigurationError: If storage may only charge from PV but there is no PV
    """
    storage = site.storage
    v = model.variables
    soc, charge, discharge = v["bes_soc"], v["bes_charge"], v["bes_discharge"]
    dt = window.interval_hours
    last = window.num_time_steps - 1
    first_step = np.zeros(window.num_time_steps)
    first_step[0] = 1.0

    dynamics = (
        soc
        - soc.shift({TIME: 1}) * (1 - storage.loss_rate)
        - charge * (storage.charge_eff * dt)
        + discharge * (dt / storage.discharge_eff)
    )

    if sizing:
        power = v["bes_power_capacity"]
        if "bes_energy_capacity" in v:
            energy = 1 * v["bes_energy_capacity"]
        else:
            energy = power * storage.duration
        initial = window.bes_initial_soc_fraction

        model.add_constraints(charge - power <= 0, name="bes_charge_upper_bound")
        model.add_constraints(discharge - power <= 0, name="bes_discharge_upper_bound")
        model.add_constraints(soc - energy * storage.soc_min >= 0, name="bes_soc_lower_bound")
        model.add_constraints(soc - energy * storage.soc_max <= 0, name="bes_soc_upper_bound")
        model.add_constraints(
            dynamics - energy * time_array(first_step * (1 - storage.loss_rate) * initial, window)
            == 0,
            name="bes_soc_energy_conservation",
        )
        model.add_constraints(
            soc.isel({TIME: last}) - energy * initial >= 0, name="bes_final_soc"
        )
    else:
        energy = storage.energy_capacity_kwh
        model.add_constraints(charge <= storage.power_capacity, name="bes_charge_upper_bound")
        model.add_constraints(discharge <= storage.power_capacity, name="bes_discharge_upper_bound")
        model.add_constraints(soc >= storage.soc_min * energy, name="bes_soc_lower_bound")
        model.add_constraints(soc <= storage.soc_max * energy, name="bes_soc_upper_bound")
        model.add_constraints(
            dynamics
            == time_array(first_step * (1 - storage.loss_rate) * window.bes_initial_soc, window),
            name="bes_soc_energy_conservation",
        )
        model.add_constraints(
            soc.isel({TIME: last}) >= window.bes_initial_soc, name="bes_final_soc"
        )

    if storage.nonimport:
        if "pv_generation" not in v:
            raise ConfigurationError(
                "Storage is restricted to charging from PV, but no PV system is enabled"
            )
        model.add_constraints(charge - v["pv_generation"] <= 0, name="bes_nonimport")


def add_shiftable_demand_constraints(
    model: linopy.Model, window: HorizonWindow, shift_duration: int
) -> None:
    """Keep shifted demand energy-neutral over the horizon and every rolling window.

    Deviation capacities are applied as variable bounds. For each window of
    `shift_duration` steps, upward shifts must at least recover downward shifts.

    Args:
        model: linopy Model
        window: Segment parameters
        shift_duration: Rolling window length in time steps
    """
    up, down = model.variables["shift_up"], model.variables["shift_down"]

    model.add_constraints(up.sum() - down.sum() == 0, name="shift_interval_balance")

    if shift_duration > window.num_time_steps:
        return

    # Trailing window ending at t covers steps [t - L + 1, t]
    rolling = up - down
    for lag in range(1, shift_duration):
        rolling = rolling + up.shift({TIME: lag}) - down.shift({TIME: lag})

    complete = time_array(
        np.arange(window.num_time_steps) >= shift_duration - 1, window
    ).astype(bool)
    model.add_constraints(rolling >= 0, name="shift_rolling_balance", mask=complete)


def add_demand_charge_constraints(model: linopy.Model, window: HorizonWindow) -> None:
    """Track the peak net demand within every demand-charge period.

    In DAY horizons the peak also starts from the monthly peak accrued on
    earlier days of the month.

    Args:
        model: linopy Model
        window: Segment parameters
    """
    peak = model.variables["peak_demand"]
    keys = window.demand_charge_keys
    masks = xr.DataArray(
        np.vstack([window.demand_masks[key] for key in keys]),
        coords=[
            pd.RangeIndex(len(keys), name=PERIOD),
            pd.RangeIndex(window.num_time_steps, name=TIME),
        ],
    )

    model.add_constraints(
        peak - model.variables["net_demand"] * masks >= 0,
        name="peak_demand_during_periods",
        mask=masks > 0,
    )

    if window.previous_monthly_peaks is not None:
        previous = xr.DataArray(
            [window.previous_monthly_peaks.get(key, 0.0) for key in keys],
            coords=[pd.RangeIndex(len(keys), name=PERIOD)],
        )
        model.add_constraints(peak >= previous, name="peak_demand_carryover")


def add_tiered_energy_constraints(model: linopy.Model, window: HorizonWindow) -> None:
    """Split each month's grid energy into tier blocks of bounded width.

    Args:
        model: linopy Model
        window: Segment parameters
    """
    tier_energy = model.variables["tier_energy"]
    widths = xr.DataArray(
        [block.width for block in window.tiered_energy_rates],
        coords=[pd.Index([block.tier_id for block in window.tiered_energy_rates], name=TIER)],
    )
    finite = np.isfinite(widths)
    model.add_constraints(
        tier_energy <= widths.where(finite, 0.0), name="tier_upper_bound", mask=finite
    )

    grid_energy = net_import(model)
    months = np.asarray(window.timestamps.month)
    for month in sorted({block.month for block in window.tiered_energy_rates}):
        tier_ids = [b.tier_id for b in window.tiered_energy_rates if b.month == month]
        steps = np.flatnonzero(months == month)
        model.add_constraints(
            tier_energy.sel({TIER: tier_ids}).sum()
            - grid_energy.isel({TIME: steps}).sum() * window.interval_hours
            == 0,
            name=f"tier_energy_balance_{month:02d}",
        )
