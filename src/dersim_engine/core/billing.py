"""Electricity bill and investment cost calculation from simulated time series."""

import calendar
from typing import Optional

import numpy as np
import pandas as pd

from dersim_engine.core.constants import (
    BILL_COLUMNS,
    BILL_CUSTOMER_CHARGE,
    BILL_DEMAND_CHARGE,
    BILL_ENERGY_CHARGE,
    BILL_NEM_REVENUE,
    BILL_NON_BYPASSABLE_CHARGE,
    BILL_TIERED_ENERGY_CHARGE,
    BILL_TOTAL_CHARGE,
    COL_GRID_EXPORT_KW,
    COL_GRID_IMPORT_KW,
    COL_NET_DEMAND_KW,
)
from dersim_engine.core.dates import days_in_month
from dersim_engine.core.schemas import ProblemMode, RunConfig, SiteConfig, TariffConfig
from dersim_engine.tariff.profiles import CompiledRateSeries, tou_energy_charge_factors

TOTAL_ROW = "Total"


def calculate_electricity_bill(
    time_series: pd.DataFrame,
    compiled: CompiledRateSeries,
    run: RunConfig,
    tariff: TariffConfig,
    site: SiteConfig,
    tiered_energy: Optional[pd.DataFrame] = None,
) -> pd.DataFrame:
    """Itemised monthly and annual electricity bill.

    Charges are evaluated against the year-long tariff, so demand charges bill
    the true monthly peak regardless of the optimization horizon. The annual net
    metering credit is capped at the energy charge (less non-bypassable charges
    for version 2). Non-bypassable charges accrue on grid imports and are
    reported but not added to the total, since they are already netted out of
    the credit. Energy and credit prices carry the TOU energy-charge factors.

    Args:
        time_series: Simulated time series results aligned with `compiled`
        compiled: Compiled tariff series for the simulated year
        run: Run configuration
        tariff: Tariff configuration
        site: Site configuration
        tiered_energy: Per-segment tier usage from the simulation

    Returns:
        DataFrame indexed by month name plus a Total row
    """
    dt = run.interval_hours
    months = np.asarray(time_series.index.month)
    grid_import = time_series[COL_GRID_IMPORT_KW].to_numpy()
    grid_export = time_series[COL_GRID_EXPORT_KW].to_numpy()
    net_demand = time_series[COL_NET_DEMAND_KW].to_numpy()
    tou_factors = tou_energy_charge_factors(compiled, tariff)
    energy_prices = tou_factors * compiled.energy_prices

    energy_scaling = tariff.all_charge_scaling * tariff.energy_charge_scaling
    demand_scaling = tariff.all_charge_scaling * tariff.demand_charge_scaling
    nem_active = tariff.nem_enabled and site.solar.enabled and compiled.nem_prices is not None
    nbc = tariff.nem_non_bypassable_charge if nem_active and tariff.nem_version == 2 else 0.0

    tier_charges = {}
    if tiered_energy is not None and not tiered_energy.empty:
        charges = tiered_energy["price"] * tiered_energy["energy_kwh"]
        tier_charges = charges.groupby(tiered_energy["month"]).sum().to_dict()

    rows = []
    for month in range(1, 13):
        in_month = months == month
        row = dict.fromkeys(BILL_COLUMNS, 0.0)

        row[BILL_ENERGY_CHARGE] = energy_scaling * dt * float(
            (grid_import[in_month] * energy_prices[in_month]).sum()
        )
        row[BILL_TIERED_ENERGY_CHARGE] = float(tier_charges.get(month, 0.0))

        demand_charge = 0.0
        for key, rate in compiled.demand_rates.items():
            if key.month != month:
                continue
            masked = net_demand[in_month][compiled.demand_masks[key][in_month]]
            if masked.size:
                demand_charge += rate * max(float(masked.max()), 0.0)
        row[BILL_DEMAND_CHARGE] = demand_scaling * demand_charge

        if nem_active:
            credit_prices = tou_factors[in_month] * (compiled.nem_prices[in_month] + nbc)
            row[BILL_NEM_REVENUE] = energy_scaling * dt * float(
                (grid_export[in_month] * credit_prices).sum()
            )
            if tariff.nem_version == 2:
                row[BILL_NON_BYPASSABLE_CHARGE] = nbc * dt * float(grid_import[in_month].sum())

        row[BILL_CUSTOMER_CHARGE] = tariff.all_charge_scaling * (
            tariff.customer_charge.daily * days_in_month(run.year, month)
            + tariff.customer_charge.monthly
        )
        rows.append(row)

    bill = pd.DataFrame(rows, index=[calendar.month_name[m] for m in range(1, 13)])

    total = bill.sum()
    if nem_active:
        cap = total[BILL_ENERGY_CHARGE] - total[BILL_NON_BYPASSABLE_CHARGE]
        total[BILL_NEM_REVENUE] = min(total[BILL_NEM_REVENUE], cap)
    bill.loc[TOTAL_ROW] = total

    bill[BILL_TOTAL_CHARGE] = (
        bill[BILL_ENERGY_CHARGE]
        + bill[BILL_TIERED_ENERGY_CHARGE]
        + bill[BILL_DEMAND_CHARGE]
        + bill[BILL_CUSTOMER_CHARGE]
        - bill[BILL_NEM_REVENUE]
    )
    bill.index.name = "month"
    return bill


def compute_investment_costs(
    capacities: dict, run: RunConfig, site: SiteConfig
) -> dict:
    """Capital, tax credit and O&M costs of sized assets.

    Args:
        capacities: Sized capacities from the simulation (kW, kWh)
        run: Run configuration
        site: Site configuration

    Returns:
        Dictionary of investment results; empty outside capacity expansion
    """
    from dersim_engine.model.objective import capital_recovery_factor

    if run.problem_mode is not ProblemMode.CAPACITY_EXPANSION:
        return {}

    results = {}
    if "pv_capacity" in capacities:
        solar = site.solar
        capacity = capacities["pv_capacity"]
        crf = capital_recovery_factor(run, solar.lifespan)
        capital = solar.capital_cost * capacity
        results.update(
            {
                "solar_capacity_kw": capacity,
                "total_solar_capital_cost": capital,
                "amortized_solar_capital_cost": crf * capital,
                "total_solar_itc_amount": solar.investment_tax_credit * capital,
                "amortized_solar_itc_amount": crf * solar.investment_tax_credit * capital,
                "solar_om_cost": solar.fixed_om_cost * capacity,
            }
        )

    if "bes_power_capacity" in capacities:
        storage = site.storage
        power = capacities["bes_power_capacity"]
        if storage.duration is not None:
            energy = power * storage.duration
        else:
            energy = capacities.get("bes_energy_capacity", 0.0)
        crf = capital_recovery_factor(run, storage.lifespan)
        capital = storage.power_capital_cost * power + storage.energy_capital_cost * energy
        results.update(
            {
                "storage_power_capacity_kw": power,
                "storage_energy_capacity_kwh": energy,
                "total_storage_capital_cost": capital,
                "amortized_storage_capital_cost": crf * capital,
                "total_storage_itc_amount": storage.investment_tax_credit * capital,
                "amortized_storage_itc_amount": crf * storage.investment_tax_credit * capital,
                "storage_om_cost": storage.fixed_om_cost * power,
            }
        )

    return results
