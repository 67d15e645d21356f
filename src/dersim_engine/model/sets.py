"""Slice year-long profiles and tariff series into one optimization horizon.

A horizon window holds every parameter the model formulation needs for one
segment: sliced input profiles, scaled prices, the demand charges active in
the segment (re-weighted for the horizon length) and carried-over state.
"""

import math
from dataclasses import dataclass, field
from datetime import date
from types import MappingProxyType
from typing import Mapping, Optional

import numpy as np
import pandas as pd

from dersim_engine.core.constants import (
    COL_DEMAND_KW,
    COL_SHIFT_DOWN_CAPACITY_KW,
    COL_SHIFT_UP_CAPACITY_KW,
    COL_SOLAR_CAPACITY_FACTOR,
)
from dersim_engine.core.dates import days_in_month
from dersim_engine.core.errors import ConfigurationError
from dersim_engine.core.schemas import (
    OptimizationHorizon,
    RunConfig,
    SiteConfig,
    StorageConfig,
    TariffConfig,
    TieredBaselineType,
)
from dersim_engine.tariff.profiles import (
    CompiledRateSeries,
    DemandChargeKey,
    resolve_month_seasons,
    sorted_keys,
    tou_energy_charge_factors,
)


@dataclass(frozen=True)
class CarryState:
    """State threaded from one horizon segment into the next.

    Attributes:
        soc_fraction: Battery state of charge as a fraction of energy capacity
        monthly_peaks: Peak net demand (kW) accrued so far for monthly demand charges
    """

    soc_fraction: float = 0.0
    monthly_peaks: Mapping[DemandChargeKey, float] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "monthly_peaks", MappingProxyType(dict(self.monthly_peaks)))

    @classmethod
    def initial(cls, storage: StorageConfig) -> "CarryState":
        """State at the start of the simulated year."""
        return cls(soc_fraction=storage.soc_initial if storage.enabled else 0.0)


@dataclass(frozen=True)
class TierBlock:
    """One tiered-energy block for one month of a horizon, in kWh."""

    tier_id: int
    month: int
    lower_bound: float
    upper_bound: float
    price: float

    @property
    def width(self) -> float:
        return self.upper_bound - self.lower_bound


@dataclass(frozen=True)
class HorizonWindow:
    """Parameters of one optimization segment.

    All time-indexed arrays have one entry per interval in [start_date, end_date].
    Demand-charge prices and masks are keyed by `DemandChargeKey`;
    `demand_charge_ids` gives each key a dense integer id in sorted key order.
    """

    start_date: date
    end_date: date
    horizon: OptimizationHorizon
    interval_minutes: int
    timestamps: pd.DatetimeIndex
    demand: np.ndarray
    energy_prices: np.ndarray
    solar_capacity_factor: Optional[np.ndarray] = None
    shift_up_capacity: Optional[np.ndarray] = None
    shift_down_capacity: Optional[np.ndarray] = None
    nem_prices: Optional[np.ndarray] = None
    demand_prices: Mapping[DemandChargeKey, float] = field(default_factory=dict)
    demand_masks: Mapping[DemandChargeKey, np.ndarray] = field(default_factory=dict)
    demand_charge_ids: Mapping[DemandChargeKey, int] = field(default_factory=dict)
    previous_monthly_peaks: Optional[Mapping[DemandChargeKey, float]] = None
    tiered_energy_rates: tuple[TierBlock, ...] = ()
    bes_initial_soc_fraction: float = 0.0
    bes_initial_soc: float = 0.0

    def __post_init__(self):
        n = len(self.timestamps)
        series = {
            "demand": self.demand,
            "energy_prices": self.energy_prices,
            "solar_capacity_factor": self.solar_capacity_factor,
            "shift_up_capacity": self.shift_up_capacity,
            "shift_down_capacity": self.shift_down_capacity,
            "nem_prices": self.nem_prices,
        }
        for name, values in series.items():
            if values is not None and len(values) != n:
                raise ValueError(f"{name} has {len(values)} entries, expected {n}")
        for key, mask in self.demand_masks.items():
            if len(mask) != n:
                raise ValueError(f"Demand mask {key} has {len(mask)} entries, expected {n}")

        keys = set(self.demand_prices)
        if keys != set(self.demand_masks) or keys != set(self.demand_charge_ids):
            raise ValueError("Demand prices, masks and ids must share the same keys")
        if sorted(self.demand_charge_ids.values()) != list(range(len(keys))):
            raise ValueError("Demand charge ids must be dense and start at 0")
        if self.previous_monthly_peaks is not None and not set(self.previous_monthly_peaks) <= keys:
            raise ValueError("Previous peaks must refer to demand charges in the window")

        for name in ("demand_prices", "demand_masks", "demand_charge_ids"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))
        if self.previous_monthly_peaks is not None:
            object.__setattr__(
                self, "previous_monthly_peaks", MappingProxyType(dict(self.previous_monthly_peaks))
            )

    @property
    def num_time_steps(self) -> int:
        return len(self.timestamps)

    @property
    def num_demand_charge_periods(self) -> int:
        return len(self.demand_charge_ids)

    @property
    def num_tiers(self) -> int:
        return len(self.tiered_energy_rates)

    @property
    def interval_hours(self) -> float:
        return self.interval_minutes / 60.0

    @property
    def demand_charge_keys(self) -> list[DemandChargeKey]:
        """Keys ordered by id."""
        return sorted(self.demand_charge_ids, key=self.demand_charge_ids.__getitem__)


def window_positions(compiled: CompiledRateSeries, start_date: date, end_date: date) -> slice:
    """Positions of [start_date 00:00, end_date 23:59] within the compiled year."""
    year = compiled.timestamps[0].year
    if start_date.year != year or end_date.year != year:
        raise ValueError(f"Window {start_date}..{end_date} lies outside compiled year {year}")
    if end_date < start_date:
        raise ValueError(f"Window end {end_date} precedes start {start_date}")

    steps_per_day = 24 * 60 // compiled.interval_minutes
    first = (start_date.timetuple().tm_yday - 1) * steps_per_day
    last = end_date.timetuple().tm_yday * steps_per_day
    return slice(first, last)


def window_months(start_date: date, end_date: date) -> list[int]:
    """Calendar months spanned by a window within one year."""
    return list(range(start_date.month, end_date.month + 1))


def select_demand_charges(
    compiled: CompiledRateSeries,
    horizon: OptimizationHorizon,
    start_date: date,
    scaling: float,
) -> dict[DemandChargeKey, float]:
    """Pick the demand charges billed within a horizon and re-weight their rates.

    DAY windows spread monthly charges evenly over the days of the month.
    """
    prices = {}
    for key in sorted_keys(compiled.demand_rates):
        rate = compiled.demand_rates[key] * scaling
        if horizon is OptimizationHorizon.YEAR:
            prices[key] = rate
        elif horizon is OptimizationHorizon.MONTH:
            if key.month == start_date.month:
                prices[key] = rate
        elif key.is_monthly:
            if key.month == start_date.month:
                prices[key] = rate / days_in_month(start_date.year, key.month)
        elif (key.month, key.day) == (start_date.month, start_date.day):
            prices[key] = rate
    return prices


def build_tier_blocks(
    tariff: TariffConfig, horizon: OptimizationHorizon, year: int, months: list[int]
) -> tuple[TierBlock, ...]:
    """Tiered-energy blocks for the months of a window, renumbered from 1.

    Bounds are converted to the horizon length: a DAY window over monthly
    baselines divides by the days in the month and a MONTH window over daily
    baselines multiplies by them.

    Raises:
        ConfigurationError: If tiered rates are combined with the YEAR horizon
    """
    if tariff.energy_tiered_rates is None:
        return ()
    if horizon is OptimizationHorizon.YEAR:
        raise ConfigurationError(
            "Tiered energy rates are not supported with a one-year optimization horizon"
        )

    season_of_month = resolve_month_seasons(tariff.months_by_season)
    daily_baseline = tariff.tiered_baseline_type is TieredBaselineType.DAILY
    blocks = []
    for month in months:
        tiers = tariff.energy_tiered_rates.get(season_of_month[month])
        if not tiers:
            continue

        factor = 1.0
        ndays = days_in_month(year, month)
        if horizon is OptimizationHorizon.DAY and not daily_baseline:
            factor = 1.0 / ndays
        elif horizon is OptimizationHorizon.MONTH and daily_baseline:
            factor = float(ndays)

        for i, tier in enumerate(tiers):
            upper = tiers[i + 1].lower_bound if i + 1 < len(tiers) else math.inf
            blocks.append(
                TierBlock(
                    tier_id=len(blocks) + 1,
                    month=month,
                    lower_bound=tier.lower_bound * factor,
                    upper_bound=upper * factor,
                    price=tier.price,
                )
            )
    return tuple(blocks)


def allocate_tier_energy(
    blocks: tuple[TierBlock, ...], monthly_energy: Mapping[int, float]
) -> dict[int, float]:
    """Fill tier blocks bottom-up with each month's grid energy (kWh).

    This is the split the model chooses for tiers of increasing price, so it
    serves to bill time series that were not optimized, such as the baseline.
    """
    allocation = {}
    for block in blocks:
        energy = monthly_energy.get(block.month, 0.0)
        allocation[block.tier_id] = float(min(max(energy - block.lower_bound, 0.0), block.width))
    return allocation


def build_horizon_window(
    start_date: date,
    end_date: date,
    carry: CarryState,
    compiled: CompiledRateSeries,
    profiles: pd.DataFrame,
    run: RunConfig,
    tariff: TariffConfig,
    site: SiteConfig,
) -> HorizonWindow:
    """Build the parameter set for one optimization segment.

    Args:
        start_date: First day of the segment
        end_date: Last day of the segment (inclusive)
        carry: State carried over from the previous segment
        compiled: Compiled tariff series for the year
        profiles: Year-long input profiles aligned with `compiled.timestamps`
        run: Run configuration
        tariff: Tariff configuration
        site: Site configuration

    Returns:
        HorizonWindow for the segment
    """
    if len(profiles) != compiled.num_time_steps:
        raise ValueError(
            f"Profiles have {len(profiles)} intervals, compiled tariff has {compiled.num_time_steps}"
        )

    horizon = run.optimization_horizon
    positions = window_positions(compiled, start_date, end_date)
    energy_scaling = tariff.all_charge_scaling * tariff.energy_charge_scaling
    demand_scaling = tariff.all_charge_scaling * tariff.demand_charge_scaling

    def sliced(column: str) -> Optional[np.ndarray]:
        if column not in profiles.columns:
            return None
        return profiles[column].to_numpy(dtype=float)[positions].copy()

    solar_cf = sliced(COL_SOLAR_CAPACITY_FACTOR) if site.solar.enabled else None
    shift_up = shift_down = None
    if site.demand.shift_enabled:
        shift_up = sliced(COL_SHIFT_UP_CAPACITY_KW)
        shift_down = sliced(COL_SHIFT_DOWN_CAPACITY_KW)

    tou_factors = tou_energy_charge_factors(compiled, tariff)[positions]

    nem_prices = None
    if compiled.nem_prices is not None:
        nem = compiled.nem_prices[positions]
        if tariff.nem_version == 2 and horizon is not OptimizationHorizon.YEAR:
            # Exports are credited at the full energy price; the non-bypassable
            # charge is billed on imports instead.
            nem = nem + tariff.nem_non_bypassable_charge
        nem_prices = energy_scaling * tou_factors * nem

    demand_prices = select_demand_charges(compiled, horizon, start_date, demand_scaling)
    demand_masks = {
        key: compiled.demand_masks[key][positions].astype(float) for key in demand_prices
    }
    demand_charge_ids = {key: i for i, key in enumerate(sorted_keys(demand_prices))}

    previous_peaks = None
    if horizon is OptimizationHorizon.DAY:
        previous_peaks = {key: 0.0 for key in demand_prices}
        for key, peak in carry.monthly_peaks.items():
            if key in previous_peaks:
                previous_peaks[key] = peak

    energy_capacity = site.storage.energy_capacity_kwh if site.storage.enabled else 0.0

    return HorizonWindow(
        start_date=start_date,
        end_date=end_date,
        horizon=horizon,
        interval_minutes=run.interval_minutes,
        timestamps=compiled.timestamps[positions],
        demand=sliced(COL_DEMAND_KW),
        energy_prices=energy_scaling * tou_factors * compiled.energy_prices[positions],
        solar_capacity_factor=solar_cf,
        shift_up_capacity=shift_up,
        shift_down_capacity=shift_down,
        nem_prices=nem_prices,
        demand_prices=demand_prices,
        demand_masks=demand_masks,
        demand_charge_ids=demand_charge_ids,
        previous_monthly_peaks=previous_peaks,
        tiered_energy_rates=build_tier_blocks(
            tariff, horizon, start_date.year, window_months(start_date, end_date)
        ),
        bes_initial_soc_fraction=carry.soc_fraction,
        bes_initial_soc=carry.soc_fraction * energy_capacity,
    )
