"""Compile tariff calendar rules into year-long price and demand-charge series.

The compiled series are unscaled; charge scaling factors are applied when a
horizon window is sliced out of them.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

import numpy as np
import pandas as pd

from dersim_engine.core.constants import (
    MONTHLY_MAXIMUM_LABEL,
    OFF_PEAK_LABEL,
    PARTIAL_PEAK_LABEL,
    PEAK_LABEL,
)
from dersim_engine.core.dates import (
    days_in_month,
    holiday_mask,
    is_holiday,
    is_weekend,
    weekend_mask,
    year_timestamps,
)
from dersim_engine.core.errors import ConfigurationError
from dersim_engine.core.schemas import RateEntry, TariffConfig

logger = logging.getLogger(__name__)


class DemandChargeKind(str, Enum):
    """Billing period of a demand charge."""

    MONTHLY = "monthly"
    DAILY = "daily"


_KIND_ORDER = {DemandChargeKind.MONTHLY: 0, DemandChargeKind.DAILY: 1}

# TOU period indicators: 0 is unscaled, 1 is peak, and 2 + i is partial-peak in
# the i-th season in sorted season order
TOU_UNSCALED = 0
TOU_PEAK = 1
TOU_PARTIAL_PEAK = 2


@dataclass(frozen=True)
class DemandChargeKey:
    """Identifies one demand-charge instance: a labelled period within a month or day."""

    kind: DemandChargeKind
    label: str
    month: int
    day: Optional[int] = None

    def __post_init__(self):
        if (self.kind is DemandChargeKind.DAILY) != (self.day is not None):
            raise ValueError("Daily demand charges need a day; monthly ones must not have one")

    def sort_key(self) -> tuple:
        return (_KIND_ORDER[self.kind], self.month, self.day or 0, self.label)

    @property
    def is_monthly(self) -> bool:
        return self.kind is DemandChargeKind.MONTHLY

    def __str__(self) -> str:
        name = f"{self.kind.value}_{self.label}_{self.month:02d}"
        if self.day is not None:
            name += f"_{self.day:02d}"
        return name


def sorted_keys(keys) -> list[DemandChargeKey]:
    """Deterministic ordering used to assign demand-charge ids."""
    return sorted(keys, key=DemandChargeKey.sort_key)


@dataclass(frozen=True)
class CompiledRateSeries:
    """Year-long, per-interval tariff series.

    `tou_indicators` marks the energy TOU period of every interval (see
    `TOU_PEAK` and `TOU_PARTIAL_PEAK`); None means no interval is scaled.
    """

    timestamps: pd.DatetimeIndex
    interval_minutes: int
    energy_prices: np.ndarray
    nem_prices: Optional[np.ndarray] = None
    demand_rates: Mapping[DemandChargeKey, float] = field(default_factory=dict)
    demand_masks: Mapping[DemandChargeKey, np.ndarray] = field(default_factory=dict)
    tou_indicators: Optional[np.ndarray] = None

    def __post_init__(self):
        n = len(self.timestamps)
        if len(self.energy_prices) != n:
            raise ValueError("energy_prices must cover every timestamp")
        if self.nem_prices is not None and len(self.nem_prices) != n:
            raise ValueError("nem_prices must cover every timestamp")
        if self.tou_indicators is not None:
            if len(self.tou_indicators) != n:
                raise ValueError("tou_indicators must cover every timestamp")
            self.tou_indicators.setflags(write=False)
        if set(self.demand_rates) != set(self.demand_masks):
            raise ValueError("Every demand charge needs both a rate and a mask")
        for key, mask in self.demand_masks.items():
            if len(mask) != n:
                raise ValueError(f"Demand mask {key} must cover every timestamp")
            mask.setflags(write=False)
        self.energy_prices.setflags(write=False)
        if self.nem_prices is not None:
            self.nem_prices.setflags(write=False)
        object.__setattr__(self, "demand_rates", MappingProxyType(dict(self.demand_rates)))
        object.__setattr__(self, "demand_masks", MappingProxyType(dict(self.demand_masks)))

    @property
    def num_time_steps(self) -> int:
        return len(self.timestamps)

    @property
    def demand_charge_keys(self) -> list[DemandChargeKey]:
        return sorted_keys(self.demand_rates)


def resolve_month_seasons(months_by_season: Mapping[str, list[int]]) -> dict[int, str]:
    """Invert the season map, requiring each month in exactly one season.

    Raises:
        ConfigurationError: If a month is missing, repeated or out of range
    """
    season_of_month = {}
    for season, months in months_by_season.items():
        for month in months:
            if not 1 <= month <= 12:
                raise ConfigurationError(f"Season '{season}' lists invalid month {month}")
            if month in season_of_month:
                raise ConfigurationError(
                    f"Month {month} is assigned to both '{season_of_month[month]}' and '{season}'"
                )
            season_of_month[month] = season

    missing = sorted(set(range(1, 13)) - set(season_of_month))
    if missing:
        raise ConfigurationError(f"Months {missing} are not assigned to any season")
    return season_of_month


def _lookup_rate(
    table: Mapping[int, RateEntry], table_name: str, season: str, hour: int
) -> RateEntry:
    try:
        return table[hour]
    except KeyError:
        raise ConfigurationError(
            f"{table_name} table for season '{season}' has no entry for hour {hour}"
        ) from None


def _season_table(tables, table_name: str, season: str, required: bool):
    if season in tables:
        return tables[season]
    if required:
        raise ConfigurationError(f"{table_name} table has no season '{season}'")
    return None


class _YearLayout:
    """Index arithmetic over a regular, year-long timestamp grid."""

    def __init__(self, year: int, interval_minutes: int):
        self.year = year
        self.timestamps = year_timestamps(year, interval_minutes)
        self.steps_per_hour = 60 // interval_minutes
        self.steps_per_day = 24 * self.steps_per_hour
        self.months = np.asarray(self.timestamps.month)
        self.hours = np.asarray(self.timestamps.hour)

    def hour_slice(self, day_of_year: int, hour: int) -> slice:
        start = (day_of_year - 1) * self.steps_per_day + hour * self.steps_per_hour
        return slice(start, start + self.steps_per_hour)

    def month_hour(self, month: int, hour: int) -> np.ndarray:
        return (self.months == month) & (self.hours == hour)


def _non_standard_day_mask(tariff: TariffConfig, timestamps: pd.DatetimeIndex) -> np.ndarray:
    """Timestamps that take the all-day rate under the weekend and holiday splits."""
    mask = np.zeros(len(timestamps), dtype=bool)
    if tariff.weekday_weekend_split:
        mask |= weekend_mask(timestamps)
    if tariff.holiday_split:
        mask |= holiday_mask(timestamps)
    return mask


def _is_non_standard_day(tariff: TariffConfig, day: pd.Timestamp) -> bool:
    d = day.date()
    return (tariff.weekday_weekend_split and is_weekend(d)) or (
        tariff.holiday_split and is_holiday(d)
    )


def _tou_indicator(entry: RateEntry, season_index: int) -> int:
    if entry.label == PEAK_LABEL:
        return TOU_PEAK
    if entry.label == PARTIAL_PEAK_LABEL:
        return TOU_PARTIAL_PEAK + season_index
    return TOU_UNSCALED


def compile_energy_prices(
    tariff: TariffConfig,
    layout: _YearLayout,
    season_of_month: Mapping[int, str],
    off_days: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Write the time-of-use energy rate and its TOU period into every interval.

    Returns:
        Tuple of (energy_prices, tou_indicators)
    """
    n = len(layout.timestamps)
    prices = np.full(n, np.nan)
    indicators = np.zeros(n, dtype=np.int8)
    season_index = {season: i for i, season in enumerate(sorted(tariff.months_by_season))}

    for month in range(1, 13):
        season = season_of_month[month]
        table = _season_table(tariff.energy_tou_rates, "Energy TOU", season, required=True)
        for hour in range(24):
            entry = _lookup_rate(table, "Energy TOU", season, hour)
            steps = layout.month_hour(month, hour)
            prices[steps] = entry.rate
            indicators[steps] = _tou_indicator(entry, season_index[season])

        if off_days.any():
            all_day = _lookup_rate(table, "Energy TOU", season, 0)
            steps = (layout.months == month) & off_days
            prices[steps] = all_day.rate
            indicators[steps] = _tou_indicator(all_day, season_index[season])

    return prices, indicators


def _labelled_rate(table: Mapping[int, RateEntry], season: str, label: str) -> float:
    for hour in sorted(table):
        if table[hour].label == label:
            return table[hour].rate
    raise ConfigurationError(f"Energy TOU table for season '{season}' has no '{label}' period")


def tou_energy_charge_factors(compiled: CompiledRateSeries, tariff: TariffConfig) -> np.ndarray:
    """Per-interval multipliers applying the tariff's TOU energy-charge scaling.

    Peak intervals are multiplied by the scaling factor. Partial-peak intervals
    are re-priced so that they keep their relative position between the scaled
    peak price and the unscaled off-peak price of their season. Every other
    interval keeps a factor of one.

    Args:
        compiled: Compiled tariff series
        tariff: Tariff configuration

    Returns:
        Array of multipliers aligned with `compiled.timestamps`

    Raises:
        ConfigurationError: If a season with partial-peak intervals lacks a peak
            or off-peak period, or its rates make the interpolation undefined
    """
    factors = np.ones(compiled.num_time_steps)
    scaling = tariff.tou_energy_charge_scaling
    if scaling == 1.0 or compiled.tou_indicators is None:
        return factors

    indicators = compiled.tou_indicators
    factors[indicators == TOU_PEAK] = scaling

    for i, season in enumerate(sorted(tariff.months_by_season)):
        partial = indicators == TOU_PARTIAL_PEAK + i
        if not partial.any():
            continue
        table = tariff.energy_tou_rates[season]
        peak = _labelled_rate(table, season, PEAK_LABEL)
        partial_peak = _labelled_rate(table, season, PARTIAL_PEAK_LABEL)
        off_peak = _labelled_rate(table, season, OFF_PEAK_LABEL)
        if peak == off_peak or partial_peak == 0:
            raise ConfigurationError(
                f"Season '{season}' rates cannot place partial-peak between peak and off-peak"
            )
        position = (partial_peak - off_peak) / (peak - off_peak)
        factors[partial] = (position * (scaling * peak - off_peak) + off_peak) / partial_peak

    return factors


def compile_demand_charges(
    tariff: TariffConfig,
    layout: _YearLayout,
    season_of_month: Mapping[int, str],
    off_days: np.ndarray,
) -> tuple[dict[DemandChargeKey, float], dict[DemandChargeKey, np.ndarray]]:
    """Build one rate and one 0/1 mask per demand-charge instance.

    A season absent from a demand-charge table carries no charge of that type.
    A label shared by several hours takes the rate of its first hour.
    """
    n = len(layout.timestamps)
    rates: dict[DemandChargeKey, float] = {}
    masks: dict[DemandChargeKey, np.ndarray] = {}

    if tariff.monthly_maximum_demand_rates is not None:
        for month in range(1, 13):
            season = season_of_month[month]
            if season not in tariff.monthly_maximum_demand_rates:
                continue
            key = DemandChargeKey(DemandChargeKind.MONTHLY, MONTHLY_MAXIMUM_LABEL, month)
            rates[key] = tariff.monthly_maximum_demand_rates[season]
            masks[key] = layout.months == month

    if tariff.monthly_demand_tou_rates is not None:
        for month in range(1, 13):
            season = season_of_month[month]
            table = _season_table(tariff.monthly_demand_tou_rates, "Monthly demand", season, False)
            if table is None:
                continue
            for hour in range(24):
                entry = _lookup_rate(table, "Monthly demand", season, hour)
                if not entry.label:
                    continue
                key = DemandChargeKey(DemandChargeKind.MONTHLY, entry.label, month)
                if key not in masks:
                    rates[key] = entry.rate
                    masks[key] = np.zeros(n, dtype=bool)
                masks[key] |= layout.month_hour(month, hour) & ~off_days

    if tariff.daily_demand_tou_rates is not None:
        for month in range(1, 13):
            season = season_of_month[month]
            table = _season_table(tariff.daily_demand_tou_rates, "Daily demand", season, False)
            if table is None:
                continue
            entries = [_lookup_rate(table, "Daily demand", season, hour) for hour in range(24)]
            for day in range(1, days_in_month(layout.year, month) + 1):
                stamp = pd.Timestamp(year=layout.year, month=month, day=day)
                if _is_non_standard_day(tariff, stamp):
                    continue
                for hour, entry in enumerate(entries):
                    if not entry.label:
                        continue
                    key = DemandChargeKey(DemandChargeKind.DAILY, entry.label, month, day)
                    if key not in masks:
                        rates[key] = entry.rate
                        masks[key] = np.zeros(n, dtype=bool)
                    masks[key][layout.hour_slice(stamp.dayofyear, hour)] = True

    return rates, masks


def compile_rate_profiles(
    tariff: TariffConfig, year: int, interval_minutes: int
) -> CompiledRateSeries:
    """Compile a tariff into dense per-interval series for one calendar year.

    Args:
        tariff: Tariff configuration
        year: Calendar year to compile
        interval_minutes: Interval length (15, 30 or 60)

    Returns:
        CompiledRateSeries covering every interval of the year

    Raises:
        ConfigurationError: If the season map or a rate table is incomplete
    """
    if 60 % interval_minutes != 0:
        raise ConfigurationError(f"Interval {interval_minutes} must divide 60 evenly")

    season_of_month = resolve_month_seasons(tariff.months_by_season)
    layout = _YearLayout(year, interval_minutes)
    off_days = _non_standard_day_mask(tariff, layout.timestamps)

    energy_prices, tou_indicators = compile_energy_prices(
        tariff, layout, season_of_month, off_days
    )
    rates, masks = compile_demand_charges(tariff, layout, season_of_month, off_days)

    nem_prices = None
    if tariff.nem_enabled:
        if tariff.nem_version == 2:
            nem_prices = energy_prices - tariff.nem_non_bypassable_charge
        else:
            nem_prices = energy_prices.copy()

    logger.debug(
        "Compiled tariff %s for %d: %d intervals, %d demand charges",
        tariff.tariff_name or "<unnamed>",
        year,
        len(layout.timestamps),
        len(rates),
    )

    return CompiledRateSeries(
        timestamps=layout.timestamps,
        interval_minutes=interval_minutes,
        energy_prices=energy_prices,
        nem_prices=nem_prices,
        demand_rates=rates,
        demand_masks=masks,
        tou_indicators=tou_indicators,
    )
