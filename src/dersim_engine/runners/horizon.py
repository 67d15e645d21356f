"""Rolling-horizon simulation over one calendar year.

The year is split into ordered, non-overlapping segments (days, months, or the
whole year). Each segment is solved on its own, and the battery state of charge
and accrued monthly demand peaks are carried into the next one. Segments run
strictly in order because each depends on its predecessor's carry-over.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Iterator, Optional

import numpy as np
import pandas as pd

from dersim_engine.core.constants import (
    COL_BES_SOC_KWH,
    COL_DEMAND_KW,
    COL_ENERGY_PRICE,
    COL_GRID_IMPORT_KW,
    COL_NEM_PRICE,
    OUTPUT_COLUMNS,
)
from dersim_engine.core.dates import days_in_month
from dersim_engine.core.errors import ConfigurationError
from dersim_engine.core.schemas import (
    OptimizationHorizon,
    ProblemMode,
    RunConfig,
    SiteConfig,
    SolveStats,
    TariffConfig,
)
from dersim_engine.core.validate import validate_monthly_peak_progression
from dersim_engine.model.build import build_model
from dersim_engine.model.sets import (
    CarryState,
    HorizonWindow,
    TierBlock,
    allocate_tier_energy,
    build_horizon_window,
    build_tier_blocks,
    window_months,
)
from dersim_engine.model.solve import SegmentSolution, solve_model
from dersim_engine.tariff.profiles import CompiledRateSeries

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Segment:
    """One optimization horizon within the simulated year."""

    start: date
    end: date

    @property
    def is_last_day_of_month(self) -> bool:
        return self.end.day == days_in_month(self.end.year, self.end.month)

    def log_name(self, horizon: OptimizationHorizon) -> str:
        """Solver log file name for the segment."""
        if horizon is OptimizationHorizon.DAY:
            return f"optimizer_{self.start.month:02d}_{self.start.day:02d}.log"
        if horizon is OptimizationHorizon.MONTH:
            return f"optimizer_{self.start.month:02d}.log"
        return "optimizer.log"


def iter_segments(year: int, horizon: OptimizationHorizon) -> Iterator[Segment]:
    """Partition a year into ordered segments, month-major for DAY horizons."""
    if horizon is OptimizationHorizon.YEAR:
        yield Segment(date(year, 1, 1), date(year, 12, 31))
        return

    for month in range(1, 13):
        ndays = days_in_month(year, month)
        if horizon is OptimizationHorizon.MONTH:
            yield Segment(date(year, month, 1), date(year, month, ndays))
            continue
        for day in range(1, ndays + 1):
            d = date(year, month, day)
            yield Segment(d, d)


class TimeSeriesResults:
    """Year-long accumulator of dispatch results.

    Segments write their rows at the global offset of their first interval.
    Once finalized, no further writes are accepted.
    """

    def __init__(self, timestamps: pd.DatetimeIndex):
        self.timestamps = timestamps
        self._data = {column: np.full(len(timestamps), np.nan) for column in OUTPUT_COLUMNS}
        self._filled = np.zeros(len(timestamps), dtype=bool)
        self._frame: Optional[pd.DataFrame] = None

    @property
    def finalized(self) -> bool:
        return self._frame is not None

    def write(self, offset: int, columns: dict) -> None:
        """Store one segment's values starting at a global interval offset."""
        if self.finalized:
            raise RuntimeError("Cannot write to finalized time series results")

        n = len(next(iter(columns.values())))
        rows = slice(offset, offset + n)
        if offset < 0 or offset + n > len(self.timestamps):
            raise IndexError(f"Rows {offset}..{offset + n} fall outside the simulated year")
        if self._filled[rows].any():
            raise RuntimeError(f"Rows {offset}..{offset + n} were already written")

        for column, values in columns.items():
            if column not in self._data:
                self._data[column] = np.full(len(self.timestamps), np.nan)
            self._data[column][rows] = values
        self._filled[rows] = True

    def finalize(self) -> pd.DataFrame:
        """Freeze the accumulated results into a DataFrame."""
        if self._frame is None:
            if not self._filled.all():
                missing = int((~self._filled).sum())
                raise RuntimeError(f"{missing} intervals were never simulated")
            frame = pd.DataFrame(self._data, index=self.timestamps)
            frame.index.name = "timestamp"
            for values in self._data.values():
                values.setflags(write=False)
            self._frame = frame
        return self._frame


@dataclass
class SimulationResult:
    """Outputs of a full-year simulation."""

    time_series: pd.DataFrame
    tiered_energy: pd.DataFrame
    capacities: dict = field(default_factory=dict)
    segment_stats: list[SolveStats] = field(default_factory=list)


def tier_usage_rows(
    segment_start: date, blocks: tuple[TierBlock, ...], tier_energy: dict[int, float]
) -> list[dict]:
    """Tier usage records of one segment, one per tier block."""
    return [
        {
            "segment_start": segment_start,
            "month": block.month,
            "tier": block.tier_id,
            "lower_bound_kwh": block.lower_bound,
            "upper_bound_kwh": block.upper_bound,
            "price": block.price,
            "energy_kwh": tier_energy.get(block.tier_id, 0.0),
        }
        for block in blocks
    ]


def compute_tiered_energy(
    time_series: pd.DataFrame, run: RunConfig, tariff: TariffConfig
) -> pd.DataFrame:
    """Tier usage of a fixed time series over the run's segments.

    Each segment's grid import is filled into the same tier blocks the optimizer
    would see for that segment, so the result can be billed like a simulated one.

    Args:
        time_series: Year-long time series with grid_import_kw
        run: Run configuration
        tariff: Tariff configuration

    Returns:
        DataFrame in the layout of SimulationResult.tiered_energy; empty without tiers
    """
    if tariff.energy_tiered_rates is None:
        return pd.DataFrame()

    dt = run.interval_hours
    steps_per_day = run.steps_per_day
    grid_import = time_series[COL_GRID_IMPORT_KW].to_numpy()
    months = np.asarray(time_series.index.month)

    rows = []
    for segment in iter_segments(run.year, run.optimization_horizon):
        segment_months = window_months(segment.start, segment.end)
        blocks = build_tier_blocks(tariff, run.optimization_horizon, run.year, segment_months)

        offset = (segment.start.timetuple().tm_yday - 1) * steps_per_day
        steps = slice(offset, offset + ((segment.end - segment.start).days + 1) * steps_per_day)
        monthly_energy = {
            month: dt * float(grid_import[steps][months[steps] == month].sum())
            for month in segment_months
        }
        rows.extend(
            tier_usage_rows(segment.start, blocks, allocate_tier_energy(blocks, monthly_energy))
        )

    return pd.DataFrame(rows)


def energy_capacity(site: SiteConfig, solution: SegmentSolution, run: RunConfig) -> float:
    """Battery energy capacity (kWh) in effect for a segment."""
    storage = site.storage
    if not storage.enabled:
        return 0.0
    if run.problem_mode is ProblemMode.CAPACITY_EXPANSION:
        if storage.duration is None:
            return solution.capacities.get("bes_energy_capacity", 0.0)
        return storage.duration * solution.capacities.get("bes_power_capacity", 0.0)
    return storage.energy_capacity_kwh


def next_carry_state(
    segment: Segment,
    window: HorizonWindow,
    solution: SegmentSolution,
    run: RunConfig,
    site: SiteConfig,
) -> CarryState:
    """Carry-over state after a solved segment.

    The SOC is the final SOC as a fraction of energy capacity. Under DAY horizons,
    monthly demand-charge peaks are carried forward until the month's last day.
    """
    capacity = energy_capacity(site, solution, run)
    soc_fraction = 0.0
    if capacity > 0:
        soc_fraction = float(solution.columns[COL_BES_SOC_KWH][-1]) / capacity

    peaks = {}
    if window.horizon is OptimizationHorizon.DAY and not segment.is_last_day_of_month:
        peaks = {key: value for key, value in solution.peak_demands.items() if key.is_monthly}

    return CarryState(soc_fraction=soc_fraction, monthly_peaks=peaks)


def simulate_segment(
    segment: Segment,
    carry: CarryState,
    compiled: CompiledRateSeries,
    profiles: pd.DataFrame,
    run: RunConfig,
    tariff: TariffConfig,
    site: SiteConfig,
    log_dir: Optional[Path] = None,
) -> tuple[HorizonWindow, SegmentSolution, SolveStats, CarryState]:
    """Build, solve and post-process a single segment.

    The incoming carry state is not modified; the state for the next segment is
    returned as a new value.
    """
    window = build_horizon_window(
        segment.start, segment.end, carry, compiled, profiles, run, tariff, site
    )
    model = build_model(window, run, tariff, site)

    log_path = None
    if log_dir is not None:
        log_path = Path(log_dir) / segment.log_name(run.optimization_horizon)

    solution, stats = solve_model(model, run, window, log_path=log_path)
    next_carry = next_carry_state(segment, window, solution, run, site)

    if next_carry.monthly_peaks:
        validate_monthly_peak_progression(window.previous_monthly_peaks, next_carry.monthly_peaks)

    return window, solution, stats, next_carry


def run_simulation(
    compiled: CompiledRateSeries,
    profiles: pd.DataFrame,
    run: RunConfig,
    tariff: TariffConfig,
    site: SiteConfig,
    log_dir: Optional[Path] = None,
) -> SimulationResult:
    """Simulate dispatch for the whole year, one segment at a time.

    Args:
        compiled: Compiled tariff series for the year
        profiles: Year-long input profiles aligned with the compiled series
        run: Run configuration
        tariff: Tariff configuration
        site: Site configuration
        log_dir: Directory for per-segment solver logs, if requested

    Returns:
        SimulationResult with the full-year time series

    Raises:
        ConfigurationError: If capacity expansion is requested with a sub-year horizon
    """
    if (
        run.problem_mode is ProblemMode.CAPACITY_EXPANSION
        and run.optimization_horizon is not OptimizationHorizon.YEAR
    ):
        raise ConfigurationError("Capacity expansion requires the YEAR optimization horizon")

    results = TimeSeriesResults(compiled.timestamps)
    carry = CarryState.initial(site.storage)
    tier_rows = []
    stats = []
    capacities = {}
    steps_per_day = run.steps_per_day

    segments = list(iter_segments(run.year, run.optimization_horizon))
    logger.info(
        "Simulating %d %s segments for %d", len(segments), run.optimization_horizon.value, run.year
    )

    for segment in segments:
        window, solution, segment_stats, carry = simulate_segment(
            segment, carry, compiled, profiles, run, tariff, site, log_dir
        )

        offset = (segment.start.timetuple().tm_yday - 1) * steps_per_day
        columns = dict(solution.columns)
        columns[COL_DEMAND_KW] = window.demand
        columns[COL_ENERGY_PRICE] = window.energy_prices
        if window.nem_prices is not None:
            columns[COL_NEM_PRICE] = window.nem_prices
        results.write(offset, columns)

        tier_rows.extend(
            tier_usage_rows(segment.start, window.tiered_energy_rates, solution.tier_energy)
        )

        stats.append(segment_stats)
        capacities.update(solution.capacities)

    logger.info(
        "Simulation complete: total solve time %.2fs",
        sum(s.solve_time_seconds for s in stats),
    )

    return SimulationResult(
        time_series=results.finalize(),
        tiered_energy=pd.DataFrame(tier_rows),
        capacities=capacities,
        segment_stats=stats,
    )
