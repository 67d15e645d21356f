"""Pydantic schemas for configuration and data validation."""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class OptimizationHorizon(str, Enum):
    """Length of one optimization segment."""

    DAY = "DAY"
    MONTH = "MONTH"
    YEAR = "YEAR"


class ProblemMode(str, Enum):
    """Dispatch-only with fixed assets, or capacity expansion with sized assets."""

    DISPATCH = "DISPATCH"
    CAPACITY_EXPANSION = "CAPACITY_EXPANSION"


class TieredBaselineType(str, Enum):
    """Period over which tiered energy bounds are defined."""

    DAILY = "daily"
    MONTHLY = "monthly"


class RateEntry(BaseModel):
    """Rate applying to one hour of the day, with its period label."""

    rate: float = Field(..., description="Rate in $/kWh (energy) or $/kW (demand)")
    label: str = Field(default="", description="Period label; empty means no charge applies")


class EnergyTier(BaseModel):
    """One block of a tiered energy rate."""

    lower_bound: float = Field(..., ge=0, description="Consumption (kWh) at which the tier starts")
    price: float = Field(..., description="Price adder in $/kWh for consumption in this tier")


class CustomerCharge(BaseModel):
    """Fixed customer charges."""

    daily: float = Field(default=0.0, ge=0, description="$/day")
    monthly: float = Field(default=0.0, ge=0, description="$/month")


def expand_hourly_periods(table: Any) -> Any:
    """Expand `{start, end, rate, label}` period lists into hour-keyed tables.

    Seasons already given as hour-keyed mappings are passed through unchanged.
    Periods cover hours `start` (inclusive) to `end` (exclusive).
    """
    if not isinstance(table, dict):
        return table

    expanded = {}
    for season, periods in table.items():
        if not isinstance(periods, list):
            expanded[season] = periods
            continue
        hours = {}
        for period in periods:
            for hour in range(int(period["start"]), int(period["end"])):
                hours[hour] = {"rate": period["rate"], "label": period.get("label", "")}
        expanded[season] = hours
    return expanded


class TariffConfig(BaseModel):
    """Utility tariff configuration.

    Optional sections left as None disable the corresponding feature.
    """

    utility_name: Optional[str] = None
    tariff_name: Optional[str] = None

    weekday_weekend_split: bool = Field(default=False, description="Weekends take the hour-0 rate")
    holiday_split: bool = Field(default=False, description="Holidays take the hour-0 rate")

    months_by_season: dict[str, list[int]] = Field(..., description="Season name to months (1-12)")
    energy_tou_rates: dict[str, dict[int, RateEntry]] = Field(
        ..., description="Season to hour-of-day energy rates"
    )

    energy_tiered_rates: Optional[dict[str, list[EnergyTier]]] = None
    tiered_baseline_type: TieredBaselineType = TieredBaselineType.MONTHLY

    monthly_maximum_demand_rates: Optional[dict[str, float]] = None
    monthly_demand_tou_rates: Optional[dict[str, dict[int, RateEntry]]] = None
    daily_demand_tou_rates: Optional[dict[str, dict[int, RateEntry]]] = None

    nem_enabled: bool = Field(default=False)
    nem_version: int = Field(default=1, ge=1, le=2)
    nem_non_bypassable_charge: Optional[float] = Field(
        default=None, ge=0, description="$/kWh, required for NEM 2.0"
    )

    customer_charge: CustomerCharge = Field(default_factory=CustomerCharge)

    all_charge_scaling: float = Field(default=1.0, ge=0)
    energy_charge_scaling: float = Field(default=1.0, ge=0)
    demand_charge_scaling: float = Field(default=1.0, ge=0)
    tou_energy_charge_scaling: float = Field(
        default=1.0,
        gt=0,
        description="Scales peak energy rates; partial-peak rates keep their relative position",
    )

    @field_validator(
        "energy_tou_rates", "monthly_demand_tou_rates", "daily_demand_tou_rates", mode="before"
    )
    @classmethod
    def expand_periods(cls, v):
        """Accept period lists as well as hour-keyed tables."""
        return expand_hourly_periods(v)

    @field_validator("energy_tiered_rates")
    @classmethod
    def validate_tiers(cls, v):
        """Ensure tiers are listed in ascending order starting from zero."""
        if v is None:
            return v
        for season, tiers in v.items():
            bounds = [tier.lower_bound for tier in tiers]
            if not tiers or bounds[0] != 0:
                raise ValueError(f"Tiers for season '{season}' must start at 0 kWh")
            if any(b2 <= b1 for b1, b2 in zip(bounds, bounds[1:])):
                raise ValueError(f"Tier bounds for season '{season}' must be strictly increasing")
        return v

    @model_validator(mode="after")
    def validate_nem(self):
        """NEM 2.0 needs the non-bypassable charge netted out of export credits."""
        if self.nem_enabled and self.nem_version == 2 and self.nem_non_bypassable_charge is None:
            raise ValueError("NEM 2.0 requires nem_non_bypassable_charge")
        return self


class DemandConfig(BaseModel):
    """Base demand and simple shiftable demand settings."""

    shift_enabled: bool = Field(default=False)
    shift_duration: int = Field(default=4, ge=1, description="Rolling balance window in time steps")
    shift_percent: float = Field(
        default=0.1, ge=0, le=1, description="Shift capacity as a share of base demand"
    )
    shift_up_cost: float = Field(default=0.0, ge=0, description="$/kWh shifted up")
    shift_down_cost: float = Field(default=0.0, ge=0, description="$/kWh shifted down")


class SolarConfig(BaseModel):
    """Solar PV asset configuration."""

    enabled: bool = Field(default=False)
    power_capacity: float = Field(default=0.0, ge=0, description="kW (dispatch mode)")
    maximum_power_capacity: Optional[float] = Field(default=None, ge=0, description="kW cap when sizing")
    capital_cost: float = Field(default=0.0, ge=0, description="$/kW")
    fixed_om_cost: float = Field(default=0.0, ge=0, description="$/kW-year")
    lifespan: int = Field(default=25, gt=0, description="Years")
    investment_tax_credit: float = Field(default=0.0, ge=0, le=1)


class StorageConfig(BaseModel):
    """Battery energy storage configuration."""

    enabled: bool = Field(default=False)
    power_capacity: float = Field(default=0.0, ge=0, description="kW (dispatch mode)")
    energy_capacity: Optional[float] = Field(default=None, ge=0, description="kWh")
    duration: Optional[float] = Field(default=None, gt=0, description="Hours at rated power")
    maximum_power_capacity: Optional[float] = Field(default=None, ge=0)
    maximum_energy_capacity: Optional[float] = Field(
        default=None, ge=0, description="kWh cap when sizing energy without a duration"
    )
    soc_min: float = Field(default=0.0, ge=0, le=1)
    soc_max: float = Field(default=1.0, ge=0, le=1)
    soc_initial: float = Field(default=0.5, ge=0, le=1)
    charge_eff: float = Field(default=0.95, gt=0, le=1)
    discharge_eff: float = Field(default=0.95, gt=0, le=1)
    loss_rate: float = Field(default=0.0, ge=0, lt=1, description="Self-discharge per time step")
    nonimport: bool = Field(default=False, description="Charge only from on-site PV")
    power_capital_cost: float = Field(default=0.0, ge=0, description="$/kW")
    energy_capital_cost: float = Field(default=0.0, ge=0, description="$/kWh")
    fixed_om_cost: float = Field(default=0.0, ge=0, description="$/kW-year")
    lifespan: int = Field(default=15, gt=0, description="Years")
    investment_tax_credit: float = Field(default=0.0, ge=0, le=1)

    @model_validator(mode="after")
    def validate_soc_window(self):
        """Ensure the SOC window is ordered and contains the initial SOC."""
        if self.soc_min > self.soc_max:
            raise ValueError("soc_min must not exceed soc_max")
        if not self.soc_min <= self.soc_initial <= self.soc_max:
            raise ValueError("soc_initial must lie within [soc_min, soc_max]")
        return self

    @property
    def energy_capacity_kwh(self) -> float:
        """Energy capacity in kWh for dispatch mode (0 when it is left to sizing)."""
        if not self.enabled:
            return 0.0
        if self.energy_capacity is not None:
            return self.energy_capacity
        if self.duration is not None:
            return self.duration * self.power_capacity
        return 0.0


class SiteConfig(BaseModel):
    """Site asset configuration."""

    site_id: str = Field(..., description="Unique site identifier")
    demand: DemandConfig = Field(default_factory=DemandConfig)
    solar: SolarConfig = Field(default_factory=SolarConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


class RunConfig(BaseModel):
    """Run-specific configuration."""

    run_id: str = Field(..., description="Unique run identifier")
    year: int = Field(..., ge=1900, le=2200, description="Simulated calendar year")
    interval_minutes: int = Field(default=60, description="Interval length in minutes")
    optimization_horizon: OptimizationHorizon = Field(default=OptimizationHorizon.DAY)
    problem_mode: ProblemMode = Field(default=ProblemMode.DISPATCH)

    solver_name: str = Field(default="highs")
    solver_time_limit_seconds: float = Field(default=60.0, gt=0)
    solver_gap_tolerance: float = Field(default=1e-4, ge=0)
    save_solver_log: bool = Field(default=False)

    real_discount_rate: Optional[float] = Field(default=None, gt=0)
    nominal_discount_rate: Optional[float] = Field(default=None, gt=0)
    inflation_rate: Optional[float] = Field(default=None, ge=0)
    amortization_period_years: Optional[int] = Field(default=None, gt=0)

    @field_validator("interval_minutes")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        """Only 15, 30 and 60 minute intervals are supported."""
        if v not in (15, 30, 60):
            raise ValueError(f"Interval {v} must be one of 15, 30 or 60 minutes")
        return v

    @property
    def interval_hours(self) -> float:
        return self.interval_minutes / 60.0

    @property
    def steps_per_day(self) -> int:
        return 24 * 60 // self.interval_minutes


class SolveStats(BaseModel):
    """Result of a single segment solve."""

    segment_start: date
    segment_end: date
    num_time_steps: int
    objective_value: float
    solve_time_seconds: float
    solver_status: str
    solver_termination_condition: str


class BundleMetadata(BaseModel):
    """Metadata for reproducibility tracking."""

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    dersim_version: str
    solver_name: str = Field(default="highs")
    solver_version: Optional[str] = None
    num_segments: Optional[int] = None
