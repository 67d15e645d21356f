"""Generate synthetic example bundles for testing and demonstration."""

from pathlib import Path

import numpy as np
import pandas as pd

from dersim_engine.core.constants import (
    COL_DEMAND_KW,
    COL_SOLAR_CAPACITY_FACTOR,
)
from dersim_engine.core.dates import year_timestamps
from dersim_engine.core.schemas import (
    OptimizationHorizon,
    RunConfig,
    SiteConfig,
    SolarConfig,
    StorageConfig,
    TariffConfig,
)
from dersim_engine.io.bundle import init_bundle

YEAR = 2024
BUNDLES_DIR = Path(__file__).parent.parent / "examples" / "bundles"


def synthetic_profiles(year: int, interval_minutes: int, seed: int = 42) -> pd.DataFrame:
    """Commercial-style demand with an afternoon hump and a clear-sky PV shape."""
    rng = np.random.default_rng(seed)
    index = year_timestamps(year, interval_minutes)
    hour = index.hour + index.minute / 60.0
    day_of_year = index.dayofyear.to_numpy()

    weekday = (index.dayofweek < 5).astype(float)
    demand = 40.0 + 35.0 * weekday * np.clip(np.sin((hour - 6) * np.pi / 14), 0, None)
    demand = demand * (1 + 0.15 * np.cos((day_of_year - 200) * 2 * np.pi / 366))
    demand = np.maximum(demand + rng.normal(0, 2.0, len(index)), 0)

    daylight = 12 + 2.5 * np.sin((day_of_year - 80) * 2 * np.pi / 366)
    sunrise = 12 - daylight / 2
    cf = np.clip(np.sin((hour - sunrise) * np.pi / daylight), 0, None) ** 1.5
    cf = np.clip(cf * rng.uniform(0.75, 1.0, len(index)), 0, 1)

    return pd.DataFrame({COL_DEMAND_KW: demand, COL_SOLAR_CAPACITY_FACTOR: cf}, index=index)


def tou_tariff(**overrides) -> TariffConfig:
    """Two-season time-of-use tariff with a 4-9pm peak."""
    periods = {
        "summer": [
            {"start": 0, "end": 16, "rate": 0.25, "label": "off-peak"},
            {"start": 16, "end": 21, "rate": 0.45, "label": "peak"},
            {"start": 21, "end": 24, "rate": 0.25, "label": "off-peak"},
        ],
        "winter": [
            {"start": 0, "end": 16, "rate": 0.22, "label": "off-peak"},
            {"start": 16, "end": 21, "rate": 0.30, "label": "peak"},
            {"start": 21, "end": 24, "rate": 0.22, "label": "off-peak"},
        ],
    }
    config = {
        "utility_name": "Example Utility",
        "tariff_name": "TOU-EXAMPLE",
        "weekday_weekend_split": True,
        "holiday_split": True,
        "months_by_season": {"summer": [6, 7, 8, 9], "winter": [1, 2, 3, 4, 5, 10, 11, 12]},
        "energy_tou_rates": periods,
        "customer_charge": {"daily": 0.5, "monthly": 10.0},
    }
    config.update(overrides)
    return TariffConfig(**config)


def generate_pv_storage_nem():
    """Generate PV + storage under TOU with NEM 2.0."""
    print("Generating pv_storage_nem bundle...")

    site_config = SiteConfig(
        site_id="example_site_001",
        solar=SolarConfig(enabled=True, power_capacity=60.0),
        storage=StorageConfig(
            enabled=True,
            power_capacity=25.0,
            duration=4.0,
            soc_min=0.1,
            soc_max=0.95,
            soc_initial=0.5,
        ),
    )
    tariff = tou_tariff(nem_enabled=True, nem_version=2, nem_non_bypassable_charge=0.02)
    run_config = RunConfig(
        run_id="pv_storage_nem",
        year=YEAR,
        interval_minutes=60,
        optimization_horizon=OptimizationHorizon.MONTH,
    )

    bundle = BUNDLES_DIR / "pv_storage_nem"
    init_bundle(bundle, site_config, run_config, tariff, synthetic_profiles(YEAR, 60))
    print(f"  ✓ Created bundle at {bundle}")


def generate_demand_charge_peak_shave():
    """Generate storage-only peak shaving against monthly and TOU demand charges."""
    print("Generating demand_charge_peak_shave bundle...")

    site_config = SiteConfig(
        site_id="example_site_002",
        storage=StorageConfig(
            enabled=True, power_capacity=20.0, energy_capacity=60.0, soc_initial=0.5
        ),
    )
    demand_periods = {
        "summer": [
            {"start": 0, "end": 12, "rate": 0.0, "label": ""},
            {"start": 12, "end": 18, "rate": 18.0, "label": "peak"},
            {"start": 18, "end": 24, "rate": 0.0, "label": ""},
        ]
    }
    tariff = tou_tariff(
        monthly_maximum_demand_rates={"summer": 12.0, "winter": 10.0},
        monthly_demand_tou_rates=demand_periods,
    )
    run_config = RunConfig(
        run_id="demand_charge_peak_shave",
        year=YEAR,
        interval_minutes=15,
        optimization_horizon=OptimizationHorizon.DAY,
    )

    bundle = BUNDLES_DIR / "demand_charge_peak_shave"
    profiles = synthetic_profiles(YEAR, 60, seed=7)[[COL_DEMAND_KW]]
    init_bundle(bundle, site_config, run_config, tariff, profiles)
    print(f"  ✓ Created bundle at {bundle}")


if __name__ == "__main__":
    BUNDLES_DIR.mkdir(parents=True, exist_ok=True)
    generate_pv_storage_nem()
    generate_demand_charge_peak_shave()
    print("\n✓ All example bundles generated")
