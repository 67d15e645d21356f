"""Run bundle I/O operations.

A run bundle is a folder containing:
- site_config.yaml: Site configuration
- run_config.yaml: Run configuration
- tariff.yaml: Tariff configuration
- timeseries.parquet: Input profiles
- (outputs):
  - time_series_results.parquet: Simulated dispatch
  - electricity_bill.csv / baseline_electricity_bill.csv: Itemised bills
  - tiered_energy_results.parquet: Tier usage (tiered tariffs only)
  - metrics.json: Computed metrics
  - investment_costs.json: Sized asset costs (capacity expansion only)
  - solve_stats.json: Per-segment solver statistics
  - bundle_metadata.json: Reproducibility metadata
  - logs/: Per-segment solver logs, if requested
"""

import json
from pathlib import Path
from typing import Optional

import pandas as pd
import yaml

from dersim_engine import __version__
from dersim_engine.core.schemas import (
    BundleMetadata,
    RunConfig,
    SiteConfig,
    SolveStats,
    TariffConfig,
)
from dersim_engine.io.formats import read_parquet_timeseries, write_bill, write_parquet_timeseries

REQUIRED_FILES = ["site_config.yaml", "run_config.yaml", "tariff.yaml", "timeseries.parquet"]
LOG_DIR = "logs"


def _load_yaml(path: Path) -> dict:
    with open(path) as f:
        return yaml.safe_load(f) or {}


def load_bundle(
    bundle_path: str | Path,
) -> tuple[SiteConfig, RunConfig, TariffConfig, pd.DataFrame]:
    """Load a run bundle.

    Args:
        bundle_path: Path to bundle directory

    Returns:
        Tuple of (site_config, run_config, tariff_config, timeseries_df)
    """
    bundle_path = Path(bundle_path)

    if not bundle_path.exists():
        raise FileNotFoundError(f"Bundle not found: {bundle_path}")

    site_config = SiteConfig(**_load_yaml(bundle_path / "site_config.yaml"))
    run_config = RunConfig(**_load_yaml(bundle_path / "run_config.yaml"))
    tariff_config = TariffConfig(**_load_yaml(bundle_path / "tariff.yaml"))

    timeseries = read_parquet_timeseries(str(bundle_path / "timeseries.parquet"))

    return site_config, run_config, tariff_config, timeseries


def write_results(
    bundle_path: str | Path,
    time_series: pd.DataFrame,
    bill: pd.DataFrame,
    segment_stats: list[SolveStats],
    run_config: RunConfig,
    metrics: Optional[dict] = None,
    baseline_bill: Optional[pd.DataFrame] = None,
    tiered_energy: Optional[pd.DataFrame] = None,
    investment_costs: Optional[dict] = None,
) -> None:
    """Write simulation results to bundle.

    Args:
        bundle_path: Path to bundle directory
        time_series: Simulated time series
        bill: Itemised electricity bill
        segment_stats: Per-segment solver statistics
        run_config: Run configuration
        metrics: Optional metrics dictionary
        baseline_bill: Optional bill of the no-DER baseline
        tiered_energy: Optional tier usage table
        investment_costs: Optional investment cost results
    """
    bundle_path = Path(bundle_path)
    bundle_path.mkdir(exist_ok=True)

    write_parquet_timeseries(time_series, str(bundle_path / "time_series_results.parquet"))
    write_bill(bill, str(bundle_path / "electricity_bill.csv"))

    if baseline_bill is not None:
        write_bill(baseline_bill, str(bundle_path / "baseline_electricity_bill.csv"))

    if tiered_energy is not None and not tiered_energy.empty:
        tiered_energy.to_parquet(bundle_path / "tiered_energy_results.parquet", index=False)

    with open(bundle_path / "solve_stats.json", "w") as f:
        json.dump([s.model_dump() for s in segment_stats], f, indent=2, default=str)

    if metrics is not None:
        with open(bundle_path / "metrics.json", "w") as f:
            json.dump(metrics, f, indent=2, default=str)

    if investment_costs:
        with open(bundle_path / "investment_costs.json", "w") as f:
            json.dump(investment_costs, f, indent=2, default=str)

    metadata = BundleMetadata(
        dersim_version=__version__,
        solver_name=run_config.solver_name,
        num_segments=len(segment_stats),
    )
    with open(bundle_path / "bundle_metadata.json", "w") as f:
        json.dump(metadata.model_dump(), f, indent=2, default=str)


def init_bundle(
    bundle_path: str | Path,
    site_config: SiteConfig,
    run_config: RunConfig,
    tariff_config: TariffConfig,
    timeseries: pd.DataFrame,
) -> None:
    """Initialize a new run bundle.

    Args:
        bundle_path: Path to bundle directory
        site_config: Site configuration
        run_config: Run configuration
        tariff_config: Tariff configuration
        timeseries: Input timeseries dataframe
    """
    bundle_path = Path(bundle_path)
    bundle_path.mkdir(parents=True, exist_ok=True)

    for filename, config in [
        ("site_config.yaml", site_config),
        ("run_config.yaml", run_config),
        ("tariff.yaml", tariff_config),
    ]:
        with open(bundle_path / filename, "w") as f:
            yaml.safe_dump(config.model_dump(mode="json"), f, default_flow_style=False)

    write_parquet_timeseries(timeseries, str(bundle_path / "timeseries.parquet"))


def validate_bundle(bundle_path: str | Path) -> bool:
    """Validate that a bundle has all required files and parseable configs.

    Args:
        bundle_path: Path to bundle directory

    Returns:
        True if valid

    Raises:
        ValueError: If bundle is invalid
    """
    bundle_path = Path(bundle_path)

    for filename in REQUIRED_FILES:
        if not (bundle_path / filename).exists():
            raise ValueError(f"Missing required file: {filename}")

    load_bundle(bundle_path)
    return True
