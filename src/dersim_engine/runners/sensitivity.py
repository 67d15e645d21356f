"""Single-parameter sensitivity sweeps.

Each value of the swept parameter gets its own validated copy of the
configuration and its own full-year simulation. The base configuration is
never modified.
"""

import logging
from pathlib import Path
from typing import Any, Optional, Sequence

import pandas as pd
import pydantic

from dersim_engine.core.errors import ConfigurationError
from dersim_engine.core.profiles import prepare_profiles
from dersim_engine.core.schemas import RunConfig, SiteConfig, TariffConfig
from dersim_engine.core.validate import validate_timeseries
from dersim_engine.io.bundle import LOG_DIR, load_bundle
from dersim_engine.io.formats import write_parquet_timeseries
from dersim_engine.runners.horizon import SimulationResult, run_simulation
from dersim_engine.tariff.profiles import compile_rate_profiles

logger = logging.getLogger(__name__)

SITE_SECTIONS = ("demand", "solar", "storage")
SENSITIVITY_TARGETS = ("run", "tariff") + SITE_SECTIONS
SENSITIVITY_DIR = "sensitivity"


def scenario_name(target: str, parameter: str, value: Any) -> str:
    return f"{target}_{parameter}_{value}"


def _updated(model: pydantic.BaseModel, parameter: str, value: Any) -> pydantic.BaseModel:
    if parameter not in type(model).model_fields:
        raise ConfigurationError(f"{type(model).__name__} has no parameter '{parameter}'")
    try:
        return type(model).model_validate({**model.model_dump(), parameter: value})
    except pydantic.ValidationError as e:
        raise ConfigurationError(f"Invalid value {value!r} for '{parameter}': {e}") from e


def update_config(
    site: SiteConfig,
    run: RunConfig,
    tariff: TariffConfig,
    target: str,
    parameter: str,
    value: Any,
) -> tuple[SiteConfig, RunConfig, TariffConfig]:
    """Copy the configuration with one parameter replaced and re-validated.

    Args:
        site: Site configuration
        run: Run configuration
        tariff: Tariff configuration
        target: "run", "tariff", or a site section ("demand", "solar", "storage")
        parameter: Field name within the target
        value: New value

    Returns:
        Tuple of (site, run, tariff) with the change applied

    Raises:
        ConfigurationError: If the target or parameter is unknown, or the value is invalid
    """
    if target == "run":
        return site, _updated(run, parameter, value), tariff
    if target == "tariff":
        return site, run, _updated(tariff, parameter, value)
    if target in SITE_SECTIONS:
        section = _updated(getattr(site, target), parameter, value)
        return site.model_copy(update={target: section}), run, tariff
    raise ConfigurationError(
        f"Unknown sensitivity target '{target}', expected one of {', '.join(SENSITIVITY_TARGETS)}"
    )


def run_sensitivity_analysis(
    timeseries: pd.DataFrame,
    site: SiteConfig,
    run: RunConfig,
    tariff: TariffConfig,
    target: str,
    parameter: str,
    values: Sequence[Any],
    output_dir: Optional[str | Path] = None,
) -> dict[str, SimulationResult]:
    """Simulate the year once per value of a single parameter.

    All scenario configurations are validated before any of them is solved.

    Args:
        timeseries: Raw input timeseries
        site: Base site configuration
        run: Base run configuration
        tariff: Base tariff configuration
        target: Configuration section holding the parameter
        parameter: Field name to sweep
        values: Values to simulate
        output_dir: If given, each scenario's time series is written to
            `<output_dir>/<scenario>/time_series_results.parquet`

    Returns:
        Simulation results keyed by scenario name
    """
    scenarios = {
        scenario_name(target, parameter, value): update_config(
            site, run, tariff, target, parameter, value
        )
        for value in values
    }

    results = {}
    for name, (scenario_site, scenario_run, scenario_tariff) in scenarios.items():
        logger.info("Running sensitivity scenario %s", name)

        scenario_dir = None
        if output_dir is not None:
            scenario_dir = Path(output_dir) / name
            scenario_dir.mkdir(parents=True, exist_ok=True)

        log_dir = None
        if scenario_dir is not None and scenario_run.save_solver_log:
            log_dir = scenario_dir / LOG_DIR
            log_dir.mkdir(exist_ok=True)

        profiles = prepare_profiles(timeseries, scenario_site, scenario_run)
        compiled = compile_rate_profiles(
            scenario_tariff, scenario_run.year, scenario_run.interval_minutes
        )
        result = run_simulation(
            compiled, profiles, scenario_run, scenario_tariff, scenario_site, log_dir
        )

        if scenario_dir is not None:
            write_parquet_timeseries(
                result.time_series, str(scenario_dir / "time_series_results.parquet")
            )
        results[name] = result

    return results


def run_bundle_sensitivity(
    bundle_path: str | Path, target: str, parameter: str, values: Sequence[Any]
) -> dict[str, SimulationResult]:
    """Sweep one parameter of a bundle, writing scenarios under `sensitivity/`."""
    bundle_path = Path(bundle_path)
    site, run, tariff, timeseries = load_bundle(bundle_path)
    validate_timeseries(timeseries)
    return run_sensitivity_analysis(
        timeseries,
        site,
        run,
        tariff,
        target,
        parameter,
        values,
        output_dir=bundle_path / SENSITIVITY_DIR,
    )
