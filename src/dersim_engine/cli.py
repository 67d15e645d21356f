"""Command-line interface for the dersim engine."""

import json
import logging
from pathlib import Path

import typer

from dersim_engine import __version__

app = typer.Typer(
    help="Behind-the-Meter DER Dispatch and Bill Simulation Engine",
    no_args_is_help=True,
)


@app.command()
def version():
    """Show dersim version."""
    typer.echo(f"dersim engine v{__version__}")


@app.command()
def validate(bundle_path: str):
    """Validate a run bundle.

    Args:
        bundle_path: Path to bundle directory
    """
    from dersim_engine.io.bundle import validate_bundle

    try:
        validate_bundle(bundle_path)
        typer.secho(f"✓ Bundle at {bundle_path} is valid", fg=typer.colors.GREEN)
    except Exception as e:
        typer.secho(f"✗ Bundle validation failed: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)


@app.command()
def simulate(
    bundle_path: str,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log per-segment progress"),
):
    """Run the annual simulation on a bundle.

    Args:
        bundle_path: Path to bundle directory
        verbose: Enable debug logging
    """
    from dersim_engine.core.errors import DersimError
    from dersim_engine.core.validate import ValidationError
    from dersim_engine.runners.annual import run_annual_simulation

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        _, metrics = run_annual_simulation(bundle_path)
    except (DersimError, ValidationError, ValueError, FileNotFoundError) as e:
        typer.secho(f"\n✗ Simulation failed: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    typer.secho("\n✓ Simulation completed successfully", fg=typer.colors.GREEN)
    typer.echo(f"Savings vs baseline: ${metrics['savings']:.2f} ({metrics['savings_pct']:.1f}%)")


@app.command()
def sensitivity(
    bundle_path: str,
    target: str = typer.Argument(..., help="run, tariff, demand, solar or storage"),
    parameter: str = typer.Argument(..., help="Field name within the target"),
    values: list[str] = typer.Argument(..., help="Values to simulate"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log per-segment progress"),
):
    """Simulate a bundle once per value of a single parameter.

    Each scenario's time series is written under the bundle's sensitivity/ folder.
    """
    from dersim_engine.core.errors import DersimError
    from dersim_engine.core.validate import ValidationError
    from dersim_engine.runners.sensitivity import run_bundle_sensitivity

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        results = run_bundle_sensitivity(bundle_path, target, parameter, values)
    except (DersimError, ValidationError, ValueError, FileNotFoundError) as e:
        typer.secho(f"\n✗ Sensitivity analysis failed: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    typer.secho(f"\n✓ Simulated {len(results)} scenarios", fg=typer.colors.GREEN)
    for name in results:
        typer.echo(f"  {name}")


@app.command()
def report(bundle_path: str):
    """Print the bill and metrics of a simulated bundle.

    Args:
        bundle_path: Path to bundle directory
    """
    import pandas as pd

    bundle_path_obj = Path(bundle_path)
    metrics_file = bundle_path_obj / "metrics.json"
    bill_file = bundle_path_obj / "electricity_bill.csv"
    if not metrics_file.exists() or not bill_file.exists():
        typer.secho(
            "✗ No results found in bundle. Run simulate first.",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(1)

    with open(metrics_file) as f:
        metrics = json.load(f)
    bill = pd.read_csv(bill_file, index_col="month")

    typer.echo("\n" + "=" * 60)
    typer.echo("ANNUAL SIMULATION RESULTS")
    typer.echo("=" * 60)

    typer.echo("\nElectricity Bill:")
    typer.echo(bill.round(2).to_string())

    typer.echo("\nCost Analysis:")
    typer.echo(f"  Baseline bill:    ${metrics['baseline_cost']:.2f}")
    typer.echo(f"  Optimized bill:   ${metrics['optimal_cost']:.2f}")
    typer.echo(f"  Savings:          ${metrics['savings']:.2f} ({metrics['savings_pct']:.1f}%)")

    typer.echo("\nPeak Demand:")
    typer.echo(f"  Baseline peak:    {metrics['baseline_peak_kw']:.2f} kW")
    typer.echo(f"  Optimized peak:   {metrics['optimal_peak_kw']:.2f} kW")
    typer.echo(f"  Reduction:        {metrics['peak_reduction_kw']:.2f} kW")

    typer.echo("\nAssets:")
    typer.echo(f"  PV generation:    {metrics['pv_generation_kwh']:.2f} kWh")
    typer.echo(f"  BES throughput:   {metrics['battery_throughput_kwh']:.2f} kWh")
    typer.echo(f"  BES cycles:       {metrics['battery_cycles']:.2f}")

    typer.echo("\n" + "=" * 60 + "\n")

    typer.secho("✓ Report generated", fg=typer.colors.GREEN)


if __name__ == "__main__":
    app()
