"""Data format helpers for Parquet and tabular I/O."""

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from dersim_engine.core.constants import COL_TIMESTAMP, REQUIRED_INPUT_COLUMNS


def ensure_columns(df: pd.DataFrame, required_columns: list[str] = REQUIRED_INPUT_COLUMNS) -> None:
    """Ensure dataframe has required columns.

    Args:
        df: DataFrame to check
        required_columns: List of required column names

    Raises:
        ValueError: If any required columns are missing
    """
    missing = set(required_columns) - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns: {missing}")


def read_parquet_timeseries(path: str) -> pd.DataFrame:
    """Read timeseries from Parquet file.

    Args:
        path: Path to Parquet file

    Returns:
        DataFrame with DatetimeIndex
    """
    df = pd.read_parquet(path)

    if COL_TIMESTAMP not in df.columns:
        raise ValueError(f"Timeseries must have '{COL_TIMESTAMP}' column")

    df[COL_TIMESTAMP] = pd.to_datetime(df[COL_TIMESTAMP])
    df = df.set_index(COL_TIMESTAMP)
    ensure_columns(df)

    return df


def write_parquet_timeseries(df: pd.DataFrame, path: str) -> None:
    """Write timeseries to Parquet file, storing the index as a timestamp column.

    Args:
        df: DataFrame with DatetimeIndex
        path: Output path
    """
    df_out = df.rename_axis(COL_TIMESTAMP).reset_index()
    table = pa.Table.from_pandas(df_out, preserve_index=False)
    pq.write_table(table, path, compression="snappy")


def write_bill(bill: pd.DataFrame, path: str) -> None:
    """Write an itemised bill as CSV with the month column first."""
    bill.to_csv(path, index=True, float_format="%.2f")
