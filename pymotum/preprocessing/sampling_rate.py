"""
Sampling rate analysis module for pymotum.

Summarises how often each track was sampled, which guides the choice of the
prediction ``time_step`` for ``fit_ssm``.
"""

from typing import Union

import numpy as np
import pandas as pd
import polars as pl

from pymotum.preprocessing.loading import _to_pandas


def get_sampling_rate(df: Union[pd.DataFrame, pl.DataFrame], time_col: str = "date") -> pd.DataFrame:
    """
    Per-track sampling intervals in hours.

    Parameters
    ----------
    df : pd.DataFrame or pl.DataFrame
        Observation table with ``id`` and a time column.
    time_col : str, default='date'
        Name of the time column; strings are parsed with ``pandas.to_datetime``.

    Returns
    -------
    pd.DataFrame
        Columns ``id, n, median_h, mean_h, max_h``. Tracks with a single fix
        have NaN intervals.

    Raises
    ------
    ValueError
        If the id or time column is missing.

    Examples
    --------
    >>> rates = pm.preprocessing.get_sampling_rate(obs)
    >>> rates[["id", "median_h"]]
    """
    pdf = _to_pandas(df)
    for col in ("id", time_col):
        if col not in pdf.columns:
            raise ValueError(f"Column '{col}' not found in DataFrame.")

    times = pd.to_datetime(pdf[time_col])
    rows = []
    for track_id, t in times.groupby(pdf["id"], sort=False):
        diffs = np.diff(np.sort(t.to_numpy())) / np.timedelta64(1, "h")
        if len(diffs):
            rows.append((track_id, len(t), float(np.median(diffs)), float(np.mean(diffs)), float(np.max(diffs))))
        else:
            rows.append((track_id, len(t), np.nan, np.nan, np.nan))
    return pd.DataFrame(rows, columns=["id", "n", "median_h", "mean_h", "max_h"])


def suggest_time_step(df: Union[pd.DataFrame, pl.DataFrame], time_col: str = "date") -> float:
    """
    Median sampling interval across all tracks, rounded to a whole hour
    (at least 1).
    """
    rates = get_sampling_rate(df, time_col)
    median = float(np.nanmedian(rates["median_h"])) if rates["median_h"].notna().any() else np.nan
    if not np.isfinite(median):
        raise ValueError("Need at least one track with two or more fixes.")
    return float(max(1, round(median)))
