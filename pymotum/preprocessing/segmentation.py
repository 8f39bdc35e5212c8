"""
Track segmentation module for pymotum.

Splits tracks at long transmission gaps so each segment can be regularised on
its own, instead of interpolating across weeks without data.
"""

import warnings
from typing import Union

import numpy as np
import pandas as pd
import polars as pl

from pymotum.preprocessing.loading import _to_pandas


def split_by_gap(
    df: Union[pd.DataFrame, pl.DataFrame],
    gap_hours: float = 72.0,
    min_obs: int = 10,
) -> pd.DataFrame:
    """
    Split tracks into segments wherever consecutive fixes are more than
    ``gap_hours`` apart.

    Parameters
    ----------
    df : pd.DataFrame or pl.DataFrame
        Observation table with ``id`` and ``date`` columns (e.g. from
        ``read_tracks``).
    gap_hours : float, default=72
        Largest allowed interval between consecutive fixes of one segment.
    min_obs : int, default=10
        Segments with fewer fixes are dropped.

    Returns
    -------
    pd.DataFrame
        All columns of the input. A track that splits gets ids ``<id>_1``,
        ``<id>_2``, ...; a track without gaps keeps its id. Rows are sorted by
        id and date within each track.

    Examples
    --------
    >>> obs = pm.preprocessing.read_tracks("tracks.csv")
    >>> segs = pm.preprocessing.split_by_gap(obs, gap_hours=48, min_obs=20)
    >>> fit = pm.modelling.fit_ssm(segs, time_step=6)
    """
    if gap_hours <= 0:
        raise ValueError("gap_hours must be positive")
    pdf = _to_pandas(df)
    if not {"id", "date"}.issubset(pdf.columns):
        raise ValueError("df needs 'id' and 'date' columns")
    if pdf.empty:
        return pdf

    pdf["date"] = pd.to_datetime(pdf["date"])
    threshold = pd.Timedelta(hours=gap_hours)

    segments = []
    dropped = 0
    for track_id, track in pdf.groupby("id", sort=False):
        track = track.sort_values("date", kind="stable")
        time_diffs = np.diff(track["date"].to_numpy())
        split_indices = np.where(time_diffs > threshold)[0] + 1
        bounds = np.concatenate(([0], split_indices, [len(track)]))

        parts = [track.iloc[start:stop].copy() for start, stop in zip(bounds[:-1], bounds[1:])]
        kept = [p for p in parts if len(p) >= min_obs]
        dropped += len(parts) - len(kept)
        if len(parts) > 1:
            for k, part in enumerate(kept, start=1):
                part["id"] = f"{track_id}_{k}"
        segments.extend(kept)

    if dropped:
        warnings.warn(f"split_by_gap dropped {dropped} segment(s) with fewer than {min_obs} fixes")
    if not segments:
        return pdf.iloc[0:0].reset_index(drop=True)
    return pd.concat(segments, ignore_index=True)
