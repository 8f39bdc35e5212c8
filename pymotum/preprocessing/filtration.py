"""
Observation prefiltering module for pymotum.

Before a state-space model is fitted, raw telemetry is cleaned so that gross
errors do not dominate the likelihood. Prefiltering never deletes rows: rejected
observations stay in the table with ``keep=False`` and a ``filtered_by`` reason,
so they can still be plotted against the fit.

Steps (per track, in order):
1. Sort by date and resolve duplicate timestamps, keeping the best location class
2. Minimum time gap: reject fixes arriving less than ``min_dt`` seconds after the
   previous kept fix
3. Speed filter: iterative McConnell et al. (1992) filter removing fixes whose
   root-mean-square speed to their neighbours exceeds ``vmax``
4. Spike filter: reject sharp out-and-back spikes (small internal angle with
   both legs longer than a distance limit), following Freitas et al. (2008)
5. Attach the measurement-error model and project kept fixes to a per-track
   AEQD plane (km)
"""

import warnings
from typing import Optional, Sequence

import numpy as np
import pandas as pd
from pyproj import Geod

from pymotum.modelling.measurement import assign_error_model
from pymotum.modelling.projection import project_track
from pymotum.preprocessing.loading import LOCATION_CLASSES, format_data

# Single Geod instance for WGS84 ellipsoid calculations
_geod = Geod(ellps="WGS84")

_LC_RANK = {lc: i for i, lc in enumerate(LOCATION_CLASSES)}
_LC_RANK["GL"] = len(LOCATION_CLASSES)


def _rms_speeds(lon: np.ndarray, lat: np.ndarray, t_s: np.ndarray) -> np.ndarray:
    """
    Root-mean-square speed (m/s) of each fix to its two neighbours on either side.

    Endpoints average over whichever neighbours exist.
    """
    n = len(lon)
    sq_sum = np.zeros(n)
    count = np.zeros(n)
    for lag in (1, 2):
        if n <= lag:
            break
        _, _, dist = _geod.inv(lon[:-lag], lat[:-lag], lon[lag:], lat[lag:])
        dt = np.maximum(np.abs(t_s[lag:] - t_s[:-lag]), 1.0)
        speed2 = (np.asarray(dist) / dt) ** 2
        # Each pair contributes to both of its members
        sq_sum[lag:] += speed2
        count[lag:] += 1
        sq_sum[:-lag] += speed2
        count[:-lag] += 1
    with np.errstate(invalid="ignore", divide="ignore"):
        rms = np.sqrt(sq_sum / count)
    return np.nan_to_num(rms, nan=0.0)


def speed_filter(
    lon: Sequence[float],
    lat: Sequence[float],
    times: Sequence,
    vmax: float = 5.0,
) -> np.ndarray:
    """
    Iterative McConnell speed filter.

    At each pass the single fix with the largest RMS neighbour speed is removed
    if that speed exceeds ``vmax``; speeds are then recomputed on the survivors.

    Parameters
    ----------
    lon, lat : array-like
        Fix coordinates in decimal degrees, time-ordered.
    times : array-like
        Datetime-like timestamps.
    vmax : float, default=5.0
        Maximum plausible speed in m/s.

    Returns
    -------
    np.ndarray of bool
        True for fixes that pass.
    """
    lon = np.asarray(lon, dtype=float)
    lat = np.asarray(lat, dtype=float)
    t_s = pd.to_datetime(np.asarray(times)).to_numpy(dtype="datetime64[ns]").astype("int64") / 1e9
    keep = np.ones(len(lon), dtype=bool)

    while keep.sum() > 2:
        idx = np.nonzero(keep)[0]
        rms = _rms_speeds(lon[idx], lat[idx], t_s[idx])
        worst = int(np.argmax(rms))
        if rms[worst] <= vmax:
            break
        keep[idx[worst]] = False
    return keep


def sda_filter(
    lon: Sequence[float],
    lat: Sequence[float],
    times: Sequence,
    vmax: float = 5.0,
    ang: Sequence[float] = (15.0, 25.0),
    distlim: Sequence[float] = (2500.0, 5000.0),
) -> np.ndarray:
    """
    Speed-distance-angle filter: the speed filter followed by the spike filter.

    A surviving fix is rejected when the internal angle between its incoming and
    outgoing legs is smaller than ``ang[k]`` degrees and both legs are longer
    than ``distlim[k]`` metres, for any k.

    Returns
    -------
    np.ndarray of bool
        True for fixes that pass.
    """
    if len(ang) != len(distlim):
        raise ValueError("ang and distlim must have the same length")

    keep = speed_filter(lon, lat, times, vmax=vmax)
    idx = np.nonzero(keep)[0]
    if len(idx) < 3 or len(ang) == 0:
        return keep

    lon_k = np.asarray(lon, dtype=float)[idx]
    lat_k = np.asarray(lat, dtype=float)[idx]

    # Legs seen from the middle fix: towards previous and towards next
    az_prev, _, d_prev = _geod.inv(lon_k[1:-1], lat_k[1:-1], lon_k[:-2], lat_k[:-2])
    az_next, _, d_next = _geod.inv(lon_k[1:-1], lat_k[1:-1], lon_k[2:], lat_k[2:])
    internal = np.abs(np.asarray(az_prev) - np.asarray(az_next)) % 360.0
    internal = np.minimum(internal, 360.0 - internal)

    spike = np.zeros(len(idx) - 2, dtype=bool)
    for a, d in zip(ang, distlim):
        spike |= (internal < a) & (np.asarray(d_prev) > d) & (np.asarray(d_next) > d)

    keep[idx[1:-1][spike]] = False
    return keep


def _min_dt_mask(dates: np.ndarray, keep: np.ndarray, min_dt: float) -> np.ndarray:
    out = keep.copy()
    t_s = dates.astype("datetime64[ns]").astype("int64") / 1e9
    last: Optional[float] = None
    for i in range(len(t_s)):
        if not out[i]:
            continue
        if last is not None and (t_s[i] - last) < min_dt:
            out[i] = False
            continue
        last = t_s[i]
    return out


def prefilter(
    df: pd.DataFrame,
    vmax: float = 5.0,
    ang: Sequence[float] = (15.0, 25.0),
    distlim: Sequence[float] = (2500.0, 5000.0),
    spdf: bool = True,
    min_dt: float = 0.0,
) -> pd.DataFrame:
    """
    Flag duplicate, too-frequent and implausible observations and attach the
    measurement-error model.

    Parameters
    ----------
    df : pd.DataFrame
        Observation table (raw tables are passed through ``format_data`` first).
    vmax : float, default=5.0
        Maximum plausible travel speed in m/s.
    ang : sequence of float, default=(15, 25)
        Spike internal angles in degrees. Use an empty tuple to skip the spike
        filter.
    distlim : sequence of float, default=(2500, 5000)
        Leg lengths in metres paired with ``ang``.
    spdf : bool, default=True
        Apply the speed/distance/angle filter.
    min_dt : float, default=0.0
        Minimum seconds between consecutive kept fixes.

    Returns
    -------
    pd.DataFrame
        Copy of the input grouped by ``id`` (in order of first appearance) and
        sorted by ``date``, with extra columns
        ``keep``, ``filtered_by``, ``obs_type``, ``emf_x``, ``emf_y``, ``x``,
        ``y`` (km; NaN for rejected rows).

    Examples
    --------
    >>> obs = pm.preprocessing.read_tracks("tracks.csv")
    >>> clean = pm.preprocessing.prefilter(obs, vmax=3, min_dt=60)
    >>> clean.loc[~clean["keep"], "filtered_by"].value_counts()
    """
    if not pd.api.types.is_datetime64_any_dtype(df["date"]) or not {"id", "lc", "lon", "lat"}.issubset(df.columns):
        df = format_data(df)

    pdf = df.copy()
    pdf["_order"] = pd.factorize(pdf["id"])[0]
    pdf["_rank"] = pdf["lc"].map(_LC_RANK).fillna(len(_LC_RANK)).astype(int)
    pdf = pdf.sort_values(["_order", "date", "_rank"], kind="mergesort").reset_index(drop=True)

    keep = np.ones(len(pdf), dtype=bool)
    reason = np.full(len(pdf), "", dtype=object)

    # ========== Duplicate Timestamps ==========
    dup = pdf.duplicated(subset=["id", "date"], keep="first").to_numpy()
    keep[dup] = False
    reason[dup] = "duplicate"

    counts = {"duplicate": int(dup.sum()), "min_dt": 0, "speed": 0}
    x_all = np.full(len(pdf), np.nan)
    y_all = np.full(len(pdf), np.nan)

    for _, rows in pdf.groupby("id", sort=False).indices.items():
        rows = np.asarray(rows)
        dates = pdf["date"].to_numpy(dtype="datetime64[ns]")[rows]

        # ========== Minimum Time Gap ==========
        if min_dt > 0:
            before = keep[rows].copy()
            after = _min_dt_mask(dates, before, min_dt)
            newly = before & ~after
            reason[rows[newly]] = "min_dt"
            keep[rows] = after
            counts["min_dt"] += int(newly.sum())

        # ========== Speed / Distance / Angle ==========
        kept_rows = rows[keep[rows]]
        if spdf and len(kept_rows) > 2:
            passed = sda_filter(
                pdf["lon"].to_numpy(dtype=float)[kept_rows],
                pdf["lat"].to_numpy(dtype=float)[kept_rows],
                pdf["date"].to_numpy(dtype="datetime64[ns]")[kept_rows],
                vmax=vmax,
                ang=ang,
                distlim=distlim,
            )
            rejected = kept_rows[~passed]
            keep[rejected] = False
            reason[rejected] = "speed"
            counts["speed"] += len(rejected)
            kept_rows = kept_rows[passed]

        # ========== Projection ==========
        if len(kept_rows) > 0:
            x, y, _ = project_track(
                pdf["lon"].to_numpy(dtype=float)[kept_rows],
                pdf["lat"].to_numpy(dtype=float)[kept_rows],
            )
            x_all[kept_rows] = x
            y_all[kept_rows] = y

    pdf = pdf.drop(columns=["_order", "_rank"])
    pdf["keep"] = keep
    pdf["filtered_by"] = reason
    pdf = assign_error_model(pdf)
    pdf["x"] = x_all
    pdf["y"] = y_all

    removed = {k: v for k, v in counts.items() if v}
    if removed:
        summary = ", ".join(f"{v} by {k}" for k, v in removed.items())
        warnings.warn(f"prefilter flagged {sum(removed.values())} of {len(pdf)} observations ({summary}).")
    return pdf
