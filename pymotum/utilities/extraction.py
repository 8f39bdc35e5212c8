"""
Extraction and join utilities for pymotum.

``grab`` flattens model results into one table across tracks, ``join`` merges
regularised locations with move-persistence estimates, and ``export_csv``
writes any of these tables for downstream tools.
"""

from pathlib import Path
from typing import Union

import geopandas as gpd
import numpy as np
import pandas as pd
from shapely.geometry import Point

from pymotum.modelling.mpm import FITTED_COLUMNS, MPMFit
from pymotum.modelling.ssm import SSMFit

_WHATS = ("fitted", "predicted", "data")


def _to_geo(table: pd.DataFrame) -> gpd.GeoDataFrame:
    geometry = [Point(xy) for xy in zip(table["lon"].to_numpy(), table["lat"].to_numpy())]
    return gpd.GeoDataFrame(table.copy(), geometry=geometry, crs="EPSG:4326")


def _normalise(table: pd.DataFrame, group: bool) -> pd.DataFrame:
    """Rescale g to [0, 1], per track unless ``group``."""
    out = table.copy()

    def _scale(g: pd.Series) -> pd.Series:
        lo, hi = g.min(), g.max()
        if not np.isfinite(lo) or hi - lo <= 0:
            return g * 0 + 0.5
        return (g - lo) / (hi - lo)

    if group:
        out["g"] = _scale(out["g"])
    else:
        out["g"] = out.groupby("id", sort=False)["g"].transform(_scale)
    return out


def grab(
    obj: Union[SSMFit, MPMFit],
    what: str = "fitted",
    as_geo: bool = False,
    normalise: bool = False,
    group: bool = False,
) -> Union[pd.DataFrame, gpd.GeoDataFrame]:
    """
    Extract a flat table from an ``SSMFit`` or ``MPMFit``.

    Parameters
    ----------
    obj : SSMFit or MPMFit
        A model result.
    what : {'fitted', 'predicted', 'data'}, default='fitted'
        For an SSMFit: locations at observation times, on the regular grid, or
        the prefiltered observations. An MPMFit only has 'fitted'.
    as_geo : bool, default=False
        Return a GeoDataFrame of points in EPSG:4326 (SSMFit only).
    normalise : bool, default=False
        For an MPMFit, rescale g to [0, 1].
    group : bool, default=False
        Normalise across all tracks together rather than per track.

    Returns
    -------
    pd.DataFrame or gpd.GeoDataFrame
        Rows of all successful tracks, in track order.

    Examples
    --------
    >>> pred = pm.utilities.grab(fit, "predicted")
    >>> g = pm.utilities.grab(mp, normalise=True)
    """
    if what not in _WHATS:
        raise ValueError(f"what must be one of {_WHATS}")

    if isinstance(obj, MPMFit):
        if what != "fitted":
            raise ValueError("an MPMFit only has 'fitted' estimates")
        table = obj.fitted
        if normalise and len(table):
            table = _normalise(table, group)
        return table

    if not isinstance(obj, SSMFit):
        raise TypeError("grab expects an SSMFit or MPMFit")

    frames = [getattr(t, what) for t in obj.tracks]
    if frames:
        table = pd.concat(frames, ignore_index=True)
    else:
        table = pd.DataFrame(columns=["id", "date", "lon", "lat"])
    if as_geo:
        return _to_geo(table)
    return table


def join(
    ssm_fit: SSMFit,
    mpm_fit: MPMFit,
    what_ssm: str = "predicted",
    normalise: bool = False,
    group: bool = False,
    as_geo: bool = False,
) -> Union[pd.DataFrame, gpd.GeoDataFrame]:
    """
    Left-join SSM locations with move-persistence estimates on (id, date).

    Every location row is kept; ``g`` and its standard error are NaN where no
    estimate exists (e.g. a track whose ``fit_mpm`` failed).

    Parameters
    ----------
    ssm_fit : SSMFit
        Regularised tracks.
    mpm_fit : MPMFit
        Move-persistence estimates, usually from ``fit_mpm(ssm_fit)``.
    what_ssm : {'predicted', 'fitted'}, default='predicted'
        Which SSM locations to annotate.
    normalise, group : bool
        See ``grab``.
    as_geo : bool, default=False
        Return a GeoDataFrame.

    Returns
    -------
    pd.DataFrame or gpd.GeoDataFrame
        Same number of rows as ``grab(ssm_fit, what_ssm)``.
    """
    if what_ssm not in ("predicted", "fitted"):
        raise ValueError("what_ssm must be 'predicted' or 'fitted'")
    locs = grab(ssm_fit, what_ssm)
    g = grab(mpm_fit, "fitted", normalise=normalise, group=group)

    # An mp SSM already carries g; the behavioural estimate takes precedence
    locs = locs.drop(columns=[c for c in FITTED_COLUMNS[2:] if c in locs.columns])
    if len(g) == 0 or len(locs) == 0:
        combined = locs.copy()
        for col in FITTED_COLUMNS[2:]:
            combined[col] = np.nan
    else:
        g = g[FITTED_COLUMNS].drop_duplicates(subset=["id", "date"])
        g = g.astype({"id": str, "date": "datetime64[ns]"})
        locs = locs.astype({"id": str, "date": "datetime64[ns]"})
        combined = locs.merge(g, on=["id", "date"], how="left", validate="many_to_one")

    if as_geo:
        return _to_geo(combined)
    return combined


def export_csv(table: pd.DataFrame, path: Union[str, Path], **kwargs) -> Path:
    """
    Write a table to delimited text with ``YYYY-mm-dd HH:MM:SS`` dates.

    Geometry columns are dropped. Extra keyword arguments go to
    ``pandas.DataFrame.to_csv``.
    """
    path = Path(path)
    out = pd.DataFrame(table.drop(columns="geometry", errors="ignore"))
    kwargs.setdefault("index", False)
    kwargs.setdefault("date_format", "%Y-%m-%d %H:%M:%S")
    out.to_csv(path, **kwargs)
    return path
