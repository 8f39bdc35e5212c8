"""
One-step-ahead prediction residuals for state-space fits.

For each kept observation after the first, the model's one-step-ahead
prediction (conditioned on all earlier observations) is compared with the
observation and standardised by the innovation variance, separately for the x
and y coordinates. Under a well-specified model the residuals are approximately
iid standard normal, which is assessed with time-series, QQ and autocorrelation
plots (see ``utilities.visualization.plot_osar``).

Residuals are computed on demand and cached on each ``FittedTrack``; calling
``osar`` again on the same fit re-uses the cache.
"""

import logging
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from pymotum.modelling.ssm import FittedTrack, SSMFit

logger = logging.getLogger(__name__)

RESIDUAL_COLUMNS = ["id", "date", "coord", "residual"]


def _track_residuals(track: FittedTrack) -> pd.DataFrame:
    if track._osar_cache is not None:
        return track._osar_cache

    fr = track.filter_result()
    idx = track.observed_steps()[1:]
    v = fr.innovations[idx]
    sd_x = np.sqrt(fr.S[idx, 0, 0])
    sd_y = np.sqrt(fr.S[idx, 1, 1])
    dates = track._problem.t[idx]

    res = pd.concat(
        [
            pd.DataFrame({"id": track.id, "date": dates, "coord": "x", "residual": v[:, 0] / sd_x}),
            pd.DataFrame({"id": track.id, "date": dates, "coord": "y", "residual": v[:, 1] / sd_y}),
        ],
        ignore_index=True,
    )
    track._osar_cache = res
    return res


def osar(fit: SSMFit, ids: Optional[Iterable[str]] = None) -> pd.DataFrame:
    """
    One-step-ahead standardised residuals for every fitted track.

    Parameters
    ----------
    fit : SSMFit
        Result of ``fit_ssm``.
    ids : iterable of str, optional
        Restrict to these tracks.

    Returns
    -------
    pd.DataFrame
        Columns ``id, date, coord ('x' | 'y'), residual``; x rows then y rows
        per track.

    Examples
    --------
    >>> res = pm.modelling.osar(fit)
    >>> pm.utilities.visualization.plot_osar(res, kind="qq")
    """
    wanted = set(ids) if ids is not None else None
    frames = []
    for result in fit:
        if wanted is not None and result.id not in wanted:
            continue
        if not isinstance(result, FittedTrack):
            logger.info("osar: skipping track %r (%s failed)", result.id, result.step)
            continue
        frames.append(_track_residuals(result))

    if not frames:
        return pd.DataFrame(columns=RESIDUAL_COLUMNS)
    return pd.concat(frames, ignore_index=True)


def residual_summary(res: pd.DataFrame) -> pd.DataFrame:
    """
    Mean, standard deviation and lag-1 autocorrelation of residuals per track
    and coordinate. A well-fitting model gives values near 0, 1 and 0.
    """

    def _stats(r: pd.Series) -> pd.Series:
        values = r.to_numpy(dtype=float)
        values = values[np.isfinite(values)]
        if len(values) > 2:
            centred = values - values.mean()
            denom = np.sum(centred ** 2)
            acf1 = float(np.sum(centred[1:] * centred[:-1]) / denom) if denom > 0 else np.nan
        else:
            acf1 = np.nan
        return pd.Series(
            {
                "n": len(values),
                "mean": float(np.mean(values)) if len(values) else np.nan,
                "sd": float(np.std(values, ddof=1)) if len(values) > 1 else np.nan,
                "acf1": acf1,
            }
        )

    return res.groupby(["id", "coord"], sort=False)["residual"].apply(_stats).unstack().reset_index()
