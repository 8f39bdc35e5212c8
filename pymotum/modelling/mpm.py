"""
Move-persistence estimation module for pymotum.

The move-persistence model (Jonsen et al. 2019) describes each displacement as
a damped copy of the previous one:

    w_t = gamma_t^(r_t) * w_{t-1} + xi_t,      xi_t ~ N(0, diag(sigma_x^2, sigma_y^2))
    logit(gamma_t) = logit(gamma_{t-1}) + eps_t, eps_t ~ N(0, sigma_g^2 * r_t)

where ``w_t`` is the displacement into location t scaled to one nominal time
step and ``r_t`` is the step duration relative to the median step. ``gamma_t``
in (0, 1) is the move-persistence index: near 1 for directed, persistent
travel, near 0 for area-restricted, tortuous movement.

The latent ``logit(gamma)`` is estimated with a scalar Extended Kalman Filter
and RTS smoother; ``sigma_g``, ``sigma_x`` and ``sigma_y`` by maximum
likelihood. Two aggregation modes:

- ``mpm``: every track has its own parameters (independent fits)
- ``jmpm``: ``sigma_g`` is shared across all tracks (pooled), while
  ``sigma_x``/``sigma_y`` remain per track
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd
from scipy.optimize import minimize
from scipy.special import expit
from tqdm import tqdm

from pymotum.config import MPMConfig
from pymotum.modelling.kalman import numerical_hessian
from pymotum.modelling.projection import project_track
from pymotum.modelling.ssm import SSMFit, TrackFailure

logger = logging.getLogger(__name__)

MIN_LOCATIONS = 4
_PENALTY = 1e10
_LOG_2PI = np.log(2.0 * np.pi)
_LOG_BOUNDS = (-12.0, 6.0)

FITTED_COLUMNS = ["id", "date", "g", "g_se", "logit_g", "logit_g_se"]


@dataclass
class _Displacements:
    """Scaled displacements of one track, aligned with its locations."""

    id: str
    dates: np.ndarray
    w: np.ndarray  # (n, 2); rows 0 is NaN (no incoming displacement)
    r: np.ndarray  # (n,); step length over the median step, r[0] = 1

    @classmethod
    def from_locations(cls, track_id: str, dates: np.ndarray, xy: np.ndarray) -> "_Displacements":
        t = dates.astype("datetime64[ns]").astype("int64")
        dt = np.diff(t).astype(float)
        med = np.median(dt) if len(dt) else 1.0
        r = np.concatenate(([1.0], dt / med))
        d = np.diff(xy, axis=0)
        w = np.vstack((np.full((1, 2), np.nan), d / r[1:, None]))
        return cls(track_id, dates, w, r)

    @property
    def n(self) -> int:
        return len(self.dates)

    def start_scale(self) -> float:
        w = self.w[1:]
        return float(max(np.nanstd(w), 1e-3))


def _scalar_ekf(disp: _Displacements, sigma_g: float, sigma_x: float, sigma_y: float, store: bool = True):
    """
    Forward EKF over logit(gamma) followed (when ``store``) by the RTS smoother.

    Returns
    -------
    loglik : float
    g_smooth, P_smooth : np.ndarray or None
        Smoothed logit(gamma) and its variance per location.
    """
    n = disp.n
    Rm = np.diag([sigma_x ** 2, sigma_y ** 2])
    g_pred = np.zeros(n)
    P_pred = np.zeros(n)
    g_filt = np.zeros(n)
    P_filt = np.zeros(n)
    P_filt[0] = 1.0
    P_pred[0] = 1.0

    loglik = 0.0
    for t in range(1, n):
        r = disp.r[t]
        gp = g_filt[t - 1]
        Pp = P_filt[t - 1] + sigma_g ** 2 * r
        g_pred[t], P_pred[t] = gp, Pp

        w_prev = disp.w[t - 1]
        if t < 2 or not np.all(np.isfinite(w_prev)):
            g_filt[t], P_filt[t] = gp, Pp
            continue

        gam = expit(gp)
        a = gam ** r
        h = a * w_prev
        Hj = r * a * (1.0 - gam) * w_prev
        S = Pp * np.outer(Hj, Hj) + Rm
        det = S[0, 0] * S[1, 1] - S[0, 1] * S[1, 0]
        if not np.isfinite(det) or det <= 0:
            return -np.inf, None, None
        S_inv = np.array([[S[1, 1], -S[0, 1]], [-S[1, 0], S[0, 0]]]) / det
        v = disp.w[t] - h
        K = Pp * (Hj @ S_inv)
        g_filt[t] = gp + float(K @ v)
        P_filt[t] = max((1.0 - float(K @ Hj)) * Pp, 1e-12)
        loglik -= 0.5 * (np.log(det) + float(v @ S_inv @ v) + 2.0 * _LOG_2PI)

    if not np.isfinite(loglik):
        return -np.inf, None, None
    if not store:
        return loglik, None, None

    # ========== RTS Smoother (F = 1) ==========
    g_s = g_filt.copy()
    P_s = P_filt.copy()
    for t in range(n - 2, -1, -1):
        C = P_filt[t] / P_pred[t + 1]
        g_s[t] = g_filt[t] + C * (g_s[t + 1] - g_pred[t + 1])
        P_s[t] = P_filt[t] + C ** 2 * (P_s[t + 1] - P_pred[t + 1])
    return loglik, g_s, np.maximum(P_s, 0.0)


@dataclass
class MPMTrack:
    """Move-persistence estimates for one track."""

    id: str
    converged: bool
    nll: float
    parameters: Dict[str, float]
    std_errors: Dict[str, float]
    fitted: pd.DataFrame
    pooled: bool = False
    message: str = ""


class MPMFit:
    """Result of ``fit_mpm``: per-track estimates and failures in input order."""

    def __init__(self, results: "OrderedDict[str, Union[MPMTrack, TrackFailure]]", config: MPMConfig, nll: Optional[float] = None):
        self._results = results
        self.config = config
        self.model = config.model
        # Joint negative log-likelihood (jmpm) or sum over tracks (mpm)
        self.nll = nll

    def __iter__(self):
        return iter(self._results.values())

    def __len__(self) -> int:
        return len(self._results)

    def __getitem__(self, track_id: str):
        return self._results[track_id]

    def __repr__(self) -> str:
        return f"MPMFit(model={self.model!r}, tracks={len(self.tracks)}, failures={len(self.failures)})"

    @property
    def tracks(self) -> List[MPMTrack]:
        return [r for r in self._results.values() if isinstance(r, MPMTrack)]

    @property
    def failures(self) -> List[TrackFailure]:
        return [r for r in self._results.values() if isinstance(r, TrackFailure)]

    @property
    def converged(self) -> List[str]:
        return [t.id for t in self.tracks if t.converged]

    def raise_on_failure(self) -> None:
        """Raise ``ConvergenceFailure`` for the first failed track, if any."""
        if self.failures:
            raise self.failures[0].to_exception()

    @property
    def fitted(self) -> pd.DataFrame:
        frames = [t.fitted for t in self.tracks]
        if not frames:
            return pd.DataFrame(columns=FITTED_COLUMNS)
        return pd.concat(frames, ignore_index=True)

    def parameters(self) -> pd.DataFrame:
        rows = []
        for t in self.tracks:
            for name, est in t.parameters.items():
                rows.append(
                    {
                        "id": t.id,
                        "parameter": name,
                        "estimate": est,
                        "std_error": t.std_errors.get(name, np.nan),
                        "pooled": t.pooled and name == "sigma_g",
                    }
                )
        return pd.DataFrame(rows, columns=["id", "parameter", "estimate", "std_error", "pooled"])

    def summary(self) -> pd.DataFrame:
        rows = []
        for r in self:
            if isinstance(r, TrackFailure):
                rows.append({"id": r.id, "model": self.model, "converged": False, "message": r.message})
                continue
            rows.append({"id": r.id, "model": self.model, "converged": r.converged, "nll": r.nll, **r.parameters})
        return pd.DataFrame(rows)


# ======================== Input Handling ========================


def _locations_from(data, what: str) -> pd.DataFrame:
    if isinstance(data, SSMFit):
        frames = [getattr(t, what) for t in data.tracks]
        if not frames:
            return pd.DataFrame(columns=["id", "date", "x", "y"])
        return pd.concat(frames, ignore_index=True)
    if isinstance(data, pd.DataFrame):
        return data
    raise TypeError("fit_mpm expects an SSMFit or a pandas DataFrame of locations")


def _track_displacements(table: pd.DataFrame) -> "OrderedDict[str, Union[_Displacements, TrackFailure]]":
    if not {"id", "date"}.issubset(table.columns):
        raise ValueError("location table needs 'id' and 'date' columns")
    has_xy = {"x", "y"}.issubset(table.columns)
    if not has_xy and not {"lon", "lat"}.issubset(table.columns):
        raise ValueError("location table needs 'x'/'y' (km) or 'lon'/'lat' columns")

    out: "OrderedDict[str, Union[_Displacements, TrackFailure]]" = OrderedDict()
    for track_id, track in table.groupby("id", sort=False):
        track = track.sort_values("date")
        track_id = str(track_id)
        if len(track) < MIN_LOCATIONS:
            out[track_id] = TrackFailure(track_id, "fit_mpm", f"need at least {MIN_LOCATIONS} locations, got {len(track)}")
            continue
        if has_xy:
            xy = track[["x", "y"]].to_numpy(dtype=float)
        else:
            x, y, _ = project_track(track["lon"].to_numpy(), track["lat"].to_numpy())
            xy = np.column_stack((x, y))
        dates = pd.to_datetime(track["date"]).to_numpy(dtype="datetime64[ns]")
        out[track_id] = _Displacements.from_locations(track_id, dates, xy)
    return out


def _fitted_table(disp: _Displacements, g_s: np.ndarray, P_s: np.ndarray) -> pd.DataFrame:
    g = expit(g_s)
    se = np.sqrt(P_s)
    return pd.DataFrame(
        {
            "id": disp.id,
            "date": disp.dates,
            "g": g,
            "g_se": g * (1.0 - g) * se,
            "logit_g": g_s,
            "logit_g_se": se,
        }
    )


def _standard_errors(fun, theta: np.ndarray) -> np.ndarray:
    hess = numerical_hessian(fun, theta)
    try:
        if np.all(np.isfinite(hess)) and np.all(np.linalg.eigvalsh(hess) > 0):
            # log scale -> natural scale by the delta method
            return np.sqrt(np.diag(np.linalg.inv(hess))) * np.exp(theta)
    except np.linalg.LinAlgError:
        pass
    return np.full(len(theta), np.nan)


def _optimise(fun, theta0: np.ndarray, config: MPMConfig, label: str):
    callback = None
    if config.verbose >= 2:
        def callback(xk):
            logger.info("fit_mpm %s: nll=%.4f", label, fun(xk))

    kwargs = {}
    if config.optimizer in ("L-BFGS-B", "TNC", "SLSQP", "Powell", "Nelder-Mead", "trust-constr"):
        kwargs["bounds"] = [_LOG_BOUNDS] * len(theta0)
    res = minimize(fun, theta0, method=config.optimizer, callback=callback, options={"maxiter": config.max_iter}, **kwargs)
    ok = bool(np.isfinite(res.fun) and res.fun < _PENALTY)
    if ok and not res.success:
        logger.warning("fit_mpm %s: optimizer stopped before converging (%s)", label, res.message)
    return res, ok


# ======================== Independent Fits ========================


def _fit_independent(disps, config: MPMConfig) -> MPMFit:
    results: "OrderedDict[str, Union[MPMTrack, TrackFailure]]" = OrderedDict()
    total = 0.0
    iterator = tqdm(disps.items(), desc="fit_mpm (mpm)", disable=config.verbose < 1)
    for track_id, disp in iterator:
        if isinstance(disp, TrackFailure):
            logger.warning("fit_mpm failed for track %r: %s", track_id, disp.message)
            results[track_id] = disp
            continue

        def nll(theta, disp=disp):
            s_g, s_x, s_y = np.exp(theta)
            ll, _, _ = _scalar_ekf(disp, s_g, s_x, s_y, store=False)
            return -ll if np.isfinite(ll) else _PENALTY

        scale = disp.start_scale()
        theta0 = np.log([1.0, scale, scale])
        res, ok = _optimise(nll, theta0, config, repr(track_id))
        if not ok:
            failure = TrackFailure(track_id, "fit_mpm", f"no finite likelihood found: {res.message}")
            logger.warning("fit_mpm failed for track %r: %s", track_id, failure.message)
            results[track_id] = failure
            continue

        s_g, s_x, s_y = np.exp(res.x)
        _, g_s, P_s = _scalar_ekf(disp, s_g, s_x, s_y, store=True)
        se = _standard_errors(nll, np.asarray(res.x))
        total += float(res.fun)
        results[track_id] = MPMTrack(
            id=track_id,
            converged=bool(res.success),
            nll=float(res.fun),
            parameters={"sigma_g": s_g, "sigma_x": s_x, "sigma_y": s_y},
            std_errors={"sigma_g": se[0], "sigma_x": se[1], "sigma_y": se[2]},
            fitted=_fitted_table(disp, g_s, P_s),
            message=str(res.message),
        )
    return MPMFit(results, config, nll=total)


# ======================== Pooled Fit ========================


def _fit_joint(disps, config: MPMConfig) -> MPMFit:
    results: "OrderedDict[str, Union[MPMTrack, TrackFailure]]" = OrderedDict()
    usable = OrderedDict((k, d) for k, d in disps.items() if not isinstance(d, TrackFailure))
    for track_id, disp in disps.items():
        if isinstance(disp, TrackFailure):
            logger.warning("fit_mpm failed for track %r: %s", track_id, disp.message)
            results[track_id] = disp
    if not usable:
        return MPMFit(OrderedDict((k, disps[k]) for k in disps), config)

    tracks = list(usable.values())

    # theta = [log sigma_g, (log sigma_x, log sigma_y) per track]
    def nll(theta):
        s_g = np.exp(theta[0])
        total = 0.0
        for j, disp in enumerate(tracks):
            s_x, s_y = np.exp(theta[1 + 2 * j: 3 + 2 * j])
            ll, _, _ = _scalar_ekf(disp, s_g, s_x, s_y, store=False)
            if not np.isfinite(ll):
                return _PENALTY
            total -= ll
        return total

    theta0 = [0.0]
    for disp in tracks:
        scale = np.log(disp.start_scale())
        theta0 += [scale, scale]
    theta0 = np.asarray(theta0)

    logger.info("fit_mpm (jmpm): pooling sigma_g across %d track(s)", len(tracks))
    res, ok = _optimise(nll, theta0, config, "jmpm")
    if not ok:
        for disp in tracks:
            failure = TrackFailure(disp.id, "fit_mpm", f"no finite joint likelihood found: {res.message}")
            logger.warning("fit_mpm failed for track %r: %s", disp.id, failure.message)
            results[disp.id] = failure
    else:
        theta = np.asarray(res.x)
        se = _standard_errors(nll, theta)
        s_g = float(np.exp(theta[0]))
        for j, disp in enumerate(tracks):
            s_x, s_y = np.exp(theta[1 + 2 * j: 3 + 2 * j])
            ll, g_s, P_s = _scalar_ekf(disp, s_g, s_x, s_y, store=True)
            results[disp.id] = MPMTrack(
                id=disp.id,
                converged=bool(res.success),
                nll=-ll,
                parameters={"sigma_g": s_g, "sigma_x": float(s_x), "sigma_y": float(s_y)},
                std_errors={"sigma_g": se[0], "sigma_x": se[1 + 2 * j], "sigma_y": se[2 + 2 * j]},
                fitted=_fitted_table(disp, g_s, P_s),
                pooled=True,
                message=str(res.message),
            )

    ordered = OrderedDict((k, results[k]) for k in disps)
    return MPMFit(ordered, config, nll=float(res.fun) if ok else None)


def fit_mpm(data, config: Optional[MPMConfig] = None, **overrides) -> MPMFit:
    """
    Estimate the move-persistence index along regularised tracks.

    Parameters
    ----------
    data : SSMFit or pd.DataFrame
        An ``fit_ssm`` result, or a table of locations with ``id``, ``date``
        and either ``x``/``y`` (km, one planar system per track) or
        ``lon``/``lat``.
    config : MPMConfig, optional
        ``model`` ('mpm' independent, 'jmpm' pooled ``sigma_g``), ``what``
        ('predicted' or 'fitted' locations of an SSMFit), ``verbose``,
        ``max_iter``, ``optimizer``.
    **overrides
        Any ``MPMConfig`` field.

    Returns
    -------
    MPMFit
        Per-track move-persistence estimates ``g`` in (0, 1) with standard
        errors, one row per input location.

    Examples
    --------
    >>> fit = pm.modelling.fit_ssm(obs, model="crw", time_step=6)
    >>> mp = pm.modelling.fit_mpm(fit, model="jmpm")
    >>> mp.parameters()

    Notes
    -----
    With ``mpm`` one track's failure leaves the others untouched. With ``jmpm``
    all tracks share one optimisation, so a failure is reported for every
    track in the pool.
    """
    config = (config or MPMConfig()).with_overrides(**overrides)
    table = _locations_from(data, config.what)
    disps = _track_displacements(table)

    if config.model == "jmpm":
        fit = _fit_joint(disps, config)
    else:
        fit = _fit_independent(disps, config)
    logger.info("fit_mpm (%s): %d of %d track(s) converged", config.model, len(fit.converged), len(fit))
    return fit
