"""
State-space regularisation module for pymotum.

``fit_ssm`` turns irregular, error-prone telemetry into a temporally regular,
error-corrected track. Each track is fitted independently:

1. Prefilter the observations (duplicates, minimum gap, speed/angle filter)
2. Build the filtering grid: the union of kept observation times and a regular
   prediction grid at ``time_step`` hours, epoch-aligned, lying inside the
   observed time span
3. Estimate process and observation-error parameters by maximum likelihood,
   using the Kalman filter prediction-error decomposition and
   ``scipy.optimize.minimize``
4. Smooth with the RTS smoother at the estimates and read off *fitted* states
   (at observation times) and *predicted* states (on the regular grid)

Process models
--------------
- ``rw``: 2-D random walk, state [x, y]; parameters ``sigma_x``, ``sigma_y``
  (km h^-1/2) and ``rho_p``
- ``crw``: continuous-time correlated random walk with Ornstein-Uhlenbeck
  velocity (Johnson et al. 2008), state [x, y, u, v]; parameters ``beta``
  (h^-1) and ``sigma`` (km h^-3/2)
- ``mp``: joint move-persistence model, state [x, y, u, v, logit g]. Per-step
  displacement persists with factor g^(dt/time_step) and logit g follows a
  random walk. Parameters ``sigma_x``, ``sigma_y`` (km per time step) and
  ``sigma_g``. Estimated with an Extended Kalman Filter.

Observation-error parameters (``tau_x``, ``tau_y``, ``rho_o``, ``psi``) are
added according to the error types present (see ``measurement``).

A track whose optimizer fails is reported as a ``TrackFailure``; sibling tracks
are unaffected.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd
from scipy.optimize import minimize
from scipy.special import expit
from tqdm import tqdm

from pymotum.config import SSMConfig
from pymotum.exceptions import ConvergenceFailure
from pymotum.modelling.kalman import (
    FilterResult,
    kalman_filter,
    linear_transition,
    numerical_hessian,
    rts_smoother,
    standard_errors,
)
from pymotum.modelling.measurement import OBS_PARAM_START, observation_covariances, observation_parameters
from pymotum.modelling.projection import project_track, unproject
from pymotum.preprocessing.filtration import prefilter

logger = logging.getLogger(__name__)

NS_PER_HOUR = 3_600_000_000_000
MIN_OBSERVATIONS = 3
_PENALTY = 1e10

# Optimizer works on an unconstrained scale
TRANSFORMS = {
    "sigma_x": "log",
    "sigma_y": "log",
    "sigma": "log",
    "beta": "log",
    "sigma_g": "log",
    "tau_x": "log",
    "tau_y": "log",
    "psi": "log",
    "rho_p": "atanh",
    "rho_o": "atanh",
}
_BOUNDS = {"log": (-12.0, 8.0), "atanh": (-3.0, 3.0)}
_BOUNDED_METHODS = ("L-BFGS-B", "TNC", "SLSQP", "Powell", "Nelder-Mead", "trust-constr")


def _to_free(name: str, value: float) -> float:
    if TRANSFORMS[name] == "log":
        return float(np.log(value))
    return float(np.arctanh(np.clip(value, -0.995, 0.995)))


def _to_natural(name: str, value: float) -> float:
    if TRANSFORMS[name] == "log":
        return float(np.exp(value))
    return float(np.tanh(value))


def _natural_derivative(name: str, value: float) -> float:
    """d(natural)/d(free) for the delta-method standard errors."""
    if TRANSFORMS[name] == "log":
        return float(np.exp(value))
    return float(1.0 - np.tanh(value) ** 2)


# ======================== Result Containers ========================


@dataclass
class TrackFailure:
    """A track that could not be processed by a pipeline step."""

    id: str
    step: str
    message: str
    data: Optional[pd.DataFrame] = field(default=None, repr=False)

    def to_exception(self) -> ConvergenceFailure:
        return ConvergenceFailure(self.message, track_id=self.id, step=self.step)


@dataclass
class FittedTrack:
    """
    A converged state-space fit of one track.

    Attributes
    ----------
    id : str
        Track identifier.
    model : str
        Process model ('rw', 'crw' or 'mp').
    converged : bool
        Optimizer reported success.
    pd_hess : bool
        Hessian at the optimum was positive definite (standard errors valid).
    parameters : pd.DataFrame
        Columns ``parameter, estimate, std_error, fixed``.
    nll : float
        Negative log-likelihood at the estimates.
    aic : float
        Akaike information criterion.
    fitted : pd.DataFrame
        Smoothed locations at the kept observation times.
    predicted : pd.DataFrame
        Smoothed locations on the regular prediction grid.
    data : pd.DataFrame
        The prefiltered observations of this track (rejected rows included).
    time_step : float
        Prediction interval in hours.
    message : str
        Optimizer message.
    """

    id: str
    model: str
    converged: bool
    pd_hess: bool
    parameters: pd.DataFrame
    nll: float
    aic: float
    fitted: pd.DataFrame
    predicted: pd.DataFrame
    data: pd.DataFrame
    time_step: float
    message: str = ""
    _problem: "_TrackProblem" = field(default=None, repr=False)
    _estimates: Dict[str, float] = field(default_factory=dict, repr=False)
    _osar_cache: Optional[pd.DataFrame] = field(default=None, repr=False)

    @property
    def estimates(self) -> Dict[str, float]:
        """Natural-scale parameter values, fixed ones included."""
        return dict(self._estimates)

    def filter_result(self) -> FilterResult:
        """Re-run the forward filter at the estimates (used by residual diagnostics)."""
        return self._problem.run(self._estimates, store=True)

    def observed_steps(self) -> np.ndarray:
        """Grid indices of the kept observations."""
        return self._problem.obs_index


class SSMFit:
    """
    Ordered collection of per-track results from ``fit_ssm``.

    Iterating yields ``FittedTrack`` and ``TrackFailure`` items in input order.
    """

    def __init__(self, results: "OrderedDict[str, Union[FittedTrack, TrackFailure]]", config: SSMConfig):
        self._results = results
        self.config = config

    def __iter__(self) -> Iterator[Union[FittedTrack, TrackFailure]]:
        return iter(self._results.values())

    def __len__(self) -> int:
        return len(self._results)

    def __getitem__(self, track_id: str) -> Union[FittedTrack, TrackFailure]:
        return self._results[track_id]

    def __repr__(self) -> str:
        return (
            f"SSMFit(model={self.config.model!r}, tracks={len(self.tracks)}, "
            f"failures={len(self.failures)})"
        )

    @property
    def ids(self) -> List[str]:
        return list(self._results)

    @property
    def tracks(self) -> List[FittedTrack]:
        return [r for r in self._results.values() if isinstance(r, FittedTrack)]

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

    def summary(self) -> pd.DataFrame:
        """
        One row per track: fit diagnostics and parameter estimates.

        Failed tracks appear with ``converged=False`` and their failure message.
        """
        rows = []
        for r in self:
            if isinstance(r, TrackFailure):
                rows.append({"id": r.id, "model": self.config.model, "converged": False, "message": r.message})
                continue
            row = {
                "id": r.id,
                "model": r.model,
                "n_obs": int(r.data["keep"].sum()),
                "n_filtered": int((~r.data["keep"]).sum()),
                "n_predicted": len(r.predicted),
                "converged": r.converged,
                "pd_hess": r.pd_hess,
                "nll": r.nll,
                "aic": r.aic,
                "message": r.message,
            }
            row.update(r.estimates)
            rows.append(row)
        return pd.DataFrame(rows)


# ======================== Process Models ========================


class _RandomWalk:
    name = "rw"
    params = ("sigma_x", "sigma_y", "rho_p")
    state_dim = 2

    def start(self, prob: "_TrackProblem") -> Dict[str, float]:
        s = prob.diffusion_scale()
        return {"sigma_x": s, "sigma_y": s, "rho_p": 0.0}

    def setup(self, prob: "_TrackProblem", p: Mapping[str, float]):
        n = prob.n
        dt = prob.dt_h
        sx, sy, rho = p["sigma_x"], p["sigma_y"], p["rho_p"]
        F = np.broadcast_to(np.eye(2), (n, 2, 2))
        Q = np.zeros((n, 2, 2))
        Q[:, 0, 0] = sx ** 2 * dt
        Q[:, 1, 1] = sy ** 2 * dt
        Q[:, 0, 1] = Q[:, 1, 0] = rho * sx * sy * dt
        x0 = prob.Z[0].copy()
        P0 = prob.R[0].copy()
        return x0, P0, linear_transition(F, Q)

    def columns(self, prob, xs, Ps) -> Dict[str, np.ndarray]:
        return {}


class _CorrelatedRandomWalk:
    name = "crw"
    params = ("beta", "sigma")
    state_dim = 4

    def start(self, prob: "_TrackProblem") -> Dict[str, float]:
        beta = 1.0 / max(prob.time_step, 1.0)
        speed = prob.speed_scale()
        return {"beta": beta, "sigma": max(speed * np.sqrt(2.0 * beta), 1e-3)}

    def setup(self, prob: "_TrackProblem", p: Mapping[str, float]):
        n = prob.n
        beta, sigma = p["beta"], p["sigma"]
        dt = prob.dt_h
        bdt = beta * dt
        e = np.exp(-bdt)
        s2 = sigma ** 2

        # Integrated OU covariance; series expansion where beta*dt is tiny
        small = bdt < 1e-5
        with np.errstate(over="ignore", invalid="ignore"):
            q_xx = s2 / beta ** 2 * (dt - 2.0 * (1.0 - e) / beta + (1.0 - e ** 2) / (2.0 * beta))
            q_vv = s2 * (1.0 - e ** 2) / (2.0 * beta)
            q_xv = s2 / (2.0 * beta ** 2) * (1.0 - e) ** 2
            f_xv = (1.0 - e) / beta
        q_xx = np.where(small, s2 * dt ** 3 / 3.0, q_xx)
        q_vv = np.where(small, s2 * dt, q_vv)
        q_xv = np.where(small, s2 * dt ** 2 / 2.0, q_xv)
        f_xv = np.where(small, dt, f_xv)

        F = np.zeros((n, 4, 4))
        Q = np.zeros((n, 4, 4))
        for pos, vel in ((0, 2), (1, 3)):
            F[:, pos, pos] = 1.0
            F[:, pos, vel] = f_xv
            F[:, vel, vel] = e
            Q[:, pos, pos] = q_xx
            Q[:, vel, vel] = q_vv
            Q[:, pos, vel] = Q[:, vel, pos] = q_xv
        Q[:, range(4), range(4)] += 1e-10

        x0 = np.array([prob.Z[0, 0], prob.Z[0, 1], 0.0, 0.0])
        P0 = np.zeros((4, 4))
        P0[:2, :2] = prob.R[0]
        P0[2, 2] = P0[3, 3] = s2 / (2.0 * beta)
        return x0, P0, linear_transition(F, Q)

    def columns(self, prob, xs, Ps) -> Dict[str, np.ndarray]:
        u, v = xs[:, 2], xs[:, 3]
        s = np.hypot(u, v)
        # Delta method for speed
        with np.errstate(invalid="ignore", divide="ignore"):
            ju = np.where(s > 0, u / s, 0.0)
            jv = np.where(s > 0, v / s, 0.0)
        var_s = ju ** 2 * Ps[:, 2, 2] + jv ** 2 * Ps[:, 3, 3] + 2.0 * ju * jv * Ps[:, 2, 3]
        return {
            "u": u,
            "v": v,
            "u_se": standard_errors(Ps, 2),
            "v_se": standard_errors(Ps, 3),
            "s": s,
            "s_se": np.sqrt(np.maximum(var_s, 0.0)),
        }


class _MovePersistence:
    name = "mp"
    params = ("sigma_x", "sigma_y", "sigma_g")
    state_dim = 5

    def start(self, prob: "_TrackProblem") -> Dict[str, float]:
        s = prob.diffusion_scale() * np.sqrt(prob.time_step)
        return {"sigma_x": s, "sigma_y": s, "sigma_g": 0.5}

    def setup(self, prob: "_TrackProblem", p: Mapping[str, float]):
        ratio = prob.dt_h / prob.time_step
        w = np.array([p["sigma_x"] ** 2, p["sigma_y"] ** 2, p["sigma_g"] ** 2])

        def _step(x_prev, i):
            r = ratio[i]
            px, py, u, v, g = x_prev
            gam = expit(g)
            a = gam ** r
            b = r * a * (1.0 - gam)
            x_new = np.array([px + r * a * u, py + r * a * v, a * u, a * v, g])
            F = np.array(
                [
                    [1.0, 0.0, r * a, 0.0, r * b * u],
                    [0.0, 1.0, 0.0, r * a, r * b * v],
                    [0.0, 0.0, a, 0.0, b * u],
                    [0.0, 0.0, 0.0, a, b * v],
                    [0.0, 0.0, 0.0, 0.0, 1.0],
                ]
            )
            # Noise enters through the displacement (xi_x, xi_y) and logit g (eps)
            L = np.array(
                [
                    [r, 0.0, r * b * u],
                    [0.0, r, r * b * v],
                    [1.0, 0.0, b * u],
                    [0.0, 1.0, b * v],
                    [0.0, 0.0, 1.0],
                ]
            )
            Q = L @ np.diag(w * r) @ L.T + np.eye(5) * 1e-10
            return x_new, F, Q

        step_var = (prob.diffusion_scale() ** 2) * prob.time_step
        x0 = np.array([prob.Z[0, 0], prob.Z[0, 1], 0.0, 0.0, 0.0])
        P0 = np.zeros((5, 5))
        P0[:2, :2] = prob.R[0]
        P0[2, 2] = P0[3, 3] = max(step_var, 1e-4)
        P0[4, 4] = 1.0
        return x0, P0, _step

    def columns(self, prob, xs, Ps) -> Dict[str, np.ndarray]:
        g = expit(xs[:, 4])
        logit_se = standard_errors(Ps, 4)
        return {
            "u": xs[:, 2],
            "v": xs[:, 3],
            "logit_g": xs[:, 4],
            "logit_g_se": logit_se,
            "g": g,
            "g_se": g * (1.0 - g) * logit_se,
        }


PROCESS_MODELS = {m.name: m for m in (_RandomWalk(), _CorrelatedRandomWalk(), _MovePersistence())}


# ======================== Per-Track Problem ========================


def prediction_grid(first: np.datetime64, last: np.datetime64, time_step: float) -> np.ndarray:
    """
    Epoch-aligned regular timestamps every ``time_step`` hours within [first, last].

    Returns
    -------
    np.ndarray of datetime64[ns]
        Possibly empty if the span is shorter than one step and contains no
        aligned instant.
    """
    step_ns = int(round(time_step * NS_PER_HOUR))
    t0 = int(np.datetime64(first, "ns").astype("int64"))
    t1 = int(np.datetime64(last, "ns").astype("int64"))
    start = -(-t0 // step_ns) * step_ns  # ceil to the grid
    grid = np.arange(start, t1 + 1, step_ns, dtype="int64")
    return grid.astype("datetime64[ns]")


class _TrackProblem:
    """Arrays and likelihood of one track on its merged observation/prediction grid."""

    def __init__(self, data: pd.DataFrame, model: str, time_step: float, fixed: Mapping[str, float]):
        self.model = PROCESS_MODELS[model]
        self.time_step = float(time_step)
        self.obs = data.loc[data["keep"]].sort_values("date").reset_index(drop=True)

        obs_t = self.obs["date"].to_numpy(dtype="datetime64[ns]")
        self.pred_t = prediction_grid(obs_t[0], obs_t[-1], self.time_step)
        self.t = np.union1d(obs_t, self.pred_t)
        self.n = len(self.t)
        self.obs_index = np.searchsorted(self.t, obs_t)
        self.pred_index = np.searchsorted(self.t, self.pred_t)
        self.observed = np.zeros(self.n, dtype=bool)
        self.observed[self.obs_index] = True

        dt = np.diff(self.t.astype("int64")) / NS_PER_HOUR
        self.dt_h = np.concatenate(([0.0], dt))

        x, y, self.centre = project_track(self.obs["lon"].to_numpy(), self.obs["lat"].to_numpy())
        self.obs_xy = np.column_stack((x, y))
        self.Z = np.full((self.n, 2), np.nan)
        self.Z[self.obs_index] = self.obs_xy

        # ========== Parameter Layout ==========
        self.all_params = list(self.model.params) + observation_parameters(self.obs)
        unknown = set(fixed) - set(TRANSFORMS)
        if unknown:
            raise ValueError(f"Unknown fixed parameter(s) {sorted(unknown)}; known: {sorted(TRANSFORMS)}")
        self.fixed = {k: float(v) for k, v in fixed.items() if k in self.all_params}
        self.free = [p for p in self.all_params if p not in self.fixed]

        self.R = self._covariances(OBS_PARAM_START)
        self._start = {**OBS_PARAM_START, **self.model.start(self)}

    # ---- data-driven scales for starting values ----

    def _steps(self) -> Tuple[np.ndarray, np.ndarray]:
        d = np.hypot(*np.diff(self.obs_xy, axis=0).T)
        dt = np.diff(self.obs["date"].to_numpy(dtype="datetime64[ns]").astype("int64")) / NS_PER_HOUR
        return d, np.maximum(dt, 1e-3)

    def diffusion_scale(self) -> float:
        d, dt = self._steps()
        if len(d) == 0:
            return 1.0
        return float(max(np.median(d / np.sqrt(dt)) / np.sqrt(2.0), 1e-2))

    def speed_scale(self) -> float:
        d, dt = self._steps()
        if len(d) == 0:
            return 1.0
        return float(max(np.median(d / dt), 1e-3))

    # ---- likelihood ----

    def _covariances(self, params: Mapping[str, float]) -> np.ndarray:
        R = np.zeros((self.n, 2, 2))
        R[self.obs_index] = observation_covariances(self.obs, params)
        return R

    def natural(self, theta: np.ndarray) -> Dict[str, float]:
        p = dict(self.fixed)
        for name, value in zip(self.free, theta):
            p[name] = _to_natural(name, value)
        return p

    def theta0(self) -> np.ndarray:
        return np.array([_to_free(p, self._start[p]) for p in self.free], dtype=float)

    def bounds(self) -> List[Tuple[float, float]]:
        return [_BOUNDS[TRANSFORMS[p]] for p in self.free]

    def run(self, params: Mapping[str, float], store: bool = True) -> FilterResult:
        p = {**self._start, **dict(params)}
        self.R = self._covariances(p)
        x0, P0, transition = self.model.setup(self, p)
        H = np.eye(2, self.model.state_dim)
        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            return kalman_filter(x0, P0, self.Z, self.R, self.observed, transition, H, store=store)

    def negloglik(self, theta: np.ndarray) -> float:
        fr = self.run(self.natural(theta), store=False)
        if not np.isfinite(fr.loglik):
            return _PENALTY
        return -fr.loglik


# ======================== Fitting ========================


def _parameter_table(prob: _TrackProblem, theta: np.ndarray, hess: Optional[np.ndarray]):
    se_free = np.full(len(theta), np.nan)
    pd_hess = False
    if hess is not None and np.all(np.isfinite(hess)):
        try:
            eig = np.linalg.eigvalsh(hess)
            if np.all(eig > 0):
                pd_hess = True
                se_free = np.sqrt(np.diag(np.linalg.inv(hess)))
        except np.linalg.LinAlgError:
            pd_hess = False

    rows = []
    for name in prob.all_params:
        if name in prob.fixed:
            rows.append({"parameter": name, "estimate": prob.fixed[name], "std_error": np.nan, "fixed": True})
            continue
        i = prob.free.index(name)
        est = _to_natural(name, theta[i])
        se = se_free[i] * _natural_derivative(name, theta[i])
        rows.append({"parameter": name, "estimate": est, "std_error": se, "fixed": False})
    return pd.DataFrame(rows), pd_hess


def _state_table(prob: _TrackProblem, track_id: str, xs: np.ndarray, Ps: np.ndarray, index: np.ndarray) -> pd.DataFrame:
    lon, lat = unproject(xs[index, 0], xs[index, 1], prob.centre)
    table = {
        "id": track_id,
        "date": prob.t[index],
        "lon": lon,
        "lat": lat,
        "x": xs[index, 0],
        "y": xs[index, 1],
        "x_se": standard_errors(Ps[index], 0),
        "y_se": standard_errors(Ps[index], 1),
    }
    for col, values in prob.model.columns(prob, xs[index], Ps[index]).items():
        table[col] = values
    return pd.DataFrame(table)


def _fit_track(track_id: str, data: pd.DataFrame, config: SSMConfig) -> Union[FittedTrack, TrackFailure]:
    n_kept = int(data["keep"].sum())
    if n_kept < MIN_OBSERVATIONS:
        return TrackFailure(
            track_id,
            "fit_ssm",
            f"only {n_kept} observation(s) left after prefiltering; need {MIN_OBSERVATIONS}",
            data,
        )

    prob = _TrackProblem(data, config.model, config.time_step, config.fixed_parameters)
    if len(prob.pred_t) == 0:
        logger.warning("Track %r spans less than one time step; no predicted locations", track_id)

    callback = None
    if config.verbose >= 2:
        def callback(xk):
            logger.info("fit_ssm %r: nll=%.4f", track_id, prob.negloglik(xk))

    theta0 = prob.theta0()
    if len(theta0) == 0:
        theta_hat = theta0
        nll = prob.negloglik(theta0)
        success, message = True, "all parameters fixed"
    else:
        kwargs = {}
        if config.optimizer in _BOUNDED_METHODS:
            kwargs["bounds"] = prob.bounds()
        res = minimize(
            prob.negloglik,
            theta0,
            method=config.optimizer,
            callback=callback,
            options={"maxiter": config.max_iter},
            **kwargs,
        )
        theta_hat = np.asarray(res.x, dtype=float)
        nll = float(res.fun)
        success = bool(res.success)
        message = str(res.message)

    if not (np.isfinite(nll) and nll < _PENALTY):
        return TrackFailure(track_id, "fit_ssm", f"no finite likelihood found: {message}", data)
    if not success:
        logger.warning("Track %r: optimizer stopped before converging (%s)", track_id, message)

    hess = numerical_hessian(prob.negloglik, theta_hat) if len(theta_hat) else None
    params_table, pd_hess = _parameter_table(prob, theta_hat, hess)
    if not pd_hess and len(theta_hat):
        logger.warning("Track %r: Hessian not positive definite; standard errors unavailable", track_id)

    estimates = prob.natural(theta_hat)
    fr = prob.run(estimates, store=True)
    if not np.isfinite(fr.loglik):
        return TrackFailure(track_id, "fit_ssm", "likelihood not finite at the estimates", data)
    xs, Ps = rts_smoother(fr)

    return FittedTrack(
        id=track_id,
        model=config.model,
        converged=success,
        pd_hess=pd_hess,
        parameters=params_table,
        nll=nll,
        aic=2.0 * nll + 2.0 * len(theta_hat),
        fitted=_state_table(prob, track_id, xs, Ps, prob.obs_index),
        predicted=_state_table(prob, track_id, xs, Ps, prob.pred_index),
        data=data,
        time_step=config.time_step,
        message=message,
        _problem=prob,
        _estimates=estimates,
    )


def fit_ssm(data: pd.DataFrame, config: Optional[SSMConfig] = None, **overrides) -> SSMFit:
    """
    Fit a state-space model to every track in an observation table.

    Parameters
    ----------
    data : pd.DataFrame
        Observation table from ``read_tracks``/``format_data``, or an already
        prefiltered table (one carrying a ``keep`` column), which is used as is.
    config : SSMConfig, optional
        Model and prefilter options; defaults to ``SSMConfig()``.
    **overrides
        Any ``SSMConfig`` field, e.g. ``model='rw', time_step=12``.

    Returns
    -------
    SSMFit
        Per-track ``FittedTrack`` or ``TrackFailure`` in input order.

    Examples
    --------
    >>> import pymotum as pm
    >>> obs = pm.preprocessing.read_tracks(pm.sample_data_path())
    >>> fit = pm.modelling.fit_ssm(obs, model="crw", time_step=6, vmax=4)
    >>> fit.summary()[["id", "converged", "aic"]]
    >>> predicted = pm.utilities.grab(fit, "predicted")

    Notes
    -----
    Tracks are independent and processed sequentially; the outcome does not
    depend on their order. Fits are deterministic: the same input and config
    always produce identical output.
    """
    config = (config or SSMConfig()).with_overrides(**overrides)

    if "keep" not in data.columns:
        data = prefilter(
            data,
            vmax=config.vmax,
            ang=config.ang,
            distlim=config.distlim,
            spdf=config.spdf,
            min_dt=config.min_dt,
        )

    groups = list(data.groupby("id", sort=False))
    results: "OrderedDict[str, Union[FittedTrack, TrackFailure]]" = OrderedDict()
    iterator = tqdm(groups, desc=f"fit_ssm ({config.model})", disable=config.verbose < 1)
    for track_id, track in iterator:
        track = track.reset_index(drop=True)
        result = _fit_track(str(track_id), track, config)
        if isinstance(result, TrackFailure):
            logger.warning("fit_ssm failed for track %r: %s", result.id, result.message)
        results[str(track_id)] = result

    fit = SSMFit(results, config)
    logger.info("fit_ssm: %d of %d track(s) converged", len(fit.converged), len(fit))
    return fit
