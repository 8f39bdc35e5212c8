"""
Track simulation for pymotum.

Generates synthetic telemetry in the loader's format from the same process
models that ``fit_ssm`` estimates, with Argos-like location classes and
measurement error. Useful for testing a workflow end to end, for checking that
parameters are recoverable, and for producing example data.
"""

from typing import Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy.special import expit, logit

from pymotum.modelling.measurement import ARGOS_EMF
from pymotum.modelling.projection import unproject

# Rough frequency of Argos LS classes in real deployments
LC_PROBABILITIES = {"3": 0.1, "2": 0.15, "1": 0.15, "0": 0.1, "A": 0.2, "B": 0.3}

NumberOrSeq = Union[float, Sequence[float]]


def _per_track(value: NumberOrSeq, n_tracks: int, name: str) -> np.ndarray:
    arr = np.atleast_1d(np.asarray(value, dtype=float))
    if arr.size == 1:
        return np.repeat(arr, n_tracks)
    if arr.size != n_tracks:
        raise ValueError(f"{name} must be a scalar or have one value per track ({n_tracks})")
    return arr


def _simulate_path(model: str, t_h: np.ndarray, rng, sigma: float, beta: float, sigma_g: float, time_step: float):
    """True planar path (km) at times ``t_h`` (hours) plus the persistence series."""
    n = len(t_h)
    xy = np.zeros((n, 2))
    g = np.full(n, np.nan)
    dt = np.diff(t_h)

    if model == "rw":
        steps = rng.normal(size=(n - 1, 2)) * sigma * np.sqrt(dt)[:, None]
        xy[1:] = np.cumsum(steps, axis=0)

    elif model == "crw":
        vel = rng.normal(size=2) * sigma / np.sqrt(2.0 * beta)
        for i, d in enumerate(dt, start=1):
            e = np.exp(-beta * d)
            q_xx = sigma ** 2 / beta ** 2 * (d - 2.0 * (1.0 - e) / beta + (1.0 - e ** 2) / (2.0 * beta))
            q_vv = sigma ** 2 * (1.0 - e ** 2) / (2.0 * beta)
            q_xv = sigma ** 2 / (2.0 * beta ** 2) * (1.0 - e) ** 2
            cov = np.array([[q_xx, q_xv], [q_xv, q_vv]])
            for axis in range(2):
                noise = rng.multivariate_normal(np.zeros(2), cov)
                xy[i, axis] = xy[i - 1, axis] + vel[axis] * (1.0 - e) / beta + noise[0]
                vel[axis] = vel[axis] * e + noise[1]

    elif model == "mp":
        lg = logit(0.5)
        w = rng.normal(size=2) * sigma
        g[0] = expit(lg)
        for i, d in enumerate(dt, start=1):
            r = d / time_step
            lg = lg + rng.normal() * sigma_g * np.sqrt(r)
            gam = expit(lg)
            w = gam ** r * w + rng.normal(size=2) * sigma * np.sqrt(r)
            xy[i] = xy[i - 1] + r * w
            g[i] = gam
    else:
        raise ValueError("model must be 'rw', 'crw' or 'mp'")
    return xy, g


def sim_tracks(
    n_tracks: int = 3,
    n_obs: int = 100,
    model: str = "crw",
    obs_interval: float = 2.0,
    error: str = "ls",
    sigma: NumberOrSeq = 1.0,
    beta: NumberOrSeq = 0.2,
    sigma_g: NumberOrSeq = 0.5,
    time_step: float = 6.0,
    tau: Tuple[float, float] = (0.3, 0.3),
    gap: Optional[Tuple[float, float]] = None,
    start: Tuple[float, float] = (70.0, -50.0),
    start_date: str = "2020-01-01 00:00:00",
    seed: Optional[int] = None,
    return_truth: bool = False,
):
    """
    Simulate telemetry tracks.

    Parameters
    ----------
    n_tracks : int, default=3
        Number of tracks; ids are ``sim01``, ``sim02``, ...
    n_obs : int, default=100
        Observations per track before any gap is removed.
    model : {'rw', 'crw', 'mp'}, default='crw'
        Movement process.
    obs_interval : float, default=2.0
        Mean hours between fixes (exponential inter-arrival times, at least
        one minute apart).
    error : {'ls', 'kf', 'gps', 'none'}, default='ls'
        Measurement error: Argos least-squares classes, Argos error ellipses,
        GPS (class G) or error-free.
    sigma, beta, sigma_g : float or sequence
        Process parameters (scalar or one per track). ``sigma`` is in
        km h^-1/2 (rw), km h^-3/2 (crw) or km per ``time_step`` (mp).
    time_step : float, default=6.0
        Nominal step in hours for the mp model.
    tau : tuple, default=(0.3, 0.3)
        Argos class-3 error SDs in km for the LS model.
    gap : tuple, optional
        ``(fraction, hours)``: drop fixes in a window of ``hours`` starting at
        ``fraction`` of the track duration, imitating a transmission gap.
    start : tuple, default=(70, -50)
        (lon, lat) of the first true location.
    seed : int, optional
        Random seed; equal seeds give equal output.
    return_truth : bool, default=False
        Also return the true (error-free) locations and, for mp, gamma.

    Returns
    -------
    pd.DataFrame or (pd.DataFrame, pd.DataFrame)
        Observation table with ``id, date, lc, lon, lat`` (and ``smaj, smin,
        eor`` for KF errors); optionally the truth table.
    """
    if error not in ("ls", "kf", "gps", "none"):
        raise ValueError("error must be 'ls', 'kf', 'gps' or 'none'")
    rng = np.random.default_rng(seed)
    sigmas = _per_track(sigma, n_tracks, "sigma")
    betas = _per_track(beta, n_tracks, "beta")
    sigma_gs = _per_track(sigma_g, n_tracks, "sigma_g")
    t_start = pd.Timestamp(start_date)
    emf = ARGOS_EMF.set_index("lc")

    obs_frames = []
    truth_frames = []
    for k in range(n_tracks):
        track_id = f"sim{k + 1:02d}"
        gaps = np.maximum(rng.exponential(obs_interval, size=n_obs - 1), 1.0 / 60.0)
        t_h = np.concatenate(([0.0], np.cumsum(gaps)))
        xy, g = _simulate_path(model, t_h, rng, sigmas[k], betas[k], sigma_gs[k], time_step)

        # ========== Measurement Error ==========
        extra = {}
        if error == "ls":
            lc = rng.choice(list(LC_PROBABILITIES), size=n_obs, p=list(LC_PROBABILITIES.values()))
            sx = tau[0] * emf.loc[lc, "emf_x"].to_numpy()
            sy = tau[1] * emf.loc[lc, "emf_y"].to_numpy()
            obs_xy = xy + rng.normal(size=(n_obs, 2)) * np.column_stack((sx, sy))
        elif error == "kf":
            lc = rng.choice(list(LC_PROBABILITIES), size=n_obs, p=list(LC_PROBABILITIES.values()))
            smaj = rng.uniform(200.0, 5000.0, size=n_obs)
            smin = smaj * rng.uniform(0.05, 0.5, size=n_obs)
            eor = rng.uniform(0.0, 180.0, size=n_obs)
            c = np.radians(eor)
            along = rng.normal(size=n_obs) * smaj / np.sqrt(2.0) / 1000.0
            across = rng.normal(size=n_obs) * smin / np.sqrt(2.0) / 1000.0
            obs_xy = xy + np.column_stack(
                (along * np.sin(c) + across * np.cos(c), along * np.cos(c) - across * np.sin(c))
            )
            extra = {"smaj": smaj, "smin": smin, "eor": eor}
        elif error == "gps":
            lc = np.full(n_obs, "G")
            obs_xy = xy + rng.normal(size=(n_obs, 2)) * 0.1 * np.asarray(tau)
        else:
            lc = np.full(n_obs, "G")
            obs_xy = xy.copy()

        centre = (start[1], start[0])
        lon, lat = unproject(obs_xy[:, 0], obs_xy[:, 1], centre)
        true_lon, true_lat = unproject(xy[:, 0], xy[:, 1], centre)
        dates = t_start + pd.to_timedelta(np.round(t_h * 3600.0), unit="s")

        keep = np.ones(n_obs, dtype=bool)
        if gap is not None:
            g_start = gap[0] * t_h[-1]
            keep = ~((t_h > g_start) & (t_h < g_start + gap[1]))

        obs = pd.DataFrame({"id": track_id, "date": dates, "lc": lc, "lon": lon, "lat": lat, **extra})
        obs_frames.append(obs.loc[keep])
        truth_frames.append(
            pd.DataFrame({"id": track_id, "date": dates, "lon": true_lon, "lat": true_lat, "x": xy[:, 0], "y": xy[:, 1], "g": g})
        )

    out = pd.concat(obs_frames, ignore_index=True)
    if return_truth:
        return out, pd.concat(truth_frames, ignore_index=True)
    return out
