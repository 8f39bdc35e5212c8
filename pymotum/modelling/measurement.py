"""
Telemetry measurement-error models.

Three observation error types are supported and may be mixed within a track:

- **LS** (Argos least-squares locations, and GPS fixes): per-class multiplicative
  error factors ``emf_x``/``emf_y`` scaled by estimated ``tau_x``/``tau_y`` (km),
  with optional correlation ``rho_o``.
- **KF** (Argos Kalman-filter locations): error ellipse semi-major/semi-minor
  axes and orientation, with the semi-minor axis inflated by an estimated
  ``psi``.
- **SD** (geolocation or any fix with supplied standard deviations): ``x_sd`` /
  ``y_sd`` in km used as given.
"""

from typing import List, Mapping

import numpy as np
import pandas as pd

# Multiplicative error factors relative to Argos class 3
ARGOS_EMF = pd.DataFrame(
    {
        "lc": ["G", "3", "2", "1", "0", "A", "B", "Z"],
        "emf_x": [0.1, 1.0, 1.54, 3.72, 13.51, 23.9, 44.22, 44.22],
        "emf_y": [0.1, 1.0, 1.29, 2.55, 14.99, 22.0, 32.53, 32.53],
    }
)

OBS_TYPES = ("LS", "KF", "SD")

# Starting values (natural scale) for observation-error parameters
OBS_PARAM_START = {"tau_x": 0.5, "tau_y": 0.5, "rho_o": 0.0, "psi": 1.0}


def assign_error_model(df: pd.DataFrame) -> pd.DataFrame:
    """
    Attach ``obs_type`` and ``emf_x``/``emf_y`` columns to an observation table.

    Rows with both ``x_sd`` and ``y_sd`` are SD; non-GPS rows with a complete
    error ellipse are KF; everything else is LS.
    """
    out = df.copy()
    n = len(out)
    obs_type = np.full(n, "LS", dtype=object)

    if {"smaj", "smin", "eor"}.issubset(out.columns):
        has_ellipse = out[["smaj", "smin", "eor"]].notna().all(axis=1).to_numpy()
        obs_type[has_ellipse & (out["lc"] != "G").to_numpy()] = "KF"
    if {"x_sd", "y_sd"}.issubset(out.columns):
        has_sd = out[["x_sd", "y_sd"]].notna().all(axis=1).to_numpy()
        obs_type[has_sd] = "SD"

    out["obs_type"] = obs_type
    emf = ARGOS_EMF.set_index("lc")
    out["emf_x"] = out["lc"].map(emf["emf_x"]).astype(float)
    out["emf_y"] = out["lc"].map(emf["emf_y"]).astype(float)
    not_ls = out["obs_type"] != "LS"
    out.loc[not_ls, ["emf_x", "emf_y"]] = np.nan
    return out


def observation_parameters(data: pd.DataFrame) -> List[str]:
    """Names of the observation-error parameters a track's data can identify."""
    types = set(data["obs_type"].unique())
    names = []
    if "LS" in types:
        names += ["tau_x", "tau_y", "rho_o"]
    if "KF" in types:
        names.append("psi")
    return names


def observation_covariances(data: pd.DataFrame, params: Mapping[str, float]) -> np.ndarray:
    """
    Per-observation 2x2 error covariance matrices in km^2.

    Parameters
    ----------
    data : pd.DataFrame
        Prefiltered rows of one track (must carry ``obs_type``).
    params : mapping
        Natural-scale values for ``tau_x``, ``tau_y``, ``rho_o``, ``psi``.
        Missing entries fall back to their starting values.

    Returns
    -------
    np.ndarray
        Array of shape (n, 2, 2).
    """
    p = {**OBS_PARAM_START, **dict(params)}
    n = len(data)
    R = np.zeros((n, 2, 2))
    obs_type = data["obs_type"].to_numpy()

    # ========== LS (Argos least-squares and GPS) ==========
    ls = obs_type == "LS"
    if ls.any():
        sx = p["tau_x"] * data["emf_x"].to_numpy(dtype=float)[ls]
        sy = p["tau_y"] * data["emf_y"].to_numpy(dtype=float)[ls]
        R[ls, 0, 0] = sx ** 2
        R[ls, 1, 1] = sy ** 2
        R[ls, 0, 1] = R[ls, 1, 0] = p["rho_o"] * sx * sy

    # ========== KF (Argos error ellipse) ==========
    kf = obs_type == "KF"
    if kf.any():
        M = data["smaj"].to_numpy(dtype=float)[kf] / 1000.0
        m = data["smin"].to_numpy(dtype=float)[kf] / 1000.0
        c = np.radians(data["eor"].to_numpy(dtype=float)[kf])
        M2 = (M / np.sqrt(2.0)) ** 2
        m2 = (m * p["psi"] / np.sqrt(2.0)) ** 2
        s2c = np.sin(c) ** 2
        c2c = np.cos(c) ** 2
        R[kf, 0, 0] = M2 * s2c + m2 * c2c
        R[kf, 1, 1] = M2 * c2c + m2 * s2c
        R[kf, 0, 1] = R[kf, 1, 0] = (M2 - m2) * np.cos(c) * np.sin(c)

    # ========== SD (supplied standard deviations) ==========
    sd = obs_type == "SD"
    if sd.any():
        R[sd, 0, 0] = data["x_sd"].to_numpy(dtype=float)[sd] ** 2
        R[sd, 1, 1] = data["y_sd"].to_numpy(dtype=float)[sd] ** 2

    # Guard degenerate ellipses / zero SDs
    R[:, 0, 0] = np.maximum(R[:, 0, 0], 1e-8)
    R[:, 1, 1] = np.maximum(R[:, 1, 1], 1e-8)
    return R
