"""
Kalman filtering core for pymotum.

A single forward filter / backward Rauch-Tung-Striebel (RTS) smoother serves
every model in the library. The process model is supplied as a transition
callback returning the predicted mean, its Jacobian and the process noise, so
the same code runs:

- linear models (random walk, correlated random walk), where the Jacobian is
  simply the transition matrix and the filter is exact; and
- non-linear move-persistence models, where it is an Extended Kalman Filter
  and the smoother is the extended RTS smoother.

The filter works on an arbitrary time grid with some steps unobserved
(prediction-only steps), which is how regular predictions are produced through
gaps in the data. The log-likelihood is accumulated from the prediction-error
decomposition over observed steps.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np
import scipy.linalg as sla

_LOG_2PI = np.log(2.0 * np.pi)

# (x_prev, step_index) -> (x_pred, F_jacobian, Q)
Transition = Callable[[np.ndarray, int], Tuple[np.ndarray, np.ndarray, np.ndarray]]


@dataclass
class FilterResult:
    """
    Output of the forward pass.

    Attributes
    ----------
    x_pred, P_pred : np.ndarray
        Predicted states (n x k) and covariances (n x k x k). Row 0 holds the prior.
    x_filt, P_filt : np.ndarray
        Filtered states and covariances.
    F : np.ndarray
        Transition Jacobians (n x k x k); F[i] maps step i-1 to step i.
    innovations : np.ndarray
        Observation minus prediction (n x 2); NaN where unobserved.
    S : np.ndarray
        Innovation covariances (n x 2 x 2); NaN where unobserved.
    loglik : float
        Gaussian log-likelihood of the observed steps after the first.
    """

    x_pred: np.ndarray
    P_pred: np.ndarray
    x_filt: np.ndarray
    P_filt: np.ndarray
    F: np.ndarray
    innovations: np.ndarray
    S: np.ndarray
    loglik: float


def linear_transition(F: np.ndarray, Q: np.ndarray) -> Transition:
    """Wrap stacked transition/noise matrices as a transition callback."""

    def _step(x_prev, i):
        return F[i] @ x_prev, F[i], Q[i]

    return _step


def _safe_inv(M: np.ndarray) -> np.ndarray:
    try:
        return sla.inv(M)
    except (np.linalg.LinAlgError, ValueError):
        return np.linalg.pinv(M)


def kalman_filter(
    x0: np.ndarray,
    P0: np.ndarray,
    Z: np.ndarray,
    R: np.ndarray,
    observed: np.ndarray,
    transition: Transition,
    H: np.ndarray,
    store: bool = True,
) -> FilterResult:
    """
    Forward (extended) Kalman filter over a mixed observed/unobserved grid.

    Parameters
    ----------
    x0, P0 : np.ndarray
        State and covariance at step 0. Step 0 is taken as already conditioned
        on its observation, so it contributes nothing to the likelihood.
    Z : np.ndarray
        Observations (n x 2); rows where ``observed`` is False are ignored.
    R : np.ndarray
        Observation error covariances (n x 2 x 2).
    observed : np.ndarray of bool
        Which steps carry an observation.
    transition : callable
        ``(x_prev, i) -> (x_pred, F, Q)`` for step i >= 1.
    H : np.ndarray
        Observation matrix (2 x k).
    store : bool, default=True
        Keep per-step arrays. The likelihood-only path used by the optimizer
        passes False and only the final log-likelihood is meaningful.

    Returns
    -------
    FilterResult
        ``loglik`` is ``-inf`` if an innovation covariance is not positive
        definite or the state diverges.
    """
    n = len(Z)
    k = len(x0)
    rows = n if store else 1
    x_pred = np.zeros((rows, k))
    P_pred = np.zeros((rows, k, k))
    x_filt = np.zeros((rows, k))
    P_filt = np.zeros((rows, k, k))
    F_all = np.zeros((rows, k, k))
    innovations = np.full((rows, 2), np.nan)
    S_all = np.full((rows, 2, 2), np.nan)

    x = np.asarray(x0, dtype=float).copy()
    P = np.asarray(P0, dtype=float).copy()
    I_k = np.eye(k)
    if store:
        x_pred[0] = x
        P_pred[0] = P
        x_filt[0] = x
        P_filt[0] = P
        F_all[0] = I_k

    loglik = 0.0
    for i in range(1, n):
        # ========== PREDICTION STEP ==========
        xp, F, Q = transition(x, i)
        Pp = F @ P @ F.T + Q
        Pp = 0.5 * (Pp + Pp.T)

        if observed[i]:
            # ========== UPDATE STEP ==========
            v = Z[i] - H @ xp
            S = H @ Pp @ H.T + R[i]
            try:
                c, low = sla.cho_factor(S)
            except (np.linalg.LinAlgError, ValueError):
                loglik = -np.inf
                break
            K = sla.cho_solve((c, low), H @ Pp).T
            x_new = xp + K @ v
            IKH = I_k - K @ H
            # Joseph form keeps P symmetric positive definite
            P_new = IKH @ Pp @ IKH.T + K @ R[i] @ K.T
            logdet = 2.0 * np.sum(np.log(np.abs(np.diag(c))))
            maha = float(v @ sla.cho_solve((c, low), v))
            loglik -= 0.5 * (logdet + maha + 2.0 * _LOG_2PI)
        else:
            v = None
            S = None
            x_new = xp
            P_new = Pp

        if not np.all(np.isfinite(x_new)):
            loglik = -np.inf
            break

        if store:
            x_pred[i] = xp
            P_pred[i] = Pp
            x_filt[i] = x_new
            P_filt[i] = P_new
            F_all[i] = F
            if v is not None:
                innovations[i] = v
                S_all[i] = S
        x, P = x_new, P_new

    return FilterResult(x_pred, P_pred, x_filt, P_filt, F_all, innovations, S_all, float(loglik))


def rts_smoother(fr: FilterResult) -> Tuple[np.ndarray, np.ndarray]:
    """
    Backward Rauch-Tung-Striebel pass.

    Returns
    -------
    x_smooth : np.ndarray
        Smoothed states (n x k).
    P_smooth : np.ndarray
        Smoothed covariances (n x k x k).
    """
    n = len(fr.x_filt)
    x_smooth = np.zeros_like(fr.x_filt)
    P_smooth = np.zeros_like(fr.P_filt)
    x_smooth[-1] = fr.x_filt[-1]
    P_smooth[-1] = fr.P_filt[-1]

    for k in range(n - 2, -1, -1):
        F = fr.F[k + 1]
        P_pred_k1 = fr.P_pred[k + 1]
        # Smoother gain C = P_filt F' P_pred^-1
        Ck = fr.P_filt[k] @ F.T @ _safe_inv(P_pred_k1)
        x_smooth[k] = fr.x_filt[k] + Ck @ (x_smooth[k + 1] - fr.x_pred[k + 1])
        P = fr.P_filt[k] + Ck @ (P_smooth[k + 1] - P_pred_k1) @ Ck.T
        P_smooth[k] = 0.5 * (P + P.T)

    return x_smooth, P_smooth


def standard_errors(P: np.ndarray, index: int) -> np.ndarray:
    """Standard errors of one state component from stacked covariances."""
    return np.sqrt(np.maximum(P[:, index, index], 0.0))


def numerical_hessian(fun: Callable[[np.ndarray], float], theta: np.ndarray, step: Optional[float] = None) -> np.ndarray:
    """
    Central-difference Hessian of a scalar function.

    Used to derive standard errors of the maximum-likelihood estimates on the
    optimizer's (transformed) scale.
    """
    theta = np.asarray(theta, dtype=float)
    m = len(theta)
    h = np.full(m, step) if step is not None else 1e-4 * np.maximum(1.0, np.abs(theta))
    H = np.zeros((m, m))
    f0 = fun(theta)
    for i in range(m):
        ei = np.zeros(m)
        ei[i] = h[i]
        fp = fun(theta + ei)
        fm = fun(theta - ei)
        H[i, i] = (fp - 2.0 * f0 + fm) / (h[i] ** 2)
        for j in range(i + 1, m):
            ej = np.zeros(m)
            ej[j] = h[j]
            fpp = fun(theta + ei + ej)
            fpm = fun(theta + ei - ej)
            fmp = fun(theta - ei + ej)
            fmm = fun(theta - ei - ej)
            H[i, j] = H[j, i] = (fpp - fpm - fmp + fmm) / (4.0 * h[i] * h[j])
    return H
