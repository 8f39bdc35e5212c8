"""
Tests for the Kalman filter and RTS smoother core.
"""

import numpy as np
import pytest

from pymotum.modelling.kalman import kalman_filter, linear_transition, numerical_hessian, rts_smoother


def _random_walk(n, q=1.0):
    F = np.broadcast_to(np.eye(2), (n, 2, 2))
    Q = np.broadcast_to(np.eye(2) * q, (n, 2, 2))
    return linear_transition(F, Q)


class TestKalmanFilter:
    """Tests for kalman_filter."""

    def test_unobserved_steps_grow_variance(self):
        n = 7
        Z = np.zeros((n, 2))
        observed = np.array([True, True, False, False, False, True, True])
        R = np.broadcast_to(np.eye(2) * 0.1, (n, 2, 2))
        fr = kalman_filter(np.zeros(2), np.eye(2) * 0.1, Z, R, observed, _random_walk(n), np.eye(2))

        assert fr.P_filt[2, 0, 0] < fr.P_filt[3, 0, 0] < fr.P_filt[4, 0, 0]
        assert np.isnan(fr.innovations[3]).all()
        assert np.isfinite(fr.loglik)

    def test_loglik_matches_closed_form(self):
        # One update: x0 ~ N(0, 0), step q=1, obs noise r=1, z=(1, 2) -> v ~ N(0, 2 I)
        Z = np.array([[0.0, 0.0], [1.0, 2.0]])
        R = np.broadcast_to(np.eye(2), (2, 2, 2))
        fr = kalman_filter(np.zeros(2), np.zeros((2, 2)), Z, R, np.array([True, True]), _random_walk(2), np.eye(2))

        expected = -0.5 * (2 * np.log(2.0) + (1.0 + 4.0) / 2.0 + 2 * np.log(2 * np.pi))
        assert fr.loglik == pytest.approx(expected)

    def test_likelihood_only_mode(self):
        n = 5
        Z = np.cumsum(np.ones((n, 2)), axis=0)
        R = np.broadcast_to(np.eye(2), (n, 2, 2))
        observed = np.ones(n, dtype=bool)
        full = kalman_filter(np.zeros(2), np.eye(2), Z, R, observed, _random_walk(n), np.eye(2), store=True)
        quick = kalman_filter(np.zeros(2), np.eye(2), Z, R, observed, _random_walk(n), np.eye(2), store=False)

        assert quick.loglik == pytest.approx(full.loglik)


class TestSmoother:
    """Tests for rts_smoother."""

    def test_gap_midpoint_most_uncertain(self):
        n = 11
        Z = np.zeros((n, 2))
        observed = np.ones(n, dtype=bool)
        observed[3:8] = False
        R = np.broadcast_to(np.eye(2) * 0.1, (n, 2, 2))
        fr = kalman_filter(np.zeros(2), np.eye(2) * 0.1, Z, R, observed, _random_walk(n), np.eye(2))
        _, P = rts_smoother(fr)

        sd = np.sqrt(P[:, 0, 0])
        assert np.argmax(sd) == 5
        assert sd[5] > sd[1]

    def test_smoothed_last_equals_filtered(self):
        n = 4
        Z = np.arange(8, dtype=float).reshape(n, 2)
        R = np.broadcast_to(np.eye(2), (n, 2, 2))
        fr = kalman_filter(Z[0], np.eye(2), Z, R, np.ones(n, dtype=bool), _random_walk(n), np.eye(2))
        xs, _ = rts_smoother(fr)

        assert np.allclose(xs[-1], fr.x_filt[-1])


def test_numerical_hessian_quadratic():
    A = np.array([[3.0, 1.0], [1.0, 2.0]])
    H = numerical_hessian(lambda th: 0.5 * th @ A @ th, np.array([0.3, -0.2]))

    assert np.allclose(H, A, atol=1e-4)
