"""
Tests for measurement-error models and projection helpers.
"""

import numpy as np
import pandas as pd
import pytest

from pymotum.exceptions import ProjectionError
from pymotum.modelling.measurement import assign_error_model, observation_covariances, observation_parameters
from pymotum.modelling.projection import project_track, spherical_centroid, unproject, validate_crs


@pytest.fixture
def mixed():
    return pd.DataFrame(
        {
            "lc": ["3", "B", "G", "2", "GL"],
            "smaj": [np.nan, np.nan, np.nan, 2000.0, np.nan],
            "smin": [np.nan, np.nan, np.nan, 500.0, np.nan],
            "eor": [np.nan, np.nan, np.nan, 90.0, np.nan],
            "x_sd": [np.nan, np.nan, np.nan, np.nan, 40.0],
            "y_sd": [np.nan, np.nan, np.nan, np.nan, 90.0],
        }
    )


class TestErrorModel:
    """Tests for assign_error_model and observation_covariances."""

    def test_obs_types(self, mixed):
        out = assign_error_model(mixed)

        assert out["obs_type"].tolist() == ["LS", "LS", "LS", "KF", "SD"]
        assert out["emf_x"].iloc[1] == pytest.approx(44.22)
        assert np.isnan(out["emf_x"].iloc[3])

    def test_parameters_follow_types(self, mixed):
        out = assign_error_model(mixed)

        assert observation_parameters(out) == ["tau_x", "tau_y", "rho_o", "psi"]
        assert observation_parameters(out.iloc[:3]) == ["tau_x", "tau_y", "rho_o"]
        assert observation_parameters(out.iloc[4:]) == []

    def test_ls_covariance(self, mixed):
        out = assign_error_model(mixed)
        R = observation_covariances(out, {"tau_x": 2.0, "tau_y": 0.5, "rho_o": 0.5})

        assert R.shape == (5, 2, 2)
        assert R[0, 0, 0] == pytest.approx(4.0)
        assert R[0, 1, 1] == pytest.approx(0.25)
        assert R[0, 0, 1] == pytest.approx(0.5 * 2.0 * 0.5)
        assert R[2, 0, 0] == pytest.approx((2.0 * 0.1) ** 2)

    def test_kf_covariance_east_west_ellipse(self, mixed):
        out = assign_error_model(mixed)
        R = observation_covariances(out, {"psi": 1.0})

        # eor = 90 deg: the major axis lies along x
        assert R[3, 0, 0] == pytest.approx(2.0 ** 2 / 2.0)
        assert R[3, 1, 1] == pytest.approx(0.5 ** 2 / 2.0)
        assert R[3, 0, 1] == pytest.approx(0.0, abs=1e-9)

    def test_psi_inflates_minor_axis(self, mixed):
        out = assign_error_model(mixed)
        base = observation_covariances(out, {"psi": 1.0})
        wide = observation_covariances(out, {"psi": 3.0})

        assert wide[3, 1, 1] == pytest.approx(9.0 * base[3, 1, 1])
        assert wide[3, 0, 0] == pytest.approx(base[3, 0, 0])

    def test_sd_used_as_given(self, mixed):
        R = observation_covariances(assign_error_model(mixed), {})

        assert R[4, 0, 0] == pytest.approx(1600.0)
        assert R[4, 1, 1] == pytest.approx(8100.0)


class TestProjection:
    """Tests for the per-track AEQD projection."""

    def test_round_trip(self):
        lon = np.array([70.0, 70.5, 71.0])
        lat = np.array([-50.0, -50.2, -49.9])
        x, y, centre = project_track(lon, lat)
        lon2, lat2 = unproject(x, y, centre)

        assert np.allclose(lon, lon2)
        assert np.allclose(lat, lat2)

    def test_kilometre_units(self):
        x, y, _ = project_track(np.array([0.0, 1.0]), np.array([0.0, 0.0]))

        assert np.hypot(x[1] - x[0], y[1] - y[0]) == pytest.approx(111.32, rel=1e-3)

    def test_antimeridian_centroid(self):
        _, cen_lon = spherical_centroid(np.array([179.0, -179.0]), np.array([0.0, 0.0]))

        assert abs(abs(cen_lon) - 180.0) < 1e-6

    def test_validate_crs(self):
        assert validate_crs("EPSG:3031").is_projected

        with pytest.raises(ProjectionError):
            validate_crs("+proj=notaprojection")
        with pytest.raises(ProjectionError):
            validate_crs("EPSG:4978")
