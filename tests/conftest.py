"""
Shared fixtures for the pymotum test suite.

Model fits are expensive, so the fitted objects are session-scoped and shared
across test modules.
"""

import matplotlib

matplotlib.use("Agg")

import pytest

import pymotum as pm
from pymotum.modelling import fit_mpm, fit_ssm, sim_tracks


@pytest.fixture(scope="session")
def sample_path():
    return pm.sample_data_path()


@pytest.fixture(scope="session")
def sim_obs():
    """Two simulated crw tracks with Argos LS errors."""
    return sim_tracks(n_tracks=2, n_obs=60, model="crw", obs_interval=2.0, seed=42)


@pytest.fixture(scope="session")
def crw_fit(sim_obs):
    return fit_ssm(sim_obs, model="crw", time_step=6)


@pytest.fixture(scope="session")
def crw_mpm(crw_fit):
    return fit_mpm(crw_fit, model="mpm")


@pytest.fixture
def csv_text():
    return (
        "id,date,lc,lon,lat\n"
        "a,2020-01-01 00:00:00,3,70.00,-50.00\n"
        "a,2020-01-01 04:00:00,2,70.05,-50.02\n"
        "a,2020-01-01 08:00:00,A,70.11,-50.03\n"
        "b,2020-01-02 00:00:00,B,71.00,-49.00\n"
        "b,2020-01-02 06:00:00,1,71.02,-49.05\n"
    )


@pytest.fixture
def csv_file(csv_text, tmp_path):
    path = tmp_path / "tracks.csv"
    path.write_text(csv_text)
    return path
