"""
Tests for track simulation.
"""

import numpy as np
import pandas as pd
import pytest

from pymotum.modelling import sim_tracks
from pymotum.preprocessing import format_data


class TestSimTracks:
    """Tests for sim_tracks."""

    def test_loader_format(self):
        obs = sim_tracks(n_tracks=3, n_obs=20, seed=1)
        out = format_data(obs)

        assert len(out) == 60
        assert out["id"].unique().tolist() == ["sim01", "sim02", "sim03"]
        for _, track in out.groupby("id"):
            assert track["date"].is_monotonic_increasing

    def test_reproducible(self):
        a = sim_tracks(n_tracks=2, n_obs=30, model="rw", seed=5)
        b = sim_tracks(n_tracks=2, n_obs=30, model="rw", seed=5)

        pd.testing.assert_frame_equal(a, b)

    def test_kf_columns(self):
        obs = sim_tracks(n_tracks=1, n_obs=10, error="kf", seed=2)

        assert {"smaj", "smin", "eor"}.issubset(obs.columns)
        assert (obs["smin"] <= obs["smaj"]).all()

    def test_gap_removes_fixes(self):
        full = sim_tracks(n_tracks=1, n_obs=100, seed=3)
        gappy = sim_tracks(n_tracks=1, n_obs=100, gap=(0.4, 48.0), seed=3)

        assert len(gappy) < len(full)
        assert np.diff(gappy["date"].to_numpy()).max() > np.timedelta64(48, "h")

    def test_truth_for_mp(self):
        obs, truth = sim_tracks(n_tracks=1, n_obs=40, model="mp", error="none", seed=4, return_truth=True)

        assert len(truth) == 40
        assert truth["g"].iloc[1:].between(0, 1).all()
        assert np.allclose(obs["lon"], truth["lon"])

    def test_per_track_parameters(self):
        with pytest.raises(ValueError, match="sigma"):
            sim_tracks(n_tracks=3, sigma=[1.0, 2.0])

    def test_unknown_model(self):
        with pytest.raises(ValueError):
            sim_tracks(model="levy")
