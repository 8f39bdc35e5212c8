"""
Tests for one-step-ahead residual diagnostics.
"""

import numpy as np
import pandas as pd
import pytest

from pymotum.exceptions import ConvergenceFailure
from pymotum.modelling import fit_ssm, osar, residual_summary


class TestOsar:
    """Tests for osar."""

    def test_shape(self, crw_fit):
        res = osar(crw_fit)

        assert list(res.columns) == ["id", "date", "coord", "residual"]
        for track in crw_fit.tracks:
            n_kept = int(track.data["keep"].sum())
            rows = res[res["id"] == track.id]
            assert (rows["coord"] == "x").sum() == n_kept - 1
            assert (rows["coord"] == "y").sum() == n_kept - 1

    def test_roughly_standard_normal(self, crw_fit):
        res = osar(crw_fit)

        assert np.isfinite(res["residual"]).all()
        assert abs(res["residual"].mean()) < 0.5
        assert 0.5 < res["residual"].std() < 2.0

    def test_cached(self, crw_fit):
        first = osar(crw_fit, ids=["sim01"])
        track = crw_fit["sim01"]

        assert track._osar_cache is not None
        second = osar(crw_fit, ids=["sim01"])
        assert second.equals(first)
        assert set(first["id"]) == {"sim01"}

    def test_summary(self, crw_fit):
        summary = residual_summary(osar(crw_fit))

        assert len(summary) == 2 * len(crw_fit.tracks)
        assert {"id", "coord", "n", "mean", "sd", "acf1"}.issubset(summary.columns)
        assert summary["sd"].between(0.3, 3.0).all()


def test_failed_tracks_skipped(sim_obs):
    one = sim_obs[sim_obs["id"] == "sim02"]
    tiny = one.iloc[:2].assign(id="tiny")
    fit = fit_ssm(pd.concat([one, tiny], ignore_index=True), model="rw", time_step=12)
    res = osar(fit)

    assert set(res["id"]) == {"sim02"}


def test_empty_fit_gives_empty_table(sim_obs):
    fit = fit_ssm(sim_obs.iloc[:2], model="rw")

    assert osar(fit).empty
    with pytest.raises(ConvergenceFailure):
        fit.raise_on_failure()
