"""
Tests for result extraction, joins and export.
"""

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest

from pymotum.modelling import fit_mpm, fit_ssm
from pymotum.preprocessing import read_tracks
from pymotum.utilities import export_csv, grab, join


class TestGrab:
    """Tests for grab."""

    def test_predicted(self, crw_fit):
        pred = grab(crw_fit, "predicted")

        assert len(pred) == sum(len(t.predicted) for t in crw_fit.tracks)
        assert pred["id"].unique().tolist() == ["sim01", "sim02"]

    def test_data_includes_rejected(self, crw_fit, sim_obs):
        data = grab(crw_fit, "data")

        assert len(data) == len(sim_obs)
        assert "keep" in data.columns

    def test_as_geo(self, crw_fit):
        geo = grab(crw_fit, "fitted", as_geo=True)

        assert isinstance(geo, gpd.GeoDataFrame)
        assert geo.crs.to_epsg() == 4326
        assert np.allclose(geo.geometry.x, geo["lon"])

    def test_mpm_normalised(self, crw_mpm):
        g = grab(crw_mpm, normalise=True)

        for _, track in g.groupby("id"):
            assert track["g"].min() == pytest.approx(0.0)
            assert track["g"].max() == pytest.approx(1.0)

    def test_mpm_grouped_normalisation(self, crw_mpm):
        g = grab(crw_mpm, normalise=True, group=True)

        assert g["g"].min() == pytest.approx(0.0)
        assert g["g"].max() == pytest.approx(1.0)

    def test_invalid_what(self, crw_fit, crw_mpm):
        with pytest.raises(ValueError):
            grab(crw_fit, "smoothed")
        with pytest.raises(ValueError):
            grab(crw_mpm, "predicted")


class TestJoin:
    """Tests for join."""

    def test_rows_preserved(self, crw_fit, crw_mpm):
        combined = join(crw_fit, crw_mpm)

        assert len(combined) == len(grab(crw_fit, "predicted"))
        assert combined["g"].notna().all()
        assert {"x_se", "y_se", "g", "g_se"}.issubset(combined.columns)

    def test_missing_behaviour_is_nan(self, crw_fit):
        predicted = grab(crw_fit, "predicted")
        partial = fit_mpm(predicted[predicted["id"] == "sim01"])
        combined = join(crw_fit, partial)

        assert len(combined) == len(predicted)
        assert combined.loc[combined["id"] == "sim01", "g"].notna().all()
        assert combined.loc[combined["id"] == "sim02", "g"].isna().all()

    def test_fitted_locations(self, crw_fit):
        mp = fit_mpm(crw_fit, what="fitted")
        combined = join(crw_fit, mp, what_ssm="fitted")

        assert len(combined) == len(grab(crw_fit, "fitted"))
        assert combined["g"].notna().all()

    def test_mismatched_what_gives_nan(self, crw_fit, crw_mpm):
        combined = join(crw_fit, crw_mpm, what_ssm="fitted")

        assert len(combined) == len(grab(crw_fit, "fitted"))
        assert combined["g"].isna().mean() > 0.5


def test_export_round_trip(crw_fit, crw_mpm, tmp_path):
    combined = join(crw_fit, crw_mpm, as_geo=True)
    path = export_csv(combined, tmp_path / "combined.csv")
    back = pd.read_csv(path)

    assert len(back) == len(combined)
    assert "geometry" not in back.columns
    assert back["date"].iloc[0].count(":") == 2


def test_sample_file_through_join(sample_path):
    obs = read_tracks(sample_path)
    fit = fit_ssm(obs, model="rw", time_step=12)
    combined = join(fit, fit_mpm(fit))

    assert set(combined["id"]) == {t.id for t in fit.tracks}
    assert len(combined) == len(grab(fit, "predicted"))
