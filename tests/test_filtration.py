"""
Tests for observation prefiltering.
"""

import numpy as np
import pandas as pd
import pytest

from pymotum.preprocessing import format_data, prefilter, sda_filter, speed_filter


@pytest.fixture
def straight_track():
    """Ten fixes moving east at ~0.5 m/s, 2 hours apart, with one wild outlier."""
    dates = pd.date_range("2020-01-01", periods=10, freq="2h")
    lon = 70.0 + np.arange(10) * 0.05
    lat = np.full(10, -50.0)
    lat[5] = -48.0  # ~220 km off track
    return format_data(
        pd.DataFrame({"id": "t1", "date": dates.strftime("%Y-%m-%d %H:%M:%S"), "lc": "2", "lon": lon, "lat": lat})
    )


class TestSpeedFilter:
    """Tests for speed_filter and sda_filter."""

    def test_outlier_removed(self, straight_track):
        keep = speed_filter(straight_track["lon"], straight_track["lat"], straight_track["date"], vmax=3.0)

        assert not keep[5]
        assert keep.sum() == 9

    def test_plausible_track_untouched(self, straight_track):
        track = straight_track.drop(index=5)
        keep = speed_filter(track["lon"], track["lat"], track["date"], vmax=3.0)

        assert keep.all()

    def test_sda_rejects_spike(self):
        # Out-and-back spike of ~11 km between two nearby fixes, slow enough to pass the speed filter
        dates = pd.date_range("2020-01-01", periods=5, freq="12h")
        lon = np.array([70.0, 70.01, 70.02, 70.03, 70.04])
        lat = np.array([-50.0, -50.0, -49.9, -50.0, -50.0])
        keep = sda_filter(lon, lat, dates, vmax=5.0, ang=(15, 25), distlim=(2500, 5000))

        assert not keep[2]
        assert keep[[0, 1, 3, 4]].all()

    def test_mismatched_angle_limits(self):
        with pytest.raises(ValueError):
            sda_filter([0, 1, 2], [0, 0, 0], pd.date_range("2020", periods=3, freq="h"), ang=(15,), distlim=(1, 2))


class TestPrefilter:
    """Tests for prefilter."""

    def test_rows_kept_and_flagged(self, straight_track):
        with pytest.warns(UserWarning, match="prefilter flagged"):
            out = prefilter(straight_track, vmax=3.0)

        assert len(out) == len(straight_track)
        assert out.loc[~out["keep"], "filtered_by"].tolist() == ["speed"]
        assert out.loc[~out["keep"], ["x", "y"]].isna().all().all()
        assert out.loc[out["keep"], ["x", "y"]].notna().all().all()

    def test_duplicate_keeps_best_class(self):
        df = format_data(
            pd.DataFrame(
                {
                    "id": ["a", "a", "a", "a"],
                    "date": ["2020-01-01 00:00:00", "2020-01-01 03:00:00", "2020-01-01 03:00:00", "2020-01-01 06:00:00"],
                    "lc": ["2", "B", "1", "2"],
                    "lon": [70.0, 70.02, 70.03, 70.05],
                    "lat": [-50.0, -50.0, -50.0, -50.0],
                }
            )
        )
        with pytest.warns(UserWarning):
            out = prefilter(df, spdf=False)

        dup = out[out["filtered_by"] == "duplicate"]
        assert len(dup) == 1
        assert dup["lc"].iloc[0] == "B"
        assert out.loc[out["keep"], "lc"].tolist() == ["2", "1", "2"]

    def test_min_dt(self):
        df = format_data(
            pd.DataFrame(
                {
                    "id": ["a"] * 4,
                    "date": ["2020-01-01 00:00:00", "2020-01-01 00:00:30", "2020-01-01 02:00:00", "2020-01-01 04:00:00"],
                    "lc": ["3"] * 4,
                    "lon": [70.0, 70.0, 70.02, 70.04],
                    "lat": [-50.0] * 4,
                }
            )
        )
        with pytest.warns(UserWarning):
            out = prefilter(df, spdf=False, min_dt=60)

        assert out["filtered_by"].tolist() == ["", "min_dt", "", ""]

    def test_error_model_columns(self, straight_track):
        out = prefilter(straight_track.drop(index=5))

        assert (out["obs_type"] == "LS").all()
        assert np.allclose(out["emf_x"], 1.54)
        assert np.allclose(out["emf_y"], 1.29)

    def test_accepts_raw_table(self, csv_file):
        raw = pd.read_csv(csv_file, dtype={"lc": str})
        out = prefilter(raw, spdf=False)

        assert len(out) == 5
        assert pd.api.types.is_datetime64_any_dtype(out["date"])
