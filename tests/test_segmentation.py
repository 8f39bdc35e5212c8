"""
Tests for gap segmentation and sampling-rate summaries.
"""

import numpy as np
import pandas as pd
import pytest

from pymotum.preprocessing import get_sampling_rate, split_by_gap, suggest_time_step


@pytest.fixture
def gappy():
    """Track 'a': 12 fixes, a 5-day gap, 12 more fixes. Track 'b': 3 fixes, no gap."""
    first = pd.date_range("2020-01-01", periods=12, freq="4h")
    second = pd.date_range("2020-01-08", periods=12, freq="4h")
    dates_a = first.append(second)
    dates_b = pd.date_range("2020-01-01", periods=3, freq="6h")
    return pd.DataFrame(
        {
            "id": ["a"] * 24 + ["b"] * 3,
            "date": dates_a.append(dates_b),
            "lc": "2",
            "lon": np.linspace(70, 72, 27),
            "lat": np.linspace(-50, -51, 27),
        }
    )


class TestSplitByGap:
    """Tests for split_by_gap."""

    def test_split_ids(self, gappy):
        out = split_by_gap(gappy, gap_hours=48, min_obs=3)

        assert out["id"].unique().tolist() == ["a_1", "a_2", "b"]
        assert (out["id"] == "a_1").sum() == 12
        assert len(out) == len(gappy)

    def test_short_segments_dropped(self, gappy):
        with pytest.warns(UserWarning, match="dropped 1 segment"):
            out = split_by_gap(gappy, gap_hours=48, min_obs=10)

        assert "b" not in set(out["id"])
        assert len(out) == 24

    def test_no_gaps(self, gappy):
        out = split_by_gap(gappy, gap_hours=24 * 30, min_obs=3)

        assert sorted(out["id"].unique()) == ["a", "b"]

    def test_invalid_gap(self, gappy):
        with pytest.raises(ValueError):
            split_by_gap(gappy, gap_hours=0)


class TestSamplingRate:
    """Tests for get_sampling_rate and suggest_time_step."""

    def test_per_track_rates(self, gappy):
        rates = get_sampling_rate(gappy).set_index("id")

        assert rates.loc["b", "n"] == 3
        assert rates.loc["b", "median_h"] == pytest.approx(6.0)
        assert rates.loc["a", "median_h"] == pytest.approx(4.0)
        assert rates.loc["a", "max_h"] > 100

    def test_single_fix_track(self):
        df = pd.DataFrame({"id": ["x"], "date": ["2020-01-01 00:00:00"]})
        rates = get_sampling_rate(df)

        assert np.isnan(rates["median_h"].iloc[0])

    def test_suggest_time_step(self, gappy):
        assert suggest_time_step(gappy) == 5.0

    def test_missing_column(self):
        with pytest.raises(ValueError, match="date"):
            get_sampling_rate(pd.DataFrame({"id": ["a"]}))
