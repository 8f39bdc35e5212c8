"""
Tests for telemetry loading and validation.
"""

import numpy as np
import pandas as pd
import polars as pl
import pytest

from pymotum.exceptions import ParseError, SchemaError
from pymotum.preprocessing import check_tracks, format_data, read_tracks


class TestReadTracks:
    """Tests for read_tracks."""

    def test_preserves_rows_and_columns(self, csv_file):
        obs = read_tracks(csv_file)

        assert len(obs) == 5
        assert list(obs.columns) == ["id", "date", "lc", "lon", "lat"]
        assert obs["id"].tolist() == ["a", "a", "a", "b", "b"]

    def test_types(self, csv_file):
        obs = read_tracks(csv_file)

        assert pd.api.types.is_datetime64_any_dtype(obs["date"])
        assert obs["lc"].tolist() == ["3", "2", "A", "B", "1"]
        assert obs["lon"].dtype == float

    def test_sample_file_has_three_tracks(self, sample_path):
        obs = read_tracks(sample_path)

        assert obs["id"].nunique() == 3
        for _, track in obs.groupby("id"):
            assert np.all(np.diff(track["date"].to_numpy()) > np.timedelta64(0, "ns"))

    def test_dotted_sd_headers(self, tmp_path):
        path = tmp_path / "gl.csv"
        path.write_text(
            "id,date,lc,lon,lat,x.sd,y.sd\n"
            "g1,2020-01-01 12:00:00,GL,70.0,-50.0,50,80\n"
            "g1,2020-01-02 12:00:00,GL,71.0,-50.5,60,90\n"
        )
        obs = read_tracks(path)

        assert {"x_sd", "y_sd"}.issubset(obs.columns)
        assert obs["x_sd"].tolist() == [50.0, 60.0]

    def test_invalid_encoding(self, tmp_path):
        path = tmp_path / "latin.csv"
        path.write_bytes(b"id,date,lc,lon,lat\n\xff\xfe,2020-01-01 00:00:00,3,70,-50\n")

        with pytest.raises(ParseError, match="UTF-8") as err:
            read_tracks(path)
        assert isinstance(err.value.__cause__, UnicodeDecodeError)
        assert str(path) in str(err.value)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("")

        with pytest.raises(SchemaError, match="empty"):
            read_tracks(path)


class TestFormatData:
    """Tests for format_data validation."""

    def test_missing_column(self):
        df = pd.DataFrame({"id": ["a"], "date": ["2020-01-01 00:00:00"], "lon": [1.0], "lat": [2.0]})

        with pytest.raises(SchemaError, match="lc"):
            format_data(df)

    def test_partial_ellipse(self):
        df = pd.DataFrame(
            {"id": ["a"], "date": ["2020-01-01 00:00:00"], "lc": ["3"], "lon": [1.0], "lat": [2.0], "smaj": [100.0]}
        )

        with pytest.raises(SchemaError, match="ellipse"):
            format_data(df)

    def test_bad_date_reports_row(self):
        df = pd.DataFrame(
            {
                "id": ["a", "a"],
                "date": ["2020-01-01 00:00:00", "01/02/2020"],
                "lc": ["3", "3"],
                "lon": [1.0, 1.1],
                "lat": [2.0, 2.1],
            }
        )

        with pytest.raises(ParseError) as err:
            format_data(df)
        assert err.value.row == 1
        assert err.value.column == "date"

    def test_non_numeric_coordinate(self):
        df = pd.DataFrame(
            {"id": ["a"], "date": ["2020-01-01 00:00:00"], "lc": ["3"], "lon": ["east"], "lat": [2.0]}
        )

        with pytest.raises(ParseError, match="Non-numeric"):
            format_data(df)

    def test_unknown_location_class(self):
        df = pd.DataFrame(
            {"id": ["a"], "date": ["2020-01-01 00:00:00"], "lc": ["Q"], "lon": [1.0], "lat": [2.0]}
        )

        with pytest.raises(ParseError, match="location class"):
            format_data(df)

    def test_out_of_range_latitude(self):
        df = pd.DataFrame(
            {"id": ["a"], "date": ["2020-01-01 00:00:00"], "lc": ["3"], "lon": [1.0], "lat": [95.0]}
        )

        with pytest.raises(ParseError):
            format_data(df)

    def test_gl_without_sd_columns(self):
        df = pd.DataFrame(
            {"id": ["a"], "date": ["2020-01-01 00:00:00"], "lc": ["GL"], "lon": [1.0], "lat": [2.0]}
        )

        with pytest.raises(SchemaError, match="GL"):
            format_data(df)

    def test_numeric_location_classes(self):
        df = pd.DataFrame(
            {
                "id": [1, 1],
                "date": ["2020-01-01 00:00:00", "2020-01-01 01:00:00"],
                "lc": [3, 0.0],
                "lon": [1.0, 1.1],
                "lat": [2.0, 2.1],
            }
        )
        out = format_data(df)

        assert out["lc"].tolist() == ["3", "0"]
        assert out["id"].tolist() == ["1", "1"]

    def test_accepts_polars(self):
        df = pl.DataFrame(
            {
                "id": ["a", "a"],
                "date": ["2020-01-01 00:00:00", "2020-01-01 01:00:00"],
                "lc": ["3", "2"],
                "lon": [1.0, 1.1],
                "lat": [2.0, 2.1],
            }
        )
        out = format_data(df)

        assert isinstance(out, pd.DataFrame)
        assert len(out) == 2


class TestCheckTracks:
    """Tests for check_tracks."""

    def test_duplicate_timestamp(self, csv_file):
        obs = read_tracks(csv_file)
        obs.loc[1, "date"] = obs.loc[0, "date"]

        with pytest.raises(ParseError, match="strictly increasing"):
            check_tracks(obs)

    def test_clean_table_passes(self, csv_file):
        check_tracks(read_tracks(csv_file))
