"""
Telemetry data loading module for pymotum.

This module reads raw tag location records from delimited text (or an in-memory
pandas/polars table) into the canonical observation table used throughout the
library. Loading is strictly validating: required columns must be present,
timestamps and numeric fields must parse, and location classes must belong to
the known Argos/GPS domain. Apart from type coercion no transformation is
applied - no rows are dropped or reordered.

Expected columns
----------------
- ``id``: track (animal/tag) identifier
- ``date``: fix timestamp, ``YYYY-mm-dd HH:MM:SS`` by default (UTC)
- ``lc``: Argos location class ``3, 2, 1, 0, A, B, Z`` or a marker:
  ``G`` for GPS fixes, ``GL`` for light-level geolocation fixes
- ``lon``, ``lat``: decimal degrees (WGS84)
- optional ``smaj``, ``smin``, ``eor``: Argos Kalman-filter error ellipse
  (semi-axes in metres, orientation in degrees from north)
- optional ``x_sd``, ``y_sd``: per-axis error standard deviations in km
  (R-style ``x.sd``/``y.sd`` headers are accepted)
"""

import logging
from pathlib import Path
from typing import Union

import numpy as np
import pandas as pd
import polars as pl

from pymotum.exceptions import ParseError, SchemaError

logger = logging.getLogger(__name__)

DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

REQUIRED_COLUMNS = ("id", "date", "lc", "lon", "lat")
ELLIPSE_COLUMNS = ("smaj", "smin", "eor")
SD_COLUMNS = ("x_sd", "y_sd")

# Best to worst; position doubles as the quality rank used by the prefilter
LOCATION_CLASSES = ("G", "3", "2", "1", "0", "A", "B", "Z")
MARKER_CLASSES = ("GL",)
VALID_LC = frozenset(LOCATION_CLASSES + MARKER_CLASSES)


def _to_pandas(df: Union[pd.DataFrame, pl.DataFrame]) -> pd.DataFrame:
    if isinstance(df, pl.DataFrame):
        return df.to_pandas()
    if isinstance(df, pd.DataFrame):
        return df.copy()
    raise TypeError("df must be either a pandas DataFrame or a polars DataFrame.")


def _normalise_lc(value) -> str:
    """Map raw location-class cells (3, 3.0, ' a ') to their canonical string."""
    if isinstance(value, (int, np.integer)):
        return str(int(value))
    if isinstance(value, (float, np.floating)):
        if np.isnan(value):
            return ""
        if float(value).is_integer():
            return str(int(value))
        return str(value)
    return str(value).strip().upper()


def _first_bad_row(mask: pd.Series) -> int:
    return int(mask.to_numpy().nonzero()[0][0])


def _coerce_numeric(pdf: pd.DataFrame, col: str, required: bool) -> None:
    raw = pdf[col]
    values = pd.to_numeric(raw, errors="coerce")
    bad = values.isna() & raw.notna()
    if required:
        bad = bad | raw.isna()
    if bad.any():
        row = _first_bad_row(bad)
        raise ParseError(f"Non-numeric value {raw.iloc[row]!r}", row=row, column=col)
    pdf[col] = values.astype(float)


def _parse_dates(raw: pd.Series, date_format: str) -> pd.Series:
    if pd.api.types.is_datetime64_any_dtype(raw):
        dates = pd.to_datetime(raw)
    else:
        dates = pd.to_datetime(raw.astype("string").str.strip(), format=date_format, errors="coerce")
        bad = dates.isna()
        if bad.any():
            row = _first_bad_row(bad)
            raise ParseError(
                f"Timestamp {raw.iloc[row]!r} does not match format {date_format!r}",
                row=row,
                column="date",
            )
    if getattr(dates.dt, "tz", None) is not None:
        dates = dates.dt.tz_convert("UTC").dt.tz_localize(None)
    if dates.isna().any():
        row = _first_bad_row(dates.isna())
        raise ParseError("Missing timestamp", row=row, column="date")
    return dates.astype("datetime64[ns]")


def format_data(
    df: Union[pd.DataFrame, pl.DataFrame],
    date_format: str = DEFAULT_DATE_FORMAT,
) -> pd.DataFrame:
    """
    Validate and type-coerce a raw telemetry table into the observation model.

    Parameters
    ----------
    df : pd.DataFrame or pl.DataFrame
        Raw table with at least ``id, date, lc, lon, lat``.
    date_format : str, default='%Y-%m-%d %H:%M:%S'
        strptime format used for string timestamps. Columns that already hold
        datetimes are used as-is (timezone-aware values are converted to UTC).

    Returns
    -------
    pd.DataFrame
        Same rows in the same order, with ``id`` and ``lc`` as str, ``date`` as
        datetime64[ns] and every coordinate/error column as float.

    Raises
    ------
    SchemaError
        If a required column is absent, only part of the error-ellipse columns
        is present, or ``GL`` rows lack ``x_sd``/``y_sd``.
    ParseError
        On malformed timestamps, non-numeric or out-of-range coordinates,
        non-numeric error fields, or unknown location classes.
    """
    pdf = _to_pandas(df)
    pdf.columns = [str(c).strip().replace(".", "_") for c in pdf.columns]

    missing = [c for c in REQUIRED_COLUMNS if c not in pdf.columns]
    if missing:
        raise SchemaError(
            f"Missing required column(s) {missing}; found {list(pdf.columns)}"
        )

    present_ellipse = [c for c in ELLIPSE_COLUMNS if c in pdf.columns]
    if present_ellipse and len(present_ellipse) != len(ELLIPSE_COLUMNS):
        raise SchemaError(
            f"Error-ellipse columns must be supplied together {list(ELLIPSE_COLUMNS)}; "
            f"found only {present_ellipse}"
        )
    present_sd = [c for c in SD_COLUMNS if c in pdf.columns]
    if present_sd and len(present_sd) != len(SD_COLUMNS):
        raise SchemaError(f"Columns {list(SD_COLUMNS)} must be supplied together; found only {present_sd}")

    # ========== Identifier ==========
    if pdf["id"].isna().any():
        raise ParseError("Missing track id", row=_first_bad_row(pdf["id"].isna()), column="id")
    pdf["id"] = pdf["id"].astype(str).str.strip()

    # ========== Timestamps ==========
    pdf["date"] = _parse_dates(pdf["date"], date_format)

    # ========== Location class ==========
    lc = pdf["lc"].map(_normalise_lc)
    bad_lc = ~lc.isin(VALID_LC)
    if bad_lc.any():
        row = _first_bad_row(bad_lc)
        raise ParseError(
            f"Unknown location class {pdf['lc'].iloc[row]!r}; expected one of {sorted(VALID_LC)}",
            row=row,
            column="lc",
        )
    pdf["lc"] = lc

    # ========== Coordinates ==========
    _coerce_numeric(pdf, "lon", required=True)
    _coerce_numeric(pdf, "lat", required=True)
    out_of_range = (pdf["lat"].abs() > 90) | (pdf["lon"] < -180) | (pdf["lon"] > 360)
    if out_of_range.any():
        row = _first_bad_row(out_of_range)
        raise ParseError(
            f"Coordinate out of range (lon={pdf['lon'].iloc[row]}, lat={pdf['lat'].iloc[row]})",
            row=row,
            column="lon/lat",
        )

    # ========== Optional error columns ==========
    for col in present_ellipse + present_sd:
        _coerce_numeric(pdf, col, required=False)

    is_gl = pdf["lc"] == "GL"
    if is_gl.any():
        if not present_sd:
            raise SchemaError("Geolocation (GL) fixes require x_sd and y_sd columns")
        no_sd = is_gl & (pdf["x_sd"].isna() | pdf["y_sd"].isna())
        if no_sd.any():
            raise ParseError("GL fix without x_sd/y_sd", row=_first_bad_row(no_sd), column="x_sd")

    logger.debug("Formatted %d observations across %d tracks", len(pdf), pdf["id"].nunique())
    return pdf


def read_tracks(
    path: Union[str, Path],
    date_format: str = DEFAULT_DATE_FORMAT,
    sep: str = ",",
) -> pd.DataFrame:
    """
    Read a delimited telemetry file into the observation table.

    Parameters
    ----------
    path : str or Path
        File with columns ``id, date, lc, lon, lat[, smaj, smin, eor]`` or
        ``[x.sd, y.sd]``.
    date_format : str, default='%Y-%m-%d %H:%M:%S'
        Timestamp format.
    sep : str, default=','
        Field delimiter.

    Returns
    -------
    pd.DataFrame
        The validated observation table (see ``format_data``). Every file row
        appears exactly once.

    Examples
    --------
    >>> import pymotum as pm
    >>> obs = pm.preprocessing.read_tracks(pm.sample_data_path())
    >>> obs["id"].nunique()
    3
    """
    # Read id/lc/date as text so '3' stays a class label and dates stay unparsed
    try:
        raw = pd.read_csv(
            path,
            sep=sep,
            dtype={"id": str, "lc": str, "date": str},
            skipinitialspace=True,
            encoding="utf-8",
        )
    except pd.errors.EmptyDataError as exc:
        raise SchemaError(f"{path}: file is empty") from exc
    except UnicodeDecodeError as exc:
        raise ParseError(f"{path}: not valid UTF-8 text ({exc.reason} at byte {exc.start})") from exc
    except pd.errors.ParserError as exc:
        raise ParseError(f"{path}: {exc}") from exc
    return format_data(raw, date_format=date_format)


def check_tracks(df: pd.DataFrame) -> None:
    """
    Raise ``ParseError`` if timestamps are not strictly increasing within a track.

    The prefilter sorts and de-duplicates on its own; call this when you need
    the stricter guarantee that the input is already clean.
    """
    for track_id, group in df.groupby("id", sort=False):
        dates = group["date"].to_numpy(dtype="datetime64[ns]")
        steps = np.diff(dates)
        bad = np.nonzero(steps <= np.timedelta64(0, "ns"))[0]
        if bad.size:
            row = int(group.index[bad[0] + 1])
            raise ParseError(
                f"Timestamps not strictly increasing in track {track_id!r}",
                row=row,
                column="date",
            )
